"""
Strukturerad JSON-loggning för ScanForm.

Använder python-json-logger så att både request-hanteringen och de
fristående skanningsjobben (scanform.lifecycle) loggar maskinläsbara rader.

Varje loggpost innehåller:
  - timestamp  : ISO 8601
  - level      : DEBUG / INFO / WARNING / ERROR / CRITICAL
  - logger     : loggerns namn (t.ex. "scanform.store", "uvicorn.error")
  - message    : loggmeddelandet
  - service    : "scanform"
  - environment: från env-variabeln ENVIRONMENT (default: "production")
  - + eventuella extra-fält, t.ex. logger.info(..., extra={"scan_id": ...})
"""

import logging
import logging.config
import os

from pythonjsonlogger.jsonlogger import JsonFormatter  # type: ignore[import-untyped]


class _ScanFormJsonFormatter(JsonFormatter):
    """Lägger till service och environment på varje post."""

    _service = "scanform"
    _environment = os.getenv("ENVIRONMENT", "production")

    def add_fields(
        self,
        log_record: dict,
        record: logging.LogRecord,
        message_dict: dict,
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["service"] = self._service
        log_record["environment"] = self._environment
        log_record["level"] = log_record.pop("levelname", record.levelname)
        log_record["logger"] = log_record.pop("name", record.name)


def setup_logging(level: str | None = None) -> None:
    """
    Konfigurera root logger, scanform-loggers och uvicorn med JSON-format.

    Anropas en gång från applikationens lifespan.
    level: t.ex. "DEBUG" eller "INFO" (default från LOG_LEVEL, annars "INFO").
    """
    log_level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "handlers": {
                "json": {
                    "class": "logging.StreamHandler",
                    "formatter": "json",
                    "stream": "ext://sys.stdout",
                },
            },
            "formatters": {
                "json": {
                    "()": _ScanFormJsonFormatter,
                    "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "rename_fields": {"asctime": "timestamp"},
                },
            },
            "root": {
                "handlers": ["json"],
                "level": log_level,
            },
            "loggers": {
                "uvicorn": {"handlers": ["json"], "level": log_level, "propagate": False},
                "uvicorn.error": {"handlers": ["json"], "level": log_level, "propagate": False},
                "uvicorn.access": {"handlers": ["json"], "level": log_level, "propagate": False},
                # propagate=True så att pytest caplog ser scanform-posterna
                "scanform": {"level": log_level, "propagate": True},
                "apscheduler": {"handlers": ["json"], "level": "WARNING", "propagate": False},
            },
        }
    )
