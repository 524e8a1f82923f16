import os


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value)
        return parsed if parsed > 0 else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = float(value)
        return parsed if parsed >= 0 else default
    except ValueError:
        return default


STORE_BACKEND = os.getenv("STORE_BACKEND", "mongo").strip().lower()

SCAN_DELAY_MIN_SECONDS = _env_float("SCAN_DELAY_MIN_SECONDS", 3.0)
SCAN_DELAY_MAX_SECONDS = max(
    SCAN_DELAY_MIN_SECONDS, _env_float("SCAN_DELAY_MAX_SECONDS", 5.0)
)
SCAN_POLL_INTERVAL_SECONDS = _env_float("SCAN_POLL_INTERVAL_SECONDS", 3.0)

DEFAULT_LIST_LIMIT = _env_int("SCAN_LIST_LIMIT_DEFAULT", 12)
MAX_LIST_LIMIT = _env_int("SCAN_LIST_LIMIT_MAX", 100)

MAX_FILE_SIZE_BYTES = _env_int("MAX_FILE_SIZE_BYTES", 10 * 1024 * 1024)
MAX_FILENAME_LENGTH = 255
RATE_LIMIT_UPLOADS_PER_MINUTE = _env_int("UPLOAD_RATE_LIMIT_PER_MINUTE", 10)
RATE_LIMIT_WINDOW_SECONDS = _env_int("UPLOAD_RATE_LIMIT_WINDOW_SECONDS", 60)
