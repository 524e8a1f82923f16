"""
Scan lifecycle: processing -> completed | flagged | error.

Creation and retry put a scan in ``processing`` and enqueue one deferred job
on the scheduler. The job draws the simulated verdict and writes it back
through ``EntityCollection.mutate``. Nothing reports back to the request that
enqueued the job; clients observe the outcome by polling.
"""

from datetime import UTC, datetime, timedelta
from typing import Protocol
import asyncio
import logging
import random

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from scanform.entities import EntityCollection
from scanform.errors import NotFound
from scanform.models import ScanRecord, ScanSummary
from scanform.settings import SCAN_DELAY_MAX_SECONDS, SCAN_DELAY_MIN_SECONDS

logger = logging.getLogger("scanform.lifecycle")

ERROR_THRESHOLD = 0.9
FLAG_THRESHOLD = 0.7
FLAG_REASON = "Contains suspicious patterns"


class RandomSource(Protocol):
    def random(self) -> float: ...

    def randrange(self, stop: int) -> int: ...

    def uniform(self, a: float, b: float) -> float: ...


def decide_outcome(rng: RandomSource) -> tuple[str, ScanSummary | None]:
    r = rng.random()
    if r > ERROR_THRESHOLD:
        return "error", None
    if r > FLAG_THRESHOLD:
        return "flagged", ScanSummary(
            verdict="suspicious", score=rng.randrange(100), reasons=[FLAG_REASON]
        )
    return "completed", ScanSummary(verdict="clean", score=rng.randrange(100), reasons=[])


def create_scheduler() -> AsyncIOScheduler:
    """Scheduler bound to the running loop; call from inside the app lifespan."""
    return AsyncIOScheduler(event_loop=asyncio.get_running_loop(), timezone="UTC")


class ScanLifecycle:
    def __init__(
        self,
        scans: EntityCollection[ScanRecord],
        scheduler: AsyncIOScheduler,
        rng: RandomSource | None = None,
        delay_window: tuple[float, float] = (SCAN_DELAY_MIN_SECONDS, SCAN_DELAY_MAX_SECONDS),
    ):
        self.scans = scans
        self.scheduler = scheduler
        self.rng = rng or random.Random()
        self.delay_window = delay_window

    async def submit(self, record: ScanRecord) -> ScanRecord:
        record = record.model_copy(update={"status": "processing", "summary": None})
        created = await self.scans.create(record)
        self.schedule(created.id)
        return created

    async def retry(self, scan_id: str) -> ScanRecord:
        # Any job still pending for this scan keeps running; the last write wins.
        record = await self.scans.patch(scan_id, {"status": "processing", "summary": None})
        self.schedule(scan_id)
        return record

    def schedule(self, scan_id: str):
        low, high = self.delay_window
        delay = self.rng.uniform(low, high)
        job = self.scheduler.add_job(
            self.run_transition,
            "date",
            run_date=datetime.now(UTC) + timedelta(seconds=delay),
            args=[scan_id],
            misfire_grace_time=None,
        )
        logger.info(
            "Scan %s scheduled to settle in %.2fs", scan_id, delay,
            extra={"scan_id": scan_id, "job_id": job.id},
        )
        return job

    async def run_transition(self, scan_id: str) -> str | None:
        """
        Settle one scan. Returns the status written, or None when nothing
        could be written. Never raises: there is no caller to report to.
        """
        status, summary = decide_outcome(self.rng)

        def settle(record: ScanRecord) -> ScanRecord:
            return record.model_copy(update={"status": status, "summary": summary})

        try:
            await self.scans.mutate(scan_id, settle)
            logger.info(
                "Scan %s settled as %s", scan_id, status,
                extra={"scan_id": scan_id, "status": status},
            )
            return status
        except NotFound:
            logger.info("Scan %s was deleted before it settled", scan_id)
            return None
        except Exception:
            logger.exception("Simulated scan failed for %s", scan_id)

        try:
            await self.scans.patch(scan_id, {"status": "error"})
            return "error"
        except Exception:
            logger.exception("Failed to update scan %s status to error", scan_id)
            return None
