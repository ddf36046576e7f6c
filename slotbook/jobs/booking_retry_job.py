"""
Booking Retry Job
Periodically re-drives failed and stuck booking attempts for every user
that has open ledger rows.
"""

import asyncio
from datetime import UTC, datetime

from slotbook.db.helpers import DatabaseError
from slotbook.infrastructure.observability.logging import get_logger
from slotbook.models.domain.sync_domain import SyncStatus
from slotbook.services.scheduling.engine import SchedulingEngine, get_engine
from slotbook.services.token_service import TokenServiceError

logger = get_logger(__name__)

JOB_INTERVAL_MINUTES = 5
MAX_CONCURRENT_USERS = 5


class BookingRetryMetrics:
    """Counters for one run of the retry job."""

    def __init__(self):
        self.start_time = datetime.now(UTC)
        self.users_processed = 0
        self.events_retried = 0
        self.events_synced = 0
        self.users_skipped = 0
        self.user_errors = 0

    def to_dict(self) -> dict:
        return {
            "job_run": "booking_retry",
            "start_time": self.start_time.isoformat(),
            "duration_seconds": round((datetime.now(UTC) - self.start_time).total_seconds(), 2),
            "users_processed": self.users_processed,
            "events_retried": self.events_retried,
            "events_synced": self.events_synced,
            "users_skipped": self.users_skipped,
            "user_errors": self.user_errors,
        }


class BookingRetryJob:
    def __init__(self, engine: SchedulingEngine | None = None):
        self._engine = engine
        self.is_running = False

    @property
    def engine(self) -> SchedulingEngine:
        if self._engine is None:
            self._engine = get_engine()
        return self._engine

    async def run_once(self) -> dict:
        """Retry open rows for every affected user; one user's failure never stops the run."""
        if self.is_running:
            logger.warning("Booking retry job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        metrics = BookingRetryMetrics()
        try:
            user_ids = await self.engine.ledger.users_with_open_rows()
            if not user_ids:
                logger.info("No booking attempts awaiting retry")
                return metrics.to_dict()

            semaphore = asyncio.Semaphore(MAX_CONCURRENT_USERS)

            async def process(user_id: str) -> None:
                async with semaphore:
                    await self._retry_user(user_id, metrics)

            await asyncio.gather(*(process(user_id) for user_id in user_ids))

            result = metrics.to_dict()
            logger.info("Booking retry job completed", **result)
            return result
        finally:
            self.is_running = False

    async def _retry_user(self, user_id: str, metrics: BookingRetryMetrics) -> None:
        metrics.users_processed += 1
        try:
            credential = await self.engine.tokens.get_credential(user_id)
            if credential is None:
                metrics.users_skipped += 1
                logger.info("Skipping retry, calendar not connected", user_id=user_id)
                return

            events = await self.engine.coordinator.retry_failed(credential)
            metrics.events_retried += len(events)
            metrics.events_synced += sum(1 for e in events if e.status == SyncStatus.SYNCED)

        except (TokenServiceError, DatabaseError) as e:
            metrics.user_errors += 1
            logger.error(
                "Booking retry failed for user",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )


booking_retry_job = BookingRetryJob()


async def run_booking_retry_job() -> dict:
    """Run a single iteration of the booking retry job."""
    return await booking_retry_job.run_once()


async def start_booking_retry_scheduler() -> None:
    """Run the retry job forever at a fixed interval."""
    logger.info("Starting booking retry scheduler", interval_minutes=JOB_INTERVAL_MINUTES)

    while True:
        try:
            await run_booking_retry_job()
        except DatabaseError as e:
            logger.error("Error in booking retry scheduler", error=str(e), error_type=type(e).__name__)
        await asyncio.sleep(JOB_INTERVAL_MINUTES * 60)
