"""
Learning-mode statistics.
Records scheduled/completed/cancelled outcomes per weekly slot bucket and
owns the per-user learning-mode toggle.
"""

from datetime import UTC, datetime
from enum import StrEnum
from zoneinfo import ZoneInfo

from slotbook.config import settings
from slotbook.infrastructure.observability.logging import get_logger
from slotbook.models.domain.scheduling_domain import SlotStat
from slotbook.repositories.preferences_repository import PreferencesRepository
from slotbook.repositories.slot_stats_repository import SlotStatsRepository
from slotbook.services.scheduling.slot_scorer import bucket_id_for

logger = get_logger(__name__)


class SlotActivity(StrEnum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


def success_rate_for(scheduled: int, cancelled: int) -> int:
    if scheduled <= 0:
        return 0
    # Half-up rounding; cancellations beyond scheduled clamp to zero
    rate = ((scheduled - cancelled) * 200 + scheduled) // (2 * scheduled)
    return max(0, min(100, rate))


def activity_delta(user_id: str, bucket_id: str, activity: SlotActivity, now: datetime) -> SlotStat:
    """Counters for one `activity` in the bucket; also the row stored for a new bucket."""
    return SlotStat(
        user_id=user_id,
        bucket_id=bucket_id,
        total_scheduled=1 if activity == SlotActivity.SCHEDULED else 0,
        total_completed=1 if activity == SlotActivity.COMPLETED else 0,
        total_cancelled=1 if activity == SlotActivity.CANCELLED else 0,
        success_rate=0 if activity == SlotActivity.CANCELLED else 100,
        last_used=now,
    )


class SlotStatsService:
    def __init__(
        self,
        stats_repository: SlotStatsRepository | None = None,
        preferences_repository: PreferencesRepository | None = None,
        tz: ZoneInfo | None = None,
    ):
        self.stats_repository = stats_repository or SlotStatsRepository()
        self.preferences_repository = preferences_repository or PreferencesRepository()
        self.tz = tz or settings.scheduling_tz()

    async def record_activity(
        self,
        user_id: str,
        activity: SlotActivity,
        *,
        slot_start: datetime | None = None,
        bucket_id: str | None = None,
        now: datetime | None = None,
    ) -> SlotStat | None:
        """
        Record one outcome for the bucket of `slot_start` (or an explicit `bucket_id`).

        Returns None without writing when learning mode is off.
        """
        if bucket_id is None:
            if slot_start is None:
                raise ValueError("slot_start or bucket_id is required")
            bucket_id = bucket_id_for(slot_start, self.tz)

        if not await self.preferences_repository.get_learning_enabled(user_id):
            logger.debug("Learning mode disabled, activity not recorded", user_id=user_id)
            return None

        delta = activity_delta(user_id, bucket_id, SlotActivity(activity), now or datetime.now(UTC))
        updated = await self.stats_repository.increment(delta)

        logger.info(
            "Slot activity recorded",
            user_id=user_id,
            bucket_id=bucket_id,
            activity=str(activity),
            success_rate=updated.success_rate,
        )
        return updated

    async def list_stats(self, user_id: str) -> list[SlotStat]:
        return await self.stats_repository.list_for_user(user_id)

    async def reset_all(self, user_id: str) -> int:
        deleted = await self.stats_repository.delete_all(user_id)
        logger.info("Slot stats reset", user_id=user_id, deleted=deleted)
        return deleted

    async def reset_bucket(self, user_id: str, bucket_id: str) -> bool:
        deleted = await self.stats_repository.delete_bucket(user_id, bucket_id)
        logger.info("Slot stat reset", user_id=user_id, bucket_id=bucket_id, deleted=deleted)
        return deleted > 0

    async def learning_enabled(self, user_id: str) -> bool:
        return await self.preferences_repository.get_learning_enabled(user_id)

    async def set_learning_enabled(self, user_id: str, enabled: bool) -> None:
        await self.preferences_repository.set_learning_enabled(user_id, enabled)
        logger.info("Learning mode updated", user_id=user_id, enabled=enabled)
