"""
Slot Scorer
Ranks candidate slots with the user's historical outcomes for the same
weekday and hour ("learning mode").
"""

from collections.abc import Iterable
from datetime import datetime
from zoneinfo import ZoneInfo

from slotbook.config import settings
from slotbook.infrastructure.observability.logging import get_logger
from slotbook.models.domain.scheduling_domain import NEUTRAL_SCORE, SlotStat, TimeSlot
from slotbook.repositories.slot_stats_repository import SlotStatsRepository

logger = get_logger(__name__)

DAY_ABBREVIATIONS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")

ADJACENCY_PENALTY = 2
ADJACENCY_NOTE = "Meeting nearby"
RECOMMENDED_MIN_SCORE = 8
RECOMMENDED_MIN_SCHEDULED = 2


def bucket_id_for(moment: datetime, tz: ZoneInfo | None = None) -> str:
    """Weekly bucket id such as ``mon_07`` in the deployment time zone."""
    local = moment.astimezone(tz or settings.scheduling_tz())
    return f"{DAY_ABBREVIATIONS[local.weekday()]}_{local.hour:02d}"


def score_slot(slot: TimeSlot, stat: SlotStat, adjacent: bool) -> None:
    """Apply the bonus/penalty formula to `slot` in place."""
    base = (stat.success_rate + 5) // 10  # half-up rounding of rate / 10
    usage_bonus = min(2, stat.total_scheduled // 5)
    cancellation_penalty = min(3, stat.total_cancelled // 2)
    adjacency_penalty = ADJACENCY_PENALTY if adjacent else 0

    slot.score = max(0, base + usage_bonus - cancellation_penalty - adjacency_penalty)
    slot.is_recommended = (
        slot.score >= RECOMMENDED_MIN_SCORE and stat.total_scheduled >= RECOMMENDED_MIN_SCHEDULED
    )

    if adjacent:
        slot.add_annotation(ADJACENCY_NOTE)
    if slot.is_recommended:
        slot.add_annotation(f"{stat.success_rate}% completion rate")


def sort_ranked(slots: list[TimeSlot]) -> list[TimeSlot]:
    return sorted(slots, key=lambda s: (not s.is_recommended, -s.score, s.start))


class SlotScorer:
    def __init__(self, stats_repository: SlotStatsRepository | None = None, tz: ZoneInfo | None = None):
        self.stats_repository = stats_repository or SlotStatsRepository()
        self.tz = tz or settings.scheduling_tz()

    async def rank_slots(
        self,
        user_id: str,
        slots: list[TimeSlot],
        learning_enabled: bool,
        adjacent_bucket_ids: Iterable[str] = (),
    ) -> list[TimeSlot]:
        """
        Score and order slots.

        With learning disabled every slot gets the neutral score and the
        input order is kept.
        """
        if not learning_enabled:
            for slot in slots:
                slot.score = NEUTRAL_SCORE
                slot.is_recommended = False
            return list(slots)

        adjacent = set(adjacent_bucket_ids)
        bucket_ids = [bucket_id_for(slot.start, self.tz) for slot in slots]
        stats = await self.stats_repository.get_many(user_id, sorted(set(bucket_ids)))

        for slot, bucket_id in zip(slots, bucket_ids, strict=True):
            stat = stats.get(bucket_id) or SlotStat.empty(user_id, bucket_id)
            score_slot(slot, stat, bucket_id in adjacent)

        ranked = sort_ranked(slots)
        logger.debug(
            "Slots ranked",
            user_id=user_id,
            slot_count=len(ranked),
            recommended_count=sum(1 for s in ranked if s.is_recommended),
        )
        return ranked
