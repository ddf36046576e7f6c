import asyncio
from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch
from zoneinfo import ZoneInfo

import pytest

from slotbook.repositories.slot_stats_repository import SlotStatsRepository
from slotbook.services.scheduling.slot_stats_service import (
    SlotActivity,
    SlotStatsService,
    activity_delta,
    success_rate_for,
)

USER = "user-123"
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)
MONDAY_NINE = datetime(2026, 3, 2, 9, 15, tzinfo=UTC)


def test_success_rate_rounds_half_up_and_clamps():
    assert success_rate_for(8, 1) == 88  # 87.5
    assert success_rate_for(3, 1) == 67
    assert success_rate_for(2, 5) == 0
    assert success_rate_for(0, 0) == 0


def test_first_activity_creates_stat():
    scheduled = activity_delta(USER, "mon_09", SlotActivity.SCHEDULED, NOW)
    cancelled = activity_delta(USER, "mon_10", SlotActivity.CANCELLED, NOW)

    assert (scheduled.total_scheduled, scheduled.success_rate) == (1, 100)
    assert (cancelled.total_cancelled, cancelled.success_rate) == (1, 0)
    assert scheduled.last_used == NOW


@pytest.mark.asyncio
async def test_cancellation_lowers_rate(stats_repository, preferences):
    service = SlotStatsService(stats_repository, preferences, ZoneInfo("UTC"))

    for activity in (SlotActivity.SCHEDULED, SlotActivity.SCHEDULED, SlotActivity.CANCELLED):
        stat = await service.record_activity(USER, activity, bucket_id="mon_09", now=NOW)

    assert stat.total_scheduled == 2
    assert stat.total_cancelled == 1
    assert stat.success_rate == 50


@pytest.mark.asyncio
async def test_concurrent_activity_is_not_lost(stats_repository, preferences):
    service = SlotStatsService(stats_repository, preferences, ZoneInfo("UTC"))

    await asyncio.gather(
        *(service.record_activity(USER, SlotActivity.SCHEDULED, bucket_id="fri_16") for _ in range(5))
    )

    stat = await stats_repository.get(USER, "fri_16")
    assert stat.total_scheduled == 5
    assert stat.success_rate == 100


@pytest.mark.asyncio
async def test_increment_adds_counters_in_one_statement():
    row = {
        "user_id": USER,
        "bucket_id": "mon_09",
        "total_scheduled": 4,
        "total_completed": 2,
        "total_cancelled": 1,
        "success_rate": 75,
        "last_used": NOW,
    }
    delta = activity_delta(USER, "mon_09", SlotActivity.CANCELLED, NOW)

    fetch = AsyncMock(return_value=row)
    with patch("slotbook.repositories.slot_stats_repository.fetch_one", fetch):
        stat = await SlotStatsRepository().increment(delta)

    query, params = fetch.await_args.args
    assert "slot_stats.total_cancelled + EXCLUDED.total_cancelled" in query
    assert "ON CONFLICT (user_id, bucket_id)" in query
    assert fetch.await_count == 1
    assert params == (USER, "mon_09", 0, 0, 1, 0, NOW)
    assert stat.success_rate == 75


@pytest.mark.asyncio
async def test_record_activity_buckets_by_slot_start(stats_repository, preferences):
    service = SlotStatsService(stats_repository, preferences, ZoneInfo("UTC"))

    stat = await service.record_activity(USER, SlotActivity.SCHEDULED, slot_start=MONDAY_NINE, now=NOW)

    assert stat.bucket_id == "mon_09"
    assert await stats_repository.get(USER, "mon_09") is stat


@pytest.mark.asyncio
async def test_record_activity_skipped_when_learning_disabled(stats_repository, preferences):
    await preferences.set_learning_enabled(USER, False)
    service = SlotStatsService(stats_repository, preferences, ZoneInfo("UTC"))

    result = await service.record_activity(USER, SlotActivity.COMPLETED, bucket_id="tue_14")

    assert result is None
    assert stats_repository.stats == {}


@pytest.mark.asyncio
async def test_record_activity_requires_a_bucket(stats_repository, preferences):
    service = SlotStatsService(stats_repository, preferences, ZoneInfo("UTC"))

    with pytest.raises(ValueError):
        await service.record_activity(USER, SlotActivity.SCHEDULED)


@pytest.mark.asyncio
async def test_reset_bucket_and_all(stats_repository, preferences):
    stats_repository.seed(USER, "mon_09", scheduled=3, cancelled=0, success_rate=100)
    stats_repository.seed(USER, "wed_15", scheduled=1, cancelled=1, success_rate=0)
    service = SlotStatsService(stats_repository, preferences, ZoneInfo("UTC"))

    assert await service.reset_bucket(USER, "mon_09") is True
    assert await service.reset_bucket(USER, "mon_09") is False
    assert await service.reset_all(USER) == 1
    assert await service.list_stats(USER) == []
