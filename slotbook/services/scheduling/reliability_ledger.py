"""
Reliability Ledger
Durable record of every booking attempt and its lifecycle status.

Lifecycle: pending -> {synced, error, conflict}; error -> pending only via
explicit retry. Synced and conflict rows are terminal until deleted.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from slotbook.config import settings
from slotbook.infrastructure.observability.logging import get_logger
from slotbook.models.domain.sync_domain import InvalidTransition, SyncEvent, SyncStatus
from slotbook.repositories.sync_event_repository import SyncEventRepository
from slotbook.services.scheduling.errors import RETRYABLE_KINDS

logger = get_logger(__name__)


class SyncEventNotFound(Exception):
    def __init__(self, event_id: str):
        super().__init__(f"Sync event {event_id} not found")
        self.event_id = event_id


class ReliabilityLedger:
    """Guards status transitions on top of a sync-event repository."""

    def __init__(self, repository: SyncEventRepository | None = None):
        self.repository = repository or SyncEventRepository()

    async def start(
        self, user_id: str, title: str, start_time: datetime, end_time: datetime
    ) -> SyncEvent:
        event = await self.repository.create(user_id, title, start_time, end_time)
        logger.info("Booking attempt recorded", sync_event_id=event.id, user_id=user_id)
        return event

    async def get(self, event_id: str, user_id: str | None = None) -> SyncEvent | None:
        event = await self.repository.get(event_id)
        if event and user_id is not None and event.user_id != user_id:
            return None
        return event

    async def _require(self, event_id: str) -> SyncEvent:
        event = await self.repository.get(event_id)
        if event is None:
            raise SyncEventNotFound(event_id)
        return event

    async def _transition(
        self,
        event_id: str,
        target: SyncStatus,
        *,
        error_message: str | None = None,
        error_kind: str | None = None,
        increment_retry: bool = False,
    ) -> SyncEvent:
        current = await self._require(event_id)
        if not current.can_transition_to(target):
            raise InvalidTransition(event_id, current.status, target)

        updated = await self.repository.update_status(
            event_id,
            current.status,
            target,
            error_message=error_message,
            error_kind=error_kind,
            increment_retry=increment_retry,
        )
        if updated is None:
            # Another writer moved the row between read and update
            latest = await self._require(event_id)
            raise InvalidTransition(event_id, latest.status, target)

        logger.info(
            "Sync event transitioned",
            sync_event_id=event_id,
            from_status=current.status.value,
            to_status=target.value,
            retry_count=updated.retry_count,
        )
        return updated

    async def record_provider_event(
        self, event_id: str, provider_event_id: str, html_link: str | None = None
    ) -> SyncEvent:
        """Attach the provider's event id; written before the row is marked synced."""
        updated = await self.repository.set_provider_event(event_id, provider_event_id, html_link)
        if updated is None:
            raise SyncEventNotFound(event_id)
        return updated

    async def mark_synced(self, event_id: str) -> SyncEvent:
        return await self._transition(event_id, SyncStatus.SYNCED)

    async def mark_error(
        self, event_id: str, kind: str, message: str, *, count_attempt: bool = False
    ) -> SyncEvent:
        return await self._transition(
            event_id,
            SyncStatus.ERROR,
            error_message=message,
            error_kind=kind,
            increment_retry=count_attempt,
        )

    async def mark_conflict(self, event_id: str, message: str | None = None) -> SyncEvent:
        return await self._transition(event_id, SyncStatus.CONFLICT, error_message=message)

    async def reopen(self, event_id: str) -> SyncEvent:
        """error -> pending, for an explicit retry."""
        return await self._transition(event_id, SyncStatus.PENDING)

    async def list_by_status(
        self, user_id: str, status: SyncStatus | None = None, limit: int = 100
    ) -> list[SyncEvent]:
        return await self.repository.list_for_user(user_id, status, limit)

    async def counts(self, user_id: str) -> dict[str, Any]:
        raw = await self.repository.count_by_status(user_id)
        counts: dict[str, Any] = {status.value: raw.get(status.value, 0) for status in SyncStatus}
        counts["total"] = sum(counts[status.value] for status in SyncStatus)
        last_synced_at = await self.repository.last_synced_at(user_id)
        counts["last_synced_at"] = last_synced_at.isoformat() if last_synced_at else None
        return counts

    def is_retryable(self, event: SyncEvent, max_retries: int | None = None) -> bool:
        """Error rows from upstream or auth failures that still have retry budget."""
        max_retries = settings.MAX_SYNC_RETRIES if max_retries is None else max_retries
        return (
            event.status == SyncStatus.ERROR
            and event.error_kind in RETRYABLE_KINDS
            and event.retry_count <= max_retries
        )

    async def retry_all(
        self,
        user_id: str,
        status: SyncStatus = SyncStatus.ERROR,
        *,
        now: datetime | None = None,
        max_retries: int | None = None,
        pending_stale_after: timedelta | None = None,
    ) -> list[SyncEvent]:
        """
        Rows to re-drive, all left in pending.

        Retryable error rows are moved back to pending. Pending rows that
        already carry a provider id, or have sat in pending past the stale
        threshold, are included as-is.
        """
        now = now or datetime.now(UTC)
        pending_stale_after = pending_stale_after or timedelta(
            seconds=settings.PENDING_STALE_AFTER_SECONDS
        )

        if status != SyncStatus.ERROR:
            raise ValueError(f"Only {SyncStatus.ERROR.value} rows can be retried, got {status}")

        # Pending rows are read first so freshly reopened rows are not picked up twice
        stuck = [
            event
            for event in await self.repository.list_for_user(user_id, SyncStatus.PENDING, limit=500)
            if event.provider_event_id or now - event.updated_at >= pending_stale_after
        ]

        reopened: list[SyncEvent] = []
        for event in await self.repository.list_for_user(user_id, SyncStatus.ERROR, limit=500):
            if not self.is_retryable(event, max_retries):
                continue
            try:
                reopened.append(await self.reopen(event.id))
            except InvalidTransition:
                logger.info("Sync event changed before retry", sync_event_id=event.id)

        reopened.extend(stuck)

        logger.info("Sync events queued for retry", user_id=user_id, count=len(reopened))
        return reopened

    async def users_with_open_rows(self) -> list[str]:
        """Users owning error or pending rows, the candidates for a background retry."""
        return await self.repository.users_with_status([SyncStatus.ERROR, SyncStatus.PENDING])

    async def delete(self, event_id: str, user_id: str) -> bool:
        return await self.repository.delete(event_id, user_id)
