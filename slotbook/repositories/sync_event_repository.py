"""
Persistence for the booking ledger (sync_events table).

Status updates are conditional on the row's current status so that two
writers racing on the same row cannot both apply a transition.
"""

from datetime import datetime

from slotbook.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from slotbook.infrastructure.observability.logging import get_logger
from slotbook.models.domain.sync_domain import SyncEvent, SyncStatus

logger = get_logger(__name__)


class SyncEventRepositoryError(DatabaseError):
    """More specific exception for ledger persistence failures."""


class SyncEventRepository:
    """PostgreSQL-backed store for SyncEvent rows."""

    SELECT_COLUMNS = """
        id, user_id, title, start_time, end_time, status, provider_event_id,
        html_link, error_message, error_kind, retry_count, created_at, updated_at
    """

    @staticmethod
    def _row_to_event(row: dict | None) -> SyncEvent | None:
        if not row:
            return None
        return SyncEvent(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            title=row["title"],
            start_time=row["start_time"],
            end_time=row["end_time"],
            status=SyncStatus(row["status"]),
            provider_event_id=row.get("provider_event_id"),
            html_link=row.get("html_link"),
            error_message=row.get("error_message"),
            error_kind=row.get("error_kind"),
            retry_count=row.get("retry_count") or 0,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def create(
        self, user_id: str, title: str, start_time: datetime, end_time: datetime
    ) -> SyncEvent:
        """Insert a new pending row and return it."""
        query = f"""
            INSERT INTO sync_events (user_id, title, start_time, end_time, status)
            VALUES (%s, %s, %s, %s, 'pending')
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(query, (user_id, title, start_time, end_time))
        if not row:
            raise SyncEventRepositoryError("Failed to create sync event", operation="create")
        return self._row_to_event(row)

    async def get(self, event_id: str) -> SyncEvent | None:
        query = f"SELECT {self.SELECT_COLUMNS} FROM sync_events WHERE id = %s"
        return self._row_to_event(await fetch_one(query, (event_id,)))

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def update_status(
        self,
        event_id: str,
        expected: SyncStatus,
        target: SyncStatus,
        *,
        error_message: str | None = None,
        error_kind: str | None = None,
        increment_retry: bool = False,
    ) -> SyncEvent | None:
        """
        Move a row from `expected` to `target`.

        Returns None when the row is missing or no longer in `expected`.
        The diagnostic message survives into error and conflict; both are
        cleared when a row moves back to pending or on to synced.
        """
        keep_error = target == SyncStatus.ERROR
        keep_message = target in (SyncStatus.ERROR, SyncStatus.CONFLICT)
        query = f"""
            UPDATE sync_events
            SET status = %s,
                error_message = %s,
                error_kind = %s,
                retry_count = retry_count + %s,
                updated_at = NOW()
            WHERE id = %s AND status = %s
            RETURNING {self.SELECT_COLUMNS}
        """
        params = (
            target.value,
            error_message[:500] if keep_message and error_message else None,
            error_kind if keep_error else None,
            1 if increment_retry else 0,
            event_id,
            expected.value,
        )
        return self._row_to_event(await fetch_one(query, params))

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def set_provider_event(
        self, event_id: str, provider_event_id: str, html_link: str | None
    ) -> SyncEvent | None:
        query = f"""
            UPDATE sync_events
            SET provider_event_id = %s,
                html_link = %s,
                updated_at = NOW()
            WHERE id = %s
            RETURNING {self.SELECT_COLUMNS}
        """
        return self._row_to_event(await fetch_one(query, (provider_event_id, html_link, event_id)))

    async def list_for_user(
        self, user_id: str, status: SyncStatus | None = None, limit: int = 100
    ) -> list[SyncEvent]:
        if status is None:
            query = f"""
                SELECT {self.SELECT_COLUMNS} FROM sync_events
                WHERE user_id = %s
                ORDER BY created_at DESC
                LIMIT %s
            """
            rows = await fetch_all(query, (user_id, limit))
        else:
            query = f"""
                SELECT {self.SELECT_COLUMNS} FROM sync_events
                WHERE user_id = %s AND status = %s
                ORDER BY created_at DESC
                LIMIT %s
            """
            rows = await fetch_all(query, (user_id, status.value, limit))
        return [self._row_to_event(row) for row in rows]

    async def count_by_status(self, user_id: str) -> dict[str, int]:
        query = """
            SELECT status, COUNT(*) AS total
            FROM sync_events
            WHERE user_id = %s
            GROUP BY status
        """
        rows = await fetch_all(query, (user_id,))
        return {row["status"]: int(row["total"]) for row in rows}

    async def last_synced_at(self, user_id: str) -> datetime | None:
        query = """
            SELECT MAX(updated_at) AS last_synced_at
            FROM sync_events
            WHERE user_id = %s AND status = 'synced'
        """
        row = await fetch_one(query, (user_id,))
        return row["last_synced_at"] if row else None

    async def users_with_status(self, statuses: list[SyncStatus]) -> list[str]:
        """Distinct users that own at least one row in any of `statuses`."""
        query = "SELECT DISTINCT user_id FROM sync_events WHERE status = ANY(%s)"
        rows = await fetch_all(query, ([s.value for s in statuses],))
        return [str(row["user_id"]) for row in rows]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def delete(self, event_id: str, user_id: str) -> bool:
        query = "DELETE FROM sync_events WHERE id = %s AND user_id = %s"
        deleted = await execute_query(query, (event_id, user_id))
        if deleted:
            logger.info("Sync event deleted", sync_event_id=event_id, user_id=user_id)
        return deleted > 0
