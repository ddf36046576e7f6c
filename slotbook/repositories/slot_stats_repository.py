"""
Persistence for per-bucket booking outcome statistics (slot_stats table).
"""

from slotbook.db.helpers import DatabaseError, execute_query, fetch_all, fetch_one, with_db_retry
from slotbook.models.domain.scheduling_domain import SlotStat


class SlotStatsRepository:
    """PostgreSQL-backed store keyed by (user_id, bucket_id)."""

    SELECT_COLUMNS = """
        user_id, bucket_id, total_scheduled, total_completed,
        total_cancelled, success_rate, last_used
    """

    @staticmethod
    def _row_to_stat(row: dict | None) -> SlotStat | None:
        if not row:
            return None
        return SlotStat(
            user_id=str(row["user_id"]),
            bucket_id=row["bucket_id"],
            total_scheduled=row["total_scheduled"],
            total_completed=row["total_completed"],
            total_cancelled=row["total_cancelled"],
            success_rate=row["success_rate"],
            last_used=row.get("last_used"),
        )

    async def get(self, user_id: str, bucket_id: str) -> SlotStat | None:
        query = f"SELECT {self.SELECT_COLUMNS} FROM slot_stats WHERE user_id = %s AND bucket_id = %s"
        return self._row_to_stat(await fetch_one(query, (user_id, bucket_id)))

    async def get_many(self, user_id: str, bucket_ids: list[str]) -> dict[str, SlotStat]:
        if not bucket_ids:
            return {}
        query = f"""
            SELECT {self.SELECT_COLUMNS} FROM slot_stats
            WHERE user_id = %s AND bucket_id = ANY(%s)
        """
        rows = await fetch_all(query, (user_id, list(bucket_ids)))
        return {row["bucket_id"]: self._row_to_stat(row) for row in rows}

    async def list_for_user(self, user_id: str) -> list[SlotStat]:
        query = f"""
            SELECT {self.SELECT_COLUMNS} FROM slot_stats
            WHERE user_id = %s
            ORDER BY success_rate DESC, total_scheduled DESC
        """
        return [self._row_to_stat(row) for row in await fetch_all(query, (user_id,))]

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def increment(self, delta: SlotStat) -> SlotStat:
        """
        Add `delta`'s counters to the stored bucket in a single statement.

        A missing bucket is inserted as `delta`. Otherwise success_rate is
        recomputed from the summed counters (half-up, clamped to 0..100) and
        left unchanged while nothing has been scheduled.
        """
        query = f"""
            INSERT INTO slot_stats (
                user_id, bucket_id, total_scheduled, total_completed,
                total_cancelled, success_rate, last_used, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, NOW())
            ON CONFLICT (user_id, bucket_id)
            DO UPDATE SET
                total_scheduled = slot_stats.total_scheduled + EXCLUDED.total_scheduled,
                total_completed = slot_stats.total_completed + EXCLUDED.total_completed,
                total_cancelled = slot_stats.total_cancelled + EXCLUDED.total_cancelled,
                success_rate = CASE
                    WHEN slot_stats.total_scheduled + EXCLUDED.total_scheduled > 0 THEN
                        GREATEST(0, LEAST(100, (
                            (slot_stats.total_scheduled + EXCLUDED.total_scheduled
                             - slot_stats.total_cancelled - EXCLUDED.total_cancelled) * 200
                            + slot_stats.total_scheduled + EXCLUDED.total_scheduled
                        ) / (2 * (slot_stats.total_scheduled + EXCLUDED.total_scheduled))))
                    ELSE slot_stats.success_rate
                END,
                last_used = EXCLUDED.last_used,
                updated_at = NOW()
            RETURNING {self.SELECT_COLUMNS}
        """
        row = await fetch_one(
            query,
            (
                delta.user_id,
                delta.bucket_id,
                delta.total_scheduled,
                delta.total_completed,
                delta.total_cancelled,
                delta.success_rate,
                delta.last_used,
            ),
        )
        if not row:
            raise DatabaseError("Failed to update slot stats", operation="increment")
        return self._row_to_stat(row)

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def delete_all(self, user_id: str) -> int:
        return await execute_query("DELETE FROM slot_stats WHERE user_id = %s", (user_id,))

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def delete_bucket(self, user_id: str, bucket_id: str) -> int:
        return await execute_query(
            "DELETE FROM slot_stats WHERE user_id = %s AND bucket_id = %s", (user_id, bucket_id)
        )
