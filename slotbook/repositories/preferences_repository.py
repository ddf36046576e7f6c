"""
Persistence for scheduling preferences (user_preferences table).
"""

from dataclasses import dataclass, field

from slotbook.config import settings
from slotbook.db.helpers import execute_query, fetch_one, with_db_retry


@dataclass(slots=True)
class SchedulingPreferences:
    learning_enabled: bool = True
    reminder_minutes: list[int] = field(
        default_factory=lambda: [settings.DEFAULT_REMINDER_MINUTES]
    )
    selected_calendars: list[str] = field(default_factory=lambda: ["primary"])


class PreferencesRepository:
    """Reads and writes one preferences row per user; absent rows read as defaults."""

    async def get(self, user_id: str) -> SchedulingPreferences:
        query = """
            SELECT learning_enabled, reminder_minutes, selected_calendars
            FROM user_preferences
            WHERE user_id = %s
        """
        row = await fetch_one(query, (user_id,))
        prefs = SchedulingPreferences()
        if not row:
            return prefs

        if row.get("learning_enabled") is not None:
            prefs.learning_enabled = bool(row["learning_enabled"])
        if row.get("reminder_minutes"):
            prefs.reminder_minutes = [int(m) for m in row["reminder_minutes"]]
        if row.get("selected_calendars"):
            prefs.selected_calendars = list(row["selected_calendars"])
        return prefs

    async def get_learning_enabled(self, user_id: str) -> bool:
        return (await self.get(user_id)).learning_enabled

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def set_learning_enabled(self, user_id: str, enabled: bool) -> None:
        query = """
            INSERT INTO user_preferences (user_id, learning_enabled, updated_at)
            VALUES (%s, %s, NOW())
            ON CONFLICT (user_id)
            DO UPDATE SET learning_enabled = EXCLUDED.learning_enabled, updated_at = NOW()
        """
        await execute_query(query, (user_id, enabled))

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def set_selected_calendars(self, user_id: str, calendar_ids: list[str]) -> None:
        query = """
            INSERT INTO user_preferences (user_id, selected_calendars, updated_at)
            VALUES (%s, %s, NOW())
            ON CONFLICT (user_id)
            DO UPDATE SET selected_calendars = EXCLUDED.selected_calendars, updated_at = NOW()
        """
        await execute_query(query, (user_id, calendar_ids))

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def set_reminder_minutes(self, user_id: str, reminder_minutes: list[int]) -> None:
        query = """
            INSERT INTO user_preferences (user_id, reminder_minutes, updated_at)
            VALUES (%s, %s, NOW())
            ON CONFLICT (user_id)
            DO UPDATE SET reminder_minutes = EXCLUDED.reminder_minutes, updated_at = NOW()
        """
        await execute_query(query, (user_id, reminder_minutes))
