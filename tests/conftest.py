import pytest

from slotbook.auth.verify import auth_dependency
from slotbook.models.domain.calendar_domain import CalendarCredential
from tests.fakes import (
    FakeCalendarService,
    FakePreferencesRepository,
    FakeTokenService,
    InMemorySlotStatsRepository,
    InMemorySyncEventRepository,
)


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123"}

    return _override


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply


@pytest.fixture
def credential():
    return CalendarCredential(user_id="user-123", access_token="stale-token", refresh_token="refresh-1")


@pytest.fixture
def calendar():
    return FakeCalendarService()


@pytest.fixture
def sync_repository():
    return InMemorySyncEventRepository()


@pytest.fixture
def stats_repository():
    return InMemorySlotStatsRepository()


@pytest.fixture
def preferences():
    return FakePreferencesRepository()


@pytest.fixture
def tokens(credential):
    return FakeTokenService(credential)
