"""Shared test fixtures and configuration.

Sets up fake environment variables before any src import, and provides
temp-file databases, a seeded household and a fake calendar provider.
"""

import os
import tempfile

# Patch env vars BEFORE any src imports
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-0123456789abcdef")
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client-id.apps.googleusercontent.com")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GOOGLE_REDIRECT_URI", "http://localhost:8000/api/google/callback")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("APP_BASE_URL", "https://homebase.test")
os.environ.setdefault(
    "DATABASE_PATH", os.path.join(tempfile.mkdtemp(prefix="homebase-tests-"), "default.db"),
)

from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio

from src.core.vault import encrypt
from src.data.db import (
    CalendarSourceDB,
    ChoreDB,
    EventDB,
    UserDB,
    WebhookChannelDB,
    utc_iso,
)
from src.ports.calendar_port import EventPage, SyncTokenExpiredError, WatchResponse

HOUSEHOLD_ID = "household-1"
USER_ID = "user-1"


class FakeCalendarProvider:
    """In-memory CalendarProviderPort.

    `pages` maps a sync token (None for a full listing) to the EventPage to
    return; tokens listed in `expired_tokens` raise SyncTokenExpiredError.
    """

    def __init__(self):
        self.pages = {}
        self.expired_tokens = set()
        self.calendars = [{"id": "primary@example.com", "summary": "Family"}]
        self.list_calls = []
        self.inserted = []
        self.watched = []
        self.stopped = []
        self.fail_watch = False
        self.fail_stop = False

    async def list_calendars(self):
        return list(self.calendars)

    async def list_events(self, calendar_id, sync_token=None):
        self.list_calls.append((calendar_id, sync_token))
        if sync_token in self.expired_tokens:
            raise SyncTokenExpiredError("expired", 410)
        return self.pages.get(sync_token, EventPage(items=[], next_sync_token=sync_token))

    async def insert_event(self, calendar_id, body):
        created = dict(body, id=f"created-{len(self.inserted) + 1}", status="confirmed")
        self.inserted.append((calendar_id, body))
        return created

    async def watch_events(self, calendar_id, channel_id, address):
        from src.ports.calendar_port import CalendarError

        if self.fail_watch:
            raise CalendarError("watch refused", 403)
        self.watched.append((calendar_id, channel_id, address))
        return WatchResponse(
            resource_id=f"resource-{len(self.watched)}",
            expiration=datetime.now(timezone.utc) + timedelta(days=7),
        )

    async def stop_channel(self, channel_id, resource_id):
        from src.ports.calendar_port import CalendarError

        if self.fail_stop:
            raise CalendarError("stop failed", 500)
        self.stopped.append((channel_id, resource_id))


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_homebase.db")


@pytest.fixture
def user_db(tmp_db_path):
    return UserDB(db_path=tmp_db_path)


@pytest.fixture
def source_db(tmp_db_path):
    return CalendarSourceDB(db_path=tmp_db_path)


@pytest.fixture
def event_db(tmp_db_path):
    return EventDB(db_path=tmp_db_path)


@pytest.fixture
def channel_db(tmp_db_path):
    return WebhookChannelDB(db_path=tmp_db_path)


@pytest.fixture
def chore_db(tmp_db_path):
    return ChoreDB(db_path=tmp_db_path)


@pytest.fixture
def household(user_db):
    """A user who belongs to HOUSEHOLD_ID."""
    return user_db.add_user(USER_ID, "Dana", household_id=HOUSEHOLD_ID)


@pytest.fixture
def fake_provider():
    return FakeCalendarProvider()


@pytest.fixture
def provider_factory(fake_provider):
    """A ProviderFactory that always hands out fake_provider."""
    calls = []

    def factory(credentials, provider):
        calls.append((credentials, provider))
        return fake_provider

    factory.calls = calls
    return factory


@pytest.fixture
def make_source(source_db):
    """Create a connected Google calendar source with valid tokens."""

    def _make(
        external_id="primary@example.com",
        name="Family",
        enabled=True,
        household_id=HOUSEHOLD_ID,
        token_expiry=None,
    ):
        if token_expiry is None:
            token_expiry = datetime.now(timezone.utc) + timedelta(hours=1)
        sources = source_db.upsert_sources(
            household_id,
            USER_ID,
            [{"external_id": external_id, "name": name, "color": "#4285f4"}],
            access_token_encrypted=encrypt("access-token"),
            refresh_token_encrypted=encrypt("refresh-token"),
            token_expiry=utc_iso(token_expiry),
        )
        source = next(s for s in sources if s.external_id == external_id)
        if enabled:
            enabled_ids = [s.id for s in source_db.list_sources(household_id) if s.enabled]
            source_db.set_enabled(household_id, enabled_ids + [source.id])
        return source_db.get_source(source.id)

    return _make


# ---------------------------------------------------------------------------
# HTTP API
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock for RateLimiter."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app(tmp_db_path, provider_factory, clock):
    """The FastAPI app on the test database and fake provider.

    ASGITransport does not run the lifespan, so the sync job queue worker
    is only running in tests that start it.
    """
    from src.api.app import create_app
    from src.core.rate_limiter import RateLimiter

    return create_app(
        db_path=tmp_db_path,
        provider_factory=provider_factory,
        rate_limiter=RateLimiter(max_requests=5, window_seconds=60, clock=clock),
    )


@pytest_asyncio.fixture
async def client(app):
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://test",
    ) as c:
        yield c
    await app.state.sync_queue.stop()


def auth(user_id=USER_ID):
    """Headers the auth proxy would add for a signed-in user."""
    return {"X-User-Id": user_id}
