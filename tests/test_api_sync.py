"""Tests for the sync, cron, webhook and health endpoints.

Requests go through httpx.ASGITransport against a real temp database and
the FakeCalendarProvider.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from src.data.db import utc_iso
from src.ports.calendar_port import CalendarError, EventPage

from conftest import auth

CRON = {"Authorization": "Bearer test-cron-secret"}


def _item(event_id):
    return {
        "id": event_id,
        "summary": "Swim class",
        "start": {"dateTime": "2026-03-04T17:00:00Z"},
        "end": {"dateTime": "2026-03-04T18:00:00Z"},
    }


def _webhook_headers(channel_id="chan-1", state="exists"):
    return {
        "X-Goog-Channel-ID": channel_id,
        "X-Goog-Resource-ID": "res-1",
        "X-Goog-Resource-State": state,
        "X-Goog-Message-Number": "7",
    }


# ---------------------------------------------------------------------------
# POST /api/calendars/sync
# ---------------------------------------------------------------------------


class TestSyncEndpoint:
    @pytest.mark.asyncio
    async def test_requires_user(self, client, household, make_source):
        source = make_source()
        resp = await client.post("/api/calendars/sync", json={"calendar_source_id": source.id})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_rejects_non_uuid(self, client, household):
        resp = await client.post(
            "/api/calendars/sync", json={"calendar_source_id": "not-a-uuid"}, headers=auth(),
        )
        assert resp.status_code == 400
        assert "calendar_source_id" in resp.json()["error"]

    @pytest.mark.asyncio
    async def test_user_without_household(self, client, user_db, make_source):
        user_db.add_user("loner", "Lee")
        source = make_source()
        resp = await client.post(
            "/api/calendars/sync", json={"calendar_source_id": source.id}, headers=auth("loner"),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "User not found or no household"

    @pytest.mark.asyncio
    async def test_other_households_source(self, client, household, make_source):
        foreign = make_source("x@example.com", household_id="other-household")
        resp = await client.post(
            "/api/calendars/sync", json={"calendar_source_id": foreign.id}, headers=auth(),
        )
        assert resp.status_code == 404

    @pytest.mark.asyncio
    async def test_success(self, client, household, make_source, fake_provider, event_db):
        source = make_source()
        fake_provider.pages[None] = EventPage(items=[_item("e1"), _item("e2")], next_sync_token="c1")

        resp = await client.post(
            "/api/calendars/sync", json={"calendar_source_id": source.id}, headers=auth(),
        )
        assert resp.status_code == 200
        assert resp.json() == {
            "success": True, "events_upserted": 2, "events_deleted": 0, "error": None,
        }
        assert len(event_db.list_events(source.id)) == 2

    @pytest.mark.asyncio
    async def test_sync_failure_is_500(self, client, household, make_source, fake_provider):
        source = make_source()

        async def boom(calendar_id, sync_token=None):
            raise CalendarError("backend error", 503)

        fake_provider.list_events = boom
        resp = await client.post(
            "/api/calendars/sync", json={"calendar_source_id": source.id}, headers=auth(),
        )
        assert resp.status_code == 500
        assert resp.json()["success"] is False
        assert "backend error" in resp.json()["error"]

    @pytest.mark.asyncio
    async def test_rate_limited_per_source(self, client, household, make_source, clock):
        source = make_source()
        other = make_source("other@example.com", "Other")
        body = {"calendar_source_id": source.id}

        statuses = [
            (await client.post("/api/calendars/sync", json=body, headers=auth())).status_code
            for _ in range(6)
        ]
        assert statuses == [200] * 5 + [429]

        limited = await client.post("/api/calendars/sync", json=body, headers=auth())
        assert int(limited.headers["Retry-After"]) >= 1
        assert "Too many sync requests" in limited.json()["error"]

        resp = await client.post(
            "/api/calendars/sync", json={"calendar_source_id": other.id}, headers=auth(),
        )
        assert resp.status_code == 200

        clock.now += 61
        resp = await client.post("/api/calendars/sync", json=body, headers=auth())
        assert resp.status_code == 200


# ---------------------------------------------------------------------------
# Cron
# ---------------------------------------------------------------------------


class TestCronSync:
    @pytest.mark.asyncio
    async def test_requires_secret(self, client):
        resp = await client.get("/api/cron/sync")
        assert resp.status_code == 401
        resp = await client.get("/api/cron/sync", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_accepts_bare_secret(self, client):
        resp = await client.get("/api/cron/sync", headers={"Authorization": "test-cron-secret"})
        assert resp.status_code == 200

    @pytest.mark.asyncio
    async def test_missing_secret_config(self, client):
        with patch("src.config.settings.CRON_SECRET", ""):
            resp = await client.get("/api/cron/sync", headers=CRON)
        assert resp.status_code == 500
        assert resp.json() == {"error": "Server misconfigured"}

    @pytest.mark.asyncio
    async def test_syncs_stale_sources(self, client, make_source, fake_provider, event_db):
        good = make_source("good@example.com", "Good")
        bad = make_source("bad@example.com", "Bad")
        fresh = make_source("fresh@example.com", "Fresh")
        event_db.apply_sync_delta(fresh.id, [], [], "c0", utc_iso())

        async def list_events(calendar_id, sync_token=None):
            if calendar_id == bad.external_id:
                raise CalendarError("boom", 500)
            return EventPage(items=[_item("e1")], next_sync_token="c1")

        fake_provider.list_events = list_events
        resp = await client.get("/api/cron/sync", headers=CRON)

        assert resp.status_code == 200
        assert resp.json() == {
            "calendars_synced": 1,
            "total_events_upserted": 1,
            "total_events_deleted": 0,
            "failures": 1,
        }
        assert len(event_db.list_events(good.id)) == 1


class TestCronWebhooks:
    @pytest.mark.asyncio
    async def test_renews_expiring_channels(self, client, make_source, channel_db, fake_provider):
        source = make_source()
        soon = datetime.now(timezone.utc) + timedelta(hours=2)
        channel_db.add_channel(source.id, "chan-old", "res-old", utc_iso(soon))

        resp = await client.get("/api/cron/webhooks", headers=CRON)

        assert resp.status_code == 200
        assert resp.json() == {"renewed": 1, "failed": 0, "skipped": 0}
        assert fake_provider.watched[0][2] == "https://homebase.test/api/webhooks/google"
        assert channel_db.get_by_channel_id("chan-old") is None

    @pytest.mark.asyncio
    async def test_requires_base_url(self, client):
        with patch("src.config.settings.APP_BASE_URL", ""):
            resp = await client.get("/api/cron/webhooks", headers=CRON)
        assert resp.status_code == 500
        assert resp.json() == {"error": "Webhook URL not configured"}

    @pytest.mark.asyncio
    async def test_requires_secret(self, client):
        assert (await client.get("/api/cron/webhooks")).status_code == 401


# ---------------------------------------------------------------------------
# POST /api/webhooks/google
# ---------------------------------------------------------------------------


class TestGoogleWebhook:
    @pytest.mark.asyncio
    async def test_missing_headers(self, client):
        resp = await client.post("/api/webhooks/google", headers={"X-Goog-Channel-ID": "c"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_sync_handshake(self, client, app, make_source, channel_db):
        source = make_source()
        channel_db.add_channel(source.id, "chan-1", "res-1", utc_iso())
        with patch.object(app.state.sync_queue, "enqueue") as enqueue:
            resp = await client.post("/api/webhooks/google", headers=_webhook_headers(state="sync"))
        assert resp.status_code == 200
        assert resp.json() == {"received": True}
        enqueue.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_channel(self, client):
        resp = await client.post("/api/webhooks/google", headers=_webhook_headers("nope"))
        assert resp.status_code == 200
        assert resp.json() == {"received": True, "warning": "Unknown channel"}

    @pytest.mark.asyncio
    async def test_disconnected_source(self, client, make_source, source_db, channel_db):
        source = make_source()
        channel_db.add_channel(source.id, "chan-1", "res-1", utc_iso())
        source_db.mark_disconnected(source.id)
        resp = await client.post("/api/webhooks/google", headers=_webhook_headers())
        assert resp.status_code == 200
        assert resp.json()["warning"] == "Calendar disconnected"

    @pytest.mark.asyncio
    async def test_change_triggers_background_sync(
        self, client, app, make_source, channel_db, fake_provider, event_db,
    ):
        source = make_source()
        channel_db.add_channel(source.id, "chan-1", "res-1", utc_iso())
        fake_provider.pages[None] = EventPage(items=[_item("e1")], next_sync_token="c1")

        resp = await client.post("/api/webhooks/google", headers=_webhook_headers())
        assert resp.status_code == 200
        assert resp.json() == {"received": True, "calendar_source_id": source.id, "queued": True}

        # A second notification while the first is still waiting is coalesced
        again = await client.post("/api/webhooks/google", headers=_webhook_headers())
        assert again.json()["queued"] is False

        app.state.sync_queue.start()
        await app.state.sync_queue.join()
        assert len(event_db.list_events(source.id)) == 1
        assert len(fake_provider.list_calls) == 1


# ---------------------------------------------------------------------------
# GET /api/health
# ---------------------------------------------------------------------------


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
        assert resp.headers["Cache-Control"] == "no-store, no-cache, must-revalidate"
        datetime.fromisoformat(resp.json()["timestamp"])
