"""Tests for /api/calendars/sources and /api/calendars/events."""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from src.data.db import utc_iso
from src.data.models import Event
from src.integrations.google_auth import TokenRevokedError
from src.ports.calendar_port import CalendarError

from conftest import HOUSEHOLD_ID, auth


def _event(source_id, external_id, start, title="Dinner"):
    return Event(
        calendar_source_id=source_id,
        external_id=external_id,
        title=title,
        start_time=utc_iso(start),
        end_time=utc_iso(start + timedelta(hours=1)),
        raw_data={"id": external_id},
    )


class TestSources:
    @pytest.mark.asyncio
    async def test_list_hides_tokens(self, client, household, make_source):
        make_source("a@example.com", "A")
        make_source("b@example.com", "B", enabled=False)

        resp = await client.get("/api/calendars/sources", headers=auth())
        assert resp.status_code == 200
        sources = resp.json()["sources"]
        assert [(s["name"], s["enabled"]) for s in sources] == [("A", True), ("B", False)]
        assert "refresh_token_encrypted" not in sources[0]

    @pytest.mark.asyncio
    async def test_enable_registers_channel_and_queues_sync(
        self, client, app, household, make_source, fake_provider, channel_db,
    ):
        a = make_source("a@example.com", "A")
        b = make_source("b@example.com", "B", enabled=False)
        channel_db.add_channel(a.id, "chan-a", "res-a", utc_iso())

        with patch.object(app.state.sync_queue, "enqueue") as enqueue:
            resp = await client.patch(
                "/api/calendars/sources", json={"enabled_ids": [b.id]}, headers=auth(),
            )

        assert resp.status_code == 200
        assert resp.json() == {"success": True, "enabled": [b.id], "disabled": [a.id]}
        enqueue.assert_called_once_with(b.id)
        assert fake_provider.watched[0][0] == b.external_id
        assert len(channel_db.list_for_source(b.id)) == 1
        assert channel_db.list_for_source(a.id) == []
        assert fake_provider.stopped == [("chan-a", "res-a")]

    @pytest.mark.asyncio
    async def test_enable_survives_watch_failure(
        self, client, app, household, make_source, fake_provider,
    ):
        source = make_source(enabled=False)
        fake_provider.fail_watch = True
        with patch.object(app.state.sync_queue, "enqueue") as enqueue:
            resp = await client.patch(
                "/api/calendars/sources", json={"enabled_ids": [source.id]}, headers=auth(),
            )
        assert resp.status_code == 200
        enqueue.assert_called_once_with(source.id)

    @pytest.mark.asyncio
    async def test_delete(self, client, household, make_source, source_db, channel_db, fake_provider):
        source = make_source()
        channel_db.add_channel(source.id, "chan-1", "res-1", utc_iso())

        resp = await client.delete(f"/api/calendars/sources/{source.id}", headers=auth())

        assert resp.status_code == 200
        assert resp.json() == {"success": True}
        assert source_db.get_source(source.id) is None
        assert fake_provider.stopped == [("chan-1", "res-1")]

    @pytest.mark.asyncio
    async def test_delete_other_household(self, client, household, make_source, source_db):
        foreign = make_source("x@example.com", household_id="other-household")
        resp = await client.delete(f"/api/calendars/sources/{foreign.id}", headers=auth())
        assert resp.status_code == 404
        assert source_db.get_source(foreign.id) is not None


class TestListEvents:
    @pytest.mark.asyncio
    async def test_range_query(self, client, household, make_source, event_db):
        source = make_source()
        day = datetime(2026, 3, 2, tzinfo=timezone.utc)
        event_db.insert_event(_event(source.id, "in", day + timedelta(hours=18)))
        event_db.insert_event(_event(source.id, "out", day + timedelta(days=3)))

        resp = await client.get(
            "/api/calendars/events",
            params={"start_date": "2026-03-02T00:00:00Z", "end_date": "2026-03-03T00:00:00Z"},
            headers=auth(),
        )
        assert resp.status_code == 200
        events = resp.json()["events"]
        assert [e["external_id"] for e in events] == ["in"]
        assert "raw_data" not in events[0]

    @pytest.mark.asyncio
    async def test_filter_by_source(self, client, household, make_source, event_db):
        a = make_source("a@example.com", "A")
        b = make_source("b@example.com", "B")
        start = datetime(2026, 3, 2, 12, tzinfo=timezone.utc)
        event_db.insert_event(_event(a.id, "a1", start))
        event_db.insert_event(_event(b.id, "b1", start))

        resp = await client.get(
            "/api/calendars/events",
            params={
                "start_date": "2026-03-02", "end_date": "2026-03-03",
                "calendar_source_ids": b.id,
            },
            headers=auth(),
        )
        assert [e["external_id"] for e in resp.json()["events"]] == ["b1"]

    @pytest.mark.asyncio
    async def test_dates_required(self, client, household):
        resp = await client.get("/api/calendars/events", headers=auth())
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_bad_date(self, client, household):
        resp = await client.get(
            "/api/calendars/events",
            params={"start_date": "next tuesday", "end_date": "2026-03-03"},
            headers=auth(),
        )
        assert resp.status_code == 400
        assert "start_date" in resp.json()["error"]


class TestCreateEvent:
    BODY = {
        "title": "Pizza night",
        "start_time": "2026-03-06T18:00:00+00:00",
        "end_time": "2026-03-06T19:00:00+00:00",
    }

    @pytest.mark.asyncio
    async def test_creates_on_first_writable_calendar(
        self, client, household, make_source, fake_provider, event_db,
    ):
        make_source("off@example.com", "Aaa disabled", enabled=False)
        target = make_source("family@example.com", "Family")

        resp = await client.post("/api/calendars/events", json=self.BODY, headers=auth())

        assert resp.status_code == 201
        body = resp.json()
        assert body["google_event_id"] == "created-1"
        assert body["event"]["title"] == "Pizza night"
        assert fake_provider.inserted[0][0] == "family@example.com"
        assert event_db.get_by_external_id(target.id, "created-1") is not None

    @pytest.mark.asyncio
    async def test_explicit_calendar(self, client, household, make_source, fake_provider):
        make_source("a@example.com", "A")
        b = make_source("b@example.com", "B")
        resp = await client.post(
            "/api/calendars/events",
            json={**self.BODY, "calendar_source_id": b.id},
            headers=auth(),
        )
        assert resp.status_code == 201
        assert fake_provider.inserted[0][0] == "b@example.com"

    @pytest.mark.asyncio
    async def test_no_writable_calendar(self, client, household, make_source):
        make_source(enabled=False)
        resp = await client.post("/api/calendars/events", json=self.BODY, headers=auth())
        assert resp.status_code == 400
        assert resp.json()["error"].startswith("No writable calendar available")

    @pytest.mark.asyncio
    async def test_blank_title(self, client, household, make_source):
        make_source()
        resp = await client.post(
            "/api/calendars/events", json={**self.BODY, "title": "   "}, headers=auth(),
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_provider_failure(self, client, household, make_source, fake_provider):
        make_source()

        async def refuse(calendar_id, body):
            raise CalendarError("forbidden", 403)

        fake_provider.insert_event = refuse
        resp = await client.post("/api/calendars/events", json=self.BODY, headers=auth())
        assert resp.status_code == 500
        assert resp.json() == {"error": "Failed to create event"}

    @pytest.mark.asyncio
    async def test_revoked_token_disconnects(self, client, household, make_source, source_db):
        source = make_source(token_expiry=datetime.now(timezone.utc) - timedelta(hours=1))
        with patch(
            "src.integrations.google_auth.refresh_access_token",
            side_effect=TokenRevokedError("revoked"),
        ):
            resp = await client.post("/api/calendars/events", json=self.BODY, headers=auth())

        assert resp.status_code == 500
        stored = source_db.get_source(source.id)
        assert stored.enabled is False
        assert stored.refresh_token_encrypted is None
        assert source_db.list_sources(HOUSEHOLD_ID)[0].id == source.id
