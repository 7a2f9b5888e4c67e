"""Tests for noteboard.main — FastAPI routes and error mapping."""

from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from noteboard import main
from noteboard.errors import (
    NoteNotFoundError,
    RewriteError,
    StoreError,
    ValidationError,
)
from noteboard.models import DeviceInfo, Note, NoteDraft, NotePage

NOW = datetime(2025, 3, 1, 12, 30, 15, 123456, tzinfo=UTC)


def _note(likes: int = 0) -> Note:
    return Note(
        id="6f1c7e3a-6a43-4b0e-9e3c-9c2f1d1a2b3c",
        name="Ada",
        company="Engines",
        email="ada@engines.example",
        body="Hello",
        likes=likes,
        color="bg-teal-400",
        timestamp=NOW,
    )


@pytest.fixture()
def api():
    """TestClient with the store, presence registry and rewriter mocked out."""
    store = AsyncMock()
    store.available = True
    store.cap = 100
    presence = AsyncMock()
    presence.available = True
    rewriter = AsyncMock()

    with (
        patch.object(main, "store", store),
        patch.object(main, "presence", presence),
        patch.object(main, "rewriter", rewriter),
    ):
        yield TestClient(main.app), store, presence, rewriter


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


class TestNotes:
    def test_create(self, api) -> None:
        client, store, _, _ = api
        store.create = AsyncMock(return_value=_note())

        resp = client.post(
            "/notes",
            json={
                "name": "Ada",
                "company": "Engines",
                "email": "ada@engines.example",
                "body": "Hello",
                "signature": "ignored",
            },
        )

        assert resp.status_code == 201
        assert resp.json()["likes"] == 0
        draft = store.create.await_args.args[0]
        assert isinstance(draft, NoteDraft)
        assert draft.email == "ada@engines.example"

    def test_create_validation_error(self, api) -> None:
        client, store, _, _ = api
        store.create = AsyncMock(side_effect=ValidationError("Invalid email address"))

        resp = client.post("/notes", json={"name": "A", "email": "nope"})

        assert resp.status_code == 422
        assert "email" in resp.json()["detail"]

    def test_create_store_error(self, api) -> None:
        client, store, _, _ = api
        store.create = AsyncMock(side_effect=StoreError("connection lost"))

        resp = client.post("/notes", json={})

        assert resp.status_code == 503

    def test_list_first_page(self, api) -> None:
        client, store, _, _ = api
        store.list_notes = AsyncMock(return_value=NotePage(notes=[_note()], has_more=False))

        resp = client.get("/notes")

        assert resp.status_code == 200
        body = resp.json()
        assert body["has_more"] is False
        assert len(body["notes"]) == 1
        store.list_notes.assert_awaited_once_with(cursor=None, page_size=12)

    def test_list_with_cursor(self, api) -> None:
        client, store, _, _ = api
        store.list_notes = AsyncMock(return_value=NotePage())

        resp = client.get("/notes", params={"cursor": NOW.isoformat(), "page_size": 5})

        assert resp.status_code == 200
        kwargs = store.list_notes.await_args.kwargs
        assert kwargs["cursor"] == NOW
        assert kwargs["page_size"] == 5

    def test_list_rejects_bad_page_size(self, api) -> None:
        client, _, _, _ = api
        assert client.get("/notes", params={"page_size": 0}).status_code == 422

    def test_update_likes(self, api) -> None:
        client, store, _, _ = api
        store.update_likes = AsyncMock(return_value=4)

        resp = client.put(f"/notes/{_note().id}/likes", json={"likes": 4})

        assert resp.status_code == 200
        assert resp.json() == {"likes": 4}
        store.update_likes.assert_awaited_once_with(_note().id, 4)

    def test_update_likes_unknown(self, api) -> None:
        client, store, _, _ = api
        store.update_likes = AsyncMock(side_effect=NoteNotFoundError("abc"))

        resp = client.put("/notes/abc/likes", json={"likes": 1})

        assert resp.status_code == 404

    def test_update_likes_negative(self, api) -> None:
        client, _, _, _ = api
        assert client.put("/notes/abc/likes", json={"likes": -1}).status_code == 422

    def test_increment(self, api) -> None:
        client, store, _, _ = api
        store.increment_likes = AsyncMock(return_value=8)

        resp = client.post("/notes/abc/like")

        assert resp.json() == {"likes": 8}

    def test_delete(self, api) -> None:
        client, store, _, _ = api
        store.delete = AsyncMock(return_value=False)

        resp = client.delete("/notes/abc")

        assert resp.status_code == 200
        assert resp.json() == {"deleted": False}


# ---------------------------------------------------------------------------
# Rewrite
# ---------------------------------------------------------------------------


class TestRewrite:
    def test_rewrite(self, api) -> None:
        client, _, _, rewriter = api
        rewriter.rewrite = AsyncMock(return_value="Nicer text")

        resp = client.post("/rewrite", json={"body": "text", "signature": "CEO"})

        assert resp.json() == {"text": "Nicer text"}
        assert rewriter.rewrite.await_args.args[0].signature == "CEO"

    def test_rewrite_failure(self, api) -> None:
        client, _, _, rewriter = api
        rewriter.rewrite = AsyncMock(side_effect=RewriteError("HTTP error! status: 500"))

        resp = client.post("/rewrite", json={"body": "text"})

        assert resp.status_code == 502
        assert resp.json()["detail"] == "HTTP error! status: 500"


# ---------------------------------------------------------------------------
# Presence
# ---------------------------------------------------------------------------


class TestPresence:
    def test_register_with_device(self, api) -> None:
        client, _, presence, _ = api
        device = DeviceInfo(user_agent="UA", screen="1280x720")

        with patch.object(main.settings, "presence_identity", "device"):
            resp = client.post("/presence", json=device.model_dump())

        assert resp.status_code == 200
        assert resp.json()["client_id"] == device.fingerprint()
        presence.touch.assert_awaited_once_with(device.fingerprint())

    def test_register_device_required(self, api) -> None:
        client, _, presence, _ = api
        with patch.object(main.settings, "presence_identity", "device"):
            resp = client.post("/presence")
        assert resp.status_code == 422
        presence.touch.assert_not_awaited()

    def test_register_random_identity(self, api) -> None:
        client, _, presence, _ = api
        with patch.object(main.settings, "presence_identity", "random"):
            first = client.post("/presence").json()["client_id"]
            second = client.post("/presence").json()["client_id"]
        assert first != second

    def test_heartbeat_and_leave(self, api) -> None:
        client, _, presence, _ = api

        assert client.put("/presence/abc").status_code == 200
        assert client.delete("/presence/abc").status_code == 200

        presence.touch.assert_awaited_once_with("abc")
        presence.remove.assert_awaited_once_with("abc")

    def test_count(self, api) -> None:
        client, _, presence, _ = api
        presence.active_count = AsyncMock(return_value=3)

        assert client.get("/presence/count").json() == {"count": 3}


# ---------------------------------------------------------------------------
# Health / metrics
# ---------------------------------------------------------------------------


class TestHealth:
    def test_healthy(self, api) -> None:
        client, store, _, _ = api
        store.count = AsyncMock(return_value=42)

        body = client.get("/health").json()

        assert body["overall"] == "healthy"
        assert body["total_notes"] == 42
        assert body["cap"] == 100

    def test_degraded_without_store(self, api) -> None:
        client, store, _, _ = api
        store.available = False

        body = client.get("/health").json()

        assert body["store"] == "unavailable"
        assert body["overall"] == "degraded"

    def test_metrics_endpoint(self, api) -> None:
        client, store, _, _ = api
        store.delete = AsyncMock(return_value=True)
        client.delete("/notes/abc")

        resp = client.get("/metrics")

        assert resp.status_code == 200
        assert "noteboard_http_requests_total" in resp.text
        assert 'endpoint="/notes/{note_id}"' in resp.text


class TestLifespan:
    def test_startup_survives_store_outage(self) -> None:
        store = MagicMock()
        store.init = AsyncMock(side_effect=StoreError("Message store unavailable"))
        store.close = AsyncMock()
        presence = MagicMock()
        presence.connect = AsyncMock()
        presence.close = AsyncMock()

        with (
            patch.object(main, "store", store),
            patch.object(main, "presence", presence),
        ):
            with TestClient(main.app):
                pass

        presence.connect.assert_awaited_once()
        store.close.assert_awaited_once()
