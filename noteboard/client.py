"""Async HTTP client for the Noteboard API.

Implements the same contract as MessageStore (notes), PresenceRegistry
(presence records) and RewriteClient (rewrite) so a FeedController or a
PresenceTracker can run against a remote service. Errors are raised as
the noteboard exception types matching the response status.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

import httpx

from noteboard.config import Settings
from noteboard.errors import (
    NoteboardError,
    NoteNotFoundError,
    RewriteError,
    StoreError,
    ValidationError,
)
from noteboard.feed import FeedController
from noteboard.models import DeviceInfo, Note, NoteDraft, NotePage
from noteboard.presence import PresenceTracker, local_device_info

logger = logging.getLogger(__name__)

_TIMEOUT = 10  # seconds
_REWRITE_TIMEOUT = 60  # the webhook may call a slow language model


def _detail(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text
    if isinstance(data, dict):
        return str(data.get("detail", data))
    return str(data)


class NoteboardClient:
    """Thin async client. One HTTP connection pool per call."""

    def __init__(
        self,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = _TIMEOUT,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def create(self, draft: NoteDraft) -> Note:
        """POST /notes"""
        data = await self._request("POST", "/notes", json=draft.model_dump())
        return Note.model_validate(data)

    async def list_notes(
        self,
        cursor: Optional[datetime] = None,
        page_size: Optional[int] = None,
    ) -> NotePage:
        """GET /notes"""
        params: dict[str, Any] = {}
        if cursor is not None:
            params["cursor"] = cursor.isoformat()
        if page_size is not None:
            params["page_size"] = page_size
        data = await self._request("GET", "/notes", params=params)
        return NotePage.model_validate(data)

    async def update_likes(self, note_id: str, likes: int) -> int:
        """PUT /notes/{note_id}/likes"""
        data = await self._request(
            "PUT", f"/notes/{note_id}/likes", json={"likes": likes}, note_id=note_id
        )
        return data["likes"]

    async def increment_likes(self, note_id: str) -> int:
        """POST /notes/{note_id}/like"""
        data = await self._request("POST", f"/notes/{note_id}/like", note_id=note_id)
        return data["likes"]

    async def delete(self, note_id: str) -> bool:
        """DELETE /notes/{note_id}"""
        data = await self._request("DELETE", f"/notes/{note_id}")
        return data["deleted"]

    # ------------------------------------------------------------------
    # Rewrite
    # ------------------------------------------------------------------

    async def rewrite(self, draft: NoteDraft) -> str:
        """POST /rewrite"""
        try:
            data = await self._request(
                "POST", "/rewrite", json=draft.model_dump(), timeout=_REWRITE_TIMEOUT
            )
        except ValidationError:
            raise
        except NoteboardError as e:
            raise RewriteError(str(e)) from e
        return data["text"]

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    async def register(self, device: Optional[DeviceInfo] = None) -> str:
        """POST /presence — let the server derive the client id."""
        body = device.model_dump() if device is not None else None
        data = await self._request("POST", "/presence", json=body)
        return data["client_id"]

    async def touch(self, client_id: str) -> bool:
        """PUT /presence/{client_id}"""
        await self._request("PUT", f"/presence/{client_id}")
        return True

    async def remove(self, client_id: str) -> bool:
        """DELETE /presence/{client_id}"""
        await self._request("DELETE", f"/presence/{client_id}")
        return True

    async def active_count(self) -> int:
        """GET /presence/count"""
        data = await self._request("GET", "/presence/count")
        return data["count"]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        note_id: Optional[str] = None,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> Any:
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                transport=self._transport,
                timeout=timeout or self._timeout,
            ) as client:
                resp = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise StoreError(f"{method} {path} failed: {e}") from e

        if resp.status_code == 404 and note_id is not None:
            raise NoteNotFoundError(note_id)
        if resp.status_code == 422:
            raise ValidationError(_detail(resp))
        if resp.is_error:
            raise StoreError(f"{method} {path} answered {resp.status_code}: {_detail(resp)}")
        return resp.json()


def remote_feed(cfg: Settings) -> tuple[FeedController, PresenceTracker]:
    """Build a FeedController and PresenceTracker that talk to the API at ``cfg.api_url``."""
    client = NoteboardClient(cfg.api_url)
    feed = FeedController(
        client,
        rewriter=client,
        page_size=cfg.page_size,
        notification_ttl=cfg.notification_ttl,
        atomic_likes=cfg.atomic_likes,
    )
    # The server assigns the presence id with its own identity strategy
    tracker = PresenceTracker(
        client,
        None,
        heartbeat_interval=cfg.presence_heartbeat_interval,
        poll_interval=cfg.presence_poll_interval,
        device=local_device_info(),
    )
    return feed, tracker
