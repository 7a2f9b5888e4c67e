"""Client for the remote text-rewriting webhook.

The webhook takes a draft body plus contact fields and answers with a
replacement body, usually HTML. The answer is reduced to plain text.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from noteboard.errors import RewriteError, ValidationError
from noteboard.metrics import REWRITE_REQUESTS
from noteboard.models import NoteDraft

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30


def html_to_text(html: str) -> str:
    """Return the visible text of an HTML fragment, stripped."""
    soup = BeautifulSoup(html, "html.parser")
    return soup.get_text().strip()


class RewriteClient:
    """Posts drafts to the rewrite webhook. No retries."""

    def __init__(
        self,
        webhook_url: str,
        timeout: float = REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = webhook_url
        self._timeout = timeout
        self._transport = transport

    async def rewrite(self, draft: NoteDraft) -> str:
        """Send *draft* to the webhook and return the rewritten body."""
        if not draft.body.strip():
            raise ValidationError("Nothing to rewrite: body is empty")

        payload = {
            "text": draft.body,
            "name": draft.name,
            "company": draft.company,
            "email": draft.email,
            "signature": draft.signature,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.post(self._url, json=payload)
        except httpx.HTTPError as e:
            REWRITE_REQUESTS.labels(status="error").inc()
            logger.error("Rewrite webhook unreachable: %s", e)
            raise RewriteError(str(e) or type(e).__name__) from e

        if resp.is_error:
            REWRITE_REQUESTS.labels(status="error").inc()
            logger.error("Rewrite webhook answered %d", resp.status_code)
            raise RewriteError(f"HTTP error! status: {resp.status_code}")

        REWRITE_REQUESTS.labels(status="success").inc()
        return html_to_text(resp.text)
