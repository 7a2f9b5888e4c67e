"""Pydantic models for notes, drafts, pages and presence identities."""

from __future__ import annotations

import hashlib
import random
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from noteboard.errors import ValidationError

COLORS: tuple[str, ...] = (
    "bg-pink-400",
    "bg-purple-400",
    "bg-blue-400",
    "bg-green-400",
    "bg-yellow-400",
    "bg-red-400",
    "bg-indigo-400",
    "bg-teal-400",
)

REQUIRED_FIELDS = ("name", "company", "email", "body")

SortMode = Literal["latest", "likes"]


def pick_color() -> str:
    """Draw a palette color uniformly at random."""
    return random.choice(COLORS)


class Note(BaseModel):
    """A persisted note as returned by the store."""

    id: str
    name: str
    company: str
    email: str
    body: str
    likes: int = Field(default=0, ge=0)
    color: str
    timestamp: datetime


class NoteDraft(BaseModel):
    """The submission form. ``signature`` only enriches rewrite requests."""

    name: str = ""
    company: str = ""
    email: str = ""
    body: str = ""
    signature: str = ""

    def missing_fields(self) -> list[str]:
        """Names of required fields that are empty or whitespace."""
        return [f for f in REQUIRED_FIELDS if not getattr(self, f).strip()]

    def validate_for_submit(self) -> None:
        """Raise ValidationError unless the draft can be submitted."""
        missing = self.missing_fields()
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if "@" not in self.email:
            raise ValidationError(f"Invalid email address: {self.email!r}")


class NotePage(BaseModel):
    """One page of the feed, newest first."""

    notes: list[Note] = Field(default_factory=list)
    has_more: bool = False

    @property
    def cursor(self) -> datetime | None:
        """Timestamp of the last note, to be passed to the next list call."""
        return self.notes[-1].timestamp if self.notes else None


class LikesUpdate(BaseModel):
    """Request/response body for like counter writes."""

    likes: int = Field(..., ge=0)


class DeviceInfo(BaseModel):
    """Device characteristics used to derive a stable presence identity."""

    user_agent: str = ""
    color_depth: int = 0
    screen: str = ""  # "WxH"
    timezone_offset: int = 0
    language: str = ""
    platform: str = ""

    def fingerprint(self) -> str:
        """First 16 hex chars of SHA-256 over the '|'-joined characteristics."""
        raw = "|".join(
            [
                self.user_agent,
                str(self.color_depth),
                self.screen,
                str(self.timezone_offset),
                self.language,
                self.platform,
            ]
        )
        return hashlib.sha256(raw.encode()).hexdigest()[:16]
