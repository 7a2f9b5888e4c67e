"""Feed controller: client-side state for the note board.

Holds the loaded pages, the sort mode, the draft form and the current
notification in an explicit ``FeedState`` container, and dispatches user
actions to a note backend (MessageStore in-process or NoteboardClient over
HTTP). Local state changes only after the backend confirms a write, so a
failed call leaves the last known-good state untouched.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol

from noteboard.errors import NoteboardError, RewriteError, ValidationError
from noteboard.models import Note, NoteDraft, NotePage, SortMode

logger = logging.getLogger(__name__)

NOTIFICATION_TTL = 3.0
DEFAULT_PAGE_SIZE = 12


class NoteBackend(Protocol):
    async def create(self, draft: NoteDraft) -> Note: ...

    async def list_notes(
        self, cursor: Optional[datetime] = None, page_size: Optional[int] = None
    ) -> NotePage: ...

    async def update_likes(self, note_id: str, likes: int) -> int: ...

    async def increment_likes(self, note_id: str) -> int: ...

    async def delete(self, note_id: str) -> bool: ...


class Rewriter(Protocol):
    async def rewrite(self, draft: NoteDraft) -> str: ...


class PresenceSource(Protocol):
    async def register(self) -> Callable[[], Awaitable[None]]: ...

    def subscribe_active_count(
        self, callback: Callable[[int], None]
    ) -> Callable[[], None]: ...


@dataclass
class FeedState:
    """Everything the presentation layer renders."""

    notes: list[Note] = field(default_factory=list)
    has_more: bool = True
    sort_mode: SortMode = "latest"
    is_loading: bool = False
    is_loading_more: bool = False
    is_submitting: bool = False
    is_rewriting: bool = False
    draft: NoteDraft = field(default_factory=NoteDraft)
    notification: str = ""
    active_users: int = 1


class Notifier:
    """Single transient message, dismissed after ``ttl`` seconds."""

    def __init__(self, state: FeedState, ttl: float = NOTIFICATION_TTL) -> None:
        self._state = state
        self._ttl = ttl
        self._handle: Optional[asyncio.TimerHandle] = None

    def show(self, message: str) -> None:
        self._cancel()
        self._state.notification = message
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._ttl, self._dismiss)

    def close(self) -> None:
        self._cancel()

    def _dismiss(self) -> None:
        self._state.notification = ""
        self._handle = None

    def _cancel(self) -> None:
        if self._handle:
            self._handle.cancel()
            self._handle = None


def sort_notes(notes: list[Note], mode: SortMode) -> list[Note]:
    """Display order for *notes*. Stable with respect to the loaded order."""
    if mode == "likes":
        return sorted(notes, key=lambda n: n.likes, reverse=True)
    if mode == "latest":
        return sorted(notes, key=lambda n: n.timestamp, reverse=True)
    raise ValueError(f"Unknown sort mode: {mode!r}")


class FeedController:
    """Dispatches feed actions and keeps ``state`` consistent with the backend."""

    def __init__(
        self,
        store: NoteBackend,
        rewriter: Optional[Rewriter] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        notification_ttl: float = NOTIFICATION_TTL,
        atomic_likes: bool = False,
    ) -> None:
        self.state = FeedState()
        self._store = store
        self._rewriter = rewriter
        self._page_size = page_size
        self._atomic_likes = atomic_likes
        self._notifier = Notifier(self.state, notification_ttl)
        self._alive = True
        self._generation = 0
        self._presence_teardown: Optional[Callable[[], Awaitable[None]]] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def alive(self) -> bool:
        return self._alive

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_initial(self) -> bool:
        """Replace the loaded notes with the first page."""
        self._generation += 1
        self.state.is_loading = True
        try:
            page = await self._store.list_notes(page_size=self._page_size)
        except NoteboardError as e:
            logger.error("Error fetching messages: %s", e)
            self._notify("Failed to load messages!")
            return False
        finally:
            self.state.is_loading = False

        if not self._alive:
            return False
        self.state.notes = list(page.notes)
        self.state.has_more = page.has_more
        return True

    async def load_more(self) -> bool:
        """Append the next page. Returns False if nothing was loaded."""
        if not self.state.has_more or self.state.is_loading_more:
            return False

        generation = self._generation
        cursor = self.state.notes[-1].timestamp if self.state.notes else None
        self.state.is_loading_more = True
        try:
            page = await self._store.list_notes(cursor=cursor, page_size=self._page_size)
        except NoteboardError as e:
            logger.error("Error fetching messages: %s", e)
            self._notify("Failed to load messages!")
            return False
        finally:
            self.state.is_loading_more = False

        if not self._alive:
            return False
        if generation != self._generation:
            logger.info("Discarding page fetched before the feed was reloaded")
            return False
        self.state.notes = self.state.notes + list(page.notes)
        self.state.has_more = page.has_more
        return True

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def submit(self, draft: Optional[NoteDraft] = None) -> Optional[Note]:
        """Validate and post a draft; the saved note goes to the front of the feed."""
        draft = draft if draft is not None else self.state.draft

        if draft.missing_fields():
            self._notify("Please fill in all required fields!")
            return None
        if "@" not in draft.email:
            self._notify("Please enter a valid email address!")
            return None

        self.state.is_submitting = True
        try:
            note = await self._store.create(draft)
        except NoteboardError as e:
            logger.error("Error saving message: %s", e)
            self._notify("Failed to post message!")
            return None
        finally:
            self.state.is_submitting = False

        if not self._alive:
            return None
        self.state.notes = [note] + self.state.notes
        self.state.draft = NoteDraft()
        self._notify("Message posted successfully!")
        return note

    async def like(self, note_id: str) -> bool:
        """Add one like, updating local state once the backend confirms."""
        note = self._find(note_id)
        if note is None:
            return False

        new_likes = note.likes + 1
        try:
            if self._atomic_likes:
                new_likes = await self._store.increment_likes(note_id)
            else:
                await self._store.update_likes(note_id, new_likes)
        except NoteboardError as e:
            logger.error("Error updating likes: %s", e)
            self._notify("Failed to update likes!")
            return False

        if not self._alive:
            return False
        self.state.notes = [
            n.model_copy(update={"likes": new_likes}) if n.id == note_id else n
            for n in self.state.notes
        ]
        self._notify("Thanks for your like!")
        return True

    async def delete(self, note_id: str) -> bool:
        """Delete a note and drop it from the loaded feed."""
        try:
            await self._store.delete(note_id)
        except NoteboardError as e:
            logger.error("Error deleting message: %s", e)
            self._notify("Failed to delete message!")
            return False

        if not self._alive:
            return False
        self.state.notes = [n for n in self.state.notes if n.id != note_id]
        self._notify("Message deleted successfully!")
        return True

    async def rewrite_draft(self) -> bool:
        """Replace the draft body with the rewrite webhook's version."""
        draft = self.state.draft
        if not draft.body.strip():
            self._notify("Please enter some text to rephrase!")
            return False

        self.state.is_rewriting = True
        try:
            if self._rewriter is None:
                raise RewriteError("rewriting is not configured")
            body = await self._rewriter.rewrite(draft)
        except (RewriteError, ValidationError) as e:
            logger.error("Error rephrasing: %s", e)
            self._notify(f"Failed to rephrase: {e}")
            return False
        finally:
            self.state.is_rewriting = False

        if not self._alive:
            return False
        self.state.draft = self.state.draft.model_copy(update={"body": body})
        self._notify("Text rephrased successfully!")
        return True

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def set_sort(self, mode: SortMode) -> None:
        if mode not in ("latest", "likes"):
            raise ValueError(f"Unknown sort mode: {mode!r}")
        self.state.sort_mode = mode

    def sorted_notes(self) -> list[Note]:
        return sort_notes(self.state.notes, self.state.sort_mode)

    # ------------------------------------------------------------------
    # Presence & lifecycle
    # ------------------------------------------------------------------

    async def attach_presence(self, tracker: PresenceSource) -> bool:
        """Register this client and mirror the active count into state."""
        try:
            self._presence_teardown = await tracker.register()
        except NoteboardError as e:
            logger.warning("Presence unavailable: %s", e)
            return False
        self._unsubscribe = tracker.subscribe_active_count(self._on_active_count)
        return True

    async def close(self) -> None:
        """Stop acting on late responses and release timers and presence."""
        self._alive = False
        self._notifier.close()
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if self._presence_teardown:
            await self._presence_teardown()
            self._presence_teardown = None

    def _on_active_count(self, count: int) -> None:
        if self._alive:
            self.state.active_users = count

    def _notify(self, message: str) -> None:
        if self._alive:
            self._notifier.show(message)

    def _find(self, note_id: str) -> Optional[Note]:
        for note in self.state.notes:
            if note.id == note_id:
                return note
        return None
