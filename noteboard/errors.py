"""Exception hierarchy shared by the store, client, controller and API."""

from __future__ import annotations


class NoteboardError(Exception):
    """Base class for every error raised by noteboard."""


class ValidationError(NoteboardError):
    """A required field is missing or malformed. Raised before any remote call."""


class StoreError(NoteboardError):
    """The backing store failed to complete a read or write."""


class NoteNotFoundError(StoreError):
    """No note exists with the given id."""

    def __init__(self, note_id: str) -> None:
        super().__init__(f"Note not found: {note_id}")
        self.note_id = note_id


class RewriteError(NoteboardError):
    """The rewrite webhook returned a non-success response or was unreachable."""
