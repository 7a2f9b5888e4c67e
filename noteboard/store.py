"""PostgreSQL-backed message store with a capped note collection.

Uses SQLAlchemy async engine with asyncpg driver. Timestamps come from the
database clock so every client sees the same ordering. The store never
caches results: each call re-queries or re-mutates the table.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from noteboard.errors import NoteNotFoundError, StoreError, ValidationError
from noteboard.metrics import EVICTIONS, STORE_DURATION, STORE_OPERATIONS
from noteboard.models import Note, NoteDraft, NotePage, pick_color

logger = logging.getLogger(__name__)

DEFAULT_CAP = 100
DEFAULT_PAGE_SIZE = 12

_NOTE_COLUMNS = "id, name, company, email, body, likes, color, created_at"

_CREATE_TABLE_STMTS = [
    """CREATE TABLE IF NOT EXISTS notes (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        name TEXT NOT NULL,
        company TEXT NOT NULL,
        email TEXT NOT NULL,
        body TEXT NOT NULL,
        likes INTEGER NOT NULL DEFAULT 0 CHECK (likes >= 0),
        color VARCHAR(32) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
    )""",
    "CREATE INDEX IF NOT EXISTS idx_notes_created ON notes(created_at)",
    "CREATE INDEX IF NOT EXISTS idx_notes_eviction ON notes(likes, created_at)",
]

COUNT_SQL = "SELECT COUNT(*) FROM notes"
EVICTION_CANDIDATE_SQL = (
    "SELECT id FROM notes ORDER BY likes ASC, created_at ASC LIMIT 1"
)
DELETE_SQL = "DELETE FROM notes WHERE id = :id"
INSERT_SQL = (
    "INSERT INTO notes (name, company, email, body, likes, color) "
    "VALUES (:name, :company, :email, :body, 0, :color) "
    f"RETURNING {_NOTE_COLUMNS}"
)
FIRST_PAGE_SQL = (
    f"SELECT {_NOTE_COLUMNS} FROM notes ORDER BY created_at DESC LIMIT :limit"
)
NEXT_PAGE_SQL = (
    f"SELECT {_NOTE_COLUMNS} FROM notes "
    "WHERE created_at < :cursor "
    "ORDER BY created_at DESC LIMIT :limit"
)
SET_LIKES_SQL = "UPDATE notes SET likes = :likes WHERE id = :id RETURNING likes"
INCREMENT_LIKES_SQL = "UPDATE notes SET likes = likes + 1 WHERE id = :id RETURNING likes"


def _parse_id(note_id: str) -> Optional[uuid.UUID]:
    """Return the UUID for *note_id*, or None if it cannot name a stored note."""
    try:
        return uuid.UUID(str(note_id))
    except (ValueError, AttributeError):
        return None


def _row_to_note(row: Any) -> Note:
    return Note(
        id=str(row[0]),
        name=row[1],
        company=row[2],
        email=row[3],
        body=row[4],
        likes=row[5],
        color=row[6],
        timestamp=row[7],
    )


class MessageStore:
    """Async PostgreSQL adapter for the note board.

    Owns the admission policy: once ``cap`` notes are stored, the note with
    the fewest likes (oldest first among ties) is evicted before a new one
    is inserted. The count/evict/insert sequence is not serialised against
    concurrent writers, so the cap can be overshot by a small margin.
    """

    def __init__(
        self,
        database_url: str,
        cap: int = DEFAULT_CAP,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> None:
        self._url = database_url
        self._cap = cap
        self._page_size = page_size
        self._engine: Optional[AsyncEngine] = None

    @property
    def available(self) -> bool:
        """Whether the PostgreSQL connection is active."""
        return self._engine is not None

    @property
    def cap(self) -> int:
        return self._cap

    async def init(self) -> None:
        """Create engine, connection pool, and tables.

        Raises StoreError if PostgreSQL is unreachable.
        """
        try:
            self._engine = create_async_engine(self._url, pool_size=5, max_overflow=10)
            async with self._engine.begin() as conn:
                for stmt in _CREATE_TABLE_STMTS:
                    await conn.execute(text(stmt))
            logger.info("PostgreSQL connected — notes table ready")
        except (SQLAlchemyError, OSError) as e:
            self._engine = None
            raise StoreError(f"Message store unavailable: {e}") from e

    async def close(self) -> None:
        """Dispose of the engine and connection pool."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create(self, draft: NoteDraft) -> Note:
        """Insert a note, evicting the least-liked, oldest note when full."""
        draft.validate_for_submit()
        color = pick_color()

        async with self._operation("create") as engine:
            async with engine.begin() as conn:
                result = await conn.execute(text(COUNT_SQL))
                count = result.scalar_one()

                if count >= self._cap:
                    result = await conn.execute(text(EVICTION_CANDIDATE_SQL))
                    victim = result.scalar_one_or_none()
                    if victim is not None:
                        await conn.execute(text(DELETE_SQL), {"id": victim})
                        EVICTIONS.inc()
                        logger.info(
                            "Board full (%d/%d) — evicted note %s",
                            count,
                            self._cap,
                            victim,
                        )

                result = await conn.execute(
                    text(INSERT_SQL),
                    {
                        "name": draft.name,
                        "company": draft.company,
                        "email": draft.email,
                        "body": draft.body,
                        "color": color,
                    },
                )
                note = _row_to_note(result.fetchone())

        logger.info("Saved note %s from %s", note.id, note.email)
        return note

    async def list_notes(
        self,
        cursor: Optional[datetime] = None,
        page_size: Optional[int] = None,
    ) -> NotePage:
        """Return one page of notes, newest first, strictly older than *cursor*.

        ``has_more`` is true whenever the page is full, even if nothing
        remains after it.
        """
        limit = page_size if page_size is not None else self._page_size
        if limit < 1:
            raise ValidationError(f"page_size must be positive, got {limit}")

        async with self._operation("list") as engine:
            async with engine.connect() as conn:
                if cursor is None:
                    result = await conn.execute(text(FIRST_PAGE_SQL), {"limit": limit})
                else:
                    result = await conn.execute(
                        text(NEXT_PAGE_SQL), {"cursor": cursor, "limit": limit}
                    )
                notes = [_row_to_note(row) for row in result.fetchall()]

        return NotePage(notes=notes, has_more=len(notes) == limit)

    async def update_likes(self, note_id: str, likes: int) -> int:
        """Overwrite the like counter. Concurrent writers race; the last one wins."""
        if likes < 0:
            raise ValidationError(f"likes must be non-negative, got {likes}")
        return await self._write_likes(
            "update_likes", note_id, SET_LIKES_SQL, {"likes": likes}
        )

    async def increment_likes(self, note_id: str) -> int:
        """Atomically add one like and return the new value."""
        return await self._write_likes("increment_likes", note_id, INCREMENT_LIKES_SQL)

    async def delete(self, note_id: str) -> bool:
        """Remove a note. Returns False if it was already gone."""
        uid = _parse_id(note_id)
        if uid is None:
            return False

        async with self._operation("delete") as engine:
            async with engine.begin() as conn:
                result = await conn.execute(text(DELETE_SQL), {"id": uid})
                deleted = result.rowcount > 0

        if deleted:
            logger.info("Deleted note %s", note_id)
        else:
            logger.info("Delete of unknown note %s ignored", note_id)
        return deleted

    async def count(self) -> int:
        """Number of stored notes."""
        async with self._operation("count") as engine:
            async with engine.connect() as conn:
                result = await conn.execute(text(COUNT_SQL))
                return result.scalar_one()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _write_likes(
        self,
        operation: str,
        note_id: str,
        sql: str,
        params: Optional[dict[str, Any]] = None,
    ) -> int:
        uid = _parse_id(note_id)
        if uid is None:
            raise NoteNotFoundError(note_id)

        async with self._operation(operation) as engine:
            async with engine.begin() as conn:
                result = await conn.execute(text(sql), {"id": uid, **(params or {})})
                value = result.scalar_one_or_none()

        if value is None:
            raise NoteNotFoundError(note_id)
        return value

    @asynccontextmanager
    async def _operation(self, name: str) -> AsyncIterator[AsyncEngine]:
        """Yield the engine, recording metrics and wrapping database errors."""
        if not self._engine:
            STORE_OPERATIONS.labels(operation=name, status="error").inc()
            raise StoreError("Message store is not connected")

        start = time.perf_counter()
        status = "error"
        try:
            yield self._engine
            status = "success"
        except (SQLAlchemyError, OSError) as e:
            logger.error("Store %s failed: %s", name, e)
            raise StoreError(f"Store {name} failed: {e}") from e
        finally:
            STORE_OPERATIONS.labels(operation=name, status=status).inc()
            STORE_DURATION.labels(operation=name).observe(time.perf_counter() - start)
