"""FastAPI application for the Noteboard service.

Endpoints:
  POST   /notes                      — Submit a note (evicts when the board is full)
  GET    /notes                      — One page of notes, newest first
  PUT    /notes/{note_id}/likes      — Overwrite a note's like counter
  POST   /notes/{note_id}/like       — Atomically add one like
  DELETE /notes/{note_id}            — Delete a note
  POST   /rewrite                    — Run a draft through the rewrite webhook
  POST   /presence                   — Register a client, returns its id
  PUT    /presence/{client_id}       — Heartbeat
  DELETE /presence/{client_id}       — Clean disconnect
  GET    /presence/count             — Number of recently active clients
  GET    /health                     — Store and presence health
  GET    /metrics                    — Prometheus metrics
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Optional

from fastapi import FastAPI, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel
from starlette.middleware.base import BaseHTTPMiddleware

from noteboard.config import settings
from noteboard.errors import (
    NoteNotFoundError,
    RewriteError,
    StoreError,
    ValidationError,
)
from noteboard.metrics import ACTIVE_USERS, HTTP_DURATION, HTTP_REQUESTS
from noteboard.models import DeviceInfo, LikesUpdate, Note, NoteDraft, NotePage
from noteboard.presence import PresenceRegistry, derive_client_id
from noteboard.rewrite import RewriteClient
from noteboard.store import MessageStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger(__name__)

# --- Global instances ---
store = MessageStore(settings.database_url, cap=settings.note_cap, page_size=settings.page_size)
presence = PresenceRegistry(settings.redis_url, window=settings.presence_window)
rewriter = RewriteClient(settings.rewrite_webhook_url, timeout=settings.rewrite_timeout)

_METRICS_EXCLUDE = {"/metrics", "/openapi.json", "/docs", "/redoc"}


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record HTTP request count and duration for Prometheus."""

    async def dispatch(self, request: Request, call_next):
        """Wrap each request with timing and counting."""
        if request.url.path in _METRICS_EXCLUDE:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start

        # Label by route template so note ids don't explode cardinality
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        HTTP_REQUESTS.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        HTTP_DURATION.labels(endpoint=endpoint).observe(elapsed)
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: connect store + presence. Shutdown: release both."""
    logger.info("Connecting to PostgreSQL...")
    try:
        await store.init()
    except StoreError as e:
        logger.error("%s — note endpoints will answer 503", e)
    logger.info("Connecting to Redis...")
    await presence.connect()
    yield
    await presence.close()
    await store.close()
    logger.info("Noteboard shut down.")


app = FastAPI(title="Noteboard", version="1.0.0", lifespan=lifespan)

app.add_middleware(MetricsMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- Error mapping ---


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(NoteNotFoundError)
async def _not_found(request: Request, exc: NoteNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def _store_error(request: Request, exc: StoreError) -> JSONResponse:
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(RewriteError)
async def _rewrite_error(request: Request, exc: RewriteError) -> JSONResponse:
    return JSONResponse(status_code=502, content={"detail": str(exc)})


# --- Request / Response models ---


class DeleteResponse(BaseModel):
    deleted: bool


class RewriteResponse(BaseModel):
    text: str


class PresenceResponse(BaseModel):
    client_id: str


class CountResponse(BaseModel):
    count: int


# --- Notes ---


@app.post("/notes", response_model=Note, status_code=201)
async def create_note(draft: NoteDraft) -> Note:
    """Submit a note. The least-liked, oldest note is evicted when the board is full."""
    return await store.create(draft)


@app.get("/notes", response_model=NotePage)
async def list_notes(
    cursor: Optional[datetime] = None,
    page_size: int = Query(default=settings.page_size, ge=1, le=100),
) -> NotePage:
    """Notes newest first, strictly older than ``cursor`` when given."""
    return await store.list_notes(cursor=cursor, page_size=page_size)


@app.put("/notes/{note_id}/likes", response_model=LikesUpdate)
async def update_likes(note_id: str, body: LikesUpdate) -> LikesUpdate:
    """Overwrite the like counter (last write wins)."""
    return LikesUpdate(likes=await store.update_likes(note_id, body.likes))


@app.post("/notes/{note_id}/like", response_model=LikesUpdate)
async def increment_likes(note_id: str) -> LikesUpdate:
    """Add one like atomically."""
    return LikesUpdate(likes=await store.increment_likes(note_id))


@app.delete("/notes/{note_id}", response_model=DeleteResponse)
async def delete_note(note_id: str) -> DeleteResponse:
    """Delete a note. Unknown ids are not an error."""
    return DeleteResponse(deleted=await store.delete(note_id))


# --- Rewrite ---


@app.post("/rewrite", response_model=RewriteResponse)
async def rewrite(draft: NoteDraft) -> RewriteResponse:
    """Rewrite a draft body through the webhook."""
    return RewriteResponse(text=await rewriter.rewrite(draft))


# --- Presence ---


@app.post("/presence", response_model=PresenceResponse)
async def register_presence(device: Optional[DeviceInfo] = None) -> PresenceResponse:
    """Register a client using the deployment's identity strategy."""
    if settings.presence_identity == "device" and device is None:
        raise ValidationError("Device info is required for device identities")
    client_id = derive_client_id(settings.presence_identity, device)
    await presence.touch(client_id)
    return PresenceResponse(client_id=client_id)


@app.put("/presence/{client_id}", response_model=PresenceResponse)
async def heartbeat(client_id: str) -> PresenceResponse:
    """Refresh a client's liveness record."""
    await presence.touch(client_id)
    return PresenceResponse(client_id=client_id)


@app.delete("/presence/{client_id}", response_model=PresenceResponse)
async def leave(client_id: str) -> PresenceResponse:
    """Remove a client's record immediately."""
    await presence.remove(client_id)
    return PresenceResponse(client_id=client_id)


@app.get("/presence/count", response_model=CountResponse)
async def active_count() -> CountResponse:
    """Number of clients active within the presence window."""
    count = await presence.active_count()
    ACTIVE_USERS.set(count)
    return CountResponse(count=count)


# --- Health / metrics ---


@app.get("/health")
async def health() -> dict[str, Any]:
    """Check health of the message store and presence registry."""
    total_notes = None
    store_status = "unavailable"
    if store.available:
        try:
            total_notes = await store.count()
            store_status = "healthy"
        except StoreError as e:
            logger.warning("Health check count failed: %s", e)

    presence_status = "healthy" if presence.available else "unavailable"
    return {
        "store": store_status,
        "presence": presence_status,
        "total_notes": total_notes,
        "cap": store.cap,
        "overall": (
            "healthy"
            if store_status == "healthy" and presence_status == "healthy"
            else "degraded"
        ),
    }


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
