"""Redis-backed presence tracking.

Each connected client owns one member of a sorted set, scored with the
Redis server clock at its last heartbeat. A client counts as active while
its score is inside the activity window. Redis being unavailable is
handled gracefully: presence degrades to a zero count.
"""

from __future__ import annotations

import asyncio
import locale
import logging
import platform
import time
import uuid
from typing import Awaitable, Callable, Optional, Protocol, cast

import redis.asyncio as aioredis

from noteboard.models import DeviceInfo

logger = logging.getLogger(__name__)

PRESENCE_KEY = "noteboard:presence"
DEFAULT_WINDOW = 300  # 5 minutes
DEFAULT_HEARTBEAT_INTERVAL = 60
DEFAULT_POLL_INTERVAL = 5

IDENTITY_STRATEGIES = ("random", "device")


class PresenceBackend(Protocol):
    async def touch(self, client_id: str) -> bool: ...

    async def remove(self, client_id: str) -> bool: ...

    async def active_count(self) -> int: ...


class EnrollingBackend(PresenceBackend, Protocol):
    async def register(self, device: Optional[DeviceInfo] = None) -> str: ...


def local_device_info() -> DeviceInfo:
    """Describe the machine this process runs on."""
    lang = locale.getlocale()[0] or ""
    return DeviceInfo(
        user_agent=f"noteboard-python/{platform.python_version()}",
        screen="",
        timezone_offset=time.timezone // 60,
        language=lang,
        platform=platform.platform(),
    )


def derive_client_id(strategy: str, device: Optional[DeviceInfo] = None) -> str:
    """Build a presence identity: a random session token or a device fingerprint."""
    if strategy == "random":
        return uuid.uuid4().hex
    if strategy == "device":
        return (device or local_device_info()).fingerprint()
    raise ValueError(
        f"Unknown presence identity strategy {strategy!r}; "
        f"expected one of {IDENTITY_STRATEGIES}"
    )


class PresenceRegistry:
    """Async Redis client holding one liveness record per client."""

    def __init__(self, redis_url: str, window: float = DEFAULT_WINDOW) -> None:
        self._redis_url = redis_url
        self._window = window
        self._client: Optional[aioredis.Redis] = None

    @property
    def available(self) -> bool:
        """Whether the Redis connection is active."""
        return self._client is not None

    async def connect(self) -> None:
        """Connect to Redis. Non-fatal if Redis is unavailable."""
        try:
            self._client = aioredis.from_url(self._redis_url, decode_responses=True)
            await self._client.ping()
            logger.info("Presence registry connected: %s", self._redis_url)
        except Exception as e:
            logger.warning("Redis unavailable, presence disabled: %s", e)
            self._client = None

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def touch(self, client_id: str) -> bool:
        """Create or refresh a client's liveness record."""
        if not self._client:
            return False

        try:
            now = await self._server_time()
            await self._client.zadd(PRESENCE_KEY, {client_id: now})
            return True
        except Exception as e:
            logger.warning("Presence heartbeat failed for %s: %s", client_id, e)
            return False

    async def remove(self, client_id: str) -> bool:
        """Drop a client's record on clean disconnect."""
        if not self._client:
            return False

        try:
            await self._client.zrem(PRESENCE_KEY, client_id)
            return True
        except Exception as e:
            logger.warning("Presence removal failed for %s: %s", client_id, e)
            return False

    async def active_count(self) -> int:
        """Number of clients seen within the activity window."""
        if not self._client:
            return 0

        try:
            cutoff = await self._server_time() - self._window
            await self._client.zremrangebyscore(PRESENCE_KEY, "-inf", cutoff)
            count = await self._client.zcount(PRESENCE_KEY, f"({cutoff}", "+inf")
            return max(0, int(count))
        except Exception as e:
            logger.warning("Presence count failed: %s", e)
            return 0

    async def _server_time(self) -> float:
        seconds, micros = await self._client.time()
        return seconds + micros / 1_000_000


class PresenceTracker:
    """Keeps one client registered and reports the live active count.

    ``registry`` is a PresenceRegistry in-process, or a NoteboardClient when
    talking to the HTTP API. Without a ``client_id`` the identity is
    assigned by the registry's ``register(device)`` on first registration,
    so the server's identity strategy applies.
    """

    def __init__(
        self,
        registry: PresenceBackend,
        client_id: Optional[str],
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        device: Optional[DeviceInfo] = None,
    ) -> None:
        self.registry = registry
        self.client_id = client_id
        self.device = device
        self._heartbeat_interval = heartbeat_interval
        self._poll_interval = poll_interval

    @classmethod
    def for_strategy(
        cls,
        registry: PresenceBackend,
        strategy: str,
        device: Optional[DeviceInfo] = None,
        **kwargs,
    ) -> PresenceTracker:
        return cls(registry, derive_client_id(strategy, device), **kwargs)

    async def register(self) -> Callable[[], Awaitable[None]]:
        """Record this client and start heartbeats.

        Returns an async teardown that stops the heartbeat and removes
        the record.
        """
        if self.client_id is None:
            enrolling = cast(EnrollingBackend, self.registry)
            self.client_id = await enrolling.register(self.device)
        else:
            await self.registry.touch(self.client_id)
        task = asyncio.create_task(self._heartbeat())
        logger.info("Presence registered for %s", self.client_id)

        async def teardown() -> None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            try:
                await self.registry.remove(self.client_id)
            except Exception as e:
                logger.warning("Presence removal failed: %s", e)
                return
            logger.info("Presence removed for %s", self.client_id)

        return teardown

    def subscribe_active_count(self, callback: Callable[[int], None]) -> Callable[[], None]:
        """Invoke *callback* with the active count now and on every change.

        Returns a callable that stops the subscription.
        """
        task = asyncio.create_task(self._poll(callback))

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            try:
                await self.registry.touch(self.client_id)
            except Exception as e:
                logger.warning("Presence heartbeat failed: %s", e)

    async def _poll(self, callback: Callable[[int], None]) -> None:
        last: Optional[int] = None
        while True:
            try:
                count = max(0, await self.registry.active_count())
                if count != last:
                    last = count
                    callback(count)
            except Exception as e:
                logger.warning("Active count refresh failed: %s", e)
            await asyncio.sleep(self._poll_interval)
