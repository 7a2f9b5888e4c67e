"""Unit tests for noteboard.presence — Redis presence registry and tracker."""

from __future__ import annotations

import asyncio
import re
from unittest.mock import AsyncMock, patch

import pytest

from noteboard.errors import StoreError
from noteboard.models import DeviceInfo
from noteboard.presence import (
    PRESENCE_KEY,
    PresenceRegistry,
    PresenceTracker,
    derive_client_id,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_registry(window: float = 300) -> PresenceRegistry:
    """Create a PresenceRegistry with a mocked Redis client at server time 1000.5."""
    registry = PresenceRegistry("redis://localhost:6379", window=window)
    registry._client = AsyncMock()
    registry._client.time = AsyncMock(return_value=(1000, 500000))
    return registry


def _fake_registry(counts: list[int] | None = None) -> AsyncMock:
    """A registry double whose active_count walks through *counts* then repeats the last."""
    registry = AsyncMock()
    registry.touch = AsyncMock(return_value=True)
    registry.remove = AsyncMock(return_value=True)
    values = list(counts or [0])

    async def active_count() -> int:
        return values.pop(0) if len(values) > 1 else values[0]

    registry.active_count = AsyncMock(side_effect=active_count)
    return registry


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class TestDeriveClientId:
    def test_random_ids_differ(self) -> None:
        assert derive_client_id("random") != derive_client_id("random")

    def test_random_id_is_hex(self) -> None:
        assert re.fullmatch(r"[0-9a-f]{32}", derive_client_id("random"))

    def test_device_id_uses_fingerprint(self) -> None:
        device = DeviceInfo(user_agent="UA", screen="1x1")
        assert derive_client_id("device", device) == device.fingerprint()

    def test_device_id_without_info_is_stable(self) -> None:
        assert derive_client_id("device") == derive_client_id("device")
        assert len(derive_client_id("device")) == 16

    def test_unknown_strategy(self) -> None:
        with pytest.raises(ValueError):
            derive_client_id("cookie")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_success(self):
        registry = PresenceRegistry("redis://localhost:6379")
        mock_client = AsyncMock()
        mock_client.ping = AsyncMock(return_value=True)

        with patch("noteboard.presence.aioredis.from_url", return_value=mock_client):
            await registry.connect()

        assert registry.available is True

    @pytest.mark.asyncio
    async def test_connect_failure_degrades(self):
        registry = PresenceRegistry("redis://localhost:6379")

        with patch(
            "noteboard.presence.aioredis.from_url",
            side_effect=ConnectionError("refused"),
        ):
            await registry.connect()

        assert registry.available is False
        assert await registry.active_count() == 0
        assert await registry.touch("abc") is False

    @pytest.mark.asyncio
    async def test_close(self):
        registry = _make_registry()
        await registry.close()
        assert registry.available is False


class TestRecords:
    @pytest.mark.asyncio
    async def test_touch_scores_with_server_time(self):
        registry = _make_registry()

        assert await registry.touch("client-1") is True

        registry._client.zadd.assert_awaited_once_with(PRESENCE_KEY, {"client-1": 1000.5})

    @pytest.mark.asyncio
    async def test_remove(self):
        registry = _make_registry()

        assert await registry.remove("client-1") is True

        registry._client.zrem.assert_awaited_once_with(PRESENCE_KEY, "client-1")

    @pytest.mark.asyncio
    async def test_active_count_prunes_and_counts_window(self):
        registry = _make_registry(window=300)
        registry._client.zcount = AsyncMock(return_value=4)

        assert await registry.active_count() == 4

        registry._client.zremrangebyscore.assert_awaited_once_with(
            PRESENCE_KEY, "-inf", 700.5
        )
        registry._client.zcount.assert_awaited_once_with(PRESENCE_KEY, "(700.5", "+inf")

    @pytest.mark.asyncio
    async def test_active_count_on_error(self):
        registry = _make_registry()
        registry._client.time = AsyncMock(side_effect=ConnectionError("lost"))

        assert await registry.active_count() == 0

    @pytest.mark.asyncio
    async def test_touch_on_error(self):
        registry = _make_registry()
        registry._client.zadd = AsyncMock(side_effect=ConnectionError("lost"))

        assert await registry.touch("client-1") is False


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class TestTracker:
    @pytest.mark.asyncio
    async def test_register_touches_and_heartbeats(self):
        registry = _fake_registry()
        tracker = PresenceTracker(registry, "me", heartbeat_interval=0.01)

        teardown = await tracker.register()
        await asyncio.sleep(0.05)
        await teardown()

        assert registry.touch.await_count >= 2
        registry.remove.assert_awaited_once_with("me")

    @pytest.mark.asyncio
    async def test_teardown_stops_heartbeat(self):
        registry = _fake_registry()
        tracker = PresenceTracker(registry, "me", heartbeat_interval=0.01)

        teardown = await tracker.register()
        await teardown()
        touches = registry.touch.await_count
        await asyncio.sleep(0.05)

        assert registry.touch.await_count == touches

    @pytest.mark.asyncio
    async def test_heartbeat_survives_errors(self):
        registry = _fake_registry()
        calls = []

        async def flaky_touch(client_id: str) -> bool:
            calls.append(client_id)
            if len(calls) == 2:
                raise StoreError("down")
            return True

        registry.touch = AsyncMock(side_effect=flaky_touch)
        tracker = PresenceTracker(registry, "me", heartbeat_interval=0.01)

        teardown = await tracker.register()
        await asyncio.sleep(0.06)
        await teardown()

        assert registry.touch.await_count >= 3

    @pytest.mark.asyncio
    async def test_subscription_reports_changes_only(self):
        registry = _fake_registry([1, 1, 2, 2, 0])
        tracker = PresenceTracker(registry, "me", poll_interval=0.005)
        seen: list[int] = []

        unsubscribe = tracker.subscribe_active_count(seen.append)
        await asyncio.sleep(0.08)
        unsubscribe()

        assert seen == [1, 2, 0]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_polling(self):
        registry = _fake_registry([3])
        tracker = PresenceTracker(registry, "me", poll_interval=0.005)

        unsubscribe = tracker.subscribe_active_count(lambda c: None)
        await asyncio.sleep(0.02)
        unsubscribe()
        await asyncio.sleep(0)
        polls = registry.active_count.await_count
        await asyncio.sleep(0.03)

        assert registry.active_count.await_count == polls

    @pytest.mark.asyncio
    async def test_count_never_negative(self):
        registry = _fake_registry([-2])
        tracker = PresenceTracker(registry, "me", poll_interval=0.005)
        seen: list[int] = []

        unsubscribe = tracker.subscribe_active_count(seen.append)
        await asyncio.sleep(0.02)
        unsubscribe()

        assert seen == [0]

    def test_for_strategy(self):
        device = DeviceInfo(user_agent="UA")
        tracker = PresenceTracker.for_strategy(_fake_registry(), "device", device)
        assert tracker.client_id == device.fingerprint()

    @pytest.mark.asyncio
    async def test_poll_survives_unexpected_errors(self):
        registry = _fake_registry()
        reads = []

        async def bumpy_count() -> int:
            reads.append(1)
            if len(reads) == 1:
                raise ValueError("Expecting value: line 1 column 1")
            return len(reads)

        registry.active_count = AsyncMock(side_effect=bumpy_count)
        tracker = PresenceTracker(registry, "me", poll_interval=0.005)
        seen: list[int] = []

        def picky(count: int) -> None:
            seen.append(count)
            if count == 2:
                raise RuntimeError("render failed")

        unsubscribe = tracker.subscribe_active_count(picky)
        await asyncio.sleep(0.05)
        unsubscribe()

        assert seen[:2] == [2, 3]

    @pytest.mark.asyncio
    async def test_heartbeat_survives_unexpected_errors(self):
        registry = _fake_registry()
        calls = []

        async def odd_touch(client_id: str) -> bool:
            calls.append(client_id)
            if len(calls) == 2:
                raise ValueError("not json")
            return True

        registry.touch = AsyncMock(side_effect=odd_touch)
        tracker = PresenceTracker(registry, "me", heartbeat_interval=0.01)

        teardown = await tracker.register()
        await asyncio.sleep(0.06)
        await teardown()

        assert registry.touch.await_count >= 3

    @pytest.mark.asyncio
    async def test_register_enrolls_without_client_id(self):
        registry = _fake_registry()
        registry.register = AsyncMock(return_value="server-assigned")
        device = DeviceInfo(user_agent="UA")
        tracker = PresenceTracker(registry, None, heartbeat_interval=10, device=device)

        teardown = await tracker.register()
        await teardown()

        assert tracker.client_id == "server-assigned"
        registry.register.assert_awaited_once_with(device)
        registry.touch.assert_not_awaited()
        registry.remove.assert_awaited_once_with("server-assigned")
