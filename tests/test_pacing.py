"""
Tests for per-source request pacing.
"""

import asyncio
import time

import pytest


class TestSourcePacer:
    """Delay between request starts and the concurrency cap."""

    @pytest.mark.asyncio
    async def test_enforces_delay_between_starts(self):
        from syncengine.fetchers.pacing import SourcePacer

        pacer = SourcePacer("delay-source", request_delay_ms=100, max_concurrent=1)
        starts = []

        for _ in range(3):
            async with pacer.slot():
                starts.append(time.monotonic())

        assert starts[1] - starts[0] >= 0.09
        assert starts[2] - starts[1] >= 0.09

    @pytest.mark.asyncio
    async def test_caps_requests_in_flight(self):
        """No more than max_concurrent slots are held at once."""
        from syncengine.fetchers.pacing import SourcePacer

        pacer = SourcePacer("concurrency-source", request_delay_ms=0, max_concurrent=2)
        peak = 0

        async def request():
            nonlocal peak
            async with pacer.slot():
                peak = max(peak, pacer.in_flight)
                await asyncio.sleep(0.05)

        await asyncio.gather(*(request() for _ in range(5)))

        assert peak == 2
        assert pacer.in_flight == 0

    @pytest.mark.asyncio
    async def test_slot_is_released_on_error(self):
        from syncengine.fetchers.pacing import SourcePacer

        pacer = SourcePacer("error-source", request_delay_ms=0, max_concurrent=1)

        with pytest.raises(ValueError):
            async with pacer.slot():
                raise ValueError("boom")

        assert pacer.in_flight == 0

    @pytest.mark.asyncio
    async def test_shared_slot_is_read_without_holding_the_lock(self):
        """Cache round trips never run while the pacer lock is held."""
        from unittest.mock import AsyncMock, patch

        from syncengine.fetchers.pacing import SourcePacer

        pacer = SourcePacer("shared-source", request_delay_ms=50, max_concurrent=1)
        lock_held = []
        # Another worker reserved a slot 0.1s from now
        published = time.time() + 0.1

        async def fake_get(key, default=None):
            lock_held.append(pacer._lock.locked())
            return published

        async def fake_set(key, value, timeout=None):
            lock_held.append(pacer._lock.locked())

        with patch("syncengine.fetchers.pacing.cache") as mock_cache:
            mock_cache.aget = AsyncMock(side_effect=fake_get)
            mock_cache.aset = AsyncMock(side_effect=fake_set)
            started = time.time()
            async with pacer.slot():
                waited = time.time() - started

        assert lock_held == [False, False]
        assert waited >= 0.08
        assert mock_cache.aset.await_args.args[1] == pytest.approx(published + 0.05)


class TestGetPacer:
    def test_same_source_shares_one_pacer(self):
        from syncengine.fetchers.pacing import get_pacer

        first = get_pacer("shared", 100, 1)
        second = get_pacer("shared", 250, 3)

        assert first is second
        assert second.request_delay == 0.25
        assert second.max_concurrent == 3

    def test_different_sources_are_independent(self):
        from syncengine.fetchers.pacing import get_pacer

        assert get_pacer("one", 0, 1) is not get_pacer("two", 0, 1)
