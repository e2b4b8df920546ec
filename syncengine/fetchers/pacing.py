"""
Per-web-source request pacing.

Every job that talks to the same web source in this process shares one
SourcePacer, so the source sees at most ``max_concurrent`` requests in
flight and at least ``request_delay_ms`` between request starts.

Delay slots are also published to the Django cache so workers in other
processes pick up the latest reserved slot; that part is best effort.
"""

import asyncio
import logging
import threading
import time
from contextlib import asynccontextmanager
from typing import Dict

from django.core.cache import cache

logger = logging.getLogger(__name__)

CACHE_PREFIX = "syncengine:pacing"
POLL_INTERVAL = 0.05


class SourcePacer:
    """
    Delay and concurrency gate for one web source.

    Uses thread locks rather than asyncio primitives because runs may be
    driven by different event loops in the same worker process.
    """

    def __init__(self, source_key: str, request_delay_ms: int = 0, max_concurrent: int = 1):
        self.source_key = source_key
        self.request_delay = max(request_delay_ms, 0) / 1000.0
        self.max_concurrent = max(max_concurrent, 1)

        self._lock = threading.Lock()
        self._in_flight = 0
        self._next_slot = 0.0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def configure(self, request_delay_ms: int, max_concurrent: int):
        with self._lock:
            self.request_delay = max(request_delay_ms, 0) / 1000.0
            self.max_concurrent = max(max_concurrent, 1)

    def _cache_key(self) -> str:
        return f"{CACHE_PREFIX}:{self.source_key}"

    def _reserve_slot(self, shared_slot: float = 0.0):
        """
        Reserve the next start time.

        Returns (seconds to wait, the slot after this one). No I/O happens
        while the lock is held.
        """
        with self._lock:
            now = time.time()
            slot = max(now, self._next_slot, shared_slot)
            self._next_slot = slot + self.request_delay
            return slot - now, self._next_slot

    def _try_enter(self) -> bool:
        with self._lock:
            if self._in_flight < self.max_concurrent:
                self._in_flight += 1
                return True
            return False

    def _leave(self):
        with self._lock:
            self._in_flight = max(self._in_flight - 1, 0)

    async def acquire(self):
        while not self._try_enter():
            await asyncio.sleep(POLL_INTERVAL)

        try:
            shared_slot = 0.0
            if self.request_delay:
                shared_slot = await cache.aget(self._cache_key(), 0.0)
            wait, next_slot = self._reserve_slot(shared_slot)
            if self.request_delay:
                await cache.aset(
                    self._cache_key(),
                    next_slot,
                    timeout=max(int(self.request_delay * 10), 60),
                )
            if wait > 0:
                logger.debug(f"Pacing {self.source_key}: waiting {wait:.2f}s")
                await asyncio.sleep(wait)
        except BaseException:
            self._leave()
            raise

    def release(self):
        self._leave()

    @asynccontextmanager
    async def slot(self):
        await self.acquire()
        try:
            yield
        finally:
            self.release()


_pacers: Dict[str, SourcePacer] = {}
_pacers_lock = threading.Lock()


def get_pacer(source_key: str, request_delay_ms: int, max_concurrent: int) -> SourcePacer:
    """Return the process-wide pacer for a source, updating its limits."""
    with _pacers_lock:
        pacer = _pacers.get(source_key)
        if pacer is None:
            pacer = SourcePacer(source_key, request_delay_ms, max_concurrent)
            _pacers[source_key] = pacer
            return pacer
    pacer.configure(request_delay_ms, max_concurrent)
    return pacer


def reset_pacers():
    """Drop all pacers (used by tests)."""
    with _pacers_lock:
        _pacers.clear()
