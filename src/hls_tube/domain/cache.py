"""In-memory single-flight cache shared by concurrent connection handlers.

Each key maps to one shared future. The first caller for a key starts the
population coroutine as a task of its own; every caller, whether it arrives
while the population is in flight or after it settled, awaits that same
future.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Generic, Hashable, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

logger = logging.getLogger(__name__)


@dataclass
class _Entry(Generic[V]):
    future: asyncio.Future[V]
    created_at: float
    task: Optional[asyncio.Task[None]] = None


class SingleFlight(Generic[K, V]):
    """Process-local, per-key single-flight cache.

    Notes
    -----
    - The ``asyncio.Lock`` only guards the entry map; population runs outside of it,
      so a slow key never blocks other keys.
    - Population runs in a task owned by the entry, not by the caller that started it.
      Every caller awaits the shared future through ``asyncio.shield``, so cancelling
      any caller, the first one included, leaves the others waiting for the result.
    - Failures are evicted so the next request retries, unless they are instances of
      ``cached_errors``, in which case they are terminal for that key.
    - ``ttl`` (seconds) expires settled entries; ``None`` keeps them forever.
    """

    def __init__(
        self,
        *,
        cached_errors: tuple[type[BaseException], ...] = (),
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._entries: Dict[K, _Entry[V]] = {}
        self._lock: asyncio.Lock = asyncio.Lock()
        self._cached_errors = cached_errors
        self._ttl = ttl
        self._clock = clock

    def _expired(self, entry: _Entry[V]) -> bool:
        if self._ttl is None or not entry.future.done():
            return False
        return self._clock() - entry.created_at >= self._ttl

    async def get(self, key: K, factory: Callable[[], Awaitable[V]]) -> V:
        """Return the value for ``key``, running ``factory`` at most once concurrently.

        Raises
        ------
        Exception
            Whatever ``factory`` raised, re-raised to every waiter of that population.
        """

        async with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._expired(entry):
                loop = asyncio.get_running_loop()
                entry = _Entry(future=loop.create_future(), created_at=self._clock())
                self._entries[key] = entry
                entry.task = asyncio.ensure_future(self._populate(key, entry, factory))

        return await asyncio.shield(entry.future)

    # TODO: bound population with asyncio.timeout once requests carry deadlines; a factory
    # that never returns leaves every waiter for its key pending.
    async def _populate(self, key: K, entry: _Entry[V], factory: Callable[[], Awaitable[V]]) -> None:
        try:
            value = await factory()
        except asyncio.CancelledError:
            await self._evict(key, entry)
            entry.future.cancel()
            raise
        except Exception as ex:  # noqa: BLE001 - handed to every waiter through the future
            if not isinstance(ex, self._cached_errors):
                await self._evict(key, entry)
            else:
                logger.info("Caching terminal failure for %r: %s", key, ex)
            entry.future.set_exception(ex)
        else:
            entry.created_at = self._clock()
            entry.future.set_result(value)

    async def _evict(self, key: K, entry: _Entry[V]) -> None:
        async with self._lock:
            if self._entries.get(key) is entry:
                del self._entries[key]

    async def invalidate(self, key: K) -> None:
        """Forget ``key``; in-flight waiters still receive their population's outcome."""

        async with self._lock:
            self._entries.pop(key, None)

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and not self._expired(entry)
