"""Lazily computed, invalidatable value with single-flight recomputation."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Generic, List, Optional, TypeVar

from .logging_utils import LoggerLike, ensure_structured_logger

T = TypeVar("T")

CacheSubscriber = Callable[[T], None]


def _consume_exception(task: asyncio.Task) -> None:
    # Awaiters re-raise the error themselves; this only stops asyncio from
    # reporting it as never retrieved when every awaiter was cancelled.
    if not task.cancelled():
        task.exception()


class StateCache(Generic[T]):
    """Memoized async value.

    ``get_value()`` returns the cached value while it is fresh. Once stale
    (initially, or after ``invalidate()``) the next call runs the fetcher.
    Callers arriving while a fetch is in flight await that same fetch.

    Usage:
        cache = StateCache(fetch_missing)
        unsubscribe = cache.subscribe(on_missing)
        missing = await cache.get_value()
        cache.invalidate()
    """

    def __init__(
        self,
        fetcher: Callable[[], Awaitable[T]],
        *,
        logger: LoggerLike = None,
    ) -> None:
        self._fetcher = fetcher
        self._logger = ensure_structured_logger(logger, fallback_name="StateCache")
        self._value: Optional[T] = None
        self._stale = True
        self._generation = 0
        self._pending: Optional[asyncio.Task[T]] = None
        self._pending_generation = 0
        self._subscribers: List[CacheSubscriber] = []

    @property
    def is_stale(self) -> bool:
        return self._stale

    @property
    def is_fetching(self) -> bool:
        return self._pending is not None

    async def get_value(self) -> T:
        while self._stale:
            pending = self._pending
            if pending is None:
                pending = self._start_fetch()
            elif self._pending_generation != self._generation:
                # Started before the last invalidate(); let it finish, then
                # fetch again so this caller never sees a pre-invalidation value.
                await asyncio.wait({pending})
                continue

            # shield: a cancelled caller must not cancel the shared fetch
            return await asyncio.shield(pending)

        return self._value  # type: ignore[return-value]

    def _start_fetch(self) -> asyncio.Task[T]:
        self._pending_generation = self._generation
        self._pending = asyncio.get_running_loop().create_task(self._refresh(self._generation))
        self._pending.add_done_callback(_consume_exception)
        return self._pending

    def invalidate(self) -> None:
        self._stale = True
        self._generation += 1

    def subscribe(self, callback: CacheSubscriber, *, replay: bool = False) -> Callable[[], None]:
        """Register ``callback`` for every freshly computed value.

        With ``replay`` a value that is currently fresh is delivered at once.
        Returns a function that removes the subscription.
        """
        if callback not in self._subscribers:
            self._subscribers.append(callback)

        if replay and not self._stale:
            callback(self._value)  # type: ignore[arg-type]

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    async def _refresh(self, generation: int) -> T:
        try:
            value = await self._fetcher()
        finally:
            self._pending = None

        self._value = value
        # An invalidate() during the fetch keeps the cache stale.
        if generation == self._generation:
            self._stale = False
        self._notify(value)
        return value

    def _notify(self, value: T) -> None:
        for callback in list(self._subscribers):
            try:
                callback(value)
            except Exception:
                self._logger.exception("State cache subscriber %r failed", callback)


__all__ = ["StateCache", "CacheSubscriber"]
