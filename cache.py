"""Keyed client cache with request coalescing and optimistic mutation.

Keys are tuples ``(resource_kind, owner_id, *params)``. The first two items form
the key's family; mutations of one family are queued behind a lock so that
subscribers observe them in call order.
"""
from __future__ import annotations

import asyncio
import copy
import logging
import time
from contextlib import AsyncExitStack
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from errors import TimedOut

logger = logging.getLogger(__name__)

Key = tuple
Match = Union[tuple, Callable[[tuple], bool]]
Fetcher = Callable[[], Awaitable[Any]]
Updater = Callable[[tuple, Any], Any]


class CacheState:
    """Read-only view of one cache entry."""

    IDLE = "idle"
    PENDING = "pending"
    READY = "ready"
    ERROR = "error"

    def __init__(self, status: str, value: Any = None, error: Exception | None = None) -> None:
        self.status = status
        self.value = value
        self.error = error

    def __repr__(self) -> str:
        return f"CacheState({self.status!r}, value={self.value!r}, error={self.error!r})"


class _Entry:
    def __init__(self) -> None:
        self.value: Any = None
        self.has_value = False
        self.error: Exception | None = None
        self.fetched_at: float | None = None


class OptimisticMutation:
    """Snapshot, apply and then commit or revert a change to cached entries."""

    NEW = "new"
    APPLIED = "applied"
    COMMITTED = "committed"
    REVERTED = "reverted"

    def __init__(self, cache: "ClientCache", keys: Iterable[Key], updater: Optional[Updater]) -> None:
        self.cache = cache
        self.keys = list(keys)
        self.updater = updater
        self.state = self.NEW
        self._snapshot: dict[Key, tuple] = {}

    def snapshot(self) -> dict[Key, tuple]:
        self._snapshot = {key: self.cache._copy_entry(key) for key in self.keys}
        return self._snapshot

    def apply(self) -> None:
        if self.state != self.NEW:
            raise RuntimeError(f"cannot apply a mutation in state {self.state}")
        if self.updater is not None:
            for key in self.keys:
                entry = self.cache._entries.get(key)
                if entry is None or not entry.has_value:
                    continue
                self.cache._write(key, self.updater(key, copy.deepcopy(entry.value)))
        self.state = self.APPLIED

    def commit_or_revert(self, error: BaseException | None = None) -> None:
        if self.state in (self.COMMITTED, self.REVERTED):
            raise RuntimeError(f"mutation already {self.state}")
        if error is None:
            self.state = self.COMMITTED
            return
        for key, saved in self._snapshot.items():
            self.cache._restore(key, saved)
        self.state = self.REVERTED


class ClientCache:
    """Process-wide cache object; construct one per session and pass it around."""

    def __init__(
        self,
        dedupe_interval: float = 2.0,
        timeout: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.dedupe_interval = dedupe_interval
        self.timeout = timeout
        self._clock = clock
        self._entries: dict[Key, _Entry] = {}
        self._fetchers: dict[Key, Fetcher] = {}
        self._inflight: dict[Key, asyncio.Task] = {}
        self._subscribers: dict[Key, list[Callable[[Key, Any], None]]] = {}
        self._generations: dict[Key, int] = {}
        self._locks: dict[tuple, asyncio.Lock] = {}

    # reads

    async def get(self, key: Key, fetcher: Fetcher | None = None, force: bool = False) -> Any:
        """Return the value for ``key``, fetching it when missing or stale.

        Concurrent callers share one in-flight fetch. A value younger than
        ``dedupe_interval`` is returned without fetching unless ``force`` is set.
        """
        key = tuple(key)
        if fetcher is not None:
            self._fetchers[key] = fetcher
        fetcher = self._fetchers.get(key)
        inflight = self._inflight.get(key)
        if inflight is not None and not force:
            return await asyncio.shield(inflight)
        entry = self._entries.get(key)
        if not force and entry is not None and self._fresh(entry):
            return entry.value
        if fetcher is None:
            if entry is not None and entry.has_value:
                return entry.value
            raise KeyError(f"no value or fetcher for {key!r}")
        task = asyncio.ensure_future(self._fetch(key, fetcher))
        self._inflight[key] = task
        return await asyncio.shield(task)

    def peek(self, key: Key) -> CacheState:
        key = tuple(key)
        entry = self._entries.get(key)
        value = entry.value if entry is not None else None
        if key in self._inflight:
            return CacheState(CacheState.PENDING, value)
        if entry is None:
            return CacheState(CacheState.IDLE)
        if entry.error is not None:
            return CacheState(CacheState.ERROR, value, entry.error)
        if entry.has_value:
            return CacheState(CacheState.READY, value)
        return CacheState(CacheState.IDLE)

    def keys(self, match: Match) -> list[Key]:
        return [key for key in self._entries if self._matches(key, match)]

    # writes

    def set(self, key: Key, value: Any) -> None:
        self._write(tuple(key), value)
        self._entries[tuple(key)].fetched_at = self._clock()

    def invalidate(self, match: Match) -> None:
        """Mark matching entries stale so the next read fetches again."""
        for key in self.keys(match):
            self._entries[key].fetched_at = None

    def clear(self) -> None:
        self._entries.clear()
        self._generations.clear()

    async def revalidate(self, match: Match) -> None:
        await self._revalidate_keys(self.keys(match))

    async def mutate(
        self,
        match: Match,
        updater: Optional[Updater] = None,
        remote: Optional[Callable[[], Awaitable[Any]]] = None,
        *,
        optimistic: bool = True,
        revalidate: bool = True,
    ) -> Any:
        """Change every entry matching ``match`` around the ``remote`` write.

        With ``optimistic`` the updater runs before the write and subscribers see
        the change immediately; a failed write restores the prior entries and the
        error is re-raised. On success matching keys are re-fetched when
        ``revalidate`` is set.
        """
        async with AsyncExitStack() as stack:
            for family in self._families(match):
                await stack.enter_async_context(self._lock(family))
            keys = self.keys(match)
            mutation = OptimisticMutation(self, keys, updater)
            mutation.snapshot()
            if optimistic:
                mutation.apply()
            result = None
            if remote is not None:
                try:
                    result = await self._with_timeout(remote())
                except BaseException as e:
                    mutation.commit_or_revert(e)
                    logger.warning("rolled back %d cache entries: %s", len(keys), e)
                    raise
            if not optimistic:
                mutation.apply()
            mutation.commit_or_revert()
            if revalidate:
                await self._revalidate_keys(keys)
            return result

    def subscribe(self, key: Key, callback: Callable[[Key, Any], None]) -> Callable[[], None]:
        key = tuple(key)
        self._subscribers.setdefault(key, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    # internals

    def _fresh(self, entry: _Entry) -> bool:
        return (
            entry.has_value
            and entry.error is None
            and entry.fetched_at is not None
            and self._clock() - entry.fetched_at < self.dedupe_interval
        )

    @staticmethod
    def _matches(key: Key, match: Match) -> bool:
        if callable(match):
            return bool(match(key))
        return key[: len(match)] == tuple(match)

    def _families(self, match: Match) -> list[tuple]:
        families = {key[:2] for key in self.keys(match)}
        if not callable(match) and len(match) >= 2:
            families.add(tuple(match[:2]))
        return sorted(families, key=repr)

    def _lock(self, family: tuple) -> asyncio.Lock:
        lock = self._locks.get(family)
        if lock is None:
            lock = self._locks[family] = asyncio.Lock()
        return lock

    async def _with_timeout(self, awaitable: Awaitable[Any]) -> Any:
        if self.timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, self.timeout)
        except asyncio.TimeoutError as e:
            raise TimedOut(f"request timed out after {self.timeout}s") from e

    async def _fetch(self, key: Key, fetcher: Fetcher) -> Any:
        generation = self._generations.get(key, 0)
        entry = self._entries.setdefault(key, _Entry())
        try:
            value = await self._with_timeout(fetcher())
        except Exception as e:
            entry.error = e
            logger.warning("fetch of %r failed: %s", key, e)
            raise
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]
        if self._generations.get(key, 0) != generation:
            # a mutation touched the entry while this fetch was running
            logger.debug("discarding stale fetch of %r", key)
            return value
        entry.value = value
        entry.has_value = True
        entry.error = None
        entry.fetched_at = self._clock()
        self._notify(key, value)
        return value

    async def _revalidate_keys(self, keys: Iterable[Key]) -> None:
        pending = [self.get(key, force=True) for key in keys if key in self._fetchers]
        results = await asyncio.gather(*pending, return_exceptions=True)
        failed = [r for r in results if isinstance(r, Exception)]
        if failed:
            # errors are recorded on the entries; the optimistic values stay
            logger.warning("revalidation failed for %d keys: %s", len(failed), failed[0])

    def _write(self, key: Key, value: Any) -> None:
        entry = self._entries.setdefault(key, _Entry())
        entry.value = value
        entry.has_value = True
        entry.error = None
        self._generations[key] = self._generations.get(key, 0) + 1
        self._notify(key, value)

    def _copy_entry(self, key: Key) -> tuple:
        entry = self._entries.get(key)
        if entry is None:
            return (False, None, None, None)
        return (entry.has_value, copy.deepcopy(entry.value), entry.error, entry.fetched_at)

    def _restore(self, key: Key, saved: tuple) -> None:
        has_value, value, error, fetched_at = saved
        entry = self._entries.setdefault(key, _Entry())
        entry.has_value = has_value
        entry.value = copy.deepcopy(value)
        entry.error = error
        entry.fetched_at = fetched_at
        self._generations[key] = self._generations.get(key, 0) + 1
        self._notify(key, entry.value)

    def _notify(self, key: Key, value: Any) -> None:
        for callback in list(self._subscribers.get(key, [])):
            callback(key, value)
