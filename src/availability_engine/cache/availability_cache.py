"""In-process TTL cache with per-key single-flight fetching."""
from __future__ import annotations

import asyncio
import fnmatch
import logging
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar

from availability_engine.config.settings import Settings
from availability_engine.inventory.models import DateRange, RoomKey

logger = logging.getLogger(__name__)

T = TypeVar("T")
FetchFn = Callable[[], Awaitable[T]]


@dataclass(slots=True)
class CacheEntry(Generic[T]):
    key: str
    value: T
    inserted_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now >= self.inserted_at + self.ttl


@dataclass(frozen=True, slots=True)
class CacheLookup(Generic[T]):
    value: T
    hit: bool


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    joined: int = 0
    entries: int = 0
    in_flight: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "joined": self.joined,
            "entries": self.entries,
            "in_flight": self.in_flight,
        }


@dataclass(frozen=True, slots=True)
class TtlPolicy:
    """Default lifetimes: near-term availability churns fastest."""

    near_term: float = 300.0
    far_out: float = 1800.0
    metadata: float = 21600.0
    near_term_days: int = 30
    today: Callable[[], date] = field(default=date.today)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TtlPolicy":
        return cls(
            near_term=settings.availability_ttl_s,
            far_out=settings.far_availability_ttl_s,
            metadata=settings.metadata_ttl_s,
            near_term_days=settings.near_term_days,
        )

    def for_availability(self, date_range: DateRange) -> float:
        if date_range.start <= self.today() + timedelta(days=self.near_term_days):
            return self.near_term
        return self.far_out


class AvailabilityCache:
    """Single-process cache keyed by room, stay and party size.

    Concurrent ``get_or_fetch`` calls for the same key share one fetch task.
    Each caller awaits it through :func:`asyncio.shield`, so cancelling one
    caller never cancels the fetch for the others. Failures propagate to every
    waiter and are never stored.
    """

    def __init__(
        self,
        *,
        ttl_policy: Optional[TtlPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._ttl_policy = ttl_policy or TtlPolicy()
        self._clock = clock
        self._entries: Dict[str, CacheEntry[Any]] = {}
        self._in_flight: Dict[str, asyncio.Task[Any]] = {}
        self._lock = asyncio.Lock()
        self._stats = CacheStats()
        self._sweeper: Optional[asyncio.Task[None]] = None

    @property
    def ttl_policy(self) -> TtlPolicy:
        return self._ttl_policy

    @staticmethod
    def make_key(room: RoomKey, date_range: DateRange, guest_count: int, child_count: int = 0) -> str:
        return (
            f"{room}:{date_range.start.isoformat()}:{date_range.end.isoformat()}"
            f":{guest_count}:{child_count}"
        )

    @staticmethod
    def make_metadata_key(room: RoomKey) -> str:
        return f"{room}:metadata"

    async def get_or_fetch(self, key: str, fetch_fn: FetchFn[T], *, ttl: Optional[float] = None) -> T:
        lookup = await self.lookup(key, fetch_fn, ttl=ttl)
        return lookup.value

    async def lookup(self, key: str, fetch_fn: FetchFn[T], *, ttl: Optional[float] = None) -> CacheLookup[T]:
        """Like :meth:`get_or_fetch` but also report whether the value was cached."""
        async with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                if not entry.is_expired(self._clock()):
                    self._stats.hits += 1
                    return CacheLookup(entry.value, True)
                del self._entries[key]

            task = self._in_flight.get(key)
            if task is None:
                self._stats.misses += 1
                effective_ttl = ttl if ttl is not None else self._ttl_policy.near_term
                task = asyncio.ensure_future(fetch_fn())
                self._in_flight[key] = task
                task.add_done_callback(lambda done: self._on_fetch_done(key, done, effective_ttl))
                hit = False
            else:
                self._stats.joined += 1
                # Joining an in-flight fetch still costs no extra PMS call.
                hit = True

        value = await asyncio.shield(task)
        return CacheLookup(value, hit)

    def _on_fetch_done(self, key: str, task: asyncio.Task[Any], ttl: float) -> None:
        # Only the task still registered for the key may populate it; a detached
        # task belongs to an invalidated generation.
        registered = self._in_flight.get(key) is task
        if registered:
            del self._in_flight[key]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug("Fetch for %s failed: %s", key, error)
            return
        if registered:
            self._entries[key] = CacheEntry(key=key, value=task.result(), inserted_at=self._clock(), ttl=ttl)

    async def invalidate_key(self, key: str) -> bool:
        async with self._lock:
            removed = self._entries.pop(key, None) is not None
            detached = self._in_flight.pop(key, None) is not None
        if removed or detached:
            logger.debug("Invalidated cache key %s", key)
        return removed or detached

    async def invalidate_pattern(self, pattern: str) -> int:
        """Drop every key matching the glob ``pattern``; returns how many were dropped."""
        async with self._lock:
            keys = {key for key in self._entries if fnmatch.fnmatchcase(key, pattern)}
            keys.update(key for key in self._in_flight if fnmatch.fnmatchcase(key, pattern))
            for key in keys:
                self._entries.pop(key, None)
                self._in_flight.pop(key, None)
        if keys:
            logger.info("Invalidated %s cache key(s) matching %s", len(keys), pattern)
        return len(keys)

    async def invalidate_room(self, room: RoomKey, date_range: Optional[DateRange] = None) -> int:
        """Drop a room's entries, or only those whose stay overlaps ``date_range``."""
        prefix = f"{room}:"
        async with self._lock:
            keys = [
                key
                for key in set(self._entries) | set(self._in_flight)
                if key.startswith(prefix) and _key_overlaps(key[len(prefix):], date_range)
            ]
            for key in keys:
                self._entries.pop(key, None)
                self._in_flight.pop(key, None)
        if keys:
            logger.info("Invalidated %s cache key(s) for room %s", len(keys), room)
        return len(keys)

    async def clear_all(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._in_flight.clear()
        logger.info("Availability cache cleared")

    async def sweep_expired(self) -> int:
        async with self._lock:
            now = self._clock()
            expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in expired:
                del self._entries[key]
        if expired:
            logger.debug("Swept %s expired cache entries", len(expired))
        return len(expired)

    def start_sweeper(self, interval: float) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_forever(interval))

    async def stop_sweeper(self) -> None:
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is None:
            return
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass

    async def _sweep_forever(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            await self.sweep_expired()

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._stats.hits,
            misses=self._stats.misses,
            joined=self._stats.joined,
            entries=len(self._entries),
            in_flight=len(self._in_flight),
        )


def _key_overlaps(rest: str, date_range: Optional[DateRange]) -> bool:
    if date_range is None:
        return True
    parts = rest.split(":")
    if len(parts) < 2:
        # Undated entries such as room metadata.
        return False
    try:
        cached = DateRange(date.fromisoformat(parts[0]), date.fromisoformat(parts[1]))
    except ValueError:
        return True
    return cached.overlaps(date_range)
