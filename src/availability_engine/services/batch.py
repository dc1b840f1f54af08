"""Fan-out availability lookups for several apartments at once."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Union

from availability_engine.cache.availability_cache import AvailabilityCache
from availability_engine.core.errors import EngineError, ValidationError
from availability_engine.inventory.models import AvailabilityResult, DateRange, RoomKey
from availability_engine.rooms.catalog import RoomConfig

from .pms_client import PmsClient

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "temporarily unavailable"

RoomInput = Union[RoomKey, RoomConfig]


@dataclass(frozen=True, slots=True)
class RoomError:
    """Per-room failure marker; ``kind`` is for logs, ``message`` is safe to show."""

    kind: str
    message: str = GENERIC_ERROR_MESSAGE

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message}


@dataclass(frozen=True, slots=True)
class BatchTiming:
    api_calls: int
    cache_hits: int
    cache_misses: int
    total_time_ms: float

    def to_dict(self) -> dict[str, object]:
        return {
            "api_calls": self.api_calls,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "total_time_ms": round(self.total_time_ms, 1),
        }


@dataclass(frozen=True, slots=True)
class BatchAvailability:
    results: Dict[RoomKey, AvailabilityResult]
    errors: Dict[RoomKey, RoomError] = field(default_factory=dict)
    timing: BatchTiming = field(default_factory=lambda: BatchTiming(0, 0, 0, 0.0))

    def to_dict(self) -> dict[str, object]:
        return {
            "results": {str(room): result.to_dict() for room, result in self.results.items()},
            "errors": {str(room): error.to_dict() for room, error in self.errors.items()},
            "timing": self.timing.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class _Outcome:
    room: RoomKey
    result: Optional[AvailabilityResult] = None
    error: Optional[RoomError] = None
    hit: bool = False
    fetched: bool = False


class BatchAvailabilityCoordinator:
    """Look up many rooms concurrently through the cache; never fails the whole batch."""

    def __init__(
        self,
        client: PmsClient,
        cache: AvailabilityCache,
        *,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._client = client
        self._cache = cache
        self._clock = clock

    async def get_batch_availability(
        self,
        rooms: Sequence[RoomInput],
        date_range: DateRange,
        guest_count: int,
        *,
        child_count: int = 0,
    ) -> BatchAvailability:
        if guest_count < 1:
            raise ValidationError("guest_count must be at least 1")
        if child_count < 0:
            raise ValidationError("child_count must not be negative")

        started = self._clock()
        outcomes = await asyncio.gather(
            *(self._lookup(room, date_range, guest_count, child_count) for room in rooms)
        )

        results: Dict[RoomKey, AvailabilityResult] = {}
        errors: Dict[RoomKey, RoomError] = {}
        hits = misses = api_calls = 0
        for outcome in outcomes:
            if outcome.fetched:
                api_calls += 1
            if outcome.result is not None:
                results[outcome.room] = outcome.result
                if outcome.hit:
                    hits += 1
                    continue
            elif outcome.error is not None:
                errors[outcome.room] = outcome.error
            misses += 1

        timing = BatchTiming(
            api_calls=api_calls,
            cache_hits=hits,
            cache_misses=misses,
            total_time_ms=(self._clock() - started) * 1000,
        )
        logger.info(
            "Batch availability for %s room(s) %s: %s ok, %s failed, %s cache hit(s), %.0fms",
            len(rooms),
            date_range,
            len(results),
            len(errors),
            hits,
            timing.total_time_ms,
        )
        return BatchAvailability(results=results, errors=errors, timing=timing)

    async def _lookup(
        self,
        room: RoomInput,
        date_range: DateRange,
        guest_count: int,
        child_count: int,
    ) -> _Outcome:
        if isinstance(room, RoomConfig):
            key, fallback_price = room.room, room.fallback_price
        else:
            key, fallback_price = room, None

        cache_key = self._cache.make_key(key, date_range, guest_count, child_count)
        fetched = False

        async def fetch() -> AvailabilityResult:
            nonlocal fetched
            fetched = True
            return await self._client.get_inventory(
                key,
                date_range,
                guest_count,
                child_count=child_count,
                fallback_price=fallback_price,
            )

        try:
            lookup = await self._cache.lookup(
                cache_key,
                fetch,
                ttl=self._cache.ttl_policy.for_availability(date_range),
            )
        except ValidationError:
            raise
        except EngineError as exc:
            kind = getattr(exc, "kind", type(exc).__name__)
            logger.warning("Availability for %s failed (%s): %s", key, kind, exc)
            return _Outcome(room=key, error=RoomError(kind=kind), fetched=fetched)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure fetching availability for %s", key)
            return _Outcome(room=key, error=RoomError(kind=type(exc).__name__), fetched=fetched)
        return _Outcome(room=key, result=lookup.value, hit=lookup.hit, fetched=fetched)
