from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from availability_engine.cache.availability_cache import AvailabilityCache
from availability_engine.core.errors import PmsUnavailableError, ValidationError
from availability_engine.inventory.models import AvailabilityResult, DateRange, NightlyQuote, RoomKey
from availability_engine.rooms.catalog import RoomCatalog
from availability_engine.services.batch import BatchAvailabilityCoordinator

STAY = DateRange(date(2025, 7, 1), date(2025, 7, 4))
DESIGN = RoomKey("227484", "483027")
LITE = RoomKey("168900", "357932")
DELUXE = RoomKey("161445", "357931")


def _result(price: str) -> AvailabilityResult:
    return AvailabilityResult.from_quotes(
        [NightlyQuote(date=day, base_price=Decimal(price), available=True) for day in STAY.dates()],
        source="calendar",
    )


class _DummyClient:
    def __init__(self, failing: set[RoomKey]) -> None:
        self.failing = failing
        self.calls: list[tuple[RoomKey, Optional[Decimal]]] = []

    async def get_inventory(self, room, date_range, guest_count, *, child_count=0, fallback_price=None):
        self.calls.append((room, fallback_price))
        if room in self.failing:
            raise PmsUnavailableError([("offers", "transport: timeout")])
        return _result("100")


@pytest.mark.asyncio
async def test_one_failing_room_does_not_fail_the_batch():
    client = _DummyClient(failing={LITE})
    coordinator = BatchAvailabilityCoordinator(client, AvailabilityCache())  # type: ignore[arg-type]

    batch = await coordinator.get_batch_availability([DESIGN, LITE, DELUXE], STAY, 2)

    assert set(batch.results) == {DESIGN, DELUXE}
    assert set(batch.errors) == {LITE}
    assert batch.errors[LITE].message == "temporarily unavailable"
    assert batch.errors[LITE].kind == "exhausted"
    assert batch.timing.cache_misses == 3
    assert batch.timing.cache_hits == 0
    assert batch.timing.api_calls == 3


@pytest.mark.asyncio
async def test_second_batch_is_served_from_cache():
    client = _DummyClient(failing=set())
    cache = AvailabilityCache()
    coordinator = BatchAvailabilityCoordinator(client, cache)  # type: ignore[arg-type]

    await coordinator.get_batch_availability([DESIGN, DELUXE], STAY, 2)
    batch = await coordinator.get_batch_availability([DESIGN, DELUXE], STAY, 2)

    assert len(client.calls) == 2
    assert batch.timing.cache_hits == 2
    assert batch.timing.api_calls == 0
    assert batch.timing.total_time_ms >= 0


@pytest.mark.asyncio
async def test_guest_count_changes_miss_the_cache():
    client = _DummyClient(failing=set())
    coordinator = BatchAvailabilityCoordinator(client, AvailabilityCache())  # type: ignore[arg-type]

    await coordinator.get_batch_availability([DESIGN], STAY, 2)
    batch = await coordinator.get_batch_availability([DESIGN], STAY, 2, child_count=1)

    assert batch.timing.cache_misses == 1
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_catalog_rooms_pass_their_fallback_price():
    client = _DummyClient(failing=set())
    coordinator = BatchAvailabilityCoordinator(client, AvailabilityCache())  # type: ignore[arg-type]
    catalog = RoomCatalog.default()

    batch = await coordinator.get_batch_availability(list(catalog.values()), STAY, 2)

    assert len(batch.results) == 3
    assert (DELUXE, Decimal("100")) in client.calls
    rendered = batch.to_dict()
    assert "161445:357931" in rendered["results"]  # type: ignore[operator]


@pytest.mark.asyncio
@pytest.mark.parametrize(("guest_count", "child_count"), [(0, 0), (2, -1)])
async def test_invalid_party_is_rejected_before_any_lookup(guest_count: int, child_count: int):
    client = _DummyClient(failing=set())
    cache = AvailabilityCache()
    coordinator = BatchAvailabilityCoordinator(client, cache)  # type: ignore[arg-type]

    with pytest.raises(ValidationError):
        await coordinator.get_batch_availability([DESIGN, LITE, DELUXE], STAY, guest_count, child_count=child_count)

    assert client.calls == []
    assert cache.stats().entries == 0


@pytest.mark.asyncio
async def test_validation_error_from_the_client_is_not_downgraded():
    class _RejectingClient(_DummyClient):
        async def get_inventory(self, room, date_range, guest_count, *, child_count=0, fallback_price=None):
            raise ValidationError("party too large")

    coordinator = BatchAvailabilityCoordinator(_RejectingClient(failing=set()), AvailabilityCache())  # type: ignore[arg-type]

    with pytest.raises(ValidationError):
        await coordinator.get_batch_availability([DESIGN], STAY, 2)


@pytest.mark.asyncio
async def test_api_calls_count_only_started_fetches():
    client = _DummyClient(failing=set())
    cache = AvailabilityCache()
    coordinator = BatchAvailabilityCoordinator(client, cache)  # type: ignore[arg-type]

    await coordinator.get_batch_availability([DESIGN], STAY, 2)
    batch = await coordinator.get_batch_availability([DESIGN, LITE, LITE], STAY, 2)

    assert len(client.calls) == 2
    assert batch.timing.api_calls == 1
    assert batch.timing.cache_hits == 2
    assert batch.timing.cache_misses == 1
