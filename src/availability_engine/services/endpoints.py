"""PMS endpoint strategies tried in order by :class:`PmsClient`.

Each strategy wraps one inventory endpoint shape and reports a tagged
:data:`EndpointAttemptResult` instead of raising, so the client can decide
whether to fall through to the next endpoint or stop.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, Union

from availability_engine.core.errors import AuthError, PmsError
from availability_engine.inventory.models import AvailabilityResult, DateRange, NightlyQuote, RoomKey
from availability_engine.inventory.normalizer import (
    parse_bookings_payload,
    parse_calendar_payload,
    parse_offers_payload,
)

logger = logging.getLogger(__name__)

SendFn = Callable[[str, str, Mapping[str, Any]], Awaitable[Any]]


@dataclass(frozen=True, slots=True)
class InventoryQuery:
    room: RoomKey
    date_range: DateRange
    guest_count: int
    child_count: int = 0
    fallback_price: Optional[Decimal] = None


@dataclass(frozen=True, slots=True)
class Success:
    result: AvailabilityResult


@dataclass(frozen=True, slots=True)
class Retryable:
    """The endpoint failed in a way the next endpoint may not."""

    reason: str


@dataclass(frozen=True, slots=True)
class Fatal:
    """Stop the cascade and surface ``error``."""

    reason: str
    error: Exception


EndpointAttemptResult = Union[Success, Retryable, Fatal]


class EndpointStrategy:
    """Base class: issue the request, parse the payload, classify the outcome."""

    name = "endpoint"
    path = "/"
    guest_priced = False

    def build_params(self, query: InventoryQuery) -> dict[str, Any]:
        raise NotImplementedError

    def parse(self, payload: Any, query: InventoryQuery) -> Optional[List[NightlyQuote]]:
        raise NotImplementedError

    async def fetch(self, query: InventoryQuery, send: SendFn) -> EndpointAttemptResult:
        try:
            payload = await send(self.name, self.path, self.build_params(query))
        except AuthError as exc:
            return Fatal(str(exc), exc)
        except PmsError as exc:
            return Retryable(f"{exc.kind}: {exc}")

        try:
            quotes = self.parse(payload, query)
        except (TypeError, ValueError, KeyError) as exc:
            logger.debug("Malformed %s payload for %s", self.name, query.room, exc_info=True)
            return Retryable(f"malformed payload: {exc}")
        if not quotes:
            return Retryable("empty result")
        result = AvailabilityResult.from_quotes(quotes, source=self.name, guest_priced=self.guest_priced)
        return Success(result)


class OffersEndpoint(EndpointStrategy):
    """Priced offers for the exact stay and guest count."""

    name = "offers"
    path = "/inventory/rooms/offers"
    guest_priced = True

    def build_params(self, query: InventoryQuery) -> dict[str, Any]:
        return {
            "propertyId": query.room.property_id,
            "roomId": query.room.room_id,
            "arrival": query.date_range.start.isoformat(),
            "departure": query.date_range.end.isoformat(),
            "numAdults": query.guest_count,
            "numChildren": query.child_count,
        }

    def parse(self, payload: Any, query: InventoryQuery) -> Optional[List[NightlyQuote]]:
        return parse_offers_payload(payload, query.date_range)


class CalendarEndpoint(EndpointStrategy):
    """Per-night availability, base-occupancy prices and stay restrictions."""

    name = "calendar"
    path = "/inventory/rooms/calendar"

    def build_params(self, query: InventoryQuery) -> dict[str, Any]:
        return {
            "propertyId": query.room.property_id,
            "roomId": query.room.room_id,
            "startDate": query.date_range.start.isoformat(),
            # the calendar's endDate is inclusive
            "endDate": query.date_range.last_night.isoformat(),
            "includeNumAvail": "true",
            "includePrices": "true",
            "includeMinStay": "true",
            "includeMaxStay": "true",
        }

    def parse(self, payload: Any, query: InventoryQuery) -> Optional[List[NightlyQuote]]:
        return parse_calendar_payload(payload, query.date_range)


class LegacyBookingsEndpoint(EndpointStrategy):
    """Derive availability from the bookings feed when inventory endpoints fail."""

    name = "legacy"
    path = "/bookings"

    def build_params(self, query: InventoryQuery) -> dict[str, Any]:
        return {
            "propertyId": query.room.property_id,
            "roomId": query.room.room_id,
            "arrivalTo": query.date_range.last_night.isoformat(),
            "departureFrom": query.date_range.start.isoformat(),
        }

    def parse(self, payload: Any, query: InventoryQuery) -> Optional[List[NightlyQuote]]:
        return parse_bookings_payload(payload, query.date_range, fallback_price=query.fallback_price)


def default_strategies() -> Sequence[EndpointStrategy]:
    return (OffersEndpoint(), CalendarEndpoint(), LegacyBookingsEndpoint())
