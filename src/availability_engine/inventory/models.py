"""Dataclasses for rooms, stay ranges and normalised PMS inventory."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Tuple

from availability_engine.core.errors import ValidationError

DEFAULT_MIN_STAY = 1
DEFAULT_MAX_STAY = 30


@dataclass(frozen=True, slots=True)
class RoomKey:
    """Identifies one bookable unit in the PMS."""

    property_id: str
    room_id: str

    def __post_init__(self) -> None:
        if not str(self.property_id).strip() or not str(self.room_id).strip():
            raise ValidationError("RoomKey requires both property_id and room_id")

    def __str__(self) -> str:
        return f"{self.property_id}:{self.room_id}"


@dataclass(frozen=True, slots=True)
class DateRange:
    """Half-open ``[start, end)`` range of calendar nights."""

    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValidationError(
                f"Invalid date range {self.start.isoformat()} → {self.end.isoformat()}; start must precede end"
            )

    @classmethod
    def parse(cls, start: str, end: str) -> "DateRange":
        try:
            return cls(date.fromisoformat(start), date.fromisoformat(end))
        except ValueError as exc:
            if isinstance(exc, ValidationError):
                raise
            raise ValidationError(f"Dates must be ISO formatted (got {start!r}, {end!r})") from exc

    @property
    def nights(self) -> int:
        return (self.end - self.start).days

    @property
    def last_night(self) -> date:
        return self.end - timedelta(days=1)

    def dates(self) -> Iterator[date]:
        current = self.start
        while current < self.end:
            yield current
            current += timedelta(days=1)

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.start <= day < self.end

    def overlaps(self, other: "DateRange") -> bool:
        return self.start < other.end and other.start < self.end

    def __str__(self) -> str:
        return f"{self.start.isoformat()}:{self.end.isoformat()}"


@dataclass(frozen=True, slots=True)
class NightlyQuote:
    """Availability and base price for a single night."""

    date: date
    base_price: Optional[Decimal]
    available: bool
    min_stay: Optional[int] = None
    max_stay: Optional[int] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "date": self.date.isoformat(),
            "base_price": str(self.base_price) if self.base_price is not None else None,
            "available": self.available,
            "min_stay": self.min_stay,
            "max_stay": self.max_stay,
        }


@dataclass(frozen=True, slots=True)
class AvailabilityResult:
    """Read-only inventory snapshot for one room and date range."""

    available: frozenset[date]
    booked: frozenset[date]
    prices: Mapping[date, Decimal]
    min_stay: int = DEFAULT_MIN_STAY
    max_stay: int = DEFAULT_MAX_STAY
    quotes: Tuple[NightlyQuote, ...] = ()
    source: Optional[str] = None
    guest_priced: bool = False

    @classmethod
    def from_quotes(
        cls,
        quotes: Iterable[NightlyQuote],
        *,
        source: Optional[str] = None,
        guest_priced: bool = False,
    ) -> "AvailabilityResult":
        ordered = tuple(sorted(quotes, key=lambda quote: quote.date))
        prices = {quote.date: quote.base_price for quote in ordered if quote.base_price is not None}
        # Stay restrictions of the arrival night govern the whole stay.
        arrival = ordered[0] if ordered else None
        return cls(
            available=frozenset(quote.date for quote in ordered if quote.available),
            booked=frozenset(quote.date for quote in ordered if not quote.available),
            prices=MappingProxyType(prices),
            min_stay=(arrival.min_stay if arrival and arrival.min_stay else DEFAULT_MIN_STAY),
            max_stay=(arrival.max_stay if arrival and arrival.max_stay else DEFAULT_MAX_STAY),
            quotes=ordered,
            source=source,
            guest_priced=guest_priced,
        )

    def is_available(self, date_range: DateRange) -> bool:
        return all(day in self.available for day in date_range.dates())

    def to_dict(self) -> dict[str, object]:
        return {
            "available": sorted(day.isoformat() for day in self.available),
            "booked": sorted(day.isoformat() for day in self.booked),
            "prices": {day.isoformat(): str(_display(price)) for day, price in sorted(self.prices.items())},
            "min_stay": self.min_stay,
            "max_stay": self.max_stay,
            "source": self.source,
            "guest_priced": self.guest_priced,
        }


@dataclass(frozen=True, slots=True)
class RoomMetadata:
    """Static room description as the PMS publishes it; changes rarely."""

    room: RoomKey
    name: Optional[str] = None
    max_people: Optional[int] = None
    max_adults: Optional[int] = None
    max_children: Optional[int] = None
    min_stay: Optional[int] = None
    max_stay: Optional[int] = None
    min_price: Optional[Decimal] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "room": str(self.room),
            "name": self.name,
            "max_people": self.max_people,
            "max_adults": self.max_adults,
            "max_children": self.max_children,
            "min_stay": self.min_stay,
            "max_stay": self.max_stay,
            "min_price": str(self.min_price) if self.min_price is not None else None,
        }


@dataclass(frozen=True, slots=True)
class DiscountTier:
    """Stay-length discount unlocked at ``min_nights``."""

    min_nights: int
    discount_percent: Decimal
    label: str

    def to_dict(self) -> dict[str, object]:
        return {
            "min_nights": self.min_nights,
            "discount_percent": str(self.discount_percent),
            "label": self.label,
        }


@dataclass(frozen=True, slots=True)
class NightPrice:
    """Price breakdown of one night; amounts are unrounded."""

    date: date
    base_price: Decimal
    surcharge: Decimal
    discount: Decimal
    final_price: Decimal

    def to_dict(self) -> dict[str, object]:
        return {
            "date": self.date.isoformat(),
            "base_price": str(_display(self.base_price)),
            "surcharge": str(_display(self.surcharge)),
            "discount": str(_display(self.discount)),
            "final_price": str(_display(self.final_price)),
        }


@dataclass(frozen=True, slots=True)
class StayPricing:
    """Derived price of a stay; ``total_price`` is the only rounded amount."""

    nights: Tuple[NightPrice, ...]
    total_price: Decimal
    discount_tier: Optional[DiscountTier] = None
    extra_adults: int = 0
    children: int = 0
    notes: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def subtotal(self) -> Decimal:
        return _display(sum((night.base_price + night.surcharge for night in self.nights), Decimal("0")))

    @property
    def total_discount(self) -> Decimal:
        return _display(sum((night.discount for night in self.nights), Decimal("0")))

    def to_dict(self) -> dict[str, object]:
        return {
            "nights": len(self.nights),
            "daily_prices": [night.to_dict() for night in self.nights],
            "subtotal": str(self.subtotal),
            "total_discount": str(self.total_discount),
            "total_price": str(self.total_price),
            "discount_tier": self.discount_tier.to_dict() if self.discount_tier else None,
            "extra_adults": self.extra_adults,
            "children": self.children,
            "notes": list(self.notes),
        }


_CENT = Decimal("0.01")


def _display(amount: Decimal) -> Decimal:
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)
