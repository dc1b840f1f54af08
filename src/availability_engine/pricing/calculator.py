"""Stay pricing: nightly rates plus guest surcharges minus stay-length discounts."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Mapping, Optional, Sequence, Tuple, Union

from availability_engine.core.errors import StayNotAvailableError, ValidationError
from availability_engine.inventory.models import (
    AvailabilityResult,
    DateRange,
    DiscountTier,
    NightPrice,
    RoomKey,
    StayPricing,
)
from availability_engine.rooms.catalog import DEFAULT_BASE_OCCUPANCY, RoomCatalog, RoomConfig

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
DEFAULT_MAX_GUESTS = 6

DEFAULT_DISCOUNT_TIERS: Tuple[DiscountTier, ...] = (
    DiscountTier(min_nights=7, discount_percent=Decimal("10"), label="7+ nights"),
    DiscountTier(min_nights=14, discount_percent=Decimal("15"), label="14+ nights"),
    DiscountTier(min_nights=30, discount_percent=Decimal("20"), label="30+ nights"),
)


@dataclass(frozen=True, slots=True)
class SurchargePolicy:
    """Per-night surcharges on top of the base-occupancy rate."""

    adult_surcharge: Decimal = Decimal("20")
    child_surcharge: Decimal = Decimal("10")

    def extra_adults(self, adults: int, base_occupancy: int) -> int:
        return max(0, adults - base_occupancy)

    def nightly_surcharge(self, adults: int, children: int, base_occupancy: int) -> Decimal:
        # Every child is surcharged; only adults beyond base occupancy are.
        return (
            self.extra_adults(adults, base_occupancy) * self.adult_surcharge
            + children * self.child_surcharge
        )


def _ordered(tiers: Sequence[DiscountTier]) -> list[DiscountTier]:
    return sorted(tiers, key=lambda tier: tier.min_nights, reverse=True)


def select_tier(nights: int, tiers: Sequence[DiscountTier] = DEFAULT_DISCOUNT_TIERS) -> Optional[DiscountTier]:
    """Return the highest tier whose threshold ``nights`` reaches."""
    for tier in _ordered(tiers):
        if nights >= tier.min_nights:
            return tier
    return None


def next_tier(
    nights: int, tiers: Sequence[DiscountTier] = DEFAULT_DISCOUNT_TIERS
) -> Optional[Tuple[DiscountTier, int]]:
    """Return the next tier above the current stay and how many more nights unlock it."""
    upcoming = [tier for tier in tiers if tier.min_nights > nights]
    if not upcoming:
        return None
    tier = min(upcoming, key=lambda item: item.min_nights)
    return tier, tier.min_nights - nights


def _as_decimal(value: object, day: date) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(f"Nightly rate for {day.isoformat()} is not a number: {value!r}") from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"Nightly rate for {day.isoformat()} must be a non-negative amount")
    return amount


class PriceCalculator:
    """Combine nightly rates, guest surcharges and stay-length discounts."""

    def __init__(
        self,
        *,
        catalog: Optional[RoomCatalog] = None,
        surcharges: Optional[SurchargePolicy] = None,
        tiers: Sequence[DiscountTier] = DEFAULT_DISCOUNT_TIERS,
        default_max_guests: int = DEFAULT_MAX_GUESTS,
    ) -> None:
        self._catalog = catalog
        self._surcharges = surcharges or SurchargePolicy()
        self._tiers = tuple(_ordered(tiers))
        self._default_max_guests = default_max_guests

    @property
    def tiers(self) -> Tuple[DiscountTier, ...]:
        return self._tiers

    def calculate_stay_price(
        self,
        room: Union[RoomKey, RoomConfig],
        date_range: DateRange,
        guest_count: int,
        child_count: int,
        nightly_rates: Mapping[date, object],
        *,
        rates_include_guests: bool = False,
    ) -> StayPricing:
        """Price a stay night by night.

        ``guest_count`` counts adults. Surcharges are skipped when the nightly
        rates were already priced for the party (``rates_include_guests``). The
        discount tier is picked once from the total number of nights and applied
        to every night. Only the total is rounded.
        """
        config = self._room_config(room)
        base_occupancy = config.base_occupancy if config else DEFAULT_BASE_OCCUPANCY
        self._validate_party(config, guest_count, child_count)

        tier = select_tier(date_range.nights, self._tiers)
        rate = tier.discount_percent / HUNDRED if tier else Decimal("0")
        if rates_include_guests:
            surcharge = Decimal("0")
        else:
            surcharge = self._surcharges.nightly_surcharge(guest_count, child_count, base_occupancy)

        nights: list[NightPrice] = []
        for day in date_range.dates():
            if day not in nightly_rates or nightly_rates[day] is None:
                raise ValidationError(f"Missing nightly rate for {day.isoformat()}")
            base = _as_decimal(nightly_rates[day], day)
            gross = base + surcharge
            discount = gross * rate
            nights.append(
                NightPrice(
                    date=day,
                    base_price=base,
                    surcharge=surcharge,
                    discount=discount,
                    final_price=gross - discount,
                )
            )

        total = sum((night.final_price for night in nights), Decimal("0")).quantize(CENT, rounding=ROUND_HALF_UP)
        notes: list[str] = []
        if tier:
            notes.append(f"{tier.label}: {tier.discount_percent}% off every night")
        upcoming = next_tier(date_range.nights, self._tiers)
        if upcoming:
            upcoming_tier, missing = upcoming
            notes.append(f"Stay {missing} more night(s) for {upcoming_tier.discount_percent}% off")

        logger.debug(
            "Priced %s for %s nights (%s adults, %s children): %s",
            config.slug if config else room,
            date_range.nights,
            guest_count,
            child_count,
            total,
        )
        return StayPricing(
            nights=tuple(nights),
            total_price=total,
            discount_tier=tier,
            extra_adults=self._surcharges.extra_adults(guest_count, base_occupancy),
            children=child_count,
            notes=tuple(notes),
        )

    def quote_availability(
        self,
        room: Union[RoomKey, RoomConfig],
        date_range: DateRange,
        guest_count: int,
        child_count: int,
        result: AvailabilityResult,
    ) -> StayPricing:
        """Check an inventory result can host the stay, then price it."""
        unavailable = [day for day in date_range.dates() if day not in result.available]
        if unavailable:
            raise StayNotAvailableError(
                f"{len(unavailable)} night(s) unavailable, first {unavailable[0].isoformat()}"
            )
        if date_range.nights < result.min_stay:
            raise StayNotAvailableError(f"Minimum stay is {result.min_stay} nights")
        if date_range.nights > result.max_stay:
            raise StayNotAvailableError(f"Maximum stay is {result.max_stay} nights")
        return self.calculate_stay_price(
            room,
            date_range,
            guest_count,
            child_count,
            result.prices,
            rates_include_guests=result.guest_priced,
        )

    def _room_config(self, room: Union[RoomKey, RoomConfig]) -> Optional[RoomConfig]:
        if isinstance(room, RoomConfig):
            return room
        if self._catalog is None:
            return None
        return self._catalog.find(room)

    def _validate_party(self, config: Optional[RoomConfig], adults: int, children: int) -> None:
        if adults < 1:
            raise ValidationError("At least one adult is required")
        if children < 0:
            raise ValidationError("child_count must not be negative")
        max_guests = config.max_guests if config else self._default_max_guests
        if adults + children > max_guests:
            raise ValidationError(f"Party of {adults + children} exceeds the room maximum of {max_guests}")
        if config and config.max_children is not None and children > config.max_children:
            raise ValidationError(f"Room allows at most {config.max_children} children")
