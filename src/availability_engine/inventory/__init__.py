"""Inventory data models and PMS payload normalisation."""

from .models import (
    AvailabilityResult,
    DateRange,
    DiscountTier,
    NightlyQuote,
    NightPrice,
    RoomKey,
    RoomMetadata,
    StayPricing,
)
from .normalizer import (
    expand_runs,
    parse_bookings_payload,
    parse_calendar_payload,
    parse_offers_payload,
    parse_room_metadata_payload,
)

__all__ = [
    "AvailabilityResult",
    "DateRange",
    "DiscountTier",
    "NightlyQuote",
    "NightPrice",
    "RoomKey",
    "RoomMetadata",
    "StayPricing",
    "expand_runs",
    "parse_bookings_payload",
    "parse_calendar_payload",
    "parse_offers_payload",
    "parse_room_metadata_payload",
]
