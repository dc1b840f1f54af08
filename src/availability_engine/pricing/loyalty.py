"""Returning-guest discounts applied by the booking flow after stay pricing."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from availability_engine.core.errors import ValidationError
from availability_engine.inventory.models import StayPricing


class LoyaltyTier(str, enum.Enum):
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"


LOYALTY_DISCOUNTS: dict[LoyaltyTier, Decimal] = {
    LoyaltyTier.BRONZE: Decimal("5"),
    LoyaltyTier.SILVER: Decimal("7"),
    LoyaltyTier.GOLD: Decimal("10"),
}

# Completed bookings needed to reach each tier.
LOYALTY_THRESHOLDS: dict[LoyaltyTier, int] = {
    LoyaltyTier.BRONZE: 0,
    LoyaltyTier.SILVER: 3,
    LoyaltyTier.GOLD: 6,
}


@dataclass(frozen=True, slots=True)
class LoyaltyPricing:
    stay: StayPricing
    tier: LoyaltyTier
    discount_percent: Decimal
    discount_amount: Decimal
    total_price: Decimal

    def to_dict(self) -> dict[str, object]:
        return {
            "stay": self.stay.to_dict(),
            "loyalty_tier": self.tier.value,
            "loyalty_discount_percent": str(self.discount_percent),
            "loyalty_discount": str(self.discount_amount),
            "total_price": str(self.total_price),
        }


def tier_for_bookings(completed_bookings: int) -> LoyaltyTier:
    if completed_bookings < 0:
        raise ValidationError("completed_bookings must not be negative")
    reached = [tier for tier, needed in LOYALTY_THRESHOLDS.items() if completed_bookings >= needed]
    return max(reached, key=lambda tier: LOYALTY_THRESHOLDS[tier])


def apply_loyalty(pricing: StayPricing, tier: LoyaltyTier) -> LoyaltyPricing:
    """Discount an already-priced stay; composes multiplicatively with the stay discount."""
    percent = LOYALTY_DISCOUNTS[tier]
    discounted = (pricing.total_price * (1 - percent / Decimal("100"))).quantize(
        Decimal("0.01"), rounding=ROUND_HALF_UP
    )
    return LoyaltyPricing(
        stay=pricing,
        tier=tier,
        discount_percent=percent,
        discount_amount=pricing.total_price - discounted,
        total_price=discounted,
    )
