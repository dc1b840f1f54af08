"""Static engine configuration (rooms, surcharges, discount tiers) loaded from TOML."""
from __future__ import annotations

import re
import tomllib
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional, TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator, model_validator

from availability_engine.inventory.models import DateRange, DiscountTier
from availability_engine.pricing.calculator import DEFAULT_DISCOUNT_TIERS, PriceCalculator, SurchargePolicy
from availability_engine.rooms.catalog import DEFAULT_ROOMS, RoomCatalog

if TYPE_CHECKING:  # pragma: no cover
    from availability_engine.config.settings import Settings

_RELATIVE_DATE = re.compile(r"^(?P<count>\d+)\s*(?P<unit>[dDwWmM])$")


class DiscountTierSection(BaseModel):
    min_nights: int = Field(ge=1)
    discount_percent: Decimal = Field(ge=0, le=100)
    label: Optional[str] = None

    def to_tier(self) -> DiscountTier:
        return DiscountTier(
            min_nights=self.min_nights,
            discount_percent=self.discount_percent,
            label=self.label or f"{self.min_nights}+ nights",
        )


class PricingSection(BaseModel):
    """Guest surcharges and stay-length discounts."""

    currency: str = Field(default="EUR", description="Display currency; no conversion is performed")
    adult_surcharge: Decimal = Field(default=Decimal("20"), ge=0, description="Per extra adult per night")
    child_surcharge: Decimal = Field(default=Decimal("10"), ge=0, description="Per child per night")
    discount_tiers: list[DiscountTierSection] = Field(
        default_factory=lambda: [
            DiscountTierSection(
                min_nights=tier.min_nights,
                discount_percent=tier.discount_percent,
                label=tier.label,
            )
            for tier in DEFAULT_DISCOUNT_TIERS
        ]
    )

    @model_validator(mode="after")
    def _unique_thresholds(self) -> "PricingSection":
        thresholds = [tier.min_nights for tier in self.discount_tiers]
        if len(thresholds) != len(set(thresholds)):
            raise ValueError("discount tiers must have distinct min_nights")
        return self


class CacheSection(BaseModel):
    """Cache TTL overrides; unset values keep the environment settings."""

    availability_ttl_s: Optional[float] = Field(default=None, gt=0)
    far_availability_ttl_s: Optional[float] = Field(default=None, gt=0)
    metadata_ttl_s: Optional[float] = Field(default=None, gt=0)
    near_term_days: Optional[int] = Field(default=None, ge=0)
    sweep_interval_s: Optional[float] = Field(default=None, gt=0)


class DefaultsSection(BaseModel):
    """Defaults for manual CLI runs."""

    check_in: str = Field(default="+14d", description="ISO 8601 date or relative offset such as '+14d'")
    nights: int = Field(default=7, ge=1)
    adults: int = Field(default=2, ge=1)
    children: int = Field(default=0, ge=0)
    rooms: list[str] = Field(default_factory=list)

    @field_validator("rooms", mode="before")
    @classmethod
    def _coerce_rooms(cls, value: object) -> list[str]:
        if value in (None, "", ()):
            return []
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return [str(item).strip() for item in value if str(item).strip()]  # type: ignore[union-attr]

    def stay(self) -> DateRange:
        start = parse_stay_date(self.check_in)
        return DateRange(start, start + timedelta(days=self.nights))


class EngineConfig(BaseModel):
    """Top-level configuration decoded from TOML."""

    profile: str = Field(default="default", description="Human label used for logging")
    rooms: list[dict[str, Any]] = Field(default_factory=lambda: [dict(room) for room in DEFAULT_ROOMS])
    pricing: PricingSection = Field(default_factory=PricingSection)
    cache: CacheSection = Field(default_factory=CacheSection)
    defaults: DefaultsSection = Field(default_factory=DefaultsSection)

    @classmethod
    def load(cls, path: Path) -> "EngineConfig":
        """Load a config from a TOML file."""
        data = tomllib.loads(path.read_text())
        return cls.model_validate(data)

    def catalog(self) -> RoomCatalog:
        return RoomCatalog.from_entries(self.rooms)

    def surcharge_policy(self) -> SurchargePolicy:
        return SurchargePolicy(
            adult_surcharge=self.pricing.adult_surcharge,
            child_surcharge=self.pricing.child_surcharge,
        )

    def discount_tiers(self) -> tuple[DiscountTier, ...]:
        return tuple(section.to_tier() for section in self.pricing.discount_tiers)

    def price_calculator(self) -> PriceCalculator:
        return PriceCalculator(
            catalog=self.catalog(),
            surcharges=self.surcharge_policy(),
            tiers=self.discount_tiers(),
        )

    def apply_to(self, settings: "Settings") -> None:
        """Apply cache overrides to an existing Settings instance."""
        cache = self.cache
        if cache.availability_ttl_s is not None:
            settings.availability_ttl_s = cache.availability_ttl_s
        if cache.far_availability_ttl_s is not None:
            settings.far_availability_ttl_s = cache.far_availability_ttl_s
        if cache.metadata_ttl_s is not None:
            settings.metadata_ttl_s = cache.metadata_ttl_s
        if cache.near_term_days is not None:
            settings.near_term_days = cache.near_term_days
        if cache.sweep_interval_s is not None:
            settings.cache_sweep_interval_s = cache.sweep_interval_s


def parse_stay_date(value: str, *, today: Optional[date] = None) -> date:
    """Parse ``YYYY-MM-DD``, ``today`` or a relative offset like ``+14d``/``+2w``/``+1m``."""
    base = today or date.today()
    text = value.strip()
    lowered = text.lower()
    if lowered == "today":
        return base
    if lowered.startswith("today+"):
        lowered = f"+{lowered.split('+', 1)[1]}"
    if lowered.startswith("+"):
        match = _RELATIVE_DATE.match(lowered[1:])
        if not match:
            raise ValueError(f"Unsupported relative date '{value}'. Use forms like '+14d', '+2w', '+1m'.")
        count = int(match.group("count"))
        unit = match.group("unit").lower()
        if unit == "d":
            delta = timedelta(days=count)
        elif unit == "w":
            delta = timedelta(weeks=count)
        else:
            # months are 30-day blocks
            delta = timedelta(days=30 * count)
        return base + delta
    try:
        return date.fromisoformat(text)
    except ValueError as exc:
        raise ValueError(f"Invalid date '{value}'. Provide ISO format (YYYY-MM-DD) or a relative offset.") from exc


__all__ = ["EngineConfig", "parse_stay_date"]
