from __future__ import annotations

from datetime import date
from decimal import Decimal

import pydantic
import pytest

from availability_engine.config.engine_config import EngineConfig, parse_stay_date
from availability_engine.config.settings import Settings
from availability_engine.core.errors import ValidationError
from availability_engine.inventory.models import RoomKey
from availability_engine.rooms.catalog import RoomCatalog

CONFIG_TOML = """
profile = "test"

[defaults]
check_in = "2025-08-01"
nights = 3
rooms = "design, deluxe"

[pricing]
adult_surcharge = "25"
child_surcharge = "12.50"

[[pricing.discount_tiers]]
min_nights = 5
discount_percent = "8"

[cache]
availability_ttl_s = 120
sweep_interval_s = 60

[[rooms]]
slug = "design"
property_id = "227484"
room_id = "483027"
max_guests = 6
fallback_price = 105

[[rooms]]
slug = "deluxe"
name = "Deluxe"
property_id = "161445"
room_id = "357931"
max_guests = 6
"""


def _settings(**kwargs) -> Settings:
    return Settings(_env_file=None, **kwargs)


def test_settings_normalise_tokens_and_base_url(tmp_path):
    settings = _settings(
        base_url="https://api.beds24.com/v2/",
        long_life_token="   ",
        refresh_token="RT",
        log_dir=str(tmp_path / "logs"),
    )

    assert settings.base_url == "https://api.beds24.com/v2"
    assert settings.long_life_token is None
    assert settings.has_credentials()
    assert settings.log_dir == tmp_path / "logs"
    assert settings.default_headers()["Accept"] == "application/json"


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("PMS_LONG_LIFE_TOKEN", "from-env")
    monkeypatch.setenv("PMS_MAX_REQUESTS_PER_MINUTE", "12")

    settings = _settings()

    assert settings.long_life_token == "from-env"
    assert settings.max_requests_per_minute == 12


def test_settings_reject_non_positive_ttls():
    with pytest.raises(pydantic.ValidationError):
        _settings(availability_ttl_s=0)


def test_engine_config_loads_rooms_pricing_and_cache(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(CONFIG_TOML)

    config = EngineConfig.load(path)
    catalog = config.catalog()
    settings = _settings()
    config.apply_to(settings)

    assert config.profile == "test"
    assert len(catalog) == 2
    assert catalog.get("design").fallback_price == Decimal("105")
    assert catalog.get("design").name == "design"
    assert config.surcharge_policy().child_surcharge == Decimal("12.50")
    assert [tier.label for tier in config.discount_tiers()] == ["5+ nights"]
    assert config.defaults.rooms == ["design", "deluxe"]
    assert config.defaults.stay().nights == 3
    assert settings.availability_ttl_s == 120
    assert settings.cache_sweep_interval_s == 60


def test_engine_config_defaults_cover_three_apartments():
    config = EngineConfig()
    assert {room.slug for room in config.catalog().values()} == {"design", "lite", "deluxe"}
    assert [tier.min_nights for tier in config.discount_tiers()] == [7, 14, 30]


def test_duplicate_discount_thresholds_are_rejected():
    with pytest.raises(pydantic.ValidationError):
        EngineConfig.model_validate(
            {"pricing": {"discount_tiers": [{"min_nights": 7, "discount_percent": 10}] * 2}}
        )


def test_catalog_resolves_slugs_and_room_keys(tmp_path):
    path = tmp_path / "rooms.toml"
    path.write_text(CONFIG_TOML)
    catalog = RoomCatalog.load(path)

    assert catalog.resolve("deluxe").room == RoomKey("161445", "357931")
    assert catalog.resolve("227484:483027").slug == "design"
    assert catalog.find(RoomKey("1", "2")) is None
    with pytest.raises(KeyError):
        catalog.get("penthouse")
    with pytest.raises(FileNotFoundError):
        RoomCatalog.load(tmp_path / "missing.toml")


def test_catalog_rejects_incomplete_entries():
    with pytest.raises(ValidationError):
        RoomCatalog.from_entries([{"slug": "x", "property_id": "1"}])


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("today", date(2025, 1, 10)),
        ("+14d", date(2025, 1, 24)),
        ("today+2w", date(2025, 1, 24)),
        ("+1m", date(2025, 2, 9)),
        ("2025-03-01", date(2025, 3, 1)),
    ],
)
def test_parse_stay_date(raw: str, expected: date):
    assert parse_stay_date(raw, today=date(2025, 1, 10)) == expected


def test_parse_stay_date_rejects_garbage():
    with pytest.raises(ValueError):
        parse_stay_date("+3y", today=date(2025, 1, 10))
    with pytest.raises(ValueError):
        parse_stay_date("soon")
