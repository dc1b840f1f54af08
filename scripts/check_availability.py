"""Entry point for manual availability and price checks against the PMS."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import AsyncIterator, Optional

from availability_engine.cache.availability_cache import AvailabilityCache, TtlPolicy
from availability_engine.config.engine_config import EngineConfig, parse_stay_date
from availability_engine.config.settings import Settings
from availability_engine.core.errors import EngineError
from availability_engine.core.logging import configure_logging
from availability_engine.inventory.models import DateRange
from availability_engine.pricing.loyalty import apply_loyalty, tier_for_bookings
from availability_engine.rooms.catalog import RoomConfig
from availability_engine.services import BatchAvailabilityCoordinator, PmsClient, RoomMetadataLookup

logger = logging.getLogger(__name__)


def _stay(args: argparse.Namespace, config: EngineConfig) -> DateRange:
    if args.check_in is None and args.nights is None:
        return config.defaults.stay()
    start = parse_stay_date(args.check_in or config.defaults.check_in)
    nights = args.nights or config.defaults.nights
    return DateRange(start, start + timedelta(days=nights))


def _rooms(args: argparse.Namespace, config: EngineConfig) -> list[RoomConfig]:
    catalog = config.catalog()
    requested = [item.strip() for item in (args.rooms or "").split(",") if item.strip()]
    if not requested:
        requested = list(config.defaults.rooms)
    if not requested:
        return list(catalog.values())
    return [catalog.resolve(ref) for ref in requested]


@asynccontextmanager
async def _availability_cache(settings: Settings) -> AsyncIterator[AvailabilityCache]:
    cache = AvailabilityCache(ttl_policy=TtlPolicy.from_settings(settings))
    if settings.cache_sweep_interval_s:
        cache.start_sweeper(settings.cache_sweep_interval_s)
    try:
        yield cache
    finally:
        await cache.stop_sweeper()


async def run_batch(settings: Settings, config: EngineConfig, args: argparse.Namespace) -> dict[str, object]:
    date_range = _stay(args, config)
    rooms = _rooms(args, config)
    adults = args.adults or config.defaults.adults
    children = args.children if args.children is not None else config.defaults.children

    async with _availability_cache(settings) as cache, PmsClient.from_settings(settings) as client:
        coordinator = BatchAvailabilityCoordinator(client, cache)
        batch = await coordinator.get_batch_availability(rooms, date_range, adults, child_count=children)
        payload = batch.to_dict()
        payload["cache"] = cache.stats().to_dict()
    return payload


async def run_rooms(settings: Settings, config: EngineConfig, args: argparse.Namespace) -> dict[str, object]:
    rooms = _rooms(args, config)
    async with _availability_cache(settings) as cache, PmsClient.from_settings(settings) as client:
        metadata = await RoomMetadataLookup(client, cache).get_many([room.room for room in rooms])
    return {
        room.slug: {"configured": room.to_dict(), "pms": metadata[room.room].to_dict()}
        for room in rooms
    }


async def run_quote(settings: Settings, config: EngineConfig, args: argparse.Namespace) -> dict[str, object]:
    date_range = _stay(args, config)
    room = config.catalog().resolve(args.room)
    adults = args.adults or config.defaults.adults
    children = args.children if args.children is not None else config.defaults.children
    calculator = config.price_calculator()

    async with PmsClient.from_settings(settings) as client:
        result = await client.get_inventory(
            room.room,
            date_range,
            adults,
            child_count=children,
            fallback_price=room.fallback_price,
        )
    pricing = calculator.quote_availability(room, date_range, adults, children, result)
    payload: dict[str, object] = {
        "room": room.to_dict(),
        "check_in": date_range.start.isoformat(),
        "check_out": date_range.end.isoformat(),
        "source": result.source,
        "pricing": pricing.to_dict(),
    }
    if args.loyalty_bookings is not None:
        payload["loyalty"] = apply_loyalty(pricing, tier_for_bookings(args.loyalty_bookings)).to_dict()
    return payload


async def run_invite(settings: Settings, args: argparse.Namespace) -> dict[str, object]:
    async with PmsClient.from_settings(settings) as client:
        credential = await client.tokens.exchange_invite_code(args.code)
    # Printed once so it can be stored as PMS_REFRESH_TOKEN.
    return {"refresh_token": credential.refresh_token}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Check apartment availability and stay prices")
    parser.add_argument("--config", type=Path, default=None, help="Path to the engine TOML config")
    parser.add_argument("--log-level", default=None, help="Override PMS_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_stay_arguments(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("--check-in", default=None, help="YYYY-MM-DD, 'today' or an offset like '+14d'")
        sub.add_argument("--nights", type=int, default=None)
        sub.add_argument("--adults", type=int, default=None)
        sub.add_argument("--children", type=int, default=None)

    batch = subparsers.add_parser("batch", help="Availability for several apartments")
    batch.add_argument("--rooms", default=None, help="Comma-separated slugs or property:room keys")
    add_stay_arguments(batch)

    quote = subparsers.add_parser("quote", help="Availability plus stay price for one apartment")
    quote.add_argument("room", help="Room slug or property:room key")
    quote.add_argument("--loyalty-bookings", type=int, default=None, help="Completed bookings of the guest")
    add_stay_arguments(quote)

    rooms = subparsers.add_parser("rooms", help="Configured apartments next to the PMS room details")
    rooms.add_argument("--rooms", default=None, help="Comma-separated slugs or property:room keys")

    invite = subparsers.add_parser("invite", help="Exchange a one-time invite code for a refresh token")
    invite.add_argument("code")
    return parser


def _load_config(settings: Settings, override: Optional[Path]) -> EngineConfig:
    path = override or settings.engine_config_path
    if path.exists():
        config = EngineConfig.load(path)
        config.apply_to(settings)
        logger.info("Loaded engine profile '%s' from %s", config.profile, path)
        return config
    if override is not None:
        raise FileNotFoundError(f"Engine config not found at {path}")
    logger.info("No engine config at %s; using built-in apartments and pricing", path)
    return EngineConfig()


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    settings = Settings()
    if args.log_level:
        settings.log_level = args.log_level
    configure_logging(settings.log_level, settings.log_dir)

    try:
        if args.command == "invite":
            payload = asyncio.run(run_invite(settings, args))
        else:
            config = _load_config(settings, args.config)
            if args.command == "batch":
                payload = asyncio.run(run_batch(settings, config, args))
            elif args.command == "rooms":
                payload = asyncio.run(run_rooms(settings, config, args))
            else:
                payload = asyncio.run(run_quote(settings, config, args))
    except (EngineError, KeyError, FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return 1

    json.dump(payload, sys.stdout, indent=2, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
