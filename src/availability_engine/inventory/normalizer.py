"""Utilities to transform raw PMS payloads into normalised nightly quotes."""
from __future__ import annotations

import logging
import re
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .models import DateRange, NightlyQuote, RoomKey, RoomMetadata

logger = logging.getLogger(__name__)

PRICE_FIELDS = ("price1", "price", "rate", "amount")
BOOKED_STATUSES = frozenset({"new", "confirmed", "request", "black"})
_RATE_LINE = re.compile(r"(\d{4}-\d{2}-\d{2}).*?EUR\s+([\d.]+)")


def coerce_price(value: Any) -> Optional[Decimal]:
    """Return a positive ``Decimal`` price or ``None`` for missing/invalid values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        # Floats go through str() so 121.5 becomes Decimal("121.5"), not its binary expansion.
        price = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not price.is_finite() or price <= 0:
        return None
    return price


def _coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_day(value: Any) -> Optional[date]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def _run_price(run: Mapping[str, Any]) -> Optional[Decimal]:
    for field in PRICE_FIELDS:
        if field in run:
            price = coerce_price(run[field])
            if price is not None:
                return price
    return None


def _run_days(run: Mapping[str, Any]) -> List[date]:
    start = _parse_day(run.get("from"))
    end = _parse_day(run.get("to"))
    if start is not None and end is not None:
        days: List[date] = []
        current = start
        while current <= end:
            days.append(current)
            current += timedelta(days=1)
        return days
    single = _parse_day(run.get("date")) or _parse_day(run.get("day"))
    return [single] if single is not None else []


def expand_runs(runs: Iterable[Mapping[str, Any]], date_range: DateRange) -> List[NightlyQuote]:
    """Expand PMS calendar runs into exactly one quote per night of ``date_range``.

    Runs use an inclusive ``to`` date. A later run overrides earlier runs for the
    dates they share. ``numAvail`` of zero or below marks the night unavailable
    regardless of price; a missing ``numAvail`` means available. Nights covered
    by no run are reported unavailable with no price.
    """
    by_day: Dict[date, NightlyQuote] = {}
    for run in runs:
        if not isinstance(run, Mapping):
            continue
        num_avail = _coerce_int(run.get("numAvail"))
        available = num_avail is None or num_avail > 0
        price = _run_price(run)
        min_stay = _coerce_int(run.get("minStay"))
        max_stay = _coerce_int(run.get("maxStay"))
        for day in _run_days(run):
            if day not in date_range:
                continue
            by_day[day] = NightlyQuote(
                date=day,
                base_price=price,
                available=available,
                min_stay=min_stay or None,
                max_stay=max_stay or None,
            )

    quotes: List[NightlyQuote] = []
    missing = 0
    for day in date_range.dates():
        quote = by_day.get(day)
        if quote is None:
            missing += 1
            quote = NightlyQuote(date=day, base_price=None, available=False)
        quotes.append(quote)
    if missing:
        logger.debug("%s night(s) of %s not covered by any calendar run", missing, date_range)
    return quotes


def extract_calendar_runs(payload: Any) -> List[Mapping[str, Any]]:
    """Locate the list of calendar runs in any of the shapes the PMS returns."""
    if isinstance(payload, list):
        container: Any = payload
    elif isinstance(payload, Mapping):
        container = payload.get("data")
        if container is None:
            container = payload.get("calendar")
    else:
        return []
    if not isinstance(container, list):
        return []

    runs: List[Mapping[str, Any]] = []
    for item in container:
        if not isinstance(item, Mapping):
            continue
        nested = item.get("calendar")
        if isinstance(nested, list):
            runs.extend(run for run in nested if isinstance(run, Mapping))
        else:
            runs.append(item)
    return runs


def parse_calendar_payload(payload: Any, date_range: DateRange) -> Optional[List[NightlyQuote]]:
    """Return quotes for a calendar payload, or ``None`` when it carries no runs."""
    runs = extract_calendar_runs(payload)
    if not runs:
        return None
    return expand_runs(runs, date_range)


def parse_offers_payload(payload: Any, date_range: DateRange) -> Optional[List[NightlyQuote]]:
    """Return quotes for an offers payload, or ``None`` when no offer matches the stay.

    An offer price is the total for the whole stay and the requested guests, so
    the nightly rate is ``total / nights``. Stay restrictions are not part of
    the offers feed.
    """
    if isinstance(payload, Mapping):
        entries = payload.get("data")
    else:
        entries = payload
    if not isinstance(entries, list) or not entries:
        return None

    total: Optional[Decimal] = None
    available = False
    matched = False
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        arrival = _parse_day(entry.get("arrival"))
        departure = _parse_day(entry.get("departure"))
        if arrival is not None and departure is not None:
            if (arrival, departure) != (date_range.start, date_range.end):
                continue
        offers = entry.get("offers")
        if isinstance(offers, list):
            for offer in offers:
                if not isinstance(offer, Mapping):
                    continue
                matched = True
                price = coerce_price(offer.get("price"))
                units = _coerce_int(offer.get("unitsAvailable"))
                if price is None:
                    continue
                if total is None or price < total:
                    total = price
                    available = units is None or units > 0
            continue
        price = coerce_price(entry.get("price", entry.get("total")))
        if price is None:
            continue
        matched = True
        total = price
        units = _coerce_int(entry.get("available", entry.get("qty")))
        available = units is None or units > 0

    if not matched or total is None:
        return None
    nightly = total / date_range.nights
    return [
        NightlyQuote(date=day, base_price=nightly, available=available)
        for day in date_range.dates()
    ]


def _rate_description_prices(description: Any) -> Dict[date, Decimal]:
    prices: Dict[date, Decimal] = {}
    if not isinstance(description, str):
        return prices
    for line in description.splitlines():
        match = _RATE_LINE.search(line)
        if not match:
            continue
        day = _parse_day(match.group(1))
        price = coerce_price(match.group(2))
        if day is not None and price is not None:
            prices[day] = price
    return prices


def parse_bookings_payload(
    payload: Any,
    date_range: DateRange,
    *,
    fallback_price: Optional[Decimal] = None,
) -> Optional[List[NightlyQuote]]:
    """Derive quotes from the bookings feed.

    Nights inside a booking with a blocking status are unavailable. Nightly
    prices come from booking rate descriptions when the PMS includes them,
    otherwise from ``fallback_price``. An empty bookings list means the room
    is free for the whole range; ``None`` is returned only for unusable payloads.
    """
    if isinstance(payload, Mapping):
        bookings = payload.get("data")
    else:
        bookings = payload
    if not isinstance(bookings, list):
        return None

    booked: set[date] = set()
    prices: Dict[date, Decimal] = {}
    for booking in bookings:
        if not isinstance(booking, Mapping):
            continue
        prices.update(
            (day, price)
            for day, price in _rate_description_prices(booking.get("rateDescription")).items()
            if day in date_range
        )
        status = str(booking.get("status") or "").lower()
        if status not in BOOKED_STATUSES:
            continue
        arrival = _parse_day(booking.get("arrival"))
        departure = _parse_day(booking.get("departure"))
        if arrival is None or departure is None or arrival >= departure:
            continue
        current = arrival
        # Departure day is free for the next guest.
        while current < departure:
            if current in date_range:
                booked.add(current)
            current += timedelta(days=1)

    return [
        NightlyQuote(
            date=day,
            base_price=prices.get(day, fallback_price),
            available=day not in booked,
        )
        for day in date_range.dates()
    ]


def parse_room_metadata_payload(payload: Any, room: RoomKey) -> Optional[RoomMetadata]:
    """Find ``room`` in a properties payload (``data[].roomTypes[]``)."""
    if isinstance(payload, Mapping):
        properties = payload.get("data")
    else:
        properties = payload
    if not isinstance(properties, list):
        return None

    for prop in properties:
        if not isinstance(prop, Mapping):
            continue
        if prop.get("id") is not None and str(prop.get("id")) != room.property_id:
            continue
        room_types = prop.get("roomTypes")
        if not isinstance(room_types, list):
            continue
        for entry in room_types:
            if not isinstance(entry, Mapping) or str(entry.get("id")) != room.room_id:
                continue
            name = entry.get("name")
            return RoomMetadata(
                room=room,
                name=str(name) if name else None,
                max_people=_coerce_int(entry.get("maxPeople")),
                max_adults=_coerce_int(entry.get("maxAdult")),
                max_children=_coerce_int(entry.get("maxChildren")),
                min_stay=_coerce_int(entry.get("minStay")),
                max_stay=_coerce_int(entry.get("maxStay")),
                min_price=coerce_price(entry.get("minPrice")),
            )
    return None
