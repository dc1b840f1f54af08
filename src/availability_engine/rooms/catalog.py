"""Apartment catalog helpers."""
from __future__ import annotations

import tomllib
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

from availability_engine.core.errors import ValidationError
from availability_engine.inventory.models import RoomKey
from availability_engine.inventory.normalizer import coerce_price

DEFAULT_BASE_OCCUPANCY = 2


@dataclass(frozen=True, slots=True)
class RoomConfig:
    """Static description of one apartment and its PMS identifiers."""

    slug: str
    name: str
    room: RoomKey
    max_guests: int
    max_children: Optional[int] = None
    base_occupancy: int = DEFAULT_BASE_OCCUPANCY
    fallback_price: Optional[Decimal] = None

    def to_dict(self) -> dict[str, object]:
        return {
            "slug": self.slug,
            "name": self.name,
            "property_id": self.room.property_id,
            "room_id": self.room.room_id,
            "max_guests": self.max_guests,
            "max_children": self.max_children,
            "base_occupancy": self.base_occupancy,
            "fallback_price": str(self.fallback_price) if self.fallback_price is not None else None,
        }


RoomRef = Union[RoomConfig, RoomKey, str]


class RoomCatalog:
    """Lookup of apartments by slug or by PMS room key."""

    def __init__(self, rooms: Mapping[str, RoomConfig], *, source: Optional[Path] = None) -> None:
        self._rooms = dict(rooms)
        self._by_key = {room.room: room for room in self._rooms.values()}
        self._source = source

    @property
    def source(self) -> Optional[Path]:
        return self._source

    def get(self, slug: str) -> RoomConfig:
        try:
            return self._rooms[slug]
        except KeyError as exc:
            known = ", ".join(sorted(self._rooms))
            raise KeyError(f"Room '{slug}' not found in catalog {self._source}. Known slugs: {known}") from exc

    def find(self, room: RoomKey) -> Optional[RoomConfig]:
        return self._by_key.get(room)

    def resolve(self, ref: RoomRef) -> RoomConfig:
        """Accept a slug, a ``"property:room"`` string, a RoomKey or a RoomConfig."""
        if isinstance(ref, RoomConfig):
            return ref
        if isinstance(ref, RoomKey):
            config = self.find(ref)
            if config is None:
                raise KeyError(f"Room {ref} is not in the catalog")
            return config
        if ref in self._rooms:
            return self._rooms[ref]
        if ":" in ref:
            property_id, _, room_id = ref.partition(":")
            return self.resolve(RoomKey(property_id, room_id))
        return self.get(ref)

    def values(self) -> Iterable[RoomConfig]:
        return self._rooms.values()

    def __len__(self) -> int:
        return len(self._rooms)

    @classmethod
    def from_entries(
        cls,
        entries: Iterable[Mapping[str, Any]],
        *,
        source: Optional[Path] = None,
    ) -> "RoomCatalog":
        rooms: dict[str, RoomConfig] = {}
        for entry in entries:
            try:
                slug = str(entry["slug"])
                room = RoomKey(str(entry["property_id"]), str(entry["room_id"]))
            except KeyError as exc:
                raise ValidationError(f"Room entry is missing {exc.args[0]!r}: {dict(entry)}") from exc
            max_guests = int(entry.get("max_guests", 2))
            base_occupancy = int(entry.get("base_occupancy", DEFAULT_BASE_OCCUPANCY))
            if max_guests < 1 or base_occupancy < 1:
                raise ValidationError(f"Room '{slug}' needs positive max_guests and base_occupancy")
            if slug in rooms:
                raise ValidationError(f"Duplicate room slug '{slug}'")
            max_children = entry.get("max_children")
            rooms[slug] = RoomConfig(
                slug=slug,
                name=str(entry.get("name", slug)),
                room=room,
                max_guests=max_guests,
                max_children=int(max_children) if max_children is not None else None,
                base_occupancy=base_occupancy,
                fallback_price=coerce_price(entry.get("fallback_price")),
            )
        return cls(rooms, source=source)

    @classmethod
    def load(cls, path: Path) -> "RoomCatalog":
        if not path.exists():
            raise FileNotFoundError(f"Room catalog not found at {path}")
        data = tomllib.loads(path.read_text())
        return cls.from_entries(data.get("rooms", []), source=path)

    @classmethod
    def default(cls) -> "RoomCatalog":
        return cls.from_entries(DEFAULT_ROOMS)


DEFAULT_ROOMS: tuple[dict[str, Any], ...] = (
    {
        "slug": "design",
        "name": "Design Apartmán",
        "property_id": "227484",
        "room_id": "483027",
        "max_guests": 6,
        "max_children": 4,
        "fallback_price": "105",
    },
    {
        "slug": "lite",
        "name": "Lite Apartmán",
        "property_id": "168900",
        "room_id": "357932",
        "max_guests": 2,
        "max_children": 1,
        "fallback_price": "75",
    },
    {
        "slug": "deluxe",
        "name": "Deluxe Apartmán",
        "property_id": "161445",
        "room_id": "357931",
        "max_guests": 6,
        "max_children": 4,
        "fallback_price": "100",
    },
)
