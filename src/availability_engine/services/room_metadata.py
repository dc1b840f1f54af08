"""Cached access to static room descriptions from the PMS."""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, Sequence

from availability_engine.cache.availability_cache import AvailabilityCache
from availability_engine.inventory.models import RoomKey, RoomMetadata

from .pms_client import PmsClient

logger = logging.getLogger(__name__)


class RoomMetadataLookup:
    """Serve room metadata through the shared cache with the long metadata TTL."""

    def __init__(self, client: PmsClient, cache: AvailabilityCache) -> None:
        self._client = client
        self._cache = cache

    async def get(self, room: RoomKey) -> RoomMetadata:
        async def fetch() -> RoomMetadata:
            return await self._client.get_room_metadata(room)

        return await self._cache.get_or_fetch(
            AvailabilityCache.make_metadata_key(room),
            fetch,
            ttl=self._cache.ttl_policy.metadata,
        )

    async def get_many(self, rooms: Sequence[RoomKey]) -> Dict[RoomKey, RoomMetadata]:
        found = await asyncio.gather(*(self.get(room) for room in rooms))
        return dict(zip(rooms, found))
