"""Service clients for the PMS inventory API."""

from .batch import BatchAvailability, BatchAvailabilityCoordinator, BatchTiming, RoomError
from .pms_client import PmsClient
from .room_metadata import RoomMetadataLookup

__all__ = [
    "BatchAvailability",
    "BatchAvailabilityCoordinator",
    "BatchTiming",
    "PmsClient",
    "RoomError",
    "RoomMetadataLookup",
]
