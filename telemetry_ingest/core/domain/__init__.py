"""Domain layer - Modelos y contratos."""

from .contracts import IngestResult, TransportMeta
from .device import Device, Placement, Room
from .reading import NormalizedReading, ReadingRow

__all__ = [
    "Device",
    "IngestResult",
    "NormalizedReading",
    "Placement",
    "ReadingRow",
    "Room",
    "TransportMeta",
]
