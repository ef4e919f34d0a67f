"""Dispositivos, habitaciones y ubicaciones."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class Device:
    """Dispositivo físico.

    `uid` es el identificador externo (el que viaja en el topic) y `id` el
    surrogate interno asignado al crearlo.
    """
    id: int
    uid: str
    label: Optional[str] = None
    model: Optional[str] = None
    created_at: Optional[str] = None
    last_seen_at: Optional[str] = None
    offset_temperature: float = 0.0
    offset_humidity: float = 0.0

    @classmethod
    def from_row(cls, row: Any) -> "Device":
        return cls(
            id=int(row.id),
            uid=str(row.uid),
            label=row.label,
            model=row.model,
            created_at=str(row.created_at) if row.created_at is not None else None,
            last_seen_at=str(row.last_seen_at) if row.last_seen_at is not None else None,
            offset_temperature=float(row.offset_temperature or 0),
            offset_humidity=float(row.offset_humidity or 0),
        )


@dataclass(frozen=True)
class Room:
    room_id: str
    name: str
    floor: Optional[str] = None
    side: Optional[str] = None

    @classmethod
    def from_row(cls, row: Any) -> "Room":
        return cls(
            room_id=str(row.room_id),
            name=str(row.name),
            floor=row.floor,
            side=row.side,
        )


@dataclass(frozen=True)
class Placement:
    """Ubicación de un dispositivo en una habitación durante [from_ts, to_ts)."""
    device_id: int
    room_id: str
    from_ts: str
    to_ts: Optional[str] = None

    @property
    def is_current(self) -> bool:
        return self.to_ts is None

    @classmethod
    def from_row(cls, row: Any) -> "Placement":
        return cls(
            device_id=int(row.device_id),
            room_id=str(row.room_id),
            from_ts=str(row.from_ts),
            to_ts=str(row.to_ts) if row.to_ts is not None else None,
        )
