"""Modelo de dominio para lecturas de temperatura/humedad."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class NormalizedReading:
    """Lectura normalizada - el contrato que fluye por el pipeline.

    `ts` es siempre ISO-8601 UTC con milisegundos y sufijo `Z`
    (ej. ``2025-09-07T10:30:00.000Z``).
    """
    temperature: float
    humidity: float
    ts: str

    def to_dict(self) -> dict:
        return {
            "temperature": self.temperature,
            "humidity": self.humidity,
            "ts": self.ts,
        }


@dataclass(frozen=True)
class ReadingRow:
    """Fila a insertar en readings_raw."""
    device_id: int
    device_uid: str
    room_id: Optional[str]
    ts: str
    temperature: float
    humidity: float
    source: str = "mqtt"
    dedup_key: Optional[str] = None

    def to_params(self) -> dict:
        return {
            "device_id": self.device_id,
            "room_id": self.room_id,
            "ts": self.ts,
            "temperature": float(self.temperature),
            "humidity": float(self.humidity),
            "source": self.source,
            "dedup_key": self.dedup_key,
        }
