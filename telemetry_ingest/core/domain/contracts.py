"""Contratos en la frontera con el transporte."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .reading import NormalizedReading


@dataclass(frozen=True)
class TransportMeta:
    """Metadatos del mensaje entregado por el cliente MQTT."""
    retain: bool = False
    qos: int = 0
    message_id: Optional[str] = None


@dataclass(frozen=True)
class IngestResult:
    """Resultado de una ingesta exitosa."""
    success: bool
    device_id: str
    reading: NormalizedReading
    insert_id: Optional[int]
    device_created: bool
    retained: Optional[bool] = None

    def to_dict(self) -> dict:
        result = {
            "success": self.success,
            "deviceId": self.device_id,
            "reading": self.reading.to_dict(),
            "insertId": self.insert_id,
            "deviceCreated": self.device_created,
        }
        # retained solo aparece cuando el broker marcó el mensaje
        if self.retained:
            result["retained"] = True
        return result
