"""Detección de la versión de esquema de un store.

Si `schema_version` tiene registros manda el registro. Si no, se compara la
forma viva de las tablas con un conjunto pequeño de huellas con nombre; la
primera que encaja decide la versión inferida.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from .storage import TelemetryStorage

logger = logging.getLogger(__name__)

# tabla -> columnas
Shape = Dict[str, List[str]]


@dataclass(frozen=True)
class Fingerprint:
    name: str
    version: int
    matches: Callable[[Shape], bool]


def _cols(shape: Shape, table: str) -> List[str]:
    return shape.get(table, [])


def _is_empty(shape: Shape) -> bool:
    return not any(
        t in shape for t in ("devices", "readings_raw", "readings", "rooms", "device_room_placements")
    )


def _has_legacy_readings_table(shape: Shape) -> bool:
    # Primera generación: `readings(device_id, t, h, timestamp)` sin readings_raw
    return "readings" in shape and "readings_raw" not in shape


def _has_abbreviated_columns(shape: Shape) -> bool:
    readings = _cols(shape, "readings_raw")
    devices = _cols(shape, "devices")
    return (
        ("t" in readings or "h" in readings)
        and "temperature" not in readings
    ) or "offset_t" in devices or "offset_h" in devices


def _has_text_device_keys(shape: Shape) -> bool:
    return "device_uid" in _cols(shape, "devices") and "temperature" in _cols(shape, "readings_raw")


def _is_untracked_current(shape: Shape) -> bool:
    devices = _cols(shape, "devices")
    return "uid" in devices and "id" in devices and "temperature" in _cols(shape, "readings_raw")


FINGERPRINTS: Tuple[Fingerprint, ...] = (
    Fingerprint("empty_store", 0, _is_empty),
    Fingerprint("legacy_readings_table", 0, _has_legacy_readings_table),
    Fingerprint("abbreviated_columns", 0, _has_abbreviated_columns),
    Fingerprint("text_device_keys", 2, _has_text_device_keys),
    Fingerprint("untracked_current", 3, _is_untracked_current),
)


class SchemaDetector:
    """Infiere la versión aplicada de un store.

    Uso:
        with store.transaction() as storage:
            version = SchemaDetector(storage).detect()
    """

    def __init__(self, storage: TelemetryStorage, fingerprints: Tuple[Fingerprint, ...] = FINGERPRINTS):
        self._storage = storage
        self._fingerprints = fingerprints

    def live_shape(self) -> Shape:
        return {t: self._storage.column_names(t) for t in self._storage.table_names()}

    def match(self, shape: Optional[Shape] = None) -> Optional[Fingerprint]:
        shape = self.live_shape() if shape is None else shape
        for fp in self._fingerprints:
            if fp.matches(shape):
                return fp
        return None

    def detect(self) -> int:
        recorded = self._storage.get_schema_version()
        if recorded > 0:
            logger.debug("[MIGRATION] Recorded schema version %s", recorded)
            return recorded

        fp = self.match()
        if fp is None:
            # Todas las migraciones son idempotentes: reaplicar desde 0 es seguro
            logger.warning(
                "[MIGRATION] Unrecognized schema shape without version record, assuming 0"
            )
            return 0

        logger.info("[MIGRATION] Detected %s store -> version %s", fp.name, fp.version)
        return fp.version
