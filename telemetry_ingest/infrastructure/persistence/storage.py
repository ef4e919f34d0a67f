"""Acceso SQL a dispositivos, habitaciones, ubicaciones y lecturas.

`TelemetryStorage` envuelve una conexión con transacción abierta (la crea
`TelemetryStore.transaction()`); no hace commit ni rollback por su cuenta.
Sin lógica de negocio más allá de las restricciones de almacenamiento.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from ...core.domain.device import Device, Placement, Room
from ...core.domain.reading import ReadingRow
from ...errors import (
    DuplicateReadingError,
    HumidityRangeError,
    ProvisioningError,
    TemperatureRangeError,
)

logger = logging.getLogger(__name__)

# Límites de cordura del almacenamiento (más amplios que los del sensor)
STORAGE_TEMPERATURE_MIN = -50.0
STORAGE_TEMPERATURE_MAX = 100.0
STORAGE_HUMIDITY_MIN = 0.0
STORAGE_HUMIDITY_MAX = 100.0

_DEVICE_COLUMNS = (
    "id, uid, label, model, created_at, last_seen_at, offset_temperature, offset_humidity"
)


class TelemetryStorage:
    """Operaciones SQL sobre una conexión transaccional."""

    def __init__(self, conn: Connection):
        self._conn = conn

    @property
    def connection(self) -> Connection:
        return self._conn

    @contextmanager
    def savepoint(self) -> Iterator[None]:
        """SAVEPOINT: un fallo dentro no aborta la transacción externa."""
        with self._conn.begin_nested():
            yield

    # =========================================================================
    # Dispositivos
    # =========================================================================

    def find_device_by_external_id(self, uid: str) -> Optional[Device]:
        row = self._conn.execute(
            text(f"SELECT {_DEVICE_COLUMNS} FROM devices WHERE uid = :uid"),
            {"uid": uid},
        ).fetchone()
        return Device.from_row(row) if row else None

    def create_device(
        self,
        uid: str,
        *,
        label: Optional[str] = None,
        model: Optional[str] = None,
        last_seen_at: Optional[str] = None,
        offset_temperature: float = 0.0,
        offset_humidity: float = 0.0,
    ) -> Device:
        """Inserta un dispositivo.

        Raises:
            IntegrityError: si ya existe un dispositivo con ese uid
            ProvisioningError: si la fila insertada no se puede releer
        """
        result = self._conn.execute(
            text(
                """
                INSERT INTO devices (uid, label, model, last_seen_at, offset_temperature, offset_humidity)
                VALUES (:uid, :label, :model, :last_seen_at, :offset_temperature, :offset_humidity)
                """
            ),
            {
                "uid": uid,
                "label": label,
                "model": model,
                "last_seen_at": last_seen_at,
                "offset_temperature": float(offset_temperature),
                "offset_humidity": float(offset_humidity),
            },
        )
        row = self._conn.execute(
            text(f"SELECT {_DEVICE_COLUMNS} FROM devices WHERE id = :id"),
            {"id": result.lastrowid},
        ).fetchone()
        if row is None:
            raise ProvisioningError(f"device {uid} was not readable after insert")
        return Device.from_row(row)

    def update_device_last_seen(self, device_id: int, ts: str) -> None:
        self._conn.execute(
            text("UPDATE devices SET last_seen_at = :ts WHERE id = :device_id"),
            {"ts": ts, "device_id": int(device_id)},
        )

    # =========================================================================
    # Habitaciones y ubicaciones
    # =========================================================================

    def find_room(self, room_id: str) -> Optional[Room]:
        row = self._conn.execute(
            text("SELECT room_id, name, floor, side FROM rooms WHERE room_id = :room_id"),
            {"room_id": room_id},
        ).fetchone()
        return Room.from_row(row) if row else None

    def create_room(
        self,
        room_id: str,
        name: str,
        floor: Optional[str] = None,
        side: Optional[str] = None,
    ) -> Room:
        self._conn.execute(
            text(
                "INSERT INTO rooms (room_id, name, floor, side) "
                "VALUES (:room_id, :name, :floor, :side)"
            ),
            {"room_id": room_id, "name": name, "floor": floor, "side": side},
        )
        return Room(room_id=room_id, name=name, floor=floor, side=side)

    def find_current_placement(self, device_uid: str) -> Optional[Placement]:
        """Ubicación abierta (to_ts NULL) del dispositivo, si la hay."""
        row = self._conn.execute(
            text(
                """
                SELECT p.device_id, p.room_id, p.from_ts, p.to_ts
                FROM device_room_placements p
                JOIN devices d ON p.device_id = d.id
                WHERE d.uid = :uid AND p.to_ts IS NULL
                ORDER BY p.from_ts DESC
                LIMIT 1
                """
            ),
            {"uid": device_uid},
        ).fetchone()
        return Placement.from_row(row) if row else None

    def placements_for_device(self, device_id: int) -> List[Placement]:
        rows = self._conn.execute(
            text(
                """
                SELECT device_id, room_id, from_ts, to_ts
                FROM device_room_placements
                WHERE device_id = :device_id
                ORDER BY from_ts ASC
                """
            ),
            {"device_id": int(device_id)},
        ).fetchall()
        return [Placement.from_row(r) for r in rows]

    def assign_device_to_room(self, device: Device, room_id: str, at: str) -> Placement:
        """Ubica el dispositivo en `room_id` desde `at`.

        Cierra la ubicación abierta (to_ts = at) y abre una nueva. Si ya está
        en esa habitación no hace nada.

        Raises:
            ProvisioningError: habitación inexistente o `at` anterior a la
                última ubicación (las ubicaciones no se solapan)
        """
        if self.find_room(room_id) is None:
            raise ProvisioningError(f"room {room_id} does not exist")

        placements = self.placements_for_device(device.id)
        current = next((p for p in placements if p.is_current), None)
        if current is not None and current.room_id == room_id:
            return current

        for p in placements:
            boundary = p.to_ts if p.to_ts is not None else p.from_ts
            if at < boundary or (p.is_current and at == p.from_ts):
                raise ProvisioningError(
                    f"placement of {device.uid} at {at} overlaps placement in "
                    f"{p.room_id} starting {p.from_ts}"
                )

        if current is not None:
            self._conn.execute(
                text(
                    "UPDATE device_room_placements SET to_ts = :at "
                    "WHERE device_id = :device_id AND to_ts IS NULL"
                ),
                {"at": at, "device_id": device.id},
            )

        self._conn.execute(
            text(
                "INSERT INTO device_room_placements (device_id, room_id, from_ts, to_ts) "
                "VALUES (:device_id, :room_id, :from_ts, NULL)"
            ),
            {"device_id": device.id, "room_id": room_id, "from_ts": at},
        )
        logger.info("[DB] Placement device=%s room=%s from=%s", device.uid, room_id, at)
        return Placement(device_id=device.id, room_id=room_id, from_ts=at)

    # =========================================================================
    # Lecturas
    # =========================================================================

    def insert_reading(self, row: ReadingRow) -> Optional[int]:
        """Inserta una lectura y devuelve su rowid.

        Raises:
            TemperatureRangeError, HumidityRangeError: fuera de los límites
                de almacenamiento
            DuplicateReadingError: conflicto con dedup_key o con (device, ts)
        """
        if not (STORAGE_TEMPERATURE_MIN <= row.temperature <= STORAGE_TEMPERATURE_MAX):
            raise TemperatureRangeError(
                row.temperature, STORAGE_TEMPERATURE_MIN, STORAGE_TEMPERATURE_MAX
            )
        if not (STORAGE_HUMIDITY_MIN <= row.humidity <= STORAGE_HUMIDITY_MAX):
            raise HumidityRangeError(row.humidity, STORAGE_HUMIDITY_MIN, STORAGE_HUMIDITY_MAX)

        try:
            with self.savepoint():
                result = self._conn.execute(
                    text(
                        """
                        INSERT INTO readings_raw (device_id, room_id, ts, temperature, humidity, source, dedup_key)
                        VALUES (:device_id, :room_id, :ts, :temperature, :humidity, :source, :dedup_key)
                        """
                    ),
                    row.to_params(),
                )
        except IntegrityError as e:
            reason = self._duplicate_reason(row)
            if reason is None:
                raise
            raise DuplicateReadingError(row.device_uid, row.ts, row.dedup_key, reason) from e

        return result.lastrowid

    def _duplicate_reason(self, row: ReadingRow) -> Optional[str]:
        if row.dedup_key is not None:
            hit = self._conn.execute(
                text("SELECT 1 FROM readings_raw WHERE dedup_key = :k"),
                {"k": row.dedup_key},
            ).fetchone()
            if hit:
                return "dedup_key"
        hit = self._conn.execute(
            text("SELECT 1 FROM readings_raw WHERE device_id = :d AND ts = :ts"),
            {"d": row.device_id, "ts": row.ts},
        ).fetchone()
        if hit:
            return "device_ts"
        return None

    def latest_reading_for_device(self, device_uid: str) -> Optional[dict]:
        row = self._conn.execute(
            text(
                """
                SELECT d.uid AS device_uid, r.room_id, r.ts, r.temperature, r.humidity,
                       r.source, r.dedup_key
                FROM readings_raw r
                JOIN devices d ON r.device_id = d.id
                WHERE d.uid = :uid
                ORDER BY r.ts DESC
                LIMIT 1
                """
            ),
            {"uid": device_uid},
        ).mappings().fetchone()
        return dict(row) if row else None

    def readings_for_room(self, room_id: str, from_ts: str, to_ts: str) -> List[dict]:
        """Lecturas de una habitación en [from_ts, to_ts], por ts ascendente."""
        if not room_id or not from_ts or not to_ts:
            raise ValueError("room_id, from_ts and to_ts are required")
        if from_ts >= to_ts:
            raise ValueError("from_ts must be before to_ts")
        rows = self._conn.execute(
            text(
                """
                SELECT d.uid AS device_uid, r.room_id, r.ts, r.temperature, r.humidity, r.source
                FROM readings_raw r
                JOIN devices d ON r.device_id = d.id
                WHERE r.room_id = :room_id AND r.ts >= :from_ts AND r.ts <= :to_ts
                ORDER BY r.ts ASC
                """
            ),
            {"room_id": room_id, "from_ts": from_ts, "to_ts": to_ts},
        ).mappings().fetchall()
        return [dict(r) for r in rows]

    def latest_by_room(self) -> List[dict]:
        rows = self._conn.execute(
            text(
                "SELECT room_id, last_ts, last_temperature, last_humidity "
                "FROM v_room_last ORDER BY room_id"
            )
        ).mappings().fetchall()
        return [dict(r) for r in rows]

    def count_rows(self, table: str) -> int:
        if table not in self.table_names():
            raise ValueError(f"unknown table {table}")
        return int(self._conn.execute(text(f"SELECT COUNT(*) FROM {table}")).scalar_one())

    # =========================================================================
    # Primitivas de migración
    # =========================================================================

    def table_names(self) -> List[str]:
        return inspect(self._conn).get_table_names()

    def view_names(self) -> List[str]:
        return inspect(self._conn).get_view_names()

    def column_names(self, table: str) -> List[str]:
        if table not in self.table_names():
            return []
        return [c["name"] for c in inspect(self._conn).get_columns(table)]

    def get_schema_version(self) -> int:
        """MAX(version) registrada, 0 si no hay tabla o registros."""
        if "schema_version" not in self.table_names():
            return 0
        version = self._conn.execute(text("SELECT MAX(version) FROM schema_version")).scalar()
        return int(version or 0)

    def set_schema_version(self, version: int) -> None:
        self._conn.execute(
            text(
                "INSERT INTO schema_version (version) "
                "SELECT :v WHERE NOT EXISTS (SELECT 1 FROM schema_version WHERE version = :v)"
            ),
            {"v": int(version)},
        )

    def execute(self, sql: str, params: Optional[dict] = None):
        return self._conn.execute(text(sql), params or {})
