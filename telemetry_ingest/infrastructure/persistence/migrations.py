"""Migraciones de esquema versionadas.

Cadena lineal 0 -> 1 -> 2 -> 3 -> 4. Cada migración comprueba antes de
crear o renombrar, así que reaplicarla sobre un store ya migrado (o a medio
migrar) no cambia nada. Todas las pendientes corren en una sola
transacción: si una falla no queda ninguna aplicada.

Los renombrados de columnas se hacen por tabla sombra: crear `<tabla>_new`,
copiar, comparar conteos, borrar la original y renombrar la sombra.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ...errors import MigrationError
from .schema import (
    DEVICES_TABLE,
    INDEXES,
    INTERIM_READINGS_TABLE,
    LEGACY_DEVICES_TABLE,
    LEGACY_INDEXES,
    LEGACY_READINGS_TABLE,
    PLACEMENTS_TABLE,
    READINGS_TABLE,
    ROOM_LAST_VIEW,
    ROOMS_TABLE,
    SCHEMA_VERSION_TABLE,
)
from .schema_detection import SchemaDetector
from .storage import TelemetryStorage
from .store import TelemetryStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    name: str
    apply: Callable[[TelemetryStorage], None]


# =============================================================================
# Helpers de tabla sombra
# =============================================================================

ColumnSources = Sequence[Tuple[str, Sequence[str]]]


def _copy_columns(
    existing: Sequence[str], columns: ColumnSources, alias: str = ""
) -> Tuple[List[str], str]:
    """Columnas destino y expresiones SELECT que las alimentan.

    Args:
        existing: columnas de la tabla origen
        columns: (destino, candidatas en orden de preferencia); si ninguna
            candidata existe la columna se omite y toma el DEFAULT de la tabla
        alias: alias de la tabla origen en el SELECT
    """
    prefix = f"{alias}." if alias else ""
    targets, exprs = [], []
    for target, candidates in columns:
        source = next((c for c in candidates if c in existing), None)
        if source is None:
            continue
        targets.append(target)
        exprs.append(f"{prefix}{source}")
    return targets, ", ".join(exprs)


def _create_shadow(
    storage: TelemetryStorage, table: str, ddl: str, targets: Sequence[str], select_sql: str
) -> str:
    """Crea `<table>_new` con `ddl`, lo llena con `select_sql` y valida conteos."""
    shadow = f"{table}_new"
    storage.execute(f"DROP TABLE IF EXISTS {shadow}")
    storage.execute(ddl.format(name=shadow))
    storage.execute(f"INSERT INTO {shadow} ({', '.join(targets)}) {select_sql}")

    expected = storage.count_rows(table)
    copied = storage.count_rows(shadow)
    if expected != copied:
        raise MigrationError(
            f"row count mismatch copying {table}: {expected} rows, {copied} copied"
        )
    return shadow


def _swap_shadow(storage: TelemetryStorage, table: str) -> None:
    storage.execute(f"DROP TABLE {table}")
    storage.execute(f"ALTER TABLE {table}_new RENAME TO {table}")
    logger.info("[MIGRATION] Rebuilt table %s", table)


def _rebuild(
    storage: TelemetryStorage, table: str, ddl: str, columns: ColumnSources
) -> None:
    targets, select = _copy_columns(storage.column_names(table), columns)
    _create_shadow(storage, table, ddl, targets, f"SELECT {select} FROM {table}")
    _swap_shadow(storage, table)


def _drop_views(storage: TelemetryStorage) -> None:
    # Una vista que apunta a una tabla borrada bloquea el RENAME en SQLite
    storage.execute("DROP VIEW IF EXISTS v_room_last")


# =============================================================================
# v1: esquema base
# =============================================================================

def create_base_schema(storage: TelemetryStorage) -> None:
    """Crea las tablas que falten en su forma actual."""
    storage.execute(SCHEMA_VERSION_TABLE)
    existing = set(storage.table_names())
    for table, ddl in (
        ("rooms", ROOMS_TABLE),
        ("devices", DEVICES_TABLE),
        ("device_room_placements", PLACEMENTS_TABLE),
        ("readings_raw", READINGS_TABLE),
    ):
        if table not in existing:
            storage.execute(ddl.format(name=table))
            logger.info("[MIGRATION] Created table %s", table)


# =============================================================================
# Primera generación: tabla `readings`
# =============================================================================

def _canonical_ts(expr: str) -> str:
    # '2025-01-02 10:00:00' -> '2025-01-02T10:00:00.000Z'
    return f"strftime('%Y-%m-%dT%H:%M:%fZ', {expr})"


def _first_present(existing: Sequence[str], candidates: Sequence[str], what: str) -> str:
    source = next((c for c in candidates if c in existing), None)
    if source is None:
        raise MigrationError(f"legacy {what} column not found (tried {', '.join(candidates)})")
    return source


def import_legacy_readings(storage: TelemetryStorage) -> None:
    """readings(device_id, t, h, timestamp) -> readings_raw.

    Convierte también las tablas que la acompañan: rooms(id, name, ...)
    pasa a rooms(room_id, ...), devices(id, name, room_id) conserva su id
    entero y usa `name` como uid, y `devices.room_id` se convierte en la
    ubicación abierta desde la primera lectura del dispositivo.
    """
    if "readings" not in storage.table_names():
        return

    _drop_views(storage)
    legacy = storage.column_names("readings")
    ts = _first_present(legacy, ("timestamp", "ts"), "readings timestamp")
    temperature = _first_present(legacy, ("temperature", "t"), "readings temperature")
    humidity = _first_present(legacy, ("humidity", "h"), "readings humidity")

    if "room_id" not in storage.column_names("rooms"):
        _rebuild(
            storage,
            "rooms",
            ROOMS_TABLE,
            (
                ("room_id", ("id",)),
                ("name", ("name",)),
                ("floor", ("floor",)),
                ("side", ("side",)),
            ),
        )

    devices = storage.column_names("devices")
    if "room_id" in devices:
        storage.execute(
            f"""
            INSERT INTO device_room_placements (device_id, room_id, from_ts)
            SELECT d.id, rm.room_id,
                   COALESCE(
                     (SELECT {_canonical_ts(f"MIN(r.{ts})")} FROM readings r WHERE r.device_id = d.id),
                     {_canonical_ts("'now'")}
                   )
            FROM devices d
            JOIN rooms rm ON rm.room_id = CAST(d.room_id AS TEXT)
            """
        )

    if "uid" not in devices and "device_uid" not in devices:
        uid = _first_present(devices, ("name",), "devices name")
        _rebuild(
            storage,
            "devices",
            DEVICES_TABLE,
            (("id", ("id",)), ("uid", (uid,)), ("label", ("label", "name"))) + _DEVICE_VALUES[1:],
        )

    before = storage.count_rows("readings_raw")
    storage.execute(
        f"""
        INSERT INTO readings_raw (device_id, room_id, ts, temperature, humidity, source)
        SELECT r.device_id, p.room_id, {_canonical_ts(f"r.{ts}")}, r.{temperature}, r.{humidity}, 'legacy'
        FROM readings r
        LEFT JOIN device_room_placements p ON p.device_id = r.device_id AND p.to_ts IS NULL
        """
    )
    expected = storage.count_rows("readings")
    copied = storage.count_rows("readings_raw") - before
    if expected != copied:
        raise MigrationError(
            f"row count mismatch copying readings: {expected} rows, {copied} copied"
        )
    storage.execute("DROP TABLE readings")
    logger.info("[MIGRATION] Imported %s legacy readings into readings_raw", copied)


# =============================================================================
# v2: nombres de columna explícitos
# =============================================================================

_READING_VALUES = (
    ("room_id", ("room_id",)),
    ("ts", ("ts",)),
    ("temperature", ("temperature", "t")),
    ("humidity", ("humidity", "h")),
    ("source", ("source",)),
)

_DEVICE_VALUES = (
    ("label", ("label",)),
    ("model", ("model",)),
    ("created_at", ("created_at",)),
    ("last_seen_at", ("last_seen_at",)),
    ("offset_temperature", ("offset_temperature", "offset_t")),
    ("offset_humidity", ("offset_humidity", "offset_h")),
)


def expand_abbreviated_columns(storage: TelemetryStorage) -> None:
    """t/h -> temperature/humidity y offset_t/offset_h -> offset_*.

    Conserva la forma de claves existente; la versión 3 las cambia.
    """
    import_legacy_readings(storage)

    readings = storage.column_names("readings_raw")
    if ("t" in readings or "h" in readings) and "temperature" not in readings:
        _drop_views(storage)
        if "device_uid" in storage.column_names("devices"):
            ddl = LEGACY_READINGS_TABLE
        else:
            ddl = INTERIM_READINGS_TABLE
        _rebuild(
            storage,
            "readings_raw",
            ddl,
            (("device_id", ("device_id",)),) + _READING_VALUES + (("msg_id", ("msg_id",)),),
        )

    devices = storage.column_names("devices")
    if "offset_t" in devices or "offset_h" in devices:
        _drop_views(storage)
        if "device_uid" in devices:
            ddl = LEGACY_DEVICES_TABLE
            keys = (("device_id", ("device_id",)), ("device_uid", ("device_uid",)))
        else:
            ddl = DEVICES_TABLE
            keys = (("id", ("id",)), ("uid", ("uid",)))
        _rebuild(storage, "devices", ddl, keys + _DEVICE_VALUES)

    rooms = storage.column_names("rooms")
    for column in ("floor", "side"):
        if column not in rooms:
            storage.execute(f"ALTER TABLE rooms ADD COLUMN {column} TEXT")
            logger.info("[MIGRATION] Added column rooms.%s", column)


# =============================================================================
# v3: claves surrogate enteras para dispositivos
# =============================================================================

def introduce_device_surrogate_keys(storage: TelemetryStorage) -> None:
    """devices(device_id TEXT, device_uid) -> devices(id INTEGER, uid).

    Lecturas y ubicaciones se re-apuntan por una tabla de mapeo
    (clave vieja -> id nuevo) construida antes del swap.
    """
    devices = storage.column_names("devices")
    if "device_uid" not in devices:
        return

    _drop_views(storage)
    targets, select = _copy_columns(devices, (("uid", ("device_uid",)),) + _DEVICE_VALUES)
    _create_shadow(
        storage,
        "devices",
        DEVICES_TABLE,
        targets,
        f"SELECT {select} FROM devices ORDER BY rowid",
    )

    storage.execute("DROP TABLE IF EXISTS temp.device_key_map")
    storage.execute(
        "CREATE TEMP TABLE device_key_map (old_id TEXT PRIMARY KEY, new_id INTEGER NOT NULL)"
    )
    storage.execute(
        """
        INSERT INTO device_key_map (old_id, new_id)
        SELECT d.device_id, n.id FROM devices d JOIN devices_new n ON n.uid = d.device_uid
        """
    )
    _swap_shadow(storage, "devices")

    # Una fila sin pareja en el JOIN se pierde y la detecta el conteo
    readings = storage.column_names("readings_raw")
    if readings:
        if "msg_id" in readings:
            ddl, key = INTERIM_READINGS_TABLE, ("msg_id", ("msg_id",))
        else:
            ddl, key = READINGS_TABLE, ("dedup_key", ("dedup_key",))
        targets, select = _copy_columns(readings, _READING_VALUES + (key,), alias="r")
        _create_shadow(
            storage,
            "readings_raw",
            ddl,
            ["device_id"] + targets,
            f"SELECT m.new_id, {select} FROM readings_raw r "
            "JOIN device_key_map m ON m.old_id = r.device_id",
        )
        _swap_shadow(storage, "readings_raw")

    if storage.column_names("device_room_placements"):
        _create_shadow(
            storage,
            "device_room_placements",
            PLACEMENTS_TABLE,
            ["device_id", "room_id", "from_ts", "to_ts"],
            "SELECT m.new_id, p.room_id, p.from_ts, p.to_ts FROM device_room_placements p "
            "JOIN device_key_map m ON m.old_id = p.device_id",
        )
        _swap_shadow(storage, "device_room_placements")

    storage.execute("DROP TABLE temp.device_key_map")


# =============================================================================
# v4: dedup_key, índices y vista
# =============================================================================

def dedup_key_and_indexes(storage: TelemetryStorage) -> None:
    # Un store sin versión detectado como v2/v3 puede no tener todas las tablas
    create_base_schema(storage)

    readings = storage.column_names("readings_raw")
    if "msg_id" in readings and "dedup_key" not in readings:
        _drop_views(storage)
        _rebuild(
            storage,
            "readings_raw",
            READINGS_TABLE,
            (("device_id", ("device_id",)),) + _READING_VALUES + (("dedup_key", ("msg_id",)),),
        )

    for name in LEGACY_INDEXES:
        storage.execute(f"DROP INDEX IF EXISTS {name}")
    for ddl in INDEXES:
        storage.execute(ddl)

    _drop_views(storage)
    storage.execute(ROOM_LAST_VIEW)


MIGRATIONS: Tuple[Migration, ...] = (
    Migration(1, "create_base_schema", create_base_schema),
    Migration(2, "expand_abbreviated_columns", expand_abbreviated_columns),
    Migration(3, "introduce_device_surrogate_keys", introduce_device_surrogate_keys),
    Migration(4, "dedup_key_and_indexes", dedup_key_and_indexes),
)

LATEST_VERSION = MIGRATIONS[-1].version


# =============================================================================
# Runner
# =============================================================================

class MigrationRunner:
    """Lleva un store hasta la última versión conocida.

    Se ejecuta una vez al arrancar, antes de aceptar ingestas. Cualquier
    fallo se relanza como `MigrationError` y el arranque debe detenerse.
    """

    def __init__(self, migrations: Sequence[Migration] = MIGRATIONS):
        self._migrations = tuple(sorted(migrations, key=lambda m: m.version))

    @property
    def latest_version(self) -> int:
        return self._migrations[-1].version if self._migrations else 0

    def pending(self, current: int) -> List[Migration]:
        return [m for m in self._migrations if m.version > current]

    def run(self, store: TelemetryStore) -> int:
        """Aplica las migraciones pendientes.

        Returns:
            Versión final del esquema

        Raises:
            MigrationError: si cualquier migración falla (rollback completo)
        """
        current: Optional[int] = None
        migration: Optional[Migration] = None
        try:
            with store.schema_transaction() as storage:
                current = SchemaDetector(storage).detect()
                pending = self.pending(current)
                if not pending:
                    if current >= LATEST_VERSION:
                        _check_current_shape(storage)
                    logger.info("[MIGRATION] Schema up to date (version %s)", current)
                    return current

                logger.info(
                    "[MIGRATION] Applying %s migration(s) from version %s",
                    len(pending),
                    current,
                )
                storage.execute(SCHEMA_VERSION_TABLE)
                for migration in pending:
                    logger.info("[MIGRATION] v%s %s", migration.version, migration.name)
                    migration.apply(storage)
                    storage.set_schema_version(migration.version)

                final = pending[-1].version
                if final >= LATEST_VERSION:
                    _check_current_shape(storage)
                _check_foreign_keys(storage)
        except MigrationError as e:
            if e.version is None and migration is not None:
                e.version = migration.version
            logger.error("[MIGRATION] Failed, rolled back to version %s: %s", current, e.message)
            raise
        except Exception as e:
            version = migration.version if migration is not None else None
            logger.exception("[MIGRATION] Failed, rolled back to version %s", current)
            raise MigrationError(
                f"migration to version {version} failed: {e}", version=version
            ) from e

        logger.info("[MIGRATION] Schema at version %s", final)
        return final


# Columnas que el pipeline de ingesta necesita en la versión actual
_CURRENT_COLUMNS = {
    "rooms": ("room_id", "name"),
    "devices": ("id", "uid", "offset_temperature", "offset_humidity"),
    "device_room_placements": ("device_id", "room_id", "from_ts", "to_ts"),
    "readings_raw": ("device_id", "room_id", "ts", "temperature", "humidity", "source", "dedup_key"),
}


def _check_current_shape(storage: TelemetryStorage) -> None:
    missing = []
    for table, required in _CURRENT_COLUMNS.items():
        existing = storage.column_names(table)
        missing.extend(f"{table}.{c}" for c in required if c not in existing)
    if missing:
        raise MigrationError(
            f"schema does not match version {LATEST_VERSION}, missing: {', '.join(missing)}",
            version=LATEST_VERSION,
        )


def _check_foreign_keys(storage: TelemetryStorage) -> None:
    if storage.connection.dialect.name != "sqlite":
        return
    violations = storage.execute("PRAGMA foreign_key_check").fetchall()
    if violations:
        tables = sorted({str(v[0]) for v in violations})
        raise MigrationError(
            f"foreign key violations after migration in: {', '.join(tables)}"
        )


def describe(store: TelemetryStore) -> Dict[str, object]:
    """Versión actual y pendientes, para diagnóstico."""
    with store.transaction() as storage:
        current = SchemaDetector(storage).detect()
    runner = MigrationRunner()
    return {
        "version": current,
        "latest": runner.latest_version,
        "pending": [m.name for m in runner.pending(current)],
    }
