"""Fixtures compartidas: settings y stores SQLite en tmp_path."""

from datetime import datetime, timezone

import pytest

from common.config import Settings
from telemetry_ingest.core.validation.topic_decoder import compile_pattern
from telemetry_ingest.infrastructure.persistence.migrations import MigrationRunner
from telemetry_ingest.infrastructure.persistence.store import TelemetryStore
from telemetry_ingest.pipelines.device_resolver import (
    AutoProvision,
    DeviceResolver,
    RequireProvisioned,
)
from telemetry_ingest.pipelines.ingestor import Ingestor
from telemetry_ingest.provisioning.service import provision_device

# "Ahora" fijo para que la ventana de timestamps sea determinista
FIXED_NOW = datetime(2025, 9, 7, 12, 0, 0, tzinfo=timezone.utc)
VALID_TS = "2025-09-07T10:30:00Z"
CANONICAL_TS = "2025-09-07T10:30:00.000Z"
TOPIC = "home/house-1/sensors/temp001/reading"


def make_settings(db_path, **overrides) -> Settings:
    values = dict(
        database_url=f"sqlite:///{db_path}",
        db_busy_timeout_ms=5000,
        mqtt_broker_host="localhost",
        mqtt_broker_port=1883,
        mqtt_username=None,
        mqtt_password=None,
        mqtt_client_id="telemetry-ingest-test",
        mqtt_qos=1,
        mqtt_topic_pattern="home/{homeId}/sensors/{deviceId}/reading",
        mqtt_ingest_enabled=False,
        device_policy="strict",
        ingest_num_workers=2,
        ingest_queue_size=100,
        log_level="DEBUG",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path / "iot.db")


@pytest.fixture
def raw_store(settings):
    """Store sin migrar (para fixtures legacy)."""
    store = TelemetryStore.from_settings(settings)
    yield store
    store.dispose()


@pytest.fixture
def store(raw_store):
    """Store migrado a la última versión."""
    MigrationRunner().run(raw_store)
    return raw_store


@pytest.fixture
def provisioned_store(store):
    """temp001 dado de alta en la habitación 'salon'."""
    with store.transaction() as storage:
        provision_device(
            storage,
            "temp001",
            "Sensor salón",
            room_name="Salon",
            at="2025-09-01T00:00:00.000Z",
        )
    return store


@pytest.fixture
def decoder():
    return compile_pattern("home/{homeId}/sensors/{deviceId}/reading")


@pytest.fixture
def strict_ingestor(provisioned_store, decoder) -> Ingestor:
    return Ingestor(
        provisioned_store,
        decoder,
        DeviceResolver(RequireProvisioned()),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def permissive_ingestor(store, decoder) -> Ingestor:
    return Ingestor(
        store,
        decoder,
        DeviceResolver(AutoProvision()),
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def valid_payload():
    return {"temperature": 23.5, "humidity": 65.2, "ts": VALID_TS}


# =============================================================================
# STORES LEGACY
# =============================================================================

def build_abbreviated_store(store, *, with_fk=True, orphan_reading=False):
    """Store previo al control de versiones: t/h, offset_t/h, claves de texto."""
    ref = " REFERENCES devices(device_id)" if with_fk else ""
    with store.transaction() as s:
        s.execute("CREATE TABLE rooms (room_id TEXT PRIMARY KEY, name TEXT NOT NULL)")
        s.execute(
            """
            CREATE TABLE devices (
              device_id    TEXT PRIMARY KEY,
              device_uid   TEXT UNIQUE NOT NULL,
              label        TEXT,
              model        TEXT,
              created_at   DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
              last_seen_at DATETIME,
              offset_t     REAL DEFAULT 0,
              offset_h     REAL DEFAULT 0
            )
            """
        )
        s.execute(
            """
            CREATE TABLE device_room_placements (
              device_id TEXT NOT NULL REFERENCES devices(device_id),
              room_id   TEXT NOT NULL REFERENCES rooms(room_id),
              from_ts   DATETIME NOT NULL,
              to_ts     DATETIME,
              PRIMARY KEY (device_id, from_ts)
            )
            """
        )
        s.execute(
            f"""
            CREATE TABLE readings_raw (
              device_id TEXT NOT NULL{ref},
              room_id   TEXT,
              ts        DATETIME NOT NULL,
              t         REAL,
              h         REAL,
              source    TEXT,
              msg_id    TEXT,
              PRIMARY KEY (device_id, ts)
            )
            """
        )
        s.execute(
            "CREATE UNIQUE INDEX idx_raw_msg ON readings_raw(msg_id) WHERE msg_id IS NOT NULL"
        )
        s.execute(
            "CREATE VIEW v_room_last AS "
            "SELECT room_id, MAX(ts) AS last_ts FROM readings_raw GROUP BY room_id"
        )

        s.execute("INSERT INTO rooms VALUES ('salon', 'Salón')")
        s.execute(
            "INSERT INTO devices (device_id, device_uid, label, model, offset_t, offset_h) VALUES "
            "('dev-a', 'temp001', 'Salón', 'AHT20', 0.5, -1.0), "
            "('dev-b', 'temp002', 'Cocina', 'AHT20', 0, 0)"
        )
        s.execute(
            "INSERT INTO device_room_placements VALUES "
            "('dev-a', 'salon', '2025-01-01T00:00:00.000Z', NULL)"
        )
        s.execute(
            "INSERT INTO readings_raw VALUES "
            "('dev-a', 'salon', '2025-01-02T10:00:00.000Z', 21.5, 40.0, 'mqtt', 'm1'), "
            "('dev-a', 'salon', '2025-01-02T11:00:00.000Z', 22.0, 41.0, 'mqtt', 'm2'), "
            "('dev-b', NULL, '2025-01-02T10:00:00.000Z', 19.0, 55.0, 'mqtt', NULL)"
        )
        if orphan_reading:
            s.execute(
                "INSERT INTO readings_raw VALUES "
                "('ghost', NULL, '2025-01-02T12:00:00.000Z', 20.0, 50.0, 'mqtt', 'm3')"
            )


def build_text_key_store(store):
    """Columnas explícitas pero claves de dispositivo de texto (forma v2)."""
    with store.transaction() as s:
        s.execute("CREATE TABLE rooms (room_id TEXT PRIMARY KEY, name TEXT NOT NULL, floor TEXT, side TEXT)")
        s.execute(
            """
            CREATE TABLE devices (
              device_id          TEXT PRIMARY KEY,
              device_uid         TEXT UNIQUE NOT NULL,
              label              TEXT,
              model              TEXT,
              created_at         DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
              last_seen_at       DATETIME,
              offset_temperature REAL DEFAULT 0,
              offset_humidity    REAL DEFAULT 0
            )
            """
        )
        s.execute(
            """
            CREATE TABLE readings_raw (
              device_id   TEXT NOT NULL REFERENCES devices(device_id),
              room_id     TEXT,
              ts          DATETIME NOT NULL,
              temperature REAL,
              humidity    REAL,
              source      TEXT,
              msg_id      TEXT,
              PRIMARY KEY (device_id, ts)
            )
            """
        )
        s.execute("INSERT INTO devices (device_id, device_uid) VALUES ('x1', 'temp009')")
        s.execute(
            "INSERT INTO readings_raw VALUES "
            "('x1', NULL, '2025-01-02T10:00:00.000Z', 20.0, 50.0, 'mqtt', 'abc')"
        )


def schema_snapshot(store):
    with store.transaction() as s:
        rows = s.execute(
            "SELECT type, name, sql FROM sqlite_master "
            "WHERE name NOT LIKE 'sqlite_%' ORDER BY type, name"
        ).fetchall()
    return [tuple(r) for r in rows]


def build_legacy_readings_store(store, *, with_rooms=True):
    """Primera generación: readings(t, h, timestamp) y claves enteras."""
    with store.transaction() as s:
        if with_rooms:
            s.execute("CREATE TABLE rooms (id INTEGER PRIMARY KEY, name TEXT NOT NULL, floor TEXT)")
            s.execute("INSERT INTO rooms VALUES (1, 'Salón', '0')")
        s.execute("CREATE TABLE devices (id INTEGER PRIMARY KEY, name TEXT NOT NULL, room_id INTEGER)")
        s.execute(
            """
            CREATE TABLE readings (
              id        INTEGER PRIMARY KEY AUTOINCREMENT,
              device_id INTEGER NOT NULL REFERENCES devices(id),
              t         REAL,
              h         REAL,
              timestamp DATETIME DEFAULT CURRENT_TIMESTAMP
            )
            """
        )
        s.execute("CREATE VIEW v_room_last AS SELECT device_id, MAX(timestamp) AS ts FROM readings")
        s.execute("INSERT INTO devices VALUES (1, 'd1', 1), (2, 'd2', NULL)")
        s.execute(
            "INSERT INTO readings (device_id, t, h, timestamp) VALUES "
            "(1, 21.5, 40.0, '2025-01-02 10:00:00'), "
            "(1, 22.0, 41.0, '2025-01-02 11:00:00'), "
            "(2, 19.0, 55.0, '2025-01-02 10:00:00')"
        )
