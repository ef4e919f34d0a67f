"""DDL del esquema actual (versión 4) y de las formas legacy.

Las migraciones crean tablas con estas sentencias. `{name}` permite crear
la tabla sombra (`readings_raw_new`, ...) con la misma forma antes del
swap.
"""

from __future__ import annotations

SCHEMA_VERSION_TABLE = """
CREATE TABLE IF NOT EXISTS schema_version (
  version    INTEGER PRIMARY KEY,
  applied_at DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP
)
"""

ROOMS_TABLE = """
CREATE TABLE IF NOT EXISTS {name} (
  room_id   TEXT PRIMARY KEY,
  name      TEXT NOT NULL,
  floor     TEXT,
  side      TEXT
)
"""

DEVICES_TABLE = """
CREATE TABLE IF NOT EXISTS {name} (
  id                 INTEGER PRIMARY KEY AUTOINCREMENT,
  uid                TEXT UNIQUE NOT NULL,
  label              TEXT,
  model              TEXT,
  created_at         DATETIME NOT NULL DEFAULT CURRENT_TIMESTAMP,
  last_seen_at       DATETIME,
  offset_temperature REAL DEFAULT 0,
  offset_humidity    REAL DEFAULT 0
)
"""

PLACEMENTS_TABLE = """
CREATE TABLE IF NOT EXISTS {name} (
  device_id   INTEGER NOT NULL REFERENCES devices(id),
  room_id     TEXT NOT NULL REFERENCES rooms(room_id),
  from_ts     DATETIME NOT NULL,
  to_ts       DATETIME,
  PRIMARY KEY (device_id, from_ts)
)
"""

READINGS_TABLE = """
CREATE TABLE IF NOT EXISTS {name} (
  device_id   INTEGER NOT NULL REFERENCES devices(id),
  room_id     TEXT,
  ts          DATETIME NOT NULL,
  temperature REAL,
  humidity    REAL,
  source      TEXT,
  dedup_key   TEXT,
  PRIMARY KEY (device_id, ts)
)
"""

# Forma legacy con claves de texto (device_id TEXT + device_uid).
# La versión 2 la conserva al expandir columnas; la versión 3 la elimina.
LEGACY_DEVICES_TABLE = """
CREATE TABLE IF NOT EXISTS {name} (
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

LEGACY_READINGS_TABLE = """
CREATE TABLE IF NOT EXISTS {name} (
  device_id   TEXT NOT NULL,
  room_id     TEXT,
  ts          DATETIME NOT NULL,
  temperature REAL,
  humidity    REAL,
  source      TEXT,
  msg_id      TEXT,
  PRIMARY KEY (device_id, ts)
)
"""

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_places_room ON device_room_placements(room_id, from_ts)",
    "CREATE INDEX IF NOT EXISTS idx_places_device ON device_room_placements(device_id, from_ts)",
    # Como mucho una ubicación abierta por dispositivo
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_places_current "
    "ON device_room_placements(device_id) WHERE to_ts IS NULL",
    "CREATE INDEX IF NOT EXISTS idx_raw_room_ts ON readings_raw(room_id, ts)",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_raw_dedup "
    "ON readings_raw(dedup_key) WHERE dedup_key IS NOT NULL",
)

ROOM_LAST_VIEW = """
CREATE VIEW IF NOT EXISTS v_room_last AS
SELECT r.room_id,
       MAX(r.ts) AS last_ts,
       (SELECT temperature FROM readings_raw rr
         WHERE rr.room_id = r.room_id
         ORDER BY rr.ts DESC LIMIT 1) AS last_temperature,
       (SELECT humidity FROM readings_raw rr
         WHERE rr.room_id = r.room_id
         ORDER BY rr.ts DESC LIMIT 1) AS last_humidity
FROM readings_raw r
WHERE r.room_id IS NOT NULL
GROUP BY r.room_id
"""

# Forma intermedia de la versión 3: claves enteras, todavía con msg_id.
INTERIM_READINGS_TABLE = """
CREATE TABLE IF NOT EXISTS {name} (
  device_id   INTEGER NOT NULL REFERENCES devices(id),
  room_id     TEXT,
  ts          DATETIME NOT NULL,
  temperature REAL,
  humidity    REAL,
  source      TEXT,
  msg_id      TEXT,
  PRIMARY KEY (device_id, ts)
)
"""

# Índices legacy que ya no existen en la versión 4
LEGACY_INDEXES = ("idx_raw_msg",)
