"""Persistencia del store de telemetría (SQLite vía SQLAlchemy)."""

from .migrations import LATEST_VERSION, MigrationRunner
from .schema_detection import SchemaDetector
from .storage import TelemetryStorage
from .store import TelemetryStore

__all__ = [
    "LATEST_VERSION",
    "MigrationRunner",
    "SchemaDetector",
    "TelemetryStorage",
    "TelemetryStore",
]
