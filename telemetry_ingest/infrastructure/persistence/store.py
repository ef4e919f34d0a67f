"""Handle del store: dueño del engine y de las transacciones."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.engine import Engine

from common.config import Settings
from common.db import create_store_engine

from .storage import TelemetryStorage

logger = logging.getLogger(__name__)


class TelemetryStore:
    """Store de telemetría sobre un engine SQLAlchemy.

    Cada `transaction()` abre una conexión y una transacción; commit al
    salir del bloque, rollback si se propaga una excepción.
    """

    def __init__(self, engine: Engine):
        self._engine = engine

    @classmethod
    def from_settings(cls, settings: Settings, *, check_connection: bool = True) -> "TelemetryStore":
        return cls(create_store_engine(settings, check_connection=check_connection))

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def dialect(self) -> str:
        return self._engine.dialect.name

    @contextmanager
    def transaction(self) -> Iterator[TelemetryStorage]:
        with self._engine.begin() as conn:
            yield TelemetryStorage(conn)

    @contextmanager
    def schema_transaction(self) -> Iterator[TelemetryStorage]:
        """Transacción para cambios de esquema.

        En SQLite las FK se desactivan en la conexión durante la
        transacción (no se puede cambiar dentro de ella) y se reactivan al
        terminar. Quien la usa debe comprobar `PRAGMA foreign_key_check`
        antes de salir del bloque.
        """
        with self._engine.connect() as conn:
            raw = conn.connection.dbapi_connection if self.dialect == "sqlite" else None
            if raw is not None:
                raw.execute("PRAGMA foreign_keys = OFF")
            try:
                with conn.begin():
                    yield TelemetryStorage(conn)
            finally:
                if raw is not None:
                    raw.execute("PRAGMA foreign_keys = ON")

    def ping(self) -> bool:
        """SELECT 1 contra el store. No lanza: devuelve False si falla."""
        try:
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("[DB] Ping failed: %s", e)
            return False

    def schema_version(self) -> int:
        with self.transaction() as storage:
            return storage.get_schema_version()

    def dispose(self) -> None:
        self._engine.dispose()
        logger.info("[DB] Engine disposed")
