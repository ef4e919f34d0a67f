from __future__ import annotations

import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine

from .config import Settings


logger = logging.getLogger(__name__)


def _install_sqlite_pragmas(engine: Engine, busy_timeout_ms: int) -> None:
    # pysqlite abre transacciones por su cuenta y rompe SAVEPOINT y el DDL
    # transaccional; se desactiva y se emite BEGIN IMMEDIATE explícito.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA journal_mode = WAL")
            cursor.execute("PRAGMA foreign_keys = ON")
            cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        finally:
            cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def create_store_engine(settings: Settings, *, check_connection: bool = True) -> Engine:
    url = settings.database_url

    logger.info("[DB] Crear engine url=%s", url.split("@")[-1])

    engine = create_engine(url, pool_pre_ping=True, future=True)
    if engine.dialect.name == "sqlite":
        _install_sqlite_pragmas(engine, settings.db_busy_timeout_ms)

    if check_connection:
        # Test de conexión: si falla, el arranque se detiene aquí
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Test de conexión OK")

    return engine
