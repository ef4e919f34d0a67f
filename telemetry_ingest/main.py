"""Servicio de ingesta de telemetría doméstica.

Arranque:
    1. Settings desde entorno (.env opcional)
    2. Store (engine SQLAlchemy) y migraciones; un MigrationError aborta
    3. Ingestor con el decoder del patrón y la política de dispositivos
    4. Receptor MQTT (si MQTT_INGEST_ENABLED)

Parada: receptor (unsubscribe, loop, drenado de workers) y luego el store.

    uvicorn telemetry_ingest.main:app --port 8001
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from common.config import Settings, get_settings

from .core.validation.topic_decoder import compile_pattern
from .endpoints.health import router as health_router
from .infrastructure.persistence.migrations import MigrationRunner
from .infrastructure.persistence.store import TelemetryStore
from .mqtt.receiver import MQTTReceiver
from .pipelines.device_resolver import DeviceResolver, policy_from_name
from .pipelines.ingestor import Ingestor

logger = logging.getLogger(__name__)


def build_ingestor(store: TelemetryStore, settings: Settings) -> Ingestor:
    decoder = compile_pattern(settings.mqtt_topic_pattern)
    resolver = DeviceResolver(policy_from_name(settings.device_policy))
    logger.info(
        "[INGEST] Pattern=%s policy=%s", decoder.pattern, resolver.policy.name
    )
    return Ingestor(store, decoder, resolver)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings

    store = TelemetryStore.from_settings(settings)
    try:
        version = MigrationRunner().run(store)
    except Exception:
        store.dispose()
        raise
    logger.info("[DB] Store ready, schema version %s", version)

    ingestor = build_ingestor(store, settings)
    receiver: Optional[MQTTReceiver] = None
    if settings.mqtt_ingest_enabled:
        receiver = MQTTReceiver(ingestor, settings)
        receiver.start()
    else:
        logger.info("[MQTT] Ingest disabled by MQTT_INGEST_ENABLED=false")

    app.state.store = store
    app.state.ingestor = ingestor
    app.state.receiver = receiver
    try:
        yield
    finally:
        if receiver is not None:
            receiver.stop()
        store.dispose()
        app.state.receiver = None
        app.state.store = None


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="Telemetry Ingest Service", version="0.4.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = None
    app.state.receiver = None
    app.include_router(health_router)
    return app


def _configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


_settings = get_settings()
_configure_logging(_settings)
app = create_app(_settings)
