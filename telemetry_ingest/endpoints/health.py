"""Health, readiness y métricas."""

import logging

from fastapi import APIRouter, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from ..infrastructure.persistence.migrations import describe

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness: ok mientras el proceso responda."""
    return {"status": "ok"}


@router.get("/ready")
def ready(request: Request):
    """Readiness: conectividad con el store y esquema al día."""
    store = getattr(request.app.state, "store", None)
    if store is None or not store.ping():
        raise HTTPException(status_code=503, detail="not ready")
    schema = describe(store)
    if schema["pending"]:
        logger.warning("[DB] Schema behind: pending %s", schema["pending"])
        raise HTTPException(status_code=503, detail=schema)
    return {"status": "ready", "schema_version": schema["version"]}


@router.get("/mqtt/health")
def mqtt_health(request: Request):
    receiver = getattr(request.app.state, "receiver", None)
    if receiver is None:
        return {"status": "disabled"}
    return {"status": "ok" if receiver.is_connected else "degraded", **receiver.stats}


@router.get("/metrics")
def metrics():
    """Exposición Prometheus."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
