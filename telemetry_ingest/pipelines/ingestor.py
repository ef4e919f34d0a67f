"""Orquestador de ingesta: un mensaje MQTT -> una lectura persistida.

Pasos:
    1. Decodificar el topic (uid del dispositivo)
    2. Normalizar el payload
    3. Resolver el dispositivo según la política
    4. Buscar la ubicación actual (room_id de la lectura)
    5. Calcular la clave de deduplicación
    6. Insertar la lectura (DuplicateReadingError si ya existía)
    7. Marcar el dispositivo como visto

Los pasos 3-7 corren en una sola transacción del store: cualquier fallo
deja el store sin escrituras parciales. No hay reintentos.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional, Union

import orjson

from ..core.domain.contracts import IngestResult, TransportMeta
from ..core.domain.reading import ReadingRow
from ..core.validation.payload_validator import normalize_reading
from ..core.validation.topic_decoder import TopicDecoder
from ..errors import (
    DuplicateReadingError,
    IngestError,
    MalformedPayloadError,
    PatternError,
)
from ..infrastructure.persistence.store import TelemetryStore
from .device_resolver import DeviceResolver
from .resilience.deduplication import dedup_key

logger = logging.getLogger(__name__)

RawPayload = Union[bytes, bytearray, str, Mapping[str, Any], None]


def decode_payload(raw_payload: RawPayload) -> Any:
    """bytes/str JSON -> objeto Python. Los mappings pasan tal cual."""
    if isinstance(raw_payload, (bytes, bytearray, memoryview, str)):
        try:
            return orjson.loads(raw_payload)
        except orjson.JSONDecodeError as e:
            raise MalformedPayloadError(str(e)) from None
    return raw_payload


class Ingestor:
    """Pipeline de ingesta parametrizado por decoder y resolver.

    Es seguro llamarlo desde varios threads: no guarda estado mutable y la
    exclusión necesaria la dan las restricciones UNIQUE del store.
    """

    def __init__(
        self,
        store: TelemetryStore,
        decoder: TopicDecoder,
        resolver: DeviceResolver,
        *,
        device_placeholder: str = "deviceId",
        source: str = "mqtt",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if device_placeholder not in decoder.placeholders:
            raise PatternError(
                f"Topic pattern {decoder.pattern!r} has no {{{device_placeholder}}} placeholder"
            )
        self.store = store
        self.decoder = decoder
        self.resolver = resolver
        self.device_placeholder = device_placeholder
        self.source = source
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def ingest(
        self,
        topic: str,
        raw_payload: RawPayload,
        meta: Optional[TransportMeta] = None,
    ) -> IngestResult:
        """Procesa un mensaje completo.

        Raises:
            TopicFormatError, ValidationError, UnknownDeviceError,
            DuplicateReadingError: rechazo tipado del mensaje
        """
        meta = meta or TransportMeta()
        try:
            return self._ingest(topic, raw_payload, meta)
        except DuplicateReadingError as e:
            logger.info("[INGEST] Duplicate reading device=%s ts=%s (%s)", e.device_uid, e.ts, e.reason)
            raise
        except IngestError as e:
            logger.warning("[INGEST] Rejected topic=%s [%s] %s", topic, e.component, e.message)
            raise

    def _ingest(self, topic: str, raw_payload: RawPayload, meta: TransportMeta) -> IngestResult:
        device_uid = self.decoder.parse(topic)[self.device_placeholder]
        reading = normalize_reading(decode_payload(raw_payload), now=self._clock())

        with self.store.transaction() as storage:
            device, created = self.resolver.resolve(storage, device_uid, reading.ts)

            placement = storage.find_current_placement(device_uid)
            room_id = placement.room_id if placement else None

            row = ReadingRow(
                device_id=device.id,
                device_uid=device_uid,
                room_id=room_id,
                ts=reading.ts,
                temperature=reading.temperature,
                humidity=reading.humidity,
                source=self.source,
                dedup_key=dedup_key(device_uid, reading),
            )
            insert_id = storage.insert_reading(row)
            self.resolver.mark_seen(storage, device, reading.ts)

        logger.debug(
            "[INGEST] Stored device=%s room=%s ts=%s id=%s mid=%s",
            device_uid,
            room_id,
            reading.ts,
            insert_id,
            meta.message_id,
        )
        return IngestResult(
            success=True,
            device_id=device_uid,
            reading=reading,
            insert_id=insert_id,
            device_created=created,
            retained=True if meta.retain else None,
        )
