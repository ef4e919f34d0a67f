"""Receptor MQTT.

Se suscribe al filtro derivado del patrón de topic y pasa cada mensaje al
procesador asíncrono. No gestiona reintentos: un mensaje rechazado se
registra y se descarta.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import paho.mqtt.client as mqtt

from common.config import Settings

from ..core.domain.contracts import TransportMeta
from ..pipelines.ingestor import Ingestor
from .async_processor import AsyncIngestProcessor, IngestJob
from .metrics import MQTT_RECEIVER_CONNECTED
from .receiver_stats import ReceiverStats

logger = logging.getLogger(__name__)


class MQTTReceiver:
    """Receptor MQTT que alimenta el pipeline de ingesta."""

    def __init__(
        self,
        ingestor: Ingestor,
        settings: Settings,
        processor: Optional[AsyncIngestProcessor] = None,
    ):
        self.broker_host = settings.mqtt_broker_host
        self.broker_port = settings.mqtt_broker_port
        self.username = settings.mqtt_username
        self.password = settings.mqtt_password
        self.qos = settings.mqtt_qos
        self.client_id = f"{settings.mqtt_client_id}-{int(time.time())}"
        self.topic_filter = ingestor.decoder.subscription_filter

        self._stats = processor.stats if processor else ReceiverStats()
        self._processor = processor or AsyncIngestProcessor(
            ingestor,
            stats=self._stats,
            max_queue_size=settings.ingest_queue_size,
            num_workers=settings.ingest_num_workers,
        )

        self._client: Optional[mqtt.Client] = None
        self._running = False
        self._connected = False

    def start(self, wait_seconds: float = 5.0) -> bool:
        """Arranca workers y cliente. Devuelve True si conectó a tiempo."""
        self._processor.start()

        self._client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            protocol=mqtt.MQTTv311,
        )
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

        if self.username and self.password:
            self._client.username_pw_set(self.username, self.password)

        logger.info("[MQTT] Connecting to %s:%d", self.broker_host, self.broker_port)
        try:
            self._client.connect(self.broker_host, self.broker_port, keepalive=60)
        except OSError as e:
            # loop_start reintenta la conexión en segundo plano
            logger.error("[MQTT] Initial connect failed: %s", e)
            self._client.connect_async(self.broker_host, self.broker_port, keepalive=60)
        self._client.loop_start()
        self._running = True

        deadline = time.monotonic() + wait_seconds
        while not self._connected and time.monotonic() < deadline:
            time.sleep(0.1)

        if self._connected:
            logger.info("[MQTT] Started successfully")
        else:
            logger.warning("[MQTT] Not connected after %.1fs, retrying in background", wait_seconds)
        return self._connected

    def stop(self) -> None:
        """Deja de aceptar mensajes y luego drena los que están en cola."""
        self._running = False

        if self._client is not None:
            try:
                self._client.unsubscribe(self.topic_filter)
            except (OSError, ValueError) as e:
                logger.warning("[MQTT] Error unsubscribing: %s", e)
            self._client.loop_stop()
            self._client.disconnect()
            self._client = None

        self._processor.stop(drain=True)
        self._connected = False
        MQTT_RECEIVER_CONNECTED.set(0)
        logger.info("[MQTT] Stopped. %s", self._stats)

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            self._connected = True
            MQTT_RECEIVER_CONNECTED.set(1)
            logger.info("[MQTT] Connected to broker")
            # Se re-suscribe en cada reconexión
            client.subscribe(self.topic_filter, qos=self.qos)
            logger.info("[MQTT] Subscribed to %s (qos=%d)", self.topic_filter, self.qos)
        else:
            self._connected = False
            MQTT_RECEIVER_CONNECTED.set(0)
            logger.error("[MQTT] Connection failed: rc=%s", reason_code)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected = False
        MQTT_RECEIVER_CONNECTED.set(0)
        logger.warning("[MQTT] Disconnected (rc=%s)", reason_code)

    def _on_message(self, client, userdata, msg):
        self._stats.record("received")
        meta = TransportMeta(
            retain=bool(msg.retain),
            qos=int(msg.qos),
            message_id=str(msg.mid) if msg.mid else None,
        )
        self._processor.enqueue(IngestJob(topic=msg.topic, payload=msg.payload, meta=meta))

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def stats(self) -> dict:
        return {
            "running": self._running,
            "connected": self._connected,
            "broker": f"{self.broker_host}:{self.broker_port}",
            "topic_filter": self.topic_filter,
            **self._processor.metrics,
        }

    def health_check(self) -> dict:
        return {
            "healthy": self._running and self._connected,
            "running": self._running,
            "connected": self._connected,
            "messages_processed": self._stats.processed,
            "messages_rejected": self._stats.rejected,
            "messages_failed": self._stats.failed,
        }
