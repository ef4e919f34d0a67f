"""Transporte MQTT para la ingesta.

Estructura:
- receiver.py: cliente paho, suscripción y meta de cada mensaje
- async_processor.py: cola acotada + workers que llaman al Ingestor
- receiver_stats.py: contadores del receptor
- metrics.py: métricas Prometheus
"""

from .async_processor import AsyncIngestProcessor, IngestJob
from .receiver import MQTTReceiver
from .receiver_stats import ReceiverStats

__all__ = [
    "AsyncIngestProcessor",
    "IngestJob",
    "MQTTReceiver",
    "ReceiverStats",
]
