"""Métricas Prometheus del receptor MQTT."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

MQTT_MESSAGES_RECEIVED = Counter(
    "telemetry_ingest_messages_total",
    "Total MQTT messages handled by the ingest workers",
    ["status"],  # success, duplicate, rejected, dropped, error
)
MQTT_REJECTIONS = Counter(
    "telemetry_ingest_rejections_total",
    "Rejected MQTT messages by error kind",
    ["kind"],
)
MQTT_PROCESSING_LATENCY = Histogram(
    "telemetry_ingest_processing_seconds",
    "Ingestion latency per message",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)
MQTT_RECEIVER_CONNECTED = Gauge(
    "telemetry_ingest_receiver_connected",
    "MQTT receiver connection status",
)
MQTT_QUEUE_DEPTH = Gauge(
    "telemetry_ingest_queue_depth",
    "Messages waiting for an ingest worker",
)
