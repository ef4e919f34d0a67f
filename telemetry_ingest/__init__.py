"""Servicio de ingesta de telemetría doméstica (temperatura/humedad por MQTT)."""

__version__ = "0.4.0"
