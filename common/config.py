from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


DEVICE_POLICIES = ("strict", "permissive")


def _default_env_file() -> str:
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    db_busy_timeout_ms: int

    mqtt_broker_host: str
    mqtt_broker_port: int
    mqtt_username: Optional[str]
    mqtt_password: Optional[str]
    mqtt_client_id: str
    mqtt_qos: int
    mqtt_topic_pattern: str
    mqtt_ingest_enabled: bool

    # strict: el dispositivo debe existir; permissive: se crea al vuelo
    device_policy: str

    ingest_num_workers: int
    ingest_queue_size: int

    log_level: str

    def with_overrides(self, **changes) -> "Settings":
        return replace(self, **changes)


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("IOT_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    device_policy = os.getenv("DEVICE_POLICY", "strict").strip().lower()
    if device_policy not in DEVICE_POLICIES:
        raise ValueError(
            f"DEVICE_POLICY must be one of {', '.join(DEVICE_POLICIES)}, got {device_policy!r}"
        )

    qos = int(os.getenv("MQTT_QOS", "1"))
    if qos not in (0, 1, 2):
        raise ValueError(f"MQTT_QOS must be 0, 1 or 2, got {qos}")

    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./iot.db"),
        db_busy_timeout_ms=int(os.getenv("DB_BUSY_TIMEOUT_MS", "5000")),
        mqtt_broker_host=os.getenv("MQTT_BROKER_HOST", "localhost"),
        mqtt_broker_port=int(os.getenv("MQTT_BROKER_PORT", "1883")),
        mqtt_username=os.getenv("MQTT_USERNAME") or None,
        mqtt_password=os.getenv("MQTT_PASSWORD") or None,
        mqtt_client_id=os.getenv("MQTT_CLIENT_ID", "telemetry-ingest"),
        mqtt_qos=qos,
        mqtt_topic_pattern=os.getenv(
            "MQTT_TOPIC_PATTERN", "home/{homeId}/sensors/{deviceId}/reading"
        ),
        mqtt_ingest_enabled=_env_bool("MQTT_INGEST_ENABLED", "true"),
        device_policy=device_policy,
        ingest_num_workers=int(os.getenv("INGEST_NUM_WORKERS", "4")),
        ingest_queue_size=int(os.getenv("INGEST_QUEUE_SIZE", "1000")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
