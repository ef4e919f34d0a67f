"""Tests de configuración desde entorno."""

import pytest

from common.config import Settings, get_settings

_VARS = (
    "DATABASE_URL",
    "MQTT_BROKER_HOST",
    "MQTT_BROKER_PORT",
    "MQTT_QOS",
    "MQTT_TOPIC_PATTERN",
    "MQTT_INGEST_ENABLED",
    "DEVICE_POLICY",
    "INGEST_NUM_WORKERS",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("IOT_ENV_FILE", str(tmp_path / "missing.env"))


class TestGetSettings:

    def test_defaults(self):
        s = get_settings()
        assert isinstance(s, Settings)
        assert s.database_url == "sqlite:///./iot.db"
        assert s.mqtt_topic_pattern == "home/{homeId}/sensors/{deviceId}/reading"
        assert s.device_policy == "strict"
        assert s.mqtt_qos == 1
        assert s.mqtt_ingest_enabled is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:////data/iot.db")
        monkeypatch.setenv("MQTT_BROKER_PORT", "8883")
        monkeypatch.setenv("DEVICE_POLICY", " Permissive ")
        monkeypatch.setenv("MQTT_INGEST_ENABLED", "false")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        s = get_settings()
        assert s.database_url == "sqlite:////data/iot.db"
        assert s.mqtt_broker_port == 8883
        assert s.device_policy == "permissive"
        assert s.mqtt_ingest_enabled is False
        assert s.log_level == "DEBUG"

    def test_env_file(self, monkeypatch, tmp_path):
        env_file = tmp_path / "test.env"
        env_file.write_text("INGEST_NUM_WORKERS=7\n")
        monkeypatch.setenv("IOT_ENV_FILE", str(env_file))
        # load_dotenv escribe en os.environ; monkeypatch lo limpia después
        monkeypatch.setenv("INGEST_NUM_WORKERS", "")
        monkeypatch.delenv("INGEST_NUM_WORKERS")

        assert get_settings().ingest_num_workers == 7

    def test_real_env_wins_over_file(self, monkeypatch, tmp_path):
        env_file = tmp_path / "test.env"
        env_file.write_text("INGEST_NUM_WORKERS=7\n")
        monkeypatch.setenv("IOT_ENV_FILE", str(env_file))
        monkeypatch.setenv("INGEST_NUM_WORKERS", "3")

        assert get_settings().ingest_num_workers == 3

    def test_unknown_policy(self, monkeypatch):
        monkeypatch.setenv("DEVICE_POLICY", "lenient")
        with pytest.raises(ValueError, match="DEVICE_POLICY"):
            get_settings()

    def test_invalid_qos(self, monkeypatch):
        monkeypatch.setenv("MQTT_QOS", "3")
        with pytest.raises(ValueError, match="MQTT_QOS"):
            get_settings()

    def test_non_integer_port(self, monkeypatch):
        monkeypatch.setenv("MQTT_BROKER_PORT", "mqtt")
        with pytest.raises(ValueError):
            get_settings()

    def test_with_overrides(self):
        s = get_settings()
        changed = s.with_overrides(device_policy="permissive")
        assert changed.device_policy == "permissive"
        assert s.device_policy == "strict"
