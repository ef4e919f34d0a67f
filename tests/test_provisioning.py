"""Tests de aprovisionamiento (servicio y CLI)."""

import pytest

from telemetry_ingest.errors import ProvisioningError
from telemetry_ingest.infrastructure.persistence.migrations import MigrationRunner
from telemetry_ingest.infrastructure.persistence.store import TelemetryStore
from telemetry_ingest.provisioning import cli
from telemetry_ingest.provisioning.service import (
    DEFAULT_MODEL,
    provision_device,
    room_uid_from_name,
)

from conftest import TOPIC, make_settings


class TestRoomUid:

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("Salón Principal", "salon-principal"),
            ("  Cocina  ", "cocina"),
            ("Dormitorio #2", "dormitorio-2"),
            ("Baño", "bano"),
        ],
    )
    def test_slug(self, name, expected):
        assert room_uid_from_name(name) == expected

    @pytest.mark.parametrize("name", ["", "   ", "¿?"])
    def test_unusable_name(self, name):
        with pytest.raises(ProvisioningError):
            room_uid_from_name(name)


class TestProvisionDevice:

    def test_creates_device_room_and_placement(self, store):
        with store.transaction() as storage:
            result = provision_device(
                storage, "temp001", "Salón", room_name="Salón", at="2025-09-01T00:00:00.000Z"
            )
        assert result.device_created is True
        assert result.device.model == DEFAULT_MODEL
        assert result.room_created is True
        assert result.room.room_id == "salon"
        assert result.placement.room_id == "salon"
        assert result.placement.is_current

    def test_without_room(self, store):
        with store.transaction() as storage:
            result = provision_device(storage, "temp001", "Sensor")
            assert storage.find_current_placement("temp001") is None
        assert result.room is None
        assert result.placement is None

    def test_idempotent(self, store):
        with store.transaction() as storage:
            first = provision_device(
                storage, "temp001", "Salón", room_name="Salón", at="2025-09-01T00:00:00.000Z"
            )
        with store.transaction() as storage:
            again = provision_device(
                storage, "temp001", "Salón", room_name="Salón", at="2025-09-02T00:00:00.000Z"
            )
            history = storage.placements_for_device(first.device.id)
            devices = storage.count_rows("devices")

        assert again.device_created is False
        assert again.room_created is False
        assert again.device.id == first.device.id
        assert len(history) == 1
        assert devices == 1

    def test_move_to_other_room(self, store):
        with store.transaction() as storage:
            provision_device(storage, "temp001", "S", room_name="Salón", at="2025-09-01T00:00:00.000Z")
        with store.transaction() as storage:
            moved = provision_device(
                storage, "temp001", "S", room_name="Cocina", at="2025-09-05T00:00:00.000Z"
            )
            history = storage.placements_for_device(moved.device.id)

        assert moved.placement.room_id == "cocina"
        assert [p.room_id for p in history] == ["salon", "cocina"]
        assert history[0].to_ts == "2025-09-05T00:00:00.000Z"

    @pytest.mark.parametrize("uid", ["", "bad uid", "a/b", "x" * 65])
    def test_invalid_uid(self, store, uid):
        with pytest.raises(ProvisioningError):
            with store.transaction() as storage:
                provision_device(storage, uid, "label")

    def test_provisioned_device_passes_strict_ingest(self, strict_ingestor, valid_payload):
        assert strict_ingestor.ingest(TOPIC, valid_payload).success is True


class TestCli:

    def test_provisions_into_fresh_database(self, tmp_path):
        db = tmp_path / "cli.db"
        url = f"sqlite:///{db}"

        code = cli.main(
            ["--uid", "temp001", "--label", "Salón", "--room-name", "Salón", "--database-url", url]
        )
        assert code == 0

        store = TelemetryStore.from_settings(make_settings(db))
        try:
            assert store.schema_version() == MigrationRunner().latest_version
            with store.transaction() as storage:
                assert storage.find_device_by_external_id("temp001") is not None
                assert storage.find_current_placement("temp001").room_id == "salon"
        finally:
            store.dispose()

    def test_invalid_uid_returns_error_code(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'cli.db'}"
        assert cli.main(["--uid", "bad uid", "--label", "x", "--database-url", url]) == 1

    def test_missing_required_args(self):
        with pytest.raises(SystemExit):
            cli.main(["--label", "x"])
