"""Tests del accessor de almacenamiento (SQLite en tmp_path)."""

import pytest
from sqlalchemy.exc import IntegrityError

from telemetry_ingest.core.domain.reading import ReadingRow
from telemetry_ingest.errors import (
    DuplicateReadingError,
    HumidityRangeError,
    ProvisioningError,
    TemperatureRangeError,
)


def _row(device, ts="2025-09-07T10:30:00.000Z", key="k1", room_id=None, **overrides):
    values = dict(
        device_id=device.id,
        device_uid=device.uid,
        room_id=room_id,
        ts=ts,
        temperature=21.0,
        humidity=50.0,
        dedup_key=key,
    )
    values.update(overrides)
    return ReadingRow(**values)


@pytest.fixture
def device(store):
    with store.transaction() as storage:
        return storage.create_device("temp001", label="Sensor", model="AHT20")


@pytest.fixture
def rooms(store):
    with store.transaction() as storage:
        storage.create_room("salon", "Salón", floor="0")
        storage.create_room("cocina", "Cocina")


# =============================================================================
# DISPOSITIVOS
# =============================================================================

class TestDevices:

    def test_create_and_find(self, store, device):
        with store.transaction() as storage:
            found = storage.find_device_by_external_id("temp001")
        assert found == device
        assert found.id > 0
        assert found.model == "AHT20"
        assert found.created_at is not None
        assert found.offset_temperature == 0.0

    def test_find_unknown(self, store):
        with store.transaction() as storage:
            assert storage.find_device_by_external_id("nope") is None

    def test_uid_unique(self, store, device):
        with pytest.raises(IntegrityError):
            with store.transaction() as storage:
                storage.create_device("temp001")

    def test_create_returns_inserted_row(self, store, device):
        with store.transaction() as storage:
            second = storage.create_device("temp002", label="Cocina")
        assert second.id > device.id
        assert second.uid == "temp002"
        assert second.label == "Cocina"

    def test_unreadable_insert_raises(self, store):
        """Si la fila desaparece tras el INSERT se lanza un error tipado."""
        with store.transaction() as storage:
            storage.execute(
                "CREATE TRIGGER devices_vanish AFTER INSERT ON devices "
                "BEGIN DELETE FROM devices WHERE id = NEW.id; END"
            )
        with pytest.raises(ProvisioningError, match="not readable"):
            with store.transaction() as storage:
                storage.create_device("temp001")

    def test_update_last_seen(self, store, device):
        with store.transaction() as storage:
            storage.update_device_last_seen(device.id, "2025-09-07T10:30:00.000Z")
            assert storage.find_device_by_external_id("temp001").last_seen_at == (
                "2025-09-07T10:30:00.000Z"
            )


# =============================================================================
# UBICACIONES
# =============================================================================

class TestPlacements:

    def test_no_placement(self, store, device):
        with store.transaction() as storage:
            assert storage.find_current_placement("temp001") is None

    def test_assign(self, store, device, rooms):
        with store.transaction() as storage:
            storage.assign_device_to_room(device, "salon", "2025-09-01T00:00:00.000Z")
            current = storage.find_current_placement("temp001")
        assert current.room_id == "salon"
        assert current.is_current

    def test_reassign_closes_previous(self, store, device, rooms):
        with store.transaction() as storage:
            storage.assign_device_to_room(device, "salon", "2025-09-01T00:00:00.000Z")
            storage.assign_device_to_room(device, "cocina", "2025-09-05T00:00:00.000Z")
            history = storage.placements_for_device(device.id)
            current = storage.find_current_placement("temp001")

        assert [p.room_id for p in history] == ["salon", "cocina"]
        assert history[0].to_ts == "2025-09-05T00:00:00.000Z"
        assert current.room_id == "cocina"

    def test_same_room_is_noop(self, store, device, rooms):
        with store.transaction() as storage:
            first = storage.assign_device_to_room(device, "salon", "2025-09-01T00:00:00.000Z")
            again = storage.assign_device_to_room(device, "salon", "2025-09-03T00:00:00.000Z")
            history = storage.placements_for_device(device.id)
        assert again == first
        assert len(history) == 1

    def test_overlapping_reassignment_rejected(self, store, device, rooms):
        with store.transaction() as storage:
            storage.assign_device_to_room(device, "salon", "2025-09-05T00:00:00.000Z")
        with pytest.raises(ProvisioningError, match="overlaps"):
            with store.transaction() as storage:
                storage.assign_device_to_room(device, "cocina", "2025-09-01T00:00:00.000Z")

    def test_unknown_room_rejected(self, store, device):
        with pytest.raises(ProvisioningError, match="does not exist"):
            with store.transaction() as storage:
                storage.assign_device_to_room(device, "garaje", "2025-09-01T00:00:00.000Z")

    def test_at_most_one_open_placement(self, store, device, rooms):
        """El índice parcial único impide dos ubicaciones abiertas."""
        with store.transaction() as storage:
            storage.assign_device_to_room(device, "salon", "2025-09-01T00:00:00.000Z")
        with pytest.raises(IntegrityError):
            with store.transaction() as storage:
                storage.execute(
                    "INSERT INTO device_room_placements (device_id, room_id, from_ts) "
                    "VALUES (:d, 'cocina', '2025-09-02T00:00:00.000Z')",
                    {"d": device.id},
                )


# =============================================================================
# LECTURAS
# =============================================================================

class TestReadings:

    def test_insert_returns_rowid(self, store, device):
        with store.transaction() as storage:
            first = storage.insert_reading(_row(device))
            second = storage.insert_reading(
                _row(device, ts="2025-09-07T10:31:00.000Z", key="k2")
            )
        assert isinstance(first, int)
        assert second > first

    def test_duplicate_dedup_key(self, store, device):
        with store.transaction() as storage:
            storage.insert_reading(_row(device))
        with pytest.raises(DuplicateReadingError) as exc:
            with store.transaction() as storage:
                storage.insert_reading(_row(device, ts="2025-09-07T11:00:00.000Z"))
        assert exc.value.reason == "dedup_key"

    def test_duplicate_device_ts(self, store, device):
        with store.transaction() as storage:
            storage.insert_reading(_row(device))
        with pytest.raises(DuplicateReadingError) as exc:
            with store.transaction() as storage:
                storage.insert_reading(_row(device, key="other"))
        assert exc.value.reason == "device_ts"

    def test_duplicate_does_not_abort_transaction(self, store, device):
        """El conflicto se aísla en un SAVEPOINT."""
        with store.transaction() as storage:
            storage.insert_reading(_row(device))
            with pytest.raises(DuplicateReadingError):
                storage.insert_reading(_row(device))
            storage.insert_reading(_row(device, ts="2025-09-07T10:32:00.000Z", key="k3"))
        with store.transaction() as storage:
            assert storage.count_rows("readings_raw") == 2

    def test_storage_sanity_bounds(self, store, device):
        with store.transaction() as storage:
            with pytest.raises(TemperatureRangeError):
                storage.insert_reading(_row(device, temperature=120.0))
            with pytest.raises(HumidityRangeError):
                storage.insert_reading(_row(device, humidity=-1.0))
            # Más amplio que el rango del sensor
            storage.insert_reading(_row(device, temperature=-45.0))

    def test_latest_reading_for_device(self, store, device):
        with store.transaction() as storage:
            storage.insert_reading(_row(device, ts="2025-09-07T10:00:00.000Z", key="a"))
            storage.insert_reading(
                _row(device, ts="2025-09-07T11:00:00.000Z", key="b", temperature=22.5)
            )
            latest = storage.latest_reading_for_device("temp001")
        assert latest["ts"] == "2025-09-07T11:00:00.000Z"
        assert latest["temperature"] == 22.5
        assert latest["device_uid"] == "temp001"

    def test_readings_for_room(self, store, device, rooms):
        with store.transaction() as storage:
            for i, key in enumerate("abc"):
                storage.insert_reading(
                    _row(device, ts=f"2025-09-07T1{i}:00:00.000Z", key=key, room_id="salon")
                )
            rows = storage.readings_for_room(
                "salon", "2025-09-07T10:30:00.000Z", "2025-09-07T12:00:00.000Z"
            )
        assert [r["ts"] for r in rows] == [
            "2025-09-07T11:00:00.000Z",
            "2025-09-07T12:00:00.000Z",
        ]

    def test_readings_for_room_requires_ordered_range(self, store):
        with store.transaction() as storage:
            with pytest.raises(ValueError):
                storage.readings_for_room(
                    "salon", "2025-09-07T12:00:00.000Z", "2025-09-07T12:00:00.000Z"
                )

    def test_latest_by_room_view(self, store, device, rooms):
        with store.transaction() as storage:
            storage.insert_reading(
                _row(device, ts="2025-09-07T10:00:00.000Z", key="a", room_id="salon")
            )
            storage.insert_reading(
                _row(device, ts="2025-09-07T11:00:00.000Z", key="b", room_id="salon", humidity=55.0)
            )
            rows = storage.latest_by_room()
        assert rows == [
            {
                "room_id": "salon",
                "last_ts": "2025-09-07T11:00:00.000Z",
                "last_temperature": 21.0,
                "last_humidity": 55.0,
            }
        ]
