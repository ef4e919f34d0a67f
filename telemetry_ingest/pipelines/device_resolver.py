"""Resolución del dispositivo a partir del id externo del topic.

La política se elige una vez al construir el resolver:
- `RequireProvisioned` (strict): el dispositivo debe existir.
- `AutoProvision` (permissive): se crea un dispositivo placeholder, sin
  habitación, la primera vez que se ve.

No hay locks en proceso: la creación concurrente del mismo dispositivo la
resuelve la restricción UNIQUE de devices.uid y el perdedor relee.
"""

from __future__ import annotations

import logging
from typing import Tuple

from sqlalchemy.exc import IntegrityError

from ..core.domain.device import Device
from ..errors import UnknownDeviceError
from ..infrastructure.persistence.storage import TelemetryStorage

logger = logging.getLogger(__name__)


class DeviceResolutionPolicy:
    """Qué hacer con un dispositivo que no está en el store."""

    name = "base"

    def on_unknown(self, storage: TelemetryStorage, uid: str, seen_at: str) -> Tuple[Device, bool]:
        raise NotImplementedError


class RequireProvisioned(DeviceResolutionPolicy):
    name = "strict"

    def on_unknown(self, storage: TelemetryStorage, uid: str, seen_at: str) -> Tuple[Device, bool]:
        raise UnknownDeviceError(uid)


class AutoProvision(DeviceResolutionPolicy):
    name = "permissive"

    def __init__(self, label_template: str = "Auto-provisioned {uid}"):
        self.label_template = label_template

    def on_unknown(self, storage: TelemetryStorage, uid: str, seen_at: str) -> Tuple[Device, bool]:
        try:
            with storage.savepoint():
                device = storage.create_device(
                    uid,
                    label=self.label_template.format(uid=uid),
                    last_seen_at=seen_at,
                )
        except IntegrityError:
            # Otro worker lo creó entre la búsqueda y el INSERT
            device = storage.find_device_by_external_id(uid)
            if device is None:
                raise
            logger.debug("[INGEST] Device %s created concurrently, reusing", uid)
            return device, False

        logger.info("[INGEST] Auto-provisioned device %s (id=%s)", uid, device.id)
        return device, True


_POLICIES = {
    RequireProvisioned.name: RequireProvisioned,
    AutoProvision.name: AutoProvision,
}


def policy_from_name(name: str) -> DeviceResolutionPolicy:
    """`strict` -> RequireProvisioned, `permissive` -> AutoProvision."""
    key = (name or "").strip().lower()
    if key not in _POLICIES:
        raise ValueError(f"unknown device policy {name!r}, expected one of {sorted(_POLICIES)}")
    return _POLICIES[key]()


class DeviceResolver:
    def __init__(self, policy: DeviceResolutionPolicy):
        self.policy = policy

    def resolve(self, storage: TelemetryStorage, uid: str, seen_at: str) -> Tuple[Device, bool]:
        """Devuelve (device, created).

        Raises:
            UnknownDeviceError: dispositivo desconocido con política strict
        """
        device = storage.find_device_by_external_id(uid)
        if device is not None:
            return device, False
        return self.policy.on_unknown(storage, uid, seen_at)

    def mark_seen(self, storage: TelemetryStorage, device: Device, ts: str) -> None:
        storage.update_device_last_seen(device.id, ts)
