"""Aprovisionamiento de dispositivos y habitaciones (modo strict)."""

from .service import ProvisionResult, provision_device, room_uid_from_name

__all__ = ["ProvisionResult", "provision_device", "room_uid_from_name"]
