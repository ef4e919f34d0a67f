"""Alta de dispositivos y su ubicación en una habitación.

En modo strict el pipeline sólo acepta dispositivos que existen; éste es
el camino del operador para crearlos.
"""

from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from ..core.domain.device import Device, Placement, Room
from ..core.validation.payload_validator import format_timestamp
from ..core.validation.topic_decoder import MAX_ID_LENGTH
from ..errors import ProvisioningError
from ..infrastructure.persistence.storage import TelemetryStorage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "AHT20"

_VALID_UID_RE = re.compile(r"^[A-Za-z0-9_-]+$")


@dataclass(frozen=True)
class ProvisionResult:
    device: Device
    device_created: bool
    room: Optional[Room] = None
    room_created: bool = False
    placement: Optional[Placement] = None


def room_uid_from_name(name: str) -> str:
    """'Salón Principal' -> 'salon-principal'."""
    folded = unicodedata.normalize("NFKD", name.strip().lower())
    ascii_only = "".join(c for c in folded if not unicodedata.combining(c))
    slug = re.sub(r"[^a-z0-9]+", "-", ascii_only).strip("-")
    if not slug:
        raise ProvisioningError(f"room name {name!r} has no usable characters")
    return slug


def provision_device(
    storage: TelemetryStorage,
    uid: str,
    label: str,
    model: str = DEFAULT_MODEL,
    room_name: Optional[str] = None,
    at: Optional[str] = None,
) -> ProvisionResult:
    """Crea (si falta) el dispositivo y lo ubica en `room_name`.

    Idempotente: repetir la misma llamada no crea nada nuevo.

    Args:
        storage: Accessor dentro de una transacción
        uid: Id externo, el mismo que viaja en el topic
        label: Nombre legible
        model: Modelo del sensor
        room_name: Habitación; se crea si no existe
        at: Inicio de la ubicación (por defecto ahora, ISO UTC)

    Raises:
        ProvisioningError: uid inválido o ubicación que solapa otra
    """
    if not uid or len(uid) > MAX_ID_LENGTH or not _VALID_UID_RE.match(uid):
        raise ProvisioningError(
            f"device uid {uid!r} must be 1-{MAX_ID_LENGTH} chars of [A-Za-z0-9_-]"
        )

    device = storage.find_device_by_external_id(uid)
    device_created = device is None
    if device is None:
        device = storage.create_device(uid, label=label, model=model)
        logger.info("[PROVISION] Created device %s (id=%s)", uid, device.id)

    if not room_name:
        return ProvisionResult(device=device, device_created=device_created)

    room_id = room_uid_from_name(room_name)
    room = storage.find_room(room_id)
    room_created = room is None
    if room is None:
        room = storage.create_room(room_id, room_name)
        logger.info("[PROVISION] Created room %s (%s)", room_name, room_id)

    placement = storage.assign_device_to_room(
        device, room_id, at or format_timestamp(datetime.now(timezone.utc))
    )
    return ProvisionResult(
        device=device,
        device_created=device_created,
        room=room,
        room_created=room_created,
        placement=placement,
    )
