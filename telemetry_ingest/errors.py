"""Errores tipados del pipeline de ingesta.

Cada error lleva el componente responsable y el identificador o campo en
falta, para que el receptor pueda distinguir problemas de aprovisionamiento,
fallos de sensor y corrupción en el transporte sin parsear mensajes.
"""

from __future__ import annotations

from typing import Any, Optional


class IngestError(Exception):
    """Base de todos los errores del servicio."""

    component = "ingest"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "component": self.component,
            "message": self.message,
        }


# =============================================================================
# Topic
# =============================================================================

class PatternError(IngestError):
    """Patrón de topic inválido (vacío, sin placeholders, duplicados)."""

    component = "topic_decoder"


class TopicFormatError(IngestError):
    """El topic no tiene la forma esperada."""

    component = "topic_decoder"

    def __init__(self, message: str, placeholder: Optional[str] = None):
        super().__init__(message)
        self.placeholder = placeholder

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["placeholder"] = self.placeholder
        return data


class EmptyIdError(TopicFormatError):
    def __init__(self, placeholder: str):
        super().__init__(f"Empty ID: {placeholder} cannot be empty", placeholder)


class IdTooLongError(TopicFormatError):
    def __init__(self, placeholder: str, max_length: int):
        super().__init__(
            f"ID too long: {placeholder} exceeds {max_length} characters",
            placeholder,
        )
        self.max_length = max_length


class InvalidIdCharsError(TopicFormatError):
    def __init__(self, placeholder: str, value: str):
        super().__init__(
            f"Invalid {placeholder}: {value!r} contains invalid characters",
            placeholder,
        )
        self.value = value


# =============================================================================
# Payload
# =============================================================================

class ValidationError(IngestError):
    """Payload rechazado. `field` indica el campo responsable."""

    component = "payload_normalizer"

    def __init__(self, message: str, field: str, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field"] = self.field
        return data


class MissingFieldError(ValidationError):
    def __init__(self, field: str):
        super().__init__(f"{field} field is required", field)


class WrongTypeError(ValidationError):
    def __init__(self, field: str, expected: str, value: Any = None):
        super().__init__(
            f"{field} must be {expected}, got {type(value).__name__}",
            field,
            value,
        )
        self.expected = expected


class MalformedPayloadError(ValidationError):
    """El payload no es JSON decodificable."""

    def __init__(self, reason: str):
        super().__init__(f"payload is not valid JSON: {reason}", "payload")


class TemperatureRangeError(ValidationError):
    def __init__(self, value: Any, low: float, high: float):
        super().__init__(
            f"temperature {value} out of range [{low}, {high}]",
            "temperature",
            value,
        )
        self.low = low
        self.high = high


class HumidityRangeError(ValidationError):
    def __init__(self, value: Any, low: float, high: float):
        super().__init__(
            f"humidity {value} out of range [{low}, {high}]",
            "humidity",
            value,
        )
        self.low = low
        self.high = high


class TimestampInvalidError(ValidationError):
    def __init__(self, value: Any, reason: str):
        super().__init__(f"timestamp {value!r} invalid: {reason}", "timestamp", value)
        self.reason = reason


# =============================================================================
# Dispositivos y persistencia
# =============================================================================

class UnknownDeviceError(IngestError):
    """Dispositivo no aprovisionado (política estricta)."""

    component = "device_resolver"

    def __init__(self, device_uid: str):
        super().__init__(
            f"unknown device {device_uid}: device must be provisioned first"
        )
        self.device_uid = device_uid

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["device_uid"] = self.device_uid
        return data


class DuplicateReadingError(IngestError):
    """La lectura ya estaba persistida (misma clave de dedup o mismo (device, ts))."""

    component = "deduplication"

    def __init__(self, device_uid: str, ts: str, dedup_key: Optional[str], reason: str):
        super().__init__(
            f"duplicate reading for device {device_uid} at {ts} ({reason})"
        )
        self.device_uid = device_uid
        self.ts = ts
        self.dedup_key = dedup_key
        self.reason = reason

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(
            device_uid=self.device_uid,
            ts=self.ts,
            dedup_key=self.dedup_key,
            reason=self.reason,
        )
        return data


class MigrationError(IngestError):
    """Fallo de migración de esquema. Es fatal para el arranque."""

    component = "schema_migration"

    def __init__(self, message: str, version: Optional[int] = None):
        super().__init__(message)
        self.version = version


class ProvisioningError(IngestError):
    component = "provisioning"
