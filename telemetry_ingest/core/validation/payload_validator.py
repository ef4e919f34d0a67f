"""Validación y normalización de payloads de lectura.

Formato esperado (firmware AHT20):
{
    "temperature_c": 23.7,
    "humidity_pct": 52.5,
    "timestamp": "2025-09-07T10:30:00Z"
}

También se aceptan los nombres normalizados (`temperature`, `humidity`,
`ts`) para que una lectura ya normalizada se pueda re-enviar. Cualquier
otro campo se descarta.

El timestamp canónico de este despliegue es ISO-8601 con offset; la salida
siempre es UTC con milisegundos (``2025-09-07T10:30:00.000Z``).
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import PydanticCustomError

from ...errors import (
    HumidityRangeError,
    MissingFieldError,
    TemperatureRangeError,
    TimestampInvalidError,
    ValidationError,
    WrongTypeError,
)
from ..domain.reading import NormalizedReading

logger = logging.getLogger(__name__)

# Límites del hardware (AHT20)
TEMPERATURE_MIN = -40.0
TEMPERATURE_MAX = 85.0
HUMIDITY_MIN = 0.0
HUMIDITY_MAX = 100.0

# Tolerancia a relojes adelantados
MAX_FUTURE_SKEW = timedelta(hours=24)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_ISO_RE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{1,6})?(Z|[+-]\d{2}:\d{2})$"
)


def _fromisoformat_input(value: str) -> str:
    # Python 3.10 sólo acepta fracciones de 3 o 6 dígitos
    m = _ISO_RE.match(value)
    fraction = m.group(1)
    if fraction:
        fraction = fraction.ljust(7, "0")
    offset = "+00:00" if m.group(2) == "Z" else m.group(2)
    return value[:19] + (fraction or "") + offset


_FIELD_BY_ALIAS = {
    "temperature_c": "temperature",
    "temperature": "temperature",
    "humidity_pct": "humidity",
    "humidity": "humidity",
    "timestamp": "timestamp",
    "ts": "timestamp",
}

# Primero campos ausentes, luego tipos, luego rangos
_ERROR_PRIORITY = {
    "missing": 0,
    "wrong_type": 1,
    "timestamp_invalid": 2,
    "temperature_range": 2,
    "humidity_range": 2,
}


class ReadingPayload(BaseModel):
    """Schema de validación de una lectura entrante."""

    model_config = ConfigDict(extra="ignore")

    temperature: float = Field(validation_alias=AliasChoices("temperature_c", "temperature"))
    humidity: float = Field(validation_alias=AliasChoices("humidity_pct", "humidity"))
    timestamp: datetime = Field(validation_alias=AliasChoices("timestamp", "ts"))

    @field_validator("temperature", "humidity", mode="before")
    @classmethod
    def require_number(cls, v: Any, info: ValidationInfo):
        # bool es subclase de int, pero no es una medida
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise PydanticCustomError(
                "wrong_type",
                "{field} must be a number",
                {"field": info.field_name, "expected": "a number"},
            )
        try:
            return float(v)
        except OverflowError:
            return math.inf if v > 0 else -math.inf

    @field_validator("temperature")
    @classmethod
    def validate_temperature(cls, v: float):
        if not math.isfinite(v) or v < TEMPERATURE_MIN or v > TEMPERATURE_MAX:
            raise PydanticCustomError(
                "temperature_range",
                "Temperature out of valid range (-40°C to 85°C)",
            )
        return v

    @field_validator("humidity")
    @classmethod
    def validate_humidity(cls, v: float):
        if not math.isfinite(v) or v < HUMIDITY_MIN or v > HUMIDITY_MAX:
            raise PydanticCustomError(
                "humidity_range",
                "Humidity out of valid range (0% to 100%)",
            )
        return v

    @field_validator("timestamp", mode="before")
    @classmethod
    def parse_timestamp(cls, v: Any):
        if not isinstance(v, str):
            raise PydanticCustomError(
                "wrong_type",
                "timestamp must be an ISO-8601 string",
                {"field": "timestamp", "expected": "an ISO-8601 string"},
            )
        if not _ISO_RE.match(v):
            raise PydanticCustomError(
                "timestamp_invalid",
                "Timestamp has invalid ISO format",
                {"reason": "invalid ISO-8601 format"},
            )
        try:
            dt = datetime.fromisoformat(_fromisoformat_input(v))
            return dt.astimezone(timezone.utc)
        except (ValueError, OverflowError):
            raise PydanticCustomError(
                "timestamp_invalid",
                "Timestamp is not a valid instant",
                {"reason": "not a valid instant"},
            )

    @field_validator("timestamp")
    @classmethod
    def validate_timestamp_window(cls, v: datetime, info: ValidationInfo):
        now = (info.context or {}).get("now") or datetime.now(timezone.utc)
        if v < EPOCH:
            raise PydanticCustomError(
                "timestamp_invalid",
                "Timestamp before epoch",
                {"reason": "before epoch"},
            )
        if v > now + MAX_FUTURE_SKEW:
            raise PydanticCustomError(
                "timestamp_invalid",
                "Timestamp too far in future (>24 hours)",
                {"reason": "more than 24 hours in the future"},
            )
        return v

    def to_reading(self) -> NormalizedReading:
        return NormalizedReading(
            temperature=self.temperature,
            humidity=self.humidity,
            ts=format_timestamp(self.timestamp),
        )


def format_timestamp(dt: datetime) -> str:
    """Formato canónico: UTC, milisegundos, sufijo Z."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def normalize_reading(raw: Any, now: Optional[datetime] = None) -> NormalizedReading:
    """Valida un payload crudo y lo convierte en `NormalizedReading`.

    Args:
        raw: Diccionario decodificado del mensaje MQTT
        now: Instante de referencia para la ventana de timestamps (tests)

    Returns:
        NormalizedReading con temperature, humidity y ts canónico

    Raises:
        ValidationError: subclase específica del campo rechazado
    """
    if raw is None:
        raise MissingFieldError("payload")
    if not isinstance(raw, Mapping):
        raise WrongTypeError("payload", "an object", raw)

    try:
        payload = ReadingPayload.model_validate(dict(raw), context={"now": now})
    except PydanticValidationError as e:
        error = _to_ingest_error(e)
        logger.debug("[NORMALIZER] Rejected payload field=%s: %s", error.field, error.message)
        raise error from None

    return payload.to_reading()


def _to_ingest_error(exc: PydanticValidationError) -> ValidationError:
    """Traduce el primer error de pydantic a nuestro error tipado."""
    errors = exc.errors()
    _, chosen = min(
        enumerate(errors),
        key=lambda pair: (_ERROR_PRIORITY.get(pair[1]["type"], 3), pair[0]),
    )
    loc = str(chosen["loc"][0]) if chosen.get("loc") else "payload"
    field = _FIELD_BY_ALIAS.get(loc, loc)
    kind = chosen["type"]
    ctx = chosen.get("ctx") or {}
    value = chosen.get("input")

    if kind == "missing":
        return MissingFieldError(field)
    if kind == "temperature_range":
        return TemperatureRangeError(value, TEMPERATURE_MIN, TEMPERATURE_MAX)
    if kind == "humidity_range":
        return HumidityRangeError(value, HUMIDITY_MIN, HUMIDITY_MAX)
    if kind == "timestamp_invalid":
        return TimestampInvalidError(value, ctx.get("reason", chosen.get("msg", "invalid")))
    return WrongTypeError(field, ctx.get("expected", "a valid value"), value)
