"""Deduplicación de lecturas por contenido.

La clave se deriva del uid externo del dispositivo y de la lectura
normalizada. El id de mensaje del transporte NO entra en la clave: un
reenvío del mismo mensaje y una re-entrega del broker con otro id
colapsan a la misma clave, y el índice único de readings_raw.dedup_key
rechaza el segundo insert (DuplicateReadingError).
"""

from __future__ import annotations

import hashlib

import orjson

from ...core.domain.reading import NormalizedReading


def dedup_key(device_uid: str, reading: NormalizedReading) -> str:
    """Genera la clave de deduplicación (MD5 hex, 32 caracteres).

    Args:
        device_uid: Identificador externo del dispositivo
        reading: Lectura ya normalizada (ts canónico)

    Returns:
        Hash estable del contenido
    """
    content = orjson.dumps(
        {
            "deviceId": device_uid,
            "temperature": float(reading.temperature),
            "humidity": float(reading.humidity),
            "ts": reading.ts,
        },
        option=orjson.OPT_SORT_KEYS,
    )
    return hashlib.md5(content).hexdigest()
