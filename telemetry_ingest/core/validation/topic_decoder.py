"""Decodificación de topics MQTT a partir de un patrón con placeholders.

    decoder = compile_pattern("home/{homeId}/sensors/{deviceId}/reading")
    decoder.parse("home/house-001/sensors/temp-01/reading")
    # {"homeId": "house-001", "deviceId": "temp-01"}

El decoder compilado es inmutable y se puede compartir entre threads.
"""

from __future__ import annotations

import re
from typing import Dict, List

from ...errors import (
    EmptyIdError,
    IdTooLongError,
    InvalidIdCharsError,
    PatternError,
    TopicFormatError,
)

DEFAULT_TOPIC_PATTERN = "home/{homeId}/sensors/{deviceId}/reading"

MAX_ID_LENGTH = 50

_PLACEHOLDER_RE = re.compile(r"\{([^{}]+)\}")
_VALID_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_ID_CHARS_RE = re.compile(r"^[A-Za-z0-9_-]*\Z")
_VALID_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class TopicDecoder:
    """Matcher compilado para un patrón de topic."""

    def __init__(self, pattern: str, placeholders: List[str], regex: "re.Pattern[str]"):
        self._pattern = pattern
        self._placeholders = tuple(placeholders)
        self._regex = regex

    @property
    def pattern(self) -> str:
        return self._pattern

    @property
    def placeholders(self) -> tuple:
        return self._placeholders

    @property
    def subscription_filter(self) -> str:
        """Filtro MQTT equivalente: cada nivel con placeholder pasa a `+`."""
        levels = []
        for level in self._pattern.split("/"):
            levels.append("+" if _PLACEHOLDER_RE.search(level) else level)
        return "/".join(levels)

    def parse(self, topic: str) -> Dict[str, str]:
        """Extrae los valores de los placeholders del topic.

        Raises:
            TopicFormatError: topic vacío, no string o con otra forma.
            EmptyIdError, IdTooLongError, InvalidIdCharsError: valor inválido
                para un placeholder concreto.
        """
        if topic is None:
            raise TopicFormatError("Topic is required")
        if not isinstance(topic, str):
            raise TopicFormatError(f"Topic must be a string, got {type(topic).__name__}")
        if not topic.strip():
            raise TopicFormatError("Invalid topic format: topic cannot be empty")

        match = self._regex.match(topic)
        if match is None:
            raise TopicFormatError(f"Invalid topic format: expected {self._pattern}")

        values: Dict[str, str] = {}
        for name, value in zip(self._placeholders, match.groups()):
            _check_id(name, value)
            values[name] = value
        return values

    def render(self, **values: str) -> str:
        """Construye un topic a partir de valores (inverso de `parse`)."""
        missing = [name for name in self._placeholders if name not in values]
        if missing:
            raise PatternError(f"Missing values for placeholders: {', '.join(missing)}")
        return _PLACEHOLDER_RE.sub(lambda m: str(values[m.group(1)]), self._pattern)

    def __repr__(self) -> str:
        return f"TopicDecoder({self._pattern!r})"


def _check_id(name: str, value: str) -> None:
    # Orden: vacío, longitud, caracteres
    if not value or not value.strip():
        raise EmptyIdError(name)
    if len(value) > MAX_ID_LENGTH:
        raise IdTooLongError(name, MAX_ID_LENGTH)
    if not _VALID_ID_RE.match(value):
        raise InvalidIdCharsError(name, value)


def compile_pattern(pattern: str = DEFAULT_TOPIC_PATTERN) -> TopicDecoder:
    """Compila un patrón tipo ``home/{homeId}/sensors/{deviceId}/reading``.

    Raises:
        PatternError: patrón vacío, no string, sin placeholders, con nombres
            inválidos o repetidos.
    """
    if pattern is None:
        raise PatternError("Pattern is required")
    if not isinstance(pattern, str):
        raise PatternError("Pattern must be a string")
    if not pattern.strip():
        raise PatternError("Pattern is required and cannot be empty")

    placeholders = _PLACEHOLDER_RE.findall(pattern)
    if not placeholders:
        raise PatternError(
            "Pattern is invalid: must contain at least one placeholder like {homeId}"
        )

    seen = set()
    for name in placeholders:
        if not _VALID_NAME_RE.match(name):
            raise PatternError(f"Pattern is invalid: bad placeholder name {name!r}")
        if name in seen:
            raise PatternError(f"Pattern is invalid: placeholder {name!r} repeated")
        seen.add(name)

    # Literales escapados; cada placeholder captura cualquier tramo sin "/".
    # Se admite vacío para poder reportar EmptyIdError con el nombre.
    parts = []
    last = 0
    for m in _PLACEHOLDER_RE.finditer(pattern):
        literal = pattern[last:m.start()]
        if "{" in literal or "}" in literal:
            raise PatternError(f"Pattern is invalid: unbalanced braces in {pattern!r}")
        if parts and _ID_CHARS_RE.match(literal):
            # Sin un separador que no pueda aparecer en un id, el corte es ambiguo
            raise PatternError(
                f"Pattern is invalid: {{{m.group(1)}}} needs a separator before it in {pattern!r}"
            )
        parts.append(re.escape(literal))
        parts.append("([^/]*)")
        last = m.end()
    tail = pattern[last:]
    if "{" in tail or "}" in tail:
        raise PatternError(f"Pattern is invalid: unbalanced braces in {pattern!r}")
    parts.append(re.escape(tail))

    regex = re.compile("^" + "".join(parts) + r"\Z")
    return TopicDecoder(pattern, placeholders, regex)
