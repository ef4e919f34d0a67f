"""Validation layer - topics y payloads."""

from .payload_validator import normalize_reading
from .topic_decoder import DEFAULT_TOPIC_PATTERN, TopicDecoder, compile_pattern

__all__ = ["DEFAULT_TOPIC_PATTERN", "TopicDecoder", "compile_pattern", "normalize_reading"]
