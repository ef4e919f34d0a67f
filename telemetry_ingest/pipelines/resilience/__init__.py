"""Resiliencia del pipeline: deduplicación por contenido."""

from .deduplication import dedup_key

__all__ = ["dedup_key"]
