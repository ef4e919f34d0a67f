"""Estadísticas del receptor MQTT."""

from __future__ import annotations

import threading
import time


class ReceiverStats:
    """Contadores del receptor. Los actualizan el thread de red y los workers."""

    def __init__(self):
        self._lock = threading.Lock()
        self.received = 0
        self.processed = 0
        self.duplicates = 0
        self.rejected = 0
        self.failed = 0
        self.dropped = 0
        self.last_message_at: float = 0

    def record(self, outcome: str) -> None:
        """Suma 1 a `outcome` (received, processed, duplicates, ...)."""
        with self._lock:
            setattr(self, outcome, getattr(self, outcome) + 1)
            if outcome == "received":
                self.last_message_at = time.time()

    def __str__(self) -> str:
        return (
            f"Stats: received={self.received} processed={self.processed} "
            f"duplicates={self.duplicates} rejected={self.rejected} "
            f"failed={self.failed} dropped={self.dropped}"
        )

    def to_dict(self) -> dict:
        with self._lock:
            return {
                "received": self.received,
                "processed": self.processed,
                "duplicates": self.duplicates,
                "rejected": self.rejected,
                "failed": self.failed,
                "dropped": self.dropped,
                "last_message_at": self.last_message_at,
            }
