"""Procesador asíncrono: desacopla el callback de paho de la ingesta.

El thread de red de paho sólo encola (`enqueue`) y vuelve; un pool de
workers llama a `Ingestor.ingest`. La cola acotada da backpressure: si
está llena el mensaje se descarta y se cuenta.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Any, List, Optional

from ..core.domain.contracts import TransportMeta
from ..errors import DuplicateReadingError, IngestError
from ..pipelines.ingestor import Ingestor
from .metrics import (
    MQTT_MESSAGES_RECEIVED,
    MQTT_PROCESSING_LATENCY,
    MQTT_QUEUE_DEPTH,
    MQTT_REJECTIONS,
)
from .receiver_stats import ReceiverStats

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 1000
DEFAULT_NUM_WORKERS = 4


@dataclass(frozen=True)
class IngestJob:
    topic: str
    payload: Any
    meta: TransportMeta


class AsyncIngestProcessor:
    """Cola + pool de threads alrededor de `Ingestor`.

    - callback de paho -> enqueue() no bloquea
    - workers -> ingest() en paralelo, cada uno con su transacción
    - los errores por mensaje se registran y cuentan, nunca se propagan al
      thread de red
    """

    def __init__(
        self,
        ingestor: Ingestor,
        stats: Optional[ReceiverStats] = None,
        max_queue_size: int = DEFAULT_QUEUE_SIZE,
        num_workers: int = DEFAULT_NUM_WORKERS,
    ):
        self._ingestor = ingestor
        self._stats = stats or ReceiverStats()
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._num_workers = num_workers
        self._stop_event = threading.Event()
        self._workers: List[threading.Thread] = []

    @property
    def stats(self) -> ReceiverStats:
        return self._stats

    def start(self) -> None:
        self._stop_event.clear()
        for i in range(self._num_workers):
            t = threading.Thread(
                target=self._worker_loop,
                args=(i,),
                daemon=True,
                name=f"ingest-worker-{i}",
            )
            t.start()
            self._workers.append(t)
        logger.info(
            "[INGEST] Started workers=%d queue_max=%d",
            self._num_workers, self._queue.maxsize,
        )

    def stop(self, drain: bool = True) -> None:
        """Detiene los workers. Con drain=True primero vacía la cola."""
        if drain and self._workers:
            self._queue.join()
        self._stop_event.set()
        for t in self._workers:
            t.join(timeout=5.0)
        self._workers.clear()
        logger.info("[INGEST] Workers stopped. %s", self._stats)

    def enqueue(self, job: IngestJob) -> bool:
        """Encola un mensaje. Devuelve False si la cola está llena."""
        try:
            self._queue.put_nowait(job)
        except queue.Full:
            self._stats.record("dropped")
            MQTT_MESSAGES_RECEIVED.labels(status="dropped").inc()
            logger.warning("[INGEST] Queue full, dropped topic=%s", job.topic)
            return False
        MQTT_QUEUE_DEPTH.set(self._queue.qsize())
        return True

    def process(self, job: IngestJob) -> None:
        """Ingiere un mensaje y clasifica el resultado."""
        start = time.perf_counter()
        try:
            self._ingestor.ingest(job.topic, job.payload, job.meta)
        except DuplicateReadingError:
            self._stats.record("duplicates")
            MQTT_MESSAGES_RECEIVED.labels(status="duplicate").inc()
        except IngestError as e:
            self._stats.record("rejected")
            MQTT_MESSAGES_RECEIVED.labels(status="rejected").inc()
            MQTT_REJECTIONS.labels(kind=type(e).__name__).inc()
        except Exception as e:
            self._stats.record("failed")
            MQTT_MESSAGES_RECEIVED.labels(status="error").inc()
            logger.exception("[INGEST] Unexpected error topic=%s: %s", job.topic, e)
        else:
            self._stats.record("processed")
            MQTT_MESSAGES_RECEIVED.labels(status="success").inc()
            if self._stats.processed % 100 == 0:
                logger.info("[INGEST] %s", self._stats)
        finally:
            MQTT_PROCESSING_LATENCY.observe(time.perf_counter() - start)

    def _worker_loop(self, worker_id: int) -> None:
        while not self._stop_event.is_set():
            try:
                job = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self.process(job)
            finally:
                self._queue.task_done()
                MQTT_QUEUE_DEPTH.set(self._queue.qsize())

    @property
    def metrics(self) -> dict:
        return {
            "queue_depth": self._queue.qsize(),
            "queue_max": self._queue.maxsize,
            "workers": len(self._workers),
            **self._stats.to_dict(),
        }
