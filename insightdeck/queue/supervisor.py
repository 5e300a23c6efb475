"""
Background workers for queued ingestion.

``WorkerSupervisor`` owns a fixed pool of daemon threads. Each thread pulls
one message at a time, hands it to the processor registered for its
``job_type`` and acks or nacks the message depending on whether the
processor raised. Ingestion processors record their own failures on the
dataset, so a nack here means the message itself was unusable.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List

from insightdeck.common.logging_config import clear_request_id, set_dataset_id, set_request_id
from insightdeck.common.metrics import queue_depth
from insightdeck.queue.interface import QueueBackend, QueueMessage

logger = logging.getLogger(__name__)

# Seconds a worker blocks on an empty queue before re-checking for shutdown
POLL_INTERVAL = 1.0


class JobProcessor(ABC):
    """Handles the payload of one message type."""

    @abstractmethod
    def process(self, job_data: dict) -> Dict[str, Any]:
        """
        Run the job described by ``job_data``.

        Raising marks the message as failed; returning acknowledges it.
        """


class WorkerSupervisor:
    """Starts, runs and stops the ingestion worker threads."""

    def __init__(
        self,
        queue_backend: QueueBackend,
        processors: Dict[str, JobProcessor],
        num_workers: int = 4
    ):
        self.queue = queue_backend
        self.processors = processors
        self.num_workers = num_workers
        self.workers: List[threading.Thread] = []
        self.running = False
        self._stopping = threading.Event()

    def start(self) -> None:
        if self.running:
            logger.warning("Worker supervisor already running")
            return

        self.running = True
        self._stopping.clear()
        for n in range(1, self.num_workers + 1):
            thread = threading.Thread(
                target=self._worker_loop, name=f"ingest-worker-{n}", daemon=True)
            thread.start()
            self.workers.append(thread)

        logger.info(f"Started {self.num_workers} ingestion workers")

    def stop(self, timeout: float = 30.0) -> None:
        """
        Ask workers to exit and wait for them.

        A worker in the middle of a job finishes it first; ``timeout`` is
        shared across all workers.
        """
        if not self.running:
            return

        self.running = False
        self._stopping.set()

        per_worker = timeout / max(len(self.workers), 1)
        for thread in self.workers:
            thread.join(timeout=per_worker)
            if thread.is_alive():
                logger.warning(f"{thread.name} still busy after shutdown timeout")

        self.workers.clear()
        logger.info("Ingestion workers stopped")

    def _worker_loop(self) -> None:
        name = threading.current_thread().name

        while self.running:
            try:
                message = self.queue.dequeue(timeout=POLL_INTERVAL)
                queue_depth.set(self.queue.size())
                if message is not None:
                    self._process_job(message, name)
            except Exception as e:
                # Keep the thread alive; back off briefly before polling again
                logger.error(f"{name} crashed while polling: {e}", exc_info=True)
                self._stopping.wait(POLL_INTERVAL)

        logger.debug(f"{name} exited")

    def _process_job(self, message: QueueMessage, worker_name: str) -> None:
        # Log lines for this job carry the request id of the upload that queued it
        set_request_id(message.job_data.get("request_id") or str(message.job_id))
        set_dataset_id(message.dataset_id)
        started = time.perf_counter()

        try:
            processor = self.processors.get(message.job_type)
            if processor is None:
                raise ValueError(f"No processor registered for job type: {message.job_type}")

            result = processor.process(message.job_data)
            self.queue.ack(message.job_id)
            logger.info(
                f"{worker_name} finished {message.job_type} job {message.job_id} in "
                f"{(time.perf_counter() - started) * 1000:.1f}ms",
                extra={"extra_fields": {"result": result}},
            )
        except Exception as e:
            logger.error(
                f"{worker_name} could not process {message.job_type} job {message.job_id}: {e}",
                exc_info=True)
            self.queue.nack(message.job_id, str(e))
        finally:
            set_dataset_id(None)
            clear_request_id()
