"""
Queue backend living inside the API process.

Messages sit in a FIFO ``queue.Queue``; dequeued messages are tracked until
acked, and messages whose processor raised are parked in a dead-letter map
for inspection.
"""

import queue
import threading
import time
from typing import Dict, Optional
from uuid import UUID

from insightdeck.queue.interface import QueueBackend, QueueMessage

# Upper bound on a single blocking get, so close() is noticed promptly
_POLL_SLICE = 0.1


class InProcessQueue(QueueBackend):
    """
    FIFO queue with a dead-letter map.

    There is no automatic retry: a failed attempt is final and only an
    explicit reprocess request starts another one.
    """

    def __init__(self):
        self._pending: queue.Queue = queue.Queue()
        self._in_flight: Dict[UUID, QueueMessage] = {}
        self._dead_letters: Dict[UUID, QueueMessage] = {}
        self._lock = threading.Lock()
        self._closed = False

    def enqueue(self, message: QueueMessage) -> None:
        if self._closed:
            raise RuntimeError("Queue is closed")
        self._pending.put(message)

    def dequeue(self, timeout: Optional[float] = None) -> Optional[QueueMessage]:
        give_up_at = None if timeout is None else time.monotonic() + timeout

        while not self._closed:
            wait = _POLL_SLICE
            if give_up_at is not None:
                left = give_up_at - time.monotonic()
                if left <= 0:
                    return None
                wait = min(left, _POLL_SLICE)

            try:
                message = self._pending.get(timeout=wait)
            except queue.Empty:
                continue

            with self._lock:
                self._in_flight[message.job_id] = message
            return message

        return None

    def ack(self, job_id: UUID) -> None:
        with self._lock:
            self._in_flight.pop(job_id, None)

    def nack(self, job_id: UUID, error: str) -> None:
        """Dead-letter a message, keeping the error in its ``job_data``."""
        with self._lock:
            message = self._in_flight.pop(job_id, None)
            if message is None:
                return
            message.job_data = {**message.job_data, "last_error": error}
            self._dead_letters[job_id] = message

    def size(self) -> int:
        return self._pending.qsize()

    def in_flight(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def get_dlq_size(self) -> int:
        with self._lock:
            return len(self._dead_letters)

    def get_dlq_messages(self) -> Dict[UUID, QueueMessage]:
        """Snapshot of dead-lettered messages keyed by job id."""
        with self._lock:
            return dict(self._dead_letters)

    def close(self) -> None:
        """Stop handing out messages and discard whatever is still pending."""
        self._closed = True
        while True:
            try:
                self._pending.get_nowait()
            except queue.Empty:
                break
