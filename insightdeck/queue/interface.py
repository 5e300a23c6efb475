"""
Queue contract between the upload path and ingestion workers.

An upload (or a reprocess request) becomes one ``QueueMessage``; a worker
dequeues it, runs the matching processor and acknowledges the outcome.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID, uuid4


@dataclass
class QueueMessage:
    """One unit of background work, routed to a processor by ``job_type``."""
    job_type: str
    job_data: Dict[str, Any]
    job_id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def dataset_id(self) -> Optional[str]:
        return self.job_data.get("dataset_id")


class QueueBackend(ABC):
    """Storage and hand-off of queued ingestion work."""

    @abstractmethod
    def enqueue(self, message: QueueMessage) -> None:
        ...

    @abstractmethod
    def dequeue(self, timeout: Optional[float] = None) -> Optional[QueueMessage]:
        """
        Hand the oldest waiting message to a worker.

        Returns None when ``timeout`` seconds pass without one.
        """

    @abstractmethod
    def ack(self, job_id: UUID) -> None:
        """Forget a message whose processor returned normally."""

    @abstractmethod
    def nack(self, job_id: UUID, error: str) -> None:
        """Dead-letter a message whose processor raised."""

    @abstractmethod
    def size(self) -> int:
        """Messages waiting to be dequeued."""

    @abstractmethod
    def in_flight(self) -> int:
        """Messages dequeued but not yet acknowledged."""

    @abstractmethod
    def close(self) -> None:
        ...
