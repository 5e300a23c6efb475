"""
Queue module for async job processing.

Provides the queue backend interface, the in-process backend and a
factory selecting the backend from configuration.
"""

from insightdeck.config.settings import get_settings
from insightdeck.queue.interface import QueueBackend, QueueMessage
from insightdeck.queue.inproc import InProcessQueue


def create_queue_backend() -> QueueBackend:
    """
    Factory function to create queue backend based on settings.

    Returns:
        QueueBackend instance

    Raises:
        ValueError: If the configured backend is not supported
    """
    settings = get_settings()

    if settings.queue_backend == "inproc":
        return InProcessQueue()
    raise ValueError(f"Unsupported queue backend: {settings.queue_backend}")


__all__ = [
    "QueueBackend",
    "QueueMessage",
    "InProcessQueue",
    "create_queue_backend",
]
