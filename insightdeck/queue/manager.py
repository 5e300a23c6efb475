"""
Process-wide queue and worker handles.

The API lifespan builds both at startup; the upload path and the readiness
check look them up here.
"""

from typing import Optional

from insightdeck.queue import create_queue_backend
from insightdeck.queue.interface import QueueBackend
from insightdeck.queue.supervisor import WorkerSupervisor

_queue_backend: Optional[QueueBackend] = None
_worker_supervisor: Optional[WorkerSupervisor] = None


def get_queue_backend() -> QueueBackend:
    """Return the shared backend, building it from settings on first use."""
    global _queue_backend
    if _queue_backend is None:
        _queue_backend = create_queue_backend()
    return _queue_backend


def reset_queue_backend() -> None:
    """Close the shared backend; queued but unprocessed uploads are dropped."""
    global _queue_backend
    backend, _queue_backend = _queue_backend, None
    if backend is not None:
        backend.close()


def get_worker_supervisor() -> Optional[WorkerSupervisor]:
    return _worker_supervisor


def set_worker_supervisor(supervisor: Optional[WorkerSupervisor]) -> None:
    global _worker_supervisor
    _worker_supervisor = supervisor
