"""
Prometheus instruments for the upload path and the ingestion workers.

Everything is registered on a private ``REGISTRY`` so importing the module
twice (tests, reloads) never trips duplicate-collector errors.
"""

import time
from functools import wraps
from typing import Callable

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

# status: admitted | rejected; file_type is "unknown" when detection failed
uploads_total = Counter(
    "uploads_total",
    "Upload requests by detected file type and admission outcome",
    ["file_type", "status"],
    registry=REGISTRY,
)

upload_latency_seconds = Histogram(
    "upload_latency_seconds",
    "Seconds spent admitting and storing one upload",
    buckets=(0.01, 0.05, 0.1, 0.2, 0.5, 1.0, 2.0, 5.0),
    registry=REGISTRY,
)

# status: completed | failed | conflict
ingestion_jobs_total = Counter(
    "ingestion_jobs_total",
    "Ingestion attempts by file type and outcome",
    ["file_type", "status"],
    registry=REGISTRY,
)

ingestion_duration_seconds = Histogram(
    "ingestion_duration_seconds",
    "Seconds from job start until the dataset reached a terminal status",
    ["file_type"],
    buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
    registry=REGISTRY,
)

queue_depth = Gauge(
    "queue_depth",
    "Ingestion jobs waiting for a worker",
    registry=REGISTRY,
)


def track_upload_time(func: Callable):
    """Observe ``upload_latency_seconds`` around ``func``, including failures."""
    @wraps(func)
    def timed(*args, **kwargs):
        started = time.perf_counter()
        try:
            return func(*args, **kwargs)
        finally:
            upload_latency_seconds.observe(time.perf_counter() - started)

    return timed


def get_metrics() -> bytes:
    return generate_latest(REGISTRY)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
