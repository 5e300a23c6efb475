# InsightDeck ingestion service: HTTP API plus in-process ingestion workers

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from insightdeck.api.routes import router
from insightdeck.catalog.database import SessionLocal, check_database_connection, init_db
from insightdeck.common.logging_config import setup_logging
from insightdeck.common.metrics import get_metrics, get_metrics_content_type
from insightdeck.common.middleware import RequestTrackingMiddleware
from insightdeck.config.settings import get_settings
from insightdeck.ingest.job import IngestionJob
from insightdeck.queue.manager import (
    get_queue_backend,
    get_worker_supervisor,
    reset_queue_backend,
    set_worker_supervisor,
)
from insightdeck.queue.processors import INGEST_JOB_TYPE, IngestionJobProcessor
from insightdeck.queue.supervisor import WorkerSupervisor
from insightdeck.storage.factory import get_storage_adapter

SERVICE_NAME = "InsightDeck Ingestion API"
VERSION = "0.1.0"

settings = get_settings()
setup_logging(settings.log_level, json_format=settings.log_json)
logger = logging.getLogger(__name__)


def start_workers() -> WorkerSupervisor:
    job = IngestionJob(
        session_factory=SessionLocal,
        storage=get_storage_adapter(),
        timeout_seconds=settings.job_timeout_seconds,
    )
    supervisor = WorkerSupervisor(
        queue_backend=get_queue_backend(),
        processors={INGEST_JOB_TYPE: IngestionJobProcessor(job)},
        num_workers=settings.worker_threads,
    )
    supervisor.start()
    set_worker_supervisor(supervisor)
    return supervisor


def stop_workers(supervisor: WorkerSupervisor) -> None:
    supervisor.stop()
    set_worker_supervisor(None)
    # Uploads still queued are left pending; reprocess picks them up later
    reset_queue_backend()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.database_url.startswith("sqlite"):
        # PostgreSQL schemas come from scripts/migrate.py
        init_db()

    supervisor = start_workers()
    logger.info(f"{SERVICE_NAME} ready with {settings.worker_threads} ingestion workers")
    try:
        yield
    finally:
        stop_workers(supervisor)
        logger.info(f"{SERVICE_NAME} shut down")


app = FastAPI(
    title=SERVICE_NAME,
    description="Upload CSV, JSON and Excel files and infer their schema",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(RequestTrackingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1")


@app.get("/")
async def root():
    return {"service": SERVICE_NAME, "version": VERSION, "docs": "/docs"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.get("/live")
async def liveness():
    """Process is up; says nothing about the database or workers."""
    return {"status": "alive"}


@app.get("/ready")
async def readiness():
    """Ready only when the catalog answers and ingestion workers are running."""
    database_ok = check_database_connection()
    supervisor = get_worker_supervisor()
    workers_ok = bool(supervisor and supervisor.running)
    return {
        "status": "ready" if database_ok and workers_ok else "not_ready",
        "database": "connected" if database_ok else "disconnected",
        "workers": "running" if workers_ok else "stopped",
    }


@app.get("/metrics")
async def metrics():
    if not settings.metrics_enabled:
        return Response(status_code=404)
    return Response(content=get_metrics(), media_type=get_metrics_content_type())


if __name__ == "__main__":
    uvicorn.run("insightdeck.main:app", host=settings.app_host,
                port=settings.app_port, reload=settings.debug)
