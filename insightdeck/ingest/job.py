"""
Background ingestion of one uploaded dataset.

An attempt claims the dataset with a conditional ``-> processing`` update,
reads the stored bytes, infers the schema and finishes with a conditional
``processing -> completed|failed`` update. Whatever goes wrong after the
claim ends up in the dataset record as a ``failed`` status with a message.
"""

import logging
import time
from contextlib import closing
from dataclasses import dataclass, asdict
from io import BytesIO
from typing import Any, Dict, Optional
from uuid import UUID

from insightdeck.catalog.repository import ConflictError, DatasetRepository, SessionFactory
from insightdeck.catalog.state import (
    DatasetState,
    ProcessingStatus,
    StatusTransition,
    mark_completed,
    mark_failed,
    start_processing,
)
from insightdeck.common.logging_config import PerformanceTracker, get_request_id, set_dataset_id
from insightdeck.common.metrics import ingestion_duration_seconds, ingestion_jobs_total
from insightdeck.ingest.parsers import ParseError
from insightdeck.ingest.schema_inferencer import (
    InferenceTimeoutError,
    SchemaInferencer,
    UnsupportedFormatError,
)
from insightdeck.storage.adapter import StorageAdapter, StorageError

logger = logging.getLogger(__name__)


@dataclass
class JobOutcome:
    """Result of one ingestion attempt."""
    dataset_id: str
    status: str
    row_count: int = 0
    column_count: int = 0
    error_message: Optional[str] = None
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def describe_failure(error: Exception) -> str:
    """Failure message stored on the dataset, prefixed with its category."""
    if isinstance(error, StorageError):
        return f"Storage fetch failed: {error}"
    if isinstance(error, ParseError):
        return f"Parse error: {error}"
    if isinstance(error, UnsupportedFormatError):
        return f"Unsupported format: {error}"
    if isinstance(error, InferenceTimeoutError):
        return f"Timed out: {error}"
    return f"Unexpected error: {type(error).__name__}: {error}"


class IngestionJob:
    """
    Runs ingestion attempts for datasets.

    Holds no per-attempt state, so one instance serves every worker thread.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        storage: StorageAdapter,
        inferencer: Optional[SchemaInferencer] = None,
        timeout_seconds: Optional[float] = 300,
    ):
        self.repository = DatasetRepository(session_factory)
        self.storage = storage
        self.inferencer = inferencer or SchemaInferencer()
        self.timeout_seconds = timeout_seconds

    def run(
        self,
        dataset_id: UUID,
        uri: str,
        declared_format: str,
        expected_status: ProcessingStatus = ProcessingStatus.PENDING,
    ) -> JobOutcome:
        """
        Execute one ingestion attempt.

        Args:
            dataset_id: Dataset to ingest
            uri: Storage URI of the uploaded bytes
            declared_format: csv, json or excel
            expected_status: Status the dataset held when this attempt was
                requested (pending for uploads, the observed status for
                reprocess requests)

        Returns:
            JobOutcome describing the terminal status that was written

        Raises:
            ConflictError: If the dataset is already processing or no longer
                holds ``expected_status``. Nothing is modified in that case.
        """
        file_type = str(getattr(declared_format, "value", declared_format))
        set_dataset_id(str(dataset_id))

        attempt_id = self._claim(dataset_id, ProcessingStatus(expected_status), file_type)
        running = DatasetState(ProcessingStatus.PROCESSING, attempt_id=attempt_id)
        self.repository.record_event(
            dataset_id, "processing_started",
            detail={"expected_status": ProcessingStatus(expected_status).value,
                    "attempt_id": str(attempt_id)},
            request_id=get_request_id())

        started = time.perf_counter()
        deadline = time.monotonic() + self.timeout_seconds if self.timeout_seconds else None

        try:
            with closing(BytesIO(self.storage.fetch(uri))) as buffer:
                with PerformanceTracker(
                    "schema_inference", logger, file_type=file_type,
                    size_bytes=buffer.getbuffer().nbytes,
                ):
                    result = self.inferencer.infer(buffer.getvalue(), declared_format, deadline)
        except Exception as e:
            error_message = describe_failure(e)
            logger.warning(f"Ingestion of dataset {dataset_id} failed: {error_message}")
            transition = mark_failed(running, error_message)
            return self._finish(dataset_id, transition, file_type, started)

        columns = [column.to_dict() for column in result.columns]
        transition = mark_completed(running, columns, result.row_count)
        return self._finish(dataset_id, transition, file_type, started)

    def _claim(self, dataset_id: UUID, expected_status: ProcessingStatus, file_type: str) -> UUID:
        dataset = self.repository.find_by_id(dataset_id)
        if dataset is None:
            ingestion_jobs_total.labels(file_type=file_type, status="conflict").inc()
            raise ConflictError(f"Dataset {dataset_id} no longer exists")

        if dataset.processing_status == ProcessingStatus.PROCESSING.value:
            ingestion_jobs_total.labels(file_type=file_type, status="conflict").inc()
            raise ConflictError(f"Dataset {dataset_id} is already being processed")

        transition = start_processing(DatasetState(expected_status))
        if not self.repository.apply_transition(dataset_id, transition):
            ingestion_jobs_total.labels(file_type=file_type, status="conflict").inc()
            raise ConflictError(
                f"Dataset {dataset_id} is no longer '{expected_status.value}'")

        attempt_id = transition.new_state.attempt_id
        logger.info(f"Dataset {dataset_id} claimed for processing by attempt {attempt_id}")
        return attempt_id

    def _finish(
        self,
        dataset_id: UUID,
        transition: StatusTransition,
        file_type: str,
        started: float,
    ) -> JobOutcome:
        state = transition.new_state
        duration_ms = (time.perf_counter() - started) * 1000
        outcome = JobOutcome(
            dataset_id=str(dataset_id),
            status=state.status.value,
            row_count=state.row_count,
            column_count=len(state.columns or []),
            error_message=state.error_message,
            duration_ms=round(duration_ms, 2),
        )

        try:
            written = self.repository.apply_transition(dataset_id, transition)
        except Exception as e:
            logger.error(
                f"Failed to record '{state.status.value}' for dataset {dataset_id}: {e}",
                exc_info=True)
            return outcome

        if not written:
            # Swept, deleted or re-claimed by a newer attempt while this one ran
            logger.warning(
                f"Dataset {dataset_id} no longer belongs to this attempt; "
                f"'{state.status.value}' result discarded")
            outcome.status = "superseded"
            return outcome

        ingestion_jobs_total.labels(file_type=file_type, status=state.status.value).inc()
        ingestion_duration_seconds.labels(file_type=file_type).observe(duration_ms / 1000)

        succeeded = state.status == ProcessingStatus.COMPLETED
        self.repository.record_event(
            dataset_id,
            "processing_completed" if succeeded else "processing_failed",
            success=succeeded,
            error_message=state.error_message,
            detail={"row_count": outcome.row_count, "column_count": outcome.column_count,
                    "duration_ms": outcome.duration_ms},
            request_id=get_request_id(),
        )
        logger.info(
            f"Dataset {dataset_id} {state.status.value} "
            f"({outcome.row_count} rows, {outcome.column_count} columns) in {duration_ms:.1f}ms")
        return outcome
