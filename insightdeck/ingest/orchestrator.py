"""Ingestion orchestrator: upload admission and reprocess requests."""

import logging
import os
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from insightdeck.catalog.database import SessionLocal
from insightdeck.catalog.models import Dataset
from insightdeck.catalog.repository import ConflictError, DatasetRepository
from insightdeck.catalog.state import ProcessingStatus
from insightdeck.common.logging_config import get_request_id
from insightdeck.common.metrics import queue_depth, track_upload_time, uploads_total
from insightdeck.config.settings import get_settings
from insightdeck.ingest.parsers import DataFormat
from insightdeck.ingest.service import (
    MAX_DESCRIPTION_LENGTH,
    MAX_NAME_LENGTH,
    DatasetNotFoundError,
    normalize_tags,
)
from insightdeck.ingest.validator import AdmissionError, EXTENSION_FORMATS, UploadGate
from insightdeck.queue.interface import QueueBackend, QueueMessage
from insightdeck.queue.manager import get_queue_backend
from insightdeck.queue.processors import INGEST_JOB_TYPE
from insightdeck.storage.adapter import StorageAdapter
from insightdeck.storage.factory import get_storage_adapter

logger = logging.getLogger(__name__)


class IngestionOrchestrator:
    """Orchestrates the ingestion process."""

    def __init__(
        self,
        repository: Optional[DatasetRepository] = None,
        storage: Optional[StorageAdapter] = None,
        queue: Optional[QueueBackend] = None,
        gate: Optional[UploadGate] = None,
    ):
        settings = get_settings()
        self.repository = repository or DatasetRepository(SessionLocal)
        self.storage = storage or get_storage_adapter()
        self.queue = queue or get_queue_backend()
        self.gate = gate or UploadGate(max_upload_bytes=settings.max_upload_bytes)

    def validate(self, filename: Optional[str], content_type: Optional[str], size: int) -> Dict[str, Any]:
        """Run admission checks only; nothing is stored."""
        try:
            data_format = self.gate.admit(filename, content_type, size)
        except AdmissionError as e:
            return {"valid": False, "rule": e.rule, "message": e.message, "file_type": None}
        return {"valid": True, "rule": None, "message": None, "file_type": data_format.value}

    def admit(self, filename: Optional[str], content_type: Optional[str], size: int) -> DataFormat:
        """
        Run admission checks, counting and logging rejections.

        Lets the HTTP layer turn away an oversized upload before reading it.
        """
        try:
            return self.gate.admit(filename, content_type, size)
        except AdmissionError as e:
            extension = os.path.splitext(filename or "")[1].lower()
            file_type = EXTENSION_FORMATS[extension].value if extension in EXTENSION_FORMATS else "unknown"
            uploads_total.labels(file_type=file_type, status="rejected").inc()
            logger.info(f"Rejected upload '{filename}' ({e.rule}): {e.message}")
            raise

    @track_upload_time
    def upload(
        self,
        data: bytes,
        filename: str,
        content_type: Optional[str],
        name: Optional[str] = None,
        description: Optional[str] = None,
        owner: Optional[str] = None,
        tags: Optional[List[str]] = None,
        is_public: bool = False,
    ) -> Dataset:
        """
        Admit an upload, store it, create its pending record and queue ingestion.

        Returns:
            The new dataset in ``pending`` status

        Raises:
            AdmissionError: Upload rejected; nothing was stored or recorded
            StorageError: Bytes could not be stored; nothing was recorded
        """
        data_format = self.admit(filename, content_type, len(data))

        request_id = get_request_id() or str(uuid4())
        uri = self.storage.store(data, filename, metadata={
            "original_name": filename,
            "content_type": content_type,
            "size_bytes": len(data),
            "request_id": request_id,
        })

        try:
            dataset_id = self.repository.create_dataset(
                owner=owner,
                name=(name or os.path.splitext(filename)[0] or filename)[:MAX_NAME_LENGTH],
                description=description[:MAX_DESCRIPTION_LENGTH] if description else None,
                file_name=filename,
                file_size=len(data),
                file_type=data_format.value,
                content_type=content_type,
                uri=uri,
                tags=normalize_tags(tags),
                is_public=is_public,
            )
        except Exception:
            logger.error(f"Failed to create dataset record for '{filename}', removing stored file")
            try:
                self.storage.remove(uri)
            except Exception as cleanup_error:
                logger.error(f"Failed to remove orphaned upload {uri}: {cleanup_error}")
            raise

        self.repository.record_event(
            dataset_id, "upload",
            detail={"file_name": filename, "file_size": len(data), "uri": uri},
            request_id=request_id)

        # Read before enqueueing; a worker may claim it immediately after
        dataset = self.repository.find_by_id(dataset_id)
        self._enqueue(dataset_id, uri, data_format, ProcessingStatus.PENDING, request_id)
        uploads_total.labels(file_type=data_format.value, status="admitted").inc()
        logger.info(f"Accepted upload '{filename}' as dataset {dataset_id}")

        return dataset

    def reprocess(self, dataset_id: UUID) -> Dataset:
        """
        Queue a new ingestion attempt for an existing dataset.

        Raises:
            DatasetNotFoundError: Unknown dataset
            ConflictError: Dataset is currently processing
        """
        dataset = self.repository.find_by_id(dataset_id)
        if dataset is None:
            raise DatasetNotFoundError(f"Dataset {dataset_id} not found")
        if dataset.processing_status == ProcessingStatus.PROCESSING.value:
            raise ConflictError(f"Dataset {dataset_id} is already being processed")

        request_id = get_request_id() or str(uuid4())
        observed = ProcessingStatus(dataset.processing_status)
        self.repository.record_event(
            dataset_id, "reprocess_requested",
            detail={"observed_status": observed.value}, request_id=request_id)
        self._enqueue(dataset_id, dataset.uri, DataFormat(dataset.file_type), observed, request_id)
        logger.info(f"Queued reprocess of dataset {dataset_id} (was {observed.value})")
        return dataset

    def _enqueue(
        self,
        dataset_id: UUID,
        uri: str,
        data_format: DataFormat,
        expected_status: ProcessingStatus,
        request_id: str,
    ) -> None:
        self.queue.enqueue(QueueMessage(
            job_type=INGEST_JOB_TYPE,
            job_data={
                "dataset_id": str(dataset_id),
                "uri": uri,
                "file_type": data_format.value,
                "expected_status": expected_status.value,
                "request_id": request_id,
            },
        ))
        queue_depth.set(self.queue.size())
