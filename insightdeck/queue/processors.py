"""
Job processors for different job types.

Adapters that let queued messages drive the ingestion job.
"""

import logging
from typing import Any, Dict
from uuid import UUID

from insightdeck.catalog.repository import ConflictError
from insightdeck.catalog.state import ProcessingStatus
from insightdeck.ingest.job import IngestionJob
from insightdeck.queue.supervisor import JobProcessor

logger = logging.getLogger(__name__)

INGEST_JOB_TYPE = "ingest"


class IngestionJobProcessor(JobProcessor):
    """
    Ingestion job processor adapter.

    A conflicting attempt (dataset already processing, or changed since the
    attempt was requested) is dropped rather than failed: the dataset is
    owned by whichever attempt won.
    """

    def __init__(self, job: IngestionJob):
        self.job = job

    def process(self, job_data: dict) -> Dict[str, Any]:
        """
        Process an ingestion job.

        Args:
            job_data: Job payload containing:
                - dataset_id: Dataset UUID string
                - uri: Storage URI of the uploaded file
                - file_type: csv, json or excel
                - expected_status: Status the dataset held when enqueued
                - request_id: Request identifier

        Returns:
            Dictionary with processing results
        """
        dataset_id = job_data.get("dataset_id")
        uri = job_data.get("uri")
        if not dataset_id or not uri:
            raise ValueError("Ingestion job requires dataset_id and uri")

        expected_status = ProcessingStatus(
            job_data.get("expected_status", ProcessingStatus.PENDING.value))

        try:
            outcome = self.job.run(
                UUID(dataset_id), uri, job_data.get("file_type"), expected_status)
        except ConflictError as e:
            logger.info(f"Skipping ingestion attempt for dataset {dataset_id}: {e}")
            return {"success": False, "skipped": True, "reason": str(e)}

        return {"success": outcome.status == ProcessingStatus.COMPLETED.value,
                **outcome.to_dict()}
