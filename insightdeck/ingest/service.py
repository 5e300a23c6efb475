"""
Read-side and maintenance operations on ingested datasets.

Status queries, listings, previews, stats, the projection handed to the
insight generator, metadata edits, duplication, deletion, and the operator
sweep for stuck attempts.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from insightdeck.catalog.database import SessionLocal
from insightdeck.catalog.models import Dataset
from insightdeck.catalog.repository import DatasetRepository
from insightdeck.catalog.state import DatasetState, ProcessingStatus, mark_timed_out
from insightdeck.config.settings import get_settings
from insightdeck.ingest.parsers import get_parser
from insightdeck.ingest.validator import format_bytes
from insightdeck.storage.adapter import StorageAdapter, StorageError
from insightdeck.storage.factory import get_storage_adapter

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 500
COPY_SUFFIX = " (Copy)"


def normalize_tags(tags: Optional[List[str]]) -> List[str]:
    """Trim and lowercase tags, dropping blanks and duplicates."""
    normalized: List[str] = []
    for tag in tags or []:
        tag = tag.strip().lower()
        if tag and tag not in normalized:
            normalized.append(tag)
    return normalized


class DatasetNotFoundError(Exception):
    """Raised when a dataset id does not exist."""
    pass


class PreconditionError(Exception):
    """Raised when a dataset is not in the status an operation needs."""
    pass


class InvalidMetadataError(ValueError):
    """Raised when an edit would leave a dataset with invalid metadata."""
    pass


class DatasetService:
    """Queries and maintenance for dataset records."""

    def __init__(
        self,
        repository: Optional[DatasetRepository] = None,
        storage: Optional[StorageAdapter] = None,
    ):
        self.settings = get_settings()
        self.repository = repository or DatasetRepository(SessionLocal)
        self.storage = storage or get_storage_adapter()

    def get_dataset(self, dataset_id: UUID) -> Dataset:
        dataset = self.repository.find_by_id(dataset_id)
        if dataset is None:
            raise DatasetNotFoundError(f"Dataset {dataset_id} not found")
        return dataset

    def get_status(self, dataset_id: UUID) -> Dict[str, Any]:
        """Current processing status of a dataset."""
        dataset = self.get_dataset(dataset_id)
        return {
            "processing_status": dataset.processing_status,
            "error_message": dataset.error_message,
            "last_modified": dataset.last_modified,
        }

    def list_datasets(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> Tuple[List[Dataset], int]:
        return self.repository.list_datasets(page=page, limit=limit, status=status, owner=owner)

    def delete_dataset(self, dataset_id: UUID) -> None:
        """
        Delete a dataset record and its stored file.

        A missing file does not block deleting the record.
        """
        dataset = self.get_dataset(dataset_id)
        try:
            self.storage.remove(dataset.uri)
        except StorageError as e:
            logger.warning(f"Could not remove stored file for dataset {dataset_id}: {e}")

        if not self.repository.delete(dataset_id):
            raise DatasetNotFoundError(f"Dataset {dataset_id} not found")
        logger.info(f"Deleted dataset {dataset_id}")

    def update_dataset(
        self,
        dataset_id: UUID,
        name: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
        is_public: Optional[bool] = None,
    ) -> Dataset:
        """
        Edit the descriptive fields of a dataset.

        Arguments left as None are unchanged; an empty ``description``
        clears it. Processing status, schema and the stored file are never
        touched, so edits are allowed in any status.

        Raises:
            DatasetNotFoundError: Unknown dataset
            InvalidMetadataError: Blank or over-long name, over-long description
        """
        changes: Dict[str, Any] = {}
        if name is not None:
            name = name.strip()
            if not name:
                raise InvalidMetadataError("Dataset name cannot be empty")
            if len(name) > MAX_NAME_LENGTH:
                raise InvalidMetadataError(
                    f"Dataset name cannot exceed {MAX_NAME_LENGTH} characters")
            changes["name"] = name
        if description is not None:
            if len(description) > MAX_DESCRIPTION_LENGTH:
                raise InvalidMetadataError(
                    f"Description cannot exceed {MAX_DESCRIPTION_LENGTH} characters")
            changes["description"] = description or None
        if tags is not None:
            changes["tags"] = normalize_tags(tags)
        if is_public is not None:
            changes["is_public"] = is_public

        if not self.repository.update_metadata(dataset_id, **changes):
            raise DatasetNotFoundError(f"Dataset {dataset_id} not found")
        logger.info(f"Updated dataset {dataset_id}: {', '.join(sorted(changes)) or 'no fields'}")
        return self.get_dataset(dataset_id)

    def duplicate_dataset(self, dataset_id: UUID) -> Dataset:
        """
        Copy a finished dataset into a new record named "<name> (Copy)".

        The copy gets its own stored file, so deleting either dataset leaves
        the other readable. Status, schema, row count and tags carry over;
        the copy starts out private.

        Raises:
            DatasetNotFoundError: Unknown dataset
            PreconditionError: Dataset is still pending or processing
            StorageError: Stored file could not be read or copied
        """
        source = self.get_dataset(dataset_id)
        if source.processing_status in (ProcessingStatus.PENDING.value,
                                        ProcessingStatus.PROCESSING.value):
            raise PreconditionError("Dataset must finish processing before it can be duplicated")

        uri = self.storage.store(self.storage.fetch(source.uri), source.file_name, metadata={
            "original_name": source.file_name,
            "content_type": source.content_type,
            "size_bytes": source.file_size,
            "duplicated_from": str(source.id),
        })

        try:
            copy_id = self.repository.create_dataset(
                owner=source.owner,
                name=source.name[:MAX_NAME_LENGTH - len(COPY_SUFFIX)] + COPY_SUFFIX,
                description=source.description,
                file_name=source.file_name,
                file_size=source.file_size,
                file_type=source.file_type,
                content_type=source.content_type,
                uri=uri,
                columns=source.columns,
                row_count=source.row_count,
                processing_status=source.processing_status,
                error_message=source.error_message,
                tags=list(source.tags or []),
            )
        except Exception:
            logger.error(f"Failed to record copy of dataset {dataset_id}, removing copied file")
            try:
                self.storage.remove(uri)
            except StorageError as cleanup_error:
                logger.error(f"Failed to remove orphaned copy {uri}: {cleanup_error}")
            raise

        self.repository.record_event(
            copy_id, "duplicated", detail={"source_id": str(dataset_id), "uri": uri})
        logger.info(f"Duplicated dataset {dataset_id} as {copy_id}")
        return self.get_dataset(copy_id)

    def _require_completed(self, dataset: Dataset, message: str) -> None:
        if dataset.processing_status != ProcessingStatus.COMPLETED.value:
            raise PreconditionError(message)

    def preview(self, dataset_id: UUID, limit: Optional[int] = None) -> Dict[str, Any]:
        """
        First rows of a completed dataset.

        The file is re-read from storage through the same parser used for
        ingestion, so rows split into the inferred columns; cells are shown
        as the file stores them.

        Args:
            dataset_id: Dataset to preview
            limit: Row count (default ``preview_default_limit``, capped at
                ``preview_max_limit``)

        Raises:
            DatasetNotFoundError: Unknown dataset
            PreconditionError: Dataset is not completed
            StorageError: Stored file cannot be read
        """
        dataset = self.get_dataset(dataset_id)
        self._require_completed(dataset, "Dataset is still being processed")

        if limit is None:
            limit = self.settings.preview_default_limit
        limit = max(1, min(limit, self.settings.preview_max_limit))

        data = self.storage.fetch(dataset.uri)
        result = get_parser(dataset.file_type).parse(data, limit=limit)

        return {
            "columns": dataset.columns or [],
            "rows": result.rows,
            "total_rows": dataset.row_count,
            "preview_rows": len(result.rows),
            "truncated": result.truncated,
            "file_type": dataset.file_type,
        }

    def stats(self, dataset_id: UUID) -> Dict[str, Any]:
        """Descriptive summary of a dataset."""
        dataset = self.get_dataset(dataset_id)
        columns = dataset.columns or []
        return {
            "basic": {
                "file_name": dataset.file_name,
                "file_size": dataset.file_size,
                "file_size_readable": format_bytes(dataset.file_size),
                "file_type": dataset.file_type,
                "row_count": dataset.row_count,
                "column_count": len(columns),
                "upload_date": dataset.upload_date,
                "processing_status": dataset.processing_status,
            },
            "columns": columns,
            "tags": dataset.tags or [],
        }

    def insight_context(self, dataset_id: UUID) -> Dict[str, Any]:
        """
        Dataset summary handed to the insight generator.

        Raises:
            PreconditionError: Dataset is not completed
        """
        dataset = self.get_dataset(dataset_id)
        self._require_completed(
            dataset, "Dataset must be fully processed before generating insights")
        return {
            "name": dataset.name,
            "file_type": dataset.file_type,
            "row_count": dataset.row_count,
            "columns": dataset.columns or [],
        }

    def download(self, dataset_id: UUID) -> Tuple[Dataset, bytes]:
        """Stored bytes of a dataset together with its record."""
        dataset = self.get_dataset(dataset_id)
        return dataset, self.storage.fetch(dataset.uri)

    def expire_stale(self, timeout_seconds: Optional[float] = None) -> List[str]:
        """
        Force datasets stuck in ``processing`` to ``failed``.

        Args:
            timeout_seconds: Age of the last status change after which an
                attempt counts as stuck (default ``job_timeout_seconds``)

        Returns:
            Ids of the datasets that were failed
        """
        if timeout_seconds is None:
            timeout_seconds = self.settings.job_timeout_seconds
        cutoff = datetime.utcnow() - timedelta(seconds=timeout_seconds)

        expired: List[str] = []
        for dataset in self.repository.find_stale_processing(cutoff):
            # Only the attempt that was seen stuck is failed; a newer claim survives
            transition = mark_timed_out(
                DatasetState(ProcessingStatus.PROCESSING, attempt_id=dataset.attempt_id),
                timeout_seconds)
            if not self.repository.apply_transition(dataset.id, transition):
                # Finished or re-claimed in the meantime
                continue

            self.repository.record_event(
                dataset.id, "timed_out", success=False,
                error_message=transition.new_state.error_message)
            expired.append(str(dataset.id))

        if expired:
            logger.warning(f"Expired {len(expired)} stale processing dataset(s)")
        return expired
