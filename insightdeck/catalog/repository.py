"""
Dataset record store.

All status changes go through ``update_status``, a single conditional
UPDATE guarded by the status the caller expects the record to hold. Two
writers racing on the same record can therefore never both succeed.
"""

import logging
import time
from datetime import datetime
from functools import wraps
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from insightdeck.catalog.models import Dataset, DatasetEvent
from insightdeck.catalog.state import ProcessingStatus, StatusTransition

logger = logging.getLogger(__name__)

# Performance monitoring threshold (milliseconds)
SLOW_QUERY_THRESHOLD_MS = 150

SessionFactory = Callable[[], Session]

# Columns a user may change after upload
EDITABLE_FIELDS = frozenset({"name", "description", "tags", "is_public"})


class ConflictError(Exception):
    """Raised when a dataset is not in the status an operation requires."""
    pass


def log_query_time(func: Callable) -> Callable:
    """Log query execution time and warn on slow queries."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        result = func(*args, **kwargs)
        duration_ms = (time.perf_counter() - start) * 1000

        logger.debug(f"Query {func.__name__} took {duration_ms:.2f}ms")

        if duration_ms > SLOW_QUERY_THRESHOLD_MS:
            logger.warning(
                f"SLOW QUERY: {func.__name__} exceeded {SLOW_QUERY_THRESHOLD_MS}ms target "
                f"(took {duration_ms:.2f}ms)"
            )

        return result
    return wrapper


def _status_value(status: Any) -> str:
    return status.value if isinstance(status, ProcessingStatus) else str(status)


class DatasetRepository:
    """
    Persistence operations for dataset records.

    Every method opens and commits its own session, so one instance is safe
    to share between the API and worker threads.
    """

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    @log_query_time
    def create_dataset(self, **fields: Any) -> UUID:
        """
        Insert a new dataset record in ``pending`` status.

        Returns:
            The new dataset id
        """
        fields.setdefault("processing_status", ProcessingStatus.PENDING.value)
        with self.session_factory() as session:
            dataset = Dataset(**fields)
            session.add(dataset)
            session.commit()
            return dataset.id

    def find_by_id(self, dataset_id: UUID) -> Optional[Dataset]:
        with self.session_factory() as session:
            return session.get(Dataset, dataset_id)

    @log_query_time
    def update_status(
        self,
        dataset_id: UUID,
        expected_status: Any,
        expected_attempt: Optional[UUID] = None,
        **fields: Any,
    ) -> bool:
        """
        Conditionally update a dataset.

        Args:
            dataset_id: Dataset to update
            expected_status: Status the record must currently hold
            expected_attempt: If given, the ``attempt_id`` the record must
                currently hold
            **fields: Column values to write

        Returns:
            True if the record matched both guards and was updated
        """
        if "processing_status" in fields:
            fields["processing_status"] = _status_value(fields["processing_status"])
        fields.setdefault("updated_at", datetime.utcnow())

        conditions = [
            Dataset.id == dataset_id,
            Dataset.processing_status == _status_value(expected_status),
        ]
        if expected_attempt is not None:
            conditions.append(Dataset.attempt_id == expected_attempt)

        stmt = (
            update(Dataset)
            .where(*conditions)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )

        with self.session_factory() as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    @log_query_time
    def update_metadata(self, dataset_id: UUID, **fields: Any) -> bool:
        """
        Write descriptive fields and bump ``last_modified``.

        Only ``EDITABLE_FIELDS`` are accepted, so an edit can never race an
        ingestion attempt for the status columns.

        Returns:
            False if the dataset does not exist
        """
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not editable: {', '.join(sorted(unknown))}")

        now = datetime.utcnow()
        stmt = (
            update(Dataset)
            .where(Dataset.id == dataset_id)
            .values(**fields, last_modified=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        with self.session_factory() as session:
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    def apply_transition(self, dataset_id: UUID, transition: StatusTransition) -> bool:
        """Write a state machine transition under both of its guards."""
        return self.update_status(
            dataset_id,
            transition.expected_status,
            expected_attempt=transition.expected_attempt,
            **transition.update_fields(),
        )

    @log_query_time
    def list_datasets(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> Tuple[List[Dataset], int]:
        """
        Page through datasets, newest first.

        Returns:
            (datasets on the page, total matching datasets)
        """
        conditions = []
        if status:
            conditions.append(Dataset.processing_status == _status_value(status))
        if owner:
            conditions.append(Dataset.owner == owner)

        query = select(Dataset).where(*conditions).order_by(Dataset.created_at.desc())
        count_query = select(func.count()).select_from(Dataset).where(*conditions)

        with self.session_factory() as session:
            total = session.execute(count_query).scalar_one()
            datasets = session.execute(
                query.offset((page - 1) * limit).limit(limit)
            ).scalars().all()
            return list(datasets), total

    def delete(self, dataset_id: UUID) -> bool:
        """Delete a dataset and its events. Returns False if it did not exist."""
        with self.session_factory() as session:
            dataset = session.get(Dataset, dataset_id)
            if dataset is None:
                return False
            session.delete(dataset)
            session.commit()
            return True

    def find_stale_processing(self, older_than: datetime) -> List[Dataset]:
        """Datasets still ``processing`` whose last change is before ``older_than``."""
        query = select(Dataset).where(
            Dataset.processing_status == ProcessingStatus.PROCESSING.value,
            Dataset.last_modified < older_than,
        )
        with self.session_factory() as session:
            return list(session.execute(query).scalars().all())

    def record_event(
        self,
        dataset_id: UUID,
        stage: str,
        success: bool = True,
        error_message: Optional[str] = None,
        detail: Optional[Dict[str, Any]] = None,
        request_id: Optional[str] = None,
    ) -> None:
        """
        Append an audit event for a dataset.

        Audit writes never fail the caller; errors are logged.
        """
        try:
            with self.session_factory() as session:
                session.add(DatasetEvent(
                    dataset_id=dataset_id,
                    stage=stage,
                    success=success,
                    error_message=error_message,
                    detail=detail,
                    request_id=request_id,
                ))
                session.commit()
        except Exception as e:
            logger.error(f"Failed to record '{stage}' event for dataset {dataset_id}: {e}")

    def list_events(self, dataset_id: UUID) -> List[DatasetEvent]:
        query = (
            select(DatasetEvent)
            .where(DatasetEvent.dataset_id == dataset_id)
            .order_by(DatasetEvent.created_at)
        )
        with self.session_factory() as session:
            return list(session.execute(query).scalars().all())
