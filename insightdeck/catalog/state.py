"""
Dataset processing status state machine.

Transitions are pure functions over a ``DatasetState`` snapshot. Each one
returns the status the record must still hold for the write to apply
(used as the guard of a conditional update) together with the new state.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional
from uuid import UUID, uuid4


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed from the current status."""

    def __init__(self, current: ProcessingStatus, target: ProcessingStatus):
        super().__init__(
            f"Cannot move dataset from '{current.value}' to '{target.value}'")
        self.current = current
        self.target = target


@dataclass(frozen=True)
class DatasetState:
    """The mutable part of a dataset record, as one immutable snapshot."""
    status: ProcessingStatus
    columns: Optional[List[dict]] = None
    row_count: int = 0
    error_message: Optional[str] = None
    last_modified: Optional[datetime] = None
    # Token of the attempt that last claimed the record
    attempt_id: Optional[UUID] = None


@dataclass(frozen=True)
class StatusTransition:
    expected_status: ProcessingStatus
    new_state: DatasetState
    # Terminal writes also require the record to still belong to this attempt
    expected_attempt: Optional[UUID] = None

    def update_fields(self) -> dict:
        """Column values to write for this transition."""
        state = self.new_state
        fields: dict[str, Any] = {
            "processing_status": state.status.value,
            "error_message": state.error_message,
            "last_modified": state.last_modified,
        }
        if state.status == ProcessingStatus.PROCESSING:
            fields["attempt_id"] = state.attempt_id
        if state.status == ProcessingStatus.COMPLETED:
            fields["columns"] = state.columns
            fields["row_count"] = state.row_count
        return fields


def _now() -> datetime:
    return datetime.utcnow()


def start_processing(state: DatasetState) -> StatusTransition:
    """
    Begin an ingestion attempt.

    Allowed from pending, and from completed or failed when an explicit
    reprocess created the attempt. A dataset already processing is never
    started twice.

    Each start draws a fresh ``attempt_id``; only that attempt may later
    finish the record.
    """
    if state.status == ProcessingStatus.PROCESSING:
        raise InvalidTransitionError(state.status, ProcessingStatus.PROCESSING)

    return StatusTransition(
        expected_status=state.status,
        new_state=replace(
            state,
            status=ProcessingStatus.PROCESSING,
            error_message=None,
            last_modified=_now(),
            attempt_id=uuid4(),
        ),
    )


def mark_completed(state: DatasetState, columns: List[dict], row_count: int) -> StatusTransition:
    if state.status != ProcessingStatus.PROCESSING:
        raise InvalidTransitionError(state.status, ProcessingStatus.COMPLETED)

    return StatusTransition(
        expected_status=ProcessingStatus.PROCESSING,
        expected_attempt=state.attempt_id,
        new_state=replace(
            state,
            status=ProcessingStatus.COMPLETED,
            columns=columns,
            row_count=row_count,
            error_message=None,
            last_modified=_now(),
        ),
    )


def mark_failed(state: DatasetState, error_message: str) -> StatusTransition:
    if state.status != ProcessingStatus.PROCESSING:
        raise InvalidTransitionError(state.status, ProcessingStatus.FAILED)

    return StatusTransition(
        expected_status=ProcessingStatus.PROCESSING,
        expected_attempt=state.attempt_id,
        new_state=replace(
            state,
            status=ProcessingStatus.FAILED,
            error_message=error_message or "Processing failed",
            last_modified=_now(),
        ),
    )


def mark_timed_out(state: DatasetState, timeout_seconds: float) -> StatusTransition:
    """Operator-forced failure of an attempt that has been running too long."""
    return mark_failed(
        state,
        f"Processing timed out after {int(timeout_seconds)} seconds without completing",
    )
