"""
Integration tests for ingestion attempts against a real catalog and storage.
"""

import json
import threading
import time
from uuid import uuid4

import pytest

from insightdeck.catalog.repository import ConflictError
from insightdeck.catalog.state import ProcessingStatus
from insightdeck.ingest.job import IngestionJob
from insightdeck.ingest.service import (
    DatasetNotFoundError,
    DatasetService,
    InvalidMetadataError,
    PreconditionError,
)
from insightdeck.queue.processors import IngestionJobProcessor

pytestmark = pytest.mark.integration

SIGNUP_COLUMNS = [
    {"name": "name", "type": "string", "nullable": False},
    {"name": "age", "type": "integer", "nullable": True},
    {"name": "signup_date", "type": "date", "nullable": True},
]


class BlockingStorage:
    """Storage wrapper whose fetch waits until released."""

    def __init__(self, inner):
        self.inner = inner
        self.fetching = threading.Event()
        self.release = threading.Event()

    def fetch(self, uri):
        self.fetching.set()
        assert self.release.wait(10), "fetch was never released"
        return self.inner.fetch(uri)


@pytest.fixture
def job(session_factory, storage):
    return IngestionJob(session_factory, storage, timeout_seconds=30)


@pytest.fixture
def service(repository, storage):
    return DatasetService(repository=repository, storage=storage)


def _stages(repository, dataset_id):
    return [event.stage for event in repository.list_events(dataset_id)]


class TestSuccessfulIngestion:
    """Ingestion attempts that reach completed."""

    def test_csv_end_to_end(self, job, repository, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv)

        outcome = job.run(dataset_id, uri, "csv")

        assert outcome.status == "completed"
        dataset = repository.find_by_id(dataset_id)
        assert dataset.processing_status == "completed"
        assert dataset.columns == SIGNUP_COLUMNS
        assert dataset.row_count == 3
        assert dataset.error_message is None
        assert _stages(repository, dataset_id) == ["processing_started", "processing_completed"]

    def test_json_end_to_end(self, job, repository, create_dataset):
        data = json.dumps({"data": [{"id": 1, "ok": True}, {"id": 2}]}).encode()
        dataset_id, uri = create_dataset(data, "rows.json", "json")

        job.run(dataset_id, uri, "json")

        dataset = repository.find_by_id(dataset_id)
        assert dataset.columns == [
            {"name": "id", "type": "integer", "nullable": False},
            {"name": "ok", "type": "boolean", "nullable": True},
        ]
        assert dataset.row_count == 2

    def test_excel_end_to_end(self, job, repository, create_dataset, make_xlsx):
        data = make_xlsx([("city", "population"), ("Oslo", 700000), ("Bergen", 285000)])
        dataset_id, uri = create_dataset(data, "cities.xlsx", "excel")

        job.run(dataset_id, uri, "excel")

        dataset = repository.find_by_id(dataset_id)
        assert dataset.processing_status == "completed"
        assert [c["type"] for c in dataset.columns] == ["string", "integer"]

    def test_processor_adapter(self, job, repository, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv)

        result = IngestionJobProcessor(job).process({
            "dataset_id": str(dataset_id),
            "uri": uri,
            "file_type": "csv",
            "expected_status": "pending",
        })

        assert result["success"] is True
        assert result["row_count"] == 3


class TestFailedIngestion:
    """Ingestion attempts that end in failed."""

    def test_storage_fetch_failure(self, job, repository, storage, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv)
        storage.remove(uri)

        outcome = job.run(dataset_id, uri, "csv")

        assert outcome.status == "failed"
        dataset = repository.find_by_id(dataset_id)
        assert dataset.processing_status == "failed"
        assert dataset.error_message.startswith("Storage fetch failed")
        assert _stages(repository, dataset_id) == ["processing_started", "processing_failed"]

    def test_parse_error(self, job, repository, create_dataset):
        dataset_id, uri = create_dataset(b'[{"a": 1', "broken.json", "json")

        job.run(dataset_id, uri, "json")

        dataset = repository.find_by_id(dataset_id)
        assert dataset.processing_status == "failed"
        assert dataset.error_message.startswith("Parse error")

    def test_unsupported_format(self, job, repository, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv)

        job.run(dataset_id, uri, "parquet")

        dataset = repository.find_by_id(dataset_id)
        assert dataset.processing_status == "failed"
        assert dataset.error_message.startswith("Unsupported format")

    def test_deadline(self, session_factory, storage, repository, create_dataset):
        lines = ["id"] + [str(i) for i in range(2500)]
        dataset_id, uri = create_dataset(("\n".join(lines) + "\n").encode())
        job = IngestionJob(session_factory, storage, timeout_seconds=1e-9)

        job.run(dataset_id, uri, "csv")

        dataset = repository.find_by_id(dataset_id)
        assert dataset.processing_status == "failed"
        assert dataset.error_message.startswith("Timed out")

    def test_failed_attempt_keeps_no_partial_schema(self, job, repository, create_dataset):
        dataset_id, uri = create_dataset(b"not json at all", "x.json", "json")

        job.run(dataset_id, uri, "json")

        dataset = repository.find_by_id(dataset_id)
        assert dataset.columns is None
        assert dataset.row_count == 0


class TestSingleFlight:
    """At most one attempt per dataset runs at a time."""

    def test_second_attempt_conflicts_while_first_runs(
            self, session_factory, storage, repository, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv)
        blocking = BlockingStorage(storage)
        first = IngestionJob(session_factory, blocking, timeout_seconds=30)
        second = IngestionJob(session_factory, storage, timeout_seconds=30)

        outcomes = []
        worker = threading.Thread(target=lambda: outcomes.append(first.run(dataset_id, uri, "csv")))
        worker.start()
        try:
            assert blocking.fetching.wait(5)
            assert repository.find_by_id(dataset_id).processing_status == "processing"

            with pytest.raises(ConflictError):
                second.run(dataset_id, uri, "csv")
            with pytest.raises(ConflictError):
                second.run(dataset_id, uri, "csv", expected_status=ProcessingStatus.PROCESSING)
        finally:
            blocking.release.set()
            worker.join(10)

        assert outcomes[0].status == "completed"
        assert repository.find_by_id(dataset_id).processing_status == "completed"
        assert _stages(repository, dataset_id).count("processing_started") == 1

    def test_stale_expected_status_conflicts(self, job, repository, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv)
        job.run(dataset_id, uri, "csv")

        with pytest.raises(ConflictError):
            job.run(dataset_id, uri, "csv", expected_status=ProcessingStatus.PENDING)

        dataset = repository.find_by_id(dataset_id)
        assert dataset.processing_status == "completed"
        assert dataset.columns == SIGNUP_COLUMNS

    def test_missing_dataset_conflicts(self, job):
        with pytest.raises(ConflictError):
            job.run(uuid4(), "fs://uploads/nothing.csv", "csv")

    def test_processor_skips_conflicts(self, job, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv)
        job.run(dataset_id, uri, "csv")

        result = IngestionJobProcessor(job).process({
            "dataset_id": str(dataset_id), "uri": uri, "file_type": "csv",
            "expected_status": "pending"})

        assert result["success"] is False
        assert result["skipped"] is True


class TestReprocess:
    """New attempts on datasets that already reached a terminal status."""

    def test_reprocess_completed(self, job, repository, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv)
        job.run(dataset_id, uri, "csv")
        first_modified = repository.find_by_id(dataset_id).last_modified

        outcome = job.run(dataset_id, uri, "csv", expected_status=ProcessingStatus.COMPLETED)

        dataset = repository.find_by_id(dataset_id)
        assert outcome.status == "completed"
        assert dataset.columns == SIGNUP_COLUMNS
        assert dataset.last_modified >= first_modified
        assert _stages(repository, dataset_id) == [
            "processing_started", "processing_completed",
            "processing_started", "processing_completed",
        ]

    def test_reprocess_failed(self, job, repository, create_dataset):
        dataset_id, uri = create_dataset(b"[1", "x.json", "json")
        job.run(dataset_id, uri, "json")
        assert repository.find_by_id(dataset_id).processing_status == "failed"

        job.run(dataset_id, uri, "json", expected_status=ProcessingStatus.FAILED)

        dataset = repository.find_by_id(dataset_id)
        assert dataset.processing_status == "failed"
        assert dataset.error_message.startswith("Parse error")


class TestExpireStale:
    """Operator sweep of attempts stuck in processing."""

    def test_expire_stale_fails_stuck_datasets(self, repository, service, create_dataset, sample_csv):
        dataset_id, _ = create_dataset(sample_csv, processing_status="processing")
        time.sleep(0.01)

        expired = service.expire_stale(timeout_seconds=0)

        assert expired == [str(dataset_id)]
        dataset = repository.find_by_id(dataset_id)
        assert dataset.processing_status == "failed"
        assert "timed out" in dataset.error_message
        assert _stages(repository, dataset_id) == ["timed_out"]

    def test_expire_stale_leaves_recent_attempts(self, repository, service, create_dataset, sample_csv):
        dataset_id, _ = create_dataset(sample_csv, processing_status="processing")

        assert service.expire_stale(timeout_seconds=3600) == []
        assert repository.find_by_id(dataset_id).processing_status == "processing"

    def test_swept_attempt_result_is_discarded(
            self, session_factory, storage, repository, service, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv)
        blocking = BlockingStorage(storage)
        job = IngestionJob(session_factory, blocking, timeout_seconds=30)

        outcomes = []
        worker = threading.Thread(target=lambda: outcomes.append(job.run(dataset_id, uri, "csv")))
        worker.start()
        try:
            assert blocking.fetching.wait(5)
            time.sleep(0.01)
            assert service.expire_stale(timeout_seconds=0) == [str(dataset_id)]
        finally:
            blocking.release.set()
            worker.join(10)

        assert outcomes[0].status == "superseded"
        dataset = repository.find_by_id(dataset_id)
        assert dataset.processing_status == "failed"
        assert dataset.columns is None

    def test_late_result_cannot_overwrite_newer_attempt(
            self, session_factory, storage, repository, service, create_dataset, sample_csv):
        """A swept attempt that finishes after a reprocess claimed the dataset is dropped."""
        dataset_id, uri = create_dataset(sample_csv)
        stuck_storage = BlockingStorage(storage)
        newer_storage = BlockingStorage(storage)
        stuck = IngestionJob(session_factory, stuck_storage, timeout_seconds=30)
        newer = IngestionJob(session_factory, newer_storage, timeout_seconds=30)

        outcomes = {}
        stuck_thread = threading.Thread(
            target=lambda: outcomes.__setitem__("stuck", stuck.run(dataset_id, uri, "csv")))
        newer_thread = threading.Thread(
            target=lambda: outcomes.__setitem__("newer", newer.run(
                dataset_id, uri, "csv", expected_status=ProcessingStatus.FAILED)))

        stuck_thread.start()
        try:
            assert stuck_storage.fetching.wait(5)
            time.sleep(0.01)
            assert service.expire_stale(timeout_seconds=0) == [str(dataset_id)]

            newer_thread.start()
            assert newer_storage.fetching.wait(5)
            newer_attempt = repository.find_by_id(dataset_id).attempt_id

            stuck_storage.release.set()
            stuck_thread.join(10)

            assert outcomes["stuck"].status == "superseded"
            dataset = repository.find_by_id(dataset_id)
            assert dataset.processing_status == "processing"
            assert dataset.attempt_id == newer_attempt
        finally:
            stuck_storage.release.set()
            newer_storage.release.set()
            stuck_thread.join(10)
            if newer_thread.is_alive():
                newer_thread.join(10)

        assert outcomes["newer"].status == "completed"
        dataset = repository.find_by_id(dataset_id)
        assert dataset.processing_status == "completed"
        assert dataset.columns == SIGNUP_COLUMNS


class TestReadSide:
    """Service operations that depend on processing status."""

    def test_preview_requires_completed(self, service, create_dataset, sample_csv):
        dataset_id, _ = create_dataset(sample_csv)
        with pytest.raises(PreconditionError, match="still being processed"):
            service.preview(dataset_id)

    def test_insight_context_requires_completed(self, service, create_dataset, sample_csv):
        dataset_id, _ = create_dataset(sample_csv)
        with pytest.raises(PreconditionError, match="fully processed"):
            service.insight_context(dataset_id)

    def test_completed_dataset_views(self, job, service, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv, name="signups")
        job.run(dataset_id, uri, "csv")

        preview = service.preview(dataset_id, limit=2)
        assert preview["rows"] == [
            {"name": "Alice", "age": "30", "signup_date": "2023-01-01"},
            {"name": "Bob", "age": "", "signup_date": "2023-02-15"},
        ]
        assert preview["total_rows"] == 3
        assert preview["truncated"] is True

        context = service.insight_context(dataset_id)
        assert context == {
            "name": "signups", "file_type": "csv", "row_count": 3, "columns": SIGNUP_COLUMNS}

        stats = service.stats(dataset_id)
        assert stats["basic"]["column_count"] == 3
        assert stats["basic"]["file_size"] == len(sample_csv)

    def test_delete_removes_record_and_file(self, service, repository, storage, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv)

        service.delete_dataset(dataset_id)

        assert repository.find_by_id(dataset_id) is None
        assert not storage.exists(uri)


class TestMetadataEdits:
    """Editing and duplicating dataset records."""

    def test_update_leaves_processing_state_alone(
            self, job, service, repository, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv, name="signups")
        job.run(dataset_id, uri, "csv")
        before = repository.find_by_id(dataset_id)

        updated = service.update_dataset(
            dataset_id, name="  Weekly signups ", tags=["Growth", "growth", " ops "],
            is_public=True)

        assert updated.name == "Weekly signups"
        assert updated.tags == ["growth", "ops"]
        assert updated.is_public is True
        assert updated.processing_status == "completed"
        assert updated.columns == SIGNUP_COLUMNS
        assert updated.attempt_id == before.attempt_id
        assert updated.last_modified >= before.last_modified

    def test_update_while_processing_does_not_block_the_attempt(
            self, session_factory, storage, service, repository, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv)
        blocking = BlockingStorage(storage)
        running = IngestionJob(session_factory, blocking, timeout_seconds=30)

        outcomes = []
        worker = threading.Thread(target=lambda: outcomes.append(running.run(dataset_id, uri, "csv")))
        worker.start()
        try:
            assert blocking.fetching.wait(5)
            service.update_dataset(dataset_id, description="edited mid-run")
        finally:
            blocking.release.set()
            worker.join(10)

        assert outcomes[0].status == "completed"
        dataset = repository.find_by_id(dataset_id)
        assert dataset.processing_status == "completed"
        assert dataset.description == "edited mid-run"

    def test_update_partial_and_clear_description(self, service, create_dataset, sample_csv):
        dataset_id, _ = create_dataset(sample_csv, name="keep", description="old", tags=["a"])

        updated = service.update_dataset(dataset_id, description="")

        assert updated.name == "keep"
        assert updated.description is None
        assert updated.tags == ["a"]

    @pytest.mark.parametrize("changes", [
        {"name": "   "},
        {"name": "x" * 101},
        {"description": "d" * 501},
    ])
    def test_update_rejects_invalid_metadata(self, service, create_dataset, sample_csv, changes):
        dataset_id, _ = create_dataset(sample_csv)
        with pytest.raises(InvalidMetadataError):
            service.update_dataset(dataset_id, **changes)

    def test_update_missing_dataset(self, service):
        with pytest.raises(DatasetNotFoundError):
            service.update_dataset(uuid4(), name="ghost")

    def test_duplicate_copies_record_and_file(
            self, job, service, repository, storage, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv, name="signups", tags=["growth"], is_public=True)
        job.run(dataset_id, uri, "csv")

        copy = service.duplicate_dataset(dataset_id)

        assert copy.id != dataset_id
        assert copy.name == "signups (Copy)"
        assert copy.processing_status == "completed"
        assert copy.columns == SIGNUP_COLUMNS
        assert copy.row_count == 3
        assert copy.tags == ["growth"]
        assert copy.is_public is False
        assert copy.uri != uri
        assert _stages(repository, copy.id) == ["duplicated"]

        service.delete_dataset(dataset_id)
        assert storage.fetch(copy.uri) == sample_csv

    def test_duplicate_name_stays_within_limit(self, job, service, create_dataset, sample_csv):
        dataset_id, uri = create_dataset(sample_csv, name="n" * 100)
        job.run(dataset_id, uri, "csv")

        copy = service.duplicate_dataset(dataset_id)

        assert len(copy.name) == 100
        assert copy.name.endswith(" (Copy)")

    def test_duplicate_requires_finished_dataset(self, service, create_dataset, sample_csv):
        dataset_id, _ = create_dataset(sample_csv)
        with pytest.raises(PreconditionError, match="finish processing"):
            service.duplicate_dataset(dataset_id)
