"""
Unit tests for structured logging.
"""

import json
import logging

import pytest

from insightdeck.common.logging_config import (
    PerformanceTracker,
    StructuredFormatter,
    clear_request_id,
    get_request_id,
    set_dataset_id,
    set_request_id,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord("insightdeck.test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def reset_context():
    yield
    clear_request_id()
    set_dataset_id(None)


class TestStructuredFormatter:
    """Tests for the JSON log formatter."""

    def test_standard_fields(self):
        payload = json.loads(StructuredFormatter().format(_record()))

        assert payload["message"] == "hello"
        assert payload["level"] == "INFO"
        assert payload["logger"] == "insightdeck.test"
        assert "timestamp" in payload
        assert "request_id" not in payload

    def test_context_ids_are_included(self):
        set_request_id("req-1")
        set_dataset_id("ds-9")

        payload = json.loads(StructuredFormatter().format(_record()))

        assert payload["request_id"] == "req-1"
        assert payload["dataset_id"] == "ds-9"

    def test_extra_fields_are_merged(self):
        record = _record(extra_fields={"row_count": 3, "file_type": "csv"})
        payload = json.loads(StructuredFormatter().format(record))

        assert payload["row_count"] == 3
        assert payload["file_type"] == "csv"


class TestRequestId:
    """Tests for request ID context helpers."""

    def test_generated_when_missing(self):
        request_id = set_request_id()
        assert request_id
        assert get_request_id() == request_id

    def test_clear(self):
        set_request_id("abc")
        clear_request_id()
        assert get_request_id() is None


class TestPerformanceTracker:
    """Tests for PerformanceTracker."""

    def test_logs_completion(self, caplog):
        logger = logging.getLogger("insightdeck.test.perf")
        with caplog.at_level(logging.INFO, logger="insightdeck.test.perf"):
            with PerformanceTracker("schema_inference", logger, file_type="csv") as tracker:
                pass

        assert tracker.duration_ms is not None
        record = caplog.records[-1]
        assert record.getMessage() == "schema_inference finished"
        assert record.extra_fields["file_type"] == "csv"

    def test_logs_failure_and_propagates(self, caplog):
        logger = logging.getLogger("insightdeck.test.perf")
        with caplog.at_level(logging.INFO, logger="insightdeck.test.perf"):
            with pytest.raises(ValueError):
                with PerformanceTracker("schema_inference", logger):
                    raise ValueError("broken")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.extra_fields["error_type"] == "ValueError"
