"""
Tests for the core layer: settings, exceptions, cancellation and logging.
"""

import json
import logging
import sys

import pytest
from pydantic import ValidationError

from dvirsync.core.cancellation import CancellationToken
from dvirsync.core.config import Settings
from dvirsync.core.exceptions import (
    DvirSyncException,
    ErrorCode,
    ExternalAPIException,
    GeotabApiException,
    OperationCancelled,
    PartialEnrichmentWarning,
    RateLimitedException,
)
from dvirsync.core.logging import PerformanceLogger, StructuredJsonFormatter, log_event, sync_run_id_var


class TestSettings:
    """Test settings validation."""

    def test_defaults(self):
        config = Settings()
        assert config.CHUNK_DAYS == 7
        assert config.DETAIL_BATCH_SIZE == 50
        assert config.DETAIL_BATCH_DELAY_SECONDS == 1.0
        assert config.STUB_PROGRESS_SHARE == 0.3

    @pytest.mark.parametrize("share", [0.0, 1.0, 1.5])
    def test_progress_share_bounds(self, share):
        with pytest.raises(ValidationError):
            Settings(STUB_PROGRESS_SHARE=share)

    @pytest.mark.parametrize("field", ["CHUNK_DAYS", "DETAIL_BATCH_SIZE", "DRIVER_BATCH_SIZE"])
    def test_sizes_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            Settings(**{field: 0})


class TestExceptions:
    """Test the error hierarchy."""

    def test_hierarchy(self):
        assert issubclass(RateLimitedException, GeotabApiException)
        assert issubclass(GeotabApiException, ExternalAPIException)
        assert issubclass(PartialEnrichmentWarning, DvirSyncException)

    def test_to_dict(self):
        error = RateLimitedException(retry_after=3.0)
        payload = error.to_dict()["error"]
        assert payload["code"] == ErrorCode.GEOTAB_RATE_LIMITED.value
        assert payload["message"] == "MyGeotab rate limit exceeded."
        assert error.retry_after == 3.0

    def test_partial_warning_default_message(self):
        warning = PartialEnrichmentWarning(failed_batches=2, total_batches=5)
        assert warning.message == "Defect details failed to load. Fleet summary is shown without defect counts."
        assert warning.failed_batches == 2


class TestCancellationToken:
    """Test the cooperative cancellation token."""

    def test_starts_active(self):
        token = CancellationToken()
        assert not token.cancelled
        token.raise_if_cancelled()

    def test_first_reason_is_kept(self):
        token = CancellationToken()
        token.cancel("superseded")
        token.cancel("session closed")
        assert token.cancelled
        assert token.reason == "superseded"

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.cancel("stop")
        with pytest.raises(OperationCancelled) as exc_info:
            token.raise_if_cancelled()
        assert exc_info.value.reason == "stop"


def make_record(message: str = "hello", exc_info=None, **extra) -> logging.LogRecord:
    record = logging.LogRecord("dvirsync.test", logging.INFO, __file__, 10, message, None, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredJsonFormatter:
    """Test JSON log output."""

    @pytest.fixture
    def formatter(self):
        return StructuredJsonFormatter(
            "%(timestamp)s %(level)s %(name)s %(message)s",
            service_name="dvirsync",
            environment="testing",
        )

    def test_standard_fields(self, formatter):
        data = json.loads(formatter.format(make_record(event="sync_completed")))

        assert data["message"] == "hello"
        assert data["level"] == "INFO"
        assert data["logger"] == "dvirsync.test"
        assert data["service"]["name"] == "dvirsync"
        assert data["service"]["environment"] == "testing"
        assert data["event"] == "sync_completed"
        assert "sync_run_id" not in data

    def test_sync_run_id_from_context(self, formatter):
        token = sync_run_id_var.set("run123")
        try:
            data = json.loads(formatter.format(make_record()))
        finally:
            sync_run_id_var.reset(token)
        assert data["sync_run_id"] == "run123"

    def test_exception_details(self, formatter):
        try:
            raise ValueError("bad value")
        except ValueError:
            record = make_record("failed", exc_info=sys.exc_info())

        data = json.loads(formatter.format(record))

        assert data["error"]["type"] == "ValueError"
        assert data["error"]["message"] == "bad value"


class TestLogHelpers:
    """Test log_event and PerformanceLogger."""

    def test_log_event_attaches_fields(self, caplog):
        logger = logging.getLogger("dvirsync.test")
        with caplog.at_level(logging.INFO, logger="dvirsync.test"):
            log_event(logger, logging.INFO, "sync_completed", "done", inspections=4)

        record = caplog.records[-1]
        assert record.event == "sync_completed"
        assert record.inspections == 4

    def test_performance_logger_reports_failure(self, caplog):
        with caplog.at_level(logging.DEBUG, logger="dvirsync.performance"):
            with pytest.raises(RuntimeError):
                with PerformanceLogger("sync_run", chunks=2):
                    raise RuntimeError("boom")

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert record.operation == "sync_run"
        assert record.success is False
        assert record.error_type == "RuntimeError"
        assert record.chunks == 2

    @pytest.mark.asyncio
    async def test_track_decorator(self, caplog):
        @PerformanceLogger.track("load_foundation")
        async def work():
            return 42

        with caplog.at_level(logging.DEBUG, logger="dvirsync.performance"):
            assert await work() == 42

        assert caplog.records[-1].operation == "load_foundation"
        assert caplog.records[-1].success is True
