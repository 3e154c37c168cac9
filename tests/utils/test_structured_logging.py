"""Tests for structured logging helpers."""

import pytest

from regis_client.utils.logger import logger
from regis_client.utils.structured_logging import (
    CorrelationContext,
    get_correlation_id,
    log_chat_request,
    log_queue_event,
)


@pytest.fixture
def records():
    """Capture loguru records emitted during the test."""
    captured = []
    handler_id = logger.add(lambda message: captured.append(message.record), level="DEBUG")
    yield captured
    logger.remove(handler_id)


class TestCorrelationContext:
    """Tests for CorrelationContext."""

    def test_sets_and_resets_id(self):
        assert get_correlation_id() is None
        with CorrelationContext("req-test") as correlation_id:
            assert correlation_id == "req-test"
            assert get_correlation_id() == "req-test"
        assert get_correlation_id() is None

    def test_generates_id(self):
        with CorrelationContext() as correlation_id:
            assert correlation_id.startswith("req-")


class TestStructuredEvents:
    """Tests for the event helpers."""

    def test_chat_request_fields(self, records):
        """Test that events carry bound fields and the correlation id."""
        with CorrelationContext("req-1"):
            log_chat_request(prompt="x" * 300, endpoint="stream", model="m1")

        extra = records[-1]["extra"]
        assert extra["event_type"] == "chat_request"
        assert extra["endpoint"] == "stream"
        assert extra["prompt_length"] == 300
        assert len(extra["prompt"]) == 200
        assert extra["correlation_id"] == "req-1"

    def test_no_correlation_id_outside_context(self, records):
        log_queue_event("enqueued", "q-1", 1)
        assert "correlation_id" not in records[-1]["extra"]
        assert records[-1]["message"] == "Offline queue enqueued: q-1 (length=1)"
