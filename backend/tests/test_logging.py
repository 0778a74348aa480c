"""
Unit tests for structured logging configuration.

Tests verify:
- Context variables (trace_id, request_id, user_id, conversation_id) are set and retrieved
- The trace context processor adds correlation fields and the service name
- Trace and request ID generation
"""
import pytest

from assistant.core import logging as app_logging
from assistant.core.logging import (
    SERVICE_NAME,
    add_trace_context,
    configure_logging,
    generate_request_id,
    generate_trace_id,
    get_conversation_id,
    get_logger,
    get_request_id,
    get_trace_id,
    get_user_id,
    set_conversation_id,
    set_request_id,
    set_trace_id,
    set_user_id,
)


@pytest.fixture(autouse=True)
def clear_context():
    yield
    set_trace_id(None)
    set_request_id(None)
    set_user_id(None)
    set_conversation_id(None)


class TestLoggingConfiguration:
    def test_configure_logging_json_output(self):
        configure_logging(log_level="INFO", json_output=True)
        logger = get_logger(__name__)

        logger.info("test_message", test_field="test_value")

    def test_configure_logging_console_output(self):
        configure_logging(log_level="INFO", json_output=False)
        logger = get_logger(__name__)

        logger.info("test_message", test_field="test_value")

    def test_service_name(self):
        assert SERVICE_NAME == "assistant_routing_core"


class TestContextVariables:
    def test_set_and_get_trace_id(self):
        set_trace_id("test-trace-123")
        assert get_trace_id() == "test-trace-123"

        set_trace_id(None)
        assert get_trace_id() is None

    def test_set_and_get_request_id(self):
        set_request_id("test-request-456")
        assert get_request_id() == "test-request-456"

    def test_set_and_get_user_id(self):
        set_user_id("test-user-789")
        assert get_user_id() == "test-user-789"

    def test_set_and_get_conversation_id(self):
        set_conversation_id("conv-1")
        assert get_conversation_id() == "conv-1"

    def test_generated_ids_are_unique_uuids(self):
        trace_id = generate_trace_id()
        request_id = generate_request_id()

        assert len(trace_id) == 36
        assert trace_id.count("-") == 4
        assert trace_id != generate_trace_id()
        assert request_id != generate_request_id()


class TestTraceContextProcessor:
    def test_adds_context_fields(self):
        set_trace_id("trace-1")
        set_request_id("request-1")
        set_user_id("user-1")
        set_conversation_id("conv-1")

        event = add_trace_context(None, "info", {"event": "chat_turn_prepared"})

        assert event["trace_id"] == "trace-1"
        assert event["request_id"] == "request-1"
        assert event["user_id"] == "user-1"
        assert event["conversation_id"] == "conv-1"
        assert event["service"] == app_logging.SERVICE_NAME
        assert "timestamp" in event

    def test_omits_unset_context(self):
        event = add_trace_context(None, "info", {"event": "health_check"})

        assert "trace_id" not in event
        assert "user_id" not in event
        assert "conversation_id" not in event

    def test_keeps_existing_timestamp(self):
        event = add_trace_context(None, "info", {"event": "x", "timestamp": "fixed"})

        assert event["timestamp"] == "fixed"
