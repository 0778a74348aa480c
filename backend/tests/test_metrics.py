"""
Unit tests for Prometheus metrics collection.

Tests verify:
- RED metrics are recorded with normalized endpoints
- Decision and stream metrics are incremented with the right labels
- Metrics endpoint output is valid Prometheus text
"""
from prometheus_client import REGISTRY

from assistant.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    normalize_endpoint,
    record_access_decision,
    record_chat_stream,
    record_checkpoint,
    record_http_request,
    record_llm_tokens,
    record_model_fallback,
    update_resource_metrics,
)


def sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_normalize_endpoint_drops_query_string():
    assert normalize_endpoint("/models?x=1") == "/models"
    assert normalize_endpoint("/chat") == "/chat"


def test_record_http_request_counts_errors():
    labels = {"method": "POST", "endpoint": "/metrics-test", "status": "503"}
    error_labels = {"method": "POST", "endpoint": "/metrics-test", "status_code": "503"}
    before = sample("http_requests_total", labels)
    before_errors = sample("http_errors_total", error_labels)

    record_http_request("POST", "/metrics-test?q=1", 503, 0.05)

    assert sample("http_requests_total", labels) == before + 1
    assert sample("http_errors_total", error_labels) == before_errors + 1


def test_record_access_decision_labels():
    labels = {"outcome": "deny", "reason": "quota exceeded"}
    before = sample("access_decisions_total", labels)

    record_access_decision(False, "quota exceeded")

    assert sample("access_decisions_total", labels) == before + 1


def test_stream_and_checkpoint_metrics():
    before_stream = sample("chat_streams_total", {"status": "cancelled"})
    before_checkpoint = sample("checkpoints_total", {"kind": "interval", "status": "error"})
    before_fallback = sample("model_fallbacks_total", {"reason": "tier insufficient"})

    record_chat_stream("cancelled")
    record_checkpoint("interval", False)
    record_model_fallback("tier insufficient")

    assert sample("chat_streams_total", {"status": "cancelled"}) == before_stream + 1
    assert sample("checkpoints_total", {"kind": "interval", "status": "error"}) == before_checkpoint + 1
    assert sample("model_fallbacks_total", {"reason": "tier insufficient"}) == before_fallback + 1


def test_record_llm_tokens_skips_zero():
    labels = {"agent": "metrics-test", "model": "m", "direction": "output"}

    record_llm_tokens("metrics-test", "m", 0, 7)

    assert sample("llm_tokens_total", labels) == 7
    assert sample("llm_tokens_total", {**labels, "direction": "input"}) == 0


def test_metrics_output_format():
    update_resource_metrics()

    output = get_metrics().decode("utf-8")

    assert "# HELP http_requests_total" in output
    assert "system_memory_usage_bytes" in output
    assert get_metrics_content_type().startswith("text/plain")
