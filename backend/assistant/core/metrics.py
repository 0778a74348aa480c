"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: Rate, Errors, Duration for the HTTP surface
- Retrieval Metrics: embeddings, knowledge search, destination resolution
- Decision Metrics: intent classification, access decisions, model fallbacks
- Stream Metrics: chat streams, tool calls, checkpoints
- LLM Metrics: provider requests, latency, errors, tokens
- Resource Metrics: CPU, memory

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
"""
from typing import Optional

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from assistant.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

# ============================================================================
# RETRIEVAL METRICS
# ============================================================================

embedding_requests_total = Counter(
    "embedding_requests_total",
    "Total number of embedding requests",
    ["backend", "status"],
    registry=registry,
)

embedding_latency_seconds = Histogram(
    "embedding_latency_seconds",
    "Embedding generation latency in seconds",
    ["backend"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
    registry=registry,
)

knowledge_search_total = Counter(
    "knowledge_search_total",
    "Total number of knowledge base searches",
    ["outcome"],  # "hit", "empty", "error"
    registry=registry,
)

knowledge_search_latency_seconds = Histogram(
    "knowledge_search_latency_seconds",
    "Knowledge search latency in seconds (embedding + index lookup)",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=registry,
)

destination_resolutions_total = Counter(
    "destination_resolutions_total",
    "Total number of destination resolutions by outcome",
    ["match_type"],  # "page", "section", "page_and_section", "none", "error"
    registry=registry,
)

destination_similarity_distribution = Histogram(
    "destination_similarity_distribution",
    "Similarity of the winning destination candidate",
    buckets=[0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
    registry=registry,
)

# ============================================================================
# DECISION METRICS
# ============================================================================

intent_classifications_total = Counter(
    "intent_classifications_total",
    "Total number of intent decisions",
    ["intent", "source"],  # source: "command", "model", "cache", "fallback"
    registry=registry,
)

intent_fallbacks_total = Counter(
    "intent_fallbacks_total",
    "Total number of classifier fallbacks to the default persona",
    ["reason"],  # "low_confidence", "error", "invalid_output"
    registry=registry,
)

access_decisions_total = Counter(
    "access_decisions_total",
    "Total number of access controller decisions",
    ["outcome", "reason"],
    registry=registry,
)

model_fallbacks_total = Counter(
    "model_fallbacks_total",
    "Total number of explicit model selections replaced by the default model",
    ["reason"],
    registry=registry,
)

# ============================================================================
# STREAM METRICS
# ============================================================================

chat_streams_total = Counter(
    "chat_streams_total",
    "Total number of chat streams by terminal status",
    ["status"],  # "completed", "error", "cancelled"
    registry=registry,
)

chat_stream_retries_total = Counter(
    "chat_stream_retries_total",
    "Total number of model stream retries",
    registry=registry,
)

chat_tool_calls_total = Counter(
    "chat_tool_calls_total",
    "Total number of tool invocations made mid-stream",
    ["tool", "status"],
    registry=registry,
)

checkpoints_total = Counter(
    "checkpoints_total",
    "Total number of conversation checkpoint writes",
    ["kind", "status"],  # kind: "interval", "final"; status: "ok", "error"
    registry=registry,
)

# ============================================================================
# LLM METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total number of LLM provider requests",
    ["agent", "model"],
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "LLM request latency in seconds",
    ["agent", "model"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

llm_errors_total = Counter(
    "llm_errors_total",
    "Total number of LLM provider errors",
    ["agent", "error_type"],
    registry=registry,
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Total number of LLM tokens consumed",
    ["agent", "model", "direction"],  # direction: "input", "output"
    registry=registry,
)

cache_hits_total = Counter(
    "cache_hits_total",
    "Total number of cache hits",
    ["cache_type"],
    registry=registry,
)

cache_misses_total = Counter(
    "cache_misses_total",
    "Total number of cache misses",
    ["cache_type"],
    registry=registry,
)

# ============================================================================
# RESOURCE METRICS
# ============================================================================

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics (drop query string) to avoid
    high cardinality.
    """
    if "?" in path:
        path = path.split("?")[0]
    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record HTTP request metrics (RED metrics)."""
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_embedding_request(backend: str, success: bool, latency_seconds: float) -> None:
    embedding_requests_total.labels(
        backend=backend,
        status="ok" if success else "error",
    ).inc()
    embedding_latency_seconds.labels(backend=backend).observe(latency_seconds)


def record_knowledge_search(outcome: str, latency_seconds: Optional[float] = None) -> None:
    """
    Record a knowledge search.

    Args:
        outcome: "hit", "empty" or "error"
        latency_seconds: End-to-end latency, when measured
    """
    knowledge_search_total.labels(outcome=outcome).inc()
    if latency_seconds is not None:
        knowledge_search_latency_seconds.observe(latency_seconds)


def record_destination_resolution(match_type: str, similarity: Optional[float] = None) -> None:
    destination_resolutions_total.labels(match_type=match_type).inc()
    if similarity is not None:
        destination_similarity_distribution.observe(similarity)


def record_intent_decision(intent: str, source: str) -> None:
    intent_classifications_total.labels(intent=intent, source=source).inc()


def record_intent_fallback(reason: str) -> None:
    intent_fallbacks_total.labels(reason=reason).inc()


def record_access_decision(admitted: bool, reason: str) -> None:
    access_decisions_total.labels(
        outcome="admit" if admitted else "deny",
        reason=reason,
    ).inc()


def record_model_fallback(reason: str) -> None:
    model_fallbacks_total.labels(reason=reason).inc()


def record_chat_stream(status: str) -> None:
    chat_streams_total.labels(status=status).inc()


def record_chat_stream_retry() -> None:
    chat_stream_retries_total.inc()


def record_tool_call(tool: str, success: bool) -> None:
    chat_tool_calls_total.labels(tool=tool, status="ok" if success else "error").inc()


def record_checkpoint(kind: str, success: bool) -> None:
    checkpoints_total.labels(kind=kind, status="ok" if success else "error").inc()


def record_llm_request(agent: str, model: str, duration_seconds: float) -> None:
    llm_requests_total.labels(agent=agent, model=model).inc()
    llm_request_duration_seconds.labels(agent=agent, model=model).observe(duration_seconds)


def record_llm_error(agent: str, error_type: str) -> None:
    llm_errors_total.labels(agent=agent, error_type=error_type).inc()


def record_llm_tokens(agent: str, model: str, input_tokens: int, output_tokens: int) -> None:
    if input_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="input").inc(input_tokens)
    if output_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="output").inc(output_tokens)


def record_cache_hit(cache_type: str) -> None:
    cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str) -> None:
    cache_misses_total.labels(cache_type=cache_type).inc()


def update_resource_metrics() -> None:
    """Update system resource metrics (CPU, memory) on scrape."""
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """Prometheus metrics in text exposition format."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
