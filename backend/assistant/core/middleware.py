"""
Middleware for trace ID propagation and request context management.

- Trace ID from X-Trace-ID / X-Request-ID, else the OpenTelemetry span, else new
- Fresh request ID per request
- User ID from the X-User-ID header
- Request logging and HTTP RED metrics
"""
import time
from typing import Callable

from fastapi import HTTPException, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from .logging import (
    generate_request_id,
    generate_trace_id,
    get_logger,
    set_conversation_id,
    set_request_id,
    set_trace_id,
    set_user_id,
)
from .metrics import record_http_request
from .tracing import (
    StatusCode,
    get_trace_id_from_context,
    get_tracer,
    record_exception,
    set_span_attribute,
    set_span_status,
)

logger = get_logger(__name__)


def _format_trace_id(otel_trace_id: str) -> str:
    if len(otel_trace_id) == 32:
        return (
            f"{otel_trace_id[0:8]}-{otel_trace_id[8:12]}-{otel_trace_id[12:16]}-"
            f"{otel_trace_id[16:20]}-{otel_trace_id[20:32]}"
        )
    return otel_trace_id


class TraceIDMiddleware(BaseHTTPMiddleware):
    """Sets trace/request/user ids in the logging context for each request."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = request.headers.get("X-Trace-ID") or request.headers.get("X-Request-ID")
        if not trace_id:
            otel_trace_id = get_trace_id_from_context()
            trace_id = _format_trace_id(otel_trace_id) if otel_trace_id else generate_trace_id()

        request_id = generate_request_id()
        user_id = request.headers.get("X-User-ID")

        set_trace_id(trace_id)
        set_request_id(request_id)
        set_user_id(user_id)

        with get_tracer().start_as_current_span("http.request"):
            set_span_attribute("http.method", request.method)
            set_span_attribute("http.route", request.url.path)
            if user_id:
                set_span_attribute("user.id", user_id)

            start_time = time.time()
            request.state.start_time = start_time
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                client_host=request.client.host if request.client else None,
            )

            try:
                response = await call_next(request)

                # For streamed responses this measures time to first byte.
                process_time = time.time() - start_time
                set_span_attribute("http.status_code", response.status_code)
                record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=response.status_code,
                    duration_seconds=process_time,
                )
                logger.info(
                    "request_completed",
                    method=request.method,
                    path=request.url.path,
                    status_code=response.status_code,
                    latency_ms=int(process_time * 1000),
                )

                response.headers["X-Trace-ID"] = trace_id
                response.headers["X-Request-ID"] = request_id
                return response
            except HTTPException as exc:
                set_span_attribute("http.status_code", exc.status_code)
                raise
            except Exception as e:
                process_time = time.time() - start_time
                record_exception(e)
                set_span_status(StatusCode.ERROR, str(e))
                set_span_attribute("http.status_code", 500)
                record_http_request(
                    method=request.method,
                    endpoint=request.url.path,
                    status_code=500,
                    duration_seconds=process_time,
                )
                logger.error(
                    "request_failed",
                    method=request.method,
                    path=request.url.path,
                    error=str(e),
                    error_type=type(e).__name__,
                    latency_ms=int(process_time * 1000),
                    exc_info=True,
                )
                raise
            finally:
                set_trace_id(None)
                set_request_id(None)
                set_user_id(None)
                set_conversation_id(None)
