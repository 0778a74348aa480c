import os
import time

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.cache import close_redis, initialize_redis
from .core.database_pool import close_database_pool, initialize_database_pool
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.metrics import record_http_request
from .core.middleware import TraceIDMiddleware
from .core.tracing import (
    StatusCode,
    configure_tracing,
    get_trace_id_from_context,
    instrument_fastapi,
    record_exception,
    set_span_status,
    shutdown_tracing,
)
from .routes import chat, health, knowledge, metrics, models, navigation

log_level = os.getenv("LOG_LEVEL", "INFO")
json_output = os.getenv("LOG_JSON", "true").lower() == "true"
configure_logging(log_level=log_level, json_output=json_output)

logger = get_logger(__name__)

configure_tracing()

app = FastAPI(
    title="Assistant Routing & Retrieval API",
    description="Semantic navigation, knowledge retrieval and gated streaming chat",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ALLOW_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Served-Model", "X-Model-Fallback", "X-Conversation-ID", "X-Trace-ID"],
)

# Must be added after CORS so it runs inside it.
app.add_middleware(TraceIDMiddleware)

instrument_fastapi(app)


@app.on_event("startup")
async def startup_event():
    logger.info("app_startup_started")

    if await initialize_redis():
        logger.info("app_startup_redis_ready")
    else:
        logger.warning(
            "app_startup_redis_unavailable",
            message="Redis not available. Intent classification will not be cached.",
        )

    if await initialize_database_pool():
        logger.info("app_startup_database_pool_ready")
    else:
        logger.warning(
            "app_startup_database_pool_unavailable",
            message="Database pool not available. Falling back to in-memory stores.",
        )

    logger.info("app_startup_completed")


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("app_shutdown_started")
    shutdown_tracing()
    await close_redis()
    await close_database_pool()
    logger.info("app_shutdown_completed")


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    start_time = getattr(request.state, "start_time", time.time())
    trace_id = get_trace_id() or get_trace_id_from_context()

    set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, str(exc.detail))
    record_http_request(
        method=request.method,
        endpoint=request.url.path,
        status_code=exc.status_code,
        duration_seconds=time.time() - start_time,
    )
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
        method=request.method,
    )
    response = JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "status_code": exc.status_code,
            "trace_id": trace_id,
        },
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    trace_id = get_trace_id() or get_trace_id_from_context()

    record_exception(exc)
    set_span_status(StatusCode.ERROR, str(exc))
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
        method=request.method,
        exc_info=True,
    )
    response = JSONResponse(
        status_code=500,
        content={
            "detail": "Internal server error",
            "status_code": 500,
            "trace_id": trace_id,
        },
    )
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(chat.router, prefix="/chat", tags=["Chat"])
app.include_router(knowledge.router, prefix="/knowledge", tags=["Knowledge"])
app.include_router(navigation.router, prefix="/navigation", tags=["Navigation"])
app.include_router(models.router, prefix="/models", tags=["Models"])
app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
