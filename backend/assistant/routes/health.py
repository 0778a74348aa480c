"""
Health check endpoints.
"""
from fastapi import APIRouter

from assistant.core.cache import get_cache_client, get_redis_client
from assistant.core.database_pool import get_pool
from assistant.core.logging import get_logger
from assistant.services.ai.llm_client import get_llm_client

logger = get_logger(__name__)
router = APIRouter()


@router.get("/")
async def health_check():
    return {
        "status": "ok",
        "message": "API is running",
    }


@router.get("/dependencies")
async def dependencies_health():
    """
    Status of external dependencies.

    The service runs degraded without Redis (no intent cache) or the
    database (in-memory stores); it is never reported as down for that.
    """
    redis_ok = False
    redis_client = get_redis_client()
    if redis_client is not None:
        try:
            redis_ok = bool(await redis_client.ping())
        except Exception as e:
            logger.warning("health_redis_ping_failed", error=str(e), error_type=type(e).__name__)

    llm = get_llm_client()
    database_ok = get_pool() is not None
    return {
        "status": "ok" if redis_ok and database_ok else "degraded",
        "redis": {
            "available": redis_ok,
            "circuit_breaker": get_cache_client().get_circuit_breaker_metrics(),
        },
        "database": {"available": database_ok},
        "llm": {
            "configured": bool(llm.api_key),
            "circuit_breaker": llm.circuit_breaker.get_metrics(),
        },
    }
