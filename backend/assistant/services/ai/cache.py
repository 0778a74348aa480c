"""
Intent classification cache.

Key: llm:intent:{hash(context)}, TTL 24 hours. Only model decisions are
cached; command and fallback decisions are cheap to recompute.
"""
from typing import Any, Dict, Optional

from assistant.core.cache import get_cache_client, hash_key
from assistant.core.logging import get_logger
from assistant.core.metrics import record_cache_hit, record_cache_miss

logger = get_logger(__name__)

INTENT_CACHE_TTL_SECONDS = 24 * 60 * 60


def _intent_cache_key(context: str) -> str:
    return f"llm:intent:{hash_key(context)}"


async def get_cached_intent(context: str) -> Optional[Dict[str, Any]]:
    cache = get_cache_client()
    key = _intent_cache_key(context)

    result = await cache.get(key)
    if isinstance(result, dict):
        record_cache_hit("intent")
        logger.debug("llm_cache_hit", agent="intent", key=key)
        return result

    record_cache_miss("intent")
    return None


async def cache_intent(context: str, payload: Dict[str, Any]) -> None:
    cache = get_cache_client()
    key = _intent_cache_key(context)
    if not await cache.set(key, payload, INTENT_CACHE_TTL_SECONDS):
        logger.debug("llm_cache_set_skipped", agent="intent", key=key)
