"""
Standalone knowledge base search.

POST /knowledge/search
Uses the strict 0.5 similarity floor; the chat tool uses 0.3.
"""
from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from assistant.core.logging import get_logger
from assistant.services.search.knowledge import (
    DEFAULT_LIMIT,
    STANDALONE_MIN_SIMILARITY,
    format_passages,
    get_knowledge_retriever,
)

logger = get_logger(__name__)
router = APIRouter()


class KnowledgeSearchRequest(BaseModel):
    query: str = ""


@router.post("/search")
async def search_knowledge(body: KnowledgeSearchRequest):
    if not body.query.strip():
        raise HTTPException(status_code=400, detail="Query is required")

    passages = await get_knowledge_retriever().search(
        body.query,
        limit=DEFAULT_LIMIT,
        min_similarity=STANDALONE_MIN_SIMILARITY,
    )
    return {
        "results": format_passages(passages),
        "count": len(passages),
    }
