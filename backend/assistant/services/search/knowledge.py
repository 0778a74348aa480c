"""
Knowledge retriever (RAG grounding).

Embeds a query, looks it up in the "passages" collection and renders the
hits as a numbered block for prompt injection.

Retrieval failures are logged and surface as an empty result set; an empty
result set is rendered as a sentinel sentence, never as an error.
"""
import asyncio
import os
import time
from typing import List, Optional

from assistant.core.exceptions import RetrievalError
from assistant.core.logging import get_logger
from assistant.core.metrics import record_knowledge_search
from assistant.core.tracing import start_span
from assistant.models.knowledge import KnowledgePassage
from assistant.services.search.embeddings import EmbeddingGateway, get_embedding_gateway
from assistant.services.search.similarity import PASSAGES, SimilarityIndex, get_similarity_index

logger = get_logger(__name__)

DEFAULT_LIMIT = 5
CONVERSATIONAL_MIN_SIMILARITY = 0.3
STANDALONE_MIN_SIMILARITY = 0.5

NO_RESULTS_MESSAGE = "No relevant information found in knowledge base."


class KnowledgeRetriever:
    """Similarity search over the knowledge base passages."""

    def __init__(
        self,
        embeddings: Optional[EmbeddingGateway] = None,
        index: Optional[SimilarityIndex] = None,
        timeout_seconds: float = 5.0,
    ):
        self._embeddings = embeddings
        self._index = index
        self.timeout_seconds = timeout_seconds

    @property
    def embeddings(self) -> EmbeddingGateway:
        return self._embeddings if self._embeddings is not None else get_embedding_gateway()

    @property
    def index(self) -> SimilarityIndex:
        return self._index if self._index is not None else get_similarity_index()

    async def _lookup(self, query: str, limit: int, min_similarity: float) -> List[KnowledgePassage]:
        vector = await self.embeddings.embed(query)
        hits = await self.index.query(PASSAGES, vector, top_n=limit, min_similarity=min_similarity)
        passages = [
            KnowledgePassage(
                source_url=hit.payload.get("source_url", ""),
                source_title=hit.payload.get("source_title", ""),
                content=hit.payload.get("content", ""),
                similarity=hit.similarity,
            )
            for hit in hits
        ]
        passages.sort(key=lambda p: p.similarity, reverse=True)
        return passages

    async def search(
        self,
        query: str,
        limit: int = DEFAULT_LIMIT,
        min_similarity: float = CONVERSATIONAL_MIN_SIMILARITY,
    ) -> List[KnowledgePassage]:
        """
        Search the knowledge base.

        Args:
            query: Free-text question
            limit: Maximum number of passages
            min_similarity: Similarity floor (0.3 conversational, 0.5 standalone)

        Returns:
            Passages ordered by descending similarity; empty on any failure.
        """
        if not query or not query.strip():
            return []

        start = time.time()
        with start_span("knowledge.search", limit=limit, min_similarity=min_similarity):
            try:
                passages = await asyncio.wait_for(
                    self._lookup(query, limit, min_similarity),
                    timeout=self.timeout_seconds,
                )
            except (RetrievalError, asyncio.TimeoutError) as exc:
                record_knowledge_search("error", time.time() - start)
                logger.warning(
                    "knowledge_search_failed",
                    query=query,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return []

        latency = time.time() - start
        record_knowledge_search("hit" if passages else "empty", latency)
        logger.info(
            "knowledge_search_completed",
            query=query,
            results_count=len(passages),
            min_similarity=min_similarity,
            latency_ms=int(latency * 1000),
        )
        return passages


def format_passages(passages: List[KnowledgePassage]) -> str:
    """
    Render passages for prompt injection::

        [1] Title (url)
        content
        Relevance: 78.0%
    """
    if not passages:
        return NO_RESULTS_MESSAGE

    blocks = [
        f"[{i}] {p.source_title} ({p.source_url})\n"
        f"{p.content}\n"
        f"Relevance: {p.similarity * 100:.1f}%"
        for i, p in enumerate(passages, start=1)
    ]
    return "\n\n---\n\n".join(blocks)


_knowledge_retriever: Optional[KnowledgeRetriever] = None


def get_knowledge_retriever() -> KnowledgeRetriever:
    global _knowledge_retriever
    if _knowledge_retriever is None:
        _knowledge_retriever = KnowledgeRetriever(
            timeout_seconds=float(os.getenv("RETRIEVAL_TIMEOUT_SECONDS", "5.0") or "5.0"),
        )
    return _knowledge_retriever
