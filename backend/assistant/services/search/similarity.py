"""
Similarity index: top-N candidates by cosine similarity over a collection.

Collections are logically partitioned: "pages", "sections", "passages".
Similarity is ``1 - cosine_distance`` clamped to [0, 1]; candidates below
``min_similarity`` are never returned.

Implementations:
- PgVectorSimilarityIndex: PostgreSQL + pgvector via the asyncpg pool
- InMemorySimilarityIndex: numpy brute force (dev, tests, small sites)
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

import asyncpg
import numpy as np
from pydantic import BaseModel, Field

from assistant.core.database_pool import get_pool
from assistant.core.exceptions import RetrievalError
from assistant.core.logging import get_logger
from assistant.models.access import Tier

logger = get_logger(__name__)

PAGES = "pages"
SECTIONS = "sections"
PASSAGES = "passages"
COLLECTIONS = (PAGES, SECTIONS, PASSAGES)


class SimilarityHit(BaseModel):
    id: str
    similarity: float = Field(..., ge=0.0, le=1.0)
    payload: Dict[str, Any] = Field(default_factory=dict)


class SimilarityIndex(ABC):
    @abstractmethod
    async def query(
        self,
        collection: str,
        vector: Sequence[float],
        top_n: int,
        min_similarity: float = 0.0,
    ) -> List[SimilarityHit]:
        """
        Return at most ``top_n`` hits with similarity >= ``min_similarity``,
        ordered by descending similarity (then descending ``priority`` payload
        field, when present).

        Raises:
            RetrievalError if the backing store is unavailable.
        """


def to_vector_literal(vector: Sequence[float]) -> str:
    """pgvector text representation: ``[0.1,0.2,...]``."""
    return "[" + ",".join(f"{float(v):.8f}" for v in vector) + "]"


# Similarity expression shared by all collection queries; $1 is the query vector.
_SIMILARITY = "1 - ({col}.embedding <=> ($1::text)::vector)"

_PAGE_SQL = f"""
    SELECT p.id::text AS id,
           p.url,
           p.title,
           p.required_tier,
           p.priority,
           {_SIMILARITY.format(col="p")} AS similarity
    FROM page_navigation p
    WHERE p.is_active = true
      AND {_SIMILARITY.format(col="p")} >= $2
    ORDER BY similarity DESC, p.priority DESC
    LIMIT $3
"""

_SECTION_SQL = f"""
    SELECT s.id::text AS id,
           s.element_id,
           s.title,
           p.url AS page_url,
           p.title AS page_title,
           s.required_tier AS section_tier,
           p.required_tier AS page_tier,
           {_SIMILARITY.format(col="s")} AS similarity
    FROM page_sections s
    JOIN page_navigation p ON s.page_id = p.id
    WHERE s.is_active = true
      AND p.is_active = true
      AND {_SIMILARITY.format(col="s")} >= $2
    ORDER BY similarity DESC
    LIMIT $3
"""

_PASSAGE_SQL = f"""
    SELECT e.id::text AS id,
           e.page_url,
           e.page_title,
           e.content_chunk,
           {_SIMILARITY.format(col="e")} AS similarity
    FROM site_embeddings e
    WHERE {_SIMILARITY.format(col="e")} >= $2
    ORDER BY similarity DESC
    LIMIT $3
"""


def _stricter_tier(a: Optional[str], b: Optional[str]) -> str:
    tiers = [Tier(t) for t in (a, b) if t]
    if not tiers:
        return Tier.GUEST.value
    return max(tiers, key=lambda t: t.level).value


def _row_to_hit(collection: str, row: asyncpg.Record) -> SimilarityHit:
    similarity = max(0.0, min(1.0, float(row["similarity"])))
    if collection == PAGES:
        payload = {
            "url": row["url"],
            "title": row["title"],
            "required_tier": row["required_tier"],
            "priority": row["priority"],
        }
    elif collection == SECTIONS:
        payload = {
            "element_id": row["element_id"],
            "title": row["title"],
            "page_url": row["page_url"],
            "page_title": row["page_title"],
            # A section is never more visible than the page that holds it.
            "required_tier": _stricter_tier(row["section_tier"], row["page_tier"]),
        }
    else:
        payload = {
            "source_url": row["page_url"],
            "source_title": row["page_title"],
            "content": row["content_chunk"],
        }
    return SimilarityHit(id=row["id"], similarity=similarity, payload=payload)


class PgVectorSimilarityIndex(SimilarityIndex):
    """pgvector-backed index; one SQL statement per collection."""

    _SQL = {PAGES: _PAGE_SQL, SECTIONS: _SECTION_SQL, PASSAGES: _PASSAGE_SQL}

    def __init__(self, pool: Optional[asyncpg.Pool] = None):
        self._pool = pool

    @property
    def pool(self) -> Optional[asyncpg.Pool]:
        return self._pool if self._pool is not None else get_pool()

    async def query(
        self,
        collection: str,
        vector: Sequence[float],
        top_n: int,
        min_similarity: float = 0.0,
    ) -> List[SimilarityHit]:
        if collection not in self._SQL:
            raise ValueError(f"Unknown collection: {collection}")
        pool = self.pool
        if pool is None:
            raise RetrievalError("Database pool not initialized")

        try:
            rows = await pool.fetch(
                self._SQL[collection],
                to_vector_literal(vector),
                float(min_similarity),
                int(top_n),
            )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
            logger.warning(
                "similarity_query_failed",
                collection=collection,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise RetrievalError(f"Similarity query failed: {exc}") from exc

        return [_row_to_hit(collection, row) for row in rows]


class InMemorySimilarityIndex(SimilarityIndex):
    """
    Brute-force cosine similarity over numpy arrays.

    Items carrying ``is_active=False`` in their payload are skipped.
    """

    def __init__(self):
        self._items: Dict[str, List[Tuple[str, np.ndarray, Dict[str, Any]]]] = {
            name: [] for name in COLLECTIONS
        }

    def add(
        self,
        collection: str,
        item_id: str,
        vector: Sequence[float],
        payload: Optional[Dict[str, Any]] = None,
    ) -> None:
        if collection not in self._items:
            raise ValueError(f"Unknown collection: {collection}")
        array = np.asarray(vector, dtype="float32")
        norm = np.linalg.norm(array)
        if norm == 0:
            raise ValueError("Cannot index a zero vector")
        self._items[collection].append((item_id, array / norm, dict(payload or {})))

    def clear(self, collection: Optional[str] = None) -> None:
        for name in [collection] if collection else list(self._items):
            self._items[name] = []

    def size(self, collection: str) -> int:
        return len(self._items.get(collection, []))

    async def query(
        self,
        collection: str,
        vector: Sequence[float],
        top_n: int,
        min_similarity: float = 0.0,
    ) -> List[SimilarityHit]:
        if collection not in self._items:
            raise ValueError(f"Unknown collection: {collection}")

        query = np.asarray(vector, dtype="float32")
        norm = np.linalg.norm(query)
        if norm == 0:
            return []
        query = query / norm

        hits = []
        for item_id, item_vector, payload in self._items[collection]:
            if not payload.get("is_active", True):
                continue
            if item_vector.shape != query.shape:
                raise RetrievalError(
                    f"Query has {query.shape[0]} dimensions, {collection} index has {item_vector.shape[0]}"
                )
            similarity = float(max(0.0, min(1.0, float(np.dot(query, item_vector)))))
            if similarity < min_similarity:
                continue
            hits.append(SimilarityHit(id=item_id, similarity=similarity, payload=payload))

        hits.sort(key=lambda h: (-h.similarity, -int(h.payload.get("priority", 0) or 0)))
        return hits[:top_n]


_similarity_index: Optional[SimilarityIndex] = None
_fallback_index: Optional[InMemorySimilarityIndex] = None


def get_similarity_index() -> SimilarityIndex:
    """
    pgvector index when the database pool is up, otherwise a process-local
    in-memory index.
    """
    global _similarity_index, _fallback_index
    if _similarity_index is not None:
        return _similarity_index
    if get_pool() is not None:
        _similarity_index = PgVectorSimilarityIndex()
        return _similarity_index
    if _fallback_index is None:
        logger.warning(
            "similarity_index_in_memory",
            message="Database pool not available. Using empty in-memory similarity index.",
        )
        _fallback_index = InMemorySimilarityIndex()
    return _fallback_index
