"""
Tests for the in-memory similarity index and pgvector helpers.
"""
import pytest

from assistant.core.exceptions import RetrievalError
from assistant.services.search.similarity import (
    PAGES,
    PASSAGES,
    SECTIONS,
    InMemorySimilarityIndex,
    _stricter_tier,
    to_vector_literal,
)

QUERY_VECTOR = [1.0, 0.0]


@pytest.mark.asyncio
async def test_orders_by_similarity_and_applies_floor(similarity_vector):
    index = InMemorySimilarityIndex()
    index.add(PASSAGES, "low", similarity_vector(0.2))
    index.add(PASSAGES, "high", similarity_vector(0.9))
    index.add(PASSAGES, "mid", similarity_vector(0.6))

    hits = await index.query(PASSAGES, QUERY_VECTOR, top_n=5, min_similarity=0.5)

    assert [h.id for h in hits] == ["high", "mid"]
    assert hits[0].similarity == pytest.approx(0.9, abs=1e-5)


@pytest.mark.asyncio
async def test_top_n_limit(similarity_vector):
    index = InMemorySimilarityIndex()
    for i in range(6):
        index.add(PAGES, f"page-{i}", similarity_vector(0.5 + i * 0.05), {"url": f"/p{i}"})

    hits = await index.query(PAGES, QUERY_VECTOR, top_n=3)

    assert [h.id for h in hits] == ["page-5", "page-4", "page-3"]


@pytest.mark.asyncio
async def test_priority_breaks_ties(similarity_vector):
    index = InMemorySimilarityIndex()
    index.add(PAGES, "plain", similarity_vector(0.7), {"priority": 0})
    index.add(PAGES, "featured", similarity_vector(0.7), {"priority": 5})

    hits = await index.query(PAGES, QUERY_VECTOR, top_n=2)

    assert [h.id for h in hits] == ["featured", "plain"]


@pytest.mark.asyncio
async def test_inactive_items_are_skipped(similarity_vector):
    index = InMemorySimilarityIndex()
    index.add(SECTIONS, "hidden", similarity_vector(0.9), {"is_active": False})
    index.add(SECTIONS, "shown", similarity_vector(0.5))

    hits = await index.query(SECTIONS, QUERY_VECTOR, top_n=3)

    assert [h.id for h in hits] == ["shown"]


@pytest.mark.asyncio
async def test_opposite_vectors_clamp_to_zero():
    index = InMemorySimilarityIndex()
    index.add(PASSAGES, "opposite", [-1.0, 0.0])

    hits = await index.query(PASSAGES, QUERY_VECTOR, top_n=1)

    assert hits[0].similarity == 0.0


@pytest.mark.asyncio
async def test_zero_query_vector_returns_nothing(similarity_vector):
    index = InMemorySimilarityIndex()
    index.add(PASSAGES, "a", similarity_vector(0.9))

    assert await index.query(PASSAGES, [0.0, 0.0], top_n=3) == []


@pytest.mark.asyncio
async def test_dimension_mismatch_raises_retrieval_error(similarity_vector):
    index = InMemorySimilarityIndex()
    index.add(PAGES, "pricing", similarity_vector(0.9))

    with pytest.raises(RetrievalError):
        await index.query(PAGES, [1.0, 0.0, 0.0], top_n=3)

def test_rejects_unknown_collection_and_zero_vector():
    index = InMemorySimilarityIndex()

    with pytest.raises(ValueError):
        index.add("products", "x", [1.0, 0.0])
    with pytest.raises(ValueError):
        index.add(PAGES, "x", [0.0, 0.0])


def test_clear_and_size(similarity_vector):
    index = InMemorySimilarityIndex()
    index.add(PAGES, "a", similarity_vector(0.5))
    index.add(SECTIONS, "b", similarity_vector(0.5))

    index.clear(PAGES)

    assert index.size(PAGES) == 0
    assert index.size(SECTIONS) == 1


def test_vector_literal():
    assert to_vector_literal([1, 0.5]) == "[1.00000000,0.50000000]"


def test_stricter_tier():
    assert _stricter_tier("TIER1", "TIER3") == "TIER3"
    assert _stricter_tier("ADMIN", None) == "ADMIN"
    assert _stricter_tier(None, None) == "GUEST"
