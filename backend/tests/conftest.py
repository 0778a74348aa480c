"""
Shared fixtures: deterministic embeddings and in-memory collaborators.

Query vectors are the unit vector [1, 0]; an indexed vector built with
``vector_for(s)`` therefore has cosine similarity ``s`` with every query.
"""
import math
from typing import List, Optional

import pytest

from assistant.core.exceptions import RetrievalError
from assistant.services.search.embeddings import EmbeddingGateway
from assistant.services.search.similarity import InMemorySimilarityIndex

QUERY_VECTOR = [1.0, 0.0]


def vector_for(similarity: float) -> List[float]:
    return [similarity, math.sqrt(max(0.0, 1.0 - similarity * similarity))]


class StaticEmbeddingGateway(EmbeddingGateway):
    """Returns the same vector for every text, or raises ``error``."""

    backend = "static"

    def __init__(self, vector: Optional[List[float]] = None, error: Optional[Exception] = None):
        self.vector = vector or QUERY_VECTOR
        self.error = error
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vector)


@pytest.fixture
def embeddings():
    return StaticEmbeddingGateway()


@pytest.fixture
def failing_embeddings():
    return StaticEmbeddingGateway(error=RetrievalError("embedding provider down"))


@pytest.fixture
def index():
    return InMemorySimilarityIndex()


@pytest.fixture
def similarity_vector():
    """Factory: similarity -> indexed vector."""
    return vector_for
