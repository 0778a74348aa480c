"""
Embedding gateway: text -> fixed-length float vector.

Two backends:
- ``http``: OpenAI-compatible ``/embeddings`` endpoint over httpx
- ``local``: SentenceTransformers model loaded in-process

Environment configuration:
- EMBEDDING_BACKEND: "http" (default) or "local"
- EMBEDDING_API_BASE / EMBEDDING_API_KEY: default to LLM_API_BASE / LLM_API_KEY
- EMBEDDING_MODEL: model name (default: text-embedding-3-small,
  or all-MiniLM-L6-v2 for the local backend)
- EMBEDDING_TIMEOUT_SECONDS: request deadline (default: 3.0)

Every failure is raised as RetrievalError so callers can degrade to
empty results.
"""
import asyncio
import os
import time
from abc import ABC, abstractmethod
from typing import List, Optional

import httpx
from sentence_transformers import SentenceTransformer

from assistant.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from assistant.core.exceptions import RetrievalError
from assistant.core.logging import get_logger
from assistant.core.metrics import record_embedding_request

logger = get_logger(__name__)

DEFAULT_HTTP_MODEL = "text-embedding-3-small"
DEFAULT_LOCAL_MODEL = "all-MiniLM-L6-v2"


class EmbeddingGateway(ABC):
    """Black-box embedding capability."""

    backend: str = "unknown"

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed ``text``; raises RetrievalError on any failure."""


class HTTPEmbeddingGateway(EmbeddingGateway):
    """OpenAI-compatible embeddings over HTTP."""

    backend = "http"

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        model: str = DEFAULT_HTTP_MODEL,
        timeout_seconds: float = 3.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self.circuit_breaker = CircuitBreaker(name="embeddings")

    async def _post(self, payload: dict) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        async with httpx.AsyncClient(
            timeout=self.timeout_seconds,
            transport=self._transport,
        ) as client:
            response = await client.post(
                f"{self.api_base}/embeddings",
                headers=headers,
                json=payload,
            )
            response.raise_for_status()
            return response

    async def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise RetrievalError("Cannot embed empty text")
        if not self.api_key:
            raise RetrievalError("Embedding API key not configured")

        start = time.time()
        try:
            response = await self.circuit_breaker.call_async(
                self._post,
                {"model": self.model, "input": text},
            )
            vector = response.json()["data"][0]["embedding"]
        except CircuitBreakerOpenError as exc:
            record_embedding_request(self.backend, False, time.time() - start)
            raise RetrievalError(str(exc)) from exc
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as exc:
            record_embedding_request(self.backend, False, time.time() - start)
            logger.warning(
                "embedding_request_failed",
                backend=self.backend,
                model=self.model,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise RetrievalError(f"Embedding request failed: {exc}") from exc

        record_embedding_request(self.backend, True, time.time() - start)
        return [float(v) for v in vector]


class LocalEmbeddingGateway(EmbeddingGateway):
    """SentenceTransformers embeddings computed in a worker thread."""

    backend = "local"

    def __init__(self, model_name: str = DEFAULT_LOCAL_MODEL):
        self.model_name = model_name
        self.model: Optional[SentenceTransformer] = None

    def load_model(self) -> SentenceTransformer:
        if self.model is None:
            logger.info("embedding_model_loading", model_name=self.model_name)
            start = time.time()
            self.model = SentenceTransformer(self.model_name)
            logger.info(
                "embedding_model_loaded",
                model_name=self.model_name,
                load_time_ms=int((time.time() - start) * 1000),
            )
        return self.model

    def _encode(self, text: str) -> List[float]:
        model = self.load_model()
        vector = model.encode(text, convert_to_numpy=True, normalize_embeddings=True)
        return vector.astype(float).tolist()

    async def embed(self, text: str) -> List[float]:
        if not text or not text.strip():
            raise RetrievalError("Cannot embed empty text")

        start = time.time()
        try:
            vector = await asyncio.to_thread(self._encode, text)
        except Exception as exc:
            record_embedding_request(self.backend, False, time.time() - start)
            logger.error(
                "embedding_generation_failed",
                backend=self.backend,
                model=self.model_name,
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=True,
            )
            raise RetrievalError(f"Local embedding failed: {exc}") from exc

        record_embedding_request(self.backend, True, time.time() - start)
        return vector


_embedding_gateway: Optional[EmbeddingGateway] = None


def get_embedding_gateway() -> EmbeddingGateway:
    """Global embedding gateway, selected by EMBEDDING_BACKEND."""
    global _embedding_gateway
    if _embedding_gateway is None:
        backend = os.getenv("EMBEDDING_BACKEND", "http").lower()
        if backend == "local":
            _embedding_gateway = LocalEmbeddingGateway(
                model_name=os.getenv("EMBEDDING_MODEL", DEFAULT_LOCAL_MODEL),
            )
        else:
            _embedding_gateway = HTTPEmbeddingGateway(
                api_base=os.getenv(
                    "EMBEDDING_API_BASE",
                    os.getenv("LLM_API_BASE", "https://api.openai.com/v1"),
                ),
                api_key=os.getenv("EMBEDDING_API_KEY") or os.getenv("LLM_API_KEY"),
                model=os.getenv("EMBEDDING_MODEL", DEFAULT_HTTP_MODEL),
                timeout_seconds=float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "3.0") or "3.0"),
            )
        logger.info("embedding_gateway_selected", backend=_embedding_gateway.backend)
    return _embedding_gateway
