"""
Chat model catalog.

The catalog is read-only from the routing core's point of view. Models are
listed only when both the model and its provider are enabled.
"""
import os
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

import asyncpg

from assistant.core.database_pool import get_pool
from assistant.core.logging import get_logger
from assistant.models.access import ModelDescriptor, Tier
from assistant.models.chat import ChatContext

logger = get_logger(__name__)


def default_model_id(context: ChatContext) -> str:
    """Catalog id of the fallback model for a chat surface."""
    default = os.getenv("LLM_DEFAULT_MODEL", "gpt-4o")
    if context == ChatContext.WIDGET:
        return os.getenv("LLM_WIDGET_MODEL", default)
    return default


class ModelCatalog(ABC):
    @abstractmethod
    async def get_model(self, model_id: str) -> Optional[ModelDescriptor]:
        """Look up by catalog id, regardless of enabled state."""

    @abstractmethod
    async def list_models(self) -> List[ModelDescriptor]:
        """Active models of enabled providers, by sort order."""

    async def default_model(self, context: ChatContext) -> ModelDescriptor:
        model_id = default_model_id(context)
        model = await self.get_model(model_id)
        if model is None:
            # Unknown ids still route; the provider may accept them.
            model = ModelDescriptor(id=model_id, model_id=model_id, display_name=model_id)
        return model


class InMemoryModelCatalog(ModelCatalog):
    def __init__(self, models: Optional[Iterable[ModelDescriptor]] = None):
        self._models: Dict[str, ModelDescriptor] = {m.id: m for m in models or ()}

    def add(self, model: ModelDescriptor) -> None:
        self._models[model.id] = model

    async def get_model(self, model_id: str) -> Optional[ModelDescriptor]:
        return self._models.get(model_id)

    async def list_models(self) -> List[ModelDescriptor]:
        models = [m for m in self._models.values() if m.is_active and m.provider_enabled]
        return sorted(models, key=lambda m: (m.sort_order, m.display_name))


_MODEL_COLUMNS = """
    m.id, m.model_id, m.display_name, m.description, m.min_tier,
    m.is_premium, m.is_active, m.sort_order,
    p.name AS provider, p.is_enabled AS provider_enabled
"""


def _row_to_model(row: asyncpg.Record) -> ModelDescriptor:
    return ModelDescriptor(
        id=row["id"],
        model_id=row["model_id"],
        display_name=row["display_name"] or row["id"],
        provider=row["provider"] or "",
        description=row["description"],
        min_tier=Tier(row["min_tier"]),
        is_premium=row["is_premium"],
        is_active=row["is_active"],
        provider_enabled=row["provider_enabled"],
        sort_order=row["sort_order"] or 0,
    )


class PostgresModelCatalog(ModelCatalog):
    def __init__(self, pool: Optional[asyncpg.Pool] = None):
        self._pool = pool

    @property
    def pool(self) -> asyncpg.Pool:
        pool = self._pool if self._pool is not None else get_pool()
        if pool is None:
            raise RuntimeError("Database pool not initialized")
        return pool

    async def get_model(self, model_id: str) -> Optional[ModelDescriptor]:
        row = await self.pool.fetchrow(
            f"""
            SELECT {_MODEL_COLUMNS}
            FROM ai_models m
            JOIN ai_providers p ON p.id = m.provider_id
            WHERE m.id = $1
            """,
            model_id,
        )
        return _row_to_model(row) if row else None

    async def list_models(self) -> List[ModelDescriptor]:
        rows = await self.pool.fetch(
            f"""
            SELECT {_MODEL_COLUMNS}
            FROM ai_models m
            JOIN ai_providers p ON p.id = m.provider_id
            WHERE m.is_active AND p.is_enabled
            ORDER BY m.sort_order, m.display_name
            """
        )
        return [_row_to_model(r) for r in rows]


_model_catalog: Optional[ModelCatalog] = None


def get_model_catalog() -> ModelCatalog:
    global _model_catalog
    if _model_catalog is None:
        if get_pool() is not None:
            _model_catalog = PostgresModelCatalog()
        else:
            logger.warning(
                "model_catalog_in_memory",
                message="Database pool not available. Serving the default model only.",
            )
            default = default_model_id(ChatContext.FULL_PAGE)
            _model_catalog = InMemoryModelCatalog(
                [ModelDescriptor(id=default, model_id=default, display_name=default)]
            )
    return _model_catalog
