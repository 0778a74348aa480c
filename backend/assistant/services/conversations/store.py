"""
Conversation checkpoint and history store.

Checkpoints are overwritten in place while a reply streams. The final save
appends the completed turn to history and marks the checkpoint superseded
with the full text, in one transaction.
"""
import asyncio
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import asyncpg

from assistant.core.database_pool import get_pool
from assistant.core.exceptions import PersistenceError
from assistant.core.logging import get_logger
from assistant.models.chat import ChatMessage, ConversationCheckpoint

logger = get_logger(__name__)


class ConversationStore(ABC):
    @abstractmethod
    async def upsert_checkpoint(self, checkpoint: ConversationCheckpoint) -> None:
        """Insert or overwrite the checkpoint for its conversation."""

    @abstractmethod
    async def get_checkpoint(self, conversation_id: str) -> Optional[ConversationCheckpoint]:
        ...

    @abstractmethod
    async def save_conversation(
        self,
        conversation_id: str,
        user_id: Optional[str],
        messages: List[ChatMessage],
        model_id: Optional[str],
        final_text: Optional[str] = None,
    ) -> None:
        """
        Append the completed turn and supersede the checkpoint.

        ``final_text`` is everything streamed during the turn, across all
        model steps; it defaults to the last assistant message.
        """


def _final_text(messages: List[ChatMessage]) -> str:
    for message in reversed(messages):
        if message.role == "assistant":
            return message.text
    return ""


class InMemoryConversationStore(ConversationStore):
    def __init__(self):
        self.checkpoints: Dict[str, ConversationCheckpoint] = {}
        self.history: Dict[str, List[Dict[str, Any]]] = {}
        self.checkpoint_writes = 0
        self._lock = asyncio.Lock()

    async def upsert_checkpoint(self, checkpoint: ConversationCheckpoint) -> None:
        async with self._lock:
            self.checkpoints[checkpoint.conversation_id] = checkpoint.model_copy(
                update={"updated_at": datetime.now(timezone.utc)}
            )
            self.checkpoint_writes += 1

    async def get_checkpoint(self, conversation_id: str) -> Optional[ConversationCheckpoint]:
        return self.checkpoints.get(conversation_id)

    async def save_conversation(
        self,
        conversation_id: str,
        user_id: Optional[str],
        messages: List[ChatMessage],
        model_id: Optional[str],
        final_text: Optional[str] = None,
    ) -> None:
        async with self._lock:
            self.history.setdefault(conversation_id, []).append(
                {
                    "user_id": user_id,
                    "model_id": model_id,
                    "messages": [m.to_api() for m in messages],
                }
            )
            text = final_text if final_text is not None else _final_text(messages)
            existing = self.checkpoints.get(conversation_id)
            base = existing or ConversationCheckpoint(
                conversation_id=conversation_id,
                user_id=user_id,
                selected_model_id=model_id,
            )
            self.checkpoints[conversation_id] = base.model_copy(
                update={
                    "accumulated_text": text,
                    "last_checkpoint_length": len(text),
                    "superseded": True,
                    "updated_at": datetime.now(timezone.utc),
                }
            )


_UPSERT_CHECKPOINT = """
    INSERT INTO conversation_checkpoints (
        conversation_id, user_id, accumulated_text, last_checkpoint_length,
        selected_model_id, superseded, updated_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, now())
    ON CONFLICT (conversation_id) DO UPDATE SET
        accumulated_text = EXCLUDED.accumulated_text,
        last_checkpoint_length = EXCLUDED.last_checkpoint_length,
        selected_model_id = EXCLUDED.selected_model_id,
        superseded = EXCLUDED.superseded,
        updated_at = now()
"""

_SUPERSEDE_CHECKPOINT = """
    INSERT INTO conversation_checkpoints (
        conversation_id, user_id, accumulated_text, last_checkpoint_length,
        selected_model_id, superseded, updated_at
    )
    VALUES ($1, $2, $3, length($3), $4, true, now())
    ON CONFLICT (conversation_id) DO UPDATE SET
        accumulated_text = EXCLUDED.accumulated_text,
        last_checkpoint_length = EXCLUDED.last_checkpoint_length,
        superseded = true,
        updated_at = now()
"""


class PostgresConversationStore(ConversationStore):
    def __init__(self, pool: Optional[asyncpg.Pool] = None):
        self._pool = pool

    @property
    def pool(self) -> asyncpg.Pool:
        pool = self._pool if self._pool is not None else get_pool()
        if pool is None:
            raise PersistenceError("Database pool not initialized")
        return pool

    async def upsert_checkpoint(self, checkpoint: ConversationCheckpoint) -> None:
        try:
            await self.pool.execute(
                _UPSERT_CHECKPOINT,
                checkpoint.conversation_id,
                checkpoint.user_id,
                checkpoint.accumulated_text,
                checkpoint.last_checkpoint_length,
                checkpoint.selected_model_id,
                checkpoint.superseded,
            )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Checkpoint write failed: {e}") from e

    async def get_checkpoint(self, conversation_id: str) -> Optional[ConversationCheckpoint]:
        row = await self.pool.fetchrow(
            """
            SELECT conversation_id, user_id, accumulated_text, last_checkpoint_length,
                   selected_model_id, superseded, updated_at
            FROM conversation_checkpoints
            WHERE conversation_id = $1
            """,
            conversation_id,
        )
        return ConversationCheckpoint(**dict(row)) if row else None

    async def save_conversation(
        self,
        conversation_id: str,
        user_id: Optional[str],
        messages: List[ChatMessage],
        model_id: Optional[str],
        final_text: Optional[str] = None,
    ) -> None:
        if final_text is None:
            final_text = _final_text(messages)
        payload = json.dumps([m.to_api() for m in messages])
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        """
                        INSERT INTO conversation_history (conversation_id, user_id, model_id, messages)
                        VALUES ($1, $2, $3, $4::jsonb)
                        """,
                        conversation_id,
                        user_id,
                        model_id,
                        payload,
                    )
                    await conn.execute(
                        _SUPERSEDE_CHECKPOINT,
                        conversation_id,
                        user_id,
                        final_text,
                        model_id,
                    )
        except asyncpg.PostgresError as e:
            raise PersistenceError(f"Conversation save failed: {e}") from e


_conversation_store: Optional[ConversationStore] = None


def get_conversation_store() -> ConversationStore:
    global _conversation_store
    if _conversation_store is None:
        if get_pool() is not None:
            _conversation_store = PostgresConversationStore()
        else:
            logger.warning(
                "conversation_store_in_memory",
                message="Database pool not available. Conversations are kept in process memory.",
            )
            _conversation_store = InMemoryConversationStore()
    return _conversation_store
