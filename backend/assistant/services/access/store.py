"""
Quota state stores.

The premium counter is the only shared mutable state in the routing core.
``consume_premium`` must be an atomic compare-and-increment per user so
that two concurrent requests can never both pass the cap check on a stale
value.
"""
import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Optional

import asyncpg

from assistant.core.database_pool import get_pool
from assistant.core.logging import get_logger
from assistant.models.access import Tier, UserAccessState
from assistant.services.access import quota

logger = get_logger(__name__)


class QuotaStore(ABC):
    @abstractmethod
    async def get_state(self, user_id: str) -> UserAccessState:
        """Current state; unknown users are GUEST with zero usage."""

    @abstractmethod
    async def consume_premium(
        self,
        user_id: str,
        cap: int,
        now: datetime,
    ) -> Optional[UserAccessState]:
        """
        Atomically increment the premium counter if effective usage < cap.

        Returns:
            The updated state, or None when the cap is reached.
        """


class InMemoryQuotaStore(QuotaStore):
    """Process-local store; the lock makes check-and-increment atomic."""

    def __init__(self, states: Optional[Dict[str, UserAccessState]] = None):
        self._states: Dict[str, UserAccessState] = dict(states or {})
        self._lock = asyncio.Lock()

    async def get_state(self, user_id: str) -> UserAccessState:
        return self._states.get(user_id) or UserAccessState(user_id=user_id)

    async def consume_premium(
        self,
        user_id: str,
        cap: int,
        now: datetime,
    ) -> Optional[UserAccessState]:
        async with self._lock:
            current = self._states.get(user_id) or UserAccessState(user_id=user_id)
            updated = quota.consume_premium(current, cap, now)
            if updated is not None:
                self._states[user_id] = updated
            return updated


_SELECT_STATE = """
    SELECT id, tier, premium_usage_today, premium_usage_reset_at
    FROM users
    WHERE id = $1
"""

# One conditional UPDATE: the row lock serializes racers and the WHERE
# clause is re-checked against the committed row, so the cap holds.
_CONSUME_PREMIUM = """
    UPDATE users
    SET premium_usage_today = CASE
            WHEN premium_usage_reset_at IS NOT NULL AND $2 > premium_usage_reset_at THEN 1
            ELSE premium_usage_today + 1
        END,
        premium_usage_reset_at = CASE
            WHEN premium_usage_reset_at IS NULL OR $2 > premium_usage_reset_at THEN $3
            ELSE premium_usage_reset_at
        END
    WHERE id = $1
      AND (
            (premium_usage_reset_at IS NOT NULL AND $2 > premium_usage_reset_at)
            OR premium_usage_today < $4
      )
    RETURNING id, tier, premium_usage_today, premium_usage_reset_at
"""


def _row_to_state(row: asyncpg.Record) -> UserAccessState:
    return UserAccessState(
        user_id=row["id"],
        tier=Tier(row["tier"]),
        premium_usage_today=row["premium_usage_today"],
        premium_usage_reset_at=row["premium_usage_reset_at"],
    )


class PostgresQuotaStore(QuotaStore):
    def __init__(self, pool: Optional[asyncpg.Pool] = None):
        self._pool = pool

    @property
    def pool(self) -> asyncpg.Pool:
        pool = self._pool if self._pool is not None else get_pool()
        if pool is None:
            raise RuntimeError("Database pool not initialized")
        return pool

    async def get_state(self, user_id: str) -> UserAccessState:
        row = await self.pool.fetchrow(_SELECT_STATE, user_id)
        if row is None:
            return UserAccessState(user_id=user_id)
        return _row_to_state(row)

    async def consume_premium(
        self,
        user_id: str,
        cap: int,
        now: datetime,
    ) -> Optional[UserAccessState]:
        now = quota.as_utc(now)
        row = await self.pool.fetchrow(
            _CONSUME_PREMIUM,
            user_id,
            now,
            quota.next_utc_midnight(now),
            cap,
        )
        return _row_to_state(row) if row is not None else None


_quota_store: Optional[QuotaStore] = None


def get_quota_store() -> QuotaStore:
    """Postgres-backed store when the pool is up, otherwise in-memory."""
    global _quota_store
    if _quota_store is None:
        if get_pool() is not None:
            _quota_store = PostgresQuotaStore()
        else:
            logger.warning(
                "quota_store_in_memory",
                message="Database pool not available. Premium usage will not survive restarts.",
            )
            _quota_store = InMemoryQuotaStore()
    return _quota_store
