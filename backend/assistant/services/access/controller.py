"""
Access controller: admit or deny a chat model for a user.

Non-premium checks are pure. Premium admission for capped tiers goes
through ``QuotaStore.consume_premium`` so the counter cannot overshoot the
daily cap under concurrency.
"""
from datetime import datetime
from typing import Optional

from assistant.core.logging import get_logger
from assistant.core.metrics import record_access_decision
from assistant.models.access import AccessDecision, DenialReason, ModelDescriptor, Tier, UserAccessState
from assistant.services.access import quota
from assistant.services.access.store import QuotaStore, get_quota_store

logger = get_logger(__name__)


class AccessController:
    def __init__(self, store: Optional[QuotaStore] = None):
        self._store = store

    @property
    def store(self) -> QuotaStore:
        return self._store if self._store is not None else get_quota_store()

    async def get_state(self, user_id: Optional[str]) -> UserAccessState:
        """Anonymous callers are GUEST with zero usage."""
        if not user_id:
            return UserAccessState(tier=Tier.GUEST)
        return await self.store.get_state(user_id)

    async def get_state_or_guest(self, user_id: Optional[str]) -> UserAccessState:
        """Like get_state, but a store failure degrades to GUEST."""
        try:
            return await self.get_state(user_id)
        except Exception as exc:
            logger.warning(
                "user_state_lookup_failed",
                user_id=user_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return UserAccessState(user_id=user_id, tier=Tier.GUEST)

    async def authorize(
        self,
        user_id: Optional[str],
        model: ModelDescriptor,
        now: Optional[datetime] = None,
    ) -> AccessDecision:
        now = now or quota.utcnow()
        state = await self.get_state(user_id)
        decision = quota.check_access(state, model, now)

        if decision.admitted and decision.consumes_quota:
            cap = quota.premium_cap(state.tier) or 0
            updated = await self.store.consume_premium(user_id, cap, now)
            if updated is None:
                decision = AccessDecision.deny(DenialReason.QUOTA_EXCEEDED)
            else:
                logger.debug(
                    "premium_usage_incremented",
                    user_id=user_id,
                    model_id=model.id,
                    premium_usage_today=updated.premium_usage_today,
                )

        reason = decision.reason.value if decision.reason else "ok"
        record_access_decision(decision.admitted, reason)
        logger.info(
            "access_decision",
            user_id=user_id,
            tier=state.tier.value,
            model_id=model.id,
            admitted=decision.admitted,
            reason=reason,
        )
        return decision


_access_controller: Optional[AccessController] = None


def get_access_controller() -> AccessController:
    global _access_controller
    if _access_controller is None:
        _access_controller = AccessController()
    return _access_controller
