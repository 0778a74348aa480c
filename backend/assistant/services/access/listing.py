"""
Model selector listing.

Annotates each catalog model with whether the caller may use it, so the
client can grey out locked entries instead of discovering the denial at
chat time.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from assistant.models.access import ModelDescriptor, UserAccessState
from assistant.services.access import quota


def describe_model(state: UserAccessState, model: ModelDescriptor, now: datetime) -> Dict[str, Any]:
    decision = quota.check_access(state, model, now)
    return {
        "id": model.id,
        "model_id": model.model_id,
        "display_name": model.display_name,
        "provider": model.provider,
        "description": model.description,
        "is_premium": model.is_premium,
        "required_tier": model.min_tier.value,
        "is_accessible": decision.admitted,
        "reason": decision.reason.value if decision.reason else None,
    }


def daily_limit(state: UserAccessState, now: datetime) -> Optional[Dict[str, Any]]:
    """Usage summary for capped tiers; None for GUEST and unlimited tiers."""
    cap = quota.premium_cap(state.tier)
    if not cap:
        return None
    if quota.reset_due(state, now) or state.premium_usage_reset_at is None:
        resets_at = quota.next_utc_midnight(now)
    else:
        resets_at = quota.as_utc(state.premium_usage_reset_at)
    return {
        "used": quota.effective_usage(state, now),
        "max": cap,
        "resets_at": resets_at.isoformat(),
    }


def build_model_listing(
    state: UserAccessState,
    models: List[ModelDescriptor],
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or quota.utcnow()
    cap = quota.premium_cap(state.tier)
    can_use_premium = cap is None or (
        cap > 0 and quota.effective_usage(state, now) < cap
    )
    return {
        "models": [describe_model(state, m, now) for m in models],
        "user_tier": state.tier.value,
        "can_use_premium": can_use_premium,
        "daily_limit": daily_limit(state, now),
    }
