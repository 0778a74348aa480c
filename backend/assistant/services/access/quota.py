"""
Pure access rules.

``authorize`` is the whole decision state machine over
(tier, model minimum tier, premium usage counter, reset timestamp). It has
no side effects; stores use ``consume_premium`` to apply the same
transition atomically.

Reset is lazy: once ``now`` is past ``premium_usage_reset_at`` the counter
is treated as 0, and it is only physically reset by the next accepted
premium request.
"""
from datetime import datetime, time, timedelta, timezone
from typing import Dict, Optional, Tuple

from assistant.models.access import (
    AccessDecision,
    DenialReason,
    ModelDescriptor,
    Tier,
    UserAccessState,
)

# None means unlimited.
PREMIUM_DAILY_LIMITS: Dict[Tier, Optional[int]] = {
    Tier.GUEST: 0,
    Tier.TIER1: 10,
    Tier.TIER2: None,
    Tier.TIER3: None,
    Tier.ADMIN: None,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_utc_midnight(now: datetime) -> datetime:
    """The first UTC midnight strictly after ``now``."""
    now = as_utc(now)
    return datetime.combine(now.date() + timedelta(days=1), time(0), tzinfo=timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def reset_due(state: UserAccessState, now: datetime) -> bool:
    return (
        state.premium_usage_reset_at is not None
        and as_utc(now) > as_utc(state.premium_usage_reset_at)
    )


def effective_usage(state: UserAccessState, now: datetime) -> int:
    """Premium usage that counts against today's cap."""
    return 0 if reset_due(state, now) else state.premium_usage_today


def premium_cap(tier: Tier) -> Optional[int]:
    return PREMIUM_DAILY_LIMITS.get(tier, 0)


def consume_premium(state: UserAccessState, cap: int, now: datetime) -> Optional[UserAccessState]:
    """
    Increment the premium counter if it is below ``cap``.

    Returns:
        The updated state, or None when the cap is already reached.
    """
    if reset_due(state, now):
        usage = 0
        reset_at = next_utc_midnight(now)
    else:
        usage = state.premium_usage_today
        reset_at = state.premium_usage_reset_at or next_utc_midnight(now)

    if usage >= cap:
        return None

    return state.model_copy(
        update={
            "premium_usage_today": usage + 1,
            "premium_usage_reset_at": reset_at,
        }
    )


def check_access(state: UserAccessState, model: ModelDescriptor, now: datetime) -> AccessDecision:
    """Decide admit/deny without touching the counter."""
    if not model.is_active or not model.provider_enabled:
        return AccessDecision.deny(DenialReason.MODEL_UNAVAILABLE)

    if not state.tier.allows(model.min_tier):
        return AccessDecision.deny(DenialReason.TIER_INSUFFICIENT)

    if model.is_premium:
        cap = premium_cap(state.tier)
        if cap is None:
            return AccessDecision.admit()
        if cap == 0:
            return AccessDecision.deny(DenialReason.TIER_INSUFFICIENT)
        if effective_usage(state, now) >= cap:
            return AccessDecision.deny(DenialReason.QUOTA_EXCEEDED)
        return AccessDecision.admit(consumes_quota=True)

    return AccessDecision.admit()


def authorize(
    state: UserAccessState,
    model: ModelDescriptor,
    now: datetime,
) -> Tuple[AccessDecision, UserAccessState]:
    """
    Full transition: decision plus the state to persist.

    Only an admitted, quota-consuming request changes the state.
    """
    decision = check_access(state, model, now)
    if not decision.consumes_quota:
        return decision, state

    updated = consume_premium(state, premium_cap(state.tier) or 0, now)
    if updated is None:
        return AccessDecision.deny(DenialReason.QUOTA_EXCEEDED), state
    return decision, updated
