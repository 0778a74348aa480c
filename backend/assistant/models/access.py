"""
Tier, quota and model catalog types used by the access controller.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Tier(str, Enum):
    """Ordinal user tier: GUEST < TIER1 < TIER2 < TIER3 < ADMIN."""

    GUEST = "GUEST"
    TIER1 = "TIER1"
    TIER2 = "TIER2"
    TIER3 = "TIER3"
    ADMIN = "ADMIN"

    @property
    def level(self) -> int:
        return TIER_LEVELS[self]

    def allows(self, required: "Tier") -> bool:
        """True when this tier meets or exceeds ``required``."""
        return self.level >= required.level


TIER_LEVELS = {
    Tier.GUEST: 0,
    Tier.TIER1: 1,
    Tier.TIER2: 2,
    Tier.TIER3: 3,
    Tier.ADMIN: 4,
}


class UserAccessState(BaseModel):
    """Per-user tier and premium usage counter."""

    user_id: Optional[str] = None
    tier: Tier = Tier.GUEST
    premium_usage_today: int = Field(0, ge=0)
    premium_usage_reset_at: Optional[datetime] = Field(
        None,
        description="UTC midnight after which the counter is considered reset",
    )


class ModelDescriptor(BaseModel):
    """A selectable chat model, as supplied by the catalog."""

    id: str = Field(..., description="Catalog identifier used by clients")
    model_id: str = Field(..., description="Provider model name sent to the LLM API")
    display_name: str = ""
    provider: str = ""
    description: Optional[str] = None
    min_tier: Tier = Tier.GUEST
    is_premium: bool = False
    is_active: bool = True
    provider_enabled: bool = True
    sort_order: int = 0


class DenialReason(str, Enum):
    MODEL_UNAVAILABLE = "model unavailable"
    TIER_INSUFFICIENT = "tier insufficient"
    QUOTA_EXCEEDED = "quota exceeded"


class AccessDecision(BaseModel):
    """
    Outcome of an authorization check.

    A denial is a normal outcome, not an error: callers degrade to the
    default model instead of failing the request.
    """

    admitted: bool
    reason: Optional[DenialReason] = None
    consumes_quota: bool = False

    @classmethod
    def admit(cls, consumes_quota: bool = False) -> "AccessDecision":
        return cls(admitted=True, consumes_quota=consumes_quota)

    @classmethod
    def deny(cls, reason: DenialReason) -> "AccessDecision":
        return cls(admitted=False, reason=reason)
