"""
quota_engine/models/rate_limit.py

Admission decisions and upgrade guidance.

Denial reasons are enumerable so callers branch on values, not prose.
"""

from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict

from quota_engine.models.entitlement import EffectiveEntitlements
from quota_engine.models.plan import PlanKey, QuotaVector
from quota_engine.models.usage import DailyUsageData


class DenialReason(str, Enum):
    """Violated dimension, in evaluation priority order."""
    REQUESTS = "Daily request limit reached"
    INPUT_TOKENS = "Daily input token limit reached"
    OUTPUT_TOKENS = "Daily output token limit reached"
    COST = "Daily spending limit reached"


class LimitType(str, Enum):
    REQUESTS = "requests"
    TOKENS = "tokens"
    COST = "cost"
    GENERAL = "general"


DENIAL_LIMIT_TYPES: Dict[DenialReason, LimitType] = {
    DenialReason.REQUESTS: LimitType.REQUESTS,
    DenialReason.INPUT_TOKENS: LimitType.TOKENS,
    DenialReason.OUTPUT_TOKENS: LimitType.TOKENS,
    DenialReason.COST: LimitType.COST,
}


class PercentUsed(BaseModel):
    model_config = ConfigDict(frozen=True)

    requests: float
    input_tokens: float
    output_tokens: float
    cost: float

    @property
    def max(self) -> float:
        return max(self.requests, self.input_tokens, self.output_tokens, self.cost)


class UpgradeInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    current_plan: PlanKey
    suggested_plan: PlanKey
    current_plan_label: str
    suggested_plan_label: str
    upgrade_url: str
    cta_message: str
    limit_type: LimitType


class RateLimitResult(BaseModel):
    """
    Outcome of an admission check.

    percent_used is always populated so callers can warn before the hard
    limit; upgrade_info is only set on denial (and may still be None when
    no higher plan exists).
    """
    model_config = ConfigDict(frozen=True)

    allowed: bool
    usage: DailyUsageData
    limits: QuotaVector
    percent_used: PercentUsed
    entitlements: EffectiveEntitlements
    reason: Optional[DenialReason] = None
    upgrade_info: Optional[UpgradeInfo] = None

    def public_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "usage": self.usage.model_dump(),
            "limits": self.limits.public_dict(),
            "percent_used": self.percent_used.model_dump(),
            "entitlements": self.entitlements.public_dict(),
            "upgrade_info": self.upgrade_info.model_dump(mode="json") if self.upgrade_info else None,
        }


class RemainingAllowance(BaseModel):
    model_config = ConfigDict(frozen=True)

    requests: float
    input_tokens: float
    output_tokens: float
    cost_usd: float


class RateLimitStatusLevel(str, Enum):
    OK = "ok"
    WARNING = "warning"
    LIMIT_REACHED = "limit-reached"


class RateLimitStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: RateLimitStatusLevel
    message: str
    percent_used: float


class UsageSummary(BaseModel):
    """Usage, limits and provenance for a user's current day."""
    model_config = ConfigDict(frozen=True)

    usage: DailyUsageData
    limits: QuotaVector
    tier: str  # ADMIN | ACTIVE | TRIAL
    subscription_status: Optional[str] = None
    entitlements: EffectiveEntitlements

    def public_dict(self) -> Dict[str, Any]:
        return {
            "usage": self.usage.model_dump(),
            "limits": self.limits.public_dict(),
            "tier": self.tier,
            "subscription_status": self.subscription_status,
            "entitlements": self.entitlements.public_dict(),
        }
