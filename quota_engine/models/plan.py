"""
quota_engine/models/plan.py

Plan keys, model tiers and quota vectors.

Plans are pricing tiers (GUEST .. PRO, plus ADMIN); model tiers are a
separate ordered classification controlling which model quality a plan
unlocks. Neither carries prices.
"""

from enum import Enum
from typing import Dict, Tuple
from pydantic import BaseModel, ConfigDict, Field


# Sentinel for "no limit" on the daily dimensions
UNLIMITED = float("inf")


class PlanKey(str, Enum):
    """Canonical plan identifiers, declared worst to best."""
    GUEST = "GUEST"
    TRIAL = "TRIAL"
    BASIC = "BASIC"
    BASIC_PLUS = "BASIC_PLUS"
    PRO = "PRO"
    ADMIN = "ADMIN"


class ModelTier(str, Enum):
    """Model access tiers, declared lowest to highest."""
    TRIAL = "TRIAL"
    BASIC = "BASIC"
    BASIC_PLUS = "BASIC_PLUS"
    PRO = "PRO"
    ENTERPRISE = "ENTERPRISE"
    ADMIN = "ADMIN"


PLAN_ORDER: Tuple[PlanKey, ...] = tuple(PlanKey)

MODEL_TIER_PRIORITY: Dict[ModelTier, int] = {tier: index for index, tier in enumerate(ModelTier)}

MODEL_TIER_TO_PLAN: Dict[ModelTier, PlanKey] = {
    ModelTier.TRIAL: PlanKey.TRIAL,
    ModelTier.BASIC: PlanKey.BASIC,
    ModelTier.BASIC_PLUS: PlanKey.BASIC_PLUS,
    ModelTier.PRO: PlanKey.PRO,
    ModelTier.ENTERPRISE: PlanKey.PRO,
    ModelTier.ADMIN: PlanKey.ADMIN,
}


class QuotaVector(BaseModel):
    """
    Daily limits enforced for a plan or contract.

    Field order is the comparison order used when two sources share a
    model tier: requests, input tokens, output tokens, cost, context messages.
    The four daily dimensions may be UNLIMITED.
    """
    model_config = ConfigDict(frozen=True)

    max_requests_per_day: float = Field(ge=0)
    max_input_tokens_per_day: float = Field(ge=0)
    max_output_tokens_per_day: float = Field(ge=0)
    max_cost_per_day_usd: float = Field(ge=0)
    max_context_messages: int = Field(ge=0)

    def as_tuple(self) -> Tuple[float, ...]:
        return tuple(getattr(self, name) for name in QUOTA_FIELDS)

    def public_dict(self) -> Dict[str, object]:
        """Serializable view: unlimited dimensions become None."""
        return {
            name: (None if value == UNLIMITED else value)
            for name, value in self.model_dump().items()
        }


QUOTA_FIELDS: Tuple[str, ...] = tuple(QuotaVector.model_fields)


class ModelRouting(BaseModel):
    """Model ids used by the chat pipeline for a plan."""
    model_config = ConfigDict(frozen=True)

    orchestrator: str
    sub_agent: str
    maintenance: str


class PlanCatalogEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    model_tier: ModelTier
    limits: QuotaVector
    attachment_retention_days: int = Field(ge=0)
    model_routing: ModelRouting
    display_name: str


class PlanPolicies(BaseModel):
    """Non-quota policies derived from the effective entitlements."""
    model_config = ConfigDict(frozen=True)

    model_routing: ModelRouting
    attachment_retention_days: int
