"""
quota_engine/models/entitlement.py

Entitlement sources and the merged result enforced for a request.
"""

from enum import Enum
from typing import Any, Dict, List
from pydantic import BaseModel, ConfigDict

from quota_engine.models.plan import ModelTier, PlanKey, PlanPolicies, QuotaVector


class SourceType(str, Enum):
    PERSONAL = "personal"
    ORGANIZATION = "organization"


class EntitlementSource(BaseModel):
    """
    A candidate policy considered by the merger.

    Provenance (type, source_id, source_label) is kept for auditability.
    """
    model_config = ConfigDict(frozen=True)

    type: SourceType
    source_id: str
    source_label: str
    plan: PlanKey
    model_tier: ModelTier
    limits: QuotaVector

    def provenance(self) -> Dict[str, str]:
        return {
            "type": self.type.value,
            "source_id": self.source_id,
            "source_label": self.source_label,
        }


class EffectiveEntitlements(BaseModel):
    """Winning limits and tier. Recomputed per request, never persisted."""
    model_config = ConfigDict(frozen=True)

    limits: QuotaVector
    model_tier: ModelTier
    plan: PlanKey
    sources: List[EntitlementSource]

    @classmethod
    def from_source(cls, source: EntitlementSource) -> "EffectiveEntitlements":
        return cls(
            limits=source.limits,
            model_tier=source.model_tier,
            plan=source.plan,
            sources=[source],
        )

    def public_dict(self) -> Dict[str, Any]:
        return {
            "model_tier": self.model_tier.value,
            "plan": self.plan.value,
            "sources": [source.provenance() for source in self.sources],
        }


class PlanSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    personal_plan: PlanKey
    effective: EffectiveEntitlements
    policies: PlanPolicies
