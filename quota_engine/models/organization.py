"""
quota_engine/models/organization.py

Organization memberships and contracts.

A contract belongs to exactly one organization and stores fully-resolved
limits (defaults from its base plan are applied when it is written).
An organization may have no contract at all.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from quota_engine.models.plan import ModelTier, PlanKey, QuotaVector


class OrganizationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    ARCHIVED = "ARCHIVED"


class MembershipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REMOVED = "REMOVED"
    BLOCKED = "BLOCKED"


class MembershipRole(str, Enum):
    OWNER = "OWNER"
    MEMBER = "MEMBER"


class OrganizationBasePlan(str, Enum):
    """Plans an organization contract can be based on."""
    BASIC = "BASIC"
    BASIC_PLUS = "BASIC_PLUS"
    PRO = "PRO"

    @property
    def plan_key(self) -> PlanKey:
        return PlanKey(self.value)


class OrganizationMembership(BaseModel):
    """A user's membership together with the organization fields resolution needs."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    organization_id: str
    organization_name: str
    organization_status: OrganizationStatus = OrganizationStatus.ACTIVE
    status: MembershipStatus = MembershipStatus.ACTIVE
    role: MembershipRole = MembershipRole.MEMBER

    @property
    def is_effective(self) -> bool:
        return (
            self.status == MembershipStatus.ACTIVE
            and self.organization_status == OrganizationStatus.ACTIVE
        )


class OrganizationContract(BaseModel):
    """Stored contract record."""
    model_config = ConfigDict(frozen=True)

    organization_id: str
    base_plan: OrganizationBasePlan
    seat_limit: int = Field(ge=1)
    plan_label: str
    model_tier: ModelTier
    limits: QuotaVector
    version: int = 1
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrganizationContractInput(BaseModel):
    """
    Contract as submitted by an operator.

    Any omitted field falls back to the base plan default when the
    contract is saved.
    """
    base_plan: OrganizationBasePlan = OrganizationBasePlan.BASIC
    seat_limit: Optional[int] = Field(default=None, ge=1)
    plan_label: Optional[str] = None
    model_tier: Optional[ModelTier] = None
    max_requests_per_day: Optional[int] = Field(default=None, ge=0)
    max_input_tokens_per_day: Optional[int] = Field(default=None, ge=0)
    max_output_tokens_per_day: Optional[int] = Field(default=None, ge=0)
    max_cost_per_day_usd: Optional[float] = Field(default=None, ge=0)
    max_context_messages: Optional[int] = Field(default=None, ge=0)
