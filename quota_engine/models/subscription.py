"""
quota_engine/models/subscription.py

Personal subscription and the user context handed to the engine.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict


class SubscriptionStatus(str, Enum):
    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"
    PAST_DUE = "PAST_DUE"


class UserRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


ADMIN_ROLES = frozenset({UserRole.ADMIN.value, UserRole.SUPER_ADMIN.value})


class Subscription(BaseModel):
    """
    Subscription belongs to exactly one user.

    Created on the first billing event, updated by every subscription
    webhook, never hard-deleted.
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    status: SubscriptionStatus
    plan_id: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    converted_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None


class UserContext(BaseModel):
    """Identity facts already resolved by authentication."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: UserRole = UserRole.USER
    is_guest: bool = False
    subscription: Optional[Subscription] = None

    @property
    def subscription_status(self) -> Optional[str]:
        return self.subscription.status.value if self.subscription else None

    @property
    def plan_id(self) -> Optional[str]:
        return self.subscription.plan_id if self.subscription else None
