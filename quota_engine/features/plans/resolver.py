"""
quota_engine/features/plans/resolver.py

Personal plan resolution.

Maps (subscription status, role, plan id, guest flag) to a PlanKey.
Pure and deterministic: no I/O, no clock, never raises on bad plan ids.
"""

from typing import Callable, List, Optional, Tuple, Union

from quota_engine.models.plan import PlanKey
from quota_engine.models.subscription import ADMIN_ROLES, SubscriptionStatus, UserRole


PlanIdPredicate = Callable[[str], bool]


def _contains(fragment: str) -> PlanIdPredicate:
    def predicate(normalized_plan_id: str) -> bool:
        return fragment in normalized_plan_id
    predicate.__name__ = f"contains_{fragment}"
    return predicate


# Evaluated top to bottom on the lowercased plan id; first match wins.
# Invariant: a matcher must come before any matcher whose fragment it
# contains ("basic_plus" before "basic"), otherwise the broader one wins.
PLAN_ID_MATCHERS: List[Tuple[PlanIdPredicate, PlanKey]] = [
    (_contains("pro"), PlanKey.PRO),
    (_contains("basic_plus"), PlanKey.BASIC_PLUS),
    (_contains("basic"), PlanKey.BASIC),
]


def _normalize(value: Optional[Union[str, SubscriptionStatus, UserRole]]) -> Optional[str]:
    if value is None:
        return None
    raw = value.value if hasattr(value, "value") else value
    if not isinstance(raw, str):
        return None
    return raw.strip().upper()


def is_admin_role(role: Optional[Union[str, UserRole]]) -> bool:
    return _normalize(role) in ADMIN_ROLES


def parse_plan_key_from_plan_id(plan_id: Optional[str]) -> Optional[PlanKey]:
    """Return the plan a billing plan id refers to, or None if unrecognized."""
    if not plan_id or not isinstance(plan_id, str):
        return None

    normalized_plan_id = plan_id.strip().lower()
    for predicate, plan in PLAN_ID_MATCHERS:
        if predicate(normalized_plan_id):
            return plan
    return None


def resolve_personal_plan(
    subscription_status: Optional[Union[str, SubscriptionStatus]] = None,
    user_role: Optional[Union[str, UserRole]] = None,
    plan_id: Optional[str] = None,
    is_guest: bool = False,
) -> PlanKey:
    """
    Resolve the user's personal plan.

    Precedence (first match wins):
    1. ADMIN / SUPER_ADMIN role -> ADMIN, regardless of anything else
    2. guest -> GUEST
    3. ACTIVE subscription with a recognized plan id -> that plan
    4. ACTIVE subscription otherwise -> BASIC
    5. anything else -> TRIAL
    """
    if is_admin_role(user_role):
        return PlanKey.ADMIN

    if is_guest:
        return PlanKey.GUEST

    if _normalize(subscription_status) == SubscriptionStatus.ACTIVE.value:
        return parse_plan_key_from_plan_id(plan_id) or PlanKey.BASIC

    return PlanKey.TRIAL
