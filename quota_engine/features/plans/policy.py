"""
quota_engine/features/plans/policy.py

Non-quota plan policies (model routing, attachment retention).

Routing follows the effective model tier; retention follows the effective plan.
"""

from typing import TYPE_CHECKING, Optional, Union

from quota_engine.features.plans.catalog import DEFAULT_PLAN_CATALOG, PlanCatalog
from quota_engine.features.plans.resolver import resolve_personal_plan
from quota_engine.models.entitlement import EffectiveEntitlements, PlanSnapshot
from quota_engine.models.plan import MODEL_TIER_TO_PLAN, PlanKey, PlanPolicies
from quota_engine.models.subscription import SubscriptionStatus, UserRole

if TYPE_CHECKING:
    from quota_engine.features.entitlements.service import EntitlementResolver


def resolve_policies_for_plan(
    plan: PlanKey,
    catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
) -> PlanPolicies:
    entry = catalog[plan]
    return PlanPolicies(
        model_routing=entry.model_routing,
        attachment_retention_days=entry.attachment_retention_days,
    )


def resolve_policies_for_entitlements(
    entitlements: EffectiveEntitlements,
    catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
) -> PlanPolicies:
    routing_plan = MODEL_TIER_TO_PLAN[entitlements.model_tier]
    return PlanPolicies(
        model_routing=catalog[routing_plan].model_routing,
        attachment_retention_days=catalog[entitlements.plan].attachment_retention_days,
    )


def resolve_plan_snapshot(
    resolver: "EntitlementResolver",
    user_id: str,
    subscription_status: Optional[Union[str, SubscriptionStatus]] = None,
    user_role: Optional[Union[str, UserRole]] = None,
    plan_id: Optional[str] = None,
    is_guest: bool = False,
) -> PlanSnapshot:
    """Personal plan, effective entitlements and the policies they imply."""
    personal_plan = resolve_personal_plan(
        subscription_status=subscription_status,
        user_role=user_role,
        plan_id=plan_id,
        is_guest=is_guest,
    )
    effective = resolver.resolve_effective_entitlements(
        user_id,
        subscription_status=subscription_status,
        user_role=user_role,
        plan_id=plan_id,
        is_guest=is_guest,
    )
    return PlanSnapshot(
        personal_plan=personal_plan,
        effective=effective,
        policies=resolve_policies_for_entitlements(effective, resolver.catalog),
    )


def get_attachment_retention_days(
    subscription_status: Optional[Union[str, SubscriptionStatus]] = None,
    user_role: Optional[Union[str, UserRole]] = None,
    plan_id: Optional[str] = None,
    is_guest: bool = False,
    catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
) -> int:
    """Retention window for a user's attachments, from the personal plan."""
    plan = resolve_personal_plan(
        subscription_status=subscription_status,
        user_role=user_role,
        plan_id=plan_id,
        is_guest=is_guest,
    )
    return catalog[plan].attachment_retention_days
