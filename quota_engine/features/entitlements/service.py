"""
quota_engine/features/entitlements/service.py

Entitlement merging.

Handles:
- Building the personal entitlement source
- Total ordering of candidate sources (model tier, then quota fields)
- Choosing the single effective policy for a request
"""

from functools import cmp_to_key
from typing import List, Optional, Sequence, Union
import logging

from quota_engine.features.organizations.contracts import resolve_organization_sources
from quota_engine.features.organizations.repository import OrganizationRepository
from quota_engine.features.plans.catalog import DEFAULT_PLAN_CATALOG, PlanCatalog
from quota_engine.features.plans.resolver import is_admin_role, resolve_personal_plan
from quota_engine.models.entitlement import EffectiveEntitlements, EntitlementSource, SourceType
from quota_engine.models.plan import MODEL_TIER_PRIORITY, PlanKey
from quota_engine.models.subscription import SubscriptionStatus, UserRole


logger = logging.getLogger(__name__)

PERSONAL_ADMIN_SOURCE_ID = "personal-admin"
PERSONAL_SUBSCRIPTION_SOURCE_ID = "personal-subscription"
PERSONAL_FALLBACK_SOURCE_ID = "personal-fallback"
PERSONAL_FALLBACK_LABEL = "Personal fallback (missing organization contract)"


def build_personal_source(
    plan_key: PlanKey,
    is_admin: bool = False,
    catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
) -> EntitlementSource:
    entry = catalog[plan_key]
    if is_admin:
        source_id, source_label = PERSONAL_ADMIN_SOURCE_ID, "Admin role"
    elif plan_key == PlanKey.GUEST:
        source_id, source_label = PERSONAL_SUBSCRIPTION_SOURCE_ID, "Guest"
    else:
        source_id, source_label = PERSONAL_SUBSCRIPTION_SOURCE_ID, f"Personal {plan_key.value}"

    return EntitlementSource(
        type=SourceType.PERSONAL,
        source_id=source_id,
        source_label=source_label,
        plan=plan_key,
        model_tier=entry.model_tier,
        limits=entry.limits,
    )


def _sign(value: float) -> int:
    return (value > 0) - (value < 0)


def compare_entitlement_vectors(a: EntitlementSource, b: EntitlementSource) -> int:
    """
    Compare two sources: model tier first, then quota fields in declared order.

    Returns the sign of the first difference (1 if a is better, -1 if b is
    better, 0 on a complete tie).
    """
    tier_diff = MODEL_TIER_PRIORITY[a.model_tier] - MODEL_TIER_PRIORITY[b.model_tier]
    if tier_diff:
        return _sign(tier_diff)

    for a_value, b_value in zip(a.limits.as_tuple(), b.limits.as_tuple()):
        # UNLIMITED == UNLIMITED compares equal, no inf - inf arithmetic
        if a_value != b_value:
            return 1 if a_value > b_value else -1
    return 0


def _rank(a: EntitlementSource, b: EntitlementSource) -> int:
    result = compare_entitlement_vectors(a, b)
    if result:
        return result
    # Complete tie: smaller source_id ranks higher
    if a.source_id == b.source_id:
        return 0
    return 1 if a.source_id < b.source_id else -1


def pick_best_source(candidates: Sequence[EntitlementSource]) -> Optional[EntitlementSource]:
    """Highest-ranked source, independent of input order."""
    if not candidates:
        return None
    return max(candidates, key=cmp_to_key(_rank))


def merge_entitlements(
    personal: EntitlementSource,
    organization_sources: Sequence[EntitlementSource],
    *,
    is_guest: bool = False,
    had_memberships: bool = False,
) -> EffectiveEntitlements:
    """
    Pick the effective policy.

    Organization contracts replace the personal plan entirely; they are
    never combined field by field.
    """
    if is_guest or personal.plan == PlanKey.ADMIN:
        return EffectiveEntitlements.from_source(personal)

    if not organization_sources:
        if had_memberships:
            personal = personal.model_copy(update={
                "source_id": PERSONAL_FALLBACK_SOURCE_ID,
                "source_label": PERSONAL_FALLBACK_LABEL,
            })
        return EffectiveEntitlements.from_source(personal)

    best = pick_best_source(organization_sources)
    return EffectiveEntitlements.from_source(best)


class EntitlementResolver:
    """Resolves effective entitlements from the personal plan and organization contracts."""

    def __init__(
        self,
        org_repository: OrganizationRepository,
        catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
    ):
        self.org_repository = org_repository
        self.catalog = catalog

    def resolve_effective_entitlements(
        self,
        user_id: str,
        subscription_status: Optional[Union[str, SubscriptionStatus]] = None,
        user_role: Optional[Union[str, UserRole]] = None,
        plan_id: Optional[str] = None,
        is_guest: bool = False,
    ) -> EffectiveEntitlements:
        admin = is_admin_role(user_role)
        personal_plan = resolve_personal_plan(
            subscription_status=subscription_status,
            user_role=user_role,
            plan_id=plan_id,
            is_guest=is_guest,
        )
        personal = build_personal_source(personal_plan, admin, self.catalog)

        organization_sources: List[EntitlementSource] = []
        had_memberships = False
        if not (is_guest or admin):
            organization_sources, had_memberships = resolve_organization_sources(
                user_id, self.org_repository, self.catalog
            )

        effective = merge_entitlements(
            personal,
            organization_sources,
            is_guest=is_guest,
            had_memberships=had_memberships,
        )
        logger.debug(
            "[entitlements] resolved",
            extra={
                "user_id": user_id,
                "personal_plan": personal_plan.value,
                "effective_plan": effective.plan.value,
                "model_tier": effective.model_tier.value,
                "source_id": effective.sources[0].source_id,
                "organization_sources": len(organization_sources),
            },
        )
        return effective
