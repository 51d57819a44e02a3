"""
quota_engine/features/organizations/contracts.py

Organization contract resolution.

Handles:
- Filling omitted contract fields from base plan defaults (write time)
- Enforcing that a contract is never worse than its base plan
- Turning active memberships into tagged entitlement sources
"""

from typing import List, Optional, Tuple
import logging

from quota_engine.core.errors import ContractValidationError
from quota_engine.features.plans.catalog import DEFAULT_PLAN_CATALOG, PlanCatalog, tier_at_least
from quota_engine.features.organizations.repository import OrganizationRepository
from quota_engine.models.entitlement import EntitlementSource, SourceType
from quota_engine.models.organization import (
    OrganizationContract,
    OrganizationContractInput,
    OrganizationMembership,
)
from quota_engine.models.plan import MODEL_TIER_TO_PLAN, QUOTA_FIELDS, QuotaVector


logger = logging.getLogger(__name__)


def apply_contract_overrides(
    organization_id: str,
    contract_input: OrganizationContractInput,
    catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
    *,
    version: int = 1,
) -> OrganizationContract:
    """Resolve a submitted contract into a fully-populated record.

    Explicit values win; anything omitted comes from the base plan.
    """
    base_plan = contract_input.base_plan
    defaults = catalog.org_floor(base_plan)

    limits = {
        field: (
            getattr(contract_input, field)
            if getattr(contract_input, field) is not None
            else getattr(defaults.limits, field)
        )
        for field in QUOTA_FIELDS
    }
    plan_label = (contract_input.plan_label or "").strip() or defaults.display_name

    return OrganizationContract(
        organization_id=organization_id,
        base_plan=base_plan,
        seat_limit=(
            contract_input.seat_limit
            if contract_input.seat_limit is not None
            else catalog.org_seat_limit(base_plan)
        ),
        plan_label=plan_label,
        model_tier=contract_input.model_tier or defaults.model_tier,
        limits=QuotaVector(**limits),
        version=version,
    )


def contract_floor_violations(
    contract: OrganizationContract,
    catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
) -> List[str]:
    """List every field where the contract is below its base plan default."""
    floor = catalog.org_floor(contract.base_plan)
    violations = [
        field
        for field in QUOTA_FIELDS
        if getattr(contract.limits, field) < getattr(floor.limits, field)
    ]
    if not tier_at_least(contract.model_tier, floor.model_tier):
        violations.append("model_tier")
    return violations


def validate_contract(
    contract: OrganizationContract,
    catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
) -> OrganizationContract:
    """Reject contracts whose effective limits are worse than their base plan.

    Raises:
        ContractValidationError: listing the offending fields
    """
    violations = contract_floor_violations(contract, catalog)
    if violations:
        raise ContractValidationError(
            f"Contract for organization {contract.organization_id} is below its "
            f"{contract.base_plan.value} base plan: {', '.join(violations)}",
            violations=violations,
        )
    return contract


def _clamp_to_floor(contract: OrganizationContract, catalog: PlanCatalog) -> OrganizationContract:
    floor = catalog.org_floor(contract.base_plan)
    limits = QuotaVector(**{
        field: max(getattr(contract.limits, field), getattr(floor.limits, field))
        for field in QUOTA_FIELDS
    })
    model_tier = contract.model_tier if tier_at_least(contract.model_tier, floor.model_tier) else floor.model_tier
    return contract.model_copy(update={"limits": limits, "model_tier": model_tier})


def build_organization_source(
    membership: OrganizationMembership,
    contract: OrganizationContract,
    catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
) -> EntitlementSource:
    """Tag a stored contract as an entitlement source.

    Stored values are authoritative. Records written before validation
    existed may sit below their base plan; those are raised to the floor.
    """
    violations = contract_floor_violations(contract, catalog)
    if violations:
        logger.warning(
            "[organizations] contract below base plan, clamping to floor",
            extra={
                "organization_id": contract.organization_id,
                "base_plan": contract.base_plan.value,
                "fields": violations,
                "contract_version": contract.version,
            },
        )
        contract = _clamp_to_floor(contract, catalog)

    return EntitlementSource(
        type=SourceType.ORGANIZATION,
        source_id=membership.organization_id,
        source_label=f"organization:{membership.organization_name}:{contract.base_plan.value}",
        plan=MODEL_TIER_TO_PLAN[contract.model_tier],
        model_tier=contract.model_tier,
        limits=contract.limits,
    )


def resolve_organization_sources(
    user_id: str,
    repository: OrganizationRepository,
    catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
) -> Tuple[List[EntitlementSource], bool]:
    """
    Collect one source per active membership that has a contract.

    Returns:
        (sources, had_memberships). had_memberships is True when at least one
        active membership existed, even if none of them had a contract.
    """
    memberships = [m for m in repository.list_active_memberships(user_id) if m.is_effective]
    sources: List[EntitlementSource] = []

    for membership in memberships:
        contract: Optional[OrganizationContract] = repository.get_contract(membership.organization_id)
        if contract is None:
            logger.warning(
                "[organizations] active membership without contract",
                extra={"user_id": user_id, "organization_id": membership.organization_id},
            )
            continue
        sources.append(build_organization_source(membership, contract, catalog))

    return sources, bool(memberships)


def save_contract(
    repository: OrganizationRepository,
    organization_id: str,
    contract_input: OrganizationContractInput,
    catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
) -> OrganizationContract:
    """Resolve, validate and persist a contract.

    The repository assigns the version in the same write as the contract.

    Raises:
        ContractValidationError: if the resolved contract is below its base plan
    """
    contract = validate_contract(
        apply_contract_overrides(organization_id, contract_input, catalog),
        catalog,
    )
    stored = repository.store_contract(contract)
    logger.info(
        "[organizations] contract saved",
        extra={
            "organization_id": organization_id,
            "base_plan": contract.base_plan.value,
            "model_tier": contract.model_tier.value,
            "contract_version": stored.version,
            "seat_limit": stored.seat_limit,
        },
    )
    return stored
