"""
Organization contract tests.

Tests:
- Omitted fields default to the base plan; explicit values win
- Contracts below their base plan are rejected at write time
- Legacy below-floor records are clamped when read
- Memberships without contracts yield no source
- save_contract bumps the version
- Seat limits start at one
"""

import logging

import pydantic
import pytest

from quota_engine.core.errors import ContractValidationError
from quota_engine.features.organizations.contracts import (
    apply_contract_overrides,
    build_organization_source,
    resolve_organization_sources,
    save_contract,
    validate_contract,
)
from quota_engine.features.plans.catalog import DEFAULT_PLAN_CATALOG
from quota_engine.models.entitlement import SourceType
from quota_engine.models.organization import (
    MembershipStatus,
    OrganizationBasePlan,
    OrganizationContract,
    OrganizationContractInput,
    OrganizationMembership,
    OrganizationStatus,
)
from quota_engine.models.plan import ModelTier, PlanKey, QuotaVector


def test_omitted_fields_use_base_plan_defaults():
    """Should fill omitted fields from the base plan."""
    contract = apply_contract_overrides("org-1", OrganizationContractInput(base_plan=OrganizationBasePlan.BASIC))

    assert contract.limits == DEFAULT_PLAN_CATALOG.limits(PlanKey.BASIC)
    assert contract.model_tier == ModelTier.BASIC
    assert contract.seat_limit == 10
    assert contract.plan_label == "Basic"
    assert contract.version == 1


def test_explicit_overrides_win():
    """Should keep explicit contract values over defaults."""
    contract = apply_contract_overrides(
        "org-1",
        OrganizationContractInput(
            base_plan=OrganizationBasePlan.PRO,
            max_requests_per_day=500,
            seat_limit=200,
            plan_label="  Acme Enterprise ",
            model_tier=ModelTier.ENTERPRISE,
        ),
    )

    assert contract.limits.max_requests_per_day == 500
    assert contract.limits.max_input_tokens_per_day == 2_000_000
    assert contract.seat_limit == 200
    assert contract.plan_label == "Acme Enterprise"
    assert validate_contract(contract) is contract


@pytest.mark.parametrize("seat_limit", [0, -1])
def test_seat_limit_must_be_positive(seat_limit):
    """Should reject a seat limit below one."""
    with pytest.raises(pydantic.ValidationError):
        OrganizationContractInput(base_plan=OrganizationBasePlan.BASIC, seat_limit=seat_limit)


def test_limit_below_base_plan_is_rejected():
    """Should reject a limit below the base plan."""
    contract = apply_contract_overrides(
        "org-1",
        OrganizationContractInput(base_plan=OrganizationBasePlan.PRO, max_requests_per_day=10),
    )

    with pytest.raises(ContractValidationError) as exc:
        validate_contract(contract)
    assert exc.value.violations == ["max_requests_per_day"]
    assert exc.value.status_code == 422


def test_model_tier_below_base_plan_is_rejected():
    """Should reject a model tier below the base plan."""
    contract = apply_contract_overrides(
        "org-1",
        OrganizationContractInput(base_plan=OrganizationBasePlan.BASIC_PLUS, model_tier=ModelTier.BASIC),
    )

    with pytest.raises(ContractValidationError) as exc:
        validate_contract(contract)
    assert exc.value.violations == ["model_tier"]


def _membership(org_id="org-1", name="Acme"):
    return OrganizationMembership(user_id="u1", organization_id=org_id, organization_name=name)


def test_organization_source_is_tagged():
    """Should tag organization sources with id, label and plan."""
    contract = apply_contract_overrides("org-1", OrganizationContractInput(base_plan=OrganizationBasePlan.BASIC_PLUS))
    source = build_organization_source(_membership(), contract)

    assert source.type == SourceType.ORGANIZATION
    assert source.source_id == "org-1"
    assert source.source_label == "organization:Acme:BASIC_PLUS"
    assert source.plan == PlanKey.BASIC_PLUS
    assert source.limits == contract.limits


def test_enterprise_tier_maps_to_pro_plan():
    """Should map the ENTERPRISE tier to the PRO plan."""
    contract = apply_contract_overrides(
        "org-1",
        OrganizationContractInput(base_plan=OrganizationBasePlan.PRO, model_tier=ModelTier.ENTERPRISE),
    )
    assert build_organization_source(_membership(), contract).plan == PlanKey.PRO


def test_legacy_contract_below_floor_is_clamped(caplog):
    """Should clamp a stored below-floor contract and warn."""
    legacy = OrganizationContract(
        organization_id="org-1",
        base_plan=OrganizationBasePlan.BASIC,
        seat_limit=5,
        plan_label="Legacy",
        model_tier=ModelTier.TRIAL,
        limits=QuotaVector(
            max_requests_per_day=5,
            max_input_tokens_per_day=900_000,
            max_output_tokens_per_day=1_000,
            max_cost_per_day_usd=1,
            max_context_messages=15,
        ),
    )

    with caplog.at_level(logging.WARNING):
        source = build_organization_source(_membership(), legacy)

    assert source.limits.max_requests_per_day == 50
    assert source.limits.max_input_tokens_per_day == 900_000
    assert source.limits.max_output_tokens_per_day == 250_000
    assert source.limits.max_cost_per_day_usd == 3
    assert source.model_tier == ModelTier.BASIC
    assert any("clamping to floor" in r.getMessage() for r in caplog.records)


def test_membership_without_contract_yields_no_source(org_repo):
    """Should yield no source for a membership without a contract."""
    org_repo.add_organization("org-1", "Acme")
    org_repo.add_membership("org-1", "u1")

    sources, had_memberships = resolve_organization_sources("u1", org_repo)

    assert sources == []
    assert had_memberships is True


def test_inactive_memberships_and_organizations_are_ignored(org_repo):
    """Should ignore inactive memberships and organizations."""
    org_repo.add_organization("org-1", "Acme")
    org_repo.add_organization("org-2", "Globex", status=OrganizationStatus.SUSPENDED)
    org_repo.add_membership("org-1", "u1", status=MembershipStatus.REMOVED)
    org_repo.add_membership("org-2", "u1")
    save_contract(org_repo, "org-1", OrganizationContractInput(base_plan=OrganizationBasePlan.PRO))
    save_contract(org_repo, "org-2", OrganizationContractInput(base_plan=OrganizationBasePlan.PRO))

    sources, had_memberships = resolve_organization_sources("u1", org_repo)

    assert sources == []
    assert had_memberships is False


def test_save_contract_increments_version(org_repo):
    """Should bump the version on every save."""
    first = save_contract(org_repo, "org-1", OrganizationContractInput(base_plan=OrganizationBasePlan.BASIC))
    second = save_contract(
        org_repo,
        "org-1",
        OrganizationContractInput(base_plan=OrganizationBasePlan.BASIC, max_requests_per_day=80),
    )

    assert first.version == 1
    assert second.version == 2
    assert org_repo.get_contract("org-1").limits.max_requests_per_day == 80


def test_invalid_contract_is_not_stored(org_repo):
    """Should not store a rejected contract."""
    with pytest.raises(ContractValidationError):
        save_contract(
            org_repo,
            "org-1",
            OrganizationContractInput(base_plan=OrganizationBasePlan.PRO, max_cost_per_day_usd=1),
        )
    assert org_repo.get_contract("org-1") is None
