"""
Admission control tests.

Tests:
- Guest at 9/10 allowed with 90%; at 10/10 denied with BASIC suggested
- First violated limit is the reported reason
- Percentages for unlimited and zero limits
- Checks never consume quota
- Upgrade advice follows the effective (organization) plan
- Remaining allowance, status formatting and usage summary
"""

import logging

import pytest

from quota_engine.features.organizations.contracts import save_contract
from quota_engine.features.rate_limit.service import format_rate_limit_status, percent_of
from quota_engine.models.organization import OrganizationBasePlan, OrganizationContractInput
from quota_engine.models.plan import UNLIMITED, PlanKey
from quota_engine.models.rate_limit import DenialReason, LimitType, RateLimitStatusLevel
from quota_engine.models.subscription import Subscription, SubscriptionStatus, UserContext, UserRole


@pytest.fixture
def seed(usage_store, rate_limit_engine):
    def _seed(user_id, **fields):
        usage_store.seed(user_id, rate_limit_engine.usage.utc_today(), **fields)
    return _seed


def _join_org(org_repo, user_id, org_id, base_plan):
    if org_id not in org_repo.organizations:
        org_repo.add_organization(org_id, org_id.title())
        save_contract(org_repo, org_id, OrganizationContractInput(base_plan=base_plan))
    org_repo.add_membership(org_id, user_id)


class TestGuestScenarios:
    def test_nine_of_ten_allowed(self, rate_limit_engine, seed):
        """Should allow a guest with nine of ten requests used."""
        seed("guest-1", request_count=9)

        result = rate_limit_engine.check_rate_limit("guest-1", is_guest=True)

        assert result.allowed is True
        assert result.reason is None
        assert result.upgrade_info is None
        assert result.percent_used.requests == pytest.approx(90.0)
        assert format_rate_limit_status(result).status == RateLimitStatusLevel.WARNING

    def test_ten_of_ten_denied_with_upgrade(self, rate_limit_engine, seed):
        """Should deny at the limit and suggest an upgrade."""
        seed("guest-1", request_count=10)

        result = rate_limit_engine.check_rate_limit("guest-1", is_guest=True)

        assert result.allowed is False
        assert result.reason == DenialReason.REQUESTS
        assert result.reason.value == "Daily request limit reached"
        info = result.upgrade_info
        assert info.current_plan == PlanKey.GUEST
        assert info.suggested_plan == PlanKey.BASIC
        assert info.limit_type == LimitType.REQUESTS
        assert info.upgrade_url == "/pricing"
        assert "Ospite" in info.cta_message and "Basic" in info.cta_message


class TestReasonPriority:
    def test_requests_reported_before_tokens(self, rate_limit_engine, seed):
        """Should report requests first when several limits are hit."""
        seed("u1", request_count=50, input_tokens=600_000, total_cost_usd=10.0)

        result = rate_limit_engine.check_rate_limit("u1", subscription_status="ACTIVE", plan_id="basic")

        assert result.reason == DenialReason.REQUESTS

    def test_input_tokens_before_output_and_cost(self, rate_limit_engine, seed):
        """Should report input tokens before output tokens and cost."""
        seed("u1", request_count=1, input_tokens=500_000, output_tokens=250_000, total_cost_usd=3.0)

        result = rate_limit_engine.check_rate_limit("u1", subscription_status="ACTIVE", plan_id="basic")

        assert result.reason == DenialReason.INPUT_TOKENS
        assert result.upgrade_info.limit_type == LimitType.TOKENS

    def test_output_tokens(self, rate_limit_engine, seed):
        """Should deny on output tokens."""
        seed("u1", output_tokens=250_000)
        result = rate_limit_engine.check_rate_limit("u1", subscription_status="ACTIVE", plan_id="basic")
        assert result.reason == DenialReason.OUTPUT_TOKENS

    def test_cost(self, rate_limit_engine, seed):
        """Should deny on cost."""
        seed("u1", request_count=3, total_cost_usd=3.0)
        result = rate_limit_engine.check_rate_limit("u1", subscription_status="ACTIVE", plan_id="basic")
        assert result.reason == DenialReason.COST
        assert result.upgrade_info.limit_type == LimitType.COST
        assert result.upgrade_info.suggested_plan == PlanKey.BASIC_PLUS


class TestPercentages:
    def test_unlimited_and_zero_limits(self):
        """Should report 0% for unlimited and 100% for zero limits."""
        assert percent_of(10_000, UNLIMITED) == 0.0
        assert percent_of(0, 0) == 100.0
        assert percent_of(25, 50) == 50.0

    def test_admin_never_denied(self, rate_limit_engine, seed):
        """Should never deny an admin."""
        seed("admin-1", request_count=1_000_000, input_tokens=10**9, total_cost_usd=5000.0)

        result = rate_limit_engine.check_rate_limit("admin-1", user_role="ADMIN")

        assert result.allowed is True
        assert result.percent_used.max == 0.0
        assert result.public_dict()["limits"]["max_requests_per_day"] is None


def test_check_does_not_consume_quota(rate_limit_engine, usage_store):
    """Should not record usage when checking."""
    rate_limit_engine.check_rate_limit("u1", subscription_status="TRIAL")
    rate_limit_engine.check_rate_limit("u1", subscription_status="TRIAL")

    assert usage_store.rows == {}


def test_increment_then_check(rate_limit_engine):
    """Should see recorded usage on the next check."""
    for _ in range(20):
        rate_limit_engine.increment_usage("u1", input_tokens=10, output_tokens=5, cost_usd=0.01)

    result = rate_limit_engine.check_rate_limit("u1", subscription_status="TRIAL")

    assert result.usage.request_count == 20
    assert result.reason == DenialReason.REQUESTS
    assert result.upgrade_info.suggested_plan == PlanKey.BASIC


class TestOrganizations:
    def test_basic_user_in_pro_org_gets_pro_limits(self, rate_limit_engine, org_repo, seed):
        """Should check a BASIC user in a PRO organization against PRO limits."""
        _join_org(org_repo, "u1", "acme", OrganizationBasePlan.PRO)
        seed("u1", request_count=60)

        result = rate_limit_engine.check_rate_limit("u1", subscription_status="ACTIVE", plan_id="price_basic")

        assert result.allowed is True
        assert result.limits.max_requests_per_day == 100
        assert result.entitlements.sources[0].source_id == "acme"

    def test_same_usage_denied_without_org(self, rate_limit_engine, seed):
        """Should deny the same usage without the organization."""
        seed("u2", request_count=60)
        result = rate_limit_engine.check_rate_limit("u2", subscription_status="ACTIVE", plan_id="price_basic")
        assert result.allowed is False

    def test_pro_org_denial_has_no_upgrade(self, rate_limit_engine, org_repo, seed):
        """Should offer no upgrade when denied on a PRO organization."""
        _join_org(org_repo, "u1", "acme", OrganizationBasePlan.PRO)
        seed("u1", request_count=100)

        result = rate_limit_engine.check_rate_limit("u1", subscription_status="TRIAL")

        assert result.allowed is False
        assert result.upgrade_info is None

    def test_upgrade_uses_effective_plan(self, rate_limit_engine, org_repo, seed):
        """Should base upgrade advice on the effective plan."""
        _join_org(org_repo, "u1", "acme", OrganizationBasePlan.BASIC)
        seed("u1", request_count=50)

        result = rate_limit_engine.check_rate_limit("u1", subscription_status="TRIAL")

        assert result.upgrade_info.current_plan == PlanKey.BASIC
        assert result.upgrade_info.suggested_plan == PlanKey.BASIC_PLUS


def test_decisions_are_logged(rate_limit_engine, seed, caplog):
    """Should log ALLOW and DENY decisions."""
    seed("guest-1", request_count=10)
    with caplog.at_level(logging.INFO):
        rate_limit_engine.check_rate_limit("guest-1", is_guest=True)
        rate_limit_engine.check_rate_limit("guest-2", is_guest=True)

    messages = [r.getMessage() for r in caplog.records]
    assert "[rate_limit] DENY" in messages
    assert "[rate_limit] ALLOW" in messages


def test_remaining_allowance(rate_limit_engine, seed):
    """Should report remaining allowance, floored at zero."""
    seed("u1", request_count=5, input_tokens=1_000, output_tokens=60_000, total_cost_usd=0.25)

    remaining = rate_limit_engine.get_remaining_allowance("u1", subscription_status="TRIAL")

    assert remaining.requests == 15
    assert remaining.input_tokens == 99_000
    assert remaining.output_tokens == 0
    assert remaining.cost_usd == pytest.approx(0.25)


class TestStatusFormatting:
    def test_ok_when_unused(self, rate_limit_engine):
        """Should report ok with the full allowance remaining."""
        status = format_rate_limit_status(rate_limit_engine.check_rate_limit("u1", subscription_status="TRIAL"))
        assert status.status == RateLimitStatusLevel.OK
        assert status.message == "100% of daily limit remaining"

    def test_limit_reached_uses_reason(self, rate_limit_engine, seed):
        """Should report limit-reached with the denial reason."""
        seed("u1", request_count=20)
        status = rate_limit_engine.format_rate_limit_status(
            rate_limit_engine.check_rate_limit("u1", subscription_status="TRIAL")
        )
        assert status.status == RateLimitStatusLevel.LIMIT_REACHED
        assert status.message == "Daily request limit reached"
        assert status.percent_used == 100.0

    def test_custom_threshold(self, rate_limit_engine, seed):
        """Should honor a custom warning threshold."""
        seed("u1", request_count=10)
        result = rate_limit_engine.check_rate_limit("u1", subscription_status="TRIAL")

        assert format_rate_limit_status(result, warning_threshold=50).status == RateLimitStatusLevel.WARNING
        assert format_rate_limit_status(result).status == RateLimitStatusLevel.OK
        assert format_rate_limit_status(result).message == "50% of daily limit remaining"


class TestUsageSummary:
    def test_tiers(self, rate_limit_engine):
        """Should label summaries ADMIN, ACTIVE or TRIAL."""
        admin = UserContext(user_id="a1", role=UserRole.ADMIN)
        active = UserContext(
            user_id="u1",
            subscription=Subscription(user_id="u1", status=SubscriptionStatus.ACTIVE, plan_id="price_pro"),
        )
        trial = UserContext(user_id="u2")

        assert rate_limit_engine.get_usage_summary(admin).tier == "ADMIN"
        summary = rate_limit_engine.get_usage_summary(active)
        assert summary.tier == "ACTIVE"
        assert summary.subscription_status == "ACTIVE"
        assert summary.entitlements.plan == PlanKey.PRO
        assert rate_limit_engine.get_usage_summary(trial).tier == "TRIAL"

    def test_plan_snapshot(self, rate_limit_engine, org_repo):
        """Should expose a plan snapshot with policies."""
        _join_org(org_repo, "u1", "acme", OrganizationBasePlan.BASIC_PLUS)

        snapshot = rate_limit_engine.resolve_plan_snapshot("u1", subscription_status="TRIAL")

        assert snapshot.personal_plan == PlanKey.TRIAL
        assert snapshot.effective.plan == PlanKey.BASIC_PLUS
        assert snapshot.policies.attachment_retention_days == 60
