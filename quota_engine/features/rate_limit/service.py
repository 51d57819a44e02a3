"""
quota_engine/features/rate_limit/service.py

Admission control over daily quotas.

Handles:
- Resolving effective entitlements per request
- Comparing today's usage against them (first violated limit wins)
- Usage percentages, remaining allowance and status formatting
- Upgrade guidance on denial

check_rate_limit and increment_usage are separate calls. Two requests that
pass the check concurrently can both be admitted and push usage slightly
past a limit; the counter itself stays exact. Closing that gap would need a
conditional reserve-then-commit increment in the store.
"""

from typing import Callable, List, Optional, Tuple, Union
import logging
import math

from quota_engine.core.config import settings
from quota_engine.features.entitlements.service import EntitlementResolver
from quota_engine.features.organizations.repository import OrganizationRepository
from quota_engine.features.plans import policy
from quota_engine.features.plans.catalog import DEFAULT_PLAN_CATALOG, PlanCatalog
from quota_engine.features.plans.resolver import is_admin_role
from quota_engine.features.rate_limit.upgrade import get_upgrade_info
from quota_engine.features.usage.service import Clock, UsageCounter, UsageStore
from quota_engine.models.entitlement import EffectiveEntitlements, PlanSnapshot
from quota_engine.models.plan import UNLIMITED, QuotaVector
from quota_engine.models.rate_limit import (
    DENIAL_LIMIT_TYPES,
    DenialReason,
    PercentUsed,
    RateLimitResult,
    RateLimitStatus,
    RateLimitStatusLevel,
    RemainingAllowance,
    UsageSummary,
)
from quota_engine.models.subscription import SubscriptionStatus, UserContext, UserRole
from quota_engine.models.usage import DailyUsageData


logger = logging.getLogger(__name__)

StatusArg = Optional[Union[str, SubscriptionStatus]]
RoleArg = Optional[Union[str, UserRole]]

# Evaluation order; the first violated limit is the reported reason
LIMIT_CHECKS: List[Tuple[DenialReason, Callable[[DailyUsageData], float], Callable[[QuotaVector], float]]] = [
    (DenialReason.REQUESTS, lambda usage: usage.request_count, lambda limits: limits.max_requests_per_day),
    (DenialReason.INPUT_TOKENS, lambda usage: usage.input_tokens, lambda limits: limits.max_input_tokens_per_day),
    (DenialReason.OUTPUT_TOKENS, lambda usage: usage.output_tokens, lambda limits: limits.max_output_tokens_per_day),
    (DenialReason.COST, lambda usage: usage.total_cost_usd, lambda limits: limits.max_cost_per_day_usd),
]


def percent_of(used: float, limit: float) -> float:
    if limit == UNLIMITED:
        return 0.0
    if limit <= 0:
        return 100.0
    return used / limit * 100


def compute_percent_used(usage: DailyUsageData, limits: QuotaVector) -> PercentUsed:
    return PercentUsed(
        requests=percent_of(usage.request_count, limits.max_requests_per_day),
        input_tokens=percent_of(usage.input_tokens, limits.max_input_tokens_per_day),
        output_tokens=percent_of(usage.output_tokens, limits.max_output_tokens_per_day),
        cost=percent_of(usage.total_cost_usd, limits.max_cost_per_day_usd),
    )


def first_violation(usage: DailyUsageData, limits: QuotaVector) -> Optional[DenialReason]:
    for reason, used, limit in LIMIT_CHECKS:
        if used(usage) >= limit(limits):
            return reason
    return None


def format_rate_limit_status(
    result: RateLimitResult,
    warning_threshold: Optional[float] = None,
) -> RateLimitStatus:
    """Summarize a decision as ok / warning / limit-reached."""
    if not result.allowed:
        return RateLimitStatus(
            status=RateLimitStatusLevel.LIMIT_REACHED,
            message=result.reason.value if result.reason else "Daily limit reached",
            percent_used=100.0,
        )

    threshold = settings.USAGE_WARNING_THRESHOLD_PERCENT if warning_threshold is None else warning_threshold
    max_percent = result.percent_used.max
    remaining = max(0, math.floor(100 - max_percent + 0.5))
    return RateLimitStatus(
        status=RateLimitStatusLevel.WARNING if max_percent >= threshold else RateLimitStatusLevel.OK,
        message=f"{remaining}% of daily limit remaining",
        percent_used=max_percent,
    )


class RateLimitEngine:
    """Entry point used by request handlers: resolve, check, then record usage."""

    def __init__(
        self,
        org_repository: OrganizationRepository,
        usage_store: UsageStore,
        catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
        clock: Optional[Clock] = None,
        upgrade_url: Optional[str] = None,
        locale: Optional[str] = None,
    ):
        self.catalog = catalog
        self.resolver = EntitlementResolver(org_repository, catalog)
        self.usage = UsageCounter(usage_store, clock)
        self.upgrade_url = upgrade_url
        self.locale = locale

    def resolve_effective_entitlements(
        self,
        user_id: str,
        subscription_status: StatusArg = None,
        user_role: RoleArg = None,
        plan_id: Optional[str] = None,
        is_guest: bool = False,
    ) -> EffectiveEntitlements:
        return self.resolver.resolve_effective_entitlements(
            user_id,
            subscription_status=subscription_status,
            user_role=user_role,
            plan_id=plan_id,
            is_guest=is_guest,
        )

    def resolve_plan_snapshot(
        self,
        user_id: str,
        subscription_status: StatusArg = None,
        user_role: RoleArg = None,
        plan_id: Optional[str] = None,
        is_guest: bool = False,
    ) -> PlanSnapshot:
        return policy.resolve_plan_snapshot(
            self.resolver,
            user_id,
            subscription_status=subscription_status,
            user_role=user_role,
            plan_id=plan_id,
            is_guest=is_guest,
        )

    def get_daily_usage(self, user_id: str) -> DailyUsageData:
        return self.usage.get_daily_usage(user_id)

    def increment_usage(
        self,
        user_id: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cost_usd: float = 0.0,
    ) -> DailyUsageData:
        return self.usage.increment_usage(user_id, input_tokens, output_tokens, cost_usd)

    def check_rate_limit(
        self,
        user_id: str,
        subscription_status: StatusArg = None,
        user_role: RoleArg = None,
        plan_id: Optional[str] = None,
        is_guest: bool = False,
    ) -> RateLimitResult:
        """
        Decide whether the user may make another request today.

        Never records usage. On denial, upgrade_info is computed from the
        effective plan (None when no higher plan exists).
        """
        entitlements = self.resolve_effective_entitlements(
            user_id,
            subscription_status=subscription_status,
            user_role=user_role,
            plan_id=plan_id,
            is_guest=is_guest,
        )
        usage = self.get_daily_usage(user_id)
        limits = entitlements.limits
        percent_used = compute_percent_used(usage, limits)
        reason = first_violation(usage, limits)

        upgrade_info = None
        if reason is not None:
            upgrade_info = get_upgrade_info(
                entitlements.plan,
                DENIAL_LIMIT_TYPES[reason],
                upgrade_url=self.upgrade_url,
                locale=self.locale,
            )

        log_extra = {
            "user_id": user_id,
            "plan": entitlements.plan.value,
            "model_tier": entitlements.model_tier.value,
            "source_id": entitlements.sources[0].source_id,
            "request_count": usage.request_count,
            "max_percent_used": round(percent_used.max, 2),
        }
        if reason is None:
            logger.info("[rate_limit] ALLOW", extra=log_extra)
        else:
            logger.warning("[rate_limit] DENY", extra={**log_extra, "reason": reason.name})

        return RateLimitResult(
            allowed=reason is None,
            usage=usage,
            limits=limits,
            percent_used=percent_used,
            entitlements=entitlements,
            reason=reason,
            upgrade_info=upgrade_info,
        )

    def get_remaining_allowance(
        self,
        user_id: str,
        subscription_status: StatusArg = None,
        user_role: RoleArg = None,
        plan_id: Optional[str] = None,
        is_guest: bool = False,
    ) -> RemainingAllowance:
        limits = self.resolve_effective_entitlements(
            user_id,
            subscription_status=subscription_status,
            user_role=user_role,
            plan_id=plan_id,
            is_guest=is_guest,
        ).limits
        usage = self.get_daily_usage(user_id)
        return RemainingAllowance(
            requests=max(0, limits.max_requests_per_day - usage.request_count),
            input_tokens=max(0, limits.max_input_tokens_per_day - usage.input_tokens),
            output_tokens=max(0, limits.max_output_tokens_per_day - usage.output_tokens),
            cost_usd=max(0.0, limits.max_cost_per_day_usd - usage.total_cost_usd),
        )

    def format_rate_limit_status(
        self,
        result: RateLimitResult,
        warning_threshold: Optional[float] = None,
    ) -> RateLimitStatus:
        return format_rate_limit_status(result, warning_threshold)

    def check_user(self, user: UserContext) -> RateLimitResult:
        return self.check_rate_limit(
            user.user_id,
            subscription_status=user.subscription_status,
            user_role=user.role,
            plan_id=user.plan_id,
            is_guest=user.is_guest,
        )

    def get_usage_summary(self, user: UserContext) -> UsageSummary:
        """Today's usage with the effective limits and their provenance."""
        entitlements = self.resolve_effective_entitlements(
            user.user_id,
            subscription_status=user.subscription_status,
            user_role=user.role,
            plan_id=user.plan_id,
            is_guest=user.is_guest,
        )
        if is_admin_role(user.role):
            tier = "ADMIN"
        elif user.subscription_status == SubscriptionStatus.ACTIVE.value:
            tier = "ACTIVE"
        else:
            tier = "TRIAL"

        return UsageSummary(
            usage=self.get_daily_usage(user.user_id),
            limits=entitlements.limits,
            tier=tier,
            subscription_status=user.subscription_status,
            entitlements=entitlements,
        )
