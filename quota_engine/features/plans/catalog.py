"""
quota_engine/features/plans/catalog.py

Plan catalog: plan key -> quota vector, model tier and policies.

The catalog is an immutable value passed to every component that needs
it. DEFAULT_PLAN_CATALOG is only a default argument; tests build their own
catalogs without touching module state.
"""

from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional

from quota_engine.core.errors import CatalogValidationError
from quota_engine.models.organization import OrganizationBasePlan
from quota_engine.models.plan import (
    MODEL_TIER_PRIORITY,
    PLAN_ORDER,
    QUOTA_FIELDS,
    UNLIMITED,
    ModelRouting,
    ModelTier,
    PlanCatalogEntry,
    PlanKey,
    QuotaVector,
)


MAINTENANCE_MODEL_ID = "google/gemini-2.0-flash-lite-001"

_LITE_ROUTING = ModelRouting(
    orchestrator="google/gemini-2.0-flash-lite-001",
    sub_agent="google/gemini-2.0-flash-lite-001",
    maintenance=MAINTENANCE_MODEL_ID,
)

DEFAULT_PLAN_ENTRIES: Dict[PlanKey, PlanCatalogEntry] = {
    PlanKey.GUEST: PlanCatalogEntry(
        model_tier=ModelTier.TRIAL,
        limits=QuotaVector(
            max_requests_per_day=10,
            max_input_tokens_per_day=20_000,
            max_output_tokens_per_day=10_000,
            max_cost_per_day_usd=0.05,
            max_context_messages=5,
        ),
        attachment_retention_days=1,
        model_routing=_LITE_ROUTING,
        display_name="Guest",
    ),
    PlanKey.TRIAL: PlanCatalogEntry(
        model_tier=ModelTier.TRIAL,
        limits=QuotaVector(
            max_requests_per_day=20,
            max_input_tokens_per_day=100_000,
            max_output_tokens_per_day=50_000,
            max_cost_per_day_usd=0.5,
            max_context_messages=10,
        ),
        attachment_retention_days=7,
        model_routing=_LITE_ROUTING,
        display_name="Trial",
    ),
    PlanKey.BASIC: PlanCatalogEntry(
        model_tier=ModelTier.BASIC,
        limits=QuotaVector(
            max_requests_per_day=50,
            max_input_tokens_per_day=500_000,
            max_output_tokens_per_day=250_000,
            max_cost_per_day_usd=3,
            max_context_messages=15,
        ),
        attachment_retention_days=30,
        model_routing=ModelRouting(
            orchestrator="google/gemini-2.0-flash-001",
            sub_agent="google/gemini-2.0-flash-lite-001",
            maintenance=MAINTENANCE_MODEL_ID,
        ),
        display_name="Basic",
    ),
    PlanKey.BASIC_PLUS: PlanCatalogEntry(
        model_tier=ModelTier.BASIC_PLUS,
        limits=QuotaVector(
            max_requests_per_day=50,
            max_input_tokens_per_day=800_000,
            max_output_tokens_per_day=400_000,
            max_cost_per_day_usd=5,
            max_context_messages=30,
        ),
        attachment_retention_days=60,
        model_routing=ModelRouting(
            orchestrator="google/gemini-2.0-flash-001",
            sub_agent="google/gemini-2.0-flash-001",
            maintenance=MAINTENANCE_MODEL_ID,
        ),
        display_name="Basic Plus",
    ),
    PlanKey.PRO: PlanCatalogEntry(
        model_tier=ModelTier.PRO,
        limits=QuotaVector(
            max_requests_per_day=100,
            max_input_tokens_per_day=2_000_000,
            max_output_tokens_per_day=1_000_000,
            max_cost_per_day_usd=15,
            max_context_messages=100,
        ),
        attachment_retention_days=180,
        model_routing=_LITE_ROUTING,
        display_name="Pro",
    ),
    PlanKey.ADMIN: PlanCatalogEntry(
        model_tier=ModelTier.ADMIN,
        limits=QuotaVector(
            max_requests_per_day=UNLIMITED,
            max_input_tokens_per_day=UNLIMITED,
            max_output_tokens_per_day=UNLIMITED,
            max_cost_per_day_usd=UNLIMITED,
            max_context_messages=100,
        ),
        attachment_retention_days=365 * 10,
        model_routing=_LITE_ROUTING,
        display_name="Admin",
    ),
}

DEFAULT_ORG_SEAT_LIMITS: Dict[OrganizationBasePlan, int] = {
    OrganizationBasePlan.BASIC: 10,
    OrganizationBasePlan.BASIC_PLUS: 25,
    OrganizationBasePlan.PRO: 50,
}


def find_monotonicity_violations(entries: Mapping[PlanKey, PlanCatalogEntry]) -> List[str]:
    """List every field where a better plan has a smaller limit than a worse one."""
    violations: List[str] = []
    for lower_index, lower in enumerate(PLAN_ORDER):
        for higher in PLAN_ORDER[lower_index + 1:]:
            lower_limits = entries[lower].limits
            higher_limits = entries[higher].limits
            for field in QUOTA_FIELDS:
                if getattr(higher_limits, field) < getattr(lower_limits, field):
                    violations.append(f"{higher.value}.{field} < {lower.value}.{field}")
    return violations


class PlanCatalog:
    """Immutable plan table, validated for completeness and monotonicity."""

    def __init__(
        self,
        entries: Mapping[PlanKey, PlanCatalogEntry],
        *,
        org_seat_limits: Optional[Mapping[OrganizationBasePlan, int]] = None,
    ):
        missing = [plan.value for plan in PLAN_ORDER if plan not in entries]
        if missing:
            raise CatalogValidationError(f"Plan catalog is missing entries: {', '.join(missing)}")

        violations = find_monotonicity_violations(entries)
        if violations:
            raise CatalogValidationError(
                "Plan catalog limits must not decrease with plan order: " + "; ".join(violations)
            )

        self._entries = MappingProxyType(dict(entries))
        self._org_seat_limits = MappingProxyType(dict(org_seat_limits or DEFAULT_ORG_SEAT_LIMITS))

    def __getitem__(self, plan: PlanKey) -> PlanCatalogEntry:
        return self._entries[PlanKey(plan)]

    def __iter__(self) -> Iterator[PlanKey]:
        return iter(PLAN_ORDER)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> Mapping[PlanKey, PlanCatalogEntry]:
        return self._entries

    def limits(self, plan: PlanKey) -> QuotaVector:
        return self[plan].limits

    def model_tier(self, plan: PlanKey) -> ModelTier:
        return self[plan].model_tier

    def display_name(self, plan: PlanKey) -> str:
        return self[plan].display_name

    def org_seat_limit(self, base_plan: OrganizationBasePlan) -> int:
        return self._org_seat_limits[base_plan]

    def org_floor(self, base_plan: OrganizationBasePlan) -> PlanCatalogEntry:
        """Defaults (and minimums) for a contract on this base plan."""
        return self[base_plan.plan_key]

    def replace(self, plan: PlanKey, entry: PlanCatalogEntry) -> "PlanCatalog":
        """Return a new catalog with one entry swapped (validated again)."""
        entries = dict(self._entries)
        entries[PlanKey(plan)] = entry
        return PlanCatalog(entries, org_seat_limits=self._org_seat_limits)


def tier_at_least(tier: ModelTier, floor: ModelTier) -> bool:
    return MODEL_TIER_PRIORITY[tier] >= MODEL_TIER_PRIORITY[floor]


DEFAULT_PLAN_CATALOG = PlanCatalog(DEFAULT_PLAN_ENTRIES)
