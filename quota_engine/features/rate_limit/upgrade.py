"""
quota_engine/features/rate_limit/upgrade.py

Upgrade guidance for denied requests.

Handles:
- Next-plan lookup along the upgrade ladder
- Localized display names and CTA messages (it, en)
"""

from typing import Dict, Optional, Union

from quota_engine.core.config import settings
from quota_engine.models.plan import PlanKey
from quota_engine.models.rate_limit import LimitType, UpgradeInfo


DEFAULT_LOCALE = "it"

NEXT_PLAN: Dict[PlanKey, PlanKey] = {
    PlanKey.GUEST: PlanKey.BASIC,
    PlanKey.TRIAL: PlanKey.BASIC,
    PlanKey.BASIC: PlanKey.BASIC_PLUS,
    PlanKey.BASIC_PLUS: PlanKey.PRO,
}

PLAN_DISPLAY_NAMES: Dict[str, Dict[PlanKey, str]] = {
    "it": {
        PlanKey.GUEST: "Ospite",
        PlanKey.TRIAL: "Prova",
        PlanKey.BASIC: "Basic",
        PlanKey.BASIC_PLUS: "Basic Plus",
        PlanKey.PRO: "Pro",
        PlanKey.ADMIN: "Admin",
    },
    "en": {
        PlanKey.GUEST: "Guest",
        PlanKey.TRIAL: "Trial",
        PlanKey.BASIC: "Basic",
        PlanKey.BASIC_PLUS: "Basic Plus",
        PlanKey.PRO: "Pro",
        PlanKey.ADMIN: "Admin",
    },
}

CTA_TEMPLATES: Dict[str, Dict[LimitType, str]] = {
    "it": {
        LimitType.REQUESTS: (
            "Hai raggiunto il limite giornaliero di richieste per il piano {current}. "
            "Passa a {next} per continuare a utilizzare Anthon senza interruzioni."
        ),
        LimitType.TOKENS: (
            "Hai esaurito i token disponibili per oggi con il piano {current}. "
            "Aggiorna a {next} per ottenere più token giornalieri."
        ),
        LimitType.COST: (
            "Hai raggiunto il limite di spesa giornaliero del piano {current}. "
            "Passa a {next} per aumentare il tuo budget giornaliero."
        ),
        LimitType.GENERAL: (
            "Hai raggiunto un limite del tuo piano {current}. "
            "Aggiorna a {next} per sbloccare funzionalità aggiuntive e limiti più elevati."
        ),
    },
    "en": {
        LimitType.REQUESTS: (
            "You have reached the daily request limit of the {current} plan. "
            "Upgrade to {next} to keep using Anthon without interruptions."
        ),
        LimitType.TOKENS: (
            "You have used all of today's tokens on the {current} plan. "
            "Upgrade to {next} for more daily tokens."
        ),
        LimitType.COST: (
            "You have reached the daily spending limit of the {current} plan. "
            "Upgrade to {next} to raise your daily budget."
        ),
        LimitType.GENERAL: (
            "You have reached a limit of your {current} plan. "
            "Upgrade to {next} to unlock more features and higher limits."
        ),
    },
}


def _coerce_plan(plan: Union[str, PlanKey, None]) -> Optional[PlanKey]:
    if plan is None:
        return None
    raw = plan.value if isinstance(plan, PlanKey) else str(plan)
    try:
        return PlanKey(raw.strip().upper())
    except ValueError:
        return None


def _coerce_limit_type(limit_type: Union[str, LimitType, None]) -> LimitType:
    try:
        return LimitType(limit_type)
    except ValueError:
        return LimitType.GENERAL


def get_upgrade_info(
    plan: Union[str, PlanKey, None],
    limit_type: Union[str, LimitType, None] = LimitType.GENERAL,
    *,
    upgrade_url: Optional[str] = None,
    locale: Optional[str] = None,
) -> Optional[UpgradeInfo]:
    """
    Suggest the next plan for a user who hit a limit.

    Returns None for PRO, ADMIN and unrecognized plans. Unknown limit types
    use the general message; unknown locales fall back to Italian.
    """
    current = _coerce_plan(plan)
    if current is None:
        return None

    suggested = NEXT_PLAN.get(current)
    if suggested is None:
        return None

    locale = (locale or settings.UPGRADE_LOCALE or DEFAULT_LOCALE).lower()
    if locale not in CTA_TEMPLATES:
        locale = DEFAULT_LOCALE

    kind = _coerce_limit_type(limit_type)
    current_label = PLAN_DISPLAY_NAMES[locale][current]
    suggested_label = PLAN_DISPLAY_NAMES[locale][suggested]

    return UpgradeInfo(
        current_plan=current,
        suggested_plan=suggested,
        current_plan_label=current_label,
        suggested_plan_label=suggested_label,
        upgrade_url=upgrade_url or settings.UPGRADE_URL,
        cta_message=CTA_TEMPLATES[locale][kind].format(current=current_label, next=suggested_label),
        limit_type=kind,
    )
