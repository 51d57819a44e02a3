"""
Usage API.

GET /api/usage        today's usage, effective limits and their provenance
GET /api/usage/check  admission decision without consuming quota
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header

from quota_engine.core.errors import NotFoundError, UnauthorizedError
from quota_engine.core.logging import log_event
from quota_engine.features.organizations.repository import SqlOrganizationRepository
from quota_engine.features.rate_limit.service import RateLimitEngine
from quota_engine.features.usage.service import SqlUsageStore
from quota_engine.features.users.service import SqlUserRepository, UserRepository
from quota_engine.models.subscription import UserContext

router = APIRouter(prefix="/api/usage", tags=["usage"])


def get_rate_limit_engine() -> RateLimitEngine:
    return RateLimitEngine(SqlOrganizationRepository(), SqlUsageStore())


def get_user_repository() -> UserRepository:
    return SqlUserRepository()


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    users: UserRepository = Depends(get_user_repository),
) -> UserContext:
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedError("Missing X-User-Id header")

    user = users.get_user(x_user_id.strip())
    if user is None:
        raise NotFoundError(f"User {x_user_id.strip()} not found")
    return user


@router.get("")
def get_usage(
    user: UserContext = Depends(get_current_user),
    engine: RateLimitEngine = Depends(get_rate_limit_engine),
):
    summary = engine.get_usage_summary(user)
    log_event(
        "info",
        "[usage] summary served",
        user_id=user.user_id,
        event_type="usage.summary",
        extra={"tier": summary.tier, "plan": summary.entitlements.plan.value},
    )
    return summary.public_dict()


@router.get("/check")
def check_usage(
    user: UserContext = Depends(get_current_user),
    engine: RateLimitEngine = Depends(get_rate_limit_engine),
):
    result = engine.check_user(user)
    status = engine.format_rate_limit_status(result)
    payload = result.public_dict()
    payload["status"] = status.model_dump(mode="json")
    return payload
