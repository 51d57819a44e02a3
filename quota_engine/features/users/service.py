"""
User lookup.
- get_user(user_id) -> UserContext (role, guest flag, subscription)
- upsert_user / upsert_subscription for seeding and billing sync
"""

from datetime import datetime, timezone
from typing import Optional, Protocol, Union
from sqlalchemy import select, insert, update

from quota_engine.core.database import get_db_session, users as app_users, subscriptions
from quota_engine.models.subscription import Subscription, SubscriptionStatus, UserContext, UserRole


class UserRepository(Protocol):
    def get_user(self, user_id: str) -> Optional[UserContext]:
        ...


class SqlUserRepository:
    def get_user(self, user_id: str) -> Optional[UserContext]:
        with get_db_session() as session:
            user_row = session.execute(
                select(app_users).where(app_users.c.user_id == user_id)
            ).first()
            if not user_row:
                return None
            sub_row = session.execute(
                select(subscriptions).where(subscriptions.c.user_id == user_id)
            ).first()

        subscription = None
        if sub_row:
            subscription = Subscription(
                user_id=sub_row.user_id,
                status=sub_row.status,
                plan_id=sub_row.plan_id,
                trial_ends_at=sub_row.trial_ends_at,
                converted_at=sub_row.converted_at,
                canceled_at=sub_row.canceled_at,
            )

        return UserContext(
            user_id=user_row.user_id,
            role=user_row.role,
            is_guest=bool(user_row.is_guest),
            subscription=subscription,
        )

    def upsert_user(
        self,
        user_id: str,
        role: Union[str, UserRole] = UserRole.USER,
        is_guest: bool = False,
    ) -> None:
        role_value = UserRole(role).value
        with get_db_session() as session:
            existing = session.execute(
                select(app_users.c.user_id).where(app_users.c.user_id == user_id)
            ).first()
            if existing:
                session.execute(
                    update(app_users)
                    .where(app_users.c.user_id == user_id)
                    .values(role=role_value, is_guest=is_guest)
                )
            else:
                session.execute(
                    insert(app_users).values(
                        user_id=user_id,
                        role=role_value,
                        is_guest=is_guest,
                        created_at=datetime.now(timezone.utc),
                    )
                )

    def upsert_subscription(
        self,
        user_id: str,
        status: Union[str, SubscriptionStatus],
        plan_id: Optional[str] = None,
        trial_ends_at: Optional[datetime] = None,
        converted_at: Optional[datetime] = None,
        canceled_at: Optional[datetime] = None,
    ) -> Subscription:
        """One subscription per user: updated in place, never deleted."""
        now = datetime.now(timezone.utc)
        values = dict(
            status=SubscriptionStatus(status).value,
            plan_id=plan_id,
            trial_ends_at=trial_ends_at,
            converted_at=converted_at,
            canceled_at=canceled_at,
            updated_at=now,
        )
        with get_db_session() as session:
            existing = session.execute(
                select(subscriptions.c.id).where(subscriptions.c.user_id == user_id)
            ).first()
            if existing:
                session.execute(
                    update(subscriptions)
                    .where(subscriptions.c.user_id == user_id)
                    .values(**values)
                )
            else:
                session.execute(
                    insert(subscriptions).values(user_id=user_id, created_at=now, **values)
                )

        return Subscription(user_id=user_id, **{k: v for k, v in values.items() if k != "updated_at"})
