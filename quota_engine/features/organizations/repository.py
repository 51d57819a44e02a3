"""
Organization repository (memberships and contracts).

The entitlement engine depends only on the OrganizationRepository protocol;
SqlOrganizationRepository is the SQLAlchemy Core implementation.
"""
from datetime import datetime, timezone
from typing import List, Optional, Protocol
import logging

from sqlalchemy import func, select, insert, update

from quota_engine.core.database import (
    get_db_session,
    organizations,
    organization_memberships,
    organization_contracts,
    upsert_insert,
)
from quota_engine.models.organization import (
    MembershipRole,
    MembershipStatus,
    OrganizationContract,
    OrganizationMembership,
    OrganizationStatus,
)
from quota_engine.models.plan import QuotaVector


logger = logging.getLogger(__name__)


class OrganizationRepository(Protocol):
    """Read side needed for entitlement resolution, plus contract writes."""

    def list_active_memberships(self, user_id: str) -> List[OrganizationMembership]:
        """Return ACTIVE memberships of the user in ACTIVE organizations."""
        ...

    def get_contract(self, organization_id: str) -> Optional[OrganizationContract]:
        """Return the organization's contract, or None if it has none."""
        ...

    def store_contract(self, contract: OrganizationContract) -> OrganizationContract:
        """
        Insert or replace the organization's contract in one atomic write.

        The store assigns the version: 1 for a new contract, previous + 1
        otherwise. contract.version is ignored. Returns the stored record.
        """
        ...


def _contract_from_row(row) -> OrganizationContract:
    return OrganizationContract(
        organization_id=row.organization_id,
        base_plan=row.base_plan,
        seat_limit=row.seat_limit,
        plan_label=row.plan_label,
        model_tier=row.model_tier,
        limits=QuotaVector(
            max_requests_per_day=row.max_requests_per_day,
            max_input_tokens_per_day=row.max_input_tokens_per_day,
            max_output_tokens_per_day=row.max_output_tokens_per_day,
            max_cost_per_day_usd=row.max_cost_per_day_usd,
            max_context_messages=row.max_context_messages,
        ),
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class SqlOrganizationRepository:
    """OrganizationRepository backed by the shared SQLAlchemy engine."""

    def list_active_memberships(self, user_id: str) -> List[OrganizationMembership]:
        query = (
            select(
                organization_memberships.c.user_id,
                organization_memberships.c.organization_id,
                organization_memberships.c.status,
                organization_memberships.c.role,
                organizations.c.name,
                organizations.c.status.label("organization_status"),
            )
            .join(
                organizations,
                organizations.c.organization_id == organization_memberships.c.organization_id,
            )
            .where(organization_memberships.c.user_id == user_id)
            .where(organization_memberships.c.status == MembershipStatus.ACTIVE.value)
            .where(organizations.c.status == OrganizationStatus.ACTIVE.value)
            .order_by(organization_memberships.c.organization_id)
        )
        with get_db_session() as session:
            rows = session.execute(query).all()

        return [
            OrganizationMembership(
                user_id=row.user_id,
                organization_id=row.organization_id,
                organization_name=row.name,
                organization_status=row.organization_status,
                status=row.status,
                role=row.role,
            )
            for row in rows
        ]

    def get_contract(self, organization_id: str) -> Optional[OrganizationContract]:
        with get_db_session() as session:
            row = session.execute(
                select(organization_contracts)
                .where(organization_contracts.c.organization_id == organization_id)
            ).first()

        if not row:
            return None
        return _contract_from_row(row)

    def store_contract(self, contract: OrganizationContract) -> OrganizationContract:
        now = datetime.now(timezone.utc)
        values = dict(
            base_plan=contract.base_plan.value,
            seat_limit=contract.seat_limit,
            plan_label=contract.plan_label,
            model_tier=contract.model_tier.value,
            max_requests_per_day=int(contract.limits.max_requests_per_day),
            max_input_tokens_per_day=int(contract.limits.max_input_tokens_per_day),
            max_output_tokens_per_day=int(contract.limits.max_output_tokens_per_day),
            max_cost_per_day_usd=float(contract.limits.max_cost_per_day_usd),
            max_context_messages=contract.limits.max_context_messages,
            updated_at=now,
        )

        stmt = upsert_insert(organization_contracts).values(
            organization_id=contract.organization_id,
            version=1,
            created_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[organization_contracts.c.organization_id],
            set_={
                **{name: stmt.excluded[name] for name in values},
                "version": organization_contracts.c.version + 1,
            },
        ).returning(*organization_contracts.c)

        with get_db_session() as session:
            row = session.execute(stmt).one()

        return _contract_from_row(row)

    # Seeding / admin helpers

    def create_organization(
        self,
        organization_id: str,
        name: str,
        status: OrganizationStatus = OrganizationStatus.ACTIVE,
    ) -> None:
        with get_db_session() as session:
            session.execute(
                insert(organizations).values(
                    organization_id=organization_id,
                    name=name,
                    status=OrganizationStatus(status).value,
                    created_at=datetime.now(timezone.utc),
                )
            )

    def set_organization_status(self, organization_id: str, status: OrganizationStatus) -> None:
        with get_db_session() as session:
            session.execute(
                update(organizations)
                .where(organizations.c.organization_id == organization_id)
                .values(status=OrganizationStatus(status).value)
            )

    def add_membership(
        self,
        organization_id: str,
        user_id: str,
        role: MembershipRole = MembershipRole.MEMBER,
        status: MembershipStatus = MembershipStatus.ACTIVE,
    ) -> MembershipStatus:
        """Insert a membership; returns the stored status (BLOCKED when over the seat limit)."""
        status = MembershipStatus(status)
        with get_db_session() as session:
            session.execute(
                insert(organization_memberships).values(
                    organization_id=organization_id,
                    user_id=user_id,
                    role=MembershipRole(role).value,
                    status=status.value,
                    joined_at=datetime.now(timezone.utc),
                )
            )
            if status == MembershipStatus.ACTIVE:
                status = self._enforce_seat_limit(session, organization_id, user_id)
        return status

    def set_membership_status(
        self,
        organization_id: str,
        user_id: str,
        status: MembershipStatus,
    ) -> MembershipStatus:
        """Update a membership; reactivation is subject to the seat limit."""
        status = MembershipStatus(status)
        with get_db_session() as session:
            session.execute(
                update(organization_memberships)
                .where(organization_memberships.c.organization_id == organization_id)
                .where(organization_memberships.c.user_id == user_id)
                .values(status=status.value)
            )
            if status == MembershipStatus.ACTIVE:
                status = self._enforce_seat_limit(session, organization_id, user_id)
        return status

    def _enforce_seat_limit(self, session, organization_id: str, user_id: str) -> MembershipStatus:
        """Block a just-activated membership when active members exceed the contract's seats."""
        seat_limit = session.execute(
            select(organization_contracts.c.seat_limit)
            .where(organization_contracts.c.organization_id == organization_id)
        ).scalar()
        if seat_limit is None:
            return MembershipStatus.ACTIVE

        active_members = session.execute(
            select(func.count())
            .select_from(organization_memberships)
            .where(organization_memberships.c.organization_id == organization_id)
            .where(organization_memberships.c.status == MembershipStatus.ACTIVE.value)
        ).scalar()
        if active_members <= seat_limit:
            return MembershipStatus.ACTIVE

        session.execute(
            update(organization_memberships)
            .where(organization_memberships.c.organization_id == organization_id)
            .where(organization_memberships.c.user_id == user_id)
            .values(status=MembershipStatus.BLOCKED.value)
        )
        logger.warning(
            "[organizations] seat limit reached, membership blocked",
            extra={
                "organization_id": organization_id,
                "user_id": user_id,
                "seat_limit": seat_limit,
                "active_members": active_members,
            },
        )
        return MembershipStatus.BLOCKED
