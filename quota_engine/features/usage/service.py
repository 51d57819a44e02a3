"""
quota_engine/features/usage/service.py

Daily usage accounting.

Handles:
- Atomic per-user, per-UTC-day counters (single upsert statement)
- Reading today's usage without creating rows
- UTC day boundaries independent of the process time zone
"""

from datetime import date, datetime, timezone
from typing import Callable, Optional, Protocol
import logging

from sqlalchemy import select

from quota_engine.core.database import daily_usage, get_db_session, upsert_insert
from quota_engine.core.errors import ValidationError
from quota_engine.models.usage import DailyUsageData


logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_USAGE_COLUMNS = (
    daily_usage.c.request_count,
    daily_usage.c.input_tokens,
    daily_usage.c.output_tokens,
    daily_usage.c.total_cost_usd,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today(now: Optional[datetime] = None) -> date:
    """UTC calendar date of `now` (naive timestamps are taken as UTC)."""
    if now is None:
        now = _utc_now()
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).date()


class UsageStore(Protocol):
    """Storage for daily counters. increment must be atomic per (user_id, usage_date)."""

    def fetch(self, user_id: str, usage_date: date) -> Optional[DailyUsageData]:
        ...

    def increment(
        self,
        user_id: str,
        usage_date: date,
        input_tokens: int,
        output_tokens: int,
        cost_usd: float,
    ) -> DailyUsageData:
        ...


def _row_to_usage(row) -> DailyUsageData:
    return DailyUsageData(
        request_count=row.request_count,
        input_tokens=row.input_tokens,
        output_tokens=row.output_tokens,
        total_cost_usd=row.total_cost_usd,
    )


class SqlUsageStore:
    """
    UsageStore on the daily_usage table.

    increment is one INSERT ... ON CONFLICT DO UPDATE ... RETURNING statement,
    so concurrent increments for the same key never lose updates.
    """

    def fetch(self, user_id: str, usage_date: date) -> Optional[DailyUsageData]:
        with get_db_session() as session:
            row = session.execute(
                select(*_USAGE_COLUMNS)
                .where(daily_usage.c.user_id == user_id)
                .where(daily_usage.c.usage_date == usage_date)
            ).first()

        if not row:
            return None
        return _row_to_usage(row)

    def increment(
        self,
        user_id: str,
        usage_date: date,
        input_tokens: int,
        output_tokens: int,
        cost_usd: float,
    ) -> DailyUsageData:
        stmt = upsert_insert(daily_usage).values(
            user_id=user_id,
            usage_date=usage_date,
            request_count=1,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_cost_usd=cost_usd,
            updated_at=_utc_now(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[daily_usage.c.user_id, daily_usage.c.usage_date],
            set_={
                "request_count": daily_usage.c.request_count + stmt.excluded.request_count,
                "input_tokens": daily_usage.c.input_tokens + stmt.excluded.input_tokens,
                "output_tokens": daily_usage.c.output_tokens + stmt.excluded.output_tokens,
                "total_cost_usd": daily_usage.c.total_cost_usd + stmt.excluded.total_cost_usd,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(*_USAGE_COLUMNS)

        with get_db_session() as session:
            row = session.execute(stmt).one()

        return _row_to_usage(row)


class UsageCounter:
    """Reads and increments today's usage through a UsageStore."""

    def __init__(self, store: UsageStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or _utc_now

    def utc_today(self) -> date:
        return utc_today(self.clock())

    def get_daily_usage(self, user_id: str) -> DailyUsageData:
        """Today's counters; zeros if nothing was recorded yet."""
        return self.store.fetch(user_id, self.utc_today()) or DailyUsageData()

    def increment_usage(
        self,
        user_id: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
        cost_usd: float = 0.0,
    ) -> DailyUsageData:
        """
        Record one request and its token/cost consumption.

        Raises:
            ValidationError: if any delta is negative
        """
        negative = [
            name
            for name, value in (
                ("input_tokens", input_tokens),
                ("output_tokens", output_tokens),
                ("cost_usd", cost_usd),
            )
            if value < 0
        ]
        if negative:
            raise ValidationError(f"Usage deltas must be non-negative: {', '.join(negative)}")

        usage_date = self.utc_today()
        usage = self.store.increment(user_id, usage_date, input_tokens, output_tokens, cost_usd)
        logger.debug(
            "[usage] incremented",
            extra={
                "user_id": user_id,
                "usage_date": usage_date.isoformat(),
                "request_count": usage.request_count,
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
                "total_cost_usd": usage.total_cost_usd,
            },
        )
        return usage
