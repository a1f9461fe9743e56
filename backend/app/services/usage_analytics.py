from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Literal, get_args
from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import UsageRecord

GroupBy = Literal["day", "week", "month"]
GROUP_BY_VALUES: tuple[str, ...] = get_args(GroupBy)
DEFAULT_GROUP_BY: GroupBy = "day"


@dataclass
class ModelUsage:
    tokens: int = 0
    cost: Decimal = Decimal("0")


@dataclass
class PeriodSummary:
    period: str
    requests: int = 0
    tokens: int = 0
    cost: Decimal = Decimal("0")
    models: dict[str, ModelUsage] = field(default_factory=dict)


@dataclass
class UsageSummary:
    total_requests: int = 0
    total_tokens: int = 0
    total_cost: Decimal = Decimal("0")
    period_summaries: list[PeriodSummary] = field(default_factory=list)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def period_key(created_at: datetime, group_by: GroupBy) -> str:
    moment = as_utc(created_at)
    if group_by == "day":
        return moment.date().isoformat()
    if group_by == "week":
        # Weeks start on Sunday: weekday() is Monday=0, so Sunday offset is (weekday + 1) % 7.
        week_start = moment.date() - timedelta(days=(moment.weekday() + 1) % 7)
        return week_start.isoformat()
    if group_by == "month":
        return f"{moment.year:04d}-{moment.month:02d}"
    raise ValueError(f"Unsupported group_by value: {group_by!r}")


def summarize_usage(records: Iterable[UsageRecord], group_by: GroupBy = DEFAULT_GROUP_BY) -> UsageSummary:
    if group_by not in GROUP_BY_VALUES:
        raise ValueError(f"Unsupported group_by value: {group_by!r}")

    summary = UsageSummary()
    periods: dict[str, PeriodSummary] = {}

    for record in records:
        tokens = record.total_tokens or 0
        cost = Decimal(record.estimated_cost or 0)

        summary.total_requests += 1
        summary.total_tokens += tokens
        summary.total_cost += cost

        key = period_key(record.created_at, group_by)
        period = periods.get(key)
        if period is None:
            period = periods[key] = PeriodSummary(period=key)
        period.requests += 1
        period.tokens += tokens
        period.cost += cost

        model = period.models.setdefault(record.model_id, ModelUsage())
        model.tokens += tokens
        model.cost += cost

    summary.period_summaries = [periods[key] for key in sorted(periods)]
    return summary


def _user_usage_query(
    user_id: UUID,
    start_date: datetime | None,
    end_date: datetime | None,
) -> Select[tuple[UsageRecord]]:
    query = select(UsageRecord).where(UsageRecord.user_id == user_id)
    if start_date is not None:
        query = query.where(UsageRecord.created_at >= as_utc(start_date))
    if end_date is not None:
        query = query.where(UsageRecord.created_at <= as_utc(end_date))
    return query


def _is_empty_window(start_date: datetime | None, end_date: datetime | None) -> bool:
    return start_date is not None and end_date is not None and as_utc(start_date) > as_utc(end_date)


async def get_user_usage_analytics(
    db: AsyncSession,
    user_id: UUID,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> list[UsageRecord]:
    """Raw usage rows for one user, newest first.

    A missing or zero `limit` returns every row; `offset` only applies alongside a `limit`.
    """
    if _is_empty_window(start_date, end_date):
        return []

    query = _user_usage_query(user_id, start_date, end_date).order_by(
        UsageRecord.created_at.desc(),
        UsageRecord.id.desc(),
    )
    if limit:
        query = query.limit(limit).offset(offset or 0)

    result = await db.execute(query)
    return list(result.scalars().all())


async def get_user_usage_summary(
    db: AsyncSession,
    user_id: UUID,
    *,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    group_by: GroupBy = DEFAULT_GROUP_BY,
) -> UsageSummary:
    if group_by not in GROUP_BY_VALUES:
        raise ValueError(f"Unsupported group_by value: {group_by!r}")
    if _is_empty_window(start_date, end_date):
        return UsageSummary()

    query = _user_usage_query(user_id, start_date, end_date).order_by(UsageRecord.created_at.asc())
    result = await db.execute(query)
    return summarize_usage(result.scalars().all(), group_by)
