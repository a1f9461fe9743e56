from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from app.services.usage_analytics import (
    get_user_usage_analytics,
    get_user_usage_summary,
    period_key,
    summarize_usage,
)
from app.services.usage_tracker import build_usage_record


def _record(created_at: datetime, model_id: str = "gpt-4o", prompt_tokens: int = 1000, completion_tokens: int = 500):
    record = build_usage_record(
        user_id=uuid.uuid4(),
        request_type="chat_completion",
        model_id=model_id,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
    )
    record.created_at = created_at
    return record


@pytest.mark.parametrize(
    ("moment", "group_by", "expected"),
    [
        (datetime(2024, 1, 3, 15, 30, tzinfo=UTC), "day", "2024-01-03"),
        (datetime(2024, 1, 3, 15, 30, tzinfo=UTC), "week", "2023-12-31"),
        (datetime(2024, 1, 7, 0, 0, tzinfo=UTC), "week", "2024-01-07"),
        (datetime(2024, 1, 6, 23, 59, tzinfo=UTC), "week", "2023-12-31"),
        (datetime(2024, 2, 29, 12, 0, tzinfo=UTC), "month", "2024-02"),
        (datetime(2024, 1, 3, 12, 0), "day", "2024-01-03"),
    ],
)
def test_period_key(moment: datetime, group_by: str, expected: str) -> None:
    assert period_key(moment, group_by) == expected


def test_period_key_uses_utc_date() -> None:
    moment = datetime(2024, 1, 2, 22, 0, tzinfo=timezone(timedelta(hours=-5)))

    assert period_key(moment, "day") == "2024-01-03"


def test_daily_summary_has_one_period_per_day() -> None:
    summary = summarize_usage(
        [
            _record(datetime(2024, 1, 1, 9, 0, tzinfo=UTC)),
            _record(datetime(2024, 1, 2, 9, 0, tzinfo=UTC)),
        ],
        "day",
    )

    assert [p.period for p in summary.period_summaries] == ["2024-01-01", "2024-01-02"]
    assert [p.requests for p in summary.period_summaries] == [1, 1]


def test_weekly_summary_keys_to_preceding_sunday() -> None:
    summary = summarize_usage(
        [
            _record(datetime(2024, 1, 3, 9, 0, tzinfo=UTC)),
            _record(datetime(2024, 1, 3, 17, 0, tzinfo=UTC)),
        ],
        "week",
    )

    assert len(summary.period_summaries) == 1
    period = summary.period_summaries[0]
    assert period.period == "2023-12-31"
    assert period.requests == 2


def test_summary_totals_are_conserved_across_periods() -> None:
    records = [
        _record(datetime(2024, 1, 1, tzinfo=UTC), "gpt-4o", 1000, 500),
        _record(datetime(2024, 1, 15, tzinfo=UTC), "gpt-4", 300, 200),
        _record(datetime(2024, 2, 1, tzinfo=UTC), "foo-bar", 1000, 1000),
        _record(datetime(2024, 2, 2, tzinfo=UTC), "gpt-4o", 0, 0),
    ]

    summary = summarize_usage(records, "month")

    assert summary.total_requests == 4
    assert summary.total_tokens == 1500 + 500 + 2000
    assert summary.total_cost == Decimal("0.0125") + Decimal("0.021") + Decimal("0.04")
    assert sum(p.requests for p in summary.period_summaries) == summary.total_requests
    assert sum(p.tokens for p in summary.period_summaries) == summary.total_tokens
    assert sum(p.cost for p in summary.period_summaries) == summary.total_cost


def test_period_breaks_down_usage_by_model() -> None:
    summary = summarize_usage(
        [
            _record(datetime(2024, 3, 1, 8, tzinfo=UTC), "gpt-4o", 1000, 500),
            _record(datetime(2024, 3, 1, 9, tzinfo=UTC), "gpt-4o", 1000, 500),
            _record(datetime(2024, 3, 1, 10, tzinfo=UTC), "gpt-3.5-turbo", 1000, 1000),
        ],
        "day",
    )

    models = summary.period_summaries[0].models
    assert set(models) == {"gpt-4o", "gpt-3.5-turbo"}
    assert models["gpt-4o"].tokens == 3000
    assert models["gpt-4o"].cost == Decimal("0.025")
    assert models["gpt-3.5-turbo"].cost == Decimal("0.002")


def test_summary_is_sparse_and_sorted() -> None:
    summary = summarize_usage(
        [
            _record(datetime(2024, 1, 20, tzinfo=UTC)),
            _record(datetime(2024, 1, 1, tzinfo=UTC)),
        ],
        "day",
    )

    assert [p.period for p in summary.period_summaries] == ["2024-01-01", "2024-01-20"]


def test_empty_summary() -> None:
    summary = summarize_usage([], "week")

    assert summary.total_requests == 0
    assert summary.total_cost == Decimal("0")
    assert summary.period_summaries == []


def test_summarize_rejects_unknown_group_by() -> None:
    with pytest.raises(ValueError):
        summarize_usage([], "year")


@pytest.mark.asyncio
async def test_listing_is_newest_first(session_maker, user, add_usage) -> None:
    base = datetime(2024, 5, 1, tzinfo=UTC)
    for day in range(3):
        await add_usage(user, base + timedelta(days=day), prompt_tokens=day)

    async with session_maker() as session:
        records = await get_user_usage_analytics(session, user.id)

    assert [r.prompt_tokens for r in records] == [2, 1, 0]


@pytest.mark.asyncio
async def test_listing_applies_limit_and_offset(session_maker, user, add_usage) -> None:
    base = datetime(2024, 5, 1, tzinfo=UTC)
    for day in range(5):
        await add_usage(user, base + timedelta(days=day), prompt_tokens=day)

    async with session_maker() as session:
        page = await get_user_usage_analytics(session, user.id, limit=2, offset=1)
        first_page = await get_user_usage_analytics(session, user.id, limit=2)

    assert [r.prompt_tokens for r in page] == [3, 2]
    assert [r.prompt_tokens for r in first_page] == [4, 3]


@pytest.mark.asyncio
async def test_listing_treats_zero_limit_as_unset(session_maker, user, add_usage) -> None:
    base = datetime(2024, 5, 1, tzinfo=UTC)
    for day in range(3):
        await add_usage(user, base + timedelta(days=day), prompt_tokens=day)

    async with session_maker() as session:
        unlimited = await get_user_usage_analytics(session, user.id, limit=0, offset=1)
        offset_only = await get_user_usage_analytics(session, user.id, offset=2)

    assert [r.prompt_tokens for r in unlimited] == [2, 1, 0]
    assert [r.prompt_tokens for r in offset_only] == [2, 1, 0]


@pytest.mark.asyncio
async def test_listing_window_is_inclusive(session_maker, user, add_usage) -> None:
    start = datetime(2024, 5, 2, tzinfo=UTC)
    end = datetime(2024, 5, 3, tzinfo=UTC)
    await add_usage(user, datetime(2024, 5, 1, tzinfo=UTC), prompt_tokens=1)
    await add_usage(user, start, prompt_tokens=2)
    await add_usage(user, end, prompt_tokens=3)
    await add_usage(user, datetime(2024, 5, 4, tzinfo=UTC), prompt_tokens=4)

    async with session_maker() as session:
        records = await get_user_usage_analytics(session, user.id, start_date=start, end_date=end)

    assert [r.prompt_tokens for r in records] == [3, 2]


@pytest.mark.asyncio
async def test_queries_are_scoped_to_user(session_maker, user, other_user, add_usage) -> None:
    await add_usage(user, datetime(2024, 5, 1, tzinfo=UTC))
    await add_usage(other_user, datetime(2024, 5, 1, tzinfo=UTC))
    await add_usage(other_user, datetime(2024, 5, 2, tzinfo=UTC))

    async with session_maker() as session:
        records = await get_user_usage_analytics(session, user.id)
        summary = await get_user_usage_summary(session, other_user.id)

    assert [r.user_id for r in records] == [user.id]
    assert summary.total_requests == 2


@pytest.mark.asyncio
async def test_summary_after_all_records_is_empty(session_maker, user, add_usage) -> None:
    await add_usage(user, datetime(2024, 1, 1, tzinfo=UTC))
    await add_usage(user, datetime(2024, 1, 2, tzinfo=UTC))

    async with session_maker() as session:
        summary = await get_user_usage_summary(session, user.id, start_date=datetime(2025, 1, 1, tzinfo=UTC))

    assert summary.total_requests == 0
    assert summary.period_summaries == []


@pytest.mark.asyncio
async def test_reversed_window_is_empty_not_an_error(session_maker, user, add_usage) -> None:
    await add_usage(user, datetime(2024, 1, 1, tzinfo=UTC))
    start, end = datetime(2024, 2, 1, tzinfo=UTC), datetime(2023, 12, 1, tzinfo=UTC)

    async with session_maker() as session:
        records = await get_user_usage_analytics(session, user.id, start_date=start, end_date=end)
        summary = await get_user_usage_summary(session, user.id, start_date=start, end_date=end)

    assert records == []
    assert summary.total_requests == 0


@pytest.mark.asyncio
async def test_summary_reads_are_idempotent(session_maker, user, add_usage) -> None:
    await add_usage(user, datetime(2024, 1, 1, tzinfo=UTC), model_id="gpt-4")
    await add_usage(user, datetime(2024, 1, 9, tzinfo=UTC))

    async with session_maker() as session:
        first = await get_user_usage_summary(session, user.id, group_by="week")
    async with session_maker() as session:
        second = await get_user_usage_summary(session, user.id, group_by="week")

    assert first == second
    assert [p.period for p in first.period_summaries] == ["2023-12-31", "2024-01-07"]
