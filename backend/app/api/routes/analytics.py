from __future__ import annotations

from datetime import date, datetime, time
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_current_user, get_db
from app.core.cache import response_cache
from app.core.config import get_settings
from app.models import User
from app.schemas.analytics import PricingOut, UsageRecordOut, UsageSummaryOut
from app.services.usage_analytics import (
    DEFAULT_GROUP_BY,
    GROUP_BY_VALUES,
    GroupBy,
    as_utc,
    get_user_usage_analytics,
    get_user_usage_summary,
)

router = APIRouter(prefix="/analytics", tags=["analytics"])


def parse_query_datetime(raw: str | None, param: str, *, end_of_day: bool = False) -> datetime | None:
    if raw is None or not raw.strip():
        return None

    raw = raw.strip()
    try:
        if len(raw) == 10:
            day = date.fromisoformat(raw)
            moment = datetime.combine(day, time.max if end_of_day else time.min)
        else:
            moment = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {param}: expected an ISO-8601 date or datetime",
        ) from exc
    return as_utc(moment)


def normalize_group_by(raw: str | None) -> GroupBy:
    value = (raw or "").strip().lower()
    if value in GROUP_BY_VALUES:
        return value  # type: ignore[return-value]
    return DEFAULT_GROUP_BY


@router.get("/usage", response_model=list[UsageRecordOut])
async def usage_records(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    start_date: Annotated[str | None, Query(alias="startDate")] = None,
    end_date: Annotated[str | None, Query(alias="endDate")] = None,
    limit: Annotated[int | None, Query(ge=0)] = None,
    offset: Annotated[int | None, Query(ge=0)] = None,
) -> list[UsageRecordOut]:
    records = await get_user_usage_analytics(
        db,
        current_user.id,
        start_date=parse_query_datetime(start_date, "startDate"),
        end_date=parse_query_datetime(end_date, "endDate", end_of_day=True),
        limit=limit,
        offset=offset,
    )
    return [UsageRecordOut.model_validate(record) for record in records]


@router.get("/summary", response_model=UsageSummaryOut)
async def usage_summary(
    current_user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    start_date: Annotated[str | None, Query(alias="startDate")] = None,
    end_date: Annotated[str | None, Query(alias="endDate")] = None,
    group_by: Annotated[str | None, Query(alias="groupBy")] = None,
) -> UsageSummaryOut:
    summary = await get_user_usage_summary(
        db,
        current_user.id,
        start_date=parse_query_datetime(start_date, "startDate"),
        end_date=parse_query_datetime(end_date, "endDate", end_of_day=True),
        group_by=normalize_group_by(group_by),
    )
    return UsageSummaryOut.from_summary(summary)


@router.get("/pricing", response_model=PricingOut)
async def model_pricing(request: Request) -> JSONResponse:
    key = request.url.path
    cached = response_cache.get(key)
    if cached is not None:
        return JSONResponse(content=cached, headers={"X-Cache": "HIT"})

    payload = PricingOut.current().model_dump(by_alias=True)
    response_cache.set(key, payload, get_settings().response_cache_ttl_seconds)
    return JSONResponse(content=payload, headers={"X-Cache": "MISS"})
