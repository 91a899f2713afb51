"""
Business hours routes.

Every tenant has exactly seven rows, one per day_of_week (0 = Sunday).
They are seeded when the tenant is created and replaced as a full week.

    GET /business-hours         -> The week, ordered by day
    PUT /business-hours         -> Replace the week (exactly 7 entries)
    GET /business-hours/{day}   -> One day
    PUT /business-hours/{day}   -> Update one day
"""

import logging
import uuid
from datetime import time
from typing import Optional

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from .core.config import get_settings
from .core.errors import NotFoundError, ValidationError
from .core.responses import success_response
from .models import BusinessHours
from .tenancy import TenantContext, get_tenant_session, require_tenant_context
from .tenancy.queries import get_business_hours_for_day, list_business_hours


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/business-hours", tags=["business-hours"])

DAYS_IN_WEEK = 7
TIME_PATTERN = r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$"


def parse_hhmm(value: str) -> time:
    hour, minute = value.split(":")
    return time(int(hour), int(minute))


def format_hhmm(value: time) -> str:
    return value.strftime("%H:%M")


class DayHours(BaseModel):
    open_time: str = Field(..., pattern=TIME_PATTERN)
    close_time: str = Field(..., pattern=TIME_PATTERN)
    is_closed: bool = False


class WeekDayHours(DayHours):
    day_of_week: int = Field(..., ge=0, le=6)


class WeekHours(BaseModel):
    hours: list[WeekDayHours]

    @field_validator("hours")
    @classmethod
    def _full_week(cls, hours: list[WeekDayHours]) -> list[WeekDayHours]:
        if len(hours) != DAYS_IN_WEEK:
            raise ValueError("Must provide exactly 7 days of business hours")
        if sorted(h.day_of_week for h in hours) != list(range(DAYS_IN_WEEK)):
            raise ValueError("Each day_of_week 0-6 must appear exactly once")
        return hours


def _out(row: BusinessHours) -> dict:
    return {
        "id": str(row.id),
        "day_of_week": row.day_of_week,
        "open_time": format_hhmm(row.open_time),
        "close_time": format_hhmm(row.close_time),
        "is_closed": row.is_closed,
    }


def default_week(tenant_id: uuid.UUID, open_time: Optional[time] = None, close_time: Optional[time] = None) -> list[BusinessHours]:
    """Seven open days with the configured default hours."""
    default_open, default_close = get_settings().default_hours
    return [
        BusinessHours(
            tenant_id=tenant_id,
            day_of_week=day,
            open_time=open_time or default_open,
            close_time=close_time or default_close,
            is_closed=False,
        )
        for day in range(DAYS_IN_WEEK)
    ]


@router.get("")
async def get_business_hours_endpoint(
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    rows = await list_business_hours(session, ctx.tenant_id)
    return success_response([_out(r) for r in rows])


@router.put("")
async def replace_business_hours_endpoint(
    payload: WeekHours,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    stmt = insert(BusinessHours).values(
        [
            {
                "id": uuid.uuid4(),
                "tenant_id": ctx.tenant_id,
                "day_of_week": day.day_of_week,
                "open_time": parse_hhmm(day.open_time),
                "close_time": parse_hhmm(day.close_time),
                "is_closed": day.is_closed,
            }
            for day in payload.hours
        ]
    )
    stmt = stmt.on_conflict_do_update(
        constraint="uq_business_hours_tenant_day",
        set_={
            "open_time": stmt.excluded.open_time,
            "close_time": stmt.excluded.close_time,
            "is_closed": stmt.excluded.is_closed,
        },
    )
    await session.execute(stmt)

    rows = await list_business_hours(session, ctx.tenant_id)
    body = [_out(r) for r in rows]
    await session.commit()

    logger.info(f"Replaced business hours tenant={ctx.tenant_id}")
    return success_response(body, message="Business hours updated")


def _valid_day(day: int) -> int:
    if day < 0 or day > 6:
        raise ValidationError("Invalid day of week. Must be 0-6", details={"day": day})
    return day


@router.get("/{day}")
async def get_day_hours_endpoint(
    day: int = Path(...),
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    row = await get_business_hours_for_day(session, ctx.tenant_id, _valid_day(day))
    if not row:
        raise NotFoundError("Business hours")
    return success_response(_out(row))


@router.put("/{day}")
async def update_day_hours_endpoint(
    payload: DayHours,
    day: int = Path(...),
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    row = await get_business_hours_for_day(session, ctx.tenant_id, _valid_day(day))
    if not row:
        raise NotFoundError("Business hours")

    row.open_time = parse_hhmm(payload.open_time)
    row.close_time = parse_hhmm(payload.close_time)
    row.is_closed = payload.is_closed
    body = _out(row)
    await session.commit()

    return success_response(body, message="Business hours updated")
