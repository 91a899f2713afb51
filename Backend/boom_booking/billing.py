"""
Usage and Billing

Pure functions price a tenant's usage against its plan; the routes only count
rows and format the result.

Billing Formula:
    overage[metric]  = max(0, used[metric] - plan_limit[metric])
    overage_charges  = sum(overage[metric] * OVERAGE_RATES[metric])
    total_amount     = plan.price + overage_charges

Example (basic plan, 19.00/month, 500 bookings included):
    520 bookings -> 20 over * 0.10 = 2.00
    total = 19.00 + 2.00 = 21.00

    GET /billing         -> Usage, limits and charges for a period
    GET /billing/alerts  -> 80% warnings and overage errors for this month
    PUT /billing/plan    -> Change plan
"""

import calendar
import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .core.errors import NotFoundError
from .core.responses import success_response
from .models import PlanType, Tenant
from .tenancy import TenantContext, get_tenant_session, require_tenant_context
from .tenancy.queries import count_active_rooms, count_api_calls_between, count_bookings_created_between


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])

Period = Literal["current", "previous", "year"]

METRICS = ("bookings", "rooms", "api_calls")
ALERT_THRESHOLD = Decimal("0.8")
METRIC_LABELS = {"bookings": "booking", "rooms": "room", "api_calls": "API call"}


@dataclass(frozen=True)
class PlanLimits:
    price: Decimal
    bookings: int
    rooms: int
    api_calls: int
    storage_gb: int

    def to_dict(self) -> dict:
        return {**asdict(self), "price": float(self.price)}


PLAN_LIMITS: dict[str, PlanLimits] = {
    PlanType.FREE.value: PlanLimits(Decimal("0"), 50, 1, 1000, 1),
    PlanType.BASIC.value: PlanLimits(Decimal("19"), 500, 5, 10000, 5),
    PlanType.PRO.value: PlanLimits(Decimal("49"), 2000, 20, 50000, 20),
    PlanType.BUSINESS.value: PlanLimits(Decimal("99"), 10000, 100, 200000, 100),
    PlanType.PROFESSIONAL.value: PlanLimits(Decimal("99"), 10000, 100, 200000, 100),
}

OVERAGE_RATES: dict[str, Decimal] = {
    "bookings": Decimal("0.10"),   # per extra booking
    "rooms": Decimal("5.00"),      # per extra active room
    "api_calls": Decimal("0.001"), # per extra API call
}


@dataclass(frozen=True)
class Usage:
    bookings: int = 0
    rooms: int = 0
    api_calls: int = 0


def plan_limits(plan_type: Optional[str]) -> PlanLimits:
    """Limits for a plan; unknown plans get the free tier."""
    return PLAN_LIMITS.get(plan_type or "", PLAN_LIMITS[PlanType.FREE.value])


def period_date_range(period: str, now: Optional[datetime] = None) -> tuple[datetime, datetime]:
    """
    UTC bounds of a billing period.

        current  -> first of this month .. last day of this month 23:59:59
        previous -> first of last month .. last day of last month 23:59:59
        year     -> January 1st .. last day of this month 23:59:59
    """
    now = now or datetime.now(timezone.utc)
    year, month = now.year, now.month

    if period == "previous":
        year, month = (year - 1, 12) if month == 1 else (year, month - 1)
        start = datetime(year, month, 1, tzinfo=timezone.utc)
    elif period == "year":
        start = datetime(year, 1, 1, tzinfo=timezone.utc)
    elif period == "current":
        start = datetime(year, month, 1, tzinfo=timezone.utc)
    else:
        raise ValueError(f"Unknown billing period: {period}")

    last_day = calendar.monthrange(year, month)[1]
    end = datetime(year, month, last_day, 23, 59, 59, tzinfo=timezone.utc)
    return start, end


def calculate_overages(usage: Usage, limits: PlanLimits) -> dict[str, int]:
    return {metric: max(0, getattr(usage, metric) - getattr(limits, metric)) for metric in METRICS}


def calculate_overage_charges(overages: dict[str, int]) -> dict[str, Decimal]:
    charges = {metric: overages.get(metric, 0) * OVERAGE_RATES[metric] for metric in METRICS}
    charges["total"] = sum(charges.values(), Decimal("0"))
    return charges


def calculate_billing(plan_type: Optional[str], usage: Usage) -> dict:
    """Full bill for one period. Money values are floats for JSON."""
    limits = plan_limits(plan_type)
    overages = calculate_overages(usage, limits)
    charges = calculate_overage_charges(overages)
    total = limits.price + charges["total"]

    return {
        "plan": {
            "type": plan_type,
            "base_price": float(limits.price),
            "limits": limits.to_dict(),
        },
        "overages": overages,
        "overage_charges": {metric: float(amount) for metric, amount in charges.items()},
        "total_amount": float(total),
        "currency": "USD",
        "billing_period": "monthly",
    }


def usage_alerts(usage: Usage, limits: PlanLimits) -> list[dict]:
    """Warnings at 80% of a limit, errors once a limit is exceeded."""
    alerts = []
    for metric in METRICS:
        used, limit = getattr(usage, metric), getattr(limits, metric)
        label = METRIC_LABELS[metric]
        if limit and used >= limit * ALERT_THRESHOLD:
            percent = round(used / limit * 100)
            alerts.append({
                "type": "warning",
                "metric": metric,
                "message": f"You've used {percent}% of your {label} limit",
                "current": used,
                "limit": limit,
            })

    for metric, overage in calculate_overages(usage, limits).items():
        if overage > 0:
            label = METRIC_LABELS[metric]
            alerts.append({
                "type": "error",
                "metric": metric,
                "message": f"You've exceeded your {label} limit by {overage}",
                "overage": overage,
            })
    return alerts


# ────────────────────────────────────────────────────────────────
# Database
# ────────────────────────────────────────────────────────────────

async def get_usage_for_period(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    period: str = "current",
    now: Optional[datetime] = None,
) -> tuple[Usage, tuple[datetime, datetime]]:
    start, end = period_date_range(period, now)
    usage = Usage(
        bookings=await count_bookings_created_between(session, tenant_id, start, end),
        rooms=await count_active_rooms(session, tenant_id),
        api_calls=await count_api_calls_between(session, tenant_id, start, end),
    )
    return usage, (start, end)


async def _tenant(session: AsyncSession, tenant_id: uuid.UUID) -> Tenant:
    result = await session.execute(select(Tenant).where(Tenant.id == tenant_id))
    tenant = result.scalar_one_or_none()
    if not tenant:
        raise NotFoundError("Tenant")
    return tenant


class PlanChange(BaseModel):
    plan_type: PlanType


@router.get("")
async def get_billing_endpoint(
    period: Period = Query(default="current"),
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    tenant = await _tenant(session, ctx.tenant_id)
    usage, (start, end) = await get_usage_for_period(session, ctx.tenant_id, period)
    limits = plan_limits(tenant.plan_type)

    return success_response({
        "tenant": {
            "id": str(tenant.id),
            "name": tenant.name,
            "plan_type": tenant.plan_type,
            "status": tenant.status.value,
        },
        "usage": {
            "period": period,
            "date_range": {"start": start.isoformat(), "end": end.isoformat()},
            **{metric: {"count": getattr(usage, metric), "limit": getattr(limits, metric)} for metric in METRICS},
        },
        "billing": calculate_billing(tenant.plan_type, usage),
    })


@router.get("/alerts")
async def get_billing_alerts_endpoint(
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    tenant = await _tenant(session, ctx.tenant_id)
    usage, _ = await get_usage_for_period(session, ctx.tenant_id, "current")
    limits = plan_limits(tenant.plan_type)

    return success_response({
        "alerts": usage_alerts(usage, limits),
        "usage_summary": {metric: f"{getattr(usage, metric)}/{getattr(limits, metric)}" for metric in METRICS},
    })


@router.put("/plan")
async def change_plan_endpoint(
    payload: PlanChange,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    tenant = await _tenant(session, ctx.tenant_id)
    previous = tenant.plan_type
    tenant.plan_type = payload.plan_type.value
    await session.commit()

    logger.info(f"Tenant {tenant.id} plan changed {previous} -> {tenant.plan_type}")
    return success_response(
        {"id": str(tenant.id), "plan_type": tenant.plan_type},
        message=f"Plan updated to {tenant.plan_type}",
    )
