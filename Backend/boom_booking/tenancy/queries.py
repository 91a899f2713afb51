"""
Tenant-scoped query helpers.

ALL queries for tenant data MUST use these helpers or include an explicit
tenant_id filter. Row-level security enforces the same boundary inside
PostgreSQL; the explicit filter keeps every statement correct on its own.

Usage:
    from boom_booking.tenancy.queries import get_room_by_id, list_rooms, scoped_select

    room = await get_room_by_id(session, ctx.tenant_id, room_id)
    rooms = await list_rooms(session, ctx.tenant_id)

    # Or using composable helpers:
    stmt = scoped_select(Room, tenant_id).where(Room.category == "VIP")

A row that belongs to another tenant and a row that does not exist both come
back as None, so callers can only ever say "not found".
"""

import uuid
from datetime import datetime
from typing import Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import DeclarativeBase

from ..core.errors import NotFoundError
from ..models import ApiKey, AuditLog, Booking, BookingStatus, BusinessHours, Room, Setting

# Type variable for generic model functions
T = TypeVar("T", bound=DeclarativeBase)

API_USAGE_RESOURCE = "api_usage"


# ────────────────────────────────────────────────────────────────
# Composable Query Helpers
# ────────────────────────────────────────────────────────────────

def scoped_select(model: Type[T], tenant_id: uuid.UUID) -> Select:
    """
    Create a SELECT statement pre-filtered by tenant_id.

    Usage:
        stmt = scoped_select(Room, ctx.tenant_id).where(Room.is_active.is_(True))
        result = await session.execute(stmt)
    """
    return select(model).where(model.tenant_id == tenant_id)


def tenant_filter(model: Type[T], tenant_id: uuid.UUID):
    """Return a SQLAlchemy filter clause for tenant_id."""
    return model.tenant_id == tenant_id


async def require_owned(
    session: AsyncSession,
    model: Type[T],
    entity_id: uuid.UUID,
    tenant_id: uuid.UUID,
    resource: Optional[str] = None,
) -> T:
    """
    Fetch an entity by ID within the tenant, or raise NotFoundError.

    Usage:
        room = await require_owned(session, Room, room_id, ctx.tenant_id, "Room")
    """
    result = await session.execute(
        select(model).where(
            model.id == entity_id,
            model.tenant_id == tenant_id,
        )
    )
    entity = result.scalar_one_or_none()
    if entity is None:
        raise NotFoundError(resource or model.__name__)
    return entity


# ────────────────────────────────────────────────────────────────
# Room Queries (Tenant-Scoped)
# ────────────────────────────────────────────────────────────────

async def get_room_by_id(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    room_id: uuid.UUID,
) -> Optional[Room]:
    """Get a room by ID, scoped to tenant."""
    result = await session.execute(
        select(Room).where(
            Room.id == room_id,
            Room.tenant_id == tenant_id,
        )
    )
    return result.scalar_one_or_none()


async def list_rooms(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    category: Optional[str] = None,
    is_active: Optional[bool] = None,
) -> Sequence[Room]:
    """List rooms for a tenant, optionally filtered."""
    query = select(Room).where(Room.tenant_id == tenant_id)
    if category:
        query = query.where(Room.category == category)
    if is_active is not None:
        query = query.where(Room.is_active.is_(is_active))
    query = query.order_by(Room.name)
    result = await session.execute(query)
    return result.scalars().all()


async def list_room_categories(session: AsyncSession, tenant_id: uuid.UUID) -> list[str]:
    result = await session.execute(
        select(Room.category)
        .where(Room.tenant_id == tenant_id, Room.is_active.is_(True))
        .distinct()
        .order_by(Room.category)
    )
    return list(result.scalars().all())


async def count_active_rooms(session: AsyncSession, tenant_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count(Room.id)).where(Room.tenant_id == tenant_id, Room.is_active.is_(True))
    )
    return result.scalar_one()


# ────────────────────────────────────────────────────────────────
# Booking Queries (Tenant-Scoped)
# ────────────────────────────────────────────────────────────────

async def list_bookings(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    room_id: Optional[uuid.UUID] = None,
    status: Optional[BookingStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
) -> Sequence[Booking]:
    """
    List bookings for a tenant ordered by start time.

    start_date/end_date keep bookings that start on or after start_date and
    end on or before end_date.
    """
    query = select(Booking).where(Booking.tenant_id == tenant_id)
    if room_id:
        query = query.where(Booking.room_id == room_id)
    if status:
        query = query.where(Booking.status == status)
    if start_date:
        query = query.where(Booking.start_time >= start_date)
    if end_date:
        query = query.where(Booking.end_time <= end_date)
    query = query.order_by(Booking.start_time)
    result = await session.execute(query)
    return result.scalars().all()


async def count_open_bookings_for_room(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    room_id: uuid.UUID,
) -> int:
    """Non-cancelled bookings still attached to a room."""
    result = await session.execute(
        select(func.count(Booking.id)).where(
            Booking.tenant_id == tenant_id,
            Booking.room_id == room_id,
            Booking.status != BookingStatus.CANCELLED,
        )
    )
    return result.scalar_one()


async def count_bookings_created_between(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    start: datetime,
    end: datetime,
) -> int:
    result = await session.execute(
        select(func.count(Booking.id)).where(
            Booking.tenant_id == tenant_id,
            Booking.created_at >= start,
            Booking.created_at <= end,
        )
    )
    return result.scalar_one()


# ────────────────────────────────────────────────────────────────
# Business Hours / Settings Queries (Tenant-Scoped)
# ────────────────────────────────────────────────────────────────

async def list_business_hours(session: AsyncSession, tenant_id: uuid.UUID) -> Sequence[BusinessHours]:
    # populate_existing: rows may have just been rewritten by a bulk upsert
    result = await session.execute(
        select(BusinessHours)
        .where(BusinessHours.tenant_id == tenant_id)
        .order_by(BusinessHours.day_of_week)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def get_business_hours_for_day(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    day_of_week: int,
) -> Optional[BusinessHours]:
    result = await session.execute(
        select(BusinessHours).where(
            BusinessHours.tenant_id == tenant_id,
            BusinessHours.day_of_week == day_of_week,
        )
    )
    return result.scalar_one_or_none()


async def list_settings(session: AsyncSession, tenant_id: uuid.UUID) -> Sequence[Setting]:
    result = await session.execute(
        select(Setting)
        .where(Setting.tenant_id == tenant_id)
        .order_by(Setting.key)
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


async def get_setting(session: AsyncSession, tenant_id: uuid.UUID, key: str) -> Optional[Setting]:
    result = await session.execute(
        select(Setting)
        .where(Setting.tenant_id == tenant_id, Setting.key == key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ────────────────────────────────────────────────────────────────
# API Key Queries (Tenant-Scoped)
# ────────────────────────────────────────────────────────────────

async def list_api_keys(session: AsyncSession, tenant_id: uuid.UUID) -> Sequence[ApiKey]:
    result = await session.execute(
        select(ApiKey).where(ApiKey.tenant_id == tenant_id).order_by(ApiKey.created_at.desc())
    )
    return result.scalars().all()


async def get_api_key_by_id(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    key_id: uuid.UUID,
) -> Optional[ApiKey]:
    result = await session.execute(
        select(ApiKey).where(ApiKey.id == key_id, ApiKey.tenant_id == tenant_id)
    )
    return result.scalar_one_or_none()


# ────────────────────────────────────────────────────────────────
# Audit / Usage Metering (Tenant-Scoped)
# ────────────────────────────────────────────────────────────────

async def record_audit(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    action: str,
    resource_type: str,
    resource_id: Optional[uuid.UUID] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuditLog:
    entry = AuditLog(
        tenant_id=tenant_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    session.add(entry)
    await session.flush()
    return entry


async def record_api_usage(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    method: str,
    path: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuditLog:
    """One metered API call. Billing counts these rows."""
    return await record_audit(
        session,
        tenant_id,
        action=f"{method} {path}"[:100],
        resource_type=API_USAGE_RESOURCE,
        ip_address=ip_address,
        user_agent=user_agent,
    )


async def count_api_calls_between(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    start: datetime,
    end: datetime,
) -> int:
    result = await session.execute(
        select(func.count(AuditLog.id)).where(
            AuditLog.tenant_id == tenant_id,
            AuditLog.resource_type == API_USAGE_RESOURCE,
            AuditLog.created_at >= start,
            AuditLog.created_at <= end,
        )
    )
    return result.scalar_one()
