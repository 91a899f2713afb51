"""
Booking routes.

    GET    /bookings              -> List bookings (room_id, status, start_date, end_date)
    GET    /bookings/{id}         -> Get one booking
    POST   /bookings              -> Create a booking
    PUT    /bookings/{id}         -> Update customer details, notes, status or times
    PUT    /bookings/{id}/move    -> Move to another room and/or time
    PUT    /bookings/{id}/cancel  -> Cancel (idempotent)
    DELETE /bookings/{id}         -> Delete

Every write checks for overlaps and persists inside the request's single
tenant-bound transaction. A conflict raises before anything is written, and
the transaction is rolled back with the session.
"""

import logging
import uuid
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .conflicts import CONFLICT_MESSAGE, ensure_room_available, ensure_utc, is_overlap_violation, validate_interval
from .core.errors import ConflictError, NotFoundError, ValidationError
from .core.responses import success_response
from .models import Booking, BookingStatus, Room
from .tenancy import TenantContext, get_tenant_session, require_tenant_context
from .tenancy.queries import get_room_by_id, list_bookings, require_owned


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])

CENTS = Decimal("0.01")
SECONDS_PER_HOUR = Decimal(3600)


# ────────────────────────────────────────────────────────────────
# Request / Response Models
# ────────────────────────────────────────────────────────────────

class BookingCreate(BaseModel):
    room_id: uuid.UUID
    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_email: Optional[str] = Field(default=None, max_length=255)
    customer_phone: Optional[str] = Field(default=None, max_length=20)
    start_time: datetime
    end_time: datetime
    notes: Optional[str] = None


class BookingUpdate(BaseModel):
    customer_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    customer_email: Optional[str] = Field(default=None, max_length=255)
    customer_phone: Optional[str] = Field(default=None, max_length=20)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: Optional[BookingStatus] = None
    notes: Optional[str] = None


class BookingMove(BaseModel):
    new_room_id: uuid.UUID
    new_start_time: datetime
    new_end_time: datetime


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    room_id: uuid.UUID
    customer_name: str
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    notes: Optional[str] = None
    total_price: Optional[Decimal] = None
    created_at: datetime
    updated_at: datetime


def _out(booking: Booking) -> dict:
    return BookingOut.model_validate(booking).model_dump(mode="json")


# Fields that may be cleared with an explicit null in an update
_NULLABLE_FIELDS = {"customer_email", "customer_phone", "notes"}


# ────────────────────────────────────────────────────────────────
# Helpers
# ────────────────────────────────────────────────────────────────

def compute_total_price(start: datetime, end: datetime, price_per_hour: Decimal) -> Decimal:
    """
    Price of a booking: duration in hours times the hourly rate, to the cent.

    Examples:
        2h at 25.00/h   -> 50.00
        1.5h at 30.00/h -> 45.00
    """
    seconds = Decimal(int((end - start).total_seconds()))
    hours = seconds / SECONDS_PER_HOUR
    return (hours * Decimal(price_per_hour)).quantize(CENTS, rounding=ROUND_HALF_UP)


async def _bookable_room(session: AsyncSession, tenant_id: uuid.UUID, room_id: uuid.UUID) -> Room:
    room = await get_room_by_id(session, tenant_id, room_id)
    if not room:
        raise NotFoundError("Room")
    if not room.is_active:
        raise ValidationError("Room is not available for booking", details={"room_id": str(room_id)})
    return room


async def _persist(session: AsyncSession, booking: Booking) -> None:
    """
    Flush, reload server-side columns, then commit.

    The reload has to happen before the commit: the tenant binding ends with
    the transaction, and a later read would see no rows.
    """
    try:
        await session.flush()
    except IntegrityError as e:
        if is_overlap_violation(e):
            logger.warning(f"Overlap constraint rejected booking {booking.id}")
            raise ConflictError(CONFLICT_MESSAGE) from e
        raise
    await session.refresh(booking)
    await session.commit()


# ────────────────────────────────────────────────────────────────
# Endpoints
# ────────────────────────────────────────────────────────────────

@router.get("")
async def list_bookings_endpoint(
    room_id: Optional[uuid.UUID] = Query(default=None),
    status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
    start_date: Optional[datetime] = Query(default=None),
    end_date: Optional[datetime] = Query(default=None),
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    bookings = await list_bookings(
        session,
        ctx.tenant_id,
        room_id=room_id,
        status=status_filter,
        start_date=ensure_utc(start_date) if start_date else None,
        end_date=ensure_utc(end_date) if end_date else None,
    )
    return success_response([_out(b) for b in bookings])


@router.get("/{booking_id}")
async def get_booking_endpoint(
    booking_id: uuid.UUID,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    booking = await require_owned(session, Booking, booking_id, ctx.tenant_id, "Booking")
    return success_response(_out(booking))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    payload: BookingCreate,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    start, end = validate_interval(payload.start_time, payload.end_time)
    room = await _bookable_room(session, ctx.tenant_id, payload.room_id)

    await ensure_room_available(session, ctx.tenant_id, room.id, start, end)

    booking = Booking(
        id=uuid.uuid4(),
        tenant_id=ctx.tenant_id,
        room_id=room.id,
        customer_name=payload.customer_name.strip(),
        customer_email=payload.customer_email,
        customer_phone=payload.customer_phone,
        start_time=start,
        end_time=end,
        status=BookingStatus.CONFIRMED,
        notes=payload.notes,
        total_price=compute_total_price(start, end, room.price_per_hour),
    )
    session.add(booking)
    await _persist(session, booking)

    logger.info(f"Created booking {booking.id} tenant={ctx.tenant_id} room={room.id}")
    return success_response(_out(booking), message="Booking created")


@router.put("/{booking_id}")
async def update_booking_endpoint(
    booking_id: uuid.UUID,
    payload: BookingUpdate,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    booking = await require_owned(session, Booking, booking_id, ctx.tenant_id, "Booking")
    changes = payload.model_dump(exclude_unset=True)

    for field, value in changes.items():
        if value is None and field not in _NULLABLE_FIELDS:
            raise ValidationError(f"{field} cannot be null")
    if not changes:
        return success_response(_out(booking))

    new_start = ensure_utc(changes.get("start_time", booking.start_time))
    new_end = ensure_utc(changes.get("end_time", booking.end_time))
    new_status = changes.get("status", booking.status)
    times_changed = new_start != booking.start_time or new_end != booking.end_time
    reactivated = booking.is_cancelled() and new_status != BookingStatus.CANCELLED

    if times_changed:
        new_start, new_end = validate_interval(new_start, new_end)
    if new_status != BookingStatus.CANCELLED and (times_changed or reactivated):
        await ensure_room_available(
            session,
            ctx.tenant_id,
            booking.room_id,
            new_start,
            new_end,
            exclude_booking_id=booking.id,
        )

    changes["start_time"], changes["end_time"] = new_start, new_end
    for field, value in changes.items():
        setattr(booking, field, value)
    await _persist(session, booking)

    return success_response(_out(booking), message="Booking updated")


@router.put("/{booking_id}/move")
async def move_booking_endpoint(
    booking_id: uuid.UUID,
    payload: BookingMove,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    booking = await require_owned(session, Booking, booking_id, ctx.tenant_id, "Booking")
    if booking.is_cancelled():
        raise ValidationError("Cancelled bookings cannot be moved")

    start, end = validate_interval(payload.new_start_time, payload.new_end_time)
    # Staying in the current room is allowed even after it was taken out of service
    if payload.new_room_id == booking.room_id:
        room_id = booking.room_id
    else:
        room_id = (await _bookable_room(session, ctx.tenant_id, payload.new_room_id)).id

    await ensure_room_available(
        session, ctx.tenant_id, room_id, start, end, exclude_booking_id=booking.id
    )

    previous_room_id = booking.room_id
    booking.room_id = room_id
    booking.start_time = start
    booking.end_time = end
    await _persist(session, booking)

    logger.info(f"Moved booking {booking.id} from room {previous_room_id} to {room_id}")
    return success_response(_out(booking), message="Booking moved")


@router.put("/{booking_id}/cancel")
async def cancel_booking_endpoint(
    booking_id: uuid.UUID,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    booking = await require_owned(session, Booking, booking_id, ctx.tenant_id, "Booking")
    if booking.status == BookingStatus.COMPLETED:
        raise ValidationError("Completed bookings cannot be cancelled")

    if not booking.is_cancelled():
        booking.status = BookingStatus.CANCELLED
        await _persist(session, booking)
        logger.info(f"Cancelled booking {booking.id}")

    return success_response(_out(booking), message="Booking cancelled")


@router.delete("/{booking_id}")
async def delete_booking_endpoint(
    booking_id: uuid.UUID,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    booking = await require_owned(session, Booking, booking_id, ctx.tenant_id, "Booking")
    await session.delete(booking)
    await session.commit()

    logger.info(f"Deleted booking {booking_id} tenant={ctx.tenant_id}")
    return success_response({"id": str(booking_id)}, message="Booking deleted")
