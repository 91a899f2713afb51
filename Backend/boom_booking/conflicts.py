"""
Booking conflict checker.

Intervals are half-open [start, end): a booking ending at 16:00 and one
starting at 16:00 on the same room do not conflict. Cancelled bookings never
block anything.

The pure helpers (overlaps, find_conflicts, validate_interval) need no
database. The async helpers run inside the caller's transaction:

    await ensure_room_available(session, tenant_id, room_id, start, end)
    session.add(booking)
    await session.commit()

ensure_room_available takes a transaction-scoped advisory lock on
(tenant_id, room_id) before checking, so two requests racing for the same
room are serialized until the first one commits or rolls back. The
no_overlapping_bookings exclusion constraint catches anything that slips past.
"""

import hashlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional, Protocol, TypeVar

from sqlalchemy import exists, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .core.errors import ConflictError, ValidationError
from .models import Booking, BookingStatus
from .tenancy.rls import OVERLAP_CONSTRAINT


logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "Room is already booked for this time slot"


class Interval(Protocol):
    start_time: datetime
    end_time: datetime


I = TypeVar("I", bound=Interval)


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def validate_interval(start: Optional[datetime], end: Optional[datetime]) -> tuple[datetime, datetime]:
    """Normalize both bounds to UTC and require start < end."""
    if start is None or end is None:
        raise ValidationError("Start time and end time are required")
    start, end = ensure_utc(start), ensure_utc(end)
    if start >= end:
        raise ValidationError(
            "End time must be after start time",
            details={"start_time": start.isoformat(), "end_time": end.isoformat()},
        )
    return start, end


def overlaps(start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime) -> bool:
    return start_a < end_b and start_b < end_a


def find_conflicts(start: datetime, end: datetime, existing: Iterable[I]) -> list[I]:
    """Intervals from existing that overlap [start, end)."""
    return [item for item in existing if overlaps(start, end, item.start_time, item.end_time)]


# ────────────────────────────────────────────────────────────────
# Database Checks
# ────────────────────────────────────────────────────────────────

def room_lock_key(tenant_id: uuid.UUID, room_id: uuid.UUID) -> int:
    """Stable signed 64-bit advisory lock key for one tenant's room."""
    digest = hashlib.sha256(f"{tenant_id}:{room_id}".encode()).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


async def lock_room(session: AsyncSession, tenant_id: uuid.UUID, room_id: uuid.UUID) -> None:
    """Block until this transaction holds the room's advisory lock."""
    await session.execute(
        text("SELECT pg_advisory_xact_lock(:key)"),
        {"key": room_lock_key(tenant_id, room_id)},
    )


async def has_conflict(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    room_id: uuid.UUID,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[uuid.UUID] = None,
) -> bool:
    """Whether any non-cancelled booking of the room overlaps [start, end)."""
    start, end = validate_interval(start, end)

    conditions = [
        Booking.tenant_id == tenant_id,
        Booking.room_id == room_id,
        Booking.status != BookingStatus.CANCELLED,
        Booking.start_time < end,
        Booking.end_time > start,
    ]
    if exclude_booking_id is not None:
        conditions.append(Booking.id != exclude_booking_id)

    result = await session.execute(select(exists().where(*conditions)))
    return bool(result.scalar())


async def ensure_room_available(
    session: AsyncSession,
    tenant_id: uuid.UUID,
    room_id: uuid.UUID,
    start: datetime,
    end: datetime,
    exclude_booking_id: Optional[uuid.UUID] = None,
) -> None:
    """
    Lock the room for the rest of the transaction, then raise ConflictError
    if [start, end) is taken.
    """
    start, end = validate_interval(start, end)
    await lock_room(session, tenant_id, room_id)
    if await has_conflict(session, tenant_id, room_id, start, end, exclude_booking_id):
        logger.warning(
            f"Booking conflict tenant={tenant_id} room={room_id} "
            f"{start.isoformat()} - {end.isoformat()}"
        )
        raise ConflictError(
            CONFLICT_MESSAGE,
            details={"room_id": str(room_id), "start_time": start.isoformat(), "end_time": end.isoformat()},
        )


def is_overlap_violation(error: IntegrityError) -> bool:
    """True when the database rejected a write on the overlap constraint."""
    orig = getattr(error, "orig", None)
    constraint = getattr(orig, "constraint_name", None)
    if constraint is None:
        cause = getattr(orig, "__cause__", None)
        constraint = getattr(cause, "constraint_name", None)
    if constraint:
        return constraint == OVERLAP_CONSTRAINT
    return OVERLAP_CONSTRAINT in str(error)
