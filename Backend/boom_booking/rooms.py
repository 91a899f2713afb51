"""
Room routes.

    GET    /rooms             -> List rooms (category, is_active)
    GET    /rooms/categories  -> Distinct categories of active rooms
    GET    /rooms/{id}        -> Get one room
    POST   /rooms             -> Create a room
    PUT    /rooms/{id}        -> Partial update
    DELETE /rooms/{id}        -> Deactivate (refused while bookings remain)
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .core.errors import ConflictError, ValidationError
from .core.responses import success_response
from .models import Room
from .tenancy import TenantContext, get_tenant_session, require_tenant_context
from .tenancy.queries import count_open_bookings_for_room, list_room_categories, list_rooms, require_owned


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rooms", tags=["rooms"])


class RoomCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    capacity: int = Field(..., gt=0)
    category: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    price_per_hour: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    is_active: bool = True


class RoomUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    capacity: Optional[int] = Field(default=None, gt=0)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    price_per_hour: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    is_active: Optional[bool] = None


class RoomOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: uuid.UUID
    name: str
    capacity: int
    category: str
    description: Optional[str] = None
    price_per_hour: Decimal
    is_active: bool
    created_at: datetime
    updated_at: datetime


def _out(room: Room) -> dict:
    return RoomOut.model_validate(room).model_dump(mode="json")


async def _ensure_no_open_bookings(session: AsyncSession, tenant_id: uuid.UUID, room: Room) -> None:
    """A room cannot be taken out of service while bookings still point at it."""
    open_bookings = await count_open_bookings_for_room(session, tenant_id, room.id)
    if open_bookings:
        raise ConflictError(
            "Room has existing bookings",
            details={"room_id": str(room.id), "bookings": open_bookings},
        )


@router.get("")
async def list_rooms_endpoint(
    category: Optional[str] = Query(default=None),
    is_active: Optional[bool] = Query(default=None),
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    rooms = await list_rooms(session, ctx.tenant_id, category=category, is_active=is_active)
    return success_response([_out(r) for r in rooms])


@router.get("/categories")
async def list_room_categories_endpoint(
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    return success_response(await list_room_categories(session, ctx.tenant_id))


@router.get("/{room_id}")
async def get_room_endpoint(
    room_id: uuid.UUID,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    room = await require_owned(session, Room, room_id, ctx.tenant_id, "Room")
    return success_response(_out(room))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_room_endpoint(
    payload: RoomCreate,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    room = Room(
        id=uuid.uuid4(),
        tenant_id=ctx.tenant_id,
        name=payload.name.strip(),
        capacity=payload.capacity,
        category=payload.category.strip(),
        description=payload.description,
        price_per_hour=payload.price_per_hour,
        is_active=payload.is_active,
    )
    session.add(room)
    await session.flush()
    await session.refresh(room)
    await session.commit()

    logger.info(f"Created room {room.id} '{room.name}' tenant={ctx.tenant_id}")
    return success_response(_out(room), message="Room created")


@router.put("/{room_id}")
async def update_room_endpoint(
    room_id: uuid.UUID,
    payload: RoomUpdate,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    room = await require_owned(session, Room, room_id, ctx.tenant_id, "Room")
    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        if value is None and field != "description":
            raise ValidationError(f"{field} cannot be null")
    if changes.get("is_active") is False and room.is_active:
        await _ensure_no_open_bookings(session, ctx.tenant_id, room)

    for field, value in changes.items():
        setattr(room, field, value)

    await session.flush()
    await session.refresh(room)
    await session.commit()
    return success_response(_out(room), message="Room updated")


@router.delete("/{room_id}")
async def delete_room_endpoint(
    room_id: uuid.UUID,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    room = await require_owned(session, Room, room_id, ctx.tenant_id, "Room")
    await _ensure_no_open_bookings(session, ctx.tenant_id, room)

    room.is_active = False
    await session.flush()
    await session.refresh(room)
    await session.commit()

    logger.info(f"Deactivated room {room.id} tenant={ctx.tenant_id}")
    return success_response(_out(room), message="Room deactivated")
