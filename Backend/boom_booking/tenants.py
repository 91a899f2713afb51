"""
Tenant signup and the current tenant's account.

    POST   /tenants  -> Create a tenant (public); seeds settings and business hours
    GET    /tenant   -> The resolved tenant
    PUT    /tenant   -> Update name, domain or settings
    DELETE /tenant   -> Soft delete (status -> deleted)
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .business_hours import default_week
from .core.config import get_settings
from .core.db import get_session
from .core.errors import ConflictError, NotFoundError, ValidationError
from .core.responses import success_response
from .models import PlanType, Setting, Tenant, TenantStatus
from .tenancy import SUBDOMAIN_PATTERN, TenantContext, get_tenant_session, require_tenant_context, set_db_tenant
from .tenancy.queries import record_audit


logger = logging.getLogger(__name__)

router = APIRouter(tags=["tenants"])

DEFAULT_SETTINGS: tuple[tuple[str, str, str], ...] = (
    ("timezone", "America/New_York", "string"),
    ("currency", "USD", "string"),
    ("booking_advance_days", "30", "number"),
    ("booking_min_duration", "60", "number"),
    ("booking_max_duration", "480", "number"),
)


class TenantCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    subdomain: str = Field(..., min_length=2, max_length=100)
    domain: Optional[str] = Field(default=None, max_length=255)
    plan_type: Optional[PlanType] = None

    @field_validator("subdomain")
    @classmethod
    def _subdomain_format(cls, value: str) -> str:
        value = value.strip().lower()
        if not SUBDOMAIN_PATTERN.match(value):
            raise ValueError("Subdomain may contain only lowercase letters, digits and hyphens")
        return value


class TenantUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    domain: Optional[str] = Field(default=None, max_length=255)
    settings: Optional[dict[str, Any]] = None


class TenantOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    subdomain: str
    domain: Optional[str] = None
    plan_type: str
    status: TenantStatus
    settings: dict
    created_at: datetime
    updated_at: datetime


def _out(tenant: Tenant) -> dict:
    return TenantOut.model_validate(tenant).model_dump(mode="json")


async def create_tenant(
    session: AsyncSession,
    name: str,
    subdomain: str,
    domain: Optional[str] = None,
    plan_type: Optional[str] = None,
) -> Tenant:
    """
    Insert a tenant with its default settings and a full week of hours.

    Binds the new tenant to the current transaction so the seeded rows pass
    row-level security. The caller commits.
    """
    settings = get_settings()
    if subdomain in settings.reserved_subdomains_list:
        raise ValidationError("Subdomain is reserved", details={"subdomain": subdomain})

    taken = await session.execute(select(Tenant.id).where(Tenant.subdomain == subdomain))
    if taken.scalar_one_or_none():
        raise ConflictError("Subdomain already taken", details={"subdomain": subdomain})

    tenant = Tenant(
        id=uuid.uuid4(),
        name=name.strip(),
        subdomain=subdomain,
        domain=domain,
        plan_type=plan_type or settings.default_plan_type,
        status=TenantStatus.ACTIVE,
        settings={},
    )
    session.add(tenant)
    try:
        await session.flush()
    except IntegrityError as e:
        raise ConflictError("Subdomain already taken", details={"subdomain": subdomain}) from e

    await set_db_tenant(session, tenant.id)
    session.add(Setting(tenant_id=tenant.id, key="app_name", value=tenant.name, type="string"))
    for key, value, type_name in DEFAULT_SETTINGS:
        session.add(Setting(tenant_id=tenant.id, key=key, value=value, type=type_name))
    session.add_all(default_week(tenant.id))
    await session.flush()
    await session.refresh(tenant)

    logger.info(f"Created tenant {tenant.id} subdomain={subdomain} plan={tenant.plan_type}")
    return tenant


async def _current_tenant(session: AsyncSession, ctx: TenantContext) -> Tenant:
    result = await session.execute(select(Tenant).where(Tenant.id == ctx.tenant_id))
    tenant = result.scalar_one_or_none()
    if not tenant:
        raise NotFoundError("Tenant")
    return tenant


@router.post("/tenants", status_code=status.HTTP_201_CREATED)
async def create_tenant_endpoint(
    payload: TenantCreate,
    session: AsyncSession = Depends(get_session),
):
    tenant = await create_tenant(
        session,
        name=payload.name,
        subdomain=payload.subdomain,
        domain=payload.domain,
        plan_type=payload.plan_type.value if payload.plan_type else None,
    )
    body = _out(tenant)
    await session.commit()
    return success_response(body, message="Tenant created")


@router.get("/tenant")
async def get_current_tenant_endpoint(
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    tenant = await _current_tenant(session, ctx)
    return success_response({**_out(tenant), "resolved_from": ctx.source.value})


@router.put("/tenant")
async def update_current_tenant_endpoint(
    payload: TenantUpdate,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    tenant = await _current_tenant(session, ctx)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name"):
        tenant.name = changes["name"].strip()
    if "domain" in changes:
        tenant.domain = changes["domain"]
    if changes.get("settings") is not None:
        tenant.settings = {**(tenant.settings or {}), **changes["settings"]}

    await session.flush()
    await session.refresh(tenant)
    body = _out(tenant)
    await session.commit()
    return success_response(body, message="Tenant updated")


@router.delete("/tenant")
async def delete_current_tenant_endpoint(
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    tenant = await _current_tenant(session, ctx)
    tenant.status = TenantStatus.DELETED
    await record_audit(session, ctx.tenant_id, action="tenant.deleted", resource_type="tenant", resource_id=tenant.id)
    await session.flush()
    await session.refresh(tenant)
    body = _out(tenant)
    await session.commit()

    logger.warning(f"Tenant {tenant.id} ({tenant.subdomain}) soft deleted")
    return success_response(body, message="Tenant deleted")
