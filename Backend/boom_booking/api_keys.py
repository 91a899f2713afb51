"""
API key management for the current tenant.

Keys look like bk_<16 hex>_<32 hex>. Only the sha256 hash and the
bk_<16 hex> prefix are stored; the full key is shown once, at creation.

    GET    /api-keys                   -> List keys (masked)
    POST   /api-keys                   -> Create a key
    PUT    /api-keys/{id}              -> Rename, change permissions, (de)activate
    POST   /api-keys/{id}/regenerate   -> Replace the secret, keep the record
    DELETE /api-keys/{id}              -> Revoke
"""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from .core.errors import NotFoundError
from .core.responses import success_response
from .models import ApiKey
from .tenancy import API_KEY_PREFIX, TenantContext, get_tenant_session, hash_api_key, require_tenant_context
from .tenancy.queries import get_api_key_by_id, list_api_keys


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api-keys", tags=["api-keys"])


def generate_api_key() -> tuple[str, str]:
    """Return (full_key, key_prefix)."""
    prefix = f"{API_KEY_PREFIX}{secrets.token_hex(8)}"
    return f"{prefix}_{secrets.token_hex(16)}", prefix


def mask_api_key(key: ApiKey) -> str:
    return f"{key.key_prefix}***{str(key.id)[-4:]}"


class ApiKeyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    permissions: dict = Field(default_factory=dict)
    expires_in_days: Optional[int] = Field(default=None, gt=0)


class ApiKeyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    permissions: Optional[dict] = None
    is_active: Optional[bool] = None


class ApiKeyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    key_prefix: str
    permissions: dict
    is_active: bool
    usage_count: int
    last_used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: datetime


def _out(key: ApiKey) -> dict:
    body = ApiKeyOut.model_validate(key).model_dump(mode="json")
    body["masked_key"] = mask_api_key(key)
    return body


async def _owned_key(session: AsyncSession, ctx: TenantContext, key_id: uuid.UUID) -> ApiKey:
    key = await get_api_key_by_id(session, ctx.tenant_id, key_id)
    if not key:
        raise NotFoundError("API key")
    return key


@router.get("")
async def list_api_keys_endpoint(
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    keys = await list_api_keys(session, ctx.tenant_id)
    return success_response([_out(k) for k in keys])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_api_key_endpoint(
    payload: ApiKeyCreate,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    full_key, prefix = generate_api_key()
    expires_at = None
    if payload.expires_in_days:
        expires_at = datetime.now(timezone.utc) + timedelta(days=payload.expires_in_days)

    key = ApiKey(
        id=uuid.uuid4(),
        tenant_id=ctx.tenant_id,
        name=payload.name.strip(),
        key_hash=hash_api_key(full_key),
        key_prefix=prefix,
        permissions=payload.permissions,
        is_active=True,
        usage_count=0,
        expires_at=expires_at,
    )
    session.add(key)
    await session.flush()
    await session.refresh(key)
    body = {**_out(key), "api_key": full_key}
    await session.commit()

    logger.info(f"Created API key {prefix} tenant={ctx.tenant_id}")
    return success_response(body, message="API key created. Store it securely, it will not be shown again.")


@router.put("/{key_id}")
async def update_api_key_endpoint(
    key_id: uuid.UUID,
    payload: ApiKeyUpdate,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    key = await _owned_key(session, ctx, key_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in changes.items():
        setattr(key, field, value)

    body = _out(key)
    await session.commit()
    return success_response(body, message="API key updated")


@router.post("/{key_id}/regenerate")
async def regenerate_api_key_endpoint(
    key_id: uuid.UUID,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    key = await _owned_key(session, ctx, key_id)
    full_key, prefix = generate_api_key()
    key.key_hash = hash_api_key(full_key)
    key.key_prefix = prefix

    body = {**_out(key), "api_key": full_key}
    await session.commit()

    logger.info(f"Regenerated API key {key.id} tenant={ctx.tenant_id}")
    return success_response(body, message="API key regenerated")


@router.delete("/{key_id}")
async def revoke_api_key_endpoint(
    key_id: uuid.UUID,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    key = await _owned_key(session, ctx, key_id)
    key.is_active = False

    body = _out(key)
    await session.commit()

    logger.info(f"Revoked API key {key.key_prefix} tenant={ctx.tenant_id}")
    return success_response(body, message="API key revoked")
