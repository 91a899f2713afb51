"""
Per-tenant key/value settings.

    GET    /settings        -> {key: value} map
    GET    /settings/{key}  -> One setting
    PUT    /settings        -> Bulk upsert {key: value, ...}
    PUT    /settings/{key}  -> Upsert one {"value": ...}
    DELETE /settings/{key}  -> Delete one

Values are stored as text alongside their type so they come back as the JSON
type they were written with.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from .core.errors import NotFoundError, ValidationError
from .core.responses import success_response
from .models import Setting
from .tenancy import TenantContext, get_tenant_session, require_tenant_context
from .tenancy.queries import get_setting, list_settings


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settings", tags=["settings"])

MAX_KEY_LENGTH = 255


class SettingValue(BaseModel):
    value: Any


def encode_setting(value: Any) -> tuple[str, str]:
    """Return (stored text, type name) for a JSON value."""
    if value is None:
        raise ValidationError("Setting value is required")
    if isinstance(value, bool):
        return ("true" if value else "false"), "boolean"
    if isinstance(value, (int, float)):
        return json.dumps(value), "number"
    if isinstance(value, str):
        return value, "string"
    return json.dumps(value), "json"


def decode_setting(text: str, type_name: str) -> Any:
    if type_name == "boolean":
        return text == "true"
    if type_name in ("number", "json"):
        return json.loads(text)
    return text


def _validate_key(key: str) -> str:
    key = key.strip()
    if not key or len(key) > MAX_KEY_LENGTH:
        raise ValidationError("Setting key must be 1-255 characters", details={"key": key})
    return key


async def upsert_settings(session: AsyncSession, tenant_id, values: dict[str, Any]) -> None:
    rows = []
    for key, value in values.items():
        text, type_name = encode_setting(value)
        rows.append({"tenant_id": tenant_id, "key": _validate_key(key), "value": text, "type": type_name})

    stmt = insert(Setting).values(rows)
    stmt = stmt.on_conflict_do_update(
        constraint="uq_setting_tenant_key",
        set_={"value": stmt.excluded.value, "type": stmt.excluded.type},
    )
    await session.execute(stmt)


@router.get("")
async def get_settings_endpoint(
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    rows = await list_settings(session, ctx.tenant_id)
    return success_response({row.key: decode_setting(row.value, row.type) for row in rows})


@router.get("/{key}")
async def get_setting_endpoint(
    key: str,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    key = _validate_key(key)
    row = await get_setting(session, ctx.tenant_id, key)
    if not row:
        raise NotFoundError("Setting")
    return success_response({"key": row.key, "value": decode_setting(row.value, row.type)})


@router.put("")
async def bulk_update_settings_endpoint(
    values: dict[str, Any] = Body(...),
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    if not values:
        raise ValidationError("No settings provided")

    await upsert_settings(session, ctx.tenant_id, values)
    await session.commit()

    logger.info(f"Updated {len(values)} settings tenant={ctx.tenant_id}")
    return success_response(values, message="Settings updated")


@router.put("/{key}")
async def update_setting_endpoint(
    key: str,
    payload: SettingValue,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    key = _validate_key(key)
    existed = await get_setting(session, ctx.tenant_id, key) is not None
    await upsert_settings(session, ctx.tenant_id, {key: payload.value})
    await session.commit()

    return success_response(
        {"key": key, "value": payload.value},
        message="Setting updated" if existed else "Setting created",
    )


@router.delete("/{key}")
async def delete_setting_endpoint(
    key: str,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_tenant_session),
):
    key = _validate_key(key)
    row = await get_setting(session, ctx.tenant_id, key)
    if not row:
        raise NotFoundError("Setting")

    await session.delete(row)
    await session.commit()
    return success_response({"key": key}, message="Setting deleted")
