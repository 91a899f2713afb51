"""
Multi-tenancy context module for Boom Booking.

This module turns an inbound request into a TenantContext and binds that
tenant to the database transaction serving the request.

Resolution happens in two steps so the decision itself is testable without
HTTP or a database:

    extract_tenant_hints(request)  -> TenantHints       (headers/host only)
    resolve_tenant(hints, finder)  -> Resolved | Inactive | Unresolved

Precedence (first hint that finds a tenant wins):
    1. Subdomain of the Host header (demo.boom-booking.com -> "demo")
    2. Explicit tenant id: X-Tenant-Id header, else ?tenant= query param
    3. API key: Authorization: Bearer bk_... or X-API-Key
    4. Tenant bound to an authenticated session (tenant_id claim of a Bearer JWT)

A tenant that is found but not active is reported as Inactive and never falls
through to a lower-precedence hint.

Database binding:
    set_db_tenant() uses set_config(..., is_local => true), so the setting
    belongs to the current transaction only. It is discarded at COMMIT or
    ROLLBACK and can never survive on a pooled connection into another
    request. Every statement that relies on it must therefore run inside the
    same transaction that bound it.
"""

import hashlib
import logging
import re
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Callable, Optional, Protocol, Sequence, Union

import jwt
from fastapi import Depends, Request
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import get_settings
from ..core.db import AsyncSessionLocal, get_session
from ..core.errors import AuthenticationError, TenantInactive, TenantRequired, ValidationError
from ..models import ApiKey, Tenant, TenantStatus
from .rls import TENANT_SETTING


logger = logging.getLogger(__name__)

API_KEY_PREFIX = "bk_"

SUBDOMAIN_PATTERN = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")

_IPV4_PATTERN = re.compile(r"^\d{1,3}(?:\.\d{1,3}){3}$")


class TenantResolutionSource(str, Enum):
    """How the tenant context was determined."""

    SUBDOMAIN = "subdomain"      # From the Host header
    HEADER = "header"            # From X-Tenant-Id
    QUERY = "query"              # From ?tenant=
    API_KEY = "api_key"          # From a bk_ API key
    SESSION = "session"          # From an authenticated session token


@dataclass(frozen=True)
class TenantRecord:
    """Minimal tenant row as returned by a TenantFinder."""

    id: uuid.UUID
    subdomain: str
    name: str
    plan_type: str
    status: str

    @classmethod
    def from_model(cls, tenant: Tenant) -> "TenantRecord":
        status = tenant.status.value if isinstance(tenant.status, TenantStatus) else str(tenant.status)
        return cls(
            id=tenant.id,
            subdomain=tenant.subdomain,
            name=tenant.name,
            plan_type=tenant.plan_type,
            status=status,
        )


@dataclass(frozen=True)
class TenantContext:
    """
    Immutable context representing the current tenant for a request.

    This object MUST be established before any tenant-specific database
    operation, and its tenant_id is passed explicitly to every query helper.
    """

    tenant_id: uuid.UUID
    subdomain: Optional[str] = None
    name: Optional[str] = None
    plan_type: str = "free"
    status: str = TenantStatus.ACTIVE.value
    source: TenantResolutionSource = TenantResolutionSource.HEADER

    def __post_init__(self):
        if not isinstance(self.tenant_id, uuid.UUID):
            raise ValueError(f"tenant_id must be a UUID, got {self.tenant_id!r}")

    @classmethod
    def from_record(cls, record: TenantRecord, source: TenantResolutionSource) -> "TenantContext":
        return cls(
            tenant_id=record.id,
            subdomain=record.subdomain,
            name=record.name,
            plan_type=record.plan_type,
            status=record.status,
            source=source,
        )


@dataclass(frozen=True)
class TenantHints:
    """
    Everything a request says about its tenant, before any lookup.

    Values are kept as sent. The tenant id and the session token are only
    parsed once resolution reaches them, so a malformed lower-precedence hint
    never spoils a request an earlier hint already resolves.
    """

    subdomain: Optional[str] = None
    tenant_id: Optional[str] = None
    tenant_id_source: TenantResolutionSource = TenantResolutionSource.HEADER
    api_key: Optional[str] = None
    session_token: Optional[str] = None

    def is_empty(self) -> bool:
        return not any((self.subdomain, self.tenant_id, self.api_key, self.session_token))


# ────────────────────────────────────────────────────────────────
# Resolution Results
# ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Resolved:
    context: TenantContext


@dataclass(frozen=True)
class Inactive:
    tenant: TenantRecord
    source: TenantResolutionSource


@dataclass(frozen=True)
class Unresolved:
    attempted: tuple[TenantResolutionSource, ...] = ()


TenantResolution = Union[Resolved, Inactive, Unresolved]


class TenantFinder(Protocol):
    """Lookups resolve_tenant() needs. Each returns None when nothing matches."""

    async def by_subdomain(self, subdomain: str) -> Optional[TenantRecord]: ...

    async def by_id(self, tenant_id: uuid.UUID) -> Optional[TenantRecord]: ...

    async def by_api_key(self, api_key: str) -> Optional[TenantRecord]: ...


async def resolve_tenant(
    hints: TenantHints,
    finder: TenantFinder,
    decode_session: Optional[Callable[[str], Optional[uuid.UUID]]] = None,
) -> TenantResolution:
    """
    Resolve the tenant for a request from its hints.

    Hints are tried in precedence order; a hint whose lookup finds nothing
    falls through to the next one. The first tenant found decides the result:
    Resolved when active, Inactive otherwise.

    A hint is parsed only when its turn comes: a malformed tenant id raises
    ValidationError and a bad session token raises AuthenticationError, but
    only if no earlier hint found a tenant.
    """
    decode = decode_session or _decode_with_settings

    async def by_raw_id(raw: str) -> Optional[TenantRecord]:
        return await finder.by_id(parse_tenant_id(raw))

    async def by_session_token(token: str) -> Optional[TenantRecord]:
        tenant_id = decode(token)
        if tenant_id is None:
            return None
        return await finder.by_id(tenant_id)

    lookups = (
        (TenantResolutionSource.SUBDOMAIN, hints.subdomain, finder.by_subdomain),
        (hints.tenant_id_source, hints.tenant_id, by_raw_id),
        (TenantResolutionSource.API_KEY, hints.api_key, finder.by_api_key),
        (TenantResolutionSource.SESSION, hints.session_token, by_session_token),
    )

    attempted: list[TenantResolutionSource] = []
    for source, value, lookup in lookups:
        if value is None:
            continue
        attempted.append(source)
        record = await lookup(value)
        if record is None:
            logger.debug(f"No tenant matched {source.value} hint")
            continue
        if record.status != TenantStatus.ACTIVE.value:
            logger.warning(f"Tenant {record.id} resolved from {source.value} is {record.status}")
            return Inactive(tenant=record, source=source)
        logger.debug(f"Resolved tenant from {source.value} -> tenant_id={record.id}")
        return Resolved(context=TenantContext.from_record(record, source))

    return Unresolved(attempted=tuple(attempted))


# ────────────────────────────────────────────────────────────────
# Hint Extraction
# ────────────────────────────────────────────────────────────────

def extract_subdomain(host: Optional[str], reserved: Sequence[str] = ()) -> Optional[str]:
    """
    Extract the tenant subdomain from a Host header value.

        demo.boom-booking.com       -> "demo"
        demo.localhost:5001         -> "demo"
        boom-booking.com, localhost -> None
        www.boom-booking.com        -> None (reserved)
    """
    if not host:
        return None
    host = host.strip().lower()
    if host.startswith("["):  # IPv6 literal
        return None
    hostname = host.split(":", 1)[0].rstrip(".")
    if not hostname or _IPV4_PATTERN.match(hostname):
        return None

    labels = hostname.split(".")
    if len(labels) >= 3 or (len(labels) == 2 and labels[1] == "localhost"):
        candidate = labels[0]
    else:
        return None

    if candidate in reserved or not SUBDOMAIN_PATTERN.match(candidate):
        return None
    return candidate


def parse_tenant_id(raw: str) -> uuid.UUID:
    try:
        return uuid.UUID(raw.strip())
    except (ValueError, AttributeError):
        raise ValidationError("Tenant id must be a UUID", details={"tenant_id": raw})


def decode_session_tenant(token: str, secret: str, algorithm: str) -> Optional[uuid.UUID]:
    """Return the tenant bound to a session token, or None if it carries none."""
    try:
        claims = jwt.decode(token, secret, algorithms=[algorithm])
    except jwt.PyJWTError as e:
        logger.warning(f"Session token verification failed: {e}")
        raise AuthenticationError("Invalid or expired session token")

    tenant_claim = claims.get("tenant_id")
    if not tenant_claim:
        return None
    return parse_tenant_id(str(tenant_claim))


def _decode_with_settings(token: str) -> Optional[uuid.UUID]:
    settings = get_settings()
    return decode_session_tenant(token, settings.jwt_secret, settings.jwt_algorithm)


def hash_api_key(api_key: str) -> str:
    """Hash an API key for secure storage/comparison."""
    return hashlib.sha256(api_key.encode()).hexdigest()


def extract_tenant_hints(request: Request) -> TenantHints:
    """Collect tenant hints from the request without touching the database."""
    settings = get_settings()

    subdomain = extract_subdomain(request.headers.get("host"), settings.reserved_subdomains_list)

    tenant_id = request.headers.get("X-Tenant-Id") or None
    tenant_id_source = TenantResolutionSource.HEADER
    if tenant_id is None and request.query_params.get("tenant"):
        tenant_id = request.query_params["tenant"]
        tenant_id_source = TenantResolutionSource.QUERY

    api_key = request.headers.get("X-API-Key") or None
    session_token = None
    authorization = request.headers.get("Authorization", "")
    if authorization.startswith("Bearer "):
        token = authorization[7:].strip()
        if token.startswith(API_KEY_PREFIX):
            api_key = api_key or token
        elif token:
            session_token = token

    return TenantHints(
        subdomain=subdomain,
        tenant_id=tenant_id,
        tenant_id_source=tenant_id_source,
        api_key=api_key,
        session_token=session_token,
    )


# ────────────────────────────────────────────────────────────────
# Database Finder
# ────────────────────────────────────────────────────────────────

class SqlTenantFinder:
    """TenantFinder backed by the tenants and api_keys tables."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def by_subdomain(self, subdomain: str) -> Optional[TenantRecord]:
        result = await self.session.execute(select(Tenant).where(Tenant.subdomain == subdomain))
        tenant = result.scalar_one_or_none()
        return TenantRecord.from_model(tenant) if tenant else None

    async def by_id(self, tenant_id: uuid.UUID) -> Optional[TenantRecord]:
        result = await self.session.execute(select(Tenant).where(Tenant.id == tenant_id))
        tenant = result.scalar_one_or_none()
        return TenantRecord.from_model(tenant) if tenant else None

    async def by_api_key(self, api_key: str) -> Optional[TenantRecord]:
        result = await self.session.execute(
            select(ApiKey, Tenant)
            .join(Tenant, Tenant.id == ApiKey.tenant_id)
            .where(ApiKey.key_hash == hash_api_key(api_key))
        )
        row = result.one_or_none()
        if row is None:
            return None

        key, tenant = row
        now = datetime.now(timezone.utc)
        if not key.is_usable(now):
            logger.warning(f"Rejected revoked or expired API key {key.key_prefix}")
            return None

        key.usage_count += 1
        key.last_used_at = now
        return TenantRecord.from_model(tenant)


# ────────────────────────────────────────────────────────────────
# Database Tenant Setting (RLS)
# ────────────────────────────────────────────────────────────────

async def set_db_tenant(session: AsyncSession, tenant_id: uuid.UUID) -> None:
    """
    Bind the tenant to the session's current transaction for RLS policies.

    Autobegins a transaction if none is active. The setting is transaction
    local: it disappears at commit/rollback.
    """
    await session.execute(
        text("SELECT set_config(:name, :value, true)"),
        {"name": TENANT_SETTING, "value": str(tenant_id)},
    )


async def current_db_tenant(session: AsyncSession) -> Optional[str]:
    """The tenant id currently bound to the transaction, if any."""
    result = await session.execute(
        text("SELECT current_setting(:name, true)"), {"name": TENANT_SETTING}
    )
    value = result.scalar_one_or_none()
    return value or None


@asynccontextmanager
async def tenant_session(
    tenant_id: uuid.UUID,
    session_factory: async_sessionmaker = AsyncSessionLocal,
) -> AsyncIterator[AsyncSession]:
    """
    Borrow a session with the tenant bound for code running outside a request.

    The transaction commits when the block exits normally and rolls back on
    error; the connection goes back to the pool with no tenant setting left.
    """
    async with session_factory() as session:
        async with session.begin():
            await set_db_tenant(session, tenant_id)
            yield session


# ────────────────────────────────────────────────────────────────
# FastAPI Dependencies
# ────────────────────────────────────────────────────────────────

async def require_tenant_context(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> TenantContext:
    """
    FastAPI dependency resolving the tenant for a tenant-scoped endpoint.

    Raises:
        TenantRequired (400): no hint matched an existing tenant
        TenantInactive (403): the matched tenant is not active
    """
    hints = extract_tenant_hints(request)
    resolution = await resolve_tenant(hints, SqlTenantFinder(session))

    if isinstance(resolution, Resolved):
        return resolution.context
    if isinstance(resolution, Inactive):
        raise TenantInactive(resolution.tenant.status)

    attempted = [source.value for source in resolution.attempted]
    logger.info(f"Tenant unresolved for {request.method} {request.url.path} (tried: {attempted or 'nothing'})")
    raise TenantRequired(details={"attempted": attempted} if attempted else None)


async def get_tenant_session(
    request: Request,
    ctx: TenantContext = Depends(require_tenant_context),
    session: AsyncSession = Depends(get_session),
) -> AsyncSession:
    """
    The request's session with the resolved tenant bound for RLS.

    The resolution lookups and the api_usage meter row are committed first;
    a fresh transaction is then opened with the tenant bound, and handlers
    commit it once when their work is done.

    Usage:
        @router.get("/rooms")
        async def list_rooms_endpoint(
            ctx: TenantContext = Depends(require_tenant_context),
            session: AsyncSession = Depends(get_tenant_session),
        ):
            rooms = await list_rooms(session, ctx.tenant_id)
    """
    from .queries import record_api_usage

    await set_db_tenant(session, ctx.tenant_id)
    await record_api_usage(
        session,
        ctx.tenant_id,
        method=request.method,
        path=request.url.path,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
    await session.commit()

    await set_db_tenant(session, ctx.tenant_id)
    return session


__all__ = [
    "API_KEY_PREFIX",
    "SUBDOMAIN_PATTERN",
    "TenantResolutionSource",
    "TenantRecord",
    "TenantContext",
    "TenantHints",
    "Resolved",
    "Inactive",
    "Unresolved",
    "TenantResolution",
    "TenantFinder",
    "SqlTenantFinder",
    "resolve_tenant",
    "extract_subdomain",
    "parse_tenant_id",
    "decode_session_tenant",
    "hash_api_key",
    "extract_tenant_hints",
    "set_db_tenant",
    "current_db_tenant",
    "tenant_session",
    "require_tenant_context",
    "get_tenant_session",
]
