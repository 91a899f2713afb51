"""
Multi-tenancy package for Boom Booking.

Modules:
    context: TenantContext resolution and database tenant binding
    queries: Tenant-scoped query helpers
    rls: Row-level security policies and the booking overlap constraint
"""

from .context import (
    API_KEY_PREFIX,
    SUBDOMAIN_PATTERN,
    TenantContext,
    TenantResolutionSource,
    TenantHints,
    TenantRecord,
    TenantFinder,
    SqlTenantFinder,
    Resolved,
    Inactive,
    Unresolved,
    resolve_tenant,
    extract_subdomain,
    extract_tenant_hints,
    hash_api_key,
    set_db_tenant,
    current_db_tenant,
    tenant_session,
    require_tenant_context,
    get_tenant_session,
)

from .queries import (
    # Composable helpers
    scoped_select,
    tenant_filter,
    require_owned,
    # Room queries
    get_room_by_id,
    list_rooms,
    # Booking queries
    list_bookings,
    # Metering
    record_api_usage,
)

from .rls import TENANT_SETTING, RLS_TABLES, init_schema

__all__ = [
    # Context
    "API_KEY_PREFIX",
    "SUBDOMAIN_PATTERN",
    "TenantContext",
    "TenantResolutionSource",
    "TenantHints",
    "TenantRecord",
    "TenantFinder",
    "SqlTenantFinder",
    "Resolved",
    "Inactive",
    "Unresolved",
    "resolve_tenant",
    "extract_subdomain",
    "extract_tenant_hints",
    "hash_api_key",
    "set_db_tenant",
    "current_db_tenant",
    "tenant_session",
    "require_tenant_context",
    "get_tenant_session",
    # Query helpers
    "scoped_select",
    "tenant_filter",
    "require_owned",
    "get_room_by_id",
    "list_rooms",
    "list_bookings",
    "record_api_usage",
    # RLS
    "TENANT_SETTING",
    "RLS_TABLES",
    "init_schema",
]
