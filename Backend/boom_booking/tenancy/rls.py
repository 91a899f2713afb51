"""
Database-level tenant isolation and booking-overlap DDL.

Two things live here that SQLAlchemy metadata cannot express on its own:

1. Row-Level Security. Every tenant-owned table gets ENABLE + FORCE ROW LEVEL
   SECURITY and a policy comparing each row's tenant_id with the
   transaction-local setting app.current_tenant_id. An unset setting compares
   as NULL, so a connection that never bound a tenant sees no rows at all.

2. The no_overlapping_bookings exclusion constraint. It uses the same
   half-open '[)' range as the application check, so a booking ending at
   16:00 and one starting at 16:00 do not collide. Cancelled bookings are
   outside the constraint predicate and free their interval.

tenants and api_keys are deliberately left out of RLS: they are read while
resolving the tenant, before any tenant can be bound.
"""

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from ..core.db import Base


logger = logging.getLogger(__name__)

TENANT_SETTING = "app.current_tenant_id"

RLS_TABLES: tuple[str, ...] = ("rooms", "bookings", "business_hours", "settings", "audit_logs")

POLICY_NAME = "tenant_isolation_policy"

OVERLAP_CONSTRAINT = "no_overlapping_bookings"

_TENANT_PREDICATE = f"tenant_id = NULLIF(current_setting('{TENANT_SETTING}', true), '')::uuid"


def rls_statements(table: str) -> list[str]:
    """DDL enabling row-level security and the tenant policy on one table."""
    if table not in RLS_TABLES:
        raise ValueError(f"{table} is not a tenant-scoped table")
    return [
        f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY",
        f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY",
        f"DROP POLICY IF EXISTS {POLICY_NAME} ON {table}",
        (
            f"CREATE POLICY {POLICY_NAME} ON {table} FOR ALL TO PUBLIC "
            f"USING ({_TENANT_PREDICATE}) WITH CHECK ({_TENANT_PREDICATE})"
        ),
    ]


OVERLAP_CONSTRAINT_SQL = f"""
DO $$
BEGIN
    IF NOT EXISTS (SELECT 1 FROM pg_constraint WHERE conname = '{OVERLAP_CONSTRAINT}') THEN
        ALTER TABLE bookings ADD CONSTRAINT {OVERLAP_CONSTRAINT}
            EXCLUDE USING gist (
                tenant_id WITH =,
                room_id WITH =,
                tstzrange(start_time, end_time, '[)') WITH &&
            ) WHERE (status <> 'cancelled');
    END IF;
END
$$
"""


async def apply_isolation_ddl(conn: AsyncConnection) -> None:
    """Install the overlap constraint and RLS policies on an existing schema."""
    await conn.execute(text(OVERLAP_CONSTRAINT_SQL))
    for table in RLS_TABLES:
        for statement in rls_statements(table):
            await conn.execute(text(statement))
    logger.info(f"Row level security enabled on {', '.join(RLS_TABLES)}")


async def init_schema(engine: AsyncEngine) -> None:
    """Create all tables, then the DDL metadata cannot express."""
    # Import models so every table is registered on Base.metadata
    from .. import models  # noqa: F401

    async with engine.begin() as conn:
        # btree_gist provides the = operator class for uuid inside a gist index
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS btree_gist"))
        await conn.run_sync(Base.metadata.create_all)
        await apply_isolation_ddl(conn)
