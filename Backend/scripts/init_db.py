#!/usr/bin/env python3
"""
Initialize the database schema: tables, row-level security policies and the
booking overlap constraint. Optionally seeds the demo tenant.

Safe to run multiple times (idempotent).

Usage:
    export DATABASE_URL="postgresql+asyncpg://localhost:5432/boom_booking_test"
    python3 Backend/scripts/init_db.py

    # Also create the demo tenant with three rooms
    python3 Backend/scripts/init_db.py --seed
"""
import argparse
import asyncio
import os
import sys

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from boom_booking.seed import seed_demo_tenant
from boom_booking.tenancy import RLS_TABLES, init_schema

DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    print("❌ ERROR: DATABASE_URL environment variable not set")
    print("   Use: export DATABASE_URL='postgresql+asyncpg://localhost:5432/boom_booking_test'")
    sys.exit(1)


async def init_db(seed: bool):
    print("🔧 Initializing database...")
    print(f"   Database: {DATABASE_URL}")

    engine = create_async_engine(DATABASE_URL, echo=False)

    try:
        await init_schema(engine)
        print("✅ Schema initialized")
        print(f"   Row level security on: {', '.join(RLS_TABLES)}")
        print("   Exclusion constraint: no_overlapping_bookings")

        if seed:
            async with AsyncSession(engine, expire_on_commit=False) as session:
                tenant = await seed_demo_tenant(session)
            print(f"🌱 Demo tenant ready: {tenant.subdomain} ({tenant.id})")

    except (OSError, SQLAlchemyError) as e:
        print(f"❌ Error initializing database: {e}")
        sys.exit(1)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the Boom Booking schema")
    parser.add_argument("--seed", action="store_true", help="Create the demo tenant and rooms")
    args = parser.parse_args()
    asyncio.run(init_db(args.seed))
