from decimal import Decimal

from sqlalchemy import select

from .core.config import get_settings
from .models import Room, Tenant
from .tenancy import set_db_tenant
from .tenants import create_tenant


settings = get_settings()

DEMO_ROOMS = (
    ("Studio A", 6, "Standard", Decimal("25.00")),
    ("Studio B", 10, "Standard", Decimal("35.00")),
    ("Neon Lounge", 20, "VIP", Decimal("80.00")),
)


async def seed_demo_tenant(session):
    result = await session.execute(
        select(Tenant).where(Tenant.subdomain == settings.demo_tenant_subdomain)
    )
    tenant = result.scalar_one_or_none()

    if not tenant:
        tenant = await create_tenant(session, name="Boom Karaoke Demo", subdomain=settings.demo_tenant_subdomain)
    else:
        await set_db_tenant(session, tenant.id)

    # Seed rooms if missing
    result = await session.execute(select(Room).where(Room.tenant_id == tenant.id))
    rooms = result.scalars().all()
    if not rooms:
        session.add_all(
            [
                Room(
                    tenant_id=tenant.id,
                    name=name,
                    capacity=capacity,
                    category=category,
                    price_per_hour=price,
                )
                for name, capacity, category, price in DEMO_ROOMS
            ]
        )

    await session.commit()
    return tenant
