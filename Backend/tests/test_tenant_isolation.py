"""
Multi-Tenant Isolation Tests

These tests verify that tenant isolation is enforced:
1. Rooms and bookings of tenant A are invisible to tenant B through the API
2. Cross-tenant reads and writes answer exactly like a missing row
3. Row-level security hides other tenants' rows even without an app filter
4. The tenant binding never outlives its transaction

Run with: pytest Backend/tests/test_tenant_isolation.py -v
"""

import uuid
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete, event, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from boom_booking.core.errors import NotFoundError
from boom_booking.models import ApiKey, AuditLog, Booking, BusinessHours, Room, Setting, Tenant, TenantStatus
from boom_booking.tenancy import TENANT_SETTING, require_owned, scoped_select, set_db_tenant, tenant_filter
from boom_booking.tenancy.context import current_db_tenant, tenant_session


BOOKING = {"customer_name": "Someone", "start_time": "2025-03-14T14:00:00Z", "end_time": "2025-03-14T16:00:00Z"}


@pytest.fixture
async def room_b(tenant_b, make_room):
    return await make_room(tenant_b, name="B's Private Room")


@pytest.fixture
async def booking_b(client, headers_for, tenant_b, room_b):
    response = await client.post("/bookings", json={**BOOKING, "room_id": str(room_b.id)}, headers=headers_for(tenant_b))
    assert response.status_code == 201
    return response.json()["data"]


# ────────────────────────────────────────────────────────────────
# Unit Tests - Query Helpers
# ────────────────────────────────────────────────────────────────

class TestScopedQueries:
    """Test the composable tenant filters."""

    def test_scoped_select_filters_by_tenant(self):
        stmt = scoped_select(Room, uuid.uuid4())
        assert "rooms.tenant_id = " in str(stmt)

    def test_tenant_filter_clause(self):
        tenant_id = uuid.uuid4()
        clause = tenant_filter(Setting, tenant_id)
        assert "settings.tenant_id" in str(clause)
        assert clause.right.value == tenant_id

    @pytest.mark.asyncio
    async def test_require_owned_hides_other_tenant(self, async_session, tenant_a, room_b):
        with pytest.raises(NotFoundError) as exc_info:
            await require_owned(async_session, Room, room_b.id, tenant_a.id, "Room")
        assert str(exc_info.value) == "Room not found"


# ────────────────────────────────────────────────────────────────
# API - Cross-Tenant Access
# ────────────────────────────────────────────────────────────────

class TestCrossTenantApi:
    @pytest.mark.asyncio
    async def test_room_of_other_tenant_is_not_found(self, client, headers_for, tenant_a, room_b):
        foreign = await client.get(f"/rooms/{room_b.id}", headers=headers_for(tenant_a))
        missing = await client.get(f"/rooms/{uuid.uuid4()}", headers=headers_for(tenant_a))

        assert foreign.status_code == missing.status_code == 404
        assert foreign.json() == missing.json()

    @pytest.mark.asyncio
    async def test_booking_of_other_tenant_is_not_found(self, client, headers_for, tenant_a, booking_b):
        foreign = await client.get(f"/bookings/{booking_b['id']}", headers=headers_for(tenant_a))
        missing = await client.get(f"/bookings/{uuid.uuid4()}", headers=headers_for(tenant_a))

        assert foreign.status_code == missing.status_code == 404
        assert foreign.json() == missing.json()
        assert foreign.json()["error"]["message"] == "Booking not found"

    @pytest.mark.asyncio
    async def test_lists_do_not_leak(self, client, headers_for, tenant_a, make_room, booking_b):
        await make_room(tenant_a)

        rooms = await client.get("/rooms", headers=headers_for(tenant_a))
        bookings = await client.get("/bookings", headers=headers_for(tenant_a))

        assert all(r["tenant_id"] == str(tenant_a.id) for r in rooms.json()["data"])
        assert len(rooms.json()["data"]) == 1
        assert bookings.json()["data"] == []

    @pytest.mark.asyncio
    async def test_identically_named_rooms_stay_separate(self, client, headers_for, tenant_a, tenant_b, make_room):
        room_a = await make_room(tenant_a, name="Studio A")
        room_b = await make_room(tenant_b, name="Studio A")
        for tenant, room in ((tenant_a, room_a), (tenant_b, room_b)):
            created = await client.post("/bookings", json={**BOOKING, "room_id": str(room.id)}, headers=headers_for(tenant))
            assert created.status_code == 201

        for tenant, room in ((tenant_a, room_a), (tenant_b, room_b)):
            rooms = (await client.get("/rooms", headers=headers_for(tenant))).json()["data"]
            bookings = (await client.get("/bookings", headers=headers_for(tenant))).json()["data"]

            assert [r["id"] for r in rooms] == [str(room.id)]
            assert [b["room_id"] for b in bookings] == [str(room.id)]
            assert {b["tenant_id"] for b in bookings} == {str(tenant.id)}

    @pytest.mark.asyncio
    async def test_cannot_book_other_tenants_room(self, client, headers_for, tenant_a, room_b):
        response = await client.post("/bookings", json={**BOOKING, "room_id": str(room_b.id)}, headers=headers_for(tenant_a))
        assert response.status_code == 404
        assert response.json()["error"]["message"] == "Room not found"

    @pytest.mark.asyncio
    async def test_cannot_modify_other_tenants_booking(self, client, headers_for, tenant_a, tenant_b, booking_b):
        booking_id = booking_b["id"]

        cancel = await client.put(f"/bookings/{booking_id}/cancel", headers=headers_for(tenant_a))
        delete = await client.delete(f"/bookings/{booking_id}", headers=headers_for(tenant_a))
        update = await client.put(f"/bookings/{booking_id}", json={"notes": "hijack"}, headers=headers_for(tenant_a))

        assert cancel.status_code == delete.status_code == update.status_code == 404

        untouched = await client.get(f"/bookings/{booking_id}", headers=headers_for(tenant_b))
        assert untouched.json()["data"]["status"] == "confirmed"
        assert untouched.json()["data"]["notes"] is None

    @pytest.mark.asyncio
    async def test_cannot_move_into_other_tenants_room(self, client, headers_for, tenant_a, make_room, room_b):
        own = await make_room(tenant_a)
        created = await client.post("/bookings", json={**BOOKING, "room_id": str(own.id)}, headers=headers_for(tenant_a))

        response = await client.put(
            f"/bookings/{created.json()['data']['id']}/move",
            json={"new_room_id": str(room_b.id), "new_start_time": BOOKING["start_time"], "new_end_time": BOOKING["end_time"]},
            headers=headers_for(tenant_a),
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_settings_are_per_tenant(self, client, headers_for, tenant_a, tenant_b):
        await client.put("/settings/theme", json={"value": "neon"}, headers=headers_for(tenant_a))

        own = await client.get("/settings/theme", headers=headers_for(tenant_a))
        other = await client.get("/settings/theme", headers=headers_for(tenant_b))

        assert own.json()["data"]["value"] == "neon"
        assert other.status_code == 404


class TestTenantStatusGate:
    @pytest.mark.parametrize("status", [TenantStatus.INACTIVE, TenantStatus.SUSPENDED, TenantStatus.DELETED])
    @pytest.mark.asyncio
    async def test_non_active_tenants_forbidden(self, client, make_tenant, headers_for, status):
        tenant = await make_tenant(status=status)

        response = await client.get("/rooms", headers=headers_for(tenant))

        assert response.status_code == 403
        body = response.json()
        assert body["error"]["code"] == "TENANT_INACTIVE"
        assert body["error"]["details"]["tenant_status"] == status.value

    @pytest.mark.asyncio
    async def test_malformed_tenant_header(self, client):
        response = await client.get("/rooms", headers={"X-Tenant-Id": "not-a-uuid"})
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_unresolved_lists_attempted_sources(self, client):
        response = await client.get("/rooms", headers={"X-Tenant-Id": str(uuid.uuid4())})
        assert response.status_code == 400
        assert response.json()["error"]["details"]["attempted"] == ["header"]


# ────────────────────────────────────────────────────────────────
# Database - Row-Level Security
# ────────────────────────────────────────────────────────────────

async def _assume_rls_subject(session: AsyncSession) -> None:
    """
    Drop to a role that row-level security applies to.

    Superusers and BYPASSRLS roles skip every policy, FORCE or not. The probe
    role is created inside the test transaction and disappears on rollback.
    """
    row = (
        await session.execute(
            text("SELECT rolsuper OR rolbypassrls FROM pg_roles WHERE rolname = current_user")
        )
    ).scalar_one()
    if not row:
        return

    role = f"rls_probe_{uuid.uuid4().hex[:8]}"
    await session.execute(text(f"CREATE ROLE {role} NOLOGIN"))
    await session.execute(text(f"GRANT SELECT ON rooms, settings TO {role}"))
    await session.execute(text(f"SET LOCAL ROLE {role}"))


class TestRowLevelSecurity:
    @pytest.mark.asyncio
    async def test_policy_hides_other_tenants_rows(self, async_session, tenant_a, tenant_b, make_room):
        room_a = await make_room(tenant_a)
        room_b = await make_room(tenant_b)
        await _assume_rls_subject(async_session)

        await set_db_tenant(async_session, tenant_a.id)
        # No tenant filter on purpose: only the policy stands between tenants here
        visible = (
            await async_session.execute(select(Room.id).where(Room.id.in_([room_a.id, room_b.id])))
        ).scalars().all()

        assert visible == [room_a.id]

    @pytest.mark.asyncio
    async def test_no_bound_tenant_sees_nothing(self, async_session, tenant_a, make_room):
        room = await make_room(tenant_a)
        await _assume_rls_subject(async_session)

        await async_session.execute(
            text("SELECT set_config(:name, '', true)"), {"name": TENANT_SETTING}
        )
        visible = (await async_session.execute(select(Room.id).where(Room.id == room.id))).scalars().all()

        assert visible == []


class TestTenantBinding:
    @pytest.mark.asyncio
    async def test_binding_is_transaction_local(self, async_engine):
        tenant_id = uuid.uuid4()

        async with AsyncSession(async_engine) as session:
            await set_db_tenant(session, tenant_id)
            assert await current_db_tenant(session) == str(tenant_id)
            await session.rollback()

            assert await current_db_tenant(session) is None

    @pytest.mark.asyncio
    async def test_tenant_session_binds_for_the_block(self, async_engine):
        tenant_id = uuid.uuid4()
        factory = async_sessionmaker(async_engine, expire_on_commit=False)

        async with tenant_session(tenant_id, session_factory=factory) as session:
            assert await current_db_tenant(session) == str(tenant_id)

        async with factory() as session:
            assert await current_db_tenant(session) is None


# ────────────────────────────────────────────────────────────────
# End to End - Requests Under Row-Level Security
# ────────────────────────────────────────────────────────────────

RLS_ROLE = "boom_booking_rls_subject"


async def _rls_role_for(async_engine) -> Optional[str]:
    """
    The role requests should run as for policies to apply, or None when the
    connecting user is already subject to them.
    """
    async with async_engine.begin() as conn:
        exempt = (
            await conn.execute(text("SELECT rolsuper OR rolbypassrls FROM pg_roles WHERE rolname = current_user"))
        ).scalar_one()
        if not exempt:
            return None
        try:
            await conn.execute(text(
                f"DO $$ BEGIN "
                f"IF NOT EXISTS (SELECT 1 FROM pg_roles WHERE rolname = '{RLS_ROLE}') THEN "
                f"CREATE ROLE {RLS_ROLE} NOLOGIN; END IF; END $$"
            ))
            await conn.execute(text(f"GRANT USAGE ON SCHEMA public TO {RLS_ROLE}"))
            await conn.execute(text(f"GRANT SELECT, INSERT, UPDATE, DELETE ON ALL TABLES IN SCHEMA public TO {RLS_ROLE}"))
        except SQLAlchemyError as e:
            pytest.skip(f"Cannot create a role subject to row level security: {e}")
    return RLS_ROLE


@pytest.fixture
async def rls_client(async_engine):
    """
    A client whose requests use real, committing sessions from their own
    engine, connected as a role row-level security applies to.

    Yields (client, make_tenant). Every tenant made through it is removed with
    all of its rows afterwards.
    """
    from boom_booking.core.db import get_session
    from boom_booking.main import app

    role = await _rls_role_for(async_engine)
    engine = create_async_engine(async_engine.url, poolclass=NullPool)
    if role:
        @event.listens_for(engine.sync_engine, "connect")
        def _assume_role(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute(f"SET ROLE {role}")
            cursor.close()

    factory = async_sessionmaker(engine, expire_on_commit=False)

    async def request_session():
        async with factory() as session:
            yield session

    created: list[uuid.UUID] = []

    async def make_tenant(name: str) -> uuid.UUID:
        tenant = Tenant(id=uuid.uuid4(), name=name, subdomain=f"rls{uuid.uuid4().hex[:12]}", plan_type="basic", settings={})
        async with AsyncSession(async_engine) as session:
            session.add(tenant)
            await session.commit()
        created.append(tenant.id)
        return tenant.id

    app.dependency_overrides[get_session] = request_session
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac, make_tenant
    finally:
        app.dependency_overrides.clear()
        await engine.dispose()
        async with AsyncSession(async_engine) as session:
            async with session.begin():
                for tenant_id in created:
                    await set_db_tenant(session, tenant_id)
                    for model in (AuditLog, Booking, BusinessHours, Setting, ApiKey, Room):
                        await session.execute(delete(model).where(model.tenant_id == tenant_id))
                if created:
                    await session.execute(delete(Tenant).where(Tenant.id.in_(created)))


class TestRequestsUnderRowLevelSecurity:
    @pytest.mark.asyncio
    async def test_booking_round_trip(self, rls_client):
        client, make_tenant = rls_client
        tenant_id = await make_tenant("RLS Karaoke")
        other_id = await make_tenant("RLS Neighbour")
        headers = {"X-Tenant-Id": str(tenant_id)}

        room = await client.post(
            "/rooms", json={"name": "Studio A", "capacity": 6, "category": "Standard", "price_per_hour": "25.00"},
            headers=headers,
        )
        assert room.status_code == 201
        room_id = room.json()["data"]["id"]

        created = await client.post("/bookings", json={**BOOKING, "room_id": room_id}, headers=headers)
        assert created.status_code == 201
        assert created.json()["data"]["total_price"] == "50.00"

        clash = await client.post("/bookings", json={**BOOKING, "room_id": room_id}, headers=headers)
        assert clash.status_code == 409

        listed = await client.get("/bookings", headers=headers)
        assert listed.status_code == 200
        assert [b["id"] for b in listed.json()["data"]] == [created.json()["data"]["id"]]

        foreign = await client.get("/bookings", headers={"X-Tenant-Id": str(other_id)})
        assert foreign.json()["data"] == []

    @pytest.mark.asyncio
    async def test_api_usage_is_metered(self, rls_client):
        client, make_tenant = rls_client
        tenant_id = await make_tenant("RLS Metered")
        headers = {"X-Tenant-Id": str(tenant_id)}

        await client.get("/rooms", headers=headers)
        billing = await client.get("/billing", headers=headers)

        assert billing.status_code == 200
        assert billing.json()["data"]["usage"]["api_calls"]["count"] == 2
