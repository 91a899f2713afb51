"""
Tests for usage metering and billing.

Tests:
- Plan limits and the free-tier fallback
- Billing period boundaries
- Overage counts, overage charges and totals
- 80% warnings and overage alerts
- /billing endpoints
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from boom_booking.billing import (
    PLAN_LIMITS,
    Usage,
    calculate_billing,
    calculate_overage_charges,
    calculate_overages,
    period_date_range,
    plan_limits,
    usage_alerts,
)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestPlanLimits:
    def test_basic_plan(self):
        limits = plan_limits("basic")
        assert limits.price == Decimal("19")
        assert (limits.bookings, limits.rooms, limits.api_calls) == (500, 5, 10000)

    def test_unknown_plan_falls_back_to_free(self):
        assert plan_limits("enterprise-gold") == PLAN_LIMITS["free"]
        assert plan_limits(None) == PLAN_LIMITS["free"]

    def test_to_dict_prices_as_float(self):
        assert plan_limits("pro").to_dict()["price"] == 49.0


class TestPeriodDateRange:
    def test_current_month(self):
        start, end = period_date_range("current", utc(2025, 4, 17, 9, 30))
        assert start == utc(2025, 4, 1)
        assert end == utc(2025, 4, 30, 23, 59, 59)

    def test_previous_month(self):
        start, end = period_date_range("previous", utc(2025, 3, 10))
        assert start == utc(2025, 2, 1)
        assert end == utc(2025, 2, 28, 23, 59, 59)

    def test_previous_month_wraps_year(self):
        start, end = period_date_range("previous", utc(2025, 1, 15))
        assert start == utc(2024, 12, 1)
        assert end == utc(2024, 12, 31, 23, 59, 59)

    def test_year_to_date(self):
        start, end = period_date_range("year", utc(2024, 2, 10))
        assert start == utc(2024, 1, 1)
        assert end == utc(2024, 2, 29, 23, 59, 59)

    def test_unknown_period(self):
        with pytest.raises(ValueError):
            period_date_range("fortnight", utc(2025, 1, 1))


class TestOverages:
    def test_within_limits(self):
        overages = calculate_overages(Usage(bookings=500, rooms=5, api_calls=10000), plan_limits("basic"))
        assert overages == {"bookings": 0, "rooms": 0, "api_calls": 0}

    def test_over_every_limit(self):
        overages = calculate_overages(Usage(bookings=520, rooms=7, api_calls=10500), plan_limits("basic"))
        assert overages == {"bookings": 20, "rooms": 2, "api_calls": 500}

    def test_charges(self):
        charges = calculate_overage_charges({"bookings": 20, "rooms": 2, "api_calls": 500})
        assert charges["bookings"] == Decimal("2.00")
        assert charges["rooms"] == Decimal("10.00")
        assert charges["api_calls"] == Decimal("0.500")
        assert charges["total"] == Decimal("12.50")


class TestCalculateBilling:
    def test_base_price_only(self):
        bill = calculate_billing("basic", Usage(bookings=10, rooms=2, api_calls=100))
        assert bill["total_amount"] == 19.0
        assert bill["overage_charges"]["total"] == 0.0
        assert bill["currency"] == "USD"
        assert bill["billing_period"] == "monthly"

    def test_booking_overage(self):
        """Basic plan, 520 bookings: 19.00 + 20 * 0.10."""
        bill = calculate_billing("basic", Usage(bookings=520))
        assert bill["overages"]["bookings"] == 20
        assert bill["overage_charges"]["bookings"] == 2.0
        assert bill["total_amount"] == 21.0

    def test_free_plan_room_overage(self):
        bill = calculate_billing("free", Usage(rooms=3))
        assert bill["plan"]["base_price"] == 0.0
        assert bill["total_amount"] == 10.0


class TestUsageAlerts:
    def test_no_alerts_below_threshold(self):
        assert usage_alerts(Usage(bookings=399), plan_limits("basic")) == []

    def test_warning_at_80_percent(self):
        alerts = usage_alerts(Usage(bookings=400), plan_limits("basic"))
        assert alerts == [
            {
                "type": "warning",
                "metric": "bookings",
                "message": "You've used 80% of your booking limit",
                "current": 400,
                "limit": 500,
            }
        ]

    def test_overage_adds_error(self):
        alerts = usage_alerts(Usage(api_calls=10250), plan_limits("basic"))
        assert [a["type"] for a in alerts] == ["warning", "error"]
        assert alerts[1]["message"] == "You've exceeded your API call limit by 250"
        assert alerts[1]["overage"] == 250


# ────────────────────────────────────────────────────────────────
# API
# ────────────────────────────────────────────────────────────────

class TestBillingApi:
    @pytest.mark.asyncio
    async def test_usage_for_current_period(self, client, headers_for, tenant_a, make_room):
        room = await make_room(tenant_a)
        created = await client.post(
            "/bookings",
            json={
                "room_id": str(room.id),
                "customer_name": "Metered",
                "start_time": "2025-03-14T14:00:00Z",
                "end_time": "2025-03-14T16:00:00Z",
            },
            headers=headers_for(tenant_a),
        )
        assert created.status_code == 201

        response = await client.get("/billing", headers=headers_for(tenant_a))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["tenant"]["plan_type"] == "basic"
        assert data["usage"]["period"] == "current"
        assert data["usage"]["bookings"] == {"count": 1, "limit": 500}
        assert data["usage"]["rooms"] == {"count": 1, "limit": 5}
        # The booking POST and this GET are both metered
        assert data["usage"]["api_calls"]["count"] == 2
        assert data["billing"]["total_amount"] == 19.0

    @pytest.mark.asyncio
    async def test_unknown_period_rejected(self, client, headers_for, tenant_a):
        response = await client.get("/billing", params={"period": "fortnight"}, headers=headers_for(tenant_a))
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_api_calls_are_per_tenant(self, client, headers_for, tenant_a, tenant_b):
        for _ in range(3):
            await client.get("/rooms", headers=headers_for(tenant_a))

        response = await client.get("/billing", headers=headers_for(tenant_b))

        assert response.json()["data"]["usage"]["api_calls"]["count"] == 1

    @pytest.mark.asyncio
    async def test_alerts_for_free_plan_overage(self, client, headers_for, make_tenant, make_room):
        tenant = await make_tenant(plan_type="free")
        await make_room(tenant)
        await make_room(tenant, name="Studio B")

        response = await client.get("/billing/alerts", headers=headers_for(tenant))

        assert response.status_code == 200
        data = response.json()["data"]
        errors = [a for a in data["alerts"] if a["type"] == "error"]
        assert errors == [
            {
                "type": "error",
                "metric": "rooms",
                "message": "You've exceeded your room limit by 1",
                "overage": 1,
            }
        ]
        assert data["usage_summary"]["rooms"] == "2/1"

    @pytest.mark.asyncio
    async def test_change_plan(self, client, headers_for, tenant_a):
        response = await client.put("/billing/plan", json={"plan_type": "pro"}, headers=headers_for(tenant_a))

        assert response.status_code == 200
        assert response.json()["data"]["plan_type"] == "pro"
        assert response.json()["message"] == "Plan updated to pro"

        billing = await client.get("/billing", headers=headers_for(tenant_a))
        assert billing.json()["data"]["billing"]["plan"]["base_price"] == 49.0

    @pytest.mark.asyncio
    async def test_change_plan_rejects_unknown_plan(self, client, headers_for, tenant_a):
        response = await client.put("/billing/plan", json={"plan_type": "platinum"}, headers=headers_for(tenant_a))
        assert response.status_code == 400
