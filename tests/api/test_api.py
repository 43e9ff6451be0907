"""API endpoint tests.

Tests the FastAPI endpoints against an in-memory ledger.
"""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from settlement_ledger.api.app import create_app
from settlement_ledger.models.common import GatewayOutcome

DRIVER = {"X-Actor-Id": "drv-1", "X-Actor-Role": "driver"}
RIDER = {"X-Actor-Id": "rider-1", "X-Actor-Role": "rider"}
ADMIN = {"X-Actor-Id": "admin-1", "X-Actor-Role": "admin"}

TRIP = {
    "reservation": {
        "reservation_id": "res-1",
        "rider_id": "rider-1",
        "driver_id": "drv-1",
    },
    "amount": "5000",
    "method": "cash",
}


@pytest.fixture
def client(ledger) -> TestClient:
    return TestClient(create_app(ledger), raise_server_exceptions=False)


@pytest.fixture
def funded(client, ledger, funded_wallet):
    funded_wallet()
    return client


class TestHealthEndpoints:
    """Test health check endpoints."""

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["store"] == "healthy"
        assert data["gateway"] == "stub"

    def test_readiness_and_liveness(self, client):
        assert client.get("/ready").json() == {"status": "ready"}
        assert client.get("/live").json() == {"status": "alive"}


class TestActorHeaders:

    def test_missing_headers(self, client):
        response = client.get("/api/v1/wallets/drv-1")

        assert response.status_code == 401

    def test_unknown_role(self, client):
        response = client.get(
            "/api/v1/wallets/drv-1", headers={"X-Actor-Id": "drv-1", "X-Actor-Role": "pilot"}
        )

        assert response.status_code == 400

    def test_other_driver_cannot_read_wallet(self, funded):
        response = funded.get(
            "/api/v1/wallets/drv-1", headers={"X-Actor-Id": "drv-2", "X-Actor-Role": "driver"}
        )

        assert response.status_code == 403
        assert response.json()["code"] == "PERMISSION_DENIED"


class TestWalletEndpoints:

    def test_open_and_read_wallet(self, client):
        created = client.post("/api/v1/wallets/drv-1", headers=DRIVER)
        fetched = client.get("/api/v1/wallets/drv-1", headers=DRIVER)

        assert created.status_code == 201
        assert fetched.status_code == 200
        assert fetched.json()["balance"] == "0"
        assert fetched.json()["recharge_active"] is False

    def test_unknown_wallet(self, client):
        response = client.get("/api/v1/wallets/drv-1", headers=DRIVER)

        assert response.status_code == 404
        assert response.json()["code"] == "WALLET_NOT_FOUND"

    def test_eligibility(self, funded):
        data = funded.get("/api/v1/wallets/drv-1/eligibility", headers=DRIVER).json()

        assert data["allowed"] is True
        assert Decimal(data["balance"]) == Decimal("10000")
        assert Decimal(data["shortfall"]) == Decimal("0")
        assert "cash" in data["authorized_methods"]

    def test_withdraw(self, funded):
        response = funded.post(
            "/api/v1/wallets/drv-1/withdrawals", headers=DRIVER, json={"amount": "2500"}
        )

        assert response.status_code == 201
        assert Decimal(response.json()["amount"]) == Decimal("2500")
        assert funded.get("/api/v1/wallets/drv-1", headers=DRIVER).json()["balance"] == "7500"

    def test_overdraw_is_payment_required(self, funded):
        response = funded.post(
            "/api/v1/wallets/drv-1/withdrawals", headers=DRIVER, json={"amount": "20000"}
        )

        assert response.status_code == 402
        assert response.json()["code"] == "INSUFFICIENT_WALLET_BALANCE"


class TestRechargeEndpoints:

    def test_recharge_then_webhook(self, client, gateway):
        client.post("/api/v1/wallets/drv-1", headers=DRIVER)

        created = client.post(
            "/api/v1/wallets/drv-1/recharges",
            headers=DRIVER,
            json={"amount": "10000", "method": "wave", "phone_number": "+2250100000000"},
        )
        reference = created.json()["payment"]["reference"]
        payload, signature = gateway.build_notification(reference, GatewayOutcome.SUCCESS, "TX-1")
        ack = client.post("/webhooks/gateway", json=payload, headers={"X-Gateway-Signature": signature})

        assert created.status_code == 201
        assert reference.startswith("RCH_")
        assert created.json()["redirect_url"].endswith(reference)
        assert ack.status_code == 200
        assert ack.json() == {"reference": reference, "status": "COMPLETED", "disposition": "applied"}
        assert client.get("/api/v1/wallets/drv-1", headers=DRIVER).json()["balance"] == "10000"

    def test_webhook_bad_signature(self, client, gateway):
        client.post("/api/v1/wallets/drv-1", headers=DRIVER)
        reference = client.post(
            "/api/v1/wallets/drv-1/recharges", headers=DRIVER, json={"amount": "10000", "method": "wave"}
        ).json()["payment"]["reference"]
        payload, _ = gateway.build_notification(reference, GatewayOutcome.SUCCESS)

        response = client.post("/webhooks/gateway", json=payload, headers={"X-Gateway-Signature": "forged"})

        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_SIGNATURE"

    def test_amount_below_minimum(self, client):
        client.post("/api/v1/wallets/drv-1", headers=DRIVER)

        response = client.post(
            "/api/v1/wallets/drv-1/recharges", headers=DRIVER, json={"amount": "500", "method": "wave"}
        )

        assert response.status_code == 400
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_cancel_recharge(self, client):
        client.post("/api/v1/wallets/drv-1", headers=DRIVER)
        reference = client.post(
            "/api/v1/wallets/drv-1/recharges", headers=DRIVER, json={"amount": "10000", "method": "wave"}
        ).json()["payment"]["reference"]

        response = client.post(f"/api/v1/wallets/drv-1/recharges/{reference}/cancel", headers=DRIVER)

        assert response.status_code == 200
        assert response.json()["status"] == "CANCELLED"

    def test_cancel_after_window(self, client, clock):
        client.post("/api/v1/wallets/drv-1", headers=DRIVER)
        reference = client.post(
            "/api/v1/wallets/drv-1/recharges", headers=DRIVER, json={"amount": "10000", "method": "wave"}
        ).json()["payment"]["reference"]
        clock.advance(minutes=31)

        response = client.post(f"/api/v1/wallets/drv-1/recharges/{reference}/cancel", headers=DRIVER)

        assert response.status_code == 409
        assert response.json()["code"] == "CANCELLATION_WINDOW_EXPIRED"

    def test_daily_usage(self, funded):
        data = funded.get("/api/v1/wallets/drv-1/daily-usage", headers=DRIVER).json()

        assert data["count"] == 1
        assert Decimal(data["remaining_amount"]) == Decimal("490000")

    def test_velocity_limit_sets_retry_after(self, client):
        client.post("/api/v1/wallets/drv-1", headers=DRIVER)
        for _ in range(5):
            client.post(
                "/api/v1/wallets/drv-1/recharges", headers=DRIVER, json={"amount": "1000", "method": "wave"}
            )

        response = client.post(
            "/api/v1/wallets/drv-1/recharges", headers=DRIVER, json={"amount": "1000", "method": "wave"}
        )

        assert response.status_code == 429
        assert response.json()["code"] == "VELOCITY_LIMIT_EXCEEDED"
        assert response.headers["Retry-After"] == "900"

    def test_auto_recharge_settings(self, funded):
        enabled = funded.put(
            "/api/v1/wallets/drv-1/auto-recharge",
            headers=DRIVER,
            json={"threshold": "2000", "amount": "5000", "method": "wave"},
        )
        disabled = funded.delete("/api/v1/wallets/drv-1/auto-recharge", headers=DRIVER)

        assert enabled.status_code == 200
        assert enabled.json()["enabled"] is True
        assert Decimal(enabled.json()["threshold"]) == Decimal("2000")
        assert disabled.json()["enabled"] is False


class TestTripEndpoints:

    def test_cash_trip_flow(self, funded):
        created = funded.post("/api/v1/payments/trips", headers=RIDER, json=TRIP)
        reference = created.json()["payment"]["reference"]

        confirmed = funded.post(f"/api/v1/payments/{reference}/confirm-cash", headers=DRIVER)

        assert created.status_code == 201
        assert created.json()["payment"]["status"] == "PENDING"
        assert confirmed.status_code == 200
        body = confirmed.json()
        assert body["status"] == "COMPLETED"
        assert body["commission_settlement"] == "deducted"
        assert Decimal(body["commission"]["amount"]) == Decimal("500")
        assert isinstance(body["gross_amount"], str)

    def test_only_rider_can_pay(self, funded):
        response = funded.post("/api/v1/payments/trips", headers=DRIVER, json=TRIP)

        assert response.status_code == 403

    def test_cash_refused_without_balance(self, client):
        client.post("/api/v1/wallets/drv-1", headers=DRIVER)

        response = client.post("/api/v1/payments/trips", headers=RIDER, json=TRIP)

        assert response.status_code == 403
        assert response.json()["code"] == "ELIGIBILITY_DENIED"

    def test_duplicate_payment_conflict(self, funded):
        reference = funded.post("/api/v1/payments/trips", headers=RIDER, json=TRIP).json()["payment"]["reference"]
        funded.post(f"/api/v1/payments/{reference}/confirm-cash", headers=DRIVER)

        response = funded.post("/api/v1/payments/trips", headers=RIDER, json=TRIP)

        assert response.status_code == 409
        assert response.json()["code"] == "DUPLICATE_PAYMENT"

    def test_payment_visible_to_parties_only(self, funded):
        reference = funded.post("/api/v1/payments/trips", headers=RIDER, json=TRIP).json()["payment"]["reference"]

        assert funded.get(f"/api/v1/payments/{reference}", headers=RIDER).status_code == 200
        assert funded.get(f"/api/v1/payments/{reference}", headers=ADMIN).status_code == 200
        stranger = {"X-Actor-Id": "rider-9", "X-Actor-Role": "rider"}
        assert funded.get(f"/api/v1/payments/{reference}", headers=stranger).status_code == 403

    def test_rider_cannot_supply_trip_facts(self, funded):
        inflated = {
            **TRIP,
            "reservation": {**TRIP["reservation"], "driver_rating": 5.0, "driver_trips_this_month": 99},
        }

        response = funded.post("/api/v1/payments/trips", headers=RIDER, json=inflated)

        assert response.status_code == 403
        assert response.json()["code"] == "PERMISSION_DENIED"
        assert funded.get("/api/v1/wallets/drv-1", headers=DRIVER).json()["balance"] == "10000"

    def test_rider_trip_uses_recorded_facts(self, funded, ledger):
        ledger.trip_facts.record_trip("res-1", 25.0)
        ledger.trip_facts.record_driver("drv-1", 4.8, 25)
        reference = funded.post("/api/v1/payments/trips", headers=RIDER, json=TRIP).json()["payment"]["reference"]

        body = funded.post(f"/api/v1/payments/{reference}/confirm-cash", headers=DRIVER).json()

        # 10% less 1% for distance and 1% for rating, plus the 5,000 bonus
        assert Decimal(body["commission"]["amount"]) == Decimal("400")
        assert Decimal(funded.get("/api/v1/wallets/drv-1", headers=DRIVER).json()["balance"]) == Decimal("14600")

    def test_admin_may_supply_trip_facts(self, funded):
        reported = {
            **TRIP,
            "reservation": {**TRIP["reservation"], "distance_km": 30.0},
        }

        created = funded.post("/api/v1/payments/trips", headers=ADMIN, json=reported)
        reference = created.json()["payment"]["reference"]
        body = funded.post(f"/api/v1/payments/{reference}/confirm-cash", headers=DRIVER).json()

        assert created.status_code == 201
        assert Decimal(body["commission"]["amount"]) == Decimal("450")

    def test_unknown_payment(self, client):
        response = client.get("/api/v1/payments/PAY_missing", headers=ADMIN)

        assert response.status_code == 404

    def test_invalid_body(self, client):
        response = client.post(
            "/api/v1/payments/trips", headers=RIDER, json={**TRIP, "method": "bitcoin"}
        )

        assert response.status_code == 422


class TestAdminEndpoints:

    def test_admin_role_required(self, funded):
        response = funded.post("/admin/reconcile", headers=DRIVER)

        assert response.status_code == 403

    def test_refund(self, funded):
        reference = funded.post("/api/v1/payments/trips", headers=RIDER, json=TRIP).json()["payment"]["reference"]
        funded.post(f"/api/v1/payments/{reference}/confirm-cash", headers=DRIVER)

        response = funded.post(
            f"/admin/payments/{reference}/refund", headers=ADMIN, json={"reason": "rider complaint"}
        )

        assert response.status_code == 200
        assert response.json()["status"] == "REFUNDED"

    def test_manual_settle_stranded_commission(self, funded):
        trip = {**TRIP, "amount": "20000"}
        reference = funded.post("/api/v1/payments/trips", headers=RIDER, json=trip).json()["payment"]["reference"]
        funded.post("/api/v1/wallets/drv-1/withdrawals", headers=DRIVER, json={"amount": "9500"})
        stranded = funded.post(f"/api/v1/payments/{reference}/confirm-cash", headers=DRIVER)

        response = funded.post(
            f"/admin/payments/{reference}/commission",
            headers=ADMIN,
            json={"action": "manual_settle", "reason": "paid at the office"},
        )

        assert stranded.status_code == 402
        assert response.status_code == 200
        assert response.json()["status"] == "COMPLETED"
        assert response.json()["commission_settlement"] == "manually_settled"

    def test_refund_pending_payment_conflicts(self, funded):
        reference = funded.post("/api/v1/payments/trips", headers=RIDER, json=TRIP).json()["payment"]["reference"]

        response = funded.post(
            f"/admin/payments/{reference}/refund", headers=ADMIN, json={"reason": "mistake"}
        )

        assert response.status_code == 409

    def test_manual_recharge_confirmation(self, client, gateway):
        client.post("/api/v1/wallets/drv-1", headers=DRIVER)
        reference = client.post(
            "/api/v1/wallets/drv-1/recharges", headers=DRIVER, json={"amount": "10000", "method": "wave"}
        ).json()["payment"]["reference"]
        gateway.simulate_success(reference)

        response = client.post(
            f"/admin/recharges/{reference}/confirm", headers=ADMIN, json={"outcome": "SUCCESS"}
        )

        assert response.status_code == 200
        assert response.json()["disposition"] == "applied"
        assert response.json()["previous_status"] == "PENDING"

    def test_manual_confirmation_mismatch(self, client):
        client.post("/api/v1/wallets/drv-1", headers=DRIVER)
        reference = client.post(
            "/api/v1/wallets/drv-1/recharges", headers=DRIVER, json={"amount": "10000", "method": "wave"}
        ).json()["payment"]["reference"]

        response = client.post(
            f"/admin/recharges/{reference}/confirm", headers=ADMIN, json={"outcome": "SUCCESS"}
        )

        assert response.status_code == 409
        assert response.json()["code"] == "STATUS_MISMATCH"

    def test_reconcile(self, funded, gateway):
        created = funded.post(
            "/api/v1/payments/trips", headers=RIDER, json={**TRIP, "method": "wave"}
        ).json()
        gateway.simulate_success(created["payment"]["reference"])

        response = funded.post("/admin/reconcile", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["payments_completed"] == 1
        assert response.json()["success"] is True

    def test_wallet_audit(self, funded):
        audits = funded.get("/admin/wallets/audit", headers=ADMIN).json()

        assert audits == [
            {
                "driver_id": "drv-1",
                "balance": "10000",
                "replayed": "10000",
                "drift": "0",
                "consistent": True,
            }
        ]

    def test_commission_summary(self, funded):
        reference = funded.post("/api/v1/payments/trips", headers=RIDER, json=TRIP).json()["payment"]["reference"]
        funded.post(f"/api/v1/payments/{reference}/confirm-cash", headers=DRIVER)

        data = funded.get("/admin/commissions/summary", headers=ADMIN).json()

        assert data["trips"] == 1
        assert Decimal(data["commission_total"]) == Decimal("500")
