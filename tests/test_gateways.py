"""Tests for gateway adapters (stub and HTTP).

Tests verify:
1. Webhook signatures are checked against the shared secret
2. Gateway answers are normalized to SUCCESS / FAILED / PENDING
3. Transport failures map to unavailable (unknown outcome) or rejected
4. The ledger keeps payments PENDING when the outcome is unknown
"""

import json
from decimal import Decimal

import httpx
import pytest

from settlement_ledger.errors import GatewayRejected, GatewayUnavailable, ValidationError
from settlement_ledger.gateways.base import compute_signature, signature_matches
from settlement_ledger.gateways.http import HttpGatewayAdapter
from settlement_ledger.gateways.stub import StubGateway
from settlement_ledger.ledger import SettlementLedger
from settlement_ledger.models.common import Customer, GatewayOutcome, PaymentMethod, PaymentStatus

BASE_URL = "https://gateway.test/v2"


def make_adapter(handler) -> HttpGatewayAdapter:
    """HTTP adapter whose requests are answered by ``handler``."""
    client = httpx.Client(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return HttpGatewayAdapter(
        base_url=BASE_URL,
        api_key="key-1",
        site_id="site-1",
        secret="hook-secret",
        notify_url="https://ledger.test/webhooks/gateway",
        client=client,
    )


def answer(body: dict, status_code: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=body)

    return handler


def raising(exc_type):
    def handler(request: httpx.Request) -> httpx.Response:
        raise exc_type("boom", request=request)

    return handler


class TestSignatures:

    def test_signature_round_trip(self):
        payload = {"reference": "RCH_1", "status": "SUCCESS"}
        signature = compute_signature("s3cret", payload)

        assert signature_matches("s3cret", payload, signature)

    def test_key_order_does_not_matter(self):
        signature = compute_signature("s3cret", {"a": 1, "b": 2})

        assert signature_matches("s3cret", {"b": 2, "a": 1}, signature)

    def test_tampered_payload_rejected(self):
        signature = compute_signature("s3cret", {"amount": 1000})

        assert not signature_matches("s3cret", {"amount": 100000}, signature)

    def test_missing_signature_or_secret(self):
        payload = {"reference": "RCH_1"}

        assert not signature_matches("s3cret", payload, None)
        assert not signature_matches("", payload, compute_signature("", payload))


class TestStubGateway:

    def test_payments_start_pending(self):
        gateway = StubGateway()
        handle = gateway.initiate(Decimal("5000"), PaymentMethod.WAVE, None, "PAY_1")

        assert handle.handle == "STUB-PAY_1"
        assert gateway.query_status("PAY_1").status is GatewayOutcome.PENDING

    def test_auto_succeed(self):
        gateway = StubGateway(auto_succeed=True)
        gateway.initiate(Decimal("5000"), PaymentMethod.WAVE, None, "PAY_1")

        status = gateway.query_status("PAY_1")

        assert status.status is GatewayOutcome.SUCCESS
        assert status.external_transaction_id == "STUBTX-PAY_1"

    def test_same_key_registers_once(self):
        """Initiating twice under one reference keeps the first record."""
        gateway = StubGateway()
        gateway.initiate(Decimal("5000"), PaymentMethod.WAVE, None, "PAY_1")
        gateway.simulate_success("PAY_1")

        gateway.initiate(Decimal("5000"), PaymentMethod.WAVE, None, "PAY_1")

        assert gateway.query_status("PAY_1").status is GatewayOutcome.SUCCESS
        assert gateway.initiate_calls == 2

    def test_queued_failures_raised_once(self):
        gateway = StubGateway()
        gateway.fail_next_initiate(GatewayRejected("declined"))

        with pytest.raises(GatewayRejected):
            gateway.initiate(Decimal("5000"), PaymentMethod.WAVE, None, "PAY_1")
        gateway.initiate(Decimal("5000"), PaymentMethod.WAVE, None, "PAY_1")

    def test_built_notification_verifies(self):
        gateway = StubGateway(secret="abc")
        payload, signature = gateway.build_notification(
            "RCH_1", GatewayOutcome.SUCCESS, "TX-9", amount="10000"
        )

        assert gateway.verify_webhook_signature(payload, signature)
        notification = gateway.parse_notification(payload)
        assert notification.outcome is GatewayOutcome.SUCCESS
        assert notification.external_transaction_id == "TX-9"
        assert notification.amount == Decimal("10000")

    def test_malformed_notification(self):
        with pytest.raises(ValidationError):
            StubGateway().parse_notification({"reference": "RCH_1", "status": "MAYBE"})


class TestHttpInitiate:

    def test_sends_checkout_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "code": "201",
                    "description": "Dial *144#",
                    "data": {"payment_token": "tok-1", "payment_url": "https://pay.test/tok-1"},
                },
            )

        adapter = make_adapter(handler)
        handle = adapter.initiate(
            Decimal("5000"),
            PaymentMethod.ORANGE_MONEY,
            Customer(phone_number="+2250700000000", name="Awa"),
            "PAY_1",
        )

        assert seen["path"] == "/v2/payment"
        assert seen["body"]["transaction_id"] == "PAY_1"
        assert seen["body"]["amount"] == 5000
        assert seen["body"]["customer_phone_number"] == "+2250700000000"
        assert handle.handle == "tok-1"
        assert handle.redirect_url == "https://pay.test/tok-1"
        assert handle.instructions == "Dial *144#"

    def test_refusal_code(self):
        adapter = make_adapter(answer({"code": "608", "message": "Invalid amount"}))

        with pytest.raises(GatewayRejected) as exc_info:
            adapter.initiate(Decimal("5000"), PaymentMethod.WAVE, None, "PAY_1")

        assert exc_info.value.details["gateway_code"] == "608"

    def test_timeout_is_unavailable(self):
        adapter = make_adapter(raising(httpx.ReadTimeout))

        with pytest.raises(GatewayUnavailable):
            adapter.initiate(Decimal("5000"), PaymentMethod.WAVE, None, "PAY_1")

    def test_connect_error_is_rejected(self):
        adapter = make_adapter(raising(httpx.ConnectError))

        with pytest.raises(GatewayRejected):
            adapter.initiate(Decimal("5000"), PaymentMethod.WAVE, None, "PAY_1")

    def test_server_error_is_unavailable(self):
        adapter = make_adapter(answer({"message": "oops"}, status_code=503))

        with pytest.raises(GatewayUnavailable) as exc_info:
            adapter.initiate(Decimal("5000"), PaymentMethod.WAVE, None, "PAY_1")

        assert exc_info.value.details["status_code"] == 503


class TestHttpStatus:

    @pytest.mark.parametrize(
        "body,expected",
        [
            ({"code": "00", "data": {"status": "ACCEPTED", "operator_id": "OP-1"}}, GatewayOutcome.SUCCESS),
            ({"code": "627", "data": {"status": "REFUSED"}}, GatewayOutcome.FAILED),
            ({"code": "00", "data": {"status": "cancelled"}}, GatewayOutcome.FAILED),
            ({"code": "662", "data": {"status": "WAITING_FOR_CUSTOMER"}}, GatewayOutcome.PENDING),
            ({"code": "00"}, GatewayOutcome.PENDING),
        ],
    )
    def test_status_mapping(self, body, expected):
        adapter = make_adapter(answer(body))

        assert adapter.query_status("PAY_1").status is expected

    def test_success_carries_operator_id(self):
        adapter = make_adapter(
            answer({"code": "00", "data": {"status": "ACCEPTED", "operator_id": "OP-1"}})
        )

        assert adapter.query_status("PAY_1").external_transaction_id == "OP-1"


class TestHttpNotifications:

    def test_success_notification(self):
        adapter = make_adapter(answer({}))
        payload = {"cpm_trans_id": "RCH_1", "cpm_result": "00", "cpm_payid": "OP-7", "cpm_amount": "10000"}

        notification = adapter.parse_notification(payload)

        assert notification.reference == "RCH_1"
        assert notification.outcome is GatewayOutcome.SUCCESS
        assert notification.external_transaction_id == "OP-7"
        assert notification.amount == Decimal("10000")

    def test_failure_notification_keeps_reason(self):
        adapter = make_adapter(answer({}))
        payload = {"cpm_trans_id": "RCH_1", "cpm_result": "627", "cpm_error_message": "Insufficient funds"}

        notification = adapter.parse_notification(payload)

        assert notification.outcome is GatewayOutcome.FAILED
        assert notification.reason == "Insufficient funds"

    def test_missing_fields(self):
        adapter = make_adapter(answer({}))

        with pytest.raises(ValidationError):
            adapter.parse_notification({"cpm_result": "00"})

    def test_signature_uses_shared_secret(self):
        adapter = make_adapter(answer({}))
        payload = {"cpm_trans_id": "RCH_1", "cpm_result": "00"}

        assert adapter.verify_webhook_signature(payload, compute_signature("hook-secret", payload))
        assert not adapter.verify_webhook_signature(payload, compute_signature("other", payload))


class TestLedgerWithHttpGateway:
    """The ledger's reaction to gateway failures during initiation."""

    def test_timeout_leaves_payment_pending(self, store, clock, funded_wallet, reservation):
        funded_wallet()
        ledger = SettlementLedger(store, make_adapter(raising(httpx.ReadTimeout)), clock=clock)

        result = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.WAVE)

        assert result.outcome_known is False
        assert result.gateway_handle is None
        payment = ledger.get_payment(result.payment.reference)
        assert payment.status is PaymentStatus.PENDING
        assert payment.errors[0].code == "GATEWAY_UNAVAILABLE"
        assert payment.errors[0].context["outcome"] == "unknown"

    def test_rejection_fails_payment(self, store, clock, funded_wallet, reservation):
        funded_wallet()
        adapter = make_adapter(answer({"code": "608", "message": "Invalid amount"}))
        ledger = SettlementLedger(store, adapter, clock=clock)

        result = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.WAVE)

        assert result.outcome_known is True
        payment = ledger.get_payment(result.payment.reference)
        assert payment.status is PaymentStatus.FAILED
        assert payment.failure_reason == "Invalid amount"
