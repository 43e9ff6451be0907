"""HTTP adapter for a CinetPay-style mobile-money checkout API.

Endpoints (relative to ``base_url``):
    POST /payment        start a checkout, answers code "201" with a payment URL
    POST /payment/check  query a transaction, answers code "00" with its status

Webhooks carry ``cpm_trans_id`` (our reference), ``cpm_result`` and
``cpm_payid``, and are signed with HMAC-SHA256 over the canonical JSON
body using the shared secret.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import httpx

from settlement_ledger.errors import GatewayRejected, GatewayUnavailable, ValidationError
from settlement_ledger.gateways.base import (
    GatewayHandle,
    GatewayNotification,
    GatewayStatus,
    signature_matches,
)
from settlement_ledger.models.common import Customer, GatewayOutcome, PaymentMethod

logger = logging.getLogger(__name__)

SUCCESS_RESULTS = frozenset({"00", "ACCEPTED"})
FAILED_STATUSES = frozenset({"REFUSED", "CANCELLED", "FAILED"})


class HttpGatewayAdapter:
    """Gateway adapter over httpx with a bounded timeout.

    Timeouts, read errors and 5xx answers raise GatewayUnavailable: the
    request may or may not have been processed. Connection failures and
    explicit refusals raise GatewayRejected.
    """

    gateway_name = "cinetpay"

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        site_id: str,
        secret: str,
        notify_url: str,
        currency: str = "XOF",
        timeout_seconds: float = 15.0,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.site_id = site_id
        self.secret = secret
        self.notify_url = notify_url
        self.currency = currency
        self._client = client or httpx.Client(
            base_url=base_url, timeout=httpx.Timeout(timeout_seconds)
        )

    def close(self) -> None:
        self._client.close()

    def initiate(
        self,
        amount: Decimal,
        method: PaymentMethod,
        customer: Customer | None,
        idempotency_key: str,
        description: str = "",
    ) -> GatewayHandle:
        payload: dict[str, Any] = {
            "apikey": self.api_key,
            "site_id": self.site_id,
            "transaction_id": idempotency_key,
            "amount": int(amount),
            "currency": self.currency,
            "description": description or f"Payment {idempotency_key}",
            "notify_url": self.notify_url,
            "channels": "MOBILE_MONEY",
            "metadata": method.value,
        }
        if customer is not None:
            payload["customer_phone_number"] = customer.phone_number
            payload["customer_name"] = customer.name
            if customer.email:
                payload["customer_email"] = customer.email

        logger.info("Initiating gateway payment %s for %s via %s", idempotency_key, amount, method.value)
        data = self._post("/payment", payload)

        if data.get("code") != "201":
            raise GatewayRejected(
                data.get("message") or "Gateway refused the payment",
                gateway_code=data.get("code"),
                reference=idempotency_key,
            )
        body = data.get("data") or {}
        return GatewayHandle(
            handle=body.get("payment_token", idempotency_key),
            redirect_url=body.get("payment_url"),
            instructions=data.get("description", ""),
        )

    def query_status(self, reference: str) -> GatewayStatus:
        data = self._post(
            "/payment/check",
            {"apikey": self.api_key, "site_id": self.site_id, "transaction_id": reference},
        )
        code = data.get("code")
        body = data.get("data") or {}
        status = str(body.get("status", "")).upper()

        if code == "00" and status in SUCCESS_RESULTS:
            return GatewayStatus(
                status=GatewayOutcome.SUCCESS,
                external_transaction_id=body.get("operator_id"),
                message=data.get("message", ""),
            )
        if status in FAILED_STATUSES:
            return GatewayStatus(status=GatewayOutcome.FAILED, message=data.get("message", ""))
        return GatewayStatus(status=GatewayOutcome.PENDING, message=data.get("message", ""))

    def verify_webhook_signature(self, payload: dict[str, Any], signature: str | None) -> bool:
        return signature_matches(self.secret, payload, signature)

    def parse_notification(self, payload: dict[str, Any]) -> GatewayNotification:
        reference = payload.get("cpm_trans_id")
        result = payload.get("cpm_result")
        if not reference or result is None:
            raise ValidationError("Notification is missing cpm_trans_id or cpm_result")
        amount = payload.get("cpm_amount")
        outcome = GatewayOutcome.SUCCESS if str(result) in SUCCESS_RESULTS else GatewayOutcome.FAILED
        return GatewayNotification(
            reference=reference,
            outcome=outcome,
            external_transaction_id=payload.get("cpm_payid"),
            amount=Decimal(str(amount)) if amount is not None else None,
            reason=payload.get("cpm_error_message", "") if outcome is GatewayOutcome.FAILED else "",
            raw=dict(payload),
        )

    def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post(path, json=payload)
        except httpx.TimeoutException as exc:
            raise GatewayUnavailable(f"Gateway timed out on {path}", path=path) from exc
        except httpx.ConnectError as exc:
            raise GatewayRejected(f"Gateway unreachable on {path}", path=path) from exc
        except httpx.TransportError as exc:
            raise GatewayUnavailable(f"Gateway transport error on {path}: {exc}", path=path) from exc

        if response.status_code >= 500:
            raise GatewayUnavailable(
                f"Gateway answered {response.status_code} on {path}",
                path=path,
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            if response.is_success:
                raise GatewayUnavailable(f"Gateway sent a non-JSON answer on {path}", path=path) from exc
            raise GatewayRejected(
                f"Gateway answered {response.status_code} on {path}",
                path=path,
                status_code=response.status_code,
            ) from exc
        return data
