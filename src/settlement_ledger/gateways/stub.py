"""Stub gateway for local development and testing.

Replace with HttpGatewayAdapter (or another real adapter) in production.
"""

from __future__ import annotations

import threading
from decimal import Decimal
from typing import Any

from settlement_ledger.errors import GatewayError, ValidationError
from settlement_ledger.gateways.base import (
    GatewayHandle,
    GatewayNotification,
    GatewayStatus,
    compute_signature,
    signature_matches,
)
from settlement_ledger.models.common import Customer, GatewayOutcome, PaymentMethod


class StubGateway:
    """In-memory gateway.

    Payments stay PENDING until a simulate_* helper settles them, unless
    ``auto_succeed`` is set.
    """

    gateway_name = "stub"

    def __init__(self, secret: str = "stub-secret", auto_succeed: bool = False):
        self.secret = secret
        self.auto_succeed = auto_succeed
        # In-memory tracking for stub
        self._transactions: dict[str, dict[str, Any]] = {}
        self._initiate_failures: list[GatewayError] = []
        self._status_failures: list[GatewayError] = []
        self._mutex = threading.Lock()
        self.initiate_calls = 0

    def initiate(
        self,
        amount: Decimal,
        method: PaymentMethod,
        customer: Customer | None,
        idempotency_key: str,
        description: str = "",
    ) -> GatewayHandle:
        """Register the payment (stub implementation)."""
        with self._mutex:
            self.initiate_calls += 1
            if self._initiate_failures:
                raise self._initiate_failures.pop(0)
            record = self._transactions.get(idempotency_key)
            if record is None:
                record = {
                    "amount": amount,
                    "method": method,
                    "phone_number": customer.phone_number if customer else None,
                    "status": GatewayOutcome.SUCCESS if self.auto_succeed else GatewayOutcome.PENDING,
                    "external_transaction_id": (
                        f"STUBTX-{idempotency_key}" if self.auto_succeed else None
                    ),
                }
                self._transactions[idempotency_key] = record

        return GatewayHandle(
            handle=f"STUB-{idempotency_key}",
            redirect_url=f"https://stub.gateway.local/pay/{idempotency_key}",
            instructions=f"Approve the {method.value} prompt for {amount}",
        )

    def query_status(self, reference: str) -> GatewayStatus:
        """Get status of an initiated payment."""
        with self._mutex:
            if self._status_failures:
                raise self._status_failures.pop(0)
            record = self._transactions.get(reference)
        if record is None:
            return GatewayStatus(status=GatewayOutcome.PENDING, message=f"{reference} not found")
        return GatewayStatus(
            status=record["status"],
            external_transaction_id=record["external_transaction_id"],
            message="stub status",
        )

    def verify_webhook_signature(self, payload: dict[str, Any], signature: str | None) -> bool:
        return signature_matches(self.secret, payload, signature)

    def parse_notification(self, payload: dict[str, Any]) -> GatewayNotification:
        try:
            reference = payload["reference"]
            outcome = GatewayOutcome(payload["status"])
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"Malformed notification: {exc}") from exc
        amount = payload.get("amount")
        return GatewayNotification(
            reference=reference,
            outcome=outcome,
            external_transaction_id=payload.get("transaction_id"),
            amount=Decimal(str(amount)) if amount is not None else None,
            reason=payload.get("reason", ""),
            raw=dict(payload),
        )

    # ------------------------------------------------------------------
    # Simulation helpers (for testing)
    # ------------------------------------------------------------------

    def simulate_success(self, reference: str, external_transaction_id: str | None = None) -> None:
        with self._mutex:
            record = self._transactions.setdefault(reference, {})
            record["status"] = GatewayOutcome.SUCCESS
            record["external_transaction_id"] = external_transaction_id or f"STUBTX-{reference}"

    def simulate_failure(self, reference: str) -> None:
        with self._mutex:
            record = self._transactions.setdefault(reference, {})
            record["status"] = GatewayOutcome.FAILED
            record["external_transaction_id"] = None

    def fail_next_initiate(self, error: GatewayError) -> None:
        with self._mutex:
            self._initiate_failures.append(error)

    def fail_next_status(self, error: GatewayError) -> None:
        with self._mutex:
            self._status_failures.append(error)

    def build_notification(
        self,
        reference: str,
        outcome: GatewayOutcome,
        external_transaction_id: str | None = None,
        **extra: Any,
    ) -> tuple[dict[str, Any], str]:
        """Build a signed webhook payload as the gateway would send it."""
        payload: dict[str, Any] = {"reference": reference, "status": outcome.value, **extra}
        if external_transaction_id:
            payload["transaction_id"] = external_transaction_id
        return payload, compute_signature(self.secret, payload)
