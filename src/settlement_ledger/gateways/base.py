"""Base protocol and types for mobile-money gateway adapters.

All gateway adapters must implement the GatewayAdapter protocol.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Protocol

from settlement_ledger.models.common import Customer, GatewayOutcome, PaymentMethod


@dataclass(frozen=True)
class GatewayHandle:
    """Result of initiating a payment with the gateway."""

    handle: str
    redirect_url: str | None = None
    instructions: str = ""


@dataclass(frozen=True)
class GatewayStatus:
    """Result of querying the gateway for a payment's status."""

    status: GatewayOutcome
    external_transaction_id: str | None = None
    message: str = ""


@dataclass(frozen=True)
class GatewayNotification:
    """A verified webhook, normalized."""

    reference: str
    outcome: GatewayOutcome
    external_transaction_id: str | None = None
    amount: Decimal | None = None
    reason: str = ""
    raw: dict[str, Any] = field(default_factory=dict)


def canonical_payload(payload: dict[str, Any]) -> bytes:
    """Stable byte encoding of a webhook payload for signing."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str).encode("utf-8")


def compute_signature(secret: str, payload: dict[str, Any]) -> str:
    """HMAC-SHA256 of the canonical payload, hex encoded."""
    return hmac.new(secret.encode("utf-8"), canonical_payload(payload), hashlib.sha256).hexdigest()


def signature_matches(secret: str, payload: dict[str, Any], signature: str | None) -> bool:
    if not secret or not signature:
        return False
    return hmac.compare_digest(compute_signature(secret, payload), signature)


class GatewayAdapter(Protocol):
    """Protocol for mobile-money gateway adapters.

    Adapters raise GatewayUnavailable when the outcome of a call is
    unknown (timeouts, server errors) and GatewayRejected when the
    gateway definitively refused the request.
    """

    gateway_name: str

    def initiate(
        self,
        amount: Decimal,
        method: PaymentMethod,
        customer: Customer | None,
        idempotency_key: str,
        description: str = "",
    ) -> GatewayHandle:
        """Start a payment for ``amount`` under our reference ``idempotency_key``.

        Calling twice with the same key must not charge twice.
        """
        ...

    def query_status(self, reference: str) -> GatewayStatus:
        """Ask the gateway what happened to a payment."""
        ...

    def verify_webhook_signature(self, payload: dict[str, Any], signature: str | None) -> bool:
        """Check that a webhook was sent by the gateway."""
        ...

    def parse_notification(self, payload: dict[str, Any]) -> GatewayNotification:
        """Normalize a verified webhook payload. Raises ValidationError if malformed."""
        ...
