"""Reconciliation - settle PENDING digital payments from the gateway's records.

Webhooks can be lost and gateway calls can time out. This job asks the
gateway for the status of every PENDING digital payment and applies the
answer through the same idempotent paths the webhook uses. Recharges the
gateway still reports as pending after ``pending_expiry`` are failed so
they stop counting toward the driver's daily limit.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from settlement_ledger.errors import GatewayError, LedgerError
from settlement_ledger.models.common import (
    Actor,
    GatewayOutcome,
    PaymentKind,
    PaymentStatus,
)
from settlement_ledger.models.payment import Payment
from settlement_ledger.services.context import LedgerContext, OutcomeDisposition
from settlement_ledger.services.payment_ledger import PaymentLedger
from settlement_ledger.services.recharge import RechargeWorkflow

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """Result of a reconciliation run."""

    started_at: datetime
    payments_checked: int = 0
    payments_completed: int = 0
    payments_failed: int = 0
    recharges_expired: int = 0
    still_pending: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Whether reconciliation completed without errors."""
        return len(self.errors) == 0


class ReconciliationService:
    """Polls the gateway for PENDING digital payments."""

    def __init__(
        self,
        context: LedgerContext,
        payments: PaymentLedger,
        recharges: RechargeWorkflow,
    ):
        self.ctx = context
        self.payments = payments
        self.recharges = recharges

    def run(self, older_than: timedelta = timedelta(0)) -> ReconciliationResult:
        """Reconcile every PENDING digital payment created at least ``older_than`` ago.

        Args:
            older_than: Skip payments younger than this, to leave room for webhooks

        Returns:
            ReconciliationResult with counts and per-payment errors
        """
        now = self.ctx.now()
        result = ReconciliationResult(started_at=now)
        pending = [
            p
            for p in self.ctx.store.list_payments(statuses=[PaymentStatus.PENDING])
            if p.method.is_digital and now - p.created_at >= older_than
        ]

        for payment in pending:
            result.payments_checked += 1
            try:
                self._reconcile_payment(payment, now, result)
            except GatewayError as exc:
                logger.warning(
                    "Gateway unavailable while reconciling %s: %s", payment.reference, exc
                )
                result.errors.append(
                    {"code": exc.code, "reference": payment.reference, "message": str(exc)}
                )
            except LedgerError as exc:
                logger.error("Could not reconcile %s: %s", payment.reference, exc)
                result.errors.append(
                    {"code": exc.code, "reference": payment.reference, "message": str(exc)}
                )

        logger.info(
            "Reconciliation checked %d payments: %d completed, %d failed, %d expired, %d pending",
            result.payments_checked,
            result.payments_completed,
            result.payments_failed,
            result.recharges_expired,
            result.still_pending,
        )
        return result

    def _reconcile_payment(
        self, payment: Payment, now: datetime, result: ReconciliationResult
    ) -> None:
        status = self.ctx.gateway.query_status(payment.reference)
        actor = Actor.system("reconciliation")

        if status.status is GatewayOutcome.PENDING:
            expired = (
                payment.kind is PaymentKind.RECHARGE
                and now - payment.created_at >= self.ctx.rules.recharge.pending_expiry
            )
            if not expired:
                result.still_pending += 1
                return
            outcome = self.recharges.settle_recharge(
                payment.reference,
                GatewayOutcome.FAILED,
                actor,
                reason="Expired without gateway confirmation",
            )
            if outcome.disposition is OutcomeDisposition.APPLIED:
                result.recharges_expired += 1
            return

        if payment.kind is PaymentKind.RECHARGE:
            outcome = self.recharges.settle_recharge(
                payment.reference,
                status.status,
                actor,
                external_transaction_id=status.external_transaction_id,
                reason=status.message,
            )
        else:
            outcome = self.payments.apply_gateway_outcome(
                payment.reference,
                status.status,
                external_transaction_id=status.external_transaction_id,
                reason=status.message,
                actor=actor,
            )

        if outcome.disposition is not OutcomeDisposition.APPLIED:
            return
        if outcome.payment.status is PaymentStatus.COMPLETED:
            result.payments_completed += 1
        else:
            result.payments_failed += 1
