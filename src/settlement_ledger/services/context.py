"""Shared dependencies and helpers for ledger services."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from settlement_ledger.errors import GatewayError, GatewayRejected
from settlement_ledger.events.emitter import EventEmitter
from settlement_ledger.events.types import DomainEvent, EventMetadata
from settlement_ledger.gateways.base import GatewayAdapter, GatewayHandle
from settlement_ledger.models.common import Actor, Clock, Customer, PaymentStatus, utc_now
from settlement_ledger.models.payment import Payment
from settlement_ledger.rules import LedgerRules
from settlement_ledger.services.locks import AggregateLocks, ThreadLocks, payment_key
from settlement_ledger.store.base import LedgerStore

logger = logging.getLogger(__name__)


class OutcomeDisposition(str, Enum):
    """What happened to a reported outcome."""

    APPLIED = "applied"
    DUPLICATE = "duplicate"  # payment was already final; nothing changed
    IGNORED = "ignored"  # outcome still pending at the gateway


@dataclass(frozen=True)
class OutcomeResult:
    """Result of applying a gateway or admin outcome to a payment.

    Always check ``disposition``: a duplicate report returns the stored
    payment untouched.
    """

    payment: Payment
    disposition: OutcomeDisposition
    previous_status: PaymentStatus

    @property
    def duplicate(self) -> bool:
        return self.disposition is OutcomeDisposition.DUPLICATE


@dataclass(frozen=True)
class GatewayAttempt:
    """Outcome of calling the gateway to start a payment."""

    handle: GatewayHandle | None = None
    error: GatewayError | None = None

    @property
    def rejected(self) -> bool:
        return isinstance(self.error, GatewayRejected)

    @property
    def outcome_known(self) -> bool:
        return self.error is None or self.rejected


@dataclass
class LedgerContext:
    """Collaborators every ledger service needs."""

    store: LedgerStore
    gateway: GatewayAdapter
    rules: LedgerRules = field(default_factory=LedgerRules)
    locks: AggregateLocks = field(default_factory=ThreadLocks)
    emitter: EventEmitter = field(default_factory=EventEmitter)
    clock: Clock = utc_now

    def now(self) -> datetime:
        return self.clock()

    def metadata(self, correlation_id: str, actor: Actor | None, now: datetime) -> EventMetadata:
        return EventMetadata.create(correlation_id=correlation_id, actor=actor, timestamp=now)

    def call_gateway(
        self, payment: Payment, customer: Customer | None, description: str
    ) -> GatewayAttempt:
        """Start ``payment`` at the gateway. Must be called without holding locks."""
        try:
            handle = self.gateway.initiate(
                amount=payment.gross_amount,
                method=payment.method,
                customer=customer,
                idempotency_key=payment.reference,
                description=description,
            )
        except GatewayError as exc:
            logger.warning(
                "Gateway initiation failed for %s (%s): %s", payment.reference, exc.code, exc
            )
            return GatewayAttempt(error=exc)
        return GatewayAttempt(handle=handle)

    def publish(self, payment_id: str | None, *events: DomainEvent) -> list[Exception]:
        """Emit events and append handler failures to the payment's error log."""
        errors: list[Exception] = []
        for event in events:
            errors.extend(self.emitter.emit(event))
        if errors and payment_id is not None:
            now = self.now()
            with self.locks.hold(payment_key(payment_id)):
                payment = self.store.get_payment(payment_id)
                for exc in errors:
                    payment.record_error(
                        "NOTIFICATION_FAILED", str(exc), now, handler_error=type(exc).__name__
                    )
                self.store.commit(payments=[payment])
        return errors
