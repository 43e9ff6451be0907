"""Best-effort notifications to riders and drivers.

Delivery channels (push, SMS, email) live outside the ledger. The ledger
only knows the NotificationDispatcher protocol, and reaches it through a
NotificationRelay subscribed to the event emitter. A failing dispatcher
never affects financial state; its errors end up in the payment's error
log.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from settlement_ledger.events.emitter import EventEmitter
from settlement_ledger.events.types import (
    DomainEvent,
    PaymentCompleted,
    PaymentFailed,
    RechargeCompleted,
    RechargeFailed,
)

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    """Fire-and-forget notification channel."""

    def notify_payment_success(self, party_id: str, details: dict[str, Any]) -> None:
        ...

    def notify_payment_failed(self, party_id: str, details: dict[str, Any]) -> None:
        ...


class LoggingNotificationDispatcher:
    """Dispatcher that only writes to the log. Used when no channel is configured."""

    def notify_payment_success(self, party_id: str, details: dict[str, Any]) -> None:
        logger.info("Payment success for %s: %s", party_id, details)

    def notify_payment_failed(self, party_id: str, details: dict[str, Any]) -> None:
        logger.info("Payment failure for %s: %s", party_id, details)


class NotificationRelay:
    """Turns completion and failure events into dispatcher calls."""

    def __init__(self, dispatcher: NotificationDispatcher):
        self.dispatcher = dispatcher

    def register(self, emitter: EventEmitter) -> None:
        emitter.on([PaymentCompleted, RechargeCompleted], self.on_success)
        emitter.on([PaymentFailed, RechargeFailed], self.on_failure)

    def on_success(self, event: DomainEvent) -> None:
        if isinstance(event, PaymentCompleted):
            details = {
                "reference": event.reference,
                "amount": str(event.gross_amount),
                "method": event.method,
            }
            self.dispatcher.notify_payment_success(event.payer_id, details)
            self.dispatcher.notify_payment_success(
                event.beneficiary_id, {**details, "net_amount": str(event.net_amount)}
            )
        elif isinstance(event, RechargeCompleted):
            self.dispatcher.notify_payment_success(
                event.driver_id,
                {
                    "reference": event.reference,
                    "amount": str(event.amount),
                    "credited": str(event.credited),
                    "balance": str(event.balance_after),
                },
            )

    def on_failure(self, event: DomainEvent) -> None:
        if isinstance(event, PaymentFailed):
            self.dispatcher.notify_payment_failed(
                event.payer_id, {"reference": event.reference, "reason": event.reason}
            )
        elif isinstance(event, RechargeFailed):
            self.dispatcher.notify_payment_failed(
                event.driver_id, {"reference": event.reference, "reason": event.reason}
            )
