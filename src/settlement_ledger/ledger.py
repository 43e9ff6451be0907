"""Settlement Ledger facade - single integration path for the ride-hailing backend.

Usage:
    ledger = SettlementLedger(store=InMemoryLedgerStore(), gateway=StubGateway())

    # Every driver needs a wallet before they can be paid
    ledger.open_wallet("drv-1")

    # Top up the wallet (activates cash acceptance once confirmed)
    result = ledger.initiate_recharge("drv-1", 10000, PaymentMethod.WAVE)

    # Gateway calls back
    ledger.handle_gateway_webhook(payload, signature)

    # Rider pays a trip in cash, driver confirms
    trip = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.CASH)
    ledger.confirm_cash_payment(trip.payment.reference, "drv-1")

The facade:
- Wires services together with one shared store, lock registry and clock
- Verifies webhook signatures before any outcome is applied
- Triggers auto-recharge after every committed balance drop
- Resolves commission inputs for rider-initiated trips from trusted trip facts
- Relays completion and failure events to the notification dispatcher
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from settlement_ledger.config import Settings
from settlement_ledger.database import init_db
from settlement_ledger.errors import InvalidSignature, ValidationError
from settlement_ledger.events.emitter import EventEmitter
from settlement_ledger.gateways.base import GatewayAdapter
from settlement_ledger.gateways.http import HttpGatewayAdapter
from settlement_ledger.gateways.stub import StubGateway
from settlement_ledger.models.common import (
    Actor,
    Clock,
    Customer,
    GatewayOutcome,
    PaymentKind,
    PaymentMethod,
    Reservation,
    utc_now,
)
from settlement_ledger.models.payment import Payment
from settlement_ledger.models.wallet import AutoRechargeSettings, WalletAccount, WithdrawalEntry
from settlement_ledger.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationRelay,
)
from settlement_ledger.rules import LedgerRules
from settlement_ledger.services.commission import CommissionEngine
from settlement_ledger.services.context import (
    LedgerContext,
    OutcomeDisposition,
    OutcomeResult,
)
from settlement_ledger.services.eligibility import EligibilityDecision, EligibilityValidator
from settlement_ledger.services.limits import (
    AttemptStore,
    DailyLimits,
    DailyUsage,
    VelocityGuard,
)
from settlement_ledger.services.locks import AggregateLocks, ThreadLocks
from settlement_ledger.services.payment_ledger import (
    CommissionAction,
    PaymentLedger,
    TripPaymentResult,
)
from settlement_ledger.services.recharge import RechargeResult, RechargeWorkflow
from settlement_ledger.services.reconciliation import ReconciliationResult, ReconciliationService
from settlement_ledger.services.statistics import CommissionSummary, commission_summary
from settlement_ledger.services.wallet import WalletAudit, WalletService
from settlement_ledger.store.base import LedgerStore
from settlement_ledger.store.sql import SqlLedgerStore
from settlement_ledger.trip_facts import InMemoryTripFacts, TripFactsProvider

logger = logging.getLogger(__name__)


class SettlementLedger:
    """Payments, wallets and recharges behind one object."""

    def __init__(
        self,
        store: LedgerStore,
        gateway: GatewayAdapter,
        rules: LedgerRules | None = None,
        *,
        locks: AggregateLocks | None = None,
        emitter: EventEmitter | None = None,
        dispatcher: NotificationDispatcher | None = None,
        attempt_store: AttemptStore | None = None,
        trip_facts: TripFactsProvider | None = None,
        clock: Clock = utc_now,
    ):
        rules = rules or LedgerRules()
        self.context = LedgerContext(
            store=store,
            gateway=gateway,
            rules=rules,
            locks=locks or ThreadLocks(),
            emitter=emitter or EventEmitter(),
            clock=clock,
        )
        self.commission = CommissionEngine(rules.commission)
        self.eligibility = EligibilityValidator()
        velocity = VelocityGuard(rules.velocity, attempt_store)

        self.recharges = RechargeWorkflow(
            self.context, self.commission, DailyLimits(rules.recharge), velocity
        )
        self.payments = PaymentLedger(
            self.context,
            self.commission,
            self.eligibility,
            velocity,
            on_balance_drop=self.recharges.check_auto_recharge,
        )
        self.wallets = WalletService(self.context, on_balance_drop=self.recharges.check_auto_recharge)
        self.reconciliation = ReconciliationService(self.context, self.payments, self.recharges)

        self.trip_facts = trip_facts or InMemoryTripFacts()
        self.relay = NotificationRelay(dispatcher or LoggingNotificationDispatcher())
        self.relay.register(self.context.emitter)

    @classmethod
    def from_settings(cls, settings: Settings, rules: LedgerRules | None = None) -> SettlementLedger:
        """Build a ledger backed by the configured database and gateway.

        Falls back to the stub gateway when no gateway credentials are set.
        """
        _, session_factory = init_db(settings.database_url)
        if settings.gateway_configured:
            gateway: GatewayAdapter = HttpGatewayAdapter(
                base_url=settings.gateway_base_url,
                api_key=settings.gateway_api_key,
                site_id=settings.gateway_site_id,
                secret=settings.gateway_secret,
                notify_url=settings.notify_url,
                currency=settings.currency,
                timeout_seconds=settings.gateway_timeout_seconds,
            )
        else:
            logger.warning("Gateway credentials missing, using the stub gateway")
            gateway = StubGateway()
        rules = rules or LedgerRules(currency=settings.currency)
        return cls(SqlLedgerStore(session_factory), gateway, rules)

    @property
    def store(self) -> LedgerStore:
        return self.context.store

    @property
    def gateway(self) -> GatewayAdapter:
        return self.context.gateway

    @property
    def rules(self) -> LedgerRules:
        return self.context.rules

    @property
    def emitter(self) -> EventEmitter:
        return self.context.emitter

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_payment(self, reference: str) -> Payment:
        return self.store.get_payment_by_reference(reference)

    def get_wallet(self, driver_id: str) -> WalletAccount:
        return self.store.get_wallet(driver_id)

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    def open_wallet(self, driver_id: str) -> WalletAccount:
        return self.wallets.open_wallet(driver_id)

    def withdraw(
        self, driver_id: str, amount: Decimal | int | str, actor: Actor, note: str = ""
    ) -> WithdrawalEntry:
        return self.wallets.withdraw(driver_id, amount, actor, note)

    def verify_wallet(self, driver_id: str) -> WalletAudit:
        return self.wallets.verify_wallet(driver_id)

    def verify_all_wallets(self) -> list[WalletAudit]:
        return self.wallets.verify_all()

    def can_accept_cash(
        self, driver_id: str, commission: Decimal | None = None
    ) -> EligibilityDecision:
        return self.eligibility.can_accept_cash(self.get_wallet(driver_id), commission)

    # ------------------------------------------------------------------
    # Trip payments
    # ------------------------------------------------------------------

    def initiate_trip_payment(
        self,
        reservation: Reservation,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        customer: Customer | None = None,
    ) -> TripPaymentResult:
        return self.payments.initiate_trip_payment(reservation, amount, method, customer)

    def trusted_reservation(self, reservation_id: str, rider_id: str, driver_id: str) -> Reservation:
        """Reservation carrying the facts the trip facts provider vouches for."""
        facts = self.trip_facts.trip_facts(reservation_id, driver_id)
        return facts.reservation(reservation_id, rider_id, driver_id)

    def confirm_cash_payment(self, reference: str, confirming_party_id: str) -> Payment:
        return self.payments.confirm_cash_payment(reference, confirming_party_id)

    def apply_gateway_outcome(
        self,
        reference: str,
        outcome: GatewayOutcome | str,
        external_transaction_id: str | None = None,
        reason: str = "",
    ) -> OutcomeResult:
        return self.payments.apply_gateway_outcome(
            reference, outcome, external_transaction_id, reason
        )

    def refund(self, payment_id: str, actor: Actor, reason: str) -> Payment:
        return self.payments.refund(payment_id, actor, reason)

    def resolve_commission(
        self, reference: str, action: CommissionAction | str, actor: Actor, reason: str
    ) -> Payment:
        return self.payments.resolve_commission(reference, action, actor, reason)

    # ------------------------------------------------------------------
    # Recharges
    # ------------------------------------------------------------------

    def initiate_recharge(
        self,
        driver_id: str,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        customer: Customer | None = None,
        actor: Actor | None = None,
    ) -> RechargeResult:
        return self.recharges.initiate_recharge(driver_id, amount, method, customer, actor)

    def confirm_recharge(
        self, reference: str, outcome: GatewayOutcome | str, actor: Actor
    ) -> OutcomeResult:
        """Manual (admin) confirmation, checked against the gateway."""
        return self.recharges.confirm_recharge(reference, outcome, actor)

    def cancel_recharge(self, reference: str, actor: Actor) -> Payment:
        return self.recharges.cancel_recharge(reference, actor)

    def configure_auto_recharge(
        self,
        driver_id: str,
        threshold: Decimal | int | str,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        actor: Actor,
        phone_number: str | None = None,
    ) -> AutoRechargeSettings:
        return self.recharges.configure_auto_recharge(
            driver_id, threshold, amount, method, actor, phone_number
        )

    def disable_auto_recharge(self, driver_id: str, actor: Actor) -> AutoRechargeSettings:
        return self.recharges.disable_auto_recharge(driver_id, actor)

    def daily_usage(self, driver_id: str) -> DailyUsage:
        return self.recharges.daily_usage(driver_id)

    # ------------------------------------------------------------------
    # Gateway callbacks and jobs
    # ------------------------------------------------------------------

    def handle_gateway_webhook(
        self, payload: dict[str, Any], signature: str | None
    ) -> OutcomeResult:
        """Verify and apply a gateway notification.

        Raises:
            InvalidSignature: the signature does not match the payload
            PaymentNotFound: the reference is unknown
            ValidationError: malformed payload or amount mismatch
        """
        if not self.gateway.verify_webhook_signature(payload, signature):
            logger.warning("Rejected webhook with invalid signature")
            raise InvalidSignature("Webhook signature verification failed")

        notification = self.gateway.parse_notification(payload)
        payment = self.get_payment(notification.reference)
        if notification.amount is not None and notification.amount != payment.gross_amount:
            logger.warning(
                "Webhook amount %s for %s does not match %s",
                notification.amount,
                payment.reference,
                payment.gross_amount,
            )
            raise ValidationError(
                "Notification amount does not match the payment",
                reference=payment.reference,
                expected=str(payment.gross_amount),
                received=str(notification.amount),
            )

        actor = Actor.gateway(getattr(self.gateway, "gateway_name", "gateway"))
        if payment.kind is PaymentKind.TRIP:
            return self.payments.apply_gateway_outcome(
                notification.reference,
                notification.outcome,
                external_transaction_id=notification.external_transaction_id,
                reason=notification.reason,
                actor=actor,
            )
        if notification.outcome is GatewayOutcome.PENDING:
            return OutcomeResult(payment, OutcomeDisposition.IGNORED, payment.status)
        return self.recharges.confirm_recharge(
            notification.reference, notification.outcome, actor, notification=notification
        )

    def reconcile(self, older_than: timedelta = timedelta(0)) -> ReconciliationResult:
        return self.reconciliation.run(older_than)

    def commission_summary(
        self, since: datetime | None = None, until: datetime | None = None
    ) -> CommissionSummary:
        return commission_summary(self.store, since, until)
