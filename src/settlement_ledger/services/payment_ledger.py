"""Payment ledger - trip payments from initiation to completion or refund.

Cash and digital trips follow the same state machine but settle the
commission differently:

- cash: the driver keeps the fare, so the commission is debited from
  the driver's wallet when the cash payment is confirmed
- digital: the gateway collects the fare, so the commission is only
  recorded in the wallet history when the gateway reports success

Every transition happens under the payment lock (plus the wallet lock
when the wallet changes). Completions also hold the reservation lock and
re-check that no other payment settled the trip first. Gateway calls and
event publishing happen after the locks are released.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from settlement_ledger.errors import (
    DuplicatePayment,
    EligibilityDenied,
    InsufficientWalletBalance,
    PermissionDenied,
    ValidationError,
)
from settlement_ledger.events.types import (
    CommissionDeducted,
    CommissionFailed,
    CommissionResolved,
    DomainEvent,
    PaymentCompleted,
    PaymentFailed,
    PaymentInitiated,
    PaymentRefunded,
)
from settlement_ledger.gateways.base import GatewayHandle
from settlement_ledger.models.common import (
    Actor,
    ActorRole,
    CommissionSettlement,
    Customer,
    GatewayOutcome,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
    Reservation,
    generate_reference,
    round_amount,
    to_decimal,
)
from settlement_ledger.models.payment import Payment
from settlement_ledger.models.wallet import WalletAccount
from settlement_ledger.rules import RefundPolicy
from settlement_ledger.services.commission import CommissionEngine
from settlement_ledger.services.context import (
    GatewayAttempt,
    LedgerContext,
    OutcomeDisposition,
    OutcomeResult,
)
from settlement_ledger.services.eligibility import EligibilityDecision, EligibilityValidator
from settlement_ledger.services.limits import VelocityGuard
from settlement_ledger.services.locks import payment_key, reservation_key, wallet_key
from settlement_ledger.services.state_machine import PaymentStateMachine

logger = logging.getLogger(__name__)


class CommissionAction(str, Enum):
    """Admin resolutions for a cash commission the wallet could not cover."""

    RETRY = "retry"  # debit the wallet again
    WAIVE = "waive"  # write the commission off
    MANUAL_SETTLE = "manual_settle"  # collected outside the ledger


@dataclass(frozen=True)
class TripPaymentResult:
    """Result of initiating a trip payment.

    ``outcome_known`` is False when the gateway call timed out: the
    payment stays PENDING until a webhook or reconciliation settles it.
    """

    payment: Payment
    eligibility: EligibilityDecision
    gateway_handle: GatewayHandle | None = None
    outcome_known: bool = True


class PaymentLedger:
    """Trip payment state machine driver."""

    def __init__(
        self,
        context: LedgerContext,
        commission: CommissionEngine,
        eligibility: EligibilityValidator,
        velocity: VelocityGuard,
        on_balance_drop: Callable[[str], object] | None = None,
    ):
        self.ctx = context
        self.commission = commission
        self.eligibility = eligibility
        self.velocity = velocity
        self.on_balance_drop = on_balance_drop

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    def initiate_trip_payment(
        self,
        reservation: Reservation,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        customer: Customer | None = None,
    ) -> TripPaymentResult:
        """Create a PENDING payment for a trip.

        Args:
            reservation: Trip being paid, with the driver facts commission depends on
            amount: Fare charged to the rider
            method: Cash or a mobile-money method
            customer: Payer phone details forwarded to the gateway

        Returns:
            TripPaymentResult with the stored payment and gateway handle

        Raises:
            ValidationError: amount out of bounds or unknown method
            VelocityLimitExceeded: rider initiated too many payments recently
            EligibilityDenied: cash requested but the driver's wallet does not allow it
            DuplicatePayment: the reservation is already paid, or cash for it awaits confirmation
        """
        amount = to_decimal(amount)
        method = self._parse_method(method)
        rules = self.ctx.rules
        if not rules.trip.min_amount <= amount <= rules.trip.max_amount:
            raise ValidationError(
                f"Trip amount must be between {rules.trip.min_amount} and {rules.trip.max_amount}",
                amount=str(amount),
            )

        actor = Actor(reservation.rider_id, ActorRole.RIDER)
        now = self.ctx.now()
        self.velocity.check_and_record(reservation.rider_id, now)

        quote = self.commission.compute_dynamic_commission(
            amount, reservation.distance_km, reservation.driver_rating
        )
        bonus = self.commission.apply_performance_bonus(
            reservation.driver_rating, reservation.driver_trips_this_month
        )
        fee = round_amount(amount * rules.trip.fee_rate)

        wallet = self.ctx.store.get_wallet(reservation.driver_id)
        if method is PaymentMethod.CASH:
            decision = self.eligibility.can_accept_cash(wallet, commission=quote.amount)
        else:
            decision = self.eligibility.is_method_authorized(wallet, method)
        if not decision.allowed:
            logger.info(
                "Cash refused for reservation %s: %s (shortfall %s)",
                reservation.reservation_id,
                decision.reason,
                decision.shortfall,
            )
            raise EligibilityDenied(decision)

        with self.ctx.locks.hold(reservation_key(reservation.reservation_id)):
            completed = self.ctx.store.list_payments(
                reservation_id=reservation.reservation_id,
                kind=PaymentKind.TRIP,
                statuses=[PaymentStatus.COMPLETED],
            )
            if completed:
                raise DuplicatePayment(
                    f"Reservation {reservation.reservation_id} is already paid",
                    reservation_id=reservation.reservation_id,
                    reference=completed[0].reference,
                )
            if method is PaymentMethod.CASH:
                awaiting = [
                    p
                    for p in self.ctx.store.list_payments(
                        reservation_id=reservation.reservation_id,
                        kind=PaymentKind.TRIP,
                        statuses=[PaymentStatus.PENDING],
                    )
                    if p.method is PaymentMethod.CASH
                ]
                if awaiting:
                    raise DuplicatePayment(
                        f"Reservation {reservation.reservation_id} has a cash payment "
                        "awaiting confirmation",
                        reservation_id=reservation.reservation_id,
                        reference=awaiting[0].reference,
                    )
            payment = Payment.create(
                reference=generate_reference("PAY", now),
                kind=PaymentKind.TRIP,
                payer_id=reservation.rider_id,
                beneficiary_id=reservation.driver_id,
                method=method,
                gross_amount=amount,
                fee=fee,
                commission=quote,
                bonus=bonus,
                now=now,
                actor=actor,
                currency=rules.currency,
                reservation_id=reservation.reservation_id,
                rule_snapshot={
                    "eligibility": decision.snapshot(),
                    "distance_km": reservation.distance_km,
                    "driver_rating": reservation.driver_rating,
                    "driver_trips_this_month": reservation.driver_trips_this_month,
                },
            )
            self.ctx.store.commit(payments=[payment])

        logger.info(
            "Trip payment %s initiated: %s %s via %s, commission %s at %s",
            payment.reference,
            amount,
            rules.currency,
            method.value,
            quote.amount,
            quote.rate,
        )
        self.ctx.publish(
            payment.payment_id,
            PaymentInitiated(
                metadata=self.ctx.metadata(payment.reference, actor, now),
                payment_id=payment.payment_id,
                reference=payment.reference,
                payer_id=payment.payer_id,
                beneficiary_id=payment.beneficiary_id,
                method=method.value,
                gross_amount=amount,
                commission_amount=quote.amount,
            ),
        )

        if method is PaymentMethod.CASH:
            if rules.cash.complete_on_initiation:
                payment = self._settle_cash(payment.payment_id, actor)
            return TripPaymentResult(payment=payment, eligibility=decision)

        attempt = self.ctx.call_gateway(payment, customer, f"Trip {reservation.reservation_id}")
        payment = self._record_gateway_attempt(payment.payment_id, attempt)
        return TripPaymentResult(
            payment=payment,
            eligibility=decision,
            gateway_handle=attempt.handle,
            outcome_known=attempt.outcome_known,
        )

    def _record_gateway_attempt(self, payment_id: str, attempt: GatewayAttempt) -> Payment:
        system = Actor.system()
        events: list[DomainEvent] = []
        now = self.ctx.now()
        with self.ctx.locks.hold(payment_key(payment_id)):
            payment = self.ctx.store.get_payment(payment_id)
            if attempt.handle is not None:
                payment.attach_gateway_handle(
                    attempt.handle.handle, attempt.handle.redirect_url, system, now
                )
            elif attempt.error is not None:
                payment.record_error(
                    attempt.error.code,
                    attempt.error.message,
                    now,
                    outcome="rejected" if attempt.rejected else "unknown",
                )
                if attempt.rejected and payment.is_pending:
                    payment.fail(attempt.error.message, system, now)
                    events.append(self._failed_event(payment, system, now))
            self.ctx.store.commit(payments=[payment])
        self.ctx.publish(payment_id, *events)
        return payment

    # ------------------------------------------------------------------
    # Cash confirmation
    # ------------------------------------------------------------------

    def confirm_cash_payment(self, reference: str, confirming_party_id: str) -> Payment:
        """Confirm that the rider handed cash to the driver.

        The commission is debited from the driver's wallet. If the wallet
        no longer covers it, the failed attempt is recorded, the payment
        stays PENDING and InsufficientWalletBalance is raised.
        """
        payment = self.ctx.store.get_payment_by_reference(reference)
        if payment.kind is not PaymentKind.TRIP or payment.method is not PaymentMethod.CASH:
            raise ValidationError(f"Payment {reference} is not a cash trip payment", reference=reference)
        if confirming_party_id == payment.beneficiary_id:
            actor = Actor(confirming_party_id, ActorRole.DRIVER)
        elif confirming_party_id == payment.payer_id:
            actor = Actor(confirming_party_id, ActorRole.RIDER)
        else:
            raise PermissionDenied(
                f"{confirming_party_id} is not a party to payment {reference}",
                reference=reference,
            )
        return self._settle_cash(payment.payment_id, actor)

    def _settle_cash(self, payment_id: str, actor: Actor) -> Payment:
        events: list[DomainEvent] = []
        shortfall: InsufficientWalletBalance | None = None
        duplicate: DuplicatePayment | None = None
        now = self.ctx.now()

        payment = self.ctx.store.get_payment(payment_id)
        driver_id = payment.beneficiary_id
        with self.ctx.locks.hold(*self._settlement_keys(payment)):
            payment = self.ctx.store.get_payment(payment_id)
            PaymentStateMachine.validate_transition(payment.status, PaymentStatus.COMPLETED)
            paid = self._paid_elsewhere(payment)
            if paid is not None:
                duplicate = self._close_duplicate(payment, paid, actor, now)
                events.append(self._failed_event(payment, actor, now))
                self.ctx.store.commit(payments=[payment])
            else:
                wallet = self.ctx.store.get_wallet(driver_id)
                payment.record(
                    "ELIGIBILITY_RECHECKED",
                    actor,
                    now,
                    **self.eligibility.can_accept_cash(wallet, payment.commission.amount).snapshot(),
                )

                commission = payment.commission.amount
                if wallet.balance < commission:
                    shortfall = InsufficientWalletBalance(wallet.balance, commission)
                    self._record_commission_failure(payment, wallet, actor, now)
                    events.append(
                        CommissionFailed(
                            metadata=self.ctx.metadata(payment.reference, actor, now),
                            reference=payment.reference,
                            driver_id=driver_id,
                            amount=commission,
                            balance=wallet.balance,
                        )
                    )
                else:
                    events.extend(
                        self._complete_trip(
                            payment, wallet, actor, now, settlement=CommissionSettlement.DEDUCTED
                        )
                    )
                self.ctx.store.commit(payments=[payment], wallets=[wallet])

        self.ctx.publish(payment_id, *events)
        if duplicate is not None:
            logger.warning(
                "Cash payment %s closed: reservation %s already paid by %s",
                payment.reference,
                payment.reservation_id,
                duplicate.details["reference"],
            )
            raise duplicate
        if shortfall is not None:
            logger.warning(
                "Cash commission for %s failed: balance %s < %s",
                payment.reference,
                shortfall.balance,
                shortfall.required,
            )
            raise shortfall
        logger.info("Cash payment %s confirmed by %s", payment.reference, actor.label())
        self._notify_balance_drop(driver_id)
        return payment

    def _record_commission_failure(
        self, payment: Payment, wallet: WalletAccount, actor: Actor, now
    ) -> None:
        commission = payment.commission.amount
        wallet.record_failed_commission(payment.reference, commission, now)
        payment.set_commission_settlement(
            CommissionSettlement.FAILED, actor, now, balance=wallet.balance
        )
        payment.record_error(
            InsufficientWalletBalance.code,
            f"Wallet balance {wallet.balance} does not cover commission {commission}",
            now,
            balance=wallet.balance,
            required=commission,
        )

    # ------------------------------------------------------------------
    # Gateway outcomes
    # ------------------------------------------------------------------

    def apply_gateway_outcome(
        self,
        reference: str,
        outcome: GatewayOutcome | str,
        external_transaction_id: str | None = None,
        reason: str = "",
        actor: Actor | None = None,
    ) -> OutcomeResult:
        """Apply a gateway-reported outcome to a digital trip payment.

        Idempotent: once the payment is final, further reports return the
        stored payment with a DUPLICATE disposition and change nothing.
        """
        outcome = GatewayOutcome(outcome)
        actor = actor or Actor.gateway()
        payment = self.ctx.store.get_payment_by_reference(reference)
        if payment.kind is not PaymentKind.TRIP:
            raise ValidationError(
                f"Payment {reference} is a {payment.kind.value}, not a trip", reference=reference
            )
        if payment.method is PaymentMethod.CASH:
            raise ValidationError(f"Cash payment {reference} has no gateway outcome", reference=reference)

        if outcome is GatewayOutcome.PENDING:
            logger.info("Gateway still reports %s as pending", reference)
            return OutcomeResult(payment, OutcomeDisposition.IGNORED, payment.status)

        events: list[DomainEvent] = []
        now = self.ctx.now()
        with self.ctx.locks.hold(*self._settlement_keys(payment)):
            payment = self.ctx.store.get_payment(payment.payment_id)
            previous = payment.status
            if payment.is_final:
                self._log_duplicate(payment, outcome)
                return OutcomeResult(payment, OutcomeDisposition.DUPLICATE, previous)

            paid = self._paid_elsewhere(payment) if outcome is GatewayOutcome.SUCCESS else None
            if paid is not None:
                # Collected twice; the gateway amount is left for an admin refund.
                self._close_duplicate(
                    payment,
                    paid,
                    actor,
                    now,
                    external_transaction_id=external_transaction_id,
                    collected=True,
                )
                events.append(self._failed_event(payment, actor, now))
                self.ctx.store.commit(payments=[payment])
                logger.warning(
                    "Gateway collected %s for reservation %s already paid by %s",
                    reference,
                    payment.reservation_id,
                    paid.reference,
                )
            elif outcome is GatewayOutcome.SUCCESS:
                wallet = self.ctx.store.get_wallet(payment.beneficiary_id)
                events.extend(
                    self._complete_trip(
                        payment,
                        wallet,
                        actor,
                        now,
                        settlement=CommissionSettlement.DEDUCTED,
                        external_transaction_id=external_transaction_id,
                    )
                )
                self.ctx.store.commit(payments=[payment], wallets=[wallet])
            else:
                payment.fail(reason or "Gateway reported failure", actor, now)
                events.append(self._failed_event(payment, actor, now))
                self.ctx.store.commit(payments=[payment])

        logger.info("Payment %s moved %s -> %s", reference, previous.value, payment.status.value)
        self.ctx.publish(payment.payment_id, *events)
        return OutcomeResult(payment, OutcomeDisposition.APPLIED, previous)

    @staticmethod
    def _log_duplicate(payment: Payment, outcome: GatewayOutcome) -> None:
        agrees = (outcome is GatewayOutcome.SUCCESS and payment.status in (
            PaymentStatus.COMPLETED, PaymentStatus.REFUNDED
        )) or (outcome is GatewayOutcome.FAILED and payment.status is PaymentStatus.FAILED)
        if agrees:
            logger.info("Duplicate %s outcome for %s ignored", outcome.value, payment.reference)
        else:
            logger.warning(
                "Conflicting %s outcome for %s ignored; payment is %s",
                outcome.value,
                payment.reference,
                payment.status.value,
            )

    # ------------------------------------------------------------------
    # Refunds and commission resolution (admin)
    # ------------------------------------------------------------------

    def refund(self, payment_id: str, actor: Actor, reason: str) -> Payment:
        """Refund a COMPLETED trip payment.

        Whether a deducted cash commission goes back to the driver's
        wallet depends on the configured RefundPolicy.
        """
        if not actor.is_admin:
            raise PermissionDenied("Only admins can refund payments", actor=actor.label())
        if not reason:
            raise ValidationError("A refund reason is required")

        now = self.ctx.now()
        payment = self.ctx.store.get_payment(payment_id)
        with self.ctx.locks.hold(payment_key(payment_id), wallet_key(payment.beneficiary_id)):
            payment = self.ctx.store.get_payment(payment_id)
            PaymentStateMachine.validate_transition(payment.status, PaymentStatus.REFUNDED)

            reverse = (
                self.ctx.rules.refund_policy is RefundPolicy.REVERSE_COMMISSION
                and payment.method is PaymentMethod.CASH
                and payment.commission_settlement is CommissionSettlement.DEDUCTED
            )
            wallets: list[WalletAccount] = []
            if reverse:
                wallet = self.ctx.store.get_wallet(payment.beneficiary_id)
                wallet.reverse_commission(payment.reference, now)
                payment.set_commission_settlement(
                    CommissionSettlement.REFUNDED, actor, now, balance_after=wallet.balance
                )
                wallets.append(wallet)
            payment.refund(reason, actor, now, commission_reversed=reverse)
            self.ctx.store.commit(payments=[payment], wallets=wallets)

        logger.info("Payment %s refunded by %s: %s", payment.reference, actor.label(), reason)
        self.ctx.publish(
            payment_id,
            PaymentRefunded(
                metadata=self.ctx.metadata(payment.reference, actor, now),
                payment_id=payment_id,
                reference=payment.reference,
                payer_id=payment.payer_id,
                beneficiary_id=payment.beneficiary_id,
                gross_amount=payment.gross_amount,
                reason=reason,
                commission_reversed=reverse,
            ),
        )
        return payment

    def resolve_commission(
        self,
        reference: str,
        action: CommissionAction | str,
        actor: Actor,
        reason: str,
    ) -> Payment:
        """Resolve a cash payment stuck on a failed commission.

        RETRY debits the wallet again and raises InsufficientWalletBalance
        if it still falls short. WAIVE and MANUAL_SETTLE complete the
        payment without touching the balance.
        """
        action = CommissionAction(action)
        if not actor.is_admin:
            raise PermissionDenied("Only admins can resolve commissions", actor=actor.label())
        if not reason:
            raise ValidationError("A resolution reason is required")

        settlement = {
            CommissionAction.RETRY: CommissionSettlement.DEDUCTED,
            CommissionAction.WAIVE: CommissionSettlement.WAIVED,
            CommissionAction.MANUAL_SETTLE: CommissionSettlement.MANUALLY_SETTLED,
        }[action]

        events: list[DomainEvent] = []
        shortfall: InsufficientWalletBalance | None = None
        duplicate: DuplicatePayment | None = None
        now = self.ctx.now()
        payment = self.ctx.store.get_payment_by_reference(reference)
        driver_id = payment.beneficiary_id
        with self.ctx.locks.hold(*self._settlement_keys(payment)):
            payment = self.ctx.store.get_payment(payment.payment_id)
            PaymentStateMachine.validate_transition(payment.status, PaymentStatus.COMPLETED)
            if payment.commission_settlement is not CommissionSettlement.FAILED:
                raise ValidationError(
                    f"Payment {reference} has no failed commission to resolve",
                    reference=reference,
                    commission_settlement=payment.commission_settlement.value,
                )
            wallet = self.ctx.store.get_wallet(driver_id)
            payment.record(
                "COMMISSION_RESOLUTION_REQUESTED", actor, now, resolution=action.value, reason=reason
            )
            paid = self._paid_elsewhere(payment)
            if paid is not None:
                # Nothing is owed on a trip another payment settled.
                duplicate = self._close_duplicate(payment, paid, actor, now)
                wallet.resolve_failed_commission(
                    payment.reference, CommissionSettlement.WAIVED, now, duplicate.message
                )
                payment.set_commission_settlement(CommissionSettlement.WAIVED, actor, now)
                events.append(self._failed_event(payment, actor, now))
            elif action is CommissionAction.RETRY and wallet.balance < payment.commission.amount:
                shortfall = InsufficientWalletBalance(wallet.balance, payment.commission.amount)
                self._record_commission_failure(payment, wallet, actor, now)
            else:
                events.extend(
                    self._complete_trip(payment, wallet, actor, now, settlement=settlement, note=reason)
                )
                events.append(
                    CommissionResolved(
                        metadata=self.ctx.metadata(reference, actor, now),
                        reference=reference,
                        driver_id=driver_id,
                        amount=payment.commission.amount,
                        resolution=action.value,
                        reason=reason,
                    )
                )
            self.ctx.store.commit(payments=[payment], wallets=[wallet])

        self.ctx.publish(payment.payment_id, *events)
        if duplicate is not None:
            logger.warning("Commission on %s dropped: %s", reference, duplicate.message)
            raise duplicate
        if shortfall is not None:
            raise shortfall
        logger.info("Commission on %s resolved by %s: %s", reference, actor.label(), action.value)
        if action is CommissionAction.RETRY:
            self._notify_balance_drop(driver_id)
        return payment

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _settlement_keys(payment: Payment) -> list[str]:
        keys = [payment_key(payment.payment_id), wallet_key(payment.beneficiary_id)]
        if payment.reservation_id:
            keys.append(reservation_key(payment.reservation_id))
        return keys

    def _paid_elsewhere(self, payment: Payment) -> Payment | None:
        """Another COMPLETED trip payment for the same reservation, if any.

        Must be called with the reservation lock held.
        """
        if not payment.reservation_id:
            return None
        for other in self.ctx.store.list_payments(
            reservation_id=payment.reservation_id,
            kind=PaymentKind.TRIP,
            statuses=[PaymentStatus.COMPLETED],
        ):
            if other.payment_id != payment.payment_id:
                return other
        return None

    def _close_duplicate(
        self, payment: Payment, paid: Payment, actor: Actor, now, **context
    ) -> DuplicatePayment:
        """Fail a payment whose reservation another payment already settled."""
        duplicate = DuplicatePayment(
            f"Reservation {payment.reservation_id} is already paid by {paid.reference}",
            reservation_id=payment.reservation_id,
            reference=paid.reference,
        )
        payment.record_error(
            DuplicatePayment.code, duplicate.message, now, paid_by=paid.reference, **context
        )
        payment.fail(duplicate.message, actor, now, paid_by=paid.reference)
        return duplicate

    def _complete_trip(
        self,
        payment: Payment,
        wallet: WalletAccount,
        actor: Actor,
        now,
        *,
        settlement: CommissionSettlement,
        external_transaction_id: str | None = None,
        note: str = "",
    ) -> list[DomainEvent]:
        """Settle the commission, complete the payment and credit any bonus.

        Must be called with the payment and wallet locks held.
        """
        events: list[DomainEvent] = []
        commission = payment.commission.amount
        if commission > 0:
            if settlement is CommissionSettlement.DEDUCTED:
                if payment.method is PaymentMethod.CASH:
                    entry = wallet.deduct_commission(payment.reference, commission, now)
                else:
                    entry = wallet.record_gateway_commission(payment.reference, commission, now)
                events.append(
                    CommissionDeducted(
                        metadata=self.ctx.metadata(payment.reference, actor, now),
                        reference=payment.reference,
                        driver_id=wallet.driver_id,
                        amount=commission,
                        source=entry.source.value,
                        balance_after=wallet.balance,
                    )
                )
            else:
                wallet.resolve_failed_commission(payment.reference, settlement, now, note)
            payment.set_commission_settlement(settlement, actor, now, balance_after=wallet.balance)

        payment.complete(
            actor,
            now,
            external_transaction_id=external_transaction_id,
            balance_after=wallet.balance,
        )
        if payment.bonus.performance > 0:
            wallet.credit_bonus(payment.reference, payment.bonus.performance, "performance", now)
            payment.record("BONUS_CREDITED", actor, now, amount=payment.bonus.performance)

        events.append(
            PaymentCompleted(
                metadata=self.ctx.metadata(payment.reference, actor, now),
                payment_id=payment.payment_id,
                reference=payment.reference,
                payer_id=payment.payer_id,
                beneficiary_id=payment.beneficiary_id,
                method=payment.method.value,
                gross_amount=payment.gross_amount,
                net_amount=payment.net_amount,
                commission_amount=commission,
                bonus_amount=payment.bonus.total,
            )
        )
        return events

    def _failed_event(self, payment: Payment, actor: Actor, now) -> PaymentFailed:
        return PaymentFailed(
            metadata=self.ctx.metadata(payment.reference, actor, now),
            payment_id=payment.payment_id,
            reference=payment.reference,
            payer_id=payment.payer_id,
            beneficiary_id=payment.beneficiary_id,
            method=payment.method.value,
            gross_amount=payment.gross_amount,
            reason=payment.failure_reason or "",
        )

    def _notify_balance_drop(self, driver_id: str) -> None:
        if self.on_balance_drop is not None:
            self.on_balance_drop(driver_id)

    @staticmethod
    def _parse_method(method: PaymentMethod | str) -> PaymentMethod:
        try:
            return PaymentMethod(method)
        except ValueError as exc:
            raise ValidationError(f"Unknown payment method '{method}'", method=str(method)) from exc
