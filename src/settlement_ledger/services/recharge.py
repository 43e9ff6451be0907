"""Recharge workflow - wallet top-ups through the mobile-money gateway.

Lifecycle of a top-up:
1. initiate_recharge: limits checked, PENDING payment and pending history
   entry written under the wallet lock, then the gateway is called
2. confirm_recharge / settle_recharge: webhook, admin or reconciliation
   outcome credits (or fails) the entry exactly once
3. cancel_recharge: owner or admin may cancel while PENDING and inside
   the cancellation window

A gateway timeout during initiation is an unknown outcome: the payment
and its history entry stay PENDING until reconciled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal

from settlement_ledger.errors import (
    CancellationWindowExpired,
    LedgerError,
    PermissionDenied,
    StatusMismatch,
    ValidationError,
)
from settlement_ledger.events.types import (
    AutoRechargeTriggered,
    DomainEvent,
    RechargeCancelled,
    RechargeCompleted,
    RechargeFailed,
    RechargeInitiated,
)
from settlement_ledger.gateways.base import GatewayHandle, GatewayNotification
from settlement_ledger.models.common import (
    Actor,
    ActorRole,
    Customer,
    GatewayOutcome,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
    generate_reference,
    to_decimal,
)
from settlement_ledger.models.payment import CommissionQuote, Payment
from settlement_ledger.models.wallet import AutoRechargeSettings, RechargeEntry, WalletAccount
from settlement_ledger.services.commission import CommissionEngine, recharge_fee
from settlement_ledger.services.context import (
    LedgerContext,
    OutcomeDisposition,
    OutcomeResult,
)
from settlement_ledger.services.limits import DailyLimits, DailyUsage, VelocityGuard
from settlement_ledger.services.locks import payment_key, wallet_key
from settlement_ledger.services.state_machine import PaymentStateMachine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RechargeResult:
    """Result of initiating a top-up."""

    payment: Payment
    gateway_handle: GatewayHandle | None = None
    outcome_known: bool = True

    @property
    def reference(self) -> str:
        return self.payment.reference


class RechargeWorkflow:
    """Wallet top-up lifecycle and auto-recharge."""

    def __init__(
        self,
        context: LedgerContext,
        commission: CommissionEngine,
        limits: DailyLimits,
        velocity: VelocityGuard,
    ):
        self.ctx = context
        self.commission = commission
        self.limits = limits
        self.velocity = velocity

    @property
    def rules(self):
        return self.ctx.rules.recharge

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    def initiate_recharge(
        self,
        driver_id: str,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        customer: Customer | None = None,
        actor: Actor | None = None,
        *,
        auto: bool = False,
    ) -> RechargeResult:
        """Start a wallet top-up.

        Raises:
            ValidationError: amount out of bounds or non-mobile method
            DailyLimitExceeded: the driver's daily amount or count is used up
            VelocityLimitExceeded: too many attempts in the current window
        """
        amount = to_decimal(amount)
        method = self._mobile_method(method)
        actor = actor or Actor(driver_id, ActorRole.DRIVER)
        self._require_owner_or_operator(driver_id, actor)
        if not self.rules.min_amount <= amount <= self.rules.max_amount:
            raise ValidationError(
                f"Recharge amount must be between {self.rules.min_amount} and {self.rules.max_amount}",
                amount=str(amount),
            )

        now = self.ctx.now()
        if not auto:
            self.velocity.check_and_record(driver_id, now)
        fee = recharge_fee(amount, self.rules)
        bonus = self.commission.apply_recharge_bonus(amount)

        with self.ctx.locks.hold(wallet_key(driver_id)):
            wallet = self.ctx.store.get_wallet(driver_id)
            # Read under the lock so every committed recharge is inside the window
            now = self.ctx.now()
            usage = self.limits.check(wallet, amount, now)
            if auto and wallet.has_pending_auto_recharge():
                raise ValidationError(
                    f"An automatic recharge is already pending for driver {driver_id}",
                    driver_id=driver_id,
                )
            payment = Payment.create(
                reference=generate_reference("RCH", now),
                kind=PaymentKind.RECHARGE,
                payer_id=driver_id,
                beneficiary_id=driver_id,
                method=method,
                gross_amount=amount,
                fee=fee,
                commission=CommissionQuote.none(),
                bonus=bonus,
                now=now,
                actor=actor,
                currency=self.ctx.rules.currency,
                auto_recharge=auto,
                rule_snapshot={
                    "daily_amount_used": usage.amount,
                    "daily_count_used": usage.count,
                    "balance_before": wallet.balance,
                },
            )
            wallet.record_pending_recharge(
                RechargeEntry(
                    reference=payment.reference,
                    amount=amount,
                    fee=fee,
                    bonus=bonus.recharge,
                    method=method,
                    initiated_at=now,
                    auto=auto,
                )
            )
            self.ctx.store.commit(payments=[payment], wallets=[wallet])

        logger.info(
            "Recharge %s initiated for driver %s: %s (fee %s, bonus %s)",
            payment.reference,
            driver_id,
            amount,
            fee,
            bonus.recharge,
        )
        self.ctx.publish(
            payment.payment_id,
            RechargeInitiated(
                metadata=self.ctx.metadata(payment.reference, actor, now),
                payment_id=payment.payment_id,
                reference=payment.reference,
                driver_id=driver_id,
                amount=amount,
                fee=fee,
                auto=auto,
            ),
        )

        attempt = self.ctx.call_gateway(payment, customer, "Wallet recharge")
        events: list[DomainEvent] = []
        system = Actor.system()
        now = self.ctx.now()
        with self.ctx.locks.hold(payment_key(payment.payment_id), wallet_key(driver_id)):
            payment = self.ctx.store.get_payment(payment.payment_id)
            wallets: list[WalletAccount] = []
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
                    wallet = self.ctx.store.get_wallet(driver_id)
                    wallet.fail_recharge(payment.reference, now)
                    payment.fail(attempt.error.message, system, now)
                    wallets.append(wallet)
                    events.append(self._failed_event(payment, system, now))
            self.ctx.store.commit(payments=[payment], wallets=wallets)
        self.ctx.publish(payment.payment_id, *events)

        return RechargeResult(
            payment=payment,
            gateway_handle=attempt.handle,
            outcome_known=attempt.outcome_known,
        )

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    def confirm_recharge(
        self,
        reference: str,
        outcome: GatewayOutcome | str,
        actor: Actor,
        notification: GatewayNotification | None = None,
    ) -> OutcomeResult:
        """Confirm a top-up from a verified webhook or by an admin.

        With a ``notification`` the outcome comes from a webhook whose
        signature has already been verified. Without one the caller must
        be an admin, and the claimed outcome is checked against the
        gateway before anything is applied.

        Raises:
            PermissionDenied: manual confirmation by a non-admin
            StatusMismatch: the gateway disagrees with the admin's claim
            GatewayUnavailable: the gateway could not be queried
        """
        outcome = GatewayOutcome(outcome)
        if outcome is GatewayOutcome.PENDING:
            raise ValidationError("Only SUCCESS or FAILED can be confirmed", reference=reference)

        if notification is not None:
            if notification.reference != reference or notification.outcome is not outcome:
                raise ValidationError(
                    "Notification does not match the confirmation", reference=reference
                )
            return self.settle_recharge(
                reference,
                outcome,
                actor,
                external_transaction_id=notification.external_transaction_id,
                reason=notification.reason,
            )

        if not actor.is_admin:
            raise PermissionDenied(
                "Only admins can confirm recharges manually", actor=actor.label()
            )
        payment = self._load_recharge(reference)
        if payment.is_final:
            logger.info("Manual confirmation of final recharge %s ignored", reference)
            return OutcomeResult(payment, OutcomeDisposition.DUPLICATE, payment.status)

        status = self.ctx.gateway.query_status(reference)
        if status.status is not outcome:
            logger.warning(
                "Admin %s claimed %s for %s but gateway reports %s",
                actor.actor_id,
                outcome.value,
                reference,
                status.status.value,
            )
            raise StatusMismatch(outcome.value, status.status.value)
        return self.settle_recharge(
            reference,
            outcome,
            actor,
            external_transaction_id=status.external_transaction_id,
            reason="Confirmed by admin after gateway check",
        )

    def settle_recharge(
        self,
        reference: str,
        outcome: GatewayOutcome,
        actor: Actor,
        external_transaction_id: str | None = None,
        reason: str = "",
    ) -> OutcomeResult:
        """Apply an outcome the caller has already verified.

        Idempotent: a final payment is returned untouched with a
        DUPLICATE disposition, so the wallet is credited at most once.
        """
        payment = self._load_recharge(reference)
        driver_id = payment.beneficiary_id
        events: list[DomainEvent] = []
        now = self.ctx.now()
        with self.ctx.locks.hold(payment_key(payment.payment_id), wallet_key(driver_id)):
            payment = self.ctx.store.get_payment(payment.payment_id)
            previous = payment.status
            if payment.is_final:
                level = logging.INFO if (
                    (outcome is GatewayOutcome.SUCCESS) == (previous is PaymentStatus.COMPLETED)
                ) else logging.WARNING
                logger.log(
                    level,
                    "%s outcome for recharge %s ignored; payment is %s",
                    outcome.value,
                    reference,
                    previous.value,
                )
                return OutcomeResult(payment, OutcomeDisposition.DUPLICATE, previous)

            wallet = self.ctx.store.get_wallet(driver_id)
            if outcome is GatewayOutcome.SUCCESS:
                entry = wallet.complete_recharge(reference, now)
                payment.complete(
                    actor,
                    now,
                    external_transaction_id=external_transaction_id,
                    credited=entry.credit,
                    balance_after=wallet.balance,
                )
                if entry.bonus > 0:
                    payment.record("BONUS_CREDITED", actor, now, amount=entry.bonus)
                events.append(
                    RechargeCompleted(
                        metadata=self.ctx.metadata(reference, actor, now),
                        payment_id=payment.payment_id,
                        reference=reference,
                        driver_id=driver_id,
                        amount=payment.gross_amount,
                        credited=entry.credit,
                        bonus=entry.bonus,
                        balance_after=wallet.balance,
                    )
                )
            else:
                wallet.fail_recharge(reference, now)
                payment.fail(reason or "Gateway reported failure", actor, now)
                events.append(self._failed_event(payment, actor, now))
            self.ctx.store.commit(payments=[payment], wallets=[wallet])

        logger.info("Recharge %s moved %s -> %s", reference, previous.value, payment.status.value)
        self.ctx.publish(payment.payment_id, *events)
        return OutcomeResult(payment, OutcomeDisposition.APPLIED, previous)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_recharge(self, reference: str, actor: Actor) -> Payment:
        """Cancel a PENDING top-up inside the cancellation window.

        Raises:
            AlreadyFinalized: the top-up is no longer PENDING
            CancellationWindowExpired: the top-up is older than the window
        """
        payment = self._load_recharge(reference)
        driver_id = payment.beneficiary_id
        if actor.actor_id != driver_id and not actor.is_admin:
            raise PermissionDenied(
                f"{actor.label()} cannot cancel recharge {reference}", reference=reference
            )

        now = self.ctx.now()
        with self.ctx.locks.hold(payment_key(payment.payment_id), wallet_key(driver_id)):
            payment = self.ctx.store.get_payment(payment.payment_id)
            PaymentStateMachine.validate_transition(payment.status, PaymentStatus.CANCELLED)
            if now - payment.created_at > self.rules.cancellation_window:
                raise CancellationWindowExpired(
                    payment.status.value,
                    PaymentStatus.CANCELLED.value,
                    f"recharges can only be cancelled within {self.rules.cancellation_window}",
                )
            wallet = self.ctx.store.get_wallet(driver_id)
            wallet.cancel_recharge(reference, now)
            payment.cancel(actor, now)
            self.ctx.store.commit(payments=[payment], wallets=[wallet])

        logger.info("Recharge %s cancelled by %s", reference, actor.label())
        self.ctx.publish(
            payment.payment_id,
            RechargeCancelled(
                metadata=self.ctx.metadata(reference, actor, now),
                payment_id=payment.payment_id,
                reference=reference,
                driver_id=driver_id,
                amount=payment.gross_amount,
            ),
        )
        return payment

    # ------------------------------------------------------------------
    # Limits and auto-recharge
    # ------------------------------------------------------------------

    def daily_usage(self, driver_id: str) -> DailyUsage:
        wallet = self.ctx.store.get_wallet(driver_id)
        return self.limits.usage(wallet, self.ctx.now())

    def configure_auto_recharge(
        self,
        driver_id: str,
        threshold: Decimal | int | str,
        amount: Decimal | int | str,
        method: PaymentMethod | str,
        actor: Actor,
        phone_number: str | None = None,
    ) -> AutoRechargeSettings:
        """Enable automatic top-ups when the balance drops below ``threshold``."""
        threshold = to_decimal(threshold)
        amount = to_decimal(amount)
        method = self._mobile_method(method)
        self._require_owner_or_operator(driver_id, actor)
        if threshold < 0:
            raise ValidationError("Auto-recharge threshold must not be negative")
        if not self.rules.auto_recharge_minimum <= amount <= self.rules.max_amount:
            raise ValidationError(
                f"Auto-recharge amount must be between {self.rules.auto_recharge_minimum} "
                f"and {self.rules.max_amount}",
                amount=str(amount),
            )

        settings = AutoRechargeSettings(
            enabled=True,
            threshold=threshold,
            amount=amount,
            method=method,
            phone_number=phone_number,
        )
        with self.ctx.locks.hold(wallet_key(driver_id)):
            wallet = self.ctx.store.get_wallet(driver_id)
            wallet.configure_auto_recharge(settings, self.ctx.now())
            self.ctx.store.commit(wallets=[wallet])
        logger.info(
            "Auto-recharge enabled for driver %s: %s below %s via %s",
            driver_id,
            amount,
            threshold,
            method.value,
        )
        return settings

    def disable_auto_recharge(self, driver_id: str, actor: Actor) -> AutoRechargeSettings:
        self._require_owner_or_operator(driver_id, actor)
        with self.ctx.locks.hold(wallet_key(driver_id)):
            wallet = self.ctx.store.get_wallet(driver_id)
            settings = replace(wallet.auto_recharge, enabled=False)
            wallet.configure_auto_recharge(settings, self.ctx.now())
            self.ctx.store.commit(wallets=[wallet])
        logger.info("Auto-recharge disabled for driver %s", driver_id)
        return settings

    def check_auto_recharge(self, driver_id: str) -> RechargeResult | None:
        """Start an automatic top-up if the wallet is below its threshold.

        Called after a balance drop has been committed. Failures are
        logged and never undo the debit that triggered the check.
        """
        wallet = self.ctx.store.get_wallet(driver_id)
        if not wallet.needs_auto_recharge():
            return None

        settings = wallet.auto_recharge
        customer = Customer(phone_number=settings.phone_number) if settings.phone_number else None
        system = Actor.system("auto-recharge")
        try:
            result = self.initiate_recharge(
                driver_id, settings.amount, settings.method, customer, system, auto=True
            )
        except LedgerError as exc:
            logger.warning(
                "Auto-recharge for driver %s not started (%s): %s", driver_id, exc.code, exc
            )
            return None

        self.ctx.publish(
            result.payment.payment_id,
            AutoRechargeTriggered(
                metadata=self.ctx.metadata(result.reference, system, self.ctx.now()),
                driver_id=driver_id,
                reference=result.reference,
                amount=settings.amount,
                balance=wallet.balance,
                threshold=settings.threshold,
            ),
        )
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_recharge(self, reference: str) -> Payment:
        payment = self.ctx.store.get_payment_by_reference(reference)
        if payment.kind is not PaymentKind.RECHARGE:
            raise ValidationError(f"Payment {reference} is not a recharge", reference=reference)
        return payment

    def _failed_event(self, payment: Payment, actor: Actor, now) -> RechargeFailed:
        return RechargeFailed(
            metadata=self.ctx.metadata(payment.reference, actor, now),
            payment_id=payment.payment_id,
            reference=payment.reference,
            driver_id=payment.beneficiary_id,
            amount=payment.gross_amount,
            reason=payment.failure_reason or "",
        )

    @staticmethod
    def _require_owner_or_operator(driver_id: str, actor: Actor) -> None:
        if actor.actor_id == driver_id and actor.role is ActorRole.DRIVER:
            return
        if actor.role in (ActorRole.ADMIN, ActorRole.SYSTEM):
            return
        raise PermissionDenied(
            f"{actor.label()} cannot manage the wallet of driver {driver_id}",
            driver_id=driver_id,
        )

    @staticmethod
    def _mobile_method(method: PaymentMethod | str) -> PaymentMethod:
        try:
            method = PaymentMethod(method)
        except ValueError as exc:
            raise ValidationError(f"Unknown payment method '{method}'") from exc
        if not method.is_digital:
            raise ValidationError("Recharges require a mobile money method", method=method.value)
        return method
