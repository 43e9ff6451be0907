"""Tests for reconciling PENDING digital payments against the gateway."""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

from settlement_ledger.errors import GatewayUnavailable
from settlement_ledger.models.common import PaymentMethod, PaymentStatus


class TestTripReconciliation:

    def test_completes_confirmed_trip(self, ledger, gateway, funded_wallet, reservation):
        funded_wallet()
        payment = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.WAVE).payment
        gateway.simulate_success(payment.reference, "EXT-1")

        result = ledger.reconcile()

        assert result.success
        assert result.payments_checked == 1
        assert result.payments_completed == 1
        stored = ledger.get_payment(payment.reference)
        assert stored.status is PaymentStatus.COMPLETED
        assert stored.external_transaction_id == "EXT-1"
        assert len(ledger.get_wallet("drv-1").commission_history) == 1

    def test_fails_refused_trip(self, ledger, gateway, funded_wallet, reservation):
        funded_wallet()
        payment = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.WAVE).payment
        gateway.simulate_failure(payment.reference)

        result = ledger.reconcile()

        assert result.payments_failed == 1
        assert ledger.get_payment(payment.reference).status is PaymentStatus.FAILED

    def test_leaves_unsettled_trip_pending(self, ledger, funded_wallet, reservation):
        funded_wallet()
        payment = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.WAVE).payment

        result = ledger.reconcile()

        assert result.still_pending == 1
        assert ledger.get_payment(payment.reference).status is PaymentStatus.PENDING

    def test_cash_payments_not_polled(self, ledger, funded_wallet, reservation):
        """Cash trips have no gateway record to ask about."""
        funded_wallet()
        ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.CASH)

        result = ledger.reconcile()

        assert result.payments_checked == 0

    def test_second_run_is_a_no_op(self, ledger, gateway, funded_wallet, reservation):
        funded_wallet()
        payment = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.WAVE).payment
        gateway.simulate_success(payment.reference)
        ledger.reconcile()

        result = ledger.reconcile()

        assert result.payments_checked == 0
        assert len(ledger.get_wallet("drv-1").commission_history) == 1


class TestRechargeReconciliation:

    def test_credits_confirmed_recharge(self, ledger, gateway, open_wallet):
        """A lost webhook is recovered by polling."""
        open_wallet()
        recharge = ledger.initiate_recharge("drv-1", 10000, PaymentMethod.WAVE)
        gateway.simulate_success(recharge.reference)

        result = ledger.reconcile()

        assert result.payments_completed == 1
        assert ledger.get_wallet("drv-1").balance == Decimal("10000")

    def test_expires_stale_recharge(self, ledger, clock, open_wallet):
        """A recharge still pending after two hours is failed."""
        open_wallet()
        recharge = ledger.initiate_recharge("drv-1", 10000, PaymentMethod.WAVE)
        clock.advance(hours=2)

        result = ledger.reconcile()

        assert result.recharges_expired == 1
        stored = ledger.get_payment(recharge.reference)
        assert stored.status is PaymentStatus.FAILED
        assert ledger.get_wallet("drv-1").balance == Decimal("0")

    def test_expired_recharge_frees_daily_limit(self, ledger, clock, open_wallet):
        open_wallet()
        ledger.initiate_recharge("drv-1", 10000, PaymentMethod.WAVE)
        assert ledger.daily_usage("drv-1").count == 1
        clock.advance(hours=3)

        ledger.reconcile()

        assert ledger.daily_usage("drv-1").count == 0

    def test_young_recharge_not_expired(self, ledger, clock, open_wallet):
        open_wallet()
        recharge = ledger.initiate_recharge("drv-1", 10000, PaymentMethod.WAVE)
        clock.advance(minutes=119)

        result = ledger.reconcile()

        assert result.recharges_expired == 0
        assert result.still_pending == 1
        assert ledger.get_payment(recharge.reference).status is PaymentStatus.PENDING


class TestReconciliationErrors:

    def test_gateway_outage_recorded(self, ledger, gateway, funded_wallet, reservation):
        """An unreachable gateway is reported and the payment stays PENDING."""
        funded_wallet()
        payment = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.WAVE).payment
        gateway.fail_next_status(GatewayUnavailable("status endpoint timed out"))

        result = ledger.reconcile()

        assert not result.success
        assert result.errors == [
            {
                "code": "GATEWAY_UNAVAILABLE",
                "reference": payment.reference,
                "message": "status endpoint timed out",
            }
        ]
        assert ledger.get_payment(payment.reference).status is PaymentStatus.PENDING

    def test_outage_does_not_stop_the_run(self, ledger, gateway, funded_wallet, reservation):
        funded_wallet()
        first = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.WAVE).payment
        second = ledger.initiate_trip_payment(
            replace(reservation, reservation_id="res-2"), 5000, PaymentMethod.WAVE
        ).payment
        gateway.simulate_success(first.reference)
        gateway.simulate_success(second.reference)
        gateway.fail_next_status(GatewayUnavailable("blip"))

        result = ledger.reconcile()

        assert result.payments_checked == 2
        assert result.payments_completed == 1
        assert len(result.errors) == 1

    def test_older_than_skips_recent_payments(self, ledger, clock, gateway, funded_wallet, reservation):
        """Recent payments are left for their webhook."""
        funded_wallet()
        payment = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.WAVE).payment
        gateway.simulate_success(payment.reference)

        skipped = ledger.reconcile(older_than=timedelta(minutes=10))
        clock.advance(minutes=10)
        checked = ledger.reconcile(older_than=timedelta(minutes=10))

        assert skipped.payments_checked == 0
        assert checked.payments_completed == 1
