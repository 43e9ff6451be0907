"""Concurrency tests: racing confirmations and optimistic versioning."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from decimal import Decimal

import pytest

from settlement_ledger.errors import (
    AlreadyFinalized,
    ConcurrentModification,
    DuplicatePayment,
    InsufficientWalletBalance,
)
from settlement_ledger.models.common import (
    Actor,
    ActorRole,
    GatewayOutcome,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
)
from settlement_ledger.models.payment import Payment
from settlement_ledger.models.wallet import WithdrawalEntry
from settlement_ledger.services.context import OutcomeDisposition
from settlement_ledger.services.locks import ThreadLocks

THREADS = 8


def run_concurrently(fn, count: int = THREADS) -> list:
    """Run ``fn`` from several threads, returning results or raised exceptions."""

    def call(_):
        try:
            return fn()
        except Exception as exc:  # collected for assertions
            return exc

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(call, range(count)))


class TestRacingOutcomes:

    def test_concurrent_webhooks_credit_once(self, ledger, gateway, open_wallet):
        """Eight deliveries of the same success webhook credit the wallet once."""
        open_wallet()
        result = ledger.initiate_recharge("drv-1", 10000, PaymentMethod.WAVE)
        payload, signature = gateway.build_notification(result.reference, GatewayOutcome.SUCCESS)

        outcomes = run_concurrently(lambda: ledger.handle_gateway_webhook(payload, signature))

        dispositions = [o.disposition for o in outcomes]
        assert dispositions.count(OutcomeDisposition.APPLIED) == 1
        assert dispositions.count(OutcomeDisposition.DUPLICATE) == THREADS - 1
        wallet = ledger.get_wallet("drv-1")
        assert wallet.balance == Decimal("10000")
        assert wallet.replayed_balance() == wallet.balance

    def test_success_and_failure_race(self, ledger, funded_wallet, reservation):
        """Conflicting gateway reports: exactly one wins, the rest are duplicates."""
        funded_wallet()
        payment = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.WAVE).payment
        outcomes = [GatewayOutcome.SUCCESS, GatewayOutcome.FAILED] * (THREADS // 2)
        queue = iter(outcomes)

        results = run_concurrently(
            lambda: ledger.apply_gateway_outcome(payment.reference, next(queue))
        )

        applied = [r for r in results if r.disposition is OutcomeDisposition.APPLIED]
        assert len(applied) == 1
        final = ledger.get_payment(payment.reference)
        assert final.status is applied[0].payment.status
        commissions = ledger.get_wallet("drv-1").commission_history
        assert len(commissions) == (1 if final.status is PaymentStatus.COMPLETED else 0)

    def test_cash_and_gateway_settle_a_trip_once(self, ledger, funded_wallet, reservation, store):
        """A cash confirmation racing a digital success for the same trip completes one of them."""
        funded_wallet()
        cash = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.CASH).payment
        wave = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.WAVE).payment
        calls = iter(
            [
                lambda: ledger.confirm_cash_payment(cash.reference, "drv-1"),
                lambda: ledger.apply_gateway_outcome(wave.reference, GatewayOutcome.SUCCESS),
            ]
            * (THREADS // 2)
        )

        run_concurrently(lambda: next(calls)())

        completed = store.list_payments(reservation_id="res-1", statuses=[PaymentStatus.COMPLETED])
        assert len(completed) == 1
        wallet = ledger.get_wallet("drv-1")
        assert len(wallet.commission_history) == 1
        expected = Decimal("9500") if completed[0].reference == cash.reference else Decimal("10000")
        assert wallet.balance == expected
        assert wallet.replayed_balance() == wallet.balance

    def test_concurrent_cash_confirmations(self, ledger, funded_wallet, reservation):
        """Driver and rider confirming together deduct the commission once."""
        funded_wallet()
        payment = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.CASH).payment
        parties = iter(["drv-1", "rider-1"] * (THREADS // 2))

        results = run_concurrently(
            lambda: ledger.confirm_cash_payment(payment.reference, next(parties))
        )

        completed = [r for r in results if not isinstance(r, Exception)]
        assert len(completed) == 1
        assert all(isinstance(r, AlreadyFinalized) for r in results if isinstance(r, Exception))
        assert ledger.get_wallet("drv-1").balance == Decimal("9500")


class TestWalletContention:

    def test_commissions_never_overdraw(self, ledger, funded_wallet, reservation):
        """Many cash trips racing on a thin wallet never push it negative."""
        funded_wallet(amount=3000)  # credit 2,940
        references = []
        for i in range(THREADS):
            trip = replace(reservation, reservation_id=f"res-{i}", rider_id=f"rider-{i}")
            references.append(
                ledger.initiate_trip_payment(trip, 5000, PaymentMethod.CASH).payment.reference
            )
        pending = iter(references)

        results = run_concurrently(lambda: ledger.confirm_cash_payment(next(pending), "drv-1"))

        succeeded = [r for r in results if not isinstance(r, Exception)]
        short = [r for r in results if isinstance(r, InsufficientWalletBalance)]
        assert len(succeeded) == 5
        assert len(short) == 3
        wallet = ledger.get_wallet("drv-1")
        assert wallet.balance == Decimal("440")
        assert wallet.replayed_balance() == wallet.balance

    def test_one_completed_payment_per_reservation(self, ledger, funded_wallet, reservation):
        """Racing initiations for a paid reservation are all refused."""
        funded_wallet()
        first = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.CASH).payment
        ledger.confirm_cash_payment(first.reference, "drv-1")
        riders = iter([f"rider-{i}" for i in range(THREADS)])

        results = run_concurrently(
            lambda: ledger.initiate_trip_payment(
                replace(reservation, rider_id=next(riders)), 5000, PaymentMethod.CASH
            )
        )

        assert all(isinstance(r, DuplicatePayment) for r in results)

    def _race_commissions_and_withdrawals(self, ledger, reservation) -> list:
        references = iter(
            [
                ledger.initiate_trip_payment(
                    replace(reservation, reservation_id=f"res-{i}", rider_id=f"rider-{i}"),
                    5000,
                    PaymentMethod.CASH,
                ).payment.reference
                for i in range(THREADS // 2)
            ]
        )
        driver = Actor("drv-1", ActorRole.DRIVER)
        calls = iter(
            [
                lambda: ledger.confirm_cash_payment(next(references), "drv-1"),
                lambda: ledger.withdraw("drv-1", 1000, driver),
            ]
            * (THREADS // 2)
        )
        return run_concurrently(lambda: next(calls)())

    def test_commissions_race_withdrawals(self, ledger, funded_wallet, reservation):
        """Cash commissions and withdrawals on a thin wallet never spend the same money twice."""
        funded_wallet(amount=3000)  # credit 2,940

        results = self._race_commissions_and_withdrawals(ledger, reservation)

        confirmed = [r for r in results if isinstance(r, Payment)]
        withdrawn = [r for r in results if isinstance(r, WithdrawalEntry)]
        refused = [r for r in results if isinstance(r, Exception)]
        assert all(isinstance(r, InsufficientWalletBalance) for r in refused)
        assert len(confirmed) + len(withdrawn) + len(refused) == THREADS
        wallet = ledger.get_wallet("drv-1")
        assert wallet.balance >= 0
        assert wallet.balance == Decimal("2940") - 500 * len(confirmed) - 1000 * len(withdrawn)
        assert wallet.replayed_balance() == wallet.balance

    def test_race_with_auto_recharge(self, ledger, funded_wallet, reservation, store, driver):
        """Every debit may trigger the auto top-up; only one is ever started."""
        funded_wallet(amount=3000)
        ledger.configure_auto_recharge("drv-1", 2500, 5000, PaymentMethod.WAVE, driver)

        results = self._race_commissions_and_withdrawals(ledger, reservation)

        assert all(
            isinstance(r, InsufficientWalletBalance) for r in results if isinstance(r, Exception)
        )
        wallet = ledger.get_wallet("drv-1")
        assert wallet.balance >= 0
        assert wallet.replayed_balance() == wallet.balance
        automatic = [
            p
            for p in store.list_payments(
                beneficiary_id="drv-1", kind=PaymentKind.RECHARGE, statuses=[PaymentStatus.PENDING]
            )
            if p.auto_recharge
        ]
        assert len(automatic) == 1
        assert wallet.has_pending_auto_recharge()


class TestStoreVersioning:

    def test_stale_commit_rejected(self, ledger, open_wallet, store):
        """Two copies of the same wallet cannot both be written."""
        open_wallet()
        first = store.get_wallet("drv-1")
        second = store.get_wallet("drv-1")
        first.minimum_balance = Decimal("2000")
        store.commit(wallets=[first])

        with pytest.raises(ConcurrentModification):
            store.commit(wallets=[second])
        assert store.get_wallet("drv-1").minimum_balance == Decimal("2000")

    def test_commit_is_all_or_nothing(self, ledger, funded_wallet, reservation, store):
        """A stale wallet aborts the payment written alongside it."""
        funded_wallet()
        payment = ledger.initiate_trip_payment(reservation, 5000, PaymentMethod.WAVE).payment
        stale_wallet = store.get_wallet("drv-1")
        store.commit(wallets=[store.get_wallet("drv-1")])
        loaded = store.get_payment(payment.payment_id)
        loaded.record_error("TEST", "should not persist", loaded.created_at)

        with pytest.raises(ConcurrentModification):
            store.commit(payments=[loaded], wallets=[stale_wallet])
        assert store.get_payment(payment.payment_id).errors == []

    def test_loaded_copies_are_independent(self, ledger, open_wallet, store):
        open_wallet()
        wallet = store.get_wallet("drv-1")
        wallet.recharge_active = True

        assert store.get_wallet("drv-1").recharge_active is False


class TestThreadLocks:

    def test_keys_taken_in_canonical_order(self):
        """Holding the same keys in any order cannot deadlock."""
        locks = ThreadLocks()
        order = iter(
            [("wallet:drv-1", "payment:p1"), ("payment:p1", "wallet:drv-1")] * (THREADS // 2)
        )
        counter = {"value": 0}

        def work():
            keys = next(order)
            for _ in range(100):
                with locks.hold(*keys):
                    counter["value"] += 1

        run_concurrently(work)

        assert counter["value"] == THREADS * 100

    def test_released_keys_are_evicted(self):
        locks = ThreadLocks()

        with locks.hold("reservation:res-1", "payment:p1", "wallet:drv-1"):
            assert len(locks) == 3

        assert len(locks) == 0

    def test_registry_empty_after_contention(self):
        """Waiters keep a key alive; the last one out removes it."""
        locks = ThreadLocks()
        keys = iter([f"payment:p{i % 2}" for i in range(THREADS)])

        def work():
            key = next(keys)
            for _ in range(50):
                with locks.hold(key, "wallet:drv-1"):
                    pass

        run_concurrently(work)

        assert len(locks) == 0

    def test_lock_still_excludes_after_eviction(self):
        locks = ThreadLocks()
        with locks.hold("wallet:drv-1"):
            pass
        counter = {"value": 0}

        def work():
            for _ in range(100):
                with locks.hold("wallet:drv-1"):
                    current = counter["value"]
                    counter["value"] = current + 1

        run_concurrently(work)

        assert counter["value"] == THREADS * 100
