"""In-process ledger store for tests and single-process deployments."""

from __future__ import annotations

import copy
import threading
from collections.abc import Iterable, Sequence

from settlement_ledger.errors import ConcurrentModification, PaymentNotFound, WalletNotFound
from settlement_ledger.models.common import PaymentKind, PaymentStatus
from settlement_ledger.models.payment import Payment
from settlement_ledger.models.wallet import WalletAccount


class InMemoryLedgerStore:
    """Dictionary-backed store that keeps deep copies of every aggregate."""

    def __init__(self) -> None:
        self._payments: dict[str, Payment] = {}
        self._references: dict[str, str] = {}
        self._wallets: dict[str, WalletAccount] = {}
        self._mutex = threading.Lock()

    def get_payment(self, payment_id: str) -> Payment:
        with self._mutex:
            payment = self._payments.get(payment_id)
            if payment is None:
                raise PaymentNotFound(f"Payment {payment_id} not found", payment_id=payment_id)
            return copy.deepcopy(payment)

    def get_payment_by_reference(self, reference: str) -> Payment:
        with self._mutex:
            payment_id = self._references.get(reference)
            if payment_id is None:
                raise PaymentNotFound(f"Payment {reference} not found", reference=reference)
            return copy.deepcopy(self._payments[payment_id])

    def list_payments(
        self,
        *,
        reservation_id: str | None = None,
        beneficiary_id: str | None = None,
        kind: PaymentKind | None = None,
        statuses: Iterable[PaymentStatus] | None = None,
    ) -> list[Payment]:
        wanted = set(statuses) if statuses is not None else None
        with self._mutex:
            matches = [
                p
                for p in self._payments.values()
                if (reservation_id is None or p.reservation_id == reservation_id)
                and (beneficiary_id is None or p.beneficiary_id == beneficiary_id)
                and (kind is None or p.kind is kind)
                and (wanted is None or p.status in wanted)
            ]
            matches.sort(key=lambda p: p.created_at)
            return copy.deepcopy(matches)

    def get_wallet(self, driver_id: str) -> WalletAccount:
        with self._mutex:
            wallet = self._wallets.get(driver_id)
            if wallet is None:
                raise WalletNotFound(f"Wallet for driver {driver_id} not found", driver_id=driver_id)
            return copy.deepcopy(wallet)

    def list_wallets(self) -> list[WalletAccount]:
        with self._mutex:
            return copy.deepcopy(list(self._wallets.values()))

    def commit(
        self,
        *,
        payments: Sequence[Payment] = (),
        wallets: Sequence[WalletAccount] = (),
    ) -> None:
        with self._mutex:
            # Check every version before writing anything
            for payment in payments:
                self._check_version(
                    "payment", payment.payment_id, payment.version, self._payments.get(payment.payment_id)
                )
                if payment.version == 0:
                    owner = self._references.get(payment.reference)
                    if owner is not None and owner != payment.payment_id:
                        raise ConcurrentModification(
                            f"Reference {payment.reference} already in use",
                            reference=payment.reference,
                        )
            for wallet in wallets:
                self._check_version(
                    "wallet", wallet.driver_id, wallet.version, self._wallets.get(wallet.driver_id)
                )

            for payment in payments:
                payment.version += 1
                self._payments[payment.payment_id] = copy.deepcopy(payment)
                self._references[payment.reference] = payment.payment_id
            for wallet in wallets:
                wallet.version += 1
                self._wallets[wallet.driver_id] = copy.deepcopy(wallet)

    @staticmethod
    def _check_version(kind: str, key: str, version: int, stored) -> None:
        stored_version = stored.version if stored is not None else 0
        if stored_version != version:
            raise ConcurrentModification(
                f"{kind} {key} changed concurrently (expected version {version}, found {stored_version})",
                key=key,
                expected=version,
                found=stored_version,
            )
