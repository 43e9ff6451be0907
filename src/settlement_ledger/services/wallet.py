"""Wallet service - opening, withdrawals and balance audits."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from decimal import Decimal

from settlement_ledger.errors import PermissionDenied, WalletNotFound
from settlement_ledger.events.types import WalletWithdrawn
from settlement_ledger.models.common import Actor, to_decimal
from settlement_ledger.models.wallet import WalletAccount, WithdrawalEntry
from settlement_ledger.services.context import LedgerContext
from settlement_ledger.services.locks import wallet_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletAudit:
    """Comparison of a wallet's cached balance with its replayed histories."""

    driver_id: str
    balance: Decimal
    replayed: Decimal

    @property
    def drift(self) -> Decimal:
        return self.balance - self.replayed

    @property
    def consistent(self) -> bool:
        return self.drift == 0 and self.balance >= 0


class WalletService:
    """Wallet lifecycle outside of payments and recharges."""

    def __init__(
        self,
        context: LedgerContext,
        on_balance_drop: Callable[[str], object] | None = None,
    ):
        self.ctx = context
        self.on_balance_drop = on_balance_drop

    def open_wallet(self, driver_id: str) -> WalletAccount:
        """Create the driver's wallet, or return it if it already exists."""
        with self.ctx.locks.hold(wallet_key(driver_id)):
            try:
                return self.ctx.store.get_wallet(driver_id)
            except WalletNotFound:
                pass
            wallet = WalletAccount(
                driver_id=driver_id,
                created_at=self.ctx.now(),
                minimum_balance=self.ctx.rules.cash.minimum_balance,
                currency=self.ctx.rules.currency,
            )
            self.ctx.store.commit(wallets=[wallet])
        logger.info("Opened wallet for driver %s", driver_id)
        return wallet

    def get_wallet(self, driver_id: str) -> WalletAccount:
        return self.ctx.store.get_wallet(driver_id)

    def withdraw(
        self, driver_id: str, amount: Decimal | int | str, actor: Actor, note: str = ""
    ) -> WithdrawalEntry:
        """Take money out of the wallet.

        Raises:
            PermissionDenied: actor is neither the driver nor an admin
            InsufficientWalletBalance: amount exceeds the balance
        """
        amount = to_decimal(amount)
        if actor.actor_id != driver_id and not actor.is_admin:
            raise PermissionDenied(
                f"{actor.label()} cannot withdraw from wallet {driver_id}", driver_id=driver_id
            )

        now = self.ctx.now()
        with self.ctx.locks.hold(wallet_key(driver_id)):
            wallet = self.ctx.store.get_wallet(driver_id)
            entry = wallet.withdraw(amount, now, note=note)
            self.ctx.store.commit(wallets=[wallet])

        logger.info("Driver %s withdrew %s, balance now %s", driver_id, amount, wallet.balance)
        self.ctx.publish(
            None,
            WalletWithdrawn(
                metadata=self.ctx.metadata(entry.withdrawal_id, actor, now),
                driver_id=driver_id,
                withdrawal_id=entry.withdrawal_id,
                amount=amount,
                balance_after=wallet.balance,
            ),
        )
        if self.on_balance_drop is not None:
            self.on_balance_drop(driver_id)
        return entry

    def verify_wallet(self, driver_id: str) -> WalletAudit:
        wallet = self.ctx.store.get_wallet(driver_id)
        audit = WalletAudit(
            driver_id=driver_id, balance=wallet.balance, replayed=wallet.replayed_balance()
        )
        if not audit.consistent:
            logger.error(
                "Wallet %s balance %s disagrees with history %s",
                driver_id,
                audit.balance,
                audit.replayed,
            )
        return audit

    def verify_all(self) -> list[WalletAudit]:
        return [self.verify_wallet(w.driver_id) for w in self.ctx.store.list_wallets()]
