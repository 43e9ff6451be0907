"""Pytest fixtures for settlement ledger tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from settlement_ledger.events.types import DomainEvent
from settlement_ledger.gateways.stub import StubGateway
from settlement_ledger.ledger import SettlementLedger
from settlement_ledger.models.common import (
    Actor,
    ActorRole,
    GatewayOutcome,
    PaymentMethod,
    Reservation,
)
from settlement_ledger.models.wallet import WalletAccount
from settlement_ledger.rules import LedgerRules
from settlement_ledger.store.memory import InMemoryLedgerStore

START = datetime(2024, 3, 15, 10, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


class RecordingDispatcher:
    """Notification dispatcher that keeps every call."""

    def __init__(self) -> None:
        self.successes: list[tuple[str, dict]] = []
        self.failures: list[tuple[str, dict]] = []

    def notify_payment_success(self, party_id: str, details: dict) -> None:
        self.successes.append((party_id, details))

    def notify_payment_failed(self, party_id: str, details: dict) -> None:
        self.failures.append((party_id, details))


@pytest.fixture
def clock() -> FrozenClock:
    """Frozen clock starting mid-morning UTC."""
    return FrozenClock()


@pytest.fixture
def store() -> InMemoryLedgerStore:
    """Empty in-memory store."""
    return InMemoryLedgerStore()


@pytest.fixture
def gateway() -> StubGateway:
    """Stub gateway that leaves payments pending."""
    return StubGateway(secret="test-secret")


@pytest.fixture
def rules() -> LedgerRules:
    """Default rule set."""
    return LedgerRules()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def ledger(store, gateway, rules, clock, dispatcher) -> SettlementLedger:
    """Ledger wired to the in-memory store, stub gateway and frozen clock."""
    return SettlementLedger(store, gateway, rules, dispatcher=dispatcher, clock=clock)


@pytest.fixture
def events(ledger) -> list[DomainEvent]:
    """Every event the ledger publishes, in order."""
    recorded: list[DomainEvent] = []
    ledger.emitter.on_all(recorded.append)
    return recorded


@pytest.fixture
def admin() -> Actor:
    return Actor("admin-1", ActorRole.ADMIN)


@pytest.fixture
def driver() -> Actor:
    return Actor("drv-1", ActorRole.DRIVER)


@pytest.fixture
def reservation() -> Reservation:
    """A short trip with an average driver."""
    return Reservation(
        reservation_id="res-1",
        rider_id="rider-1",
        driver_id="drv-1",
        distance_km=8.0,
        driver_rating=4.2,
        driver_trips_this_month=5,
    )


def complete_recharge(
    ledger: SettlementLedger,
    gateway: StubGateway,
    driver_id: str,
    amount: Decimal | int,
    method: PaymentMethod = PaymentMethod.WAVE,
):
    """Initiate a recharge and deliver a signed SUCCESS webhook for it."""
    result = ledger.initiate_recharge(driver_id, amount, method)
    payload, signature = gateway.build_notification(
        result.reference, GatewayOutcome.SUCCESS, external_transaction_id=f"TX-{result.reference}"
    )
    return ledger.handle_gateway_webhook(payload, signature)


@pytest.fixture
def top_up(ledger, gateway):
    """Factory completing a recharge through a signed webhook."""

    def _top_up(driver_id: str = "drv-1", amount: Decimal | int = 10000):
        return complete_recharge(ledger, gateway, driver_id, amount)

    return _top_up


@pytest.fixture
def open_wallet(ledger):
    """Factory opening an empty wallet."""

    def _open(driver_id: str = "drv-1") -> WalletAccount:
        return ledger.open_wallet(driver_id)

    return _open


@pytest.fixture
def funded_wallet(ledger, gateway):
    """Factory opening a wallet and topping it up through the gateway."""

    def _fund(driver_id: str = "drv-1", amount: Decimal | int = 10000) -> WalletAccount:
        ledger.open_wallet(driver_id)
        complete_recharge(ledger, gateway, driver_id, amount)
        return ledger.get_wallet(driver_id)

    return _fund
