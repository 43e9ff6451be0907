"""Ledger persistence."""

from settlement_ledger.store.base import LedgerStore
from settlement_ledger.store.memory import InMemoryLedgerStore
from settlement_ledger.store.sql import SqlLedgerStore

__all__ = ["LedgerStore", "InMemoryLedgerStore", "SqlLedgerStore"]
