"""Per-aggregate mutual exclusion.

Lock keys are namespaced strings (``payment:<id>``, ``wallet:<driver>``,
``reservation:<id>``). Callers that need more than one lock take them in
the order reservation, payment, wallet. No lock may be held while
calling the gateway or a notification channel.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from typing import Protocol


def payment_key(payment_id: str) -> str:
    return f"payment:{payment_id}"


def wallet_key(driver_id: str) -> str:
    return f"wallet:{driver_id}"


def reservation_key(reservation_id: str) -> str:
    return f"reservation:{reservation_id}"


_ORDER = {"reservation": 0, "payment": 1, "wallet": 2}


class AggregateLocks(Protocol):
    """Protocol for keyed lock registries."""

    def hold(self, *keys: str):
        """Context manager holding every key until exit."""
        ...


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0  # holders plus waiters


class ThreadLocks:
    """In-process keyed locks.

    A key's lock lives only while some thread holds or waits for it, so
    the registry stays as small as the set of keys in use.
    """

    def __init__(self) -> None:
        self._locks: dict[str, _KeyLock] = {}
        self._registry_mutex = threading.Lock()

    def __len__(self) -> int:
        with self._registry_mutex:
            return len(self._locks)

    def _checkout(self, key: str) -> _KeyLock:
        with self._registry_mutex:
            entry = self._locks.get(key)
            if entry is None:
                entry = _KeyLock()
                self._locks[key] = entry
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _KeyLock) -> None:
        with self._registry_mutex:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        ordered = sorted(set(keys), key=lambda k: (_ORDER.get(k.split(":", 1)[0], 99), k))
        with ExitStack() as stack:
            for key in ordered:
                entry = self._checkout(key)
                stack.callback(self._checkin, key, entry)
                entry.lock.acquire()
                stack.callback(entry.lock.release)
            yield
