"""In-process delivery of ledger events.

Services publish only after their store commit succeeded, so a handler
never sees an event for state that was rolled back. Delivery is
synchronous and best-effort: a failing handler is logged and reported
back to the publisher, and the remaining handlers still run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol, TypeVar, runtime_checkable

from settlement_ledger.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=DomainEvent)


@runtime_checkable
class EventHandler(Protocol):
    def __call__(self, event: DomainEvent) -> None:
        ...


@dataclass
class HandlerRegistration:
    handler: EventHandler
    event_types: set[str] | None = None
    categories: set[EventCategory] | None = None

    def matches(self, event: DomainEvent) -> bool:
        if self.event_types and event.event_type not in self.event_types:
            return False
        return not self.categories or event.category in self.categories


class EventEmitter:
    """Routes ledger events to subscribers by event class or category.

        emitter = EventEmitter()
        emitter.on(PaymentCompleted, notify_rider)
        emitter.on_category(EventCategory.RECHARGE, audit_recharge)
        failures = emitter.emit(event)

    Subscribing or unsubscribing while an event is being delivered takes
    effect from the next emit.
    """

    def __init__(self) -> None:
        self._handlers: list[HandlerRegistration] = []

    def on(self, event_type: type[T] | list[type[T]], handler: EventHandler) -> None:
        classes = event_type if isinstance(event_type, list) else [event_type]
        self._handlers.append(
            HandlerRegistration(handler, event_types={cls.__name__ for cls in classes})
        )

    def on_category(
        self, category: EventCategory | list[EventCategory], handler: EventHandler
    ) -> None:
        categories = category if isinstance(category, list) else [category]
        self._handlers.append(HandlerRegistration(handler, categories=set(categories)))

    def on_all(self, handler: EventHandler) -> None:
        self._handlers.append(HandlerRegistration(handler))

    def off(self, handler: EventHandler) -> None:
        """Drop every subscription of ``handler``."""
        self._handlers = [reg for reg in self._handlers if reg.handler is not handler]

    def emit(self, event: DomainEvent) -> list[Exception]:
        """Deliver ``event`` and return what the handlers raised."""
        failures: list[Exception] = []
        for reg in list(self._handlers):
            if not reg.matches(event):
                continue
            try:
                reg.handler(event)
            except Exception as exc:
                logger.exception("Handler %r failed on %s", reg.handler, event.event_type)
                failures.append(exc)
        return failures
