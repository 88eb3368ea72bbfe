"""In-process publication of payroll domain events.

Subscribers register for an event class, a category, or everything. A
failing subscriber is logged and skipped; the operation that emitted the
event never sees the error.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import TypeVar

from payroll_core.events.types import DomainEvent, EventCategory

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=DomainEvent)

EventHandler = Callable[[DomainEvent], None]


@dataclass(frozen=True)
class Subscription:
    handler: EventHandler
    event_types: frozenset[str] | None = None
    categories: frozenset[EventCategory] | None = None

    def matches(self, event: DomainEvent) -> bool:
        if self.event_types is not None and event.event_type not in self.event_types:
            return False
        return self.categories is None or event.category in self.categories


class EventEmitter:
    """Synchronous fan-out of domain events to subscribers.

    Usage:
        emitter = EventEmitter()
        emitter.on(CalculationCompleted, notify_reviewers)
        emitter.on_category(EventCategory.APPROVAL, audit_log)
        emitter.emit(event)

        # Hold events until the block finishes; dropped if it raises
        with emitter.deferred():
            emitter.emit(first)
            emitter.emit(second)
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._held: list[DomainEvent] | None = None

    def on(self, event_type: type[E] | list[type[E]], handler: EventHandler) -> None:
        types = event_type if isinstance(event_type, list) else [event_type]
        self._subscriptions.append(
            Subscription(handler, event_types=frozenset(t.__name__ for t in types))
        )

    def on_category(
        self, category: EventCategory | list[EventCategory], handler: EventHandler
    ) -> None:
        categories = category if isinstance(category, list) else [category]
        self._subscriptions.append(Subscription(handler, categories=frozenset(categories)))

    def on_all(self, handler: EventHandler) -> None:
        self._subscriptions.append(Subscription(handler))

    def off(self, handler: EventHandler) -> None:
        """Drop every subscription of ``handler``."""
        self._subscriptions = [s for s in self._subscriptions if s.handler is not handler]

    def emit(self, event: DomainEvent) -> list[Exception]:
        """Deliver ``event`` and return the errors raised by subscribers."""
        if self._held is not None:
            self._held.append(event)
            return []
        return self._deliver(event)

    @contextmanager
    def deferred(self) -> Iterator[list[DomainEvent]]:
        """Hold emitted events and deliver them in order when the block exits."""
        if self._held is not None:
            # Nested: the outer block delivers
            yield self._held
            return
        self._held = held = []
        try:
            yield held
        except BaseException:
            self._held = None
            raise
        self._held = None
        for event in held:
            self._deliver(event)

    def _deliver(self, event: DomainEvent) -> list[Exception]:
        errors: list[Exception] = []
        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            try:
                subscription.handler(event)
            except Exception as e:
                logger.exception(
                    "Subscriber %r failed on %s", subscription.handler, event.event_type
                )
                errors.append(e)
        return errors


class EventRecorder:
    """Subscriber that keeps every event it receives, in order."""

    def __init__(self) -> None:
        self.events: list[DomainEvent] = []

    def __call__(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: type[E]) -> list[E]:
        return [e for e in self.events if isinstance(e, event_type)]

    def types(self) -> list[str]:
        return [e.event_type for e in self.events]

    def clear(self) -> None:
        self.events.clear()
