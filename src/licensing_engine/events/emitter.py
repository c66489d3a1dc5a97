"""In-process publisher for licensing domain events.

Subscribers are matched by event class, by category, or receive
everything. They are awaited one at a time in subscription order, since
they normally write through the publisher's own database session. A
subscriber that raises is logged and counted; the remaining subscribers
still run and the publishing operation is not failed.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from licensing_engine.events.types import DomainEvent, EventCategory
from licensing_engine.metrics import metrics

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=DomainEvent)

Handler = Callable[[Any], "Awaitable[None] | None"]


@dataclass(frozen=True)
class Subscription:
    """One subscriber and the events it wants.

    Empty `event_names` and `categories` mean "every event".
    """

    handler: Handler
    event_names: frozenset[str] = frozenset()
    categories: frozenset[EventCategory] = frozenset()

    def wants(self, event: DomainEvent) -> bool:
        if self.event_names and event.event_type not in self.event_names:
            return False
        if self.categories and event.category not in self.categories:
            return False
        return True


def _as_set(value: Any) -> frozenset:
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(value)
    return frozenset([value])


class AsyncEventEmitter:
    """Publishes domain events to subscribers.

    Usage:
        emitter = AsyncEventEmitter()

        async def notify(event: PaymentRecorded) -> None:
            await alerts.trigger_payment_received(...)

        emitter.on(PaymentRecorded, notify)
        errors = await emitter.emit(event)
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []

    def on(self, event_type: type[E] | Iterable[type[E]], handler: Handler) -> None:
        """Subscribe to one event class or a list of them."""
        names = frozenset(cls.__name__ for cls in _as_set(event_type))
        self._subscriptions.append(Subscription(handler, event_names=names))

    def on_category(
        self, category: EventCategory | Iterable[EventCategory], handler: Handler
    ) -> None:
        """Subscribe to every event in the given category(ies)."""
        self._subscriptions.append(Subscription(handler, categories=_as_set(category)))

    def on_all(self, handler: Handler) -> None:
        self._subscriptions.append(Subscription(handler))

    def off(self, handler: Handler) -> None:
        """Drop every subscription made with this exact handler object."""
        self._subscriptions = [s for s in self._subscriptions if s.handler is not handler]

    async def emit(self, event: DomainEvent) -> list[Exception]:
        """Deliver `event` to matching subscribers.

        Returns the exceptions raised by subscribers, in delivery order.
        """
        failures: list[Exception] = []
        for subscription in [s for s in self._subscriptions if s.wants(event)]:
            try:
                outcome = subscription.handler(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                logger.exception(
                    "Subscriber %r failed on %s (event %s)",
                    subscription.handler,
                    event.event_type,
                    event.metadata.event_id,
                )
                metrics.increment("side_effect_failures_total", operation=f"event:{event.event_type}")
                failures.append(exc)
        return failures
