# ==============================================================================
#                  © 2025 Dedalus Labs, Inc. and affiliates
#                            Licensed under MIT
#               github.com/dedalus-labs/openmcp-python/LICENSE
# ==============================================================================

"""In-process publish/subscribe channel for child output.

Every message decoded from the child's stdout, plus a :class:`ProcessExited`
event whenever the child ends, is published here.  Delivery is synchronous and
in subscription order, so subscribers observe events exactly in the order the
child produced them.  Nothing is buffered for late subscribers.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from itertools import count

from .types import BusEvent
from .utils import get_logger


Subscriber = Callable[[BusEvent], None]

_SUBSCRIPTION_IDS = count(1)


@dataclass(eq=False, slots=True)
class Subscription:
    """Handle returned by :meth:`MessageBus.subscribe`."""

    callback: Subscriber
    bus: "MessageBus"
    token: int = field(default_factory=lambda: next(_SUBSCRIPTION_IDS))

    @property
    def active(self) -> bool:
        return self.bus.is_subscribed(self)

    def cancel(self) -> None:
        self.bus.unsubscribe(self)


class MessageBus:
    """Ordered fan-out of bus events to registered callbacks."""

    def __init__(self) -> None:
        self._subscribers: dict[int, Subscription] = {}
        self._logger = get_logger("mcpbridge.bus")

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Subscriber) -> Subscription:
        subscription = Subscription(callback=callback, bus=self)
        self._subscribers[subscription.token] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove *subscription*; safe to call twice or from inside a callback."""
        self._subscribers.pop(subscription.token, None)

    def is_subscribed(self, subscription: Subscription) -> bool:
        return self._subscribers.get(subscription.token) is subscription

    def publish(self, event: BusEvent) -> None:
        for subscription in list(self._subscribers.values()):
            # Skip subscribers removed by an earlier callback in this same pass.
            if not self.is_subscribed(subscription):
                continue
            try:
                subscription.callback(event)
            except Exception:
                self._logger.exception("Bus subscriber %s raised; continuing delivery", subscription.token)


__all__ = ["MessageBus", "Subscriber", "Subscription"]
