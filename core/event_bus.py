"""
Event bus for billing domain events.

Synchronous in-process pub/sub. Handlers execute immediately in the same
thread as the publisher. Handler errors are logged but never propagate:
the status change that produced the event has already committed.
"""

import logging
from typing import Callable, Dict, List

from core.events import BillingEvent

logger = logging.getLogger(__name__)


class EventBus:
    """
    In-process event bus for billing events.

    Subscribe by event class name, publish by event instance.
    Handlers are called synchronously in subscription order.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[Callable]] = {}

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """
        Subscribe to events of a specific type.

        Args:
            event_type: Name of event class (e.g. 'InvoiceSent')
            callback: Function called with the event instance
        """
        self._subscribers.setdefault(event_type, []).append(callback)

    def subscribe_many(self, event_types: list[str], callback: Callable) -> None:
        """Subscribe one callback to several event types."""
        for event_type in event_types:
            self.subscribe(event_type, callback)

    def publish(self, event: BillingEvent) -> None:
        """
        Publish an event to all subscribers of its type.

        Handler errors are logged with the event id and swallowed so one
        failing handler neither blocks the others nor the publisher.
        """
        event_type = event.__class__.__name__

        for callback in self._subscribers.get(event_type, []):
            try:
                callback(event)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s (event_id=%s)",
                    getattr(callback, "__name__", repr(callback)),
                    event_type,
                    event.event_id,
                )
