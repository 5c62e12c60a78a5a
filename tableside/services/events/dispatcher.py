"""
Event Dispatcher

Publish/subscribe for order lifecycle notifications.

Delivery is best-effort: ``publish`` awaits every handler currently
registered for the event's type (or one of its base classes) in
registration order. There is no queue and no replay; a handler that raises
is logged and skipped. Consumers treat events as hints to re-read the
store, never as the source of truth.

Usage:
    dispatcher = EventDispatcher()
    unsubscribe = dispatcher.subscribe(OrderUpdated, reconciler.apply_event)
    await dispatcher.publish(OrderUpdated(table_number=4, order_status="ready"))
"""

import inspect
import logging
from collections import defaultdict
from typing import Awaitable, Callable, Type, Union

from tableside.services.events.messages import Event

logger = logging.getLogger(__name__)

Handler = Callable[[Event], Union[None, Awaitable[None]]]


class EventDispatcher:
    """Owns the handler registry for one process."""

    def __init__(self, name: str = "default"):
        self.name = name
        self._handlers: dict[Type[Event], list[Handler]] = defaultdict(list)
        self._closed = False
        self.published = 0
        self.failures = 0

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def is_closed(self) -> bool:
        return self._closed

    def start(self) -> "EventDispatcher":
        """(Re)open the dispatcher for publishing."""
        self._closed = False
        logger.info(f"Event dispatcher '{self.name}' started")
        return self

    def close(self) -> None:
        """Drop every subscription and refuse further publishing."""
        self._handlers.clear()
        self._closed = True
        logger.info(f"Event dispatcher '{self.name}' closed")

    async def __aenter__(self) -> "EventDispatcher":
        return self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()

    # =========================================================================
    # SUBSCRIPTIONS
    # =========================================================================

    def subscribe(self, event_type: Type[Event], handler: Handler) -> Callable[[], None]:
        """
        Register ``handler`` for ``event_type`` and its subclasses.

        Returns:
            A callable that removes the subscription
        """
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            self.unsubscribe(event_type, handler)

        return unsubscribe

    def unsubscribe(self, event_type: Type[Event], handler: Handler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event_type: Type[Event]) -> int:
        return len(self._handlers.get(event_type, []))

    def _handlers_for(self, event: Event) -> list[Handler]:
        handlers: list[Handler] = []
        for cls in type(event).__mro__:
            handlers.extend(self._handlers.get(cls, []))
        return handlers

    # =========================================================================
    # PUBLISHING
    # =========================================================================

    async def publish(self, event: Event) -> int:
        """
        Deliver ``event`` to the current subscribers.

        Returns:
            int: Number of handlers that completed without raising
        """
        if self._closed:
            logger.warning(f"Dropped {event.topic} on closed dispatcher '{self.name}'")
            return 0

        self.published += 1
        delivered = 0
        for handler in self._handlers_for(event):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception:  # noqa: BLE001
                self.failures += 1
                logger.exception(f"Handler {getattr(handler, '__qualname__', handler)} failed for {event.topic}")

        logger.debug(f"{event.topic} delivered to {delivered} handler(s): {event.to_payload()}")
        return delivered

