"""In-memory event bus for domain notifications.

Distributes published events to handlers registered in the same process.
Handler failures are isolated and logged: a failing subscriber never
breaks the core operation that published the event.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

from shopcore.events import ShopEvent
from shopcore.observability import Tracer, create_tracer
from shopcore.observability.attributes import (
    ATTR_DOCUMENT_ID,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_COUNT,
    ATTR_HANDLER_NAME,
    ATTR_HANDLER_SUCCESS,
)

logger = logging.getLogger(__name__)

EventHandler = Callable[[ShopEvent], Awaitable[None] | None]


@runtime_checkable
class EventPublisher(Protocol):
    """Anything services can publish notifications to."""

    async def publish(self, events: list[ShopEvent]) -> None: ...


class _Subscription:
    """A handler normalized to an async callable, compared by identity."""

    def __init__(self, handler: Any) -> None:
        if hasattr(handler, "handle"):
            self._call = handler.handle
            self.name = handler.__class__.__name__
        elif callable(handler):
            self._call = handler
            self.name = getattr(handler, "__name__", repr(handler))
        else:
            raise TypeError(
                f"Handler must have a handle() method or be callable, got {type(handler)}"
            )
        self.original = handler

    async def handle(self, event: ShopEvent) -> None:
        result = self._call(event)
        if inspect.isawaitable(result):
            await result

    def matches(self, handler: Any) -> bool:
        return self.original is handler


class InMemoryEventBus:
    """
    In-memory event bus for notification distribution.

    Features:
    - Thread-safe subscription management
    - Sync and async handlers (callables or objects with handle())
    - Wildcard subscriptions (receive all events)
    - Error isolation (handler failures don't stop other handlers)

    Example:
        >>> bus = InMemoryEventBus()
        >>> bus.subscribe(PaymentCompleted, send_receipt)
        >>> await bus.publish([PaymentCompleted(...)])
    """

    def __init__(
        self,
        *,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._subscribers: dict[type[ShopEvent], list[_Subscription]] = defaultdict(list)
        self._all_event_handlers: list[_Subscription] = []
        self._lock = threading.RLock()
        self._stats = {
            "events_published": 0,
            "handlers_invoked": 0,
            "handler_errors": 0,
        }
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._enable_tracing = self._tracer.enabled

    async def publish(self, events: list[ShopEvent]) -> None:
        """
        Publish events to all registered subscribers, in order.

        Handler failures are logged but don't prevent other handlers from running.
        """
        for event in events:
            await self._dispatch_event(event)
            self._stats["events_published"] += 1

    async def _dispatch_event(self, event: ShopEvent) -> None:
        event_type = type(event)

        with self._lock:
            handlers = list(self._subscribers.get(event_type, [])) + list(
                self._all_event_handlers
            )

        if not handlers:
            logger.debug(
                "No handlers registered for event type: %s",
                event_type.__name__,
                extra={"event_type": event_type.__name__},
            )
            return

        with self._tracer.span(
            "shopcore.event_bus.dispatch",
            {
                ATTR_EVENT_TYPE: event_type.__name__,
                ATTR_EVENT_ID: str(event.event_id),
                ATTR_DOCUMENT_ID: str(event.aggregate_id),
                ATTR_HANDLER_COUNT: len(handlers),
            },
        ):
            await asyncio.gather(
                *(self._safe_handle(handler, event) for handler in handlers),
                return_exceptions=True,
            )

    async def _safe_handle(self, subscription: _Subscription, event: ShopEvent) -> None:
        with self._tracer.span(
            "shopcore.event_bus.handle",
            {
                ATTR_EVENT_TYPE: type(event).__name__,
                ATTR_EVENT_ID: str(event.event_id),
                ATTR_HANDLER_NAME: subscription.name,
            },
        ) as span:
            try:
                await subscription.handle(event)
                if span:
                    span.set_attribute(ATTR_HANDLER_SUCCESS, True)
                self._stats["handlers_invoked"] += 1
            except Exception as e:
                if span:
                    span.set_attribute(ATTR_HANDLER_SUCCESS, False)
                    span.record_exception(e)
                self._stats["handler_errors"] += 1
                logger.error(
                    "Handler %s failed processing %s: %s",
                    subscription.name,
                    type(event).__name__,
                    e,
                    exc_info=True,
                    extra={
                        "handler": subscription.name,
                        "event_type": type(event).__name__,
                        "event_id": str(event.event_id),
                    },
                )

    def subscribe(self, event_type: type[ShopEvent], handler: EventHandler | Any) -> None:
        """Subscribe a handler to a specific event type."""
        subscription = _Subscription(handler)
        with self._lock:
            self._subscribers[event_type].append(subscription)

        logger.info(
            "Registered handler %s for %s",
            subscription.name,
            event_type.__name__,
            extra={"handler": subscription.name, "event_type": event_type.__name__},
        )

    def unsubscribe(self, event_type: type[ShopEvent], handler: EventHandler | Any) -> bool:
        """
        Unsubscribe a handler from a specific event type.

        Returns:
            True if the handler was found and removed, False otherwise
        """
        with self._lock:
            subscriptions = self._subscribers.get(event_type, [])
            for i, subscription in enumerate(subscriptions):
                if subscription.matches(handler):
                    subscriptions.pop(i)
                    return True
        return False

    def subscribe_to_all_events(self, handler: EventHandler | Any) -> None:
        """Subscribe a handler to every event type (wildcard subscription)."""
        subscription = _Subscription(handler)
        with self._lock:
            self._all_event_handlers.append(subscription)

        logger.info(
            "Registered wildcard handler %s",
            subscription.name,
            extra={"handler": subscription.name},
        )

    def clear_subscribers(self) -> None:
        """Remove every subscription."""
        with self._lock:
            self._subscribers.clear()
            self._all_event_handlers.clear()

    def get_stats(self) -> dict[str, int]:
        """
        Get statistics about event bus operation.

        Returns:
            Dictionary with counts:
            - events_published: Total events published
            - handlers_invoked: Total successful handler invocations
            - handler_errors: Total handler errors
        """
        return dict(self._stats)


__all__ = ["InMemoryEventBus", "EventPublisher", "EventHandler"]
