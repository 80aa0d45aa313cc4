"""
Process-wide event bus with two named topics.

`contacts-updated` is fired by the Contact Store after every persisted
mutation; `app-toast` carries user-visible messages from any component.
Subscribers must tolerate repeated firings.
"""

import asyncio
import inspect
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from outreach.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class Topic(str, Enum):
    CONTACTS_UPDATED = "contacts-updated"
    APP_TOAST = "app-toast"


@dataclass(slots=True)
class Toast:
    """User-visible message; `on_action` backs the optional action button (e.g. Undo)."""

    message: str
    type: str = "info"  # info | success | warning | error
    action_label: str | None = None
    duration_ms: int = 6000
    on_action: Callable[[], Any] | None = None


@dataclass(slots=True)
class ContactsUpdated:
    user_id: str | None
    operation: str
    keys: list[str] = field(default_factory=list)


Handler = Callable[[Any], Any]


class Subscription:
    """Disposable handle returned by `EventBus.subscribe`."""

    def __init__(self, bus: "EventBus", topic: Topic, handler: Handler):
        self._bus = bus
        self.topic = topic
        self.handler = handler
        self.active = True

    def dispose(self) -> None:
        if self.active:
            self._bus._remove(self)
            self.active = False

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()


class EventBus:
    """Typed pub/sub; async handlers are scheduled on the running loop."""

    def __init__(self):
        self._subscriptions: dict[Topic, list[Subscription]] = {topic: [] for topic in Topic}
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, topic: Topic, handler: Handler) -> Subscription:
        subscription = Subscription(self, Topic(topic), handler)
        self._subscriptions[subscription.topic].append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscriptions[subscription.topic]
        if subscription in subscribers:
            subscribers.remove(subscription)

    def subscriber_count(self, topic: Topic) -> int:
        return len(self._subscriptions[Topic(topic)])

    def publish(self, topic: Topic, payload: Any = None) -> int:
        """Deliver `payload` to every current subscriber. Returns the number notified."""
        topic = Topic(topic)
        delivered = 0

        for subscription in list(self._subscriptions[topic]):
            try:
                result = subscription.handler(payload)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._on_handler_done)
                delivered += 1
            except Exception as e:
                logger.error(
                    "Event handler failed",
                    topic=topic.value,
                    handler=getattr(subscription.handler, "__name__", repr(subscription.handler)),
                    error=str(e),
                )

        logger.debug("Event published", topic=topic.value, subscribers=delivered)
        return delivered

    def _on_handler_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Async event handler failed", error=str(error))

    async def drain(self) -> None:
        """Wait for async handlers scheduled so far."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def toast(
        self,
        message: str,
        type: str = "info",
        action_label: str | None = None,
        on_action: Callable[[], Any] | None = None,
        duration_ms: int = 6000,
    ) -> Toast:
        """Publish an `app-toast` and return it."""
        toast = Toast(
            message=message,
            type=type,
            action_label=action_label,
            duration_ms=duration_ms,
            on_action=on_action,
        )
        self.publish(Topic.APP_TOAST, toast)
        return toast


# Global instance
event_bus = EventBus()
