"""
Lifecycle events published by the auction state machine

The state machine publishes one ``LifecycleEvent`` per committed transition.
Consumers (realtime rooms, notifications) subscribe to the bus; a failing
consumer is logged and never affects the transition or the other consumers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List
import threading

from ..core.logging import get_logger, event_log_level
from ..enums.auction import AuctionEventType
from ..utils.clock import utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class LifecycleEvent:
    type: AuctionEventType
    post_id: int
    post_title: str
    owner_id: int
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def closes_chat(self) -> bool:
        """True for transitions that end the auction for good"""
        return self.type in (AuctionEventType.SOLD, AuctionEventType.AUCTION_ENDED)


EventHandler = Callable[[LifecycleEvent], None]


class EventBus:
    def __init__(self):
        self._lock = threading.Lock()
        self._handlers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> None:
        with self._lock:
            if handler not in self._handlers:
                self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def clear(self) -> None:
        with self._lock:
            self._handlers.clear()

    def publish(self, event: LifecycleEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)

        logger.log(
            event_log_level(),
            f"Publishing {event.type.value} for post {event.post_id} to {len(handlers)} handler(s)",
            extra={"event": event.type.value, "post_id": event.post_id},
        )
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Lifecycle event handler {handler!r} failed for {event.type.value} on post {event.post_id}: {e}",
                    exc_info=True,
                    extra={"event": "lifecycle_handler_failed", "post_id": event.post_id},
                )


event_bus = EventBus()
