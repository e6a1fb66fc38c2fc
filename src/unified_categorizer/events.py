from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from unified_categorizer.logger import get_logger

logger = get_logger(__name__)

READY = "ready"
BATCH_COMPLETE = "batch-complete"
CONFIG_UPDATED = "config-updated"

EventCallback = Callable[[Any], None]


@dataclass(frozen=True)
class Event:
    name: str
    payload: Any
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventBus:
    """
    In-process publish/subscribe sink.

    The engine only publishes. Subscribers are notified synchronously in
    subscription order and a failing subscriber never affects the publisher
    or the other subscribers.
    """

    def __init__(self, history_size: int = 100) -> None:
        self._listeners: dict[str, list[EventCallback]] = {}
        self._history: deque[Event] = deque(maxlen=history_size)

    def subscribe(self, name: str, callback: EventCallback) -> Callable[[], None]:
        self._listeners.setdefault(name, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._listeners.get(name)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def publish(self, name: str, payload: Any = None) -> None:
        self._history.append(Event(name=name, payload=payload))
        for callback in list(self._listeners.get(name, ())):
            try:
                callback(payload)
            except Exception:
                logger.exception("[EVENTS] Subscriber for '%s' failed.", name)
        logger.debug("[EVENTS] Published '%s'.", name)

    def recent(self, count: int = 10) -> list[Event]:
        if count <= 0:
            return []
        return list(self._history)[-count:]

    def clear(self) -> None:
        self._listeners.clear()
        self._history.clear()
