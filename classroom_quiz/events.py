from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

LEADERBOARD_UPDATE = "leaderboard-update"
STORE_CHANGE = "store-change"

Callback = Callable[[str, Any], None]


class EventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[Callback]] = defaultdict(list)

    def subscribe(self, topic: str, callback: Callback) -> Callable[[], None]:
        """Register ``callback`` for ``topic``; returns a function that undoes it."""
        self._subscribers[topic].append(callback)
        return lambda: self.unsubscribe(topic, callback)

    def unsubscribe(self, topic: str, callback: Callback) -> None:
        if callback in self._subscribers.get(topic, []):
            self._subscribers[topic].remove(callback)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))

    def publish(self, topic: str, payload: Any) -> int:
        """Deliver ``payload`` to every subscriber of ``topic``; returns how many succeeded."""
        delivered = 0
        for callback in list(self._subscribers.get(topic, [])):
            try:
                callback(topic, payload)
                delivered += 1
            except Exception:
                logger.exception("Subscriber %r failed on %s", callback, topic)
        return delivered


event_bus = EventBus()


def get_event_bus() -> EventBus:
    return event_bus
