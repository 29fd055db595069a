from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any


@dataclass
class InternalEvent:
    name: str
    payload: dict[str, Any]


EventHandler = Callable[[InternalEvent], None]


class InProcessEventBus:
    """Synchronous fan-out of named events.

    A subscription ending in ``.*`` (for example ``sales.quote.*``) receives
    every event under that prefix. ``*`` alone receives everything.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[EventHandler]] = defaultdict(list)

    def subscribe(self, pattern: str, handler: EventHandler) -> None:
        self._subscribers[pattern].append(handler)

    def unsubscribe(self, pattern: str, handler: EventHandler) -> None:
        handlers = self._subscribers.get(pattern, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        event = InternalEvent(name=event_name, payload=payload)
        for handler in self._handlers_for(event_name):
            handler(event)

    def _handlers_for(self, event_name: str) -> list[EventHandler]:
        matched: list[EventHandler] = []
        for pattern, handlers in list(self._subscribers.items()):
            if pattern == event_name or pattern == "*":
                matched.extend(handlers)
            elif pattern.endswith(".*") and event_name.startswith(pattern[:-1]):
                matched.extend(handlers)
        return matched


event_bus = InProcessEventBus()
