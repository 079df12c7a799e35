"""In-process publish/subscribe channels."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

DOMINANT_CHANGED = "dominant-changed"
EVENT_LOGGED = "event-logged"
TASK_ESCALATED = "task-escalated"
WEEKLY_RESET = "weekly-reset"

Listener = Callable[[Any], None]


class EventBus:
    """Synchronous event bus; listeners run in subscription order."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def subscribe(self, channel: str, listener: Listener) -> None:
        self._listeners[channel].append(listener)

    def unsubscribe(self, channel: str, listener: Listener) -> None:
        if channel in self._listeners:
            self._listeners[channel] = [l for l in self._listeners[channel] if l is not listener]

    def publish(self, channel: str, payload: Any = None) -> None:
        for listener in list(self._listeners.get(channel, [])):
            try:
                listener(payload)
            except Exception:  # noqa: BLE001
                logger.exception("Listener for %s failed", channel)
