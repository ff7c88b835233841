"""Publish-subscribe event bus for calibration events."""
from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], None]

WILDCARD = "*"

MESH_DIGITIZED = "mesh.digitized"
MESH_MENDED = "mesh.mended"
MESH_IMPORTED = "mesh.imported"
CALIBRATION_EVENTS = (MESH_DIGITIZED, MESH_MENDED, MESH_IMPORTED)


class EventBus:
    def __init__(self, keep_history: bool = False, history_limit: Optional[int] = 1000):
        self._subscribers: dict[str, list[EventHandler]] = {}
        self._keep_history = keep_history
        self._history: deque = deque(maxlen=history_limit)

    def subscribe(self, event: str, handler: EventHandler) -> None:
        self._subscribers.setdefault(event, []).append(handler)

    def unsubscribe(self, event: str, handler: EventHandler) -> None:
        if event in self._subscribers:
            self._subscribers[event] = [
                h for h in self._subscribers[event] if h is not handler
            ]

    def emit(self, event: str, data: dict) -> None:
        """Deliver *data* to the handlers of *event*, then to wildcard handlers.

        A failing handler is logged and does not stop delivery to the rest.
        """
        if self._keep_history:
            self._history.append({
                "event": event,
                "data": data,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            })

        handlers = list(self._subscribers.get(event, []))
        handlers.extend(self._subscribers.get(WILDCARD, []))

        for handler in handlers:
            try:
                handler(data)
            except Exception:
                logger.exception("Event handler error for %s", event)

    def get_history(self, event: Optional[str] = None) -> list:
        if event is None:
            return list(self._history)
        return [r for r in self._history if r["event"] == event]

    def clear_history(self) -> None:
        self._history.clear()
