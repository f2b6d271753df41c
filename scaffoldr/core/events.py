"""Minimal lifecycle event bus.

Listeners are best-effort: a failing listener is logged and never interrupts
the pipeline that emitted the event.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

GENERATION_STARTED = "generation.started"
GENERATION_COMPLETED = "generation.completed"
GENERATION_FAILED = "generation.failed"
TEMPLATE_RESOLVED = "template.resolved"
CACHE_HIT = "cache.hit"
CACHE_MISS = "cache.miss"

EventListener = Callable[[str, dict[str, Any]], None]


class EventBus:
    def __init__(self) -> None:
        self._listeners: dict[str, list[EventListener]] = defaultdict(list)
        self._lock = threading.Lock()

    def on(self, event: str, listener: EventListener) -> None:
        with self._lock:
            self._listeners[event].append(listener)

    def off(self, event: str, listener: EventListener) -> None:
        with self._lock:
            if listener in self._listeners.get(event, []):
                self._listeners[event].remove(listener)

    def emit(self, event: str, **payload: Any) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event, [])) + list(
                self._listeners.get("*", [])
            )
        for listener in listeners:
            try:
                listener(event, payload)
            except Exception as exc:
                logger.warning(f"Event listener failed for {event}: {exc}")
