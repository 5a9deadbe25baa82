"""
core/events.py -- Fire-and-forget notification bus.

Events emitted by gatehouse: login, logout, register, failedLogin, magicLogin.
A listener that raises is logged and skipped; it never fails the auth
operation that emitted the event.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger("gatehouse.events")

Listener = Callable[..., Any]


class EventBus:
    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> None:
        self._listeners[event].append(listener)

    def off(self, event: str, listener: Listener) -> None:
        if listener in self._listeners.get(event, []):
            self._listeners[event].remove(listener)

    def emit(self, event: str, *args: Any, **kwargs: Any) -> None:
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(*args, **kwargs)
            except Exception:
                logger.exception("Listener %r for event %r failed", listener, event)
