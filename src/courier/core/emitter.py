"""Synchronous event emitter shared by attempts, engines and adapters."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable

Listener = Callable[..., Any]


class EventEmitter:
    """
    Minimal ordered listener registry.

    Listeners run synchronously in registration order. Event names are
    normalized with ``str()`` so that ``str`` Enums and their values are
    interchangeable.

    Example:
        emitter = EventEmitter()
        emitter.on(EventType.RETRY, lambda count, error: print(count))
        emitter.emit(EventType.RETRY, 1, error)
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    @staticmethod
    def _key(event: Any) -> str:
        return event.value if hasattr(event, "value") else str(event)

    def on(self, event: Any, listener: Listener) -> EventEmitter:
        """Register a listener for every emission of ``event``."""
        self._listeners[self._key(event)].append(listener)
        return self

    def once(self, event: Any, listener: Listener) -> EventEmitter:
        """Register a listener that is removed after its first call."""

        def wrapper(*args: Any) -> Any:
            self.off(event, wrapper)
            return listener(*args)

        return self.on(event, wrapper)

    def off(self, event: Any, listener: Listener) -> EventEmitter:
        listeners = self._listeners.get(self._key(event))
        if listeners and listener in listeners:
            listeners.remove(listener)
        return self

    def listener_count(self, event: Any) -> int:
        return len(self._listeners.get(self._key(event), ()))

    def emit(self, event: Any, *args: Any) -> bool:
        """
        Call every listener of ``event`` with ``args``.

        Returns:
            True if at least one listener was registered
        """
        listeners = self._listeners.get(self._key(event))
        if not listeners:
            return False
        for listener in list(listeners):
            listener(*args)
        return True

    def clear(self) -> None:
        self._listeners.clear()
