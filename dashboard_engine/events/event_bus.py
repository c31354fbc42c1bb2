"""
Ouvidoria Dashboard — Event Bus
────────────────────────────────
Process-wide publish/subscribe keyed by event name.

Listeners fire synchronously, in registration order, inside emit().
A listener that raises is logged and skipped; emit() itself never raises.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

log = logging.getLogger("dash.event_bus")

Listener = Callable[[Any], None]


class EventBus:

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._listeners: Dict[str, List[Listener]] = {}
        self.log = logger or log

    def on(self, event: str, callback: Listener) -> Callable[[], None]:
        """Register `callback` for `event`. Returns an idempotent unsubscribe."""
        self._listeners.setdefault(event, []).append(callback)
        done = False

        def unsubscribe():
            nonlocal done
            if done:
                return
            done = True
            callbacks = self._listeners.get(event)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._listeners[event]

        return unsubscribe

    def emit(self, event: str, data: Any = None) -> int:
        """Deliver `data` to every listener of `event`. Returns listeners called."""
        called = 0
        for callback in list(self._listeners.get(event, ())):
            called += 1
            try:
                callback(data)
            except Exception as e:
                self.log.error(f"Listener error on '{event}': {e!r}", exc_info=True)
        return called

    def off(self, event: str):
        self._listeners.pop(event, None)

    def clear(self):
        self._listeners.clear()

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def get_events(self) -> List[str]:
        return list(self._listeners)
