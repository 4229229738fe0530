from collections import defaultdict
from typing import Any, Callable, Dict, List

import structlog

logger = structlog.get_logger(__name__)

Listener = Callable[..., Any]


class EventEmitter:
    """
    Per-instance publish/subscribe. Each component owns its listener table,
    so two queues (or managers) never see each other's events.
    """

    def __init__(self):
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)

    def on(self, event: str, listener: Listener) -> Listener:
        self._listeners[event].append(listener)
        return listener

    def off(self, event: str, listener: Listener) -> bool:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)
            return True
        return False

    def emit(self, event: str, *args: Any) -> int:
        """Calls every listener for event; a failing listener is logged and skipped."""
        listeners = list(self._listeners.get(event, []))
        for listener in listeners:
            try:
                listener(*args)
            except Exception:
                logger.exception("Event listener failed", event=event)
        return len(listeners)
