import logging
import threading

from collections import defaultdict
from typing import Callable, Dict, List

EVENTS = (
    "start",
    "progress",
    "paused",
    "resumed",
    "canceled",
    "error",
    "completed",
    "converted",
    "remux_progress",
)


class EventEmitter:
    """
    A small callback registry. Handlers run synchronously in the thread that emits, one event at a time per emitter,
    so listeners of a job always see its events in order. A failing handler is logged and never breaks the download.
    """
    def __init__(self, logger: logging.Logger = None):
        self._handlers: Dict[str, List[Callable]] = defaultdict(list)
        self._emit_lock = threading.RLock()
        self._handlers_lock = threading.Lock()
        self.logger = logger or logging.getLogger(__name__)

    @staticmethod
    def _check(event: str):
        if event not in EVENTS:
            raise ValueError(f"Unknown event: {event!r}. Available events: {', '.join(EVENTS)}")

    def on(self, event: str, handler: Callable) -> Callable:
        self._check(event)
        with self._handlers_lock:
            self._handlers[event].append(handler)

        return handler

    def off(self, event: str, handler: Callable) -> None:
        self._check(event)
        with self._handlers_lock:
            try:
                self._handlers[event].remove(handler)

            except ValueError:
                pass

    def emit(self, event: str, *args) -> None:
        with self._handlers_lock:
            handlers = list(self._handlers.get(event, ()))

        with self._emit_lock:
            for handler in handlers:
                try:
                    handler(*args)

                except Exception as e:
                    self.logger.exception(f"Handler {handler!r} for event '{event}' raised: {e}")
