import logging
import threading
from collections import defaultdict
from typing import Callable

logger = logging.getLogger(__name__)

RECORDS_UPDATED = "records:updated"


class EventBus:
    """Named in-process notifications between screens.

    The intake flow emits ``records:updated`` after a visit record is stored;
    lookup and analytics views subscribe to refetch.
    """

    def __init__(self):
        self._listeners = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, name: str, callback: Callable[..., None]) -> Callable[[], None]:
        with self._lock:
            self._listeners[name].append(callback)

        def unsubscribe():
            with self._lock:
                try:
                    self._listeners[name].remove(callback)
                except ValueError:
                    pass

        return unsubscribe

    def emit(self, name: str, **payload) -> int:
        """Call every listener of ``name``; returns how many were called."""
        with self._lock:
            listeners = list(self._listeners.get(name, ()))
        for callback in listeners:
            try:
                callback(**payload)
            except Exception:
                logger.exception("Listener for %s failed", name)
        return len(listeners)

    def listener_count(self, name: str) -> int:
        with self._lock:
            return len(self._listeners.get(name, ()))
