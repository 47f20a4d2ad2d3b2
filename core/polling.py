import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class Poller:
    """Re-run ``fetch`` every ``interval`` seconds on a daemon thread.

    The latest result is kept on ``latest``; ``refresh_now`` wakes the thread
    early (used for change notifications) and ``cancel`` stops it for good.
    """

    def __init__(
        self,
        fetch: Callable[[], Any],
        interval: float,
        on_result: Optional[Callable[[Any], None]] = None,
        name: str = "poller",
    ):
        if interval <= 0:
            raise ValueError("Polling interval must be positive.")
        self._fetch = fetch
        self.interval = interval
        self._on_result = on_result
        self._name = name
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.latest: Any = None
        self.last_error: Optional[BaseException] = None
        self.runs = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> "Poller":
        if self._stop.is_set():
            raise RuntimeError("Poller was cancelled; create a new one.")
        if not self.running:
            self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
            self._thread.start()
        return self

    def refresh_now(self, **_ignored) -> None:
        self._wake.set()

    def cancel(self, timeout: Optional[float] = 1.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def poll_once(self) -> Any:
        """Run one fetch synchronously and publish its result."""
        try:
            result = self._fetch()
        except Exception as e:
            logger.warning("%s fetch failed: %s", self._name, e)
            with self._lock:
                self.last_error = e
            return None
        with self._lock:
            self.latest = result
            self.last_error = None
            self.runs += 1
        if self._on_result is not None:
            try:
                self._on_result(result)
            except Exception:
                logger.exception("%s result callback failed", self._name)
        return result

    def _loop(self) -> None:
        # A poll_once() made before start() counts as the first run
        fetched = self.runs > 0
        while not self._stop.is_set():
            if not fetched:
                self.poll_once()
            fetched = False
            self._wake.wait(self.interval)
            self._wake.clear()
