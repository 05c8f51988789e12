# vera_sync/services/lifecycle.py
import logging
import signal
import threading

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class GracefulShutdown:
    """
    Turns SIGINT/SIGTERM into a stop flag that the batch loops and the
    listener check between items, so in-flight work finishes cleanly.
    """

    def __init__(self):
        self._event = threading.Event()
        self._previous = {}

    def __call__(self) -> bool:
        return self.requested

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def request(self, reason: str = "requested") -> None:
        if not self._event.is_set():
            logger.info("Shutdown requested", extra={"reason": reason})
        self._event.set()

    def install(self):
        for sig in SHUTDOWN_SIGNALS:
            self._previous[sig] = signal.signal(sig, self._handle)
        return self

    def restore(self) -> None:
        for sig, handler in self._previous.items():
            signal.signal(sig, handler)
        self._previous.clear()

    def _handle(self, signum, frame):
        self.request(signal.Signals(signum).name)

    def __enter__(self):
        return self.install()

    def __exit__(self, exc_type, exc, tb):
        self.restore()
        return False
