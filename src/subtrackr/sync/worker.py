"""Background sync task with retry backoff."""

import logging
import threading

from ..exceptions import SubTrackrError, SyncCancelledError, SyncUnavailableError
from ..models import MergeResult
from .engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncWorker:
    """
    Runs the sync engine on a background thread.

    Successful runs repeat every `interval` seconds. While the remote is
    unreachable the delay doubles from `backoff_initial` up to `backoff_max`.
    `trigger()` (e.g. on reconnect) wakes the worker early, and `stop()`
    cancels the engine at its next checkpoint.
    """

    def __init__(
        self,
        engine: SyncEngine,
        interval: float = 300.0,
        backoff_initial: float = 5.0,
        backoff_max: float = 600.0,
    ):
        self.engine = engine
        self.interval = interval
        self.backoff_initial = backoff_initial
        self.backoff_max = backoff_max
        self.failures = 0
        self.runs = 0
        self._stop = threading.Event()
        self._wake = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        """Start the background thread."""
        if self.running:
            return
        self._stop.clear()
        self.engine.reset_cancel()
        self._thread = threading.Thread(
            target=self._loop, name="subtrackr-sync", daemon=True
        )
        self._thread.start()
        logger.info("Background sync started")

    def stop(self, timeout: float | None = None):
        """Stop the worker, cancelling any run at its next checkpoint."""
        self._stop.set()
        self.engine.cancel()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Background sync stopped")

    def trigger(self):
        """Run a sync as soon as possible."""
        self._wake.set()

    def next_delay(self) -> float:
        """Seconds to wait before the next run."""
        if self.failures == 0:
            return self.interval
        delay = self.backoff_initial * 2 ** (self.failures - 1)
        return min(delay, self.backoff_max)

    def run_once(self) -> MergeResult | None:
        """Run one sync, absorbing errors that a later run may fix."""
        self.runs += 1
        try:
            result = self.engine.sync()
        except SyncCancelledError:
            return None
        except SyncUnavailableError as e:
            self.failures += 1
            logger.warning(
                f"Remote unavailable ({e}); retrying in {self.next_delay():.0f}s"
            )
            return None
        except SubTrackrError as e:
            self.failures += 1
            logger.error(f"Sync failed: {e}; retrying in {self.next_delay():.0f}s")
            return None

        self.failures = 0
        return result

    def _loop(self):
        while not self._stop.is_set():
            self.run_once()
            if self._stop.is_set():
                break
            self._wake.wait(self.next_delay())
            self._wake.clear()
