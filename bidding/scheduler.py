import logging
import threading
from typing import Optional
from database import SessionLocal
from . import settings
from .models import SweepResult
from .sweeper import run_status_sweep

logger = logging.getLogger(__name__)


class StatusScheduler:
    """Runs the status sweep on a fixed interval."""

    def __init__(self, session_factory=None, publisher=None, interval_seconds: float = settings.SWEEP_INTERVAL_SECONDS):
        self.session_factory = session_factory or SessionLocal
        self.publisher = publisher
        self.interval_seconds = interval_seconds
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return not self._stop_event.is_set()

    def run_once(self) -> Optional[SweepResult]:
        """
        One tick. Failures are logged and left for the next tick; both bulk
        updates are idempotent so a partial tick is safe to repeat.
        """
        db = self.session_factory()
        try:
            return run_status_sweep(db, publisher=self.publisher)
        except Exception as e:
            logger.error(f"Error in status sweep: {e}", exc_info=True)
            return None
        finally:
            db.close()

    def run_loop(self):
        """Main scheduler loop. Returns after stop()."""
        self._stop_event.clear()
        logger.info(f"Status scheduler started (every {self.interval_seconds}s)")

        while not self._stop_event.is_set():
            try:
                self.run_once()
            except KeyboardInterrupt:
                logger.info("Status scheduler interrupted")
                break
            self._stop_event.wait(self.interval_seconds)

        logger.info("Status scheduler stopped")

    def start_background(self) -> threading.Thread:
        """Run the loop on a daemon thread."""
        self._stop_event.clear()
        self._thread = threading.Thread(target=self.run_loop, name="status-scheduler", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None):
        """Stop the scheduler loop and wait for the background thread, if any."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"Status scheduler thread did not stop within {timeout}s")
            else:
                self._thread = None
