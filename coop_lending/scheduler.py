"""
Delinquency Sweep Scheduler

Runs the delinquency sweep on a background thread at a fixed interval
(hourly by default). Each run sweeps as of the current business date in the
configured timezone.
"""

import threading
from collections import deque
from datetime import date
from typing import Callable, Deque, Dict, Optional

from .logging_config import get_logger

logger = get_logger("scheduler")

HISTORY_SIZE = 24


class DelinquencySweeper:
    """Periodic driver for ``LendingService.run_delinquency_sweep``"""

    def __init__(
        self,
        service,
        interval_seconds: Optional[int] = None,
        today: Optional[Callable[[], date]] = None,
        history_size: int = HISTORY_SIZE
    ):
        self.service = service
        self.interval_seconds = interval_seconds or service.config.sweep_interval_seconds
        self._today = today or service.today
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.RLock()
        # Most recent results only
        self.history: Deque[Dict[str, int]] = deque(maxlen=history_size)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Dict[str, int]:
        """Sweep as of today and remember the result"""
        results = self.service.run_delinquency_sweep(self._today())
        self.history.append(results)
        return results

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_once()
            except Exception as e:
                logger.error(f"Delinquency sweep run failed: {e}", exc_info=True)
            self._stop_event.wait(self.interval_seconds)

    def start(self) -> None:
        """Start sweeping in the background; the first run happens immediately"""
        with self._lock:
            if self.running:
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._loop, name="delinquency-sweeper")
            self._thread.daemon = True
            self._thread.start()
            logger.info(f"DelinquencySweeper started (every {self.interval_seconds}s)")

    def stop(self, timeout: float = 5.0) -> None:
        with self._lock:
            if not self.running:
                return
            self._stop_event.set()
            self._thread.join(timeout=timeout)
            self._thread = None
            logger.info("DelinquencySweeper stopped")
