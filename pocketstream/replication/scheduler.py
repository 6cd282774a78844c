"""
Recurring background tasks.

A ScheduledTask runs a callback every `interval` seconds on its own daemon
thread for the rest of the process lifetime. There is no cancellation: once
started, a task is fire-and-forget. A failing callback is logged and the
next run happens on schedule; nothing is retried early.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Fixed-interval recurring callback on a dedicated worker thread.

    Attributes:
        name: Task name used for the thread and log records
        interval: Seconds between runs
        callback: Work to run each interval
        runs: Completed runs (successful or not)
        failures: Runs whose callback raised
    """

    def __init__(
        self,
        name: str,
        interval: float,
        callback: Callable[[], object],
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.name = name
        self.interval = interval
        self.callback = callback
        self.runs = 0
        self.failures = 0
        self._sleep = sleep
        self._thread: threading.Thread | None = None

    @property
    def started(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        """Start the worker thread. Starting twice is a no-op."""
        if self._thread is not None:
            logger.warning(f"Scheduled task {self.name} already running")
            return

        self._thread = threading.Thread(
            target=self._loop, name=f"pocketstream-{self.name}", daemon=True
        )
        self._thread.start()
        logger.info(
            "Scheduled task started", extra={"task": self.name, "interval_seconds": self.interval}
        )

    def tick(self) -> bool:
        """Run the callback once, logging any failure.

        Returns:
            True if the callback completed without raising.
        """
        self.runs += 1
        try:
            self.callback()
        except Exception as e:
            self.failures += 1
            logger.warning(f"Scheduled task {self.name} failed: {e}")
            return False
        logger.debug("Scheduled task completed", extra={"task": self.name})
        return True

    def _loop(self) -> None:
        while True:
            self._sleep(self.interval)
            self.tick()
