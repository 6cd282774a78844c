"""
Readiness polling for background collaborators.

StatusPoller repeats a probe at a fixed interval until it succeeds. The
default is to poll forever: a collaborator that never becomes ready is not
treated as fatal. Two things end polling early:
- the background process has exited (is_alive returns False)
- an explicit max_attempts budget is exhausted (opt-in bounded retry)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from ..errors import BootstrapError

logger = logging.getLogger(__name__)


class StatusPoller:
    """Fixed-interval readiness poller.

    Attributes:
        probe: Returns True once the collaborator is ready
        interval: Seconds to sleep between attempts
        max_attempts: Attempt budget, None for no limit
        is_alive: Optional liveness check for the polled process
    """

    def __init__(
        self,
        probe: Callable[[], bool],
        interval: float = 1.0,
        max_attempts: int | None = None,
        is_alive: Callable[[], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.probe = probe
        self.interval = interval
        self.max_attempts = max_attempts
        self.is_alive = is_alive
        self._sleep = sleep

    def wait(self) -> int:
        """Block until probe() succeeds.

        Returns:
            Number of attempts it took.

        Raises:
            BootstrapError: If the process died or the attempt budget ran out.
        """
        attempts = 0
        while True:
            if self.is_alive is not None and not self.is_alive():
                raise BootstrapError(
                    "Background server exited before becoming ready", step="waiting_ready"
                )

            attempts += 1
            if self.probe():
                logger.info("Collaborator is ready", extra={"attempts": attempts})
                return attempts

            if self.max_attempts is not None and attempts >= self.max_attempts:
                raise BootstrapError(
                    f"Collaborator not ready after {attempts} attempts", step="waiting_ready"
                )

            logger.debug("Collaborator not ready yet", extra={"attempt": attempts})
            self._sleep(self.interval)
