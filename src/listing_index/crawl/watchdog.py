"""Hard wall-clock ceiling for a run.

A hung browser session can block the event loop forever, so the ceiling is
enforced from a daemon thread that kills the process outright. Being a
daemon, the timer never keeps the process alive after a clean exit.
"""

import logging
import os
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

EXIT_WATCHDOG = 124


def _hard_exit(code: int) -> None:
    logging.shutdown()
    os._exit(code)


class Watchdog:
    """Terminate the process if the run exceeds `timeout_seconds`."""

    def __init__(
        self,
        timeout_seconds: float,
        exit_code: int = EXIT_WATCHDOG,
        terminate: Callable[[int], None] = _hard_exit,
    ):
        self.timeout_seconds = timeout_seconds
        self.exit_code = exit_code
        self._terminate = terminate
        self._timer: threading.Timer | None = None
        self.fired = False

    def _expire(self) -> None:
        self.fired = True
        logger.critical(
            f"Run exceeded {self.timeout_seconds / 60:.1f} minute ceiling, "
            f"forcing exit with code {self.exit_code}"
        )
        self._terminate(self.exit_code)

    def start(self) -> "Watchdog":
        if self._timer is not None:
            raise RuntimeError("Watchdog already started")
        self._timer = threading.Timer(self.timeout_seconds, self._expire)
        self._timer.daemon = True
        self._timer.start()
        return self

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def __enter__(self) -> "Watchdog":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel()
