"""Recurring poll timer with an optional startup delay."""

import logging
import threading
from typing import Optional

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_POLLING_INTERVAL = 900  # seconds


class PollScheduler:
    """Calls ``poller.poll()`` after ``startup_delay`` and then every ``interval``.

    ``stop()`` cancels whatever wait is pending, so no poll starts afterwards.
    """

    def __init__(
        self,
        poller,
        interval: float = DEFAULT_POLLING_INTERVAL,
        startup_delay: float = 0.0,
        name: str = "",
    ) -> None:
        if interval <= 0:
            raise ConfigurationError(f"Polling interval must be positive, got {interval}")
        if startup_delay < 0:
            raise ConfigurationError(f"Startup delay cannot be negative, got {startup_delay}")
        self.poller = poller
        self.interval = interval
        self.startup_delay = startup_delay
        self.name = name
        self._stopped = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stopped.is_set()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run,
            name=f"bucket-watch-{self.name or id(self)}",
            daemon=True,
        )
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stopped.set()
        thread = self._thread
        if timeout is not None and thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def _run(self) -> None:
        if self._stopped.wait(self.startup_delay):
            return
        while not self._stopped.is_set():
            self._tick()
            if self._stopped.wait(self.interval):
                return

    def _tick(self) -> None:
        try:
            self.poller.poll()
        except Exception:
            # poll() reports its own failures; this only catches emit callbacks
            logger.exception("Scheduled poll for %s failed", self.name or "watch")
