"""
Live watches behind the Watch Bucket node.

The host executes a node only when a workflow runs, but a watch must keep
polling between runs. Each watch node id owns one ``Watch``: a poller, its
scheduler and a queue of messages produced by timer-driven polls, drained the
next time the node executes.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from .client import create_store_client
from .poller import BucketPoller, PollResult, WatchSettings
from .profile import StoreConnectionConfig
from .reporting import LoggingStatusReporter
from .scheduler import DEFAULT_POLLING_INTERVAL, PollScheduler

logger = logging.getLogger(__name__)

MAX_PENDING_MESSAGES = 1000


@dataclass(frozen=True)
class WatchSpec:
    """Everything that, when changed, requires a fresh poller."""

    settings: WatchSettings
    connection: StoreConnectionConfig
    interval: float = DEFAULT_POLLING_INTERVAL
    startup_delay: float = 0.0


class Watch:
    def __init__(
        self,
        watch_id: str,
        spec: WatchSpec,
        client_factory: Optional[Callable] = None,
        pending: Iterable[dict] = (),
    ) -> None:
        self.watch_id = watch_id
        self.spec = spec
        self.reporter = LoggingStatusReporter(watch_id)
        self._pending: deque = deque(pending)
        self._pending_lock = threading.Lock()
        self.poller = BucketPoller(
            spec.settings,
            spec.connection,
            client_factory=client_factory or create_store_client,
            emit=self._enqueue,
            reporter=self.reporter,
            name=watch_id,
        )
        self.scheduler = PollScheduler(
            self.poller,
            interval=spec.interval,
            startup_delay=spec.startup_delay,
            name=watch_id,
        )

    @property
    def status(self) -> str:
        return self.reporter.last_status

    def start(self) -> None:
        self.scheduler.start()

    def close(self) -> None:
        self.scheduler.stop()
        self.poller.close()

    def trigger(self, message: Optional[dict] = None) -> tuple[list[dict], PollResult]:
        """Poll now and return every message queued since the last drain.

        On failure nothing is drained, so queued messages survive until the
        next successful trigger.
        """
        result = self.poller.poll(message or {})
        if not result.ok:
            return [], result
        return self.drain(), result

    def drain(self) -> list[dict]:
        with self._pending_lock:
            messages = list(self._pending)
            self._pending.clear()
        return messages

    def _enqueue(self, message: dict) -> None:
        with self._pending_lock:
            if len(self._pending) >= MAX_PENDING_MESSAGES:
                dropped = self._pending.popleft()
                logger.warning(
                    "Watch %s queue full, dropping %s event for %s",
                    self.watch_id, dropped.get("event"), dropped.get("payload"),
                )
            self._pending.append(message)


class WatchRegistry:
    def __init__(self, client_factory: Optional[Callable] = None) -> None:
        self._client_factory = client_factory
        self._watches: dict[str, Watch] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._watches)

    def get(self, watch_id: str) -> Optional[Watch]:
        with self._lock:
            return self._watches.get(watch_id)

    def ensure(self, watch_id: str, spec: WatchSpec) -> Watch:
        """Return the running watch for ``watch_id``, restarting it if ``spec`` changed."""
        with self._lock:
            watch = self._watches.get(watch_id)
            if watch is not None and watch.spec == spec:
                return watch
            carried: list[dict] = []
            if watch is not None:
                logger.info("Settings for watch %s changed, restarting it", watch_id)
                watch.close()
                # events already found by timer polls stay queued for the next run
                carried = watch.drain()
            watch = Watch(watch_id, spec, client_factory=self._client_factory, pending=carried)
            self._watches[watch_id] = watch
            watch.start()
            return watch

    def remove(self, watch_id: str) -> None:
        with self._lock:
            watch = self._watches.pop(watch_id, None)
        if watch is not None:
            watch.close()

    def shutdown(self) -> None:
        with self._lock:
            watches = list(self._watches.values())
            self._watches.clear()
        for watch in watches:
            watch.close()
        if watches:
            logger.info("Stopped %d bucket watch(es)", len(watches))


registry = WatchRegistry()
