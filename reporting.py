"""Status and error reporting for pollers."""

import logging
from enum import Enum
from typing import Optional, Protocol

logger = logging.getLogger(__name__)


class PollerState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LISTING = "listing"
    IDLE = "idle"
    ERROR = "error"
    CLOSED = "closed"


STATUS_INITIALIZING = "initializing"
STATUS_CHECKING = "checking for changes"
STATUS_ERROR = "error"


def monitoring_text(count: int) -> str:
    return f"monitoring {count} file{'' if count == 1 else 's'}"


class StatusReporter(Protocol):
    def status(self, state: PollerState, text: str) -> None:
        ...

    def error(self, exc: BaseException, trigger: Optional[dict] = None) -> None:
        ...


class LoggingStatusReporter:
    """Default sink: writes lifecycle changes and errors to the log.

    Keeps the last status text so the host can show it on the node.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self.last_status = STATUS_INITIALIZING
        self.last_error: Optional[str] = None

    def status(self, state: PollerState, text: str) -> None:
        self.last_status = text
        logger.debug("%s: %s (%s)", self.name or "watch", text, state.value)

    def error(self, exc: BaseException, trigger: Optional[dict] = None) -> None:
        self.last_error = str(exc)
        if trigger:
            logger.error("%s: %s (trigger: %s)", self.name or "watch", exc, sorted(trigger))
        else:
            logger.error("%s: %s", self.name or "watch", exc)
