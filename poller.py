"""
Bucket snapshot poller.

Each cycle lists the whole bucket, keeps the keys that pass the watch's glob
filter and diffs them against the snapshot retained from the last successful
cycle. Every new key becomes an "add" message and every vanished key a
"delete" message. The first successful cycle only records the baseline.

The snapshot belongs to one poller and is only written inside ``poll`` while
the poll lock is held, so a timer tick and an on-demand trigger can never
interleave their listings. A failed cycle leaves the snapshot untouched.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from .client import ObjectStoreClient, create_store_client, describe_client_error
from .exceptions import BucketWatchError, ListingError
from .matcher import KeyMatcher
from .profile import BucketPrecedence, StoreConnectionConfig, resolve_bucket
from .reporting import (
    STATUS_CHECKING,
    STATUS_ERROR,
    STATUS_INITIALIZING,
    LoggingStatusReporter,
    PollerState,
    StatusReporter,
    monitoring_text,
)
from .resolver import DEFAULT_FLOW, EvaluationContext, ParameterBinding

logger = logging.getLogger(__name__)


class ChangeKind(str, Enum):
    ADD = "add"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    key: str
    kind: ChangeKind
    metadata: Optional[dict] = None  # raw listing entry, adds only

    @property
    def file_base_name(self) -> str:
        return self.key[self.key.rfind("/") + 1:]

    def to_message(self, bucket: str, trigger: Optional[dict] = None) -> dict:
        """Clone the trigger message and describe this change on it."""
        message = copy.deepcopy(trigger) if trigger else {}
        message["bucket"] = bucket
        message["payload"] = self.key
        message["file"] = self.file_base_name
        message["event"] = self.kind.value
        if self.kind is ChangeKind.ADD:
            message["data"] = self.metadata
        return message


@dataclass(frozen=True)
class WatchSettings:
    bucket: ParameterBinding
    file_pattern: str = ""
    prefix: str = ""
    bucket_precedence: BucketPrecedence = BucketPrecedence.CONFIGURED
    flow_name: str = DEFAULT_FLOW


@dataclass
class PollResult:
    bucket: Optional[str] = None
    events: list[ChangeEvent] = field(default_factory=list)
    messages: list[dict] = field(default_factory=list)
    seeded: bool = False  # True when this cycle recorded the first baseline
    key_count: int = 0
    error: Optional[BaseException] = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.skipped


def list_all_objects(store: ObjectStoreClient, bucket: str, prefix: str = "") -> list[dict]:
    """Fetch every page of a listing, in order.

    Raises ListingError if any page fails; nothing is returned for a
    partial listing.
    """
    contents: list[dict] = []
    marker = None
    while True:
        try:
            page = store.list_objects(bucket, marker=marker, prefix=prefix)
        except Exception as e:
            raise ListingError(
                f"Failed to fetch listing of bucket {bucket}: {describe_client_error(e)}"
            ) from e
        contents.extend(page.objects)
        if not page.is_truncated:
            return contents
        next_marker = page.next_marker or (page.objects[-1]["Key"] if page.objects else None)
        if not next_marker or next_marker == marker:
            raise ListingError(
                f"Listing of bucket {bucket} is truncated but gives no continuation marker"
            )
        marker = next_marker


def diff_keys(previous: list[str], current: list[dict]) -> list[ChangeEvent]:
    """Adds in listing order, then deletes in snapshot order."""
    remaining = dict.fromkeys(previous)
    events = []
    for obj in current:
        key = obj["Key"]
        if key in remaining:
            del remaining[key]
        else:
            events.append(ChangeEvent(key, ChangeKind.ADD, obj))
    events.extend(ChangeEvent(key, ChangeKind.DELETE) for key in remaining)
    return events


class BucketPoller:
    def __init__(
        self,
        settings: WatchSettings,
        connection: StoreConnectionConfig,
        client_factory: Optional[Callable] = None,
        emit: Optional[Callable[[dict], None]] = None,
        reporter: Optional[StatusReporter] = None,
        name: str = "",
    ) -> None:
        self.settings = settings
        self.connection = connection
        self.name = name
        self._client_factory = client_factory or create_store_client
        self._emit = emit
        self._reporter = reporter or LoggingStatusReporter(name)
        self._matcher = KeyMatcher(settings.file_pattern)
        self._lock = threading.Lock()
        self._snapshot: list[str] = []
        self._seeded = False
        self._closed = False
        self._state = PollerState.UNINITIALIZED
        self._reporter.status(self._state, STATUS_INITIALIZING)

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def seeded(self) -> bool:
        return self._seeded

    @property
    def snapshot(self) -> list[str]:
        return list(self._snapshot)

    def poll(self, trigger: Optional[dict] = None) -> PollResult:
        """Run one cycle. Errors are reported and returned, not raised."""
        trigger = trigger if trigger is not None else {}
        with self._lock:
            if self._closed:
                logger.debug("Poller %s is closed, skipping poll", self.name)
                return PollResult(skipped=True)
            return self._poll_locked(trigger)

    def close(self) -> None:
        """Stop accepting polls. A cycle already running completes."""
        self._closed = True
        self._set_state(PollerState.CLOSED, "closed")

    def _poll_locked(self, trigger: dict) -> PollResult:
        self._set_state(PollerState.LISTING, STATUS_CHECKING)
        context = EvaluationContext.for_message(trigger, self.settings.flow_name)

        try:
            bucket = resolve_bucket(self.settings.bucket, context, self.settings.bucket_precedence)
            # botocore rejects malformed endpoints with ValueError
            store = self._client_factory(self.connection.resolve(context))
        except (BucketWatchError, ValueError) as e:
            return self._fail(e, trigger)

        try:
            objects = list_all_objects(store, bucket, self.settings.prefix)
        except ListingError as e:
            return self._fail(e, trigger, bucket)

        current = self._matcher.filter_objects(objects)
        keys = [obj["Key"] for obj in current]
        first_cycle = not self._seeded
        events = [] if first_cycle else diff_keys(self._snapshot, current)

        self._snapshot = keys
        self._seeded = True
        self._set_state(PollerState.IDLE, monitoring_text(len(keys)))

        if first_cycle:
            logger.info("Watching s3://%s: baseline of %d keys", bucket, len(keys))
        elif events:
            added = sum(1 for e in events if e.kind is ChangeKind.ADD)
            logger.info(
                "s3://%s changed: %d added, %d deleted",
                bucket, added, len(events) - added,
            )

        messages = [event.to_message(bucket, trigger) for event in events]
        if self._emit is not None:
            for message in messages:
                self._emit(message)

        return PollResult(
            bucket=bucket,
            events=events,
            messages=messages,
            seeded=first_cycle,
            key_count=len(keys),
        )

    def _fail(self, exc: BaseException, trigger: dict, bucket: Optional[str] = None) -> PollResult:
        if isinstance(exc, BucketWatchError) and exc.trigger is None:
            exc.trigger = trigger
        self._set_state(PollerState.ERROR, STATUS_ERROR)
        self._reporter.error(exc, trigger)
        # the error stays visible in the status text until the next cycle
        self._state = PollerState.IDLE
        return PollResult(bucket=bucket, error=exc)

    def _set_state(self, state: PollerState, text: str) -> None:
        if self._closed and state is not PollerState.CLOSED:
            return
        self._state = state
        self._reporter.status(state, text)
