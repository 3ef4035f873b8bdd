"""Tests for poller.py - listing, diffing and snapshot handling."""

import threading
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError

from comfyui_bucket_watch.client import ListingPage
from comfyui_bucket_watch.exceptions import ConfigurationError, ListingError, ResolutionError
from comfyui_bucket_watch.poller import (
    BucketPoller,
    ChangeEvent,
    ChangeKind,
    WatchSettings,
    diff_keys,
    list_all_objects,
)
from comfyui_bucket_watch.profile import BucketPrecedence, StoreConnectionConfig
from comfyui_bucket_watch.reporting import PollerState
from comfyui_bucket_watch.resolver import ParameterBinding, ParameterSource

from conftest import FakeStore


def _poller(store, connection, pattern="", emit=None, **settings):
    return BucketPoller(
        WatchSettings(bucket=ParameterBinding("incoming"), file_pattern=pattern, **settings),
        connection,
        client_factory=lambda resolved: store,
        emit=emit,
    )


def _events(result):
    return [(e.kind.value, e.key) for e in result.events]


class TestDiffKeys:
    def test_adds_then_deletes(self):
        events = diff_keys(["a", "b", "c"], [{"Key": "b"}, {"Key": "c"}, {"Key": "d"}])
        assert [(e.kind, e.key) for e in events] == [
            (ChangeKind.ADD, "d"),
            (ChangeKind.DELETE, "a"),
        ]

    def test_deletes_follow_snapshot_order(self):
        events = diff_keys(["z", "a", "m"], [])
        assert [e.key for e in events] == ["z", "a", "m"]

    def test_adds_follow_listing_order_and_carry_metadata(self):
        listing = [{"Key": "y", "Size": 1}, {"Key": "x", "Size": 2}]
        events = diff_keys([], listing)
        assert [e.key for e in events] == ["y", "x"]
        assert events[1].metadata == {"Key": "x", "Size": 2}


class TestChangeEvent:
    def test_file_base_name(self):
        assert ChangeEvent("a/b/report.csv", ChangeKind.ADD).file_base_name == "report.csv"
        assert ChangeEvent("top.csv", ChangeKind.ADD).file_base_name == "top.csv"
        assert ChangeEvent("dir/", ChangeKind.ADD).file_base_name == ""

    def test_to_message_add(self):
        event = ChangeEvent("in/x.csv", ChangeKind.ADD, {"Key": "in/x.csv", "Size": 3})
        message = event.to_message("incoming", {"topic": "t"})
        assert message == {
            "topic": "t",
            "bucket": "incoming",
            "payload": "in/x.csv",
            "file": "x.csv",
            "event": "add",
            "data": {"Key": "in/x.csv", "Size": 3},
        }

    def test_to_message_delete_has_no_data(self):
        message = ChangeEvent("x.csv", ChangeKind.DELETE).to_message("incoming")
        assert message["event"] == "delete"
        assert "data" not in message

    def test_to_message_clones_trigger(self):
        trigger = {"nested": {"n": 1}}
        first = ChangeEvent("a", ChangeKind.ADD).to_message("b", trigger)
        second = ChangeEvent("c", ChangeKind.ADD).to_message("b", trigger)
        first["nested"]["n"] = 99
        assert second["nested"]["n"] == 1
        assert trigger == {"nested": {"n": 1}}


class TestListAllObjects:
    def test_concatenates_pages_and_chains_markers(self, fake_store):
        fake_store.queue_listing(["a", "b"], ["c", "d"], ["e", "f"])
        objects = list_all_objects(fake_store, "incoming")
        assert [o["Key"] for o in objects] == ["a", "b", "c", "d", "e", "f"]
        assert [call[1] for call in fake_store.list_calls] == [None, "b", "d"]

    def test_prefers_next_marker(self):
        store = MagicMock()
        store.list_objects.side_effect = [
            ListingPage(objects=[{"Key": "a"}], is_truncated=True, next_marker="zz"),
            ListingPage(objects=[{"Key": "b"}]),
        ]
        list_all_objects(store, "incoming", prefix="p/")
        assert store.list_objects.call_args_list[1].kwargs == {"marker": "zz", "prefix": "p/"}

    def test_page_failure_raises_listing_error(self, fake_store):
        fake_store.queue_listing(["a", "b"], RuntimeError("connection reset"), ["e"])
        with pytest.raises(ListingError, match="connection reset") as excinfo:
            list_all_objects(fake_store, "incoming")
        assert isinstance(excinfo.value.__cause__, RuntimeError)

    def test_client_error_is_described(self, fake_store):
        fake_store.queue_listing(
            ClientError({"Error": {"Code": "NoSuchBucket", "Message": "incoming"}}, "ListObjects")
        )
        with pytest.raises(ListingError, match="Bucket not found"):
            list_all_objects(fake_store, "incoming")

    def test_truncated_page_without_marker_fails(self):
        store = MagicMock()
        store.list_objects.return_value = ListingPage(objects=[], is_truncated=True)
        with pytest.raises(ListingError, match="continuation marker"):
            list_all_objects(store, "incoming")


class TestPoll:
    def test_first_poll_seeds_without_events(self, fake_store, connection):
        fake_store.queue_listing(["a", "b", "c"])
        emitted = []
        poller = _poller(fake_store, connection, emit=emitted.append)
        result = poller.poll()
        assert result.ok
        assert result.seeded is True
        assert result.events == []
        assert emitted == []
        assert poller.snapshot == ["a", "b", "c"]
        assert poller.state is PollerState.IDLE

    def test_unchanged_bucket_emits_nothing(self, fake_store, connection):
        fake_store.queue_listing(["a", "b"])
        fake_store.queue_listing(["a", "b"])
        fake_store.queue_listing(["a", "b"])
        poller = _poller(fake_store, connection)
        poller.poll()
        assert poller.poll().events == []
        assert poller.poll().events == []

    def test_add_and_delete(self, fake_store, connection):
        fake_store.queue_listing(["a", "b", "c"])
        fake_store.queue_listing(["b", "c", "d"])
        emitted = []
        poller = _poller(fake_store, connection, emit=emitted.append)
        poller.poll()
        result = poller.poll({"topic": "watch"})
        assert _events(result) == [("add", "d"), ("delete", "a")]
        assert [m["event"] for m in emitted] == ["add", "delete"]
        assert emitted[0]["payload"] == "d"
        assert emitted[0]["data"]["Key"] == "d"
        assert emitted[0]["bucket"] == "incoming"
        assert emitted[0]["topic"] == "watch"
        assert poller.snapshot == ["b", "c", "d"]

    def test_filter_hides_non_matching_keys(self, fake_store, connection):
        fake_store.queue_listing(["sales.csv"])
        fake_store.queue_listing(["sales.csv", "report.json"])
        fake_store.queue_listing(["sales.csv", "report.json", "q2.csv"])
        poller = _poller(fake_store, connection, pattern="*.csv")
        poller.poll()
        assert poller.poll().events == []
        assert "report.json" not in poller.snapshot
        assert _events(poller.poll()) == [("add", "q2.csv")]

    def test_pagination_and_failed_page_keeps_baseline(self, fake_store, connection):
        fake_store.queue_listing(["a", "b"], ["c", "d"], ["e", "f"])
        fake_store.queue_listing(["a", "b"], RuntimeError("timeout"), ["e", "f"])
        poller = _poller(fake_store, connection)
        first = poller.poll()
        assert first.key_count == 6
        failed = poller.poll()
        assert isinstance(failed.error, ListingError)
        assert failed.events == []
        assert poller.snapshot == ["a", "b", "c", "d", "e", "f"]

    def test_failure_does_not_distort_next_cycle(self, fake_store, connection):
        fake_store.queue_listing(["a", "b"])
        fake_store.queue_listing(RuntimeError("boom"))
        fake_store.queue_listing(["a", "b", "c"])
        emitted = []
        poller = _poller(fake_store, connection, emit=emitted.append)
        poller.poll()
        assert poller.poll().error is not None
        assert poller.state is PollerState.IDLE
        result = poller.poll()
        assert _events(result) == [("add", "c")]
        assert [m["payload"] for m in emitted] == ["c"]

    def test_failure_before_seeding_leaves_poller_unseeded(self, fake_store, connection):
        fake_store.queue_listing(RuntimeError("boom"))
        fake_store.queue_listing(["a"])
        poller = _poller(fake_store, connection)
        poller.poll()
        assert poller.seeded is False
        result = poller.poll()
        assert result.seeded is True
        assert result.events == []

    def test_errors_are_reported(self, fake_store, connection):
        fake_store.queue_listing(RuntimeError("boom"))
        reporter = MagicMock()
        poller = BucketPoller(
            WatchSettings(bucket=ParameterBinding("incoming")),
            connection,
            client_factory=lambda resolved: fake_store,
            reporter=reporter,
        )
        result = poller.poll({"id": 7})
        reporter.error.assert_called_once_with(result.error, {"id": 7})
        assert result.error.trigger == {"id": 7}
        states = [c.args[0] for c in reporter.status.call_args_list]
        assert states == [PollerState.UNINITIALIZED, PollerState.LISTING, PollerState.ERROR]

    def test_missing_bucket_is_configuration_error(self, fake_store, connection):
        poller = BucketPoller(
            WatchSettings(bucket=ParameterBinding("bucket", ParameterSource.MESSAGE)),
            connection,
            client_factory=lambda resolved: fake_store,
        )
        result = poller.poll({})
        assert isinstance(result.error, ConfigurationError)
        assert fake_store.list_calls == []
        assert poller.seeded is False

    def test_missing_region_is_configuration_error(self, fake_store):
        poller = _poller(fake_store, StoreConnectionConfig())
        result = poller.poll()
        assert isinstance(result.error, ConfigurationError)
        assert "Region" in str(result.error)

    def test_resolution_failure_is_reported(self, fake_store, connection):
        poller = BucketPoller(
            WatchSettings(bucket=ParameterBinding("a..b", ParameterSource.MESSAGE)),
            connection,
            client_factory=lambda resolved: fake_store,
        )
        result = poller.poll({"a": {}})
        assert isinstance(result.error, ResolutionError)
        assert result.error.source == "msg"

    def test_bucket_and_credentials_from_trigger(self, fake_store):
        seen = []
        connection = StoreConnectionConfig(
            region=ParameterBinding("us-east-1"),
            access_key_id=ParameterBinding("creds.id", ParameterSource.MESSAGE),
            secret_access_key=ParameterBinding("creds.secret", ParameterSource.MESSAGE),
        )

        def factory(resolved):
            seen.append(resolved)
            return fake_store

        poller = BucketPoller(
            WatchSettings(
                bucket=ParameterBinding("fallback"),
                bucket_precedence=BucketPrecedence.MESSAGE_FIRST,
            ),
            connection,
            client_factory=factory,
        )
        poller.poll({"bucket": "other", "creds": {"id": "AK", "secret": "SK"}})
        assert fake_store.list_calls[0][0] == "other"
        assert seen[0].access_key_id == "AK"
        assert seen[0].secret_access_key == "SK"

    def test_prefix_is_passed_to_listing(self, fake_store, connection):
        poller = _poller(fake_store, connection, prefix="reports/")
        poller.poll()
        assert fake_store.list_calls[0] == ("incoming", None, "reports/")

    def test_closed_poller_skips(self, fake_store, connection):
        poller = _poller(fake_store, connection)
        poller.close()
        result = poller.poll()
        assert result.skipped
        assert fake_store.list_calls == []
        assert poller.state is PollerState.CLOSED


class TestConcurrency:
    def test_concurrent_triggers_are_serialized(self, connection):
        release = threading.Event()
        started = threading.Event()

        def slow_page():
            started.set()
            release.wait(timeout=5)

        store = FakeStore(page_delay=slow_page)
        store.queue_listing(["a"])
        store.queue_listing(["a", "b"])
        store.queue_listing(["b", "c"])
        emitted = []
        poller = _poller(store, connection, emit=emitted.append)
        release.set()
        poller.poll()
        release.clear()
        started.clear()

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(poller.poll()))
            for _ in range(2)
        ]
        for thread in threads:
            thread.start()
        started.wait(timeout=5)
        release.set()
        for thread in threads:
            thread.join(timeout=5)

        assert store.max_in_flight == 1
        assert len(results) == 2
        assert [m["payload"] for m in emitted] == ["b", "c", "a"]
        assert [m["event"] for m in emitted] == ["add", "add", "delete"]
        assert poller.snapshot == ["b", "c"]
