"""Watch node - report objects added to or removed from a bucket."""

import json
import logging

from comfy_api.latest import io

from .nodes_profile import S3_CONNECTION_TYPE, S3_MESSAGE_TYPE, S3_MESSAGES_TYPE, source_input
from .poller import WatchSettings
from .profile import PRECEDENCE_NAMES, BucketPrecedence, resolve_default_connection
from .resolver import DEFAULT_FLOW, ParameterBinding
from .scheduler import DEFAULT_POLLING_INTERVAL
from . import watchers

logger = logging.getLogger(__name__)


def messages_to_json(messages: list[dict]) -> str:
    return json.dumps(messages, default=str, indent=2)


class WatchBucket(io.ComfyNode):
    @classmethod
    def define_schema(cls) -> io.Schema:
        return io.Schema(
            node_id="BucketWatchWatchBucket",
            display_name="Watch Bucket",
            category="bucket_watch",
            description=(
                "Poll an S3-compatible bucket and emit one message per added or deleted key. "
                "The first poll records the current contents without emitting anything."
            ),
            search_aliases=["s3 watch", "bucket poll", "s3 changes", "new files"],
            inputs=[
                io.String.Input("bucket", default="", tooltip="Bucket name, or where to read it from."),
                source_input("bucket"),
                io.String.Input(
                    "file_pattern",
                    default="",
                    tooltip="Glob filter on keys, e.g. '**/*.csv'. Non-matching keys are ignored entirely.",
                    optional=True,
                ),
                io.String.Input(
                    "prefix",
                    default="",
                    tooltip="Only list keys starting with this prefix.",
                    optional=True,
                ),
                io.Int.Input(
                    "polling_interval",
                    default=DEFAULT_POLLING_INTERVAL,
                    min=1,
                    max=7 * 24 * 3600,
                    tooltip="Seconds between background polls.",
                    optional=True,
                ),
                io.Int.Input(
                    "startup_delay",
                    default=0,
                    min=0,
                    max=24 * 3600,
                    tooltip="Seconds to wait before the first background poll.",
                    optional=True,
                ),
                io.Combo.Input(
                    "bucket_precedence",
                    options=PRECEDENCE_NAMES,
                    default=BucketPrecedence.CONFIGURED.value,
                    tooltip="Whether a 'bucket' field on the trigger message may override the setting.",
                    optional=True,
                ),
                io.String.Input("flow_name", default=DEFAULT_FLOW, optional=True),
                io.Custom(S3_CONNECTION_TYPE).Input(
                    "connection",
                    optional=True,
                    tooltip="S3 connection. Uses env vars if not connected.",
                ),
                io.Custom(S3_MESSAGE_TYPE).Input(
                    "message",
                    optional=True,
                    tooltip="Trigger message; its fields are copied onto every emitted event.",
                ),
            ],
            outputs=[
                io.Custom(S3_MESSAGES_TYPE).Output(display_name="events"),
                io.String.Output(display_name="events_json"),
                io.Int.Output(display_name="event_count"),
            ],
            hidden=[io.Hidden.unique_id],
            not_idempotent=True,
        )

    @classmethod
    def execute(
        cls,
        bucket,
        bucket_type="str",
        file_pattern="",
        prefix="",
        polling_interval=DEFAULT_POLLING_INTERVAL,
        startup_delay=0,
        bucket_precedence=BucketPrecedence.CONFIGURED.value,
        flow_name=DEFAULT_FLOW,
        connection=None,
        message=None,
    ) -> io.NodeOutput:
        spec = watchers.WatchSpec(
            settings=WatchSettings(
                bucket=ParameterBinding.of(bucket, bucket_type),
                file_pattern=file_pattern,
                prefix=prefix,
                bucket_precedence=BucketPrecedence(bucket_precedence),
                flow_name=flow_name or DEFAULT_FLOW,
            ),
            connection=connection or resolve_default_connection(),
            interval=polling_interval,
            startup_delay=startup_delay,
        )
        watch_id = str(cls.hidden.unique_id)
        watch = watchers.registry.ensure(watch_id, spec)

        messages, result = watch.trigger(message)
        if result.error is not None:
            raise result.error

        return io.NodeOutput(
            messages,
            messages_to_json(messages),
            len(messages),
            ui={"text": [watch.status]},
        )
