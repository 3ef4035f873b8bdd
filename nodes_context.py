"""Message and context nodes - build trigger messages, set flow/global variables."""

import json
import logging

from comfy_api.latest import io

from .nodes_profile import S3_MESSAGE_TYPE
from .resolver import DEFAULT_FLOW, flow_context, global_context

logger = logging.getLogger(__name__)


def parse_message(text: str) -> dict:
    """Parse a JSON object into a message dict; blank text is an empty message."""
    if not text or not text.strip():
        return {}
    try:
        message = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Message is not valid JSON: {e}") from e
    if not isinstance(message, dict):
        raise ValueError("Message JSON must be an object, e.g. {\"bucket\": \"my-bucket\"}")
    return message


class BuildMessage(io.ComfyNode):
    @classmethod
    def define_schema(cls) -> io.Schema:
        return io.Schema(
            node_id="BucketWatchBuildMessage",
            display_name="Build S3 Message",
            category="bucket_watch",
            description=(
                "Build a message from JSON. Fields such as bucket, filename or payload "
                "feed nodes whose settings read from the message."
            ),
            inputs=[
                io.String.Input(
                    "message_json",
                    default="{}",
                    multiline=True,
                    tooltip='e.g. {"bucket": "incoming", "filename": "reports/today.csv"}',
                ),
                io.String.Input(
                    "payload",
                    default="",
                    multiline=True,
                    tooltip="Optional text payload; overrides any payload in the JSON.",
                    optional=True,
                ),
            ],
            outputs=[
                io.Custom(S3_MESSAGE_TYPE).Output(display_name="message"),
            ],
        )

    @classmethod
    def execute(cls, message_json="{}", payload="") -> io.NodeOutput:
        message = parse_message(message_json)
        if payload:
            message["payload"] = payload
        return io.NodeOutput(message)


class SetContextVariable(io.ComfyNode):
    @classmethod
    def define_schema(cls) -> io.Schema:
        return io.Schema(
            node_id="BucketWatchSetContextVariable",
            display_name="Set Context Variable",
            category="bucket_watch",
            description="Store a value in a flow or global variable for 'flow'/'global' settings.",
            inputs=[
                io.Combo.Input("scope", options=["flow", "global"], default="flow"),
                io.String.Input("key", default=""),
                io.String.Input(
                    "value",
                    default="",
                    tooltip="Empty value removes the variable.",
                ),
                io.String.Input("flow_name", default=DEFAULT_FLOW, optional=True),
                io.Custom(S3_MESSAGE_TYPE).Input(
                    "message",
                    optional=True,
                    tooltip="Passed through unchanged so the variable is set before downstream nodes run.",
                ),
            ],
            outputs=[
                io.Custom(S3_MESSAGE_TYPE).Output(display_name="message"),
            ],
            not_idempotent=True,
        )

    @classmethod
    def execute(cls, scope, key, value, flow_name=DEFAULT_FLOW, message=None) -> io.NodeOutput:
        if not key:
            raise ValueError("Context variable key is required")
        store = global_context() if scope == "global" else flow_context(flow_name or DEFAULT_FLOW)
        store.set(key, value if value != "" else None)
        logger.debug("Set %s variable %s", scope, key)
        return io.NodeOutput(message if message is not None else {})
