"""Load node - download an object, or a pre-signed URL for it."""

import logging

from comfy_api.latest import io

from .handlers import DEFAULT_URL_EXPIRATION, ObjectRequest, handle_get
from .nodes_profile import S3_CONNECTION_TYPE, S3_MESSAGE_TYPE, source_input
from .profile import PRECEDENCE_NAMES, BucketPrecedence, resolve_default_connection
from .resolver import DEFAULT_FLOW, ParameterBinding

logger = logging.getLogger(__name__)


def payload_text(payload) -> str:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload).decode("utf-8", errors="replace")
    return "" if payload is None else str(payload)


class GetObjectFromBucket(io.ComfyNode):
    @classmethod
    def define_schema(cls) -> io.Schema:
        return io.Schema(
            node_id="BucketWatchGetObject",
            display_name="Get Object from Bucket",
            category="bucket_watch",
            description=(
                "Download an object from S3-compatible storage into the message payload, "
                "or generate a time-limited URL for it instead."
            ),
            search_aliases=["s3 get", "download object", "presigned", "share link"],
            inputs=[
                io.String.Input("bucket", default="", tooltip="Bucket name, or where to read it from."),
                source_input("bucket"),
                io.String.Input(
                    "filename",
                    default="",
                    tooltip="Object key. Falls back to the message's 'filename' field.",
                ),
                io.Boolean.Input(
                    "create_signed_url",
                    default=False,
                    tooltip="Return a pre-signed URL instead of the object's bytes.",
                    optional=True,
                ),
                io.Int.Input(
                    "url_expiration",
                    default=DEFAULT_URL_EXPIRATION,
                    min=1,
                    max=7 * 24 * 3600,
                    tooltip="Pre-signed URL lifetime in seconds (max 7 days).",
                    optional=True,
                ),
                io.Boolean.Input(
                    "return_buffer",
                    default=True,
                    tooltip="Keep the payload as bytes; off decodes it as UTF-8 text.",
                    optional=True,
                ),
                io.Combo.Input(
                    "bucket_precedence",
                    options=PRECEDENCE_NAMES,
                    default=BucketPrecedence.CONFIGURED_FIRST.value,
                    optional=True,
                ),
                io.String.Input("flow_name", default=DEFAULT_FLOW, optional=True),
                io.Custom(S3_CONNECTION_TYPE).Input("connection", optional=True),
                io.Custom(S3_MESSAGE_TYPE).Input("message", optional=True),
            ],
            outputs=[
                io.Custom(S3_MESSAGE_TYPE).Output(display_name="message"),
                io.String.Output(display_name="payload"),
            ],
            not_idempotent=True,
        )

    @classmethod
    def execute(
        cls,
        bucket,
        filename,
        bucket_type="str",
        create_signed_url=False,
        url_expiration=DEFAULT_URL_EXPIRATION,
        return_buffer=True,
        bucket_precedence=BucketPrecedence.CONFIGURED_FIRST.value,
        flow_name=DEFAULT_FLOW,
        connection=None,
        message=None,
    ) -> io.NodeOutput:
        request = ObjectRequest(
            bucket=ParameterBinding.of(bucket, bucket_type),
            filename=filename,
            bucket_precedence=BucketPrecedence(bucket_precedence),
            flow_name=flow_name or DEFAULT_FLOW,
        )
        result = handle_get(
            request,
            connection or resolve_default_connection(),
            message,
            create_signed_url=create_signed_url,
            url_expiration=url_expiration,
            return_buffer=return_buffer,
        )
        return io.NodeOutput(result, payload_text(result["payload"]))
