"""Save node - upload a local file, the message payload, or images to a bucket."""

import io as io_stdlib
import logging

import numpy as np
from PIL import Image

from comfy_api.latest import io

from .handlers import ObjectRequest, handle_upload
from .nodes_profile import S3_CONNECTION_TYPE, S3_MESSAGE_TYPE, source_input
from .profile import PRECEDENCE_NAMES, BucketPrecedence, resolve_default_connection
from .resolver import DEFAULT_FLOW, ParameterBinding

logger = logging.getLogger(__name__)

MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "webp": "image/webp",
}


def _tensor_to_image_bytes(image_tensor, fmt="png", quality=95) -> bytes:
    """Convert a single (H, W, C) float image tensor to encoded bytes."""
    i = 255.0 * image_tensor.cpu().numpy()
    img = Image.fromarray(np.clip(i, 0, 255).astype(np.uint8))

    buf = io_stdlib.BytesIO()
    if fmt == "png":
        img.save(buf, format="PNG", compress_level=4)
    elif fmt == "jpg":
        img.save(buf, format="JPEG", quality=quality)
    elif fmt == "webp":
        img.save(buf, format="WEBP", quality=quality)
    else:
        raise ValueError(f"Unsupported image format: {fmt}")
    return buf.getvalue()


def _batch_key(filename: str, batch_idx: int) -> str:
    return filename.replace("%batch_num%", str(batch_idx))


class PutObjectToBucket(io.ComfyNode):
    @classmethod
    def define_schema(cls) -> io.Schema:
        return io.Schema(
            node_id="BucketWatchPutObject",
            display_name="Put Object to Bucket",
            category="bucket_watch",
            description=(
                "Upload to S3-compatible storage. A local file wins over images, "
                "and images win over the message payload."
            ),
            search_aliases=["s3 put", "upload object", "s3 upload"],
            inputs=[
                io.String.Input("bucket", default="", tooltip="Bucket name, or where to read it from."),
                source_input("bucket"),
                io.String.Input(
                    "filename",
                    default="",
                    tooltip="Object key. %batch_num% is replaced per image. Falls back to the message's 'filename'.",
                ),
                io.String.Input(
                    "local_filename",
                    default="",
                    tooltip="Path of a local file to upload. Falls back to the message's 'localFilename'.",
                    optional=True,
                ),
                io.String.Input(
                    "content_type",
                    default="",
                    tooltip="Defaults to the message's 'contentType', then application/octet-stream.",
                    optional=True,
                ),
                io.Boolean.Input(
                    "always_emit",
                    default=False,
                    tooltip="Pass the message on even when there was nothing to upload.",
                    optional=True,
                ),
                io.Image.Input("images", optional=True, tooltip="Images to upload, one object per batch item."),
                io.Combo.Input("image_format", options=["png", "jpg", "webp"], default="png", optional=True),
                io.Int.Input(
                    "quality",
                    default=95,
                    min=1,
                    max=100,
                    tooltip="JPEG/WebP quality (ignored for PNG).",
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
            ],
            is_output_node=True,
        )

    @classmethod
    def execute(
        cls,
        bucket,
        filename,
        bucket_type="str",
        local_filename="",
        content_type="",
        always_emit=False,
        images=None,
        image_format="png",
        quality=95,
        bucket_precedence=BucketPrecedence.CONFIGURED_FIRST.value,
        flow_name=DEFAULT_FLOW,
        connection=None,
        message=None,
    ) -> io.NodeOutput:
        connection = connection or resolve_default_connection()
        message = message or {}
        # a local file named by the message outranks images as well
        local_filename = local_filename or message.get("localFilename") or ""

        def request_for(key):
            return ObjectRequest(
                bucket=ParameterBinding.of(bucket, bucket_type),
                filename=key,
                bucket_precedence=BucketPrecedence(bucket_precedence),
                flow_name=flow_name or DEFAULT_FLOW,
            )

        if images is not None and not local_filename:
            uploaded = []
            result = None
            for batch_idx, image_tensor in enumerate(images):
                body = _tensor_to_image_bytes(image_tensor, fmt=image_format, quality=quality)
                key = _batch_key(filename or message.get("filename", ""), batch_idx)
                result = handle_upload(
                    request_for(key),
                    connection,
                    {**message, "payload": body},
                    content_type=content_type or MIME_TYPES[image_format],
                )
                uploaded.append(f"s3://{result['bucket']}/{result['filename']}")
            return io.NodeOutput(result, ui={"text": uploaded})

        result = handle_upload(
            request_for(filename),
            connection,
            message,
            local_filename=local_filename,
            content_type=content_type,
            always_emit=always_emit,
        )
        if result is None:
            return io.NodeOutput(None, block_execution="Nothing to upload")
        if "s3Response" not in result:
            return io.NodeOutput(result, ui={"text": ["nothing uploaded"]})
        return io.NodeOutput(result, ui={"text": [f"s3://{result['bucket']}/{result['filename']}"]})
