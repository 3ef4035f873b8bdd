"""comfyui-bucket-watch - S3 bucket watch, get and put nodes for ComfyUI.

Watches any S3-compatible bucket (AWS S3, MinIO, Backblaze B2, Cloudflare R2,
...) for added and removed objects, downloads objects or pre-signed URLs, and
uploads files, payloads or images.
"""

import atexit

from typing_extensions import override
from comfy_api.latest import ComfyExtension, io


class BucketWatchExtension(ComfyExtension):
    async def on_load(self) -> None:
        try:
            import boto3  # noqa: F401
        except ImportError:
            import logging
            logging.warning(
                "comfyui-bucket-watch: boto3 not installed. "
                "Run: pip install boto3"
            )

        from .watchers import registry
        atexit.register(registry.shutdown)

    @override
    async def get_node_list(self) -> list[type[io.ComfyNode]]:
        from .nodes_profile import S3Connection
        from .nodes_context import BuildMessage, SetContextVariable
        from .nodes_watch import WatchBucket
        from .nodes_load import GetObjectFromBucket
        from .nodes_save import PutObjectToBucket

        return [
            S3Connection,
            BuildMessage,
            SetContextVariable,
            WatchBucket,
            GetObjectFromBucket,
            PutObjectToBucket,
        ]


async def comfy_entrypoint() -> BucketWatchExtension:
    return BucketWatchExtension()
