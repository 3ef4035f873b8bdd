"""
Request handlers: download, sign and upload.

Each handler resolves its bucket and key, performs exactly one store call and
returns the outgoing message. Nothing is retained between calls.
"""

import copy
import json
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .client import ObjectStoreClient, create_store_client, describe_client_error
from .exceptions import ConfigurationError, TransferError
from .profile import BucketPrecedence, StoreConnectionConfig, resolve_bucket
from .resolver import DEFAULT_FLOW, EvaluationContext, ParameterBinding

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
DEFAULT_URL_EXPIRATION = 60  # seconds


@dataclass(frozen=True)
class ObjectRequest:
    """Where a handler reads or writes: bucket binding plus object key."""

    bucket: ParameterBinding
    filename: str = ""
    bucket_precedence: BucketPrecedence = BucketPrecedence.CONFIGURED_FIRST
    flow_name: str = DEFAULT_FLOW


def _transfer_errors() -> tuple:
    from botocore.exceptions import BotoCoreError, ClientError
    return (BotoCoreError, ClientError, OSError)


def resolve_target(request: ObjectRequest, context: EvaluationContext) -> tuple[str, str]:
    """Return (bucket, key); the key falls back to ``message["filename"]``."""
    bucket = resolve_bucket(request.bucket, context, request.bucket_precedence)
    key = request.filename or context.message.get("filename")
    if not key:
        raise ConfigurationError("No S3 file key (filename) specified", trigger=context.message)
    return bucket, str(key)


def to_body(payload) -> bytes:
    """Coerce a message payload to bytes; structured values become JSON."""
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(payload, default=str).encode("utf-8")


def download_object(store: ObjectStoreClient, bucket: str, key: str, return_buffer: bool = True):
    """Read the whole object; bytes when ``return_buffer``, else text."""
    data = store.get_object(bucket, key)
    if return_buffer:
        return data
    return data.decode("utf-8", errors="replace")


def sign_object(store: ObjectStoreClient, bucket: str, key: str, expires_in: int = DEFAULT_URL_EXPIRATION) -> str:
    return store.presign(bucket, key, int(expires_in))


def upload_object(
    store: ObjectStoreClient,
    bucket: str,
    key: str,
    content_type: str = DEFAULT_CONTENT_TYPE,
    local_filename: Optional[str] = None,
    payload=None,
) -> Optional[dict]:
    """Upload a local file or a payload; the file wins when both are given.

    Returns None when there is nothing to upload.
    """
    if local_filename:
        with open(local_filename, "rb") as body:
            return store.put_object(bucket, key, body, content_type)
    if payload is not None:
        return store.put_object(bucket, key, to_body(payload), content_type)
    return None


def handle_get(
    request: ObjectRequest,
    connection: StoreConnectionConfig,
    message: Optional[dict] = None,
    create_signed_url: bool = False,
    url_expiration: int = DEFAULT_URL_EXPIRATION,
    return_buffer: bool = True,
    client_factory: Optional[Callable] = None,
) -> dict:
    """Fetch an object (or a pre-signed URL for it) into ``payload``."""
    msg = copy.deepcopy(message) if message else {}
    context = EvaluationContext.for_message(msg, request.flow_name)
    bucket, key = resolve_target(request, context)
    msg["bucket"] = bucket
    msg["filename"] = key

    store = (client_factory or create_store_client)(connection.resolve(context))
    try:
        if create_signed_url:
            msg["payload"] = sign_object(store, bucket, key, url_expiration)
        else:
            msg["payload"] = download_object(store, bucket, key, return_buffer)
    except _transfer_errors() as e:
        action = "generating signed URL" if create_signed_url else "downloading object"
        raise TransferError(f"Error {action}: {describe_client_error(e)}", trigger=msg) from e

    if create_signed_url:
        logger.info("Signed s3://%s/%s for %ss", bucket, key, url_expiration)
    else:
        logger.info("Downloaded s3://%s/%s (%d bytes)", bucket, key, len(msg["payload"]))
    return msg


def handle_upload(
    request: ObjectRequest,
    connection: StoreConnectionConfig,
    message: Optional[dict] = None,
    local_filename: str = "",
    content_type: str = "",
    always_emit: bool = False,
    client_factory: Optional[Callable] = None,
) -> Optional[dict]:
    """Upload ``local_filename`` or ``message["payload"]``.

    Returns the message with ``s3Response`` set. When there is no body,
    returns the message without ``s3Response`` if ``always_emit`` else None.
    """
    msg = copy.deepcopy(message) if message else {}
    context = EvaluationContext.for_message(msg, request.flow_name)
    bucket, key = resolve_target(request, context)
    msg["bucket"] = bucket
    msg["filename"] = key

    local_filename = local_filename or msg.get("localFilename") or ""
    payload = msg.get("payload")
    if not local_filename and payload is None:
        logger.info("Nothing to upload to s3://%s/%s", bucket, key)
        return msg if always_emit else None

    content_type = content_type or msg.get("contentType") or DEFAULT_CONTENT_TYPE
    store = (client_factory or create_store_client)(connection.resolve(context))
    try:
        response = upload_object(store, bucket, key, content_type, local_filename, payload)
    except _transfer_errors() as e:
        raise TransferError(f"Error uploading file: {describe_client_error(e)}", trigger=msg) from e

    msg["s3Response"] = response
    logger.info("Uploaded s3://%s/%s", bucket, key)
    return msg
