"""
Object-store client surface and the boto3 implementation behind it.

The poller and request handlers only talk to ``ObjectStoreClient``; tests swap
in fakes, production uses ``BotoObjectStore`` built by ``create_store_client``.
"""

from dataclasses import dataclass, field
from typing import Optional, Protocol

from .profile import ResolvedConnection

USER_AGENT_EXTRA = "comfyui-bucket-watch"


@dataclass
class ListingPage:
    """One page of a bucket listing."""

    objects: list[dict] = field(default_factory=list)  # raw entries, each with a "Key"
    is_truncated: bool = False
    next_marker: Optional[str] = None


class ObjectStoreClient(Protocol):
    def list_objects(self, bucket: str, marker: Optional[str] = None, prefix: str = "") -> ListingPage:
        ...

    def get_object(self, bucket: str, key: str) -> bytes:
        ...

    def put_object(self, bucket: str, key: str, body, content_type: str) -> dict:
        ...

    def presign(self, bucket: str, key: str, expires_in: int) -> str:
        ...


class BotoObjectStore:
    """ObjectStoreClient over a boto3 S3 client. botocore errors propagate."""

    def __init__(self, client) -> None:
        self._client = client

    @property
    def boto_client(self):
        return self._client

    def list_objects(self, bucket: str, marker: Optional[str] = None, prefix: str = "") -> ListingPage:
        params = {"Bucket": bucket}
        if marker:
            params["Marker"] = marker
        if prefix:
            params["Prefix"] = prefix
        response = self._client.list_objects(**params)
        return ListingPage(
            objects=response.get("Contents", []),
            is_truncated=bool(response.get("IsTruncated", False)),
            next_marker=response.get("NextMarker"),
        )

    def get_object(self, bucket: str, key: str) -> bytes:
        response = self._client.get_object(Bucket=bucket, Key=key)
        return response["Body"].read()

    def put_object(self, bucket: str, key: str, body, content_type: str) -> dict:
        response = self._client.put_object(
            Bucket=bucket,
            Key=key,
            Body=body,
            ContentType=content_type,
        )
        return {k: v for k, v in response.items() if k != "ResponseMetadata"}

    def presign(self, bucket: str, key: str, expires_in: int) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": bucket, "Key": key},
            ExpiresIn=expires_in,
        )


def create_store_client(connection: ResolvedConnection) -> BotoObjectStore:
    """Create a boto3-backed store for a resolved connection.

    Uses lazy import so boto3 is only loaded when actually needed.
    """
    import boto3
    from botocore.config import Config

    s3_options = {}
    kwargs = {"region_name": connection.region}

    if connection.endpoint:
        kwargs["endpoint_url"] = connection.endpoint
        if connection.force_path_style:
            s3_options["addressing_style"] = "path"
        if connection.skip_tls_verify:
            kwargs["verify"] = False

    # Without explicit keys boto3 falls back to its ambient credential chain
    if connection.uses_explicit_credentials:
        kwargs["aws_access_key_id"] = connection.access_key_id
        kwargs["aws_secret_access_key"] = connection.secret_access_key

    kwargs["config"] = Config(
        signature_version="s3v4",
        s3=s3_options or None,
        retries={"max_attempts": connection.max_attempts, "mode": "standard"},
        connect_timeout=connection.connect_timeout,
        read_timeout=connection.read_timeout,
        user_agent_extra=USER_AGENT_EXTRA,
    )

    return BotoObjectStore(boto3.client("s3", **kwargs))


def describe_client_error(e) -> str:
    """Extract a user-friendly message from a botocore ClientError."""
    from botocore.exceptions import ClientError
    if isinstance(e, ClientError):
        code = e.response["Error"]["Code"]
        msg = e.response["Error"]["Message"]
        if code == "NoSuchBucket":
            return f"Bucket not found: {msg}"
        if code in ("NoSuchKey", "404"):
            return f"Object not found: {msg}"
        if code in ("AccessDenied", "403"):
            return f"Access denied. Check credentials and bucket policy. ({msg})"
        if code == "InvalidAccessKeyId":
            return f"Invalid access key. ({msg})"
        return f"S3 error [{code}]: {msg}"
    return str(e)
