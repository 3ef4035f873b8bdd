"""
Store connection configuration.

Connection settings are resolved in layers:
1. Environment variables (BUCKET_WATCH_*)
2. Named profiles from JSON file in ComfyUI's system user directory
3. Per-node widget overrides

Each credential-like field is a ParameterBinding, so a profile can point at
an environment variable or a message field instead of embedding the secret.
"""

import os
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from .exceptions import ConfigurationError
from .resolver import EvaluationContext, ParameterBinding

logger = logging.getLogger(__name__)

ENV_PREFIX = "BUCKET_WATCH_"
ENV_PROFILE = "(env vars)"

# Map of env var suffix -> profile dict key
ENV_KEYS = {
    "REGION": "region",
    "ENDPOINT": "endpoint",
    "ACCESS_KEY_ID": "access_key_id",
    "SECRET_ACCESS_KEY": "secret_access_key",
    "FORCE_PATH_STYLE": "force_path_style",
    "SKIP_TLS_VERIFY": "skip_tls_verify",
    "USE_MANAGED_IDENTITY": "use_managed_identity",
}

BINDING_FIELDS = ("region", "endpoint", "access_key_id", "secret_access_key")
FLAG_FIELDS = ("force_path_style", "skip_tls_verify", "use_managed_identity")


def _parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


@dataclass(frozen=True)
class ResolvedConnection:
    """Connection settings evaluated for one call."""

    region: str
    endpoint: Optional[str] = None
    force_path_style: bool = False
    skip_tls_verify: bool = False
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    max_attempts: int = 3

    @property
    def uses_explicit_credentials(self) -> bool:
        return bool(self.access_key_id and self.secret_access_key)


@dataclass(frozen=True)
class StoreConnectionConfig:
    region: ParameterBinding = field(default_factory=ParameterBinding)
    endpoint: ParameterBinding = field(default_factory=ParameterBinding)
    access_key_id: ParameterBinding = field(default_factory=ParameterBinding)
    secret_access_key: ParameterBinding = field(default_factory=ParameterBinding)
    force_path_style: bool = False
    skip_tls_verify: bool = False
    use_managed_identity: bool = False
    connect_timeout: float = 10.0
    read_timeout: float = 60.0
    max_attempts: int = 3

    @classmethod
    def from_dict(cls, data: dict) -> "StoreConnectionConfig":
        """Build from a flat profile dict (``region`` + ``region_type`` etc.)."""
        kwargs = {}
        for name in BINDING_FIELDS:
            kwargs[name] = ParameterBinding.of(data.get(name), data.get(f"{name}_type"))
        for name in FLAG_FIELDS:
            kwargs[name] = _parse_bool(data.get(name, False))
        if data.get("connect_timeout"):
            kwargs["connect_timeout"] = float(data["connect_timeout"])
        if data.get("read_timeout"):
            kwargs["read_timeout"] = float(data["read_timeout"])
        if data.get("max_attempts"):
            kwargs["max_attempts"] = int(data["max_attempts"])
        return cls(**kwargs)

    def resolve(self, context: EvaluationContext) -> ResolvedConnection:
        """Evaluate every binding against ``context``.

        Raises ConfigurationError when no region can be found. Explicit keys
        are only attached when managed identity is off and both resolve.
        """
        region = self.region.resolve_str(context) or self.region.value
        if not region:
            raise ConfigurationError(
                "Region is missing in S3 connection configuration. "
                f"Set {ENV_PREFIX}REGION or configure a profile.",
                trigger=context.message,
            )

        access_key_id = secret_access_key = None
        if not self.use_managed_identity:
            key_id = self.access_key_id.resolve_str(context)
            secret = self.secret_access_key.resolve_str(context)
            if key_id and secret:
                access_key_id, secret_access_key = key_id, secret

        return ResolvedConnection(
            region=region,
            endpoint=self.endpoint.resolve_str(context),
            force_path_style=self.force_path_style,
            skip_tls_verify=self.skip_tls_verify,
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
            max_attempts=self.max_attempts,
        )


def _get_profiles_path() -> str:
    """Get path to the profiles JSON file in ComfyUI's system user directory."""
    try:
        import folder_paths
        sys_dir = folder_paths.get_system_user_directory("bucket_watch")
        return os.path.join(sys_dir, "profiles.json")
    except (ImportError, Exception):
        # Fallback for testing outside ComfyUI
        return os.path.join(os.path.expanduser("~"), ".comfyui-bucket-watch", "profiles.json")


def _load_profiles() -> dict:
    path = _get_profiles_path()
    if not os.path.exists(path):
        return {}
    try:
        with open(path, "r") as f:
            data = json.load(f)
        return data.get("profiles", {})
    except (json.JSONDecodeError, OSError) as e:
        logger.warning("Failed to load bucket watch profiles from %s: %s", path, e)
        return {}


def load_profile_names() -> list[str]:
    return list(_load_profiles().keys())


def _profile_from_env() -> dict:
    """Build a profile dict from environment variables."""
    profile = {}
    for env_suffix, key in ENV_KEYS.items():
        val = os.environ.get(f"{ENV_PREFIX}{env_suffix}", "")
        if val:
            profile[key] = val
    return profile


def resolve_connection_profile(
    profile_name: str = ENV_PROFILE,
    overrides: Optional[dict] = None,
) -> StoreConnectionConfig:
    """Resolve a connection config.

    Layers: env vars -> named profile -> widget overrides. Empty override
    values leave the lower layer in place; flags only ever switch on.
    """
    config = _profile_from_env()

    if profile_name and profile_name != ENV_PROFILE:
        named = _load_profiles().get(profile_name, {})
        if not named:
            logger.warning("Bucket watch profile '%s' not found", profile_name)
        else:
            config.update({k: v for k, v in named.items() if v not in (None, "")})

    for key, value in (overrides or {}).items():
        if key in FLAG_FIELDS:
            if value:
                config[key] = True
        elif key.endswith("_type"):
            # a source type only matters next to the value it qualifies
            if overrides.get(key[: -len("_type")]):
                config[key] = value
        elif value not in (None, ""):
            config[key] = value

    return StoreConnectionConfig.from_dict(config)


def resolve_default_connection() -> StoreConnectionConfig:
    """Resolve the default connection (env vars only, no named profile)."""
    return resolve_connection_profile(ENV_PROFILE)


class BucketPrecedence(str, Enum):
    """Where a bucket name may come from when a trigger message carries one."""

    CONFIGURED = "configured"
    CONFIGURED_FIRST = "configured_first"
    MESSAGE_FIRST = "message_first"


PRECEDENCE_NAMES = [p.value for p in BucketPrecedence]


def resolve_bucket(
    binding: ParameterBinding,
    context: EvaluationContext,
    precedence: BucketPrecedence = BucketPrecedence.CONFIGURED,
) -> str:
    """Resolve a bucket name or raise ConfigurationError."""
    precedence = BucketPrecedence(precedence)
    message_bucket = context.message.get("bucket") or None
    if precedence is BucketPrecedence.MESSAGE_FIRST and message_bucket:
        bucket = str(message_bucket)
    else:
        bucket = binding.resolve_str(context)
        if not bucket and precedence is not BucketPrecedence.CONFIGURED and message_bucket:
            bucket = str(message_bucket)
    if not bucket:
        raise ConfigurationError("No S3 bucket specified", trigger=context.message)
    return bucket


def validate_connection(config: StoreConnectionConfig) -> None:
    """Raise ConfigurationError if no region can ever resolve."""
    if not config.region.value:
        raise ConfigurationError(
            "S3 region not configured. "
            f"Set {ENV_PREFIX}REGION env var, create a profile in "
            f"{_get_profiles_path()}, or set it on the S3 Connection node."
        )
