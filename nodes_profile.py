"""S3Connection node - configure once, wire to every bucket node."""

from comfy_api.latest import io

from .profile import (
    ENV_PROFILE,
    _get_profiles_path,
    load_profile_names,
    resolve_connection_profile,
    validate_connection,
)
from .resolver import SOURCE_NAMES

S3_CONNECTION_TYPE = "S3_CONNECTION"
S3_MESSAGE_TYPE = "S3_MESSAGE"
S3_MESSAGES_TYPE = "S3_MESSAGES"


def source_input(name: str, tooltip: str = ""):
    """Combo picking where the neighbouring ``name`` widget is read from."""
    return io.Combo.Input(
        f"{name}_type",
        options=SOURCE_NAMES,
        default="str",
        tooltip=tooltip or f"Source of {name}: literal, message field, flow/global variable or env var.",
        optional=True,
    )


class S3Connection(io.ComfyNode):
    @classmethod
    def define_schema(cls) -> io.Schema:
        profile_names = load_profile_names()
        return io.Schema(
            node_id="BucketWatchS3Connection",
            display_name="S3 Connection",
            category="bucket_watch",
            description=(
                "Configure an S3-compatible connection. Connect to any bucket watch node. "
                f"Profiles are stored in: {_get_profiles_path()}"
            ),
            inputs=[
                io.Combo.Input(
                    "profile",
                    options=[ENV_PROFILE, *profile_names],
                    default=ENV_PROFILE,
                    tooltip="Named profile from profiles.json, or use environment variables.",
                ),
                io.String.Input("region", default="", optional=True),
                source_input("region"),
                io.String.Input(
                    "endpoint",
                    default="",
                    tooltip="Custom endpoint for non-AWS stores, e.g. 'http://localhost:9000'",
                    optional=True,
                ),
                source_input("endpoint"),
                io.String.Input(
                    "access_key_id",
                    default="",
                    tooltip="Access key id, or the name of the variable/field holding it.",
                    optional=True,
                ),
                source_input("access_key_id"),
                io.String.Input("secret_access_key", default="", optional=True),
                source_input("secret_access_key"),
                io.Boolean.Input("force_path_style", default=False, optional=True),
                io.Boolean.Input(
                    "skip_tls_verify",
                    default=False,
                    tooltip="Skip TLS certificate checks on a custom endpoint.",
                    optional=True,
                ),
                io.Boolean.Input(
                    "use_managed_identity",
                    default=False,
                    tooltip="Use the environment's credential chain; explicit keys are ignored.",
                    optional=True,
                ),
            ],
            outputs=[
                io.Custom(S3_CONNECTION_TYPE).Output(display_name="connection"),
            ],
        )

    @classmethod
    def execute(cls, profile=ENV_PROFILE, **overrides) -> io.NodeOutput:
        config = resolve_connection_profile(profile, overrides)
        validate_connection(config)
        return io.NodeOutput(config)
