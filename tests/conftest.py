"""Test configuration - mock ComfyUI imports for standalone testing."""

import sys
import importlib
import importlib.util
import threading
from pathlib import Path
from unittest.mock import MagicMock

import pytest


def _setup_comfy_mocks():
    """Set up minimal ComfyUI mocks for unit testing outside ComfyUI."""
    if "comfy_api" in sys.modules:
        return

    # Mock comfy_api.latest.io
    mock_io = MagicMock()
    mock_io.ComfyNode = type("ComfyNode", (), {
        "define_schema": classmethod(lambda cls: None),
        "execute": classmethod(lambda cls, **kw: None),
        "hidden": MagicMock(),
    })
    mock_io.Schema = MagicMock
    mock_io.NodeOutput = lambda *args, **kwargs: {
        "result": args,
        "ui": kwargs.get("ui"),
        "block_execution": kwargs.get("block_execution"),
    }
    mock_io.Image = MagicMock()
    mock_io.String = MagicMock()
    mock_io.Int = MagicMock()
    mock_io.Boolean = MagicMock()
    mock_io.Combo = MagicMock()
    mock_io.Custom = MagicMock(return_value=MagicMock())
    mock_io.Hidden = MagicMock()

    mock_latest = MagicMock()
    mock_latest.io = mock_io
    mock_latest.ComfyExtension = type("ComfyExtension", (), {})

    sys.modules["comfy_api"] = MagicMock(latest=mock_latest)
    sys.modules["comfy_api.latest"] = mock_latest

    # Mock folder_paths
    mock_fp = MagicMock()
    mock_fp.get_system_user_directory.return_value = "/tmp/comfyui-test/__bucket_watch"
    sys.modules["folder_paths"] = mock_fp


# Set up mocks before any package imports
_setup_comfy_mocks()

PACKAGE = "comfyui_bucket_watch"
SUBMODULES = [
    "exceptions", "resolver", "profile", "client", "matcher", "reporting",
    "poller", "scheduler", "handlers", "watchers",
    "nodes_profile", "nodes_context", "nodes_watch", "nodes_load", "nodes_save",
]

# Register the repository root as the package (nodes live at the top level)
pkg_root = Path(__file__).parent.parent
if PACKAGE not in sys.modules:
    spec = importlib.util.spec_from_file_location(
        PACKAGE,
        str(pkg_root / "__init__.py"),
        submodule_search_locations=[str(pkg_root)],
    )
    _pkg = importlib.util.module_from_spec(spec)
    sys.modules[PACKAGE] = _pkg
    spec.loader.exec_module(_pkg)

for _name in SUBMODULES:
    importlib.import_module(f"{PACKAGE}.{_name}")


class FakeStore:
    """In-memory ObjectStoreClient with scripted listing pages.

    ``listings`` holds one listing per poll; each listing is a list of
    pages, each page a list of keys. An Exception instance in place of a page
    is raised when that page is requested.
    """

    def __init__(self, listings=None, page_delay=None):
        self.listings = list(listings or [])
        self.list_calls = []
        self.objects = {}
        self.put_calls = []
        self.presign_calls = []
        self.page_delay = page_delay
        self._lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0
        self._cycle = None
        self._page_index = 0

    def queue_listing(self, *pages):
        self.listings.append(list(pages))

    def list_objects(self, bucket, marker=None, prefix=""):
        from comfyui_bucket_watch.client import ListingPage

        with self._lock:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        try:
            if marker is None:
                self._cycle = self.listings.pop(0) if self.listings else [[]]
                self._page_index = 0
            self.list_calls.append((bucket, marker, prefix))
            if self.page_delay is not None:
                self.page_delay()
            page = self._cycle[self._page_index]
            self._page_index += 1
            if isinstance(page, Exception):
                raise page
            truncated = self._page_index < len(self._cycle)
            return ListingPage(
                objects=[{"Key": key, "Size": len(key), "ETag": f'"{key}"'} for key in page],
                is_truncated=truncated,
            )
        finally:
            with self._lock:
                self._in_flight -= 1

    def get_object(self, bucket, key):
        return self.objects[(bucket, key)]

    def put_object(self, bucket, key, body, content_type):
        data = body if isinstance(body, bytes) else body.read()
        self.objects[(bucket, key)] = data
        self.put_calls.append((bucket, key, data, content_type))
        return {"ETag": '"etag"'}

    def presign(self, bucket, key, expires_in):
        self.presign_calls.append((bucket, key, expires_in))
        return f"https://example.test/{bucket}/{key}?X-Amz-Expires={expires_in}"


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def connection():
    from comfyui_bucket_watch.profile import StoreConnectionConfig
    from comfyui_bucket_watch.resolver import ParameterBinding
    return StoreConnectionConfig(region=ParameterBinding("us-east-1"))


@pytest.fixture(autouse=True)
def _clean_contexts():
    from comfyui_bucket_watch.resolver import reset_contexts
    reset_contexts()
    yield
    reset_contexts()
