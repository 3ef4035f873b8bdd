"""
Parameter resolution.

Node settings name *where* a value comes from rather than holding it
directly: a literal string, a field of the triggering message, a flow or
global context variable, or a process environment variable. Values are
resolved fresh on every call because message fields change per trigger.
"""

import os
import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .exceptions import ResolutionError

DEFAULT_FLOW = "default"


class ParameterSource(str, Enum):
    LITERAL = "str"
    MESSAGE = "msg"
    FLOW = "flow"
    GLOBAL = "global"
    ENV = "env"

    @classmethod
    def parse(cls, source: Union["ParameterSource", str, None]) -> "ParameterSource":
        """Unknown or empty source names behave as literals."""
        if isinstance(source, cls):
            return source
        try:
            return cls(source)
        except ValueError:
            return cls.LITERAL


SOURCE_NAMES = [s.value for s in ParameterSource]


class ContextStore:
    """Thread-safe key-value store backing flow and global variables."""

    def __init__(self, initial: Optional[dict] = None) -> None:
        self._values = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Store a value; ``None`` removes the key."""
        with self._lock:
            if value is None:
                self._values.pop(key, None)
            else:
                self._values[key] = value

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._values)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()


_stores_lock = threading.Lock()
_flow_stores: dict[str, ContextStore] = {}
_global_store = ContextStore()


def flow_context(name: str = DEFAULT_FLOW) -> ContextStore:
    """Return the store for a named flow, creating it on first use."""
    with _stores_lock:
        store = _flow_stores.get(name)
        if store is None:
            store = _flow_stores[name] = ContextStore()
        return store


def global_context() -> ContextStore:
    return _global_store


def reset_contexts() -> None:
    """Drop every flow store and empty the global store."""
    with _stores_lock:
        _flow_stores.clear()
    _global_store.clear()


@dataclass
class EvaluationContext:
    """Everything a lookup may need: the current message and both stores."""

    message: dict = field(default_factory=dict)
    flow: ContextStore = field(default_factory=ContextStore)
    global_: ContextStore = field(default_factory=global_context)

    @classmethod
    def for_message(cls, message: Optional[dict], flow_name: str = DEFAULT_FLOW) -> "EvaluationContext":
        return cls(
            message=message if message is not None else {},
            flow=flow_context(flow_name or DEFAULT_FLOW),
            global_=global_context(),
        )


_NAME = re.compile(r"[^.\[\]]+")
_BRACKET = re.compile(r"""\[(?:(\d+)|"([^"]*)"|'([^']*)')\]""")


def parse_property_path(path: str) -> list[Union[str, int]]:
    """Split ``a.b[0]["c d"]`` into ``["a", "b", 0, "c d"]``.

    Raises ValueError on a malformed expression.
    """
    segments: list[Union[str, int]] = []
    pos = 0
    length = len(path)
    while True:
        match = _NAME.match(path, pos)
        if not match:
            raise ValueError(f"Invalid property expression: {path!r}")
        segments.append(match.group(0))
        pos = match.end()
        while pos < length and path[pos] == "[":
            match = _BRACKET.match(path, pos)
            if not match:
                raise ValueError(f"Invalid property expression: {path!r}")
            index, double_quoted, single_quoted = match.groups()
            if index is not None:
                segments.append(int(index))
            else:
                segments.append(double_quoted if double_quoted is not None else single_quoted)
            pos = match.end()
        if pos == length:
            return segments
        if path[pos] != ".":
            raise ValueError(f"Invalid property expression: {path!r}")
        pos += 1


def get_message_property(message: Any, path: str) -> Any:
    """Read a nested message field; a missing segment yields None."""
    value = message
    for segment in parse_property_path(path):
        if isinstance(segment, int):
            if not isinstance(value, (list, tuple)) or segment >= len(value):
                return None
            value = value[segment]
        elif isinstance(value, Mapping):
            value = value.get(segment)
        else:
            return None
        if value is None:
            return None
    return value


def resolve_value(
    value: Optional[str],
    source: Union[ParameterSource, str, None],
    context: EvaluationContext,
) -> Any:
    """Resolve ``value`` from ``source``.

    Returns None when nothing is found. A lookup that raises is reported as a
    ResolutionError naming the source and key.
    """
    if value is None:
        return None
    source = ParameterSource.parse(source)
    try:
        if source is ParameterSource.FLOW:
            result = context.flow.get(value)
        elif source is ParameterSource.GLOBAL:
            result = context.global_.get(value)
        elif source is ParameterSource.ENV:
            result = os.environ.get(value)
        elif source is ParameterSource.MESSAGE:
            result = get_message_property(context.message, value)
        else:
            result = value
    except Exception as e:
        raise ResolutionError(source.value, str(value), str(e)) from e
    return result


@dataclass(frozen=True)
class ParameterBinding:
    """A setting value paired with the source it is read from."""

    value: Optional[str] = None
    source: ParameterSource = ParameterSource.LITERAL

    @classmethod
    def of(cls, value: Optional[str], source: Union[ParameterSource, str, None] = None) -> "ParameterBinding":
        return cls(value if value != "" else None, ParameterSource.parse(source))

    def resolve(self, context: EvaluationContext) -> Any:
        return resolve_value(self.value, self.source, context)

    def resolve_str(self, context: EvaluationContext) -> Optional[str]:
        """Resolve and coerce to a non-empty string, or None."""
        result = self.resolve(context)
        if result is None or result == "":
            return None
        return str(result)
