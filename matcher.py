"""Glob matching for object keys.

Patterns follow shell/minimatch conventions on ``/``-separated keys:
``*`` and ``?`` stay within one path segment, a ``**`` segment spans any
number of segments, ``[...]`` is a character class (``!`` or ``^`` negates)
and ``{a,b}`` expands to alternatives. As with minimatch defaults, a
wildcard never matches a segment that starts with a dot unless the pattern
spells the dot out, and a class never matches ``/``.
"""

import re
from functools import lru_cache
from typing import Iterable, Optional


def _find_brace_group(pattern: str, start: int) -> Optional[tuple[int, list[str]]]:
    """Return (closing index, alternatives) for the brace at ``start``."""
    depth = 0
    parts = []
    last = start + 1
    i = start
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\":
            i += 2
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                parts.append(pattern[last:i])
                return i, parts
        elif ch == "," and depth == 1:
            parts.append(pattern[last:i])
            last = i + 1
        i += 1
    return None


def expand_braces(pattern: str) -> list[str]:
    """Expand ``{a,b}`` groups; groups without a comma stay literal."""
    start = pattern.find("{")
    while start != -1:
        if start > 0 and pattern[start - 1] == "\\":
            start = pattern.find("{", start + 1)
            continue
        group = _find_brace_group(pattern, start)
        if group is not None and len(group[1]) > 1:
            end, alternatives = group
            prefix, suffix = pattern[:start], pattern[end + 1:]
            expanded = []
            for alternative in alternatives:
                expanded.extend(expand_braces(prefix + alternative + suffix))
            return expanded
        start = pattern.find("{", start + 1)
    return [pattern]


# a wildcard opening a segment never matches a leading dot
_NO_DOT = r"(?!\.)"
_GLOBSTAR_DIRS = r"(?:(?!\.)[^/]*/)*"
_GLOBSTAR_TAIL = r"(?:(?!\.)[^/]*(?:/(?!\.)[^/]*)*)"


def _translate(pattern: str) -> str:
    out = []
    i, n = 0, len(pattern)
    while i < n:
        ch = pattern[i]
        segment_start = i == 0 or pattern[i - 1] == "/"
        if ch == "\\" and i + 1 < n:
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        if ch == "*":
            if segment_start and pattern.startswith("**", i):
                end = i + 2
                if end < n and pattern[end] == "/":
                    out.append(_GLOBSTAR_DIRS)
                    i = end + 1
                    continue
                if end == n:
                    out.append(_GLOBSTAR_TAIL)
                    i = end
                    continue
            while i < n and pattern[i] == "*":
                i += 1
            out.append((_NO_DOT if segment_start else "") + "[^/]*")
            continue
        if ch == "?":
            out.append((_NO_DOT if segment_start else "") + "[^/]")
        elif ch == "[":
            close = pattern.find("]", i + 2)
            if close == -1:
                out.append(re.escape(ch))
            else:
                body = pattern[i + 1:close]
                if body[0] in "!^":
                    body = "^" + body[1:]
                # classes never cross a path separator
                out.append((_NO_DOT if segment_start else "") + "(?!/)[" + body.replace("\\", "\\\\") + "]")
                i = close + 1
                continue
        else:
            out.append(re.escape(ch))
        i += 1
    return "".join(out)


@lru_cache(maxsize=128)
def compile_glob(pattern: str) -> re.Pattern:
    alternatives = [_translate(p) for p in expand_braces(pattern)]
    return re.compile(r"\A(?:" + "|".join(alternatives) + r")\Z", re.DOTALL)


class KeyMatcher:
    """Key filter for one watch; an empty pattern lets every key through."""

    def __init__(self, pattern: Optional[str] = None) -> None:
        self.pattern = pattern or ""
        self._regex = compile_glob(self.pattern) if self.pattern else None

    def matches(self, key: str) -> bool:
        if self._regex is None:
            return True
        return self._regex.match(key) is not None

    def filter_objects(self, objects: Iterable[dict]) -> list[dict]:
        return [obj for obj in objects if self.matches(obj["Key"])]
