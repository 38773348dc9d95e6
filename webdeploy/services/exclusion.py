"""Exclusion matching for content replacement.

Patterns come from an application's ``excluded_paths`` setting: a single
string of names separated by commas or semicolons. A pattern without ``*``
matches a name exactly (case-insensitive); ``*`` matches any run of
characters within one path segment.

Patterns are compared with an entry's own name. A pattern containing ``/``
(e.g. ``temp/*``) is compared with the entry's path relative to the copy
root instead.
"""

from __future__ import annotations

import re
from functools import lru_cache

_SEPARATORS = re.compile(r"[,;]")


def parse_patterns(value: str | None) -> list[str]:
    if not value:
        return []
    return [part.strip().replace("\\", "/") for part in _SEPARATORS.split(value) if part.strip()]


@lru_cache(maxsize=256)
def _wildcard_regex(pattern: str) -> re.Pattern[str]:
    body = "[^/]*".join(re.escape(chunk) for chunk in pattern.split("*"))
    return re.compile(f"^{body}$", re.IGNORECASE)


def matches_pattern(name: str, pattern: str) -> bool:
    if name.lower() == pattern.lower():
        return True
    if "*" in pattern:
        return _wildcard_regex(pattern).match(name) is not None
    return False


def is_excluded(name: str, patterns: list[str], relative_path: str | None = None) -> bool:
    """Return True if ``name`` matches any of ``patterns``.

    Path patterns (containing ``/``) are only checked against ``relative_path``.
    """
    if not patterns:
        return False
    for pattern in patterns:
        if "/" in pattern:
            if relative_path is not None and matches_pattern(relative_path, pattern):
                return True
        elif matches_pattern(name, pattern):
            return True
    return False
