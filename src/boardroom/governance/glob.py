"""Two-token glob matching for governance paths.

Grammar: ``*`` matches any run of characters inside one path segment,
``**`` as a whole segment matches zero or more segments. Every other
character, ``.`` included, is literal. Paths and patterns use ``/``.
"""

from __future__ import annotations


def _segments(value: str) -> list[str]:
    return [part for part in value.split("/") if part not in ("", ".")]


def _match_segment(text: str, pattern: str) -> bool:
    if not pattern:
        return not text
    if pattern[0] == "*":
        rest = pattern.lstrip("*")
        return any(_match_segment(text[i:], rest) for i in range(len(text) + 1))
    return bool(text) and text[0] == pattern[0] and _match_segment(text[1:], pattern[1:])


def _match_segments(parts: list[str], pattern: list[str]) -> bool:
    if not pattern:
        return not parts
    head, rest = pattern[0], pattern[1:]
    if head == "**":
        return any(_match_segments(parts[i:], rest) for i in range(len(parts) + 1))
    if not parts:
        return False
    return _match_segment(parts[0], head) and _match_segments(parts[1:], rest)


def match_path(path: str, pattern: str) -> bool:
    """Return True if the relative ``path`` matches the glob ``pattern``."""
    if path == pattern:
        return True
    return _match_segments(_segments(path), _segments(pattern))


def literal_prefix(pattern: str) -> str:
    """The part of ``pattern`` before its first wildcard."""
    return pattern.split("*", 1)[0]
