"""Wildcard matching for policy selectors."""
from __future__ import annotations

from typing import Iterable, Optional


def match(pattern: Optional[str], value: str) -> bool:
    """Return True if ``value`` matches ``pattern``.

    ``*`` is the only wildcard and matches any run of characters, including an
    empty one. Every other character is compared literally and case-sensitively.
    A missing pattern matches everything.
    """
    if pattern is None or pattern == "*":
        return True
    if "*" not in pattern:
        return pattern == value

    parts = pattern.split("*")
    head, tail = parts[0], parts[-1]
    if len(value) < len(head) + len(tail):
        return False
    if not value.startswith(head) or not value.endswith(tail):
        return False

    # Leftmost placement of each inner literal leaves the most room for the rest.
    pos = len(head)
    end = len(value) - len(tail)
    for part in parts[1:-1]:
        if not part:
            continue
        idx = value.find(part, pos, end)
        if idx < 0:
            return False
        pos = idx + len(part)
    return True


def match_any(patterns: Iterable[str], value: str) -> bool:
    for pattern in patterns:
        if match(pattern, value):
            return True
    return False


__all__ = ["match", "match_any"]
