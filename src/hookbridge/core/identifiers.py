"""Helpers for working with chat and participant identifiers."""

from __future__ import annotations

from typing import Iterable, Optional

MENTION_PREFIX = "@"


def normalize_id(identifier: Optional[str]) -> Optional[str]:
    """Return the canonical form of a numeric id or username.

    Surrounding whitespace and a leading ``@`` are dropped and comparison is
    case-insensitive, so ``@Bridge_Bot`` and ``bridge_bot`` are the same.
    """

    if identifier is None:
        return None
    value = str(identifier).strip().lstrip(MENTION_PREFIX).lower()
    return value or None


def contains_id(identifiers: Iterable[str], target: Optional[str]) -> bool:
    """Return True when the normalized target appears in the identifiers."""

    wanted = normalize_id(target)
    if wanted is None:
        return False
    return any(normalize_id(candidate) == wanted for candidate in identifiers)
