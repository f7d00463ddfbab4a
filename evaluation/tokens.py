"""Token counting used for evidence-size estimates."""

from __future__ import annotations

from collections.abc import Callable

TokenCounter = Callable[[str], int]


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token, at least one for non-empty text."""
    if not text:
        return 0
    return max(len(text) // 4, 1)
