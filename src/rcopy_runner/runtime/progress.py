"""Percentage extraction from raw copy-tool output."""

from __future__ import annotations

import re

__all__ = ["extract_progress"]

_PERCENT_RE = re.compile(r"(\d{1,3})%")


def extract_progress(text: str) -> int | None:
    """Return the first ``NN%`` value in ``text`` clamped to [0, 100].

    Chunks are arbitrary slices of the output stream, so a percentage split
    across two reads is simply missed; the next report picks it up again.

    Args:
        text: A chunk of decoded output

    Returns:
        The clamped percentage, or None when the chunk carries no progress
    """
    match = _PERCENT_RE.search(text)
    if match is None:
        return None
    return max(0, min(100, int(match.group(1))))
