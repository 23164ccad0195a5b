"""Newly-spoken text between two recognition snapshots.

WHY: The reconciliation cycle only wants to punctuate and translate
what was said since the last cycle. Recognizers usually extend their
hypothesis, but sometimes revise earlier words ("drift"), so a plain
prefix strip is not enough.

HOW: If current starts with previous, the delta is the remainder.
Otherwise scan both strings position by position to the first
differing character and take current from there. Either way the result
is stripped.

RULES:
- Pure function, no side effects, deterministic
- previous == current → ""
- previous == "" → current.strip()
- Callers skip downstream work on ""
"""

from __future__ import annotations


def common_prefix_length(a: str, b: str) -> int:
    """Number of leading characters a and b share."""
    limit = min(len(a), len(b))
    index = 0
    while index < limit and a[index] == b[index]:
        index += 1
    return index


def extract_delta(previous: str, current: str) -> str:
    """Return the text in current that was not already in previous.

    Example:
        extract_delta("hello how", "hello how are you") == "are you"
        extract_delta("helo world", "hello world") == "lo world"
    """
    if not previous:
        return current.strip()
    if current.startswith(previous):
        return current[len(previous):].strip()
    return current[common_prefix_length(previous, current):].strip()
