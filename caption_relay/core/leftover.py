"""Trailing sentence fragment held back between reconciliation cycles.

WHY: The segmenter leaves an unfinished tail ("How are") that is not
safe to translate yet. It has to be re-submitted together with the
next delta so punctuation can close the sentence. Run-on speech may
never produce a clean boundary, so the fragment's age is tracked and a
stale fragment is forced through.

HOW: LeftoverBuffer stores the fragment text and the time it first
appeared. combine() prepends it to the new delta. update() applies the
segmenter's new leftover after a cycle. is_stale() reports when the
fragment has been held for at least force_flush_ms.

RULES:
- combine(delta) = "leftover delta" when a leftover exists, else delta
- The age timestamp starts only when a leftover appears where none
  existed; a leftover replaced by a longer one keeps its original age
- An empty new leftover clears text and timestamp
- Times are milliseconds from a monotonic clock supplied by the caller
"""

from __future__ import annotations

from typing import Optional

from caption_relay.config import LEFTOVER_FORCE_FLUSH_MS


class LeftoverBuffer:
    """Holds one fragment and its age."""

    def __init__(self, force_flush_ms: int = LEFTOVER_FORCE_FLUSH_MS) -> None:
        self.force_flush_ms = force_flush_ms
        self.text = ""
        self.started_at_ms: Optional[float] = None

    def __bool__(self) -> bool:
        return bool(self.text)

    def combine(self, delta: str) -> str:
        """Text to submit this cycle: held fragment plus new delta."""
        if not self.text:
            return delta
        if not delta:
            return self.text
        return "{} {}".format(self.text, delta)

    def age_ms(self, now_ms: float) -> float:
        if self.started_at_ms is None:
            return 0.0
        return now_ms - self.started_at_ms

    def is_stale(self, now_ms: float) -> bool:
        return bool(self.text) and self.age_ms(now_ms) >= self.force_flush_ms

    def update(self, new_leftover: str, now_ms: float) -> None:
        """Apply the leftover produced by this cycle."""
        if not new_leftover:
            self.clear()
            return
        if not self.text:
            self.started_at_ms = now_ms
        self.text = new_leftover

    def clear(self) -> None:
        self.text = ""
        self.started_at_ms = None
