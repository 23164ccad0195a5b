"""Split punctuated text into complete sentences and a trailing fragment.

WHY: Translating half a sentence produces a caption that changes
meaning once the rest arrives. Only text that ends on a terminal mark
is safe to hand to the translators; the tail waits for the next cycle.

HOW: Split wherever '.', '?' or '!' is directly followed by whitespace.
All units but the last are complete. The last unit is complete only if
it ends on a terminal mark itself.

RULES:
- Terminal marks: . ? !
- Empty or whitespace-only input → ("", "")
- complete_text keeps the original spacing between sentences
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_SENTENCE_BREAK = re.compile(r"(?<=[.?!])\s+")
TERMINAL_MARKS = (".", "?", "!")


@dataclass(frozen=True)
class SegmentResult:
    complete_text: str
    leftover: str


def segment_sentences(punctuated_text: str) -> SegmentResult:
    """Separate finished sentences from an unfinished tail.

    Example:
        segment_sentences("Hello there. How are")
        → SegmentResult(complete_text="Hello there.", leftover="How are")
    """
    text = punctuated_text.strip()
    if not text:
        return SegmentResult(complete_text="", leftover="")

    if text.endswith(TERMINAL_MARKS):
        return SegmentResult(complete_text=text, leftover="")

    units = _SENTENCE_BREAK.split(text)
    if len(units) == 1:
        return SegmentResult(complete_text="", leftover=text)

    # Cut at the last break so inter-sentence spacing survives
    last_break = list(_SENTENCE_BREAK.finditer(text))[-1]
    return SegmentResult(
        complete_text=text[: last_break.start()],
        leftover=text[last_break.end():],
    )
