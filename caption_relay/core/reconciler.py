"""One session's reconciliation state and the two halves of a cycle.

WHY: Every reconciliation interval the session must decide what text is
new, what should be punctuated, and what is finished enough to
translate. The punctuation call sits in the middle and can take a
while, so the cycle is split into plan() (before punctuation) and
commit() (after). State only changes in commit(), so a cycle that dies
while punctuating leaves the state as it was and the same text is
picked up again next time.

HOW: plan() extracts the delta between the last processed snapshot and
the current transcript, checks whether the held leftover is stale, and
returns a CyclePlan with the text to punctuate, or None when there is
nothing to do. commit() segments the punctuated text, applies the
forced-flush rule, updates the leftover buffer, and records the
snapshot as processed.

RULES:
- plan() is side-effect free
- No delta and no stale leftover → plan() returns None
- Stale leftover (held >= force_flush_ms when the cycle runs) → the
  whole punctuated submission is complete text, leftover cleared
- commit() returns the complete text ("" means nothing to translate)
- reset() returns the state to empty (session stop)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

from caption_relay.config import LEFTOVER_FORCE_FLUSH_MS
from caption_relay.core.delta import extract_delta
from caption_relay.core.leftover import LeftoverBuffer
from caption_relay.core.segmenter import segment_sentences

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationState:
    """What the session has already consumed.

    RULES:
    - last_processed_text: transcript snapshot of the last committed cycle
    - leftover: held fragment with its age (LeftoverBuffer)
    """

    last_processed_text: str = ""
    leftover: LeftoverBuffer = field(default_factory=LeftoverBuffer)


@dataclass(frozen=True)
class CyclePlan:
    snapshot: str
    delta: str
    submit_text: str
    forced_flush: bool


class Reconciler:
    """Plans and commits reconciliation cycles for one session."""

    def __init__(
        self,
        force_flush_ms: int = LEFTOVER_FORCE_FLUSH_MS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.state = ReconciliationState(leftover=LeftoverBuffer(force_flush_ms))
        self._clock = clock

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def plan(self, current_text: str, force: bool = False) -> Optional[CyclePlan]:
        """Work out what this cycle should punctuate, if anything.

        force treats any held leftover as stale (used to drain a session).
        """
        delta = extract_delta(self.state.last_processed_text, current_text)
        stale = self.state.leftover.is_stale(self._now_ms()) or (
            force and bool(self.state.leftover)
        )
        if not delta and not stale:
            return None

        if stale:
            logger.debug(
                "Leftover held %.0f ms, forcing flush: %r",
                self.state.leftover.age_ms(self._now_ms()),
                self.state.leftover.text,
            )
        return CyclePlan(
            snapshot=current_text,
            delta=delta,
            submit_text=self.state.leftover.combine(delta),
            forced_flush=stale,
        )

    def commit(self, plan: CyclePlan, punctuated_text: str) -> str:
        """Apply a cycle's punctuated text; return what is ready to translate."""
        result = segment_sentences(punctuated_text)
        complete_text = result.complete_text
        new_leftover = result.leftover

        if plan.forced_flush and new_leftover:
            complete_text = " ".join(
                part for part in (complete_text, new_leftover) if part
            )
            new_leftover = ""

        self.state.leftover.update(new_leftover, self._now_ms())
        self.state.last_processed_text = plan.snapshot
        return complete_text

    def mark_processed(self, snapshot: str) -> None:
        """Record text that was translated outside the cycle (audio path)."""
        self.state.last_processed_text = snapshot

    def reset(self) -> None:
        self.state.last_processed_text = ""
        self.state.leftover.clear()
