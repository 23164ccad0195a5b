"""Silence-based pseudo-finalization of interim recognition text.

WHY: Some recognizers hold a hypothesis as "interim" for a long time
after the speaker pauses. Captions look frozen until the native final
arrives. If the interim text stops changing for a short quiet period,
it is almost certainly what the speaker said, so it can be promoted to
final early.

HOW: SilenceFinalizer is a two-state machine (IDLE, PENDING). Each
interim text either arms a fresh silence timer (text changed) or
re-arms it (same text again). When the timer fires undisturbed, the
pending text is emitted as final. A native final always wins: it
cancels the timer and is emitted immediately.

RULES:
- Native final → emit(text, native=True) when text is non-blank,
  cancel timer, IDLE
- Interim text different from pending → cancel, pending = text, arm, PENDING
- Interim text identical to pending and non-blank → re-arm (extends the
  wait, never fires early)
- Blank interim text → cancel, IDLE (nothing to finalize)
- Timer fires → emit(pending, native=False), IDLE
- silence_threshold_ms is validated to 100–1000 ms; changing it only
  affects timers armed afterwards
- Never raises while processing events; it emits or stays silent
"""

from __future__ import annotations

import enum
import logging
from typing import Callable, Optional

from caption_relay.config import DEFAULT_SILENCE_THRESHOLD_MS, validate_silence_threshold
from caption_relay.core.timers import AsyncioScheduler, TimerHandle

logger = logging.getLogger(__name__)

FinalizedCallback = Callable[[str, bool], None]


class FinalizerState(str, enum.Enum):
    IDLE = "idle"
    PENDING = "pending"


class SilenceFinalizer:
    """Debounces interim text into pseudo-final segments.

    Args:
        on_finalized: Called with (text, native) for every emitted final.
        silence_threshold_ms: Quiet period before an unchanged interim
            hypothesis is promoted.
        scheduler: Object with call_later(delay_ms, callback) -> TimerHandle.
    """

    def __init__(
        self,
        on_finalized: FinalizedCallback,
        silence_threshold_ms: int = DEFAULT_SILENCE_THRESHOLD_MS,
        scheduler=None,
    ) -> None:
        self._on_finalized = on_finalized
        self._threshold_ms = validate_silence_threshold(silence_threshold_ms)
        self._scheduler = scheduler or AsyncioScheduler()
        self._pending_text = ""
        self._timer: Optional[TimerHandle] = None

    @property
    def state(self) -> FinalizerState:
        if self._timer is not None and self._timer.active:
            return FinalizerState.PENDING
        return FinalizerState.IDLE

    @property
    def pending_text(self) -> str:
        return self._pending_text

    @property
    def silence_threshold_ms(self) -> int:
        return self._threshold_ms

    @silence_threshold_ms.setter
    def silence_threshold_ms(self, value: int) -> None:
        self._threshold_ms = validate_silence_threshold(value)

    def process(self, text: str, native_final: bool) -> None:
        """Feed one recognition result."""
        if native_final:
            self.reset()
            if text.strip():
                self._on_finalized(text, True)
            return

        if not text.strip():
            self.reset()
            return

        # Same text re-arms, new text replaces; both restart the quiet period
        self._pending_text = text
        self._arm()

    def reset(self) -> None:
        """Cancel any armed timer and forget pending text."""
        self._cancel_timer()
        self._pending_text = ""

    def _arm(self) -> None:
        self._cancel_timer()
        self._timer = self._scheduler.call_later(self._threshold_ms, self._fire)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self) -> None:
        text = self._pending_text
        self._pending_text = ""
        self._timer = None
        logger.debug("Silence finalized after %d ms: %r", self._threshold_ms, text)
        self._on_finalized(text, False)
