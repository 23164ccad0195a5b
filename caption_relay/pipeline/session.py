"""One live caption session: recognition events in, translated captions out.

WHY: The recognizer, the silence finalizer, the reconciliation cycle and
the translation fan-out each work on their own clock. Something has to
own the transcript they share, decide which fan-out result is shown,
and tear everything down when the operator stops listening.

HOW: CaptionSession keeps the raw transcript as finalized segments plus
the live interim hypothesis. handle_event() feeds recognizer results
through the SilenceFinalizer. Every reconciliation interval the loop
launches run_cycle() as its own task: the reconciliation half (delta,
leftover, punctuate, segment) runs under an asyncio.Lock so two cycles
never race on the same state, then the complete text is fanned out
without the lock so slow translations never block the next cycle.
Each cycle is stamped with a generation number and apply_result()
shows a fan-out result only if it is newer than the one on display.

RULES:
- Raw transcript = finalized segments + live interim, joined by spaces
- After a pseudo-final, later hypotheses of the same recognizer segment
  contribute only the words after the promoted text; a native final
  ending that segment is not appended twice
- A hypothesis that changes promoted words (not a whole-word
  continuation) replaces the segments promoted from it
- Reconciliation state changes only after punctuation returned
- A result is applied only if its generation is newer than the
  displayed one AND at least one leg succeeded; the successful legs
  replace the displayed translations wholesale
- Failed legs never blank the display; they are logged and exposed via
  last_failures
- Every transcript or translation change is written to the record sink
- stop() cancels the loop and in-flight cycles and resets all state;
  the last saved record stays in the sink
"""

from __future__ import annotations

import asyncio
import logging
import random
import string
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Set

from caption_relay.config import (
    DEFAULT_SILENCE_THRESHOLD_MS,
    LEFTOVER_FORCE_FLUSH_MS,
    RECONCILIATION_INTERVAL_MS,
    USE_SILENCE_FINALIZER,
    default_targets,
)
from caption_relay.core.finalizer import SilenceFinalizer
from caption_relay.core.reconciler import Reconciler
from caption_relay.pipeline.fanout import (
    AudioFanoutResult,
    FanoutResult,
    TranslationFanout,
    unique_targets,
)

logger = logging.getLogger(__name__)

SESSION_ID_LENGTH = 6
SESSION_ID_ALPHABET = string.digits + string.ascii_letters


def generate_session_id(rng: Optional[random.Random] = None) -> str:
    """Random 6-character [0-9a-zA-Z] code that display clients join with."""
    chooser = rng or random.SystemRandom()
    return "".join(chooser.choice(SESSION_ID_ALPHABET) for _ in range(SESSION_ID_LENGTH))


@dataclass(frozen=True)
class RecognitionEvent:
    """One recognizer result: a hypothesis of the current segment."""

    text: str
    is_final: bool = False


@dataclass
class SessionRecord:
    """Latest consolidated state of a session, as display clients read it."""

    session_id: str
    transcript: str
    translations: Dict[str, str] = field(default_factory=dict)
    source_language: str = "en"
    timestamp: float = 0.0

    def to_dict(self) -> dict:
        return {
            "transcript": self.transcript,
            "translationsByLanguage": dict(self.translations),
            "sourceLanguage": self.source_language,
            "timestamp": self.timestamp,
        }


class RecordSink(Protocol):
    def save(self, record: SessionRecord) -> None: ...


class CaptionSession:
    """Drives reconciliation and translation for one speaker.

    Args:
        session_id: Code display clients use to find the record.
        source_language: ISO 639-1 code the speaker talks in.
        punctuator: Object with async punctuate(text) -> str.
        fanout: TranslationFanout used for every complete text.
        target_languages: Defaults to every known language but the source.
        sink: Optional record sink with save(SessionRecord).
        silence_threshold_ms: Quiet period before interim text is promoted.
        use_silence_finalizer: When False only native finals end segments.
        reconciliation_interval_ms: Loop period for start().
        leftover_force_flush_ms: Age at which a held fragment is flushed.
        clock: Monotonic clock in seconds.
        scheduler: Timer scheduler for the silence finalizer.
        on_applied: Called with every FanoutResult that reaches the display.
    """

    def __init__(
        self,
        session_id: str,
        source_language: str,
        punctuator,
        fanout: TranslationFanout,
        target_languages: Optional[Iterable[str]] = None,
        sink: Optional[RecordSink] = None,
        silence_threshold_ms: int = DEFAULT_SILENCE_THRESHOLD_MS,
        use_silence_finalizer: bool = USE_SILENCE_FINALIZER,
        reconciliation_interval_ms: int = RECONCILIATION_INTERVAL_MS,
        leftover_force_flush_ms: int = LEFTOVER_FORCE_FLUSH_MS,
        clock: Callable[[], float] = time.monotonic,
        scheduler=None,
        on_applied: Optional[Callable[[FanoutResult], None]] = None,
    ) -> None:
        self.session_id = session_id
        self.source_language = source_language
        if target_languages is None:
            target_languages = default_targets(source_language)
        self.target_languages = unique_targets(source_language, target_languages)
        self.use_silence_finalizer = use_silence_finalizer
        self.reconciliation_interval_ms = reconciliation_interval_ms

        self._punctuator = punctuator
        self._fanout = fanout
        self._sink = sink
        self._on_applied = on_applied
        self._reconciler = Reconciler(leftover_force_flush_ms, clock)
        self._finalizer = SilenceFinalizer(
            self._on_finalized, silence_threshold_ms, scheduler
        )

        self._segments: List[str] = []
        self._interim = ""
        self._last_raw = ""
        self._segment_base = ""
        self._base_start = 0
        self._translations: Dict[str, str] = {}
        self.last_failures: Dict[str, str] = {}
        self._generation = 0
        self._displayed_generation = 0
        self._saved_transcript: Optional[str] = None

        self._cycle_lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task] = None
        self._cycle_tasks: Set[asyncio.Task] = set()

    # -- state -------------------------------------------------------------

    @property
    def transcript(self) -> str:
        parts = list(self._segments)
        if self._interim:
            parts.append(self._interim)
        return " ".join(parts)

    @property
    def translations(self) -> Dict[str, str]:
        return dict(self._translations)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def displayed_generation(self) -> int:
        return self._displayed_generation

    @property
    def silence_threshold_ms(self) -> int:
        return self._finalizer.silence_threshold_ms

    @property
    def reconciler(self) -> Reconciler:
        return self._reconciler

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def set_silence_threshold(self, threshold_ms: int) -> None:
        """Change the quiet period; raises ValueError outside 100-1000 ms."""
        self._finalizer.silence_threshold_ms = threshold_ms
        logger.info(
            "Session %s silence threshold set to %d ms", self.session_id, threshold_ms
        )

    def snapshot(self) -> SessionRecord:
        return SessionRecord(
            session_id=self.session_id,
            transcript=self.transcript,
            translations=self.translations,
            source_language=self.source_language,
            timestamp=time.time(),
        )

    def _persist(self, force: bool = False) -> None:
        if self._sink is None:
            return
        transcript = self.transcript
        if not force and transcript == self._saved_transcript:
            return
        self._saved_transcript = transcript
        self._sink.save(self.snapshot())

    # -- recognition -------------------------------------------------------

    def handle_event(self, event: RecognitionEvent) -> None:
        """Apply one recognizer result to the raw transcript."""
        remainder = self._new_words(event.text)

        if event.is_final:
            self._segment_base = ""
            self._last_raw = ""
            self._interim = ""
            if self.use_silence_finalizer:
                self._finalizer.process(remainder, True)
            else:
                self._on_finalized(remainder, True)
        else:
            self._last_raw = event.text
            self._interim = remainder
            if self.use_silence_finalizer:
                self._finalizer.process(remainder, False)

        self._persist()

    def _new_words(self, text: str) -> str:
        """Part of a hypothesis not yet promoted by a silence final.

        The promoted text only counts as repeated when the hypothesis
        continues it at a word boundary. Anything else ("store" becoming
        "stores") is a revision: the segments promoted from this
        recognizer segment are dropped and the whole hypothesis is new.
        """
        base = self._segment_base
        if not base:
            return text.strip()
        if text.startswith(base) and (len(text) == len(base) or text[len(base)].isspace()):
            return text[len(base):].strip()

        logger.debug(
            "Session %s revised promoted text %r -> %r", self.session_id, base, text
        )
        del self._segments[self._base_start:]
        self._segment_base = ""
        return text.strip()

    def _on_finalized(self, text: str, native: bool) -> None:
        text = text.strip()
        if not native and not self._segment_base:
            self._base_start = len(self._segments)
        if text:
            self._segments.append(text)
        if not native:
            # Later hypotheses of this segment repeat what was just promoted
            self._segment_base = self._last_raw
            self._interim = ""
            logger.debug("Session %s pseudo-final: %r", self.session_id, text)
        self._persist()

    # -- reconciliation ----------------------------------------------------

    async def run_cycle(self, force_flush: bool = False) -> Optional[FanoutResult]:
        """Run one reconciliation cycle; None when there was nothing to send.

        force_flush sends any held leftover regardless of its age.
        """
        async with self._cycle_lock:
            plan = self._reconciler.plan(self.transcript, force=force_flush)
            if plan is None:
                return None
            punctuated = await self._punctuator.punctuate(plan.submit_text)
            complete_text = self._reconciler.commit(plan, punctuated)
            if not complete_text:
                return None
            self._generation += 1
            generation = self._generation

        logger.info(
            "Session %s cycle %d: translating %r", self.session_id, generation, complete_text
        )
        result = await self._fanout.dispatch(
            complete_text, self.source_language, self.target_languages, generation
        )
        self.apply_result(result)
        return result

    def apply_result(self, result: FanoutResult) -> bool:
        """Show a fan-out result if it is fresh and usable; True if shown."""
        if result.failures:
            logger.warning(
                "Session %s cycle %d: legs failed: %s",
                self.session_id, result.generation, result.failures,
            )
        if not result.succeeded:
            logger.warning(
                "Session %s cycle %d: no leg succeeded, keeping previous translations",
                self.session_id, result.generation,
            )
            self.last_failures = dict(result.failures)
            return False
        if result.generation <= self._displayed_generation:
            logger.info(
                "Session %s: discarding stale cycle %d (showing %d)",
                self.session_id, result.generation, self._displayed_generation,
            )
            return False

        self._translations = dict(result.translations)
        self._displayed_generation = result.generation
        self.last_failures = dict(result.failures)
        self._persist(force=True)
        if self._on_applied is not None:
            self._on_applied(result)
        return True

    async def process_audio(self, audio: bytes, pipeline) -> AudioFanoutResult:
        """Transcribe and translate one finished audio segment.

        The transcript is appended as a finalized segment and marked as
        processed so the text cycle does not translate it a second time.
        Raises FanoutError when transcription fails.
        """
        async with self._cycle_lock:
            self._generation += 1
            generation = self._generation

        result = await self._fanout.dispatch_audio(
            audio,
            self.source_language,
            self.target_languages,
            pipeline.transcribe,
            pipeline.translate_audio,
        )

        transcript = result.transcript.strip()
        if transcript:
            async with self._cycle_lock:
                self._segments.append(transcript)
                self._reconciler.mark_processed(self.transcript)
            self._persist()
        self.apply_result(
            FanoutResult(
                generation=generation,
                translations=dict(result.translations),
                failures=dict(result.failures),
            )
        )
        return result

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        """Begin the reconciliation loop on the running event loop."""
        if self.running:
            return
        logger.info(
            "Session %s started (%s -> %s)",
            self.session_id, self.source_language, ", ".join(self.target_languages),
        )
        self._loop_task = asyncio.get_running_loop().create_task(self._run_loop())

    async def _run_loop(self) -> None:
        interval = self.reconciliation_interval_ms / 1000.0
        while True:
            await asyncio.sleep(interval)
            task = asyncio.get_running_loop().create_task(self._guarded_cycle())
            self._cycle_tasks.add(task)
            task.add_done_callback(self._cycle_tasks.discard)

    async def _guarded_cycle(self) -> None:
        try:
            await self.run_cycle()
        except Exception:
            logger.exception(
                "Reconciliation cycle failed for session %s; skipping", self.session_id
            )

    async def drain(self) -> Optional[FanoutResult]:
        """Wait for in-flight cycles, then run one that flushes any leftover."""
        if self._cycle_tasks:
            await asyncio.gather(*list(self._cycle_tasks), return_exceptions=True)
        return await self.run_cycle(force_flush=True)

    async def stop(self) -> None:
        """Stop the loop, cancel in-flight cycles, reset all state."""
        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        tasks = list(self._cycle_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._cycle_tasks.clear()

        self.reset()
        logger.info("Session %s stopped", self.session_id)

    def reset(self) -> None:
        self._finalizer.reset()
        self._reconciler.reset()
        self._segments = []
        self._interim = ""
        self._last_raw = ""
        self._segment_base = ""
        self._base_start = 0
        self._translations = {}
        self.last_failures = {}
        self._generation = 0
        self._displayed_generation = 0
        self._saved_transcript = None
