"""Tests for CaptionSession: recognition handling, cycles and lifecycle.

WHY: The session is where every timing rule meets: silence timers,
reconciliation cycles that overlap with slow fan-outs, stale results
arriving late, and a stop that must leave nothing behind.

HOW:
  - TestRecognition: raw transcript building and pseudo-final tracking
  - TestCycle: one reconciliation cycle end to end with fakes
  - TestDisplayRules: generation ordering and partial-failure handling
  - TestConcurrency: overlapping cycles and the reconciliation lock
  - TestLifecycle: start/stop, drain, settings
  - TestAudio: process_audio bookkeeping
  - TestRecords: SessionRecord and session IDs
Timers run on ManualScheduler, the leftover clock on FakeClock; only
the lifecycle tests use the real event loop timers with short intervals.
"""

from __future__ import annotations

import asyncio
import random
import string
from unittest.mock import AsyncMock, MagicMock

import pytest
from conftest import EchoPunctuator, TaggingTranslator, no_sleep

from caption_relay.pipeline.fanout import FanoutResult, TranslationFanout
from caption_relay.pipeline.session import (
    CaptionSession,
    RecognitionEvent,
    SessionRecord,
    generate_session_id,
)


class ListSink:
    def __init__(self):
        self.records = []

    def save(self, record):
        self.records.append(record)


def _session(scheduler, clock, punctuator=None, translate=None, **kwargs):
    translate = translate or TaggingTranslator().translate
    return CaptionSession(
        session_id="abc123",
        source_language=kwargs.pop("source_language", "en"),
        punctuator=punctuator or EchoPunctuator(),
        fanout=TranslationFanout(translate, sleep=no_sleep),
        target_languages=kwargs.pop("target_languages", ["ja", "ko"]),
        clock=clock,
        scheduler=scheduler,
        **kwargs,
    )


def _final(text):
    return RecognitionEvent(text=text, is_final=True)


def _interim(text):
    return RecognitionEvent(text=text, is_final=False)


# ---------------------------------------------------------------------------
# Recognition
# ---------------------------------------------------------------------------


class TestRecognition:
    def test_interim_text_is_live_tail(self, scheduler, clock):
        session = _session(scheduler, clock)
        session.handle_event(_interim("hello wor"))
        assert session.transcript == "hello wor"
        session.handle_event(_interim("hello world"))
        assert session.transcript == "hello world"

    def test_native_final_becomes_segment(self, scheduler, clock):
        session = _session(scheduler, clock)
        session.handle_event(_final("Hello world."))
        session.handle_event(_interim("next one"))
        assert session.transcript == "Hello world. next one"

    def test_silence_promotes_interim(self, scheduler, clock):
        session = _session(scheduler, clock, silence_threshold_ms=350)
        session.handle_event(_interim("hello world"))
        scheduler.advance(350)
        session.handle_event(_interim("hello world how"))
        assert session.transcript == "hello world how"

    def test_pseudo_final_not_duplicated_by_native_final(self, scheduler, clock):
        session = _session(scheduler, clock)
        session.handle_event(_interim("hello world"))
        scheduler.advance(350)
        session.handle_event(_final("hello world"))
        assert session.transcript == "hello world"

    def test_native_final_after_pseudo_final_adds_only_new_words(self, scheduler, clock):
        session = _session(scheduler, clock)
        session.handle_event(_interim("hello world"))
        scheduler.advance(350)
        session.handle_event(_interim("hello world how are"))
        session.handle_event(_final("hello world how are you"))
        assert session.transcript == "hello world how are you"
        session.handle_event(_interim("second segment"))
        assert session.transcript == "hello world how are you second segment"

    def test_revised_last_word_after_pseudo_final_is_not_split(self, scheduler, clock):
        session = _session(scheduler, clock)
        session.handle_event(_interim("I went to the store"))
        scheduler.advance(350)
        session.handle_event(_interim("I went to the stores and"))
        assert session.transcript == "I went to the stores and"

        scheduler.advance(350)
        session.handle_event(_interim("I went to the stores and bought"))
        assert session.transcript == "I went to the stores and bought"

    def test_native_final_revising_pseudo_final(self, scheduler, clock):
        session = _session(scheduler, clock)
        session.handle_event(_interim("hello world"))
        scheduler.advance(350)
        session.handle_event(_final("hello worlds."))
        assert session.transcript == "hello worlds."
        session.handle_event(_interim("next"))
        assert session.transcript == "hello worlds. next"

    def test_revision_drops_every_piece_of_its_segment_only(self, scheduler, clock):
        session = _session(scheduler, clock)
        session.handle_event(_final("First."))
        session.handle_event(_interim("a b"))
        scheduler.advance(350)
        session.handle_event(_interim("a b c"))
        scheduler.advance(350)
        assert session.transcript == "First. a b c"

        session.handle_event(_interim("a b cd"))
        assert session.transcript == "First. a b cd"

    def test_finalizer_disabled_keeps_interim(self, scheduler, clock):
        session = _session(scheduler, clock, use_silence_finalizer=False)
        session.handle_event(_interim("hello world"))
        scheduler.advance(5000)
        session.handle_event(_interim("hello world again"))
        assert session.transcript == "hello world again"
        assert scheduler.armed == []

    def test_transcript_changes_are_persisted(self, scheduler, clock):
        sink = ListSink()
        session = _session(scheduler, clock, sink=sink)
        session.handle_event(_interim("hello"))
        session.handle_event(_interim("hello"))
        session.handle_event(_interim("hello there"))
        assert [r.transcript for r in sink.records] == ["hello", "hello there"]
        assert sink.records[-1].session_id == "abc123"

    def test_default_targets_exclude_source(self, scheduler, clock):
        session = CaptionSession(
            "abc123", "ko", EchoPunctuator(), TranslationFanout(AsyncMock()),
            scheduler=scheduler, clock=clock,
        )
        assert session.target_languages == ["en", "ja"]


# ---------------------------------------------------------------------------
# Reconciliation cycle
# ---------------------------------------------------------------------------


class TestCycle:
    def test_complete_sentences_are_translated(self, scheduler, clock):
        punctuator = EchoPunctuator({"hello there how are": "Hello there. How are"})
        sink = ListSink()
        session = _session(scheduler, clock, punctuator=punctuator, sink=sink)
        session.handle_event(_interim("hello there how are"))

        result = asyncio.run(session.run_cycle())

        assert result.generation == 1
        assert session.translations == {
            "ja": "[ja] Hello there.",
            "ko": "[ko] Hello there.",
        }
        assert session.reconciler.state.leftover.text == "How are"
        assert sink.records[-1].translations == session.translations

    def test_nothing_new_returns_none(self, scheduler, clock):
        session = _session(scheduler, clock)
        assert asyncio.run(session.run_cycle()) is None

    def test_unfinished_text_is_held(self, scheduler, clock):
        translator = TaggingTranslator()
        session = _session(scheduler, clock, translate=translator.translate)
        session.handle_event(_interim("so we went and"))
        assert asyncio.run(session.run_cycle()) is None
        assert translator.calls == []
        assert session.generation == 0

    def test_leftover_completed_by_next_cycle(self, scheduler, clock):
        punctuator = EchoPunctuator({
            "hello there how are": "Hello there. How are",
            "How are you": "How are you?",
        })
        session = _session(scheduler, clock, punctuator=punctuator)
        session.handle_event(_interim("hello there how are"))
        asyncio.run(session.run_cycle())
        session.handle_event(_interim("hello there how are you"))
        result = asyncio.run(session.run_cycle())
        assert result.translations["ja"] == "[ja] How are you?"
        assert punctuator.calls == ["hello there how are", "How are you"]

    def test_stale_leftover_is_forced_out(self, scheduler, clock):
        session = _session(scheduler, clock)
        session.handle_event(_final("so we went and"))
        assert asyncio.run(session.run_cycle()) is None
        clock.advance_ms(6000)
        result = asyncio.run(session.run_cycle())
        assert result.translations["ko"] == "[ko] so we went and"

    def test_punctuation_failure_leaves_state_untouched(self, scheduler, clock):
        punctuator = MagicMock()
        punctuator.punctuate = AsyncMock(side_effect=RuntimeError("boom"))
        session = _session(scheduler, clock, punctuator=punctuator)
        session.handle_event(_final("Hello."))
        with pytest.raises(RuntimeError):
            asyncio.run(session.run_cycle())
        assert session.reconciler.state.last_processed_text == ""
        assert session.generation == 0


# ---------------------------------------------------------------------------
# Display rules
# ---------------------------------------------------------------------------


class TestDisplayRules:
    def test_older_generation_is_discarded(self, scheduler, clock):
        session = _session(scheduler, clock)
        assert session.apply_result(FanoutResult(2, {"ja": "new"}))
        assert not session.apply_result(FanoutResult(1, {"ja": "old"}))
        assert session.translations == {"ja": "new"}
        assert session.displayed_generation == 2

    def test_all_failed_keeps_previous_translations(self, scheduler, clock):
        session = _session(scheduler, clock)
        session.apply_result(FanoutResult(1, {"ja": "ok", "ko": "ok"}))
        applied = session.apply_result(FanoutResult(2, {}, {"ja": "boom", "ko": "boom"}))
        assert not applied
        assert session.translations == {"ja": "ok", "ko": "ok"}
        assert set(session.last_failures) == {"ja", "ko"}
        assert session.displayed_generation == 1

    def test_partial_failure_replaces_with_successful_legs(self, scheduler, clock):
        translator = TaggingTranslator()
        session = _session(scheduler, clock, translate=translator.translate)
        session.handle_event(_final("Hello."))
        asyncio.run(session.run_cycle())
        assert set(session.translations) == {"ja", "ko"}

        translator.fail["ja"] = ValueError("fatal")
        session.handle_event(_final("Good morning."))
        result = asyncio.run(session.run_cycle())

        assert result.generation == 2
        assert session.translations == {"ko": "[ko] Good morning."}
        assert "ja" in session.last_failures

    def test_on_applied_callback(self, scheduler, clock):
        applied = []
        session = _session(scheduler, clock, on_applied=applied.append)
        session.handle_event(_final("Hi."))
        asyncio.run(session.run_cycle())
        assert [r.generation for r in applied] == [1]


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrency:
    def test_late_result_of_older_cycle_is_discarded(self, scheduler, clock):
        async def _run():
            gate = asyncio.Event()
            started = asyncio.Event()

            async def translate(text, source, target):
                if text == "One.":
                    started.set()
                    await gate.wait()
                return "[{}] {}".format(target, text)

            session = _session(scheduler, clock, translate=translate)
            session.handle_event(_final("One."))
            first = asyncio.create_task(session.run_cycle())
            await started.wait()

            session.handle_event(_final("Two."))
            second = await session.run_cycle()
            gate.set()
            first_result = await first
            return session, first_result, second

        session, first_result, second = asyncio.run(_run())
        assert first_result.generation == 1
        assert second.generation == 2
        assert session.translations == {"ja": "[ja] Two.", "ko": "[ko] Two."}
        assert session.displayed_generation == 2

    def test_reconciliation_is_serialized(self, scheduler, clock):
        async def _run():
            gate = asyncio.Event()
            calls = []

            class SlowPunctuator:
                async def punctuate(self, text):
                    calls.append(text)
                    await gate.wait()
                    return text

            session = _session(scheduler, clock, punctuator=SlowPunctuator())
            session.handle_event(_final("Hello."))
            tasks = [asyncio.create_task(session.run_cycle()) for _ in range(2)]
            await asyncio.sleep(0)
            gate.set()
            return calls, await asyncio.gather(*tasks)

        calls, results = asyncio.run(_run())
        assert calls == ["Hello."]
        assert sum(result is not None for result in results) == 1


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    def test_loop_runs_cycles_and_stop_resets(self, scheduler, clock):
        async def _run():
            session = _session(scheduler, clock, reconciliation_interval_ms=10)
            session.start()
            assert session.running
            session.handle_event(_final("Hello."))
            for _ in range(50):
                if session.translations:
                    break
                await asyncio.sleep(0.01)
            translations = session.translations
            await session.stop()
            return session, translations

        session, translations = asyncio.run(_run())
        assert translations == {"ja": "[ja] Hello.", "ko": "[ko] Hello."}
        assert not session.running
        assert session.transcript == ""
        assert session.translations == {}
        assert session.generation == 0
        assert session.reconciler.state.last_processed_text == ""
        assert not session.reconciler.state.leftover

    def test_loop_survives_failing_cycle(self, scheduler, clock):
        async def _run():
            punctuator = MagicMock()
            punctuator.punctuate = AsyncMock(side_effect=RuntimeError("boom"))
            session = _session(scheduler, clock, punctuator=punctuator, reconciliation_interval_ms=10)
            session.start()
            session.handle_event(_final("Hello."))
            for _ in range(50):
                if punctuator.punctuate.await_count >= 2:
                    break
                await asyncio.sleep(0.01)
            running = session.running
            await session.stop()
            return punctuator, running

        punctuator, running = asyncio.run(_run())
        assert running
        assert punctuator.punctuate.await_count >= 2

    def test_stop_cancels_pending_silence_timer(self, scheduler, clock):
        session = _session(scheduler, clock)
        session.handle_event(_interim("hello"))
        asyncio.run(session.stop())
        scheduler.advance(1000)
        assert session.transcript == ""

    def test_start_is_idempotent(self, scheduler, clock):
        async def _run():
            session = _session(scheduler, clock)
            session.start()
            task = session._loop_task
            session.start()
            same = session._loop_task is task
            await session.stop()
            return same

        assert asyncio.run(_run())

    def test_drain_flushes_leftover(self, scheduler, clock):
        session = _session(scheduler, clock)
        session.handle_event(_final("and then we"))
        assert asyncio.run(session.run_cycle()) is None
        result = asyncio.run(session.drain())
        assert result.translations["ja"] == "[ja] and then we"

    def test_set_silence_threshold(self, scheduler, clock):
        session = _session(scheduler, clock)
        session.set_silence_threshold(200)
        assert session.silence_threshold_ms == 200
        with pytest.raises(ValueError):
            session.set_silence_threshold(50)
        assert session.silence_threshold_ms == 200


# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------


class TestAudio:
    def test_transcript_appended_and_not_retranslated(self, scheduler, clock):
        pipeline = MagicMock()
        pipeline.transcribe = AsyncMock(return_value="Good morning.")
        pipeline.translate_audio = AsyncMock(side_effect=lambda audio, src, tgt: "<{}>".format(tgt))
        translator = TaggingTranslator()
        session = _session(scheduler, clock, translate=translator.translate)

        result = asyncio.run(session.process_audio(b"wav", pipeline))

        assert result.transcript == "Good morning."
        assert session.transcript == "Good morning."
        assert session.translations == {"ja": "<ja>", "ko": "<ko>"}
        assert asyncio.run(session.run_cycle()) is None
        assert translator.calls == []


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class TestRecords:
    def test_record_dict_keys(self):
        record = SessionRecord("abc123", "Hello.", {"ja": "こんにちは"}, "en", 12.5)
        assert record.to_dict() == {
            "transcript": "Hello.",
            "translationsByLanguage": {"ja": "こんにちは"},
            "sourceLanguage": "en",
            "timestamp": 12.5,
        }

    def test_session_id_format(self):
        session_id = generate_session_id()
        assert len(session_id) == 6
        assert all(ch in string.ascii_letters + string.digits for ch in session_id)

    def test_session_id_deterministic_with_rng(self):
        assert generate_session_id(random.Random(7)) == generate_session_id(random.Random(7))
