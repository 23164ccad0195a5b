"""Unit tests for the reconciliation cycle (plan / commit).

WHY: The reconciler decides what each cycle punctuates and what it
declares complete. These tests walk through multi-cycle scenarios with
a fake clock so the leftover force-flush timing is exact.

HOW:
  - TestPlan: when a cycle has work and what it submits
  - TestCommit: segmentation, leftover bookkeeping, forced flush
  - TestScenarios: several cycles in a row, as the session runs them
"""

from __future__ import annotations

from conftest import FakeClock

from caption_relay.core.reconciler import Reconciler


def _reconciler(clock: FakeClock, force_flush_ms: int = 6000) -> Reconciler:
    return Reconciler(force_flush_ms=force_flush_ms, clock=clock)


class TestPlan:
    def test_nothing_new_returns_none(self, clock):
        rec = _reconciler(clock)
        assert rec.plan("") is None

    def test_first_text_is_submitted(self, clock):
        rec = _reconciler(clock)
        plan = rec.plan("hello there how are")
        assert plan.delta == "hello there how are"
        assert plan.submit_text == "hello there how are"
        assert not plan.forced_flush

    def test_plan_has_no_side_effects(self, clock):
        rec = _reconciler(clock)
        rec.plan("hello")
        assert rec.state.last_processed_text == ""
        assert rec.plan("hello").delta == "hello"

    def test_leftover_is_resubmitted_with_delta(self, clock):
        rec = _reconciler(clock)
        plan = rec.plan("hello there how are")
        rec.commit(plan, "Hello there. How are")
        plan = rec.plan("hello there how are you")
        assert plan.submit_text == "How are you"

    def test_unchanged_text_with_fresh_leftover_returns_none(self, clock):
        rec = _reconciler(clock)
        rec.commit(rec.plan("how are"), "How are")
        clock.advance_ms(2000)
        assert rec.plan("how are") is None

    def test_stale_leftover_is_planned_without_delta(self, clock):
        rec = _reconciler(clock)
        rec.commit(rec.plan("how are"), "How are")
        clock.advance_ms(6000)
        plan = rec.plan("how are")
        assert plan is not None
        assert plan.delta == ""
        assert plan.submit_text == "How are"
        assert plan.forced_flush

    def test_force_flushes_fresh_leftover(self, clock):
        rec = _reconciler(clock)
        rec.commit(rec.plan("how are"), "How are")
        plan = rec.plan("how are", force=True)
        assert plan.forced_flush

    def test_force_without_leftover_or_delta_returns_none(self, clock):
        rec = _reconciler(clock)
        assert rec.plan("", force=True) is None


class TestCommit:
    def test_returns_complete_text_and_holds_tail(self, clock):
        rec = _reconciler(clock)
        complete = rec.commit(rec.plan("hello there how are"), "Hello there. How are")
        assert complete == "Hello there."
        assert rec.state.leftover.text == "How are"
        assert rec.state.last_processed_text == "hello there how are"

    def test_all_complete_clears_leftover(self, clock):
        rec = _reconciler(clock)
        rec.commit(rec.plan("how are"), "How are")
        complete = rec.commit(rec.plan("how are you"), "How are you?")
        assert complete == "How are you?"
        assert not rec.state.leftover

    def test_forced_flush_sends_everything(self, clock):
        rec = _reconciler(clock)
        rec.commit(rec.plan("so we went and"), "So we went and")
        clock.advance_ms(6500)
        plan = rec.plan("so we went and then")
        complete = rec.commit(plan, "So we went and then")
        assert complete == "So we went and then"
        assert not rec.state.leftover

    def test_forced_flush_keeps_complete_part_first(self, clock):
        rec = _reconciler(clock)
        rec.commit(rec.plan("a b"), "A b")
        clock.advance_ms(6000)
        complete = rec.commit(rec.plan("a b c d"), "A b c. D")
        assert complete == "A b c. D"

    def test_mark_processed_skips_text(self, clock):
        rec = _reconciler(clock)
        rec.mark_processed("already translated")
        assert rec.plan("already translated") is None

    def test_reset_returns_to_empty(self, clock):
        rec = _reconciler(clock)
        rec.commit(rec.plan("one two"), "One two")
        rec.reset()
        assert rec.state.last_processed_text == ""
        assert not rec.state.leftover


class TestScenarios:
    """Sequences of cycles as the session runs them."""

    def test_sentence_completed_across_two_cycles(self, clock):
        rec = _reconciler(clock)
        first = rec.commit(rec.plan("hello there how are"), "Hello there. How are")
        clock.advance_ms(2000)
        second = rec.commit(rec.plan("hello there how are you"), "How are you?")
        assert first == "Hello there."
        assert second == "How are you?"

    def test_run_on_speech_flushed_within_force_flush_window(self, clock):
        rec = _reconciler(clock)
        outputs = []
        text = ""
        for word in ["and", "then", "we", "kept", "going"]:
            text = (text + " " + word).strip()
            plan = rec.plan(text)
            if plan is not None:
                outputs.append(rec.commit(plan, plan.submit_text))
            clock.advance_ms(2000)
        # The fragment appeared at t=0; the cycle at t=6000 flushes it
        assert outputs[:3] == ["", "", ""]
        assert outputs[3] == "and then we kept"
        assert outputs[4] == ""
        assert rec.state.leftover.text == "going"
