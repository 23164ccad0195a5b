"""Unit tests for delta extraction between recognition snapshots.

WHY: Every reconciliation cycle starts from extract_delta(). A wrong
delta either re-translates old speech or silently drops new speech.

HOW: TestExtractDelta covers the extension case, drift, and the empty
edges. TestCommonPrefix covers the helper directly.
"""

from __future__ import annotations

from caption_relay.core.delta import common_prefix_length, extract_delta


class TestExtractDelta:
    """extract_delta() returns only the newly-spoken text."""

    def test_extension_returns_remainder(self):
        assert extract_delta("hello how", "hello how are you") == "are you"

    def test_identical_snapshots_give_empty_delta(self):
        assert extract_delta("hello world", "hello world") == ""

    def test_empty_previous_returns_whole_text_stripped(self):
        assert extract_delta("", "  first words  ") == "first words"

    def test_drift_starts_at_first_difference(self):
        assert extract_delta("helo world", "hello world") == "lo world"

    def test_revision_of_last_word(self):
        assert extract_delta("we met on monday", "we met on tuesday") == "tuesday"

    def test_shrinking_hypothesis_gives_empty_delta(self):
        # current is a strict prefix of previous: nothing new was said
        assert extract_delta("hello there friend", "hello there") == ""

    def test_result_is_stripped(self):
        assert extract_delta("hello", "hello   world  ") == "world"

    def test_is_deterministic(self):
        previous, current = "one two", "one two three"
        assert extract_delta(previous, current) == extract_delta(previous, current)


class TestCommonPrefix:
    def test_shared_prefix(self):
        assert common_prefix_length("abcdef", "abcxyz") == 3

    def test_no_shared_prefix(self):
        assert common_prefix_length("abc", "xyz") == 0

    def test_one_string_empty(self):
        assert common_prefix_length("", "abc") == 0

    def test_prefix_of_other(self):
        assert common_prefix_length("abc", "abcdef") == 3
