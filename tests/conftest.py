"""Shared test fixtures for the caption_relay test suite.

WHY: The silence finalizer, the leftover buffer and the session all
depend on time. Waiting for real timers makes tests slow and flaky, so
the suite drives time by hand: a fake monotonic clock and a scheduler
whose timers only fire when the test advances it.

HOW: FakeClock is a callable returning seconds, advanced in
milliseconds. ManualScheduler implements call_later(delay_ms, callback)
with real TimerHandle objects and fires them in due order from
advance(). Simple async fakes stand in for the punctuator and the
translate function.

RULES:
- Timers fire only inside ManualScheduler.advance()
- A cancelled TimerHandle never fires, even when its due time passes
- FakeClock and ManualScheduler share no state; tests advance both
  when both matter
"""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple

import pytest

from caption_relay.core.timers import TimerHandle


class FakeClock:
    """Monotonic clock in seconds, moved only by advance_ms()."""

    def __init__(self, start_s: float = 1000.0) -> None:
        self.now = start_s

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


class ManualScheduler:
    """Scheduler whose timers fire when the test says so."""

    def __init__(self) -> None:
        self.now_ms = 0.0
        self._timers: List[Tuple[float, int, TimerHandle]] = []
        self._seq = 0

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(callback)
        self._seq += 1
        self._timers.append((self.now_ms + delay_ms, self._seq, handle))
        return handle

    @property
    def armed(self) -> List[TimerHandle]:
        return [handle for _, _, handle in self._timers if handle.active]

    def advance(self, ms: float) -> None:
        target = self.now_ms + ms
        while True:
            due = sorted(
                (entry for entry in self._timers if entry[0] <= target and entry[2].active),
                key=lambda entry: (entry[0], entry[1]),
            )
            if not due:
                break
            when, _, handle = due[0]
            self.now_ms = when
            handle.fire()
        self.now_ms = target
        self._timers = [entry for entry in self._timers if entry[2].active]


class EchoPunctuator:
    """Punctuator fake: returns a canned answer per input, else the input."""

    def __init__(self, answers: Optional[Dict[str, str]] = None) -> None:
        self.answers = answers or {}
        self.calls: List[str] = []

    async def punctuate(self, text: str) -> str:
        self.calls.append(text)
        return self.answers.get(text, text)


class TaggingTranslator:
    """translate() fake producing "[lang] text" and recording calls."""

    def __init__(self, fail: Optional[Dict[str, Exception]] = None) -> None:
        self.fail = fail or {}
        self.calls: List[Tuple[str, str, str]] = []

    async def translate(self, text: str, source: str, target: str) -> str:
        self.calls.append((text, source, target))
        if target in self.fail:
            raise self.fail[target]
        return "[{}] {}".format(target, text)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def punctuator():
    return EchoPunctuator()


@pytest.fixture
def translator():
    return TaggingTranslator()


async def no_sleep(seconds: float) -> None:
    """Stand-in for asyncio.sleep that returns at once."""
    return None
