"""Concurrent dispatch of one source text to several target languages.

WHY: A live caption shows the source text and every target language at
once. Translating one language after another multiplies latency by the
number of targets, so every target gets its own request, all in flight
together on the event loop.

HOW: dispatch() starts one leg per target language with asyncio.gather
and collects each leg's outcome separately: successes go into
translations, failures into failures. A failing leg never takes the
others down. dispatch_audio() does the same for the audio end-to-end
path, where the transcription request and the per-language audio
translation requests are issued together and translation leg i is
delayed by i * stagger_ms to avoid a burst against a rate-limited
provider.

RULES:
- The source language is never a target; duplicate targets collapse
- Blank text or no targets → empty result, no requests
- Every result carries the generation it was dispatched for; whether a
  result is still fresh is the caller's decision
- Cancellation (BaseException) is re-raised, never reported as a leg
  failure
- failures holds whatever the translate function raised; behind a
  Translator with source fallback that is missing configuration only,
  since provider errors come back as untranslated source text
- dispatch_audio raises FanoutError when the transcription leg fails;
  translation legs are isolated as in dispatch()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Iterable, List

from caption_relay.config import FANOUT_STAGGER_MS

logger = logging.getLogger(__name__)

TranslateFn = Callable[[str, str, str], Awaitable[str]]
TranscribeAudioFn = Callable[[bytes, str], Awaitable[str]]
TranslateAudioFn = Callable[[bytes, str, str], Awaitable[str]]


class FanoutError(Exception):
    """Raised when the transcription leg of an audio fan-out fails."""


@dataclass
class FanoutResult:
    """Outcome of one fan-out.

    RULES:
    - translations: language → translated text, successful legs only
    - failures: language → error description, failed legs only
    """

    generation: int
    translations: Dict[str, str] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        """At least one leg produced a translation."""
        return bool(self.translations)

    @property
    def complete(self) -> bool:
        """No leg failed."""
        return not self.failures


@dataclass
class AudioFanoutResult:
    transcript: str
    translations: Dict[str, str] = field(default_factory=dict)
    failures: Dict[str, str] = field(default_factory=dict)


def unique_targets(source: str, targets: Iterable[str]) -> List[str]:
    """Targets in order, without the source language or repeats."""
    seen = []
    for lang in targets:
        if lang != source and lang not in seen:
            seen.append(lang)
    return seen


def _describe(exc: BaseException) -> str:
    return "{}: {}".format(type(exc).__name__, exc)


class TranslationFanout:
    """Issues one translation request per target language concurrently."""

    def __init__(
        self,
        translate: TranslateFn,
        stagger_ms: int = 0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._translate = translate
        self.stagger_ms = stagger_ms
        self._sleep = sleep

    async def _staggered(self, index: int, stagger_ms: int, call: Callable[[], Awaitable[str]]) -> str:
        if index and stagger_ms:
            await self._sleep(index * stagger_ms / 1000.0)
        return await call()

    def _collect(self, languages: List[str], outcomes: list, translations: dict, failures: dict) -> None:
        for lang, outcome in zip(languages, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Translation leg %s failed: %s", lang, outcome)
                failures[lang] = _describe(outcome)
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                translations[lang] = outcome

    async def dispatch(
        self,
        text: str,
        source: str,
        targets: Iterable[str],
        generation: int = 0,
    ) -> FanoutResult:
        """Translate text into every target language at once."""
        languages = unique_targets(source, targets)
        result = FanoutResult(generation=generation)
        if not text.strip() or not languages:
            return result

        legs = [
            self._staggered(
                index,
                self.stagger_ms,
                lambda lang=lang: self._translate(text, source, lang),
            )
            for index, lang in enumerate(languages)
        ]
        outcomes = await asyncio.gather(*legs, return_exceptions=True)
        self._collect(languages, outcomes, result.translations, result.failures)

        logger.debug(
            "Fan-out gen=%d: %d ok, %d failed",
            generation, len(result.translations), len(result.failures),
        )
        return result

    async def dispatch_audio(
        self,
        audio: bytes,
        source: str,
        targets: Iterable[str],
        transcribe: TranscribeAudioFn,
        translate_audio: TranslateAudioFn,
        stagger_ms: int = FANOUT_STAGGER_MS,
    ) -> AudioFanoutResult:
        """Transcribe and translate one audio payload in a single burst."""
        languages = unique_targets(source, targets)
        legs = [
            self._staggered(
                index,
                stagger_ms,
                lambda lang=lang: translate_audio(audio, source, lang),
            )
            for index, lang in enumerate(languages)
        ]
        outcomes = await asyncio.gather(
            transcribe(audio, source), *legs, return_exceptions=True
        )

        transcript = outcomes[0]
        if isinstance(transcript, BaseException):
            if not isinstance(transcript, Exception):
                raise transcript
            raise FanoutError(
                "Audio transcription failed: {}".format(_describe(transcript))
            ) from transcript

        result = AudioFanoutResult(transcript=transcript)
        self._collect(languages, outcomes[1:], result.translations, result.failures)
        return result
