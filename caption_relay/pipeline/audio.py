"""Audio end-to-end path: one speech segment in, transcript and translations out.

WHY: When the recognizer hands over a finished audio segment instead of
text, a multimodal model can transcribe it and translate it straight
from the audio in parallel, saving one round trip per caption compared
with transcribe-then-translate.

HOW: GeminiAudioPipeline exposes transcribe(audio, source) and
translate_audio(audio, source, target), each one retried Gemini call
with a purpose-built prompt. TranslationFanout.dispatch_audio() runs
them together.

RULES:
- Audio is WAV bytes, at most MAX_AUDIO_BYTES (20 MB)
- Key terms are shuffled into the transcription prompt so no term is
  always first; the translation prompt lists them in order
- Silent audio may legitimately yield ""
- Model-inserted timestamps are stripped from every answer
"""

from __future__ import annotations

import random
from typing import List, Optional, Sequence

from caption_relay.api.client import GeminiClient
from caption_relay.api.retry import RetryingRequester
from caption_relay.config import language_name
from caption_relay.core.filters import strip_timestamps

MAX_AUDIO_BYTES = 20 * 1024 * 1024


def build_transcription_prompt(
    source_name: str,
    keyterms: Optional[Sequence[str]] = None,
    rng: Optional[random.Random] = None,
) -> str:
    prompt = (
        "Transcribe the following audio accurately. The audio is in {}. "
        "Return ONLY the transcribed text, nothing else. If the audio is "
        "silent or contains no speech, return an empty string."
    ).format(source_name)

    if keyterms:
        shuffled: List[str] = list(keyterms)
        (rng or random).shuffle(shuffled)
        prompt += (
            "\n\nIMPORTANT: The speaker may use the following specific terms. "
            "When you hear these words or similar-sounding words, use the exact "
            "spelling provided:\n"
        )
        prompt += "".join('- "{}"\n'.format(term) for term in shuffled)
    return prompt


def build_audio_translation_prompt(
    source_name: str,
    target_name: str,
    keyterms: Optional[Sequence[str]] = None,
) -> str:
    prompt = (
        "Listen to the audio in {} and translate what is said into {}. "
        "Output ONLY the translation, nothing else. If the audio is silent, "
        "return an empty string."
    ).format(source_name, target_name)
    if keyterms:
        prompt += "\n\nThe speaker may mention the following terms: {}.".format(
            ", ".join('"{}"'.format(term) for term in keyterms)
        )
    return prompt


class GeminiAudioPipeline:
    """Transcribe / translate raw audio with Gemini."""

    def __init__(
        self,
        client: GeminiClient,
        requester: Optional[RetryingRequester] = None,
        keyterms: Optional[Sequence[str]] = None,
    ) -> None:
        self._client = client
        self._requester = requester or RetryingRequester()
        self.keyterms = list(keyterms or [])

    @staticmethod
    def _check_size(audio: bytes) -> None:
        if len(audio) > MAX_AUDIO_BYTES:
            raise ValueError(
                "Audio too large: {:.2f} MB (limit {} MB)".format(
                    len(audio) / (1024 * 1024), MAX_AUDIO_BYTES // (1024 * 1024)
                )
            )

    async def transcribe(self, audio: bytes, source: str) -> str:
        self._check_size(audio)
        prompt = build_transcription_prompt(language_name(source), self.keyterms)
        result = await self._requester.call(
            lambda: self._client.generate(
                prompt, audio=audio, max_output_tokens=1024, temperature=0.2
            )
        )
        return strip_timestamps(result)

    async def translate_audio(self, audio: bytes, source: str, target: str) -> str:
        self._check_size(audio)
        prompt = build_audio_translation_prompt(
            language_name(source), language_name(target), self.keyterms
        )
        result = await self._requester.call(
            lambda: self._client.generate(
                prompt, audio=audio, max_output_tokens=500, temperature=0.2
            )
        )
        return strip_timestamps(result)
