"""Punctuation and translation services with provider fallback.

WHY: The reconciliation cycle needs two operations it can always call:
punctuate(text) and translate(text, source, target). Providers fail in
many ways (rate limits, bad answers, leaked prompts) and a caption
display should never show an error instead of text. These services
absorb provider trouble and degrade to "return the original text".

HOW: Each provider is a thin adapter over one API client exposing
translate(text, source, target, minimal=False). Translator walks an
ordered provider chain, wrapping each call in RetryingRequester. LLM
answers are checked for prompt leakage; a leaked answer is retried once
with a minimal prompt, and a second leak yields the source text.
Punctuator sends the punctuation prompt to a chat-completions model and
returns the input unchanged on any provider failure.

RULES:
- Blank input is returned unchanged without any provider call
- MissingCredentialError is never absorbed: the caller's leg fails
- Provider errors move on to the next provider in the chain; when the
  chain is exhausted the source text is returned (fallback_to_source)
  or the last error is raised
- Denial checks apply to LLM providers only (supports_minimal=True)
- With the default fallback_to_source=True a leg whose providers all
  fail still succeeds with the source text, so a fan-out over
  translate() reports only MissingCredentialError legs as failures
"""

from __future__ import annotations

import logging
import math
from typing import List, Optional

import httpx

from caption_relay.api.client import (
    ChatCompletionsClient,
    GeminiClient,
    PapagoClient,
    ProviderAPIError,
)
from caption_relay.api.retry import RetryingRequester
from caption_relay.config import MissingCredentialError, language_name
from caption_relay.core.filters import (
    detect_translation_denial,
    strip_quotes,
    strip_timestamps,
)

logger = logging.getLogger(__name__)

PROVIDER_ERRORS = (ProviderAPIError, httpx.HTTPError)

PUNCTUATION_PROMPT = """You are an expert at adding punctuation to transcribed speech. Add appropriate punctuation to make text grammatically correct and readable.

RULES:
1. Add periods (.), question marks (?), exclamation marks (!), and commas (,) where appropriate
2. Never change, add, or remove words - only add punctuation
3. Create clear sentence boundaries for complete thoughts
4. If text ends mid-sentence or mid-thought, do NOT add ending punctuation
5. Capitalize the first word of each sentence
6. Use commas for natural speech pauses and list items

EXAMPLES:

Input: "the organizational structure and"
Output: "The organizational structure and"

Input: "the candidate was offered the role"
Output: "The candidate was offered the role."

Input: "we conducted extensive interviews reference checks and skill tests"
Output: "We conducted extensive interviews, reference checks, and skill tests."

Input: "job advertisements were widely posted on job boards and in newspapers roughly after a week the candidate was then offered the role however according to research"
Output: "Job advertisements were widely posted on job boards and in newspapers. Roughly after a week, the candidate was then offered the role. However, according to research"

Return only the punctuated text with no explanations."""


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class GeminiTranslationProvider:
    """Text translation through Gemini with a minimal-prompt variant."""

    name = "gemini"
    supports_minimal = True

    def __init__(self, client: GeminiClient) -> None:
        self._client = client

    async def translate(
        self, text: str, source: str, target: str, minimal: bool = False
    ) -> str:
        if minimal:
            prompt = "Translate to {}: {}".format(language_name(target), text)
        else:
            prompt = (
                "Translate {} to {}. Output ONLY the translation, nothing else.".format(
                    language_name(source), language_name(target)
                )
            )
        result = await self._client.generate(prompt, text=text, temperature=0.3)
        return strip_timestamps(result)


class GptTranslationProvider:
    """Text translation through an OpenAI-compatible chat model."""

    name = "gpt"
    supports_minimal = True

    def __init__(self, client: ChatCompletionsClient) -> None:
        self._client = client

    async def translate(
        self, text: str, source: str, target: str, minimal: bool = False
    ) -> str:
        if minimal:
            prompt = "Translate to {}. Output only the translation.".format(
                language_name(target)
            )
        else:
            prompt = (
                "You are a professional translator. Translate the following text "
                "from {} to {}. Maintain the original meaning and nuance, but make "
                "it sound natural in the target language. Return only the "
                "translated text with no explanations or additional content."
            ).format(language_name(source), language_name(target))
        result = await self._client.complete(prompt, text, temperature=0.3)
        return strip_quotes(result)


class PapagoTranslationProvider:
    """Character-billed machine translation; no prompt, no denial check."""

    name = "papago"
    supports_minimal = False

    def __init__(self, client: PapagoClient) -> None:
        self._client = client

    async def translate(
        self, text: str, source: str, target: str, minimal: bool = False
    ) -> str:
        return await self._client.translate(text, source, target)


class UnconfiguredProvider:
    """Stands in for a provider whose credentials were missing at startup.

    WHY: Missing configuration is reported when a call needs it, not
    when the process starts; this placeholder re-raises the original
    MissingCredentialError on every call.
    """

    supports_minimal = False

    def __init__(self, name: str, error: MissingCredentialError) -> None:
        self.name = name
        self._error = error

    async def translate(
        self, text: str, source: str, target: str, minimal: bool = False
    ) -> str:
        raise MissingCredentialError(str(self._error))


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


class Translator:
    """Translate one text into one language through a provider chain."""

    def __init__(
        self,
        providers: List,
        requester: Optional[RetryingRequester] = None,
        fallback_to_source: bool = True,
    ) -> None:
        if not providers:
            raise ValueError("Translator needs at least one provider")
        self.providers = providers
        self._requester = requester or RetryingRequester()
        self.fallback_to_source = fallback_to_source

    async def translate(self, text: str, source: str, target: str) -> str:
        if not text.strip():
            return text

        last_error: Optional[Exception] = None
        for provider in self.providers:
            try:
                return await self._translate_with(provider, text, source, target)
            except PROVIDER_ERRORS as exc:
                logger.warning(
                    "%s translation %s->%s failed: %s",
                    provider.name, source, target, exc,
                )
                last_error = exc

        if self.fallback_to_source:
            logger.warning(
                "All translation providers failed for %s->%s; showing source text",
                source, target,
            )
            return text
        raise last_error

    async def _translate_with(self, provider, text: str, source: str, target: str) -> str:
        result = await self._requester.call(
            lambda: provider.translate(text, source, target)
        )
        if not provider.supports_minimal:
            return result

        check = detect_translation_denial(text, result)
        if not check.denied:
            return result

        logger.warning(
            "%s translation denial (%s). Input: %r, output: %r. Retrying...",
            provider.name, check.reason, text, result,
        )
        retry_result = await self._requester.call(
            lambda: provider.translate(text, source, target, minimal=True)
        )
        retry_check = detect_translation_denial(text, retry_result)
        if not retry_check.denied:
            return retry_result

        logger.warning(
            "%s retry also denied (%s); returning original text",
            provider.name, retry_check.reason,
        )
        return text


class Punctuator:
    """Restore punctuation to raw recognizer text, never failing."""

    def __init__(
        self,
        client: Optional[ChatCompletionsClient],
        requester: Optional[RetryingRequester] = None,
        missing_reason: str = "",
    ) -> None:
        self._client = client
        self._requester = requester or RetryingRequester()
        self._missing_reason = missing_reason

    @property
    def available(self) -> bool:
        return self._client is not None

    async def punctuate(self, text: str) -> str:
        if not text or not text.strip():
            return text
        if self._client is None:
            logger.warning(
                "Punctuation unavailable (%s); using raw text",
                self._missing_reason or "no client configured",
            )
            return text

        user_text = text.strip()
        try:
            result = await self._requester.call(
                lambda: self._client.complete(
                    PUNCTUATION_PROMPT,
                    user_text,
                    temperature=0.1,
                    max_tokens=max(200, len(text) + 100),
                )
            )
        except PROVIDER_ERRORS as exc:
            logger.warning("Punctuation failed, returning original text: %s", exc)
            return text

        logger.debug(
            "Punctuation tokens ~in=%d ~out=%d",
            math.ceil(len(user_text) / 4), math.ceil(len(result) / 4),
        )
        return result
