"""Build the provider-backed services every session shares.

WHY: Opening an httpx connection pool per session (or per request)
wastes sockets and makes rate limiting harder to reason about. The HTTP
server and the CLI both open the provider clients once and hand the
resulting punctuator, translator and fan-out to every session.

HOW: open_services() is an async context manager. It builds each
client from configuration, enters it on an AsyncExitStack, wraps the
clients in Punctuator / Translator / GeminiAudioPipeline, and yields a
RelayServices bundle. Leaving the context closes every client.

RULES:
- A provider whose key is missing becomes an UnconfiguredProvider: the
  process starts, and the translation legs that need it fail with
  MissingCredentialError
- Missing OPENAI_API_KEY → captions are translated unpunctuated
- Missing GEMINI_API_KEY → audio pipeline is None
- The Papago credential pool is read once per open_services() call
"""

from __future__ import annotations

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

from caption_relay.api.client import ChatCompletionsClient, GeminiClient, PapagoClient
from caption_relay.api.credentials import CredentialRotator
from caption_relay.api.retry import RetryingRequester
from caption_relay.config import (
    MissingCredentialError,
    OPENAI_BASE_URL,
    OPENROUTER_BASE_URL,
    OPENROUTER_MODEL,
    PUNCTUATION_MODEL,
    load_api_key,
    load_credential_slots,
    load_keyterms,
    translation_provider_chain,
)
from caption_relay.pipeline.audio import GeminiAudioPipeline
from caption_relay.pipeline.fanout import TranslationFanout
from caption_relay.pipeline.translator import (
    GeminiTranslationProvider,
    GptTranslationProvider,
    PapagoTranslationProvider,
    Punctuator,
    Translator,
    UnconfiguredProvider,
)

logger = logging.getLogger(__name__)


@dataclass
class RelayServices:
    punctuator: Punctuator
    translator: Translator
    fanout: TranslationFanout
    audio: Optional[GeminiAudioPipeline] = None


@asynccontextmanager
async def open_services(
    provider_names: Optional[List[str]] = None,
    requester: Optional[RetryingRequester] = None,
) -> AsyncIterator[RelayServices]:
    """Open every configured provider client and yield the shared services.

    Args:
        provider_names: Translation chain order; defaults to
            TRANSLATION_PROVIDERS from the environment.
        requester: Retry policy shared by all services.

    Yields:
        RelayServices whose clients stay open until the context exits.
    """
    requester = requester or RetryingRequester()
    names = provider_names or translation_provider_chain()

    async with AsyncExitStack() as stack:
        gemini: Optional[GeminiClient] = None
        gemini_error: Optional[MissingCredentialError] = None
        try:
            gemini = await stack.enter_async_context(GeminiClient())
        except MissingCredentialError as exc:
            gemini_error = exc
            logger.warning("Gemini disabled: %s", exc)

        try:
            openai = await stack.enter_async_context(
                ChatCompletionsClient(
                    api_key=load_api_key("OPENAI_API_KEY"),
                    base_url=OPENAI_BASE_URL,
                    model=PUNCTUATION_MODEL,
                    provider_name="OpenAI",
                )
            )
            punctuator = Punctuator(openai, requester)
        except MissingCredentialError as exc:
            logger.warning("Punctuation disabled: %s", exc)
            punctuator = Punctuator(None, requester, missing_reason=str(exc))

        providers = []
        for name in names:
            if name == "gemini":
                if gemini is None:
                    providers.append(UnconfiguredProvider("gemini", gemini_error))
                else:
                    providers.append(GeminiTranslationProvider(gemini))
            elif name == "gpt":
                try:
                    openrouter = await stack.enter_async_context(
                        ChatCompletionsClient(
                            api_key=load_api_key("OPENROUTER_API_KEY"),
                            base_url=OPENROUTER_BASE_URL,
                            model=OPENROUTER_MODEL,
                            provider_name="OpenRouter",
                            extra_headers={"X-Title": "caption-relay"},
                        )
                    )
                    providers.append(GptTranslationProvider(openrouter))
                except MissingCredentialError as exc:
                    logger.warning("GPT translation disabled: %s", exc)
                    providers.append(UnconfiguredProvider("gpt", exc))
            elif name == "papago":
                slots = load_credential_slots()
                if not slots:
                    providers.append(
                        UnconfiguredProvider(
                            "papago",
                            MissingCredentialError(
                                "PAPAGO_CREDENTIALS not configured. Add "
                                "id:secret pairs to the .env file."
                            ),
                        )
                    )
                    continue
                papago = await stack.enter_async_context(
                    PapagoClient(CredentialRotator(slots))
                )
                providers.append(PapagoTranslationProvider(papago))

        translator = Translator(providers, requester)
        audio = (
            GeminiAudioPipeline(gemini, requester, keyterms=load_keyterms())
            if gemini is not None
            else None
        )
        logger.info(
            "Services ready: translation chain %s, punctuation %s, audio %s",
            ", ".join(p.name for p in providers),
            "on" if punctuator.available else "off",
            "on" if audio is not None else "off",
        )
        yield RelayServices(
            punctuator=punctuator,
            translator=translator,
            fanout=TranslationFanout(translator.translate, stagger_ms=0),
            audio=audio,
        )
