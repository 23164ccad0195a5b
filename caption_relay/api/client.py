"""Async HTTP clients for the punctuation and translation providers.

WHY: The relay talks to three kinds of provider: Gemini (text and audio
prompts), OpenAI-compatible chat completions (punctuation, GPT
translation through OpenRouter), and Papago (character-billed machine
translation). This module hides HTTP details behind one small class per
provider so the translator and punctuator only see "send prompt, get
string".

HOW: Uses httpx.AsyncClient for non-blocking HTTP. Every client is an
async context manager; enter it to open the connection pool, exit to
close it. Each public method performs exactly ONE outbound request;
retrying is the caller's job (see api/retry.py). Non-2xx responses are
raised as ProviderAPIError carrying the status code, so the retry layer
can classify them.

RULES:
- Always use the async context manager (async with GeminiClient() as c:)
- API keys default to the environment and are read at construction;
  a missing key raises MissingCredentialError from the constructor
- One request per method call, no hidden retries
- HTTP 429 and 503 are transient; every other non-2xx is fatal
- A 2xx answer with no text raises EmptyResponseError
- Papago takes a fresh credential from the rotator on every call and
  records billed characters only after a successful response
"""

from __future__ import annotations

import base64
import logging
from typing import Optional

import httpx

from caption_relay.api.credentials import CredentialRotator
from caption_relay.api.models import ChatCompletion, GeminiResponse, PapagoTranslation
from caption_relay.config import (
    GEMINI_BASE_URL,
    GEMINI_MODEL,
    MissingCredentialError,
    PAPAGO_BASE_URL,
    load_api_key,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

TRANSIENT_STATUS_CODES = frozenset({429, 503})

_DEFAULT_TIMEOUT = httpx.Timeout(30.0, connect=10.0)
_MAX_ERROR_BODY_CHARS = 500


class ProviderAPIError(Exception):
    """Raised when a provider returns an error response.

    WHY: The retry layer needs a typed exception to tell a rate-limited
    provider (retry later) from a rejected request (give up now).

    HOW: Wraps the provider name, HTTP status code and response body.

    RULES:
    - transient is True only for 429 (rate limited) and 503 (unavailable)
    - message is the (truncated) response body or a summary
    """

    def __init__(self, provider: str, status_code: int, message: str) -> None:
        self.provider = provider
        self.status_code = status_code
        self.message = message
        super().__init__(
            "{} API error {}: {}".format(provider, status_code, message)
        )

    @property
    def transient(self) -> bool:
        return self.status_code in TRANSIENT_STATUS_CODES


class EmptyResponseError(ProviderAPIError):
    """Raised when a provider answers 2xx but returns no usable text."""

    def __init__(self, provider: str) -> None:
        super().__init__(provider, 200, "empty response")


def _raise_for_status(provider: str, resp: httpx.Response) -> None:
    if resp.status_code // 100 != 2:
        raise ProviderAPIError(
            provider, resp.status_code, resp.text[:_MAX_ERROR_BODY_CHARS]
        )


class _ProviderClient:
    """Shared async-context-manager plumbing for provider clients."""

    provider_name = "provider"

    def __init__(self, base_url: str, headers: Optional[dict] = None) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = headers or {}
        self._client: Optional[httpx.AsyncClient] = None
        self._transport: Optional[httpx.AsyncBaseTransport] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=_DEFAULT_TIMEOUT,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "{} must be used as an async context manager: "
                "async with {}() as client: ...".format(
                    type(self).__name__, type(self).__name__
                )
            )
        return self._client


# ---------------------------------------------------------------------------
# Gemini
# ---------------------------------------------------------------------------


class GeminiClient(_ProviderClient):
    """Async client for Gemini generateContent.

    WHY: Gemini serves both plain-text translation and the audio
    end-to-end path (audio in, transcript or translation out).

    HOW: POSTs systemInstruction + one user part (text, or base64 WAV as
    inline_data) to models/{model}:generateContent with the API key as
    a query parameter.

    RULES:
    - api_key defaults to GEMINI_API_KEY
    - Exactly one of text / audio must be given to generate()
    """

    provider_name = "Gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(base_url or GEMINI_BASE_URL)
        self._api_key = api_key or load_api_key("GEMINI_API_KEY")
        self._model = model or GEMINI_MODEL
        self._transport = transport

    async def generate(
        self,
        system_prompt: str,
        text: Optional[str] = None,
        audio: Optional[bytes] = None,
        max_output_tokens: int = 500,
        temperature: float = 0.3,
    ) -> str:
        """Send one prompt and return the first candidate's text, stripped.

        Args:
            system_prompt: Instruction placed in systemInstruction.
            text: User text part (translation input).
            audio: WAV bytes sent as inline_data (audio end-to-end path).
            max_output_tokens: Generation cap.
            temperature: Sampling temperature.

        Returns:
            The stripped candidate text.
        """
        if (text is None) == (audio is None):
            raise ValueError("generate() needs exactly one of text or audio")

        client = self._ensure_client()
        if audio is not None:
            part = {
                "inline_data": {
                    "mime_type": "audio/wav",
                    "data": base64.b64encode(audio).decode("ascii"),
                }
            }
        else:
            part = {"text": text}

        body = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"parts": [part]}],
            "generationConfig": {
                "temperature": temperature,
                "topP": 0.8,
                "topK": 40,
                "maxOutputTokens": max_output_tokens,
            },
        }

        resp = await client.post(
            "/models/{}:generateContent".format(self._model),
            params={"key": self._api_key},
            json=body,
        )
        _raise_for_status(self.provider_name, resp)

        result = GeminiResponse.from_dict(resp.json()).text.strip()
        if not result and text is not None:
            raise EmptyResponseError(self.provider_name)
        # An empty transcript of silent audio is a valid answer
        return result


# ---------------------------------------------------------------------------
# OpenAI-compatible chat completions
# ---------------------------------------------------------------------------


class ChatCompletionsClient(_ProviderClient):
    """Async client for any OpenAI-compatible /chat/completions endpoint.

    WHY: Punctuation runs on OpenAI directly, the optional GPT
    translation path runs through OpenRouter; both speak the same
    protocol.

    RULES:
    - api_key is required (pass load_api_key("...") from the caller)
    - extra_headers lets OpenRouter receive HTTP-Referer / X-Title
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        provider_name: str = "ChatCompletions",
        extra_headers: Optional[dict] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Authorization": "Bearer {}".format(api_key)}
        headers.update(extra_headers or {})
        super().__init__(base_url, headers=headers)
        self._model = model
        self.provider_name = provider_name
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    async def complete(
        self,
        system_prompt: str,
        user_content: str,
        temperature: float = 0.3,
        max_tokens: int = 500,
    ) -> str:
        """Send a system + user message pair, return the reply stripped."""
        client = self._ensure_client()
        resp = await client.post(
            "/chat/completions",
            json={
                "model": self._model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                "temperature": temperature,
                "max_tokens": max_tokens,
            },
        )
        _raise_for_status(self.provider_name, resp)

        result = ChatCompletion.from_dict(resp.json()).text.strip()
        if not result:
            raise EmptyResponseError(self.provider_name)
        return result


# ---------------------------------------------------------------------------
# Papago (character-billed)
# ---------------------------------------------------------------------------


class PapagoClient(_ProviderClient):
    """Async client for Papago NMT, rationed through a CredentialRotator.

    WHY: Papago bills per character and each app credential has a small
    quota, so every call picks its credential from the shared pool.

    HOW: Takes rotator.next() per call, sends the slot as the
    X-NCP-APIGW-API-KEY-ID / X-NCP-APIGW-API-KEY header pair, and on a
    2xx answer records len(text) characters against that same slot.

    RULES:
    - A slot missing identity or secret raises MissingCredentialError
    - Failed calls are not billed locally
    """

    provider_name = "Papago"

    def __init__(
        self,
        rotator: CredentialRotator,
        base_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(base_url or PAPAGO_BASE_URL)
        self._rotator = rotator
        self._transport = transport

    async def translate(self, text: str, source: str, target: str) -> str:
        client = self._ensure_client()
        slot = self._rotator.next()
        if not slot.populated:
            raise MissingCredentialError(
                "Papago credential {!r} is missing its id or secret".format(
                    slot.identity
                )
            )

        resp = await client.post(
            "/translation",
            headers={
                "X-NCP-APIGW-API-KEY-ID": slot.identity,
                "X-NCP-APIGW-API-KEY": slot.secret,
            },
            data={"source": source, "target": target, "text": text},
        )
        _raise_for_status(self.provider_name, resp)

        result = PapagoTranslation.from_dict(resp.json()).text.strip()
        if not result:
            raise EmptyResponseError(self.provider_name)

        self._rotator.record_usage(slot, len(text))
        logger.debug(
            "Papago slot %s used %d/%d characters",
            slot.identity, slot.characters_used, slot.limit,
        )
        return result
