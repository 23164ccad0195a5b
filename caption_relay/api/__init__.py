"""Provider API package: async HTTP clients, retry, and credential pool.

WHY: The relay punctuates and translates text through external
providers. This package owns every outbound call: one client class per
provider, a retry wrapper that knows which failures are worth waiting
out, and a rotator that spreads character-billed traffic over a pool of
credentials.

HOW: Clients use httpx.AsyncClient. RetryingRequester wraps a single
call; CredentialRotator hands out quota-limited credentials. Response
JSON is parsed into the dataclasses in models.py.

RULES:
- All HTTP calls go through the client classes (no direct httpx usage
  elsewhere)
- Clients never retry on their own; callers wrap them in RetryingRequester
"""

from caption_relay.api.client import (
    ChatCompletionsClient,
    EmptyResponseError,
    GeminiClient,
    PapagoClient,
    ProviderAPIError,
)
from caption_relay.api.credentials import CredentialRotator, CredentialSlot
from caption_relay.api.retry import RetryingRequester, is_transient

__all__ = [
    "ChatCompletionsClient",
    "CredentialRotator",
    "CredentialSlot",
    "EmptyResponseError",
    "GeminiClient",
    "PapagoClient",
    "ProviderAPIError",
    "RetryingRequester",
    "is_transient",
]
