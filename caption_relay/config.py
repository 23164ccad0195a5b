"""Configuration constants, language names, timing bounds, and .env loading.

WHY: Centralizes every tunable value of the caption relay so it is easy
to find, update, and override. Language names, silence-threshold
presets, provider endpoints, and retry defaults are plain data, not
buried in logic, so both humans and coding agents can change them
confidently.

HOW: python-dotenv loads the .env file on import. Constants are defined
as module-level dicts and scalars. Secrets are NOT read at import time:
load_api_key() and load_credential_slots() read them when a provider
call is about to be made, so a missing key surfaces at call time.

RULES:
- LANGUAGE_NAMES maps ISO 639-1 → English display name used in prompts
- Silence threshold is bounded to 100–1000 ms (presets 200/350/500)
- Reconciliation interval (2000 ms) and leftover force-flush (6000 ms)
  are fixed and deliberately not environment-overridable
- API keys are loaded from the environment, never hardcoded
- Missing keys raise MissingCredentialError, never return a placeholder
"""

from __future__ import annotations

import os
from typing import Dict, List

from dotenv import load_dotenv

# Load .env from the working directory
load_dotenv()

# ---------------------------------------------------------------------------
# Languages
# ---------------------------------------------------------------------------

LANGUAGE_NAMES: Dict[str, str] = {
    "en": "English",
    "ja": "Japanese",
    "ko": "Korean",
}

DEFAULT_SOURCE_LANGUAGE = os.getenv("DEFAULT_SOURCE_LANGUAGE", "en")


def language_name(code: str) -> str:
    """Return the English name for a language code, or the code itself."""
    return LANGUAGE_NAMES.get(code, code)


def default_targets(source_language: str) -> List[str]:
    """Every known language except the source, in declaration order."""
    return [code for code in LANGUAGE_NAMES if code != source_language]


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

SILENCE_THRESHOLD_MIN_MS = 100
SILENCE_THRESHOLD_MAX_MS = 1000

SILENCE_THRESHOLD_PRESETS: Dict[str, int] = {
    "fast": 200,
    "normal": 350,
    "slow": 500,
}

DEFAULT_SILENCE_THRESHOLD_MS = int(os.getenv("DEFAULT_SILENCE_THRESHOLD_MS", "350"))
USE_SILENCE_FINALIZER = os.getenv("USE_SILENCE_FINALIZER", "true").lower() == "true"

RECONCILIATION_INTERVAL_MS = 2000
LEFTOVER_FORCE_FLUSH_MS = 6000
"""Three reconciliation intervals; bounds latency for run-on speech."""


def validate_silence_threshold(threshold_ms: int) -> int:
    """Check a silence threshold against the allowed bounds.

    WHY: A threshold below 100 ms finalizes mid-word; above 1000 ms the
    captions feel stuck. Operators pick from presets inside the same
    range.

    RULES:
    - Returns the threshold unchanged when 100 <= threshold_ms <= 1000
    - Raises ValueError otherwise (never clamps silently)
    """
    if not SILENCE_THRESHOLD_MIN_MS <= threshold_ms <= SILENCE_THRESHOLD_MAX_MS:
        raise ValueError(
            "Silence threshold {} ms is outside the allowed range {}-{} ms".format(
                threshold_ms, SILENCE_THRESHOLD_MIN_MS, SILENCE_THRESHOLD_MAX_MS
            )
        )
    return threshold_ms


def resolve_preset(name: str) -> int:
    """Map a preset name (fast/normal/slow, any case) to milliseconds."""
    try:
        return SILENCE_THRESHOLD_PRESETS[name.lower()]
    except KeyError:
        raise ValueError(
            "Unknown silence preset '{}'. Available: {}".format(
                name, ", ".join(SILENCE_THRESHOLD_PRESETS)
            )
        ) from None


# ---------------------------------------------------------------------------
# Retry and fan-out defaults
# ---------------------------------------------------------------------------

RETRY_MAX_RETRIES = int(os.getenv("RETRY_MAX_RETRIES", "2"))
RETRY_BASE_DELAY_MS = int(os.getenv("RETRY_BASE_DELAY_MS", "500"))
FANOUT_STAGGER_MS = int(os.getenv("FANOUT_STAGGER_MS", "50"))

# ---------------------------------------------------------------------------
# Provider endpoints
# ---------------------------------------------------------------------------

GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
)
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-lite")

OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
PUNCTUATION_MODEL = os.getenv("PUNCTUATION_MODEL", "gpt-4.1-nano")

OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
OPENROUTER_MODEL = os.getenv("OPENROUTER_MODEL", "openai/gpt-4.1-nano")

PAPAGO_BASE_URL = os.getenv(
    "PAPAGO_BASE_URL", "https://naveropenapi.apigw.ntruss.com/nmt/v1"
)
PAPAGO_CHARACTER_LIMIT = int(os.getenv("PAPAGO_CHARACTER_LIMIT", "10000"))

KNOWN_TRANSLATION_PROVIDERS = ("gpt", "gemini", "papago")


def translation_provider_chain() -> List[str]:
    """Parse TRANSLATION_PROVIDERS into an ordered list of provider names.

    RULES:
    - Default chain is ["gemini"]
    - Names are lowercased and stripped; blanks are dropped
    - Unknown names raise ValueError
    """
    raw = os.getenv("TRANSLATION_PROVIDERS", "gemini")
    chain = [name.strip().lower() for name in raw.split(",") if name.strip()]
    unknown = [name for name in chain if name not in KNOWN_TRANSLATION_PROVIDERS]
    if unknown:
        raise ValueError(
            "Unknown translation provider(s): {}".format(", ".join(unknown))
        )
    return chain or ["gemini"]


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


class MissingCredentialError(ValueError):
    """Raised when a provider secret is absent at call time.

    WHY: Missing configuration must fail the call that needs it, not
    the process start: a session translating only via Gemini should not
    die because OPENAI_API_KEY is unset.

    RULES:
    - Message names the environment variable to set
    - Never absorbed by translation/punctuation fallbacks
    """


def load_api_key(env_name: str) -> str:
    """Load a provider API key from the environment.

    WHY: Keys are required for every provider call. Loading them from the
    environment (via .env) keeps them out of source code.

    HOW: Reads env_name from os.environ (populated by python-dotenv).

    RULES:
    - Raises MissingCredentialError if the key is missing or empty
    - Never returns a default/placeholder value
    """
    key = os.getenv(env_name, "").strip()
    if not key:
        raise MissingCredentialError(
            "{} not configured. Add it to the .env file in the app folder.".format(
                env_name
            )
        )
    return key


def load_credential_slots(env_name: str = "PAPAGO_CREDENTIALS"):
    """Parse a pool of character-billed credentials from the environment.

    WHY: Character-billed providers give each credential a small quota.
    Spreading traffic across several credentials keeps a live session
    translating after one quota runs out.

    HOW: The variable holds comma-separated ``identity:secret`` pairs.
    Each pair becomes a CredentialSlot with the configured limit.

    RULES:
    - Returns an empty list when the variable is unset
    - A pair without ':' yields a slot with an empty secret (the
      rotator skips it; it is not rejected here)
    """
    from caption_relay.api.credentials import CredentialSlot

    raw = os.getenv(env_name, "")
    slots = []
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        identity, _, secret = entry.partition(":")
        slots.append(
            CredentialSlot(
                identity=identity.strip(),
                secret=secret.strip(),
                limit=PAPAGO_CHARACTER_LIMIT,
            )
        )
    return slots


def load_keyterms(env_name: str = "KEYTERMS") -> List[str]:
    """Comma-separated speaker vocabulary passed to the audio prompts."""
    raw = os.getenv(env_name, "")
    return [term.strip() for term in raw.split(",") if term.strip()]
