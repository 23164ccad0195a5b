"""Provider response dataclasses.

WHY: Each provider wraps the one string we care about in a different
JSON envelope (Gemini candidates, OpenAI-style choices, Papago
message.result). Typed dataclasses make these structures explicit and
keep the defensive digging out of the client code.

HOW: Each dataclass maps to one provider response. from_dict() factory
methods tolerate missing intermediate keys and produce an empty string
instead of raising, so the client decides what "empty" means.

RULES:
- from_dict never raises on a missing optional level (returns "")
- text fields are returned untrimmed; callers clean them
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class GeminiResponse:
    """Text of the first candidate from a generateContent response.

    RULES:
    - text: candidates[0].content.parts[0].text, or "" when any level
      is absent
    - finish_reason: candidates[0].finishReason when present
    """

    text: str
    finish_reason: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> GeminiResponse:
        candidates = data.get("candidates") or []
        if not candidates:
            return cls(text="")
        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = parts[0].get("text", "") if parts else ""
        return cls(text=text or "", finish_reason=candidate.get("finishReason"))


@dataclass
class ChatCompletion:
    """First choice of an OpenAI-compatible chat completion.

    RULES:
    - text: choices[0].message.content, or "" when absent/null
    - model: echoed model name, when present
    """

    text: str
    model: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> ChatCompletion:
        choices = data.get("choices") or []
        if not choices:
            return cls(text="", model=data.get("model"))
        message = choices[0].get("message") or {}
        return cls(text=message.get("content") or "", model=data.get("model"))


@dataclass
class PapagoTranslation:
    """Result of a Papago NMT translation call.

    RULES:
    - text: message.result.translatedText, or ""
    - source_lang / target_lang: echoed language codes when present
    """

    text: str
    source_lang: Optional[str] = None
    target_lang: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> PapagoTranslation:
        result = (data.get("message") or {}).get("result") or {}
        return cls(
            text=result.get("translatedText") or "",
            source_lang=result.get("srcLangType"),
            target_lang=result.get("tarLangType"),
        )
