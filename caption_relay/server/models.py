"""Pydantic request/response models for the caption relay HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and automatic OpenAPI documentation. Threshold
bounds are declared on the fields, so an out-of-range value is rejected
with 422 before any handler runs.

HOW: Each endpoint has its own request and/or response model. The
session record keeps the camelCase keys display clients already read
(translationsByLanguage, sourceLanguage) through field aliases.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- silence_threshold_ms is bounded to 100–1000 by ge/le
- Preset names match config.SILENCE_THRESHOLD_PRESETS
"""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from caption_relay.config import (
    DEFAULT_SOURCE_LANGUAGE,
    SILENCE_THRESHOLD_MAX_MS,
    SILENCE_THRESHOLD_MIN_MS,
)


class SilencePreset(str, Enum):
    fast = "fast"
    normal = "normal"
    slow = "slow"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SessionCreateRequest(BaseModel):
    """Settings for a new caption session.

    RULES:
    - target_languages defaults to every known language but the source
    - silence_threshold_ms wins over preset when both are given
    """

    source_language: str = Field(
        default=DEFAULT_SOURCE_LANGUAGE,
        description="Language the speaker talks in (ISO 639-1, e.g. 'en').",
    )
    target_languages: Optional[List[str]] = Field(
        default=None,
        description="Languages to translate into. Defaults to all others.",
    )
    silence_threshold_ms: Optional[int] = Field(
        default=None,
        ge=SILENCE_THRESHOLD_MIN_MS,
        le=SILENCE_THRESHOLD_MAX_MS,
        description="Quiet period before interim text is finalized (ms).",
    )
    preset: Optional[SilencePreset] = Field(
        default=None,
        description="Named silence threshold: fast (200), normal (350), slow (500).",
    )
    use_silence_finalizer: Optional[bool] = Field(
        default=None,
        description="Finalize interim text after silence. Defaults to USE_SILENCE_FINALIZER.",
    )


class RecognitionEventRequest(BaseModel):
    """One recognizer result pushed by the capture client."""

    text: str = Field(description="Current hypothesis of the recognizer segment.")
    is_final: bool = Field(
        default=False,
        description="True when the recognizer marked the segment final.",
    )


class SettingsUpdateRequest(BaseModel):
    silence_threshold_ms: Optional[int] = Field(
        default=None,
        ge=SILENCE_THRESHOLD_MIN_MS,
        le=SILENCE_THRESHOLD_MAX_MS,
        description="New silence threshold (ms).",
    )
    preset: Optional[SilencePreset] = Field(
        default=None,
        description="Named silence threshold, used when silence_threshold_ms is absent.",
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SessionCreatedResponse(BaseModel):
    """Returned when a session starts listening."""

    id: str = Field(description="6-character session code display clients join with.")
    source_language: str = Field(description="Speaker language.")
    target_languages: List[str] = Field(description="Translation targets.")
    silence_threshold_ms: int = Field(description="Active silence threshold (ms).")

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "id": "a1B2c3",
                "source_language": "en",
                "target_languages": ["ja", "ko"],
                "silence_threshold_ms": 350,
            }
        ]
    }}


class EventAcceptedResponse(BaseModel):
    id: str = Field(description="Session the event was applied to.")
    transcript: str = Field(description="Raw transcript after the event.")


class SessionRecordResponse(BaseModel):
    """Latest consolidated state of a session.

    RULES:
    - translationsByLanguage holds the most recently applied fan-out
    - lastFailures lists legs that failed in the latest fan-out
    """

    id: str = Field(description="Session code.")
    transcript: str = Field(description="Raw transcript (finalized segments + interim).")
    translations_by_language: Dict[str, str] = Field(
        alias="translationsByLanguage",
        description="Displayed translation per target language.",
    )
    source_language: str = Field(alias="sourceLanguage", description="Speaker language.")
    timestamp: float = Field(description="Last update (Unix epoch seconds).")
    running: bool = Field(description="Whether the reconciliation loop is active.")
    last_failures: Dict[str, str] = Field(
        default_factory=dict,
        alias="lastFailures",
        description="Language → error for legs that failed in the latest fan-out.",
    )


class SettingsResponse(BaseModel):
    id: str = Field(description="Session code.")
    silence_threshold_ms: int = Field(description="Active silence threshold (ms).")


class AudioResultResponse(BaseModel):
    """Outcome of one audio end-to-end request."""

    id: str = Field(description="Session code.")
    transcript: str = Field(description="Transcript of the audio segment.")
    translations: Dict[str, str] = Field(description="Translation per target language.")
    failures: Dict[str, str] = Field(description="Language → error for failed legs.")


class PresetInfo(BaseModel):
    name: str = Field(description="Preset identifier.")
    silence_threshold_ms: int = Field(description="Threshold the preset selects (ms).")


class ErrorResponse(BaseModel):
    """Standard error response body."""

    detail: str = Field(description="Human-readable error description.")


class HealthResponse(BaseModel):
    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
    sessions: int = Field(description="Number of live sessions.")
