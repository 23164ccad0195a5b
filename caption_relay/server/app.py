"""FastAPI application: start caption sessions, feed them, read their captions.

WHY: The capture client (microphone + recognizer), the operator's
settings panel and the caption displays run in different places. An
HTTP API lets each of them talk to the relay without sharing a process,
and FastAPI gives request validation and OpenAPI docs for free.

HOW: Provider services are opened once in the app lifespan and shared
by every session. POST /sessions creates a CaptionSession and starts
its reconciliation loop on the server's event loop. Recognition events
and audio segments are pushed to /sessions/{id}/events and
/sessions/{id}/audio. Sessions write their latest record to the
SessionStore, which GET /sessions/{id} reads. A background task reaps
sessions idle for longer than the store's TTL.

RULES:
- Error responses use the ErrorResponse schema
- Unknown session IDs → 404; unknown languages → 400
- Silence thresholds outside 100–1000 ms → 422 (pydantic)
- DELETE stops the loop, resets the session and removes its record
- At most MAX_SESSIONS live sessions (429 beyond that)
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import Response

from caption_relay import __version__
from caption_relay.config import (
    DEFAULT_SILENCE_THRESHOLD_MS,
    LANGUAGE_NAMES,
    SILENCE_THRESHOLD_PRESETS,
    USE_SILENCE_FINALIZER,
    resolve_preset,
)
from caption_relay.pipeline.audio import MAX_AUDIO_BYTES
from caption_relay.pipeline.fanout import FanoutError
from caption_relay.pipeline.services import open_services
from caption_relay.pipeline.session import (
    CaptionSession,
    RecognitionEvent,
    generate_session_id,
)
from caption_relay.server.models import (
    AudioResultResponse,
    ErrorResponse,
    EventAcceptedResponse,
    HealthResponse,
    PresetInfo,
    RecognitionEventRequest,
    SessionCreatedResponse,
    SessionCreateRequest,
    SessionRecordResponse,
    SettingsResponse,
    SettingsUpdateRequest,
)
from caption_relay.server.store import SessionStore

logger = logging.getLogger(__name__)

MAX_SESSIONS = 50
CLEANUP_INTERVAL_SECONDS = 300

# ---------------------------------------------------------------------------
# App and store setup
# ---------------------------------------------------------------------------

session_store = SessionStore()
live_sessions: Dict[str, CaptionSession] = {}


async def _reap_expired() -> None:
    for session_id in session_store.cleanup_expired():
        session = live_sessions.pop(session_id, None)
        if session is not None:
            await session.stop()


async def _periodic_cleanup() -> None:
    """Reap idle sessions every 5 minutes."""
    while True:
        await asyncio.sleep(CLEANUP_INTERVAL_SECONDS)
        await _reap_expired()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open provider clients and start cleanup; stop every session on shutdown."""
    async with open_services() as services:
        app.state.services = services
        task = asyncio.create_task(_periodic_cleanup())
        try:
            yield
        finally:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            for session_id in list(live_sessions):
                await live_sessions.pop(session_id).stop()


app = FastAPI(
    lifespan=lifespan,
    title="Caption Relay API",
    description=(
        "Live-caption relay: push speech recognition events, get punctuated "
        "transcripts and simultaneous translations for every target language. "
        "Start a session, stream events into it, poll its latest record."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _get_session(session_id: str) -> CaptionSession:
    session = live_sessions.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=404, detail="Session not found: {}".format(session_id)
        )
    return session


def _check_language(code: str) -> None:
    if code not in LANGUAGE_NAMES:
        raise HTTPException(
            status_code=400,
            detail="Unsupported language '{}'. Supported: {}".format(
                code, ", ".join(LANGUAGE_NAMES)
            ),
        )


def _new_session_id() -> str:
    session_id = generate_session_id()
    while session_id in live_sessions:
        session_id = generate_session_id()
    return session_id


# ---------------------------------------------------------------------------
# Endpoints: Sessions
# ---------------------------------------------------------------------------


@app.post(
    "/sessions",
    response_model=SessionCreatedResponse,
    status_code=201,
    tags=["sessions"],
    summary="Start a caption session",
    description=(
        "Creates a session and starts its reconciliation loop. Push recognition "
        "events to /sessions/{id}/events and poll GET /sessions/{id}."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Unsupported language"},
        429: {"model": ErrorResponse, "description": "Too many live sessions"},
    },
)
async def create_session(body: SessionCreateRequest) -> SessionCreatedResponse:
    _check_language(body.source_language)
    for code in body.target_languages or []:
        _check_language(code)

    if len(live_sessions) >= MAX_SESSIONS:
        raise HTTPException(
            status_code=429,
            detail="Maximum number of live sessions ({}) reached".format(MAX_SESSIONS),
        )

    if body.silence_threshold_ms is not None:
        threshold = body.silence_threshold_ms
    elif body.preset is not None:
        threshold = resolve_preset(body.preset.value)
    else:
        threshold = DEFAULT_SILENCE_THRESHOLD_MS

    services = app.state.services
    session = CaptionSession(
        session_id=_new_session_id(),
        source_language=body.source_language,
        punctuator=services.punctuator,
        fanout=services.fanout,
        target_languages=body.target_languages,
        sink=session_store,
        silence_threshold_ms=threshold,
        use_silence_finalizer=(
            USE_SILENCE_FINALIZER
            if body.use_silence_finalizer is None
            else body.use_silence_finalizer
        ),
    )
    live_sessions[session.session_id] = session
    session_store.save(session.snapshot())
    session.start()

    return SessionCreatedResponse(
        id=session.session_id,
        source_language=session.source_language,
        target_languages=session.target_languages,
        silence_threshold_ms=session.silence_threshold_ms,
    )


@app.post(
    "/sessions/{session_id}/events",
    response_model=EventAcceptedResponse,
    status_code=202,
    tags=["sessions"],
    summary="Push a recognition event",
    description=(
        "Applies one recognizer result (interim or final) to the session's raw "
        "transcript. Punctuation and translation happen on the next cycle."
    ),
    responses={404: {"model": ErrorResponse, "description": "Session not found"}},
)
async def push_event(
    session_id: str, body: RecognitionEventRequest
) -> EventAcceptedResponse:
    session = _get_session(session_id)
    session.handle_event(RecognitionEvent(text=body.text, is_final=body.is_final))
    return EventAcceptedResponse(id=session_id, transcript=session.transcript)


@app.post(
    "/sessions/{session_id}/audio",
    response_model=AudioResultResponse,
    tags=["sessions"],
    summary="Transcribe and translate an audio segment",
    description=(
        "Send one finished speech segment as WAV bytes in the request body. "
        "Transcription and every translation run in a single burst."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Session not found"},
        413: {"model": ErrorResponse, "description": "Audio too large"},
        502: {"model": ErrorResponse, "description": "Transcription failed"},
        503: {"model": ErrorResponse, "description": "Audio path not configured"},
    },
)
async def push_audio(session_id: str, request: Request) -> AudioResultResponse:
    session = _get_session(session_id)
    pipeline = app.state.services.audio
    if pipeline is None:
        raise HTTPException(
            status_code=503, detail="Audio path needs GEMINI_API_KEY to be configured"
        )

    audio = await request.body()
    if len(audio) > MAX_AUDIO_BYTES:
        raise HTTPException(
            status_code=413,
            detail="Audio too large: {} bytes (max {})".format(len(audio), MAX_AUDIO_BYTES),
        )
    try:
        result = await session.process_audio(audio, pipeline)
    except FanoutError as exc:
        raise HTTPException(status_code=502, detail=str(exc))

    return AudioResultResponse(
        id=session_id,
        transcript=result.transcript,
        translations=result.translations,
        failures=result.failures,
    )


@app.get(
    "/sessions/{session_id}",
    response_model=SessionRecordResponse,
    tags=["sessions"],
    summary="Get the latest caption record",
    description=(
        "Returns the consolidated record display clients render: raw "
        "transcript, displayed translations per language, and failed legs."
    ),
    responses={404: {"model": ErrorResponse, "description": "Session not found"}},
)
async def get_session(session_id: str) -> SessionRecordResponse:
    record = session_store.get(session_id)
    if record is None:
        raise HTTPException(
            status_code=404, detail="Session not found: {}".format(session_id)
        )
    session = live_sessions.get(session_id)
    return SessionRecordResponse(
        id=session_id,
        running=session.running if session is not None else False,
        lastFailures=session.last_failures if session is not None else {},
        **record.to_dict(),
    )


@app.patch(
    "/sessions/{session_id}/settings",
    response_model=SettingsResponse,
    tags=["sessions"],
    summary="Change the silence threshold",
    description=(
        "Set the silence threshold by value (100–1000 ms) or by preset. "
        "Only timers armed after the change use the new value."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Session not found"},
        422: {"model": ErrorResponse, "description": "Missing or out-of-range threshold"},
    },
)
async def update_settings(
    session_id: str, body: SettingsUpdateRequest
) -> SettingsResponse:
    session = _get_session(session_id)
    if body.silence_threshold_ms is not None:
        threshold = body.silence_threshold_ms
    elif body.preset is not None:
        threshold = resolve_preset(body.preset.value)
    else:
        raise HTTPException(
            status_code=422, detail="Provide silence_threshold_ms or preset"
        )

    try:
        session.set_silence_threshold(threshold)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return SettingsResponse(id=session_id, silence_threshold_ms=session.silence_threshold_ms)


@app.delete(
    "/sessions/{session_id}",
    status_code=204,
    tags=["sessions"],
    summary="Stop a caption session",
    description=(
        "Stops the reconciliation loop, cancels in-flight cycles, resets the "
        "session and removes its record."
    ),
    responses={404: {"model": ErrorResponse, "description": "Session not found"}},
)
async def delete_session(session_id: str) -> Response:
    session = live_sessions.pop(session_id, None)
    if session is None:
        raise HTTPException(
            status_code=404, detail="Session not found: {}".format(session_id)
        )
    await session.stop()
    session_store.delete(session_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Endpoints: Presets and health
# ---------------------------------------------------------------------------


@app.get(
    "/presets",
    response_model=List[PresetInfo],
    tags=["settings"],
    summary="List silence threshold presets",
)
async def list_presets() -> List[PresetInfo]:
    return [
        PresetInfo(name=name, silence_threshold_ms=ms)
        for name, ms in SILENCE_THRESHOLD_PRESETS.items()
    ]


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness and readiness check for load balancers and orchestrators.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__, sessions=len(live_sessions))


def run_api(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Entry point for the caption-relay-api console script."""
    import uvicorn
    uvicorn.run(app, host=host, port=port)
