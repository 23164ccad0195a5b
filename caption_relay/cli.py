"""Command-line interface for the caption relay.

WHY: Operators need two things from the terminal: run the HTTP API that
capture clients and caption displays talk to, and replay a recorded
stream of recognition events to see what the captions would have
looked like (for tuning the silence threshold, or checking a provider
setup before going live).

HOW: argparse with two subcommands. ``replay`` reads JSON-lines events
({"text", "is_final", "delay_ms"?}) from a file or stdin, feeds them to
a CaptionSession with real timers, prints every applied translation set
as one JSON line on stdout, and drains the session before exiting.
``serve`` runs the FastAPI app with uvicorn.

RULES:
- Status messages go to stderr; stdout carries only JSON results
- --silence-threshold wins over --preset; both are validated to 100–1000 ms
- --targets is comma-separated; defaults to every language but --source
- -v enables INFO logging, -vv DEBUG
- Malformed event lines stop the replay with exit code 2
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import IO, List, Optional, Tuple

from caption_relay.config import (
    DEFAULT_SILENCE_THRESHOLD_MS,
    DEFAULT_SOURCE_LANGUAGE,
    LANGUAGE_NAMES,
    SILENCE_THRESHOLD_PRESETS,
    USE_SILENCE_FINALIZER,
    resolve_preset,
    validate_silence_threshold,
)
from caption_relay.pipeline.fanout import FanoutResult
from caption_relay.pipeline.services import open_services
from caption_relay.pipeline.session import (
    CaptionSession,
    RecognitionEvent,
    generate_session_id,
)


def _status(msg: str) -> None:
    """Print a status message to stderr (stdout stays pipeable)."""
    print(msg, file=sys.stderr, flush=True)


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )


def parse_events(stream: IO[str]) -> List[Tuple[RecognitionEvent, int]]:
    """Read JSON-lines recognition events.

    Args:
        stream: Text stream with one JSON object per line. Blank lines
            are skipped.

    Returns:
        (event, delay_ms) pairs in file order. delay_ms defaults to 0.

    Raises:
        ValueError: A line is not a JSON object with a string "text".
    """
    events = []
    for line_no, line in enumerate(stream, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
        except json.JSONDecodeError as exc:
            raise ValueError("Line {}: invalid JSON ({})".format(line_no, exc)) from exc
        if not isinstance(data, dict) or not isinstance(data.get("text"), str):
            raise ValueError('Line {}: expected an object with a "text" string'.format(line_no))
        event = RecognitionEvent(text=data["text"], is_final=bool(data.get("is_final", False)))
        events.append((event, int(data.get("delay_ms", 0))))
    return events


def resolve_threshold(args: argparse.Namespace) -> int:
    if args.silence_threshold is not None:
        return validate_silence_threshold(args.silence_threshold)
    if args.preset is not None:
        return resolve_preset(args.preset)
    return DEFAULT_SILENCE_THRESHOLD_MS


def resolve_targets(args: argparse.Namespace) -> Optional[List[str]]:
    if not args.targets:
        return None
    targets = [code.strip() for code in args.targets.split(",") if code.strip()]
    unknown = [code for code in targets if code not in LANGUAGE_NAMES]
    if unknown:
        raise ValueError(
            "Unsupported target language(s): {}. Supported: {}".format(
                ", ".join(unknown), ", ".join(LANGUAGE_NAMES)
            )
        )
    return targets


async def _replay(
    events: List[Tuple[RecognitionEvent, int]],
    args: argparse.Namespace,
    threshold_ms: int,
    targets: Optional[List[str]],
) -> int:
    """Drive one session through the recorded events. Returns applied count."""
    applied = []

    def emit(result: FanoutResult) -> None:
        applied.append(result)
        print(
            json.dumps(
                {
                    "generation": result.generation,
                    "translations": result.translations,
                    "failures": result.failures,
                },
                ensure_ascii=False,
            ),
            flush=True,
        )

    async with open_services() as services:
        session = CaptionSession(
            session_id=generate_session_id(),
            source_language=args.source,
            punctuator=services.punctuator,
            fanout=services.fanout,
            target_languages=targets,
            silence_threshold_ms=threshold_ms,
            use_silence_finalizer=args.silence_finalizer,
            on_applied=emit,
        )
        _status(
            "Replaying {} events into session {} ({} -> {})".format(
                len(events), session.session_id, session.source_language,
                ", ".join(session.target_languages),
            )
        )
        session.start()
        try:
            for event, delay_ms in events:
                if delay_ms > 0:
                    await asyncio.sleep(delay_ms / 1000.0)
                session.handle_event(event)

            # Give a trailing interim hypothesis the chance to be finalized
            if session.use_silence_finalizer:
                await asyncio.sleep(session.silence_threshold_ms / 1000.0 + 0.05)
            await session.drain()
            _status("Final transcript: {}".format(session.transcript))
        finally:
            await session.stop()
    return len(applied)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with replay and serve subcommands."""
    parser = argparse.ArgumentParser(
        prog="caption_relay",
        description="Live-caption relay: punctuate recognizer output and "
                    "translate it into several languages at once.",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase log output (-v info, -vv debug).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    replay = sub.add_parser(
        "replay",
        help="Replay JSON-lines recognition events through a session.",
    )
    replay.add_argument(
        "events",
        nargs="?",
        default="-",
        help='JSON-lines file of {"text", "is_final", "delay_ms"} events '
             "(default: stdin).",
    )
    replay.add_argument(
        "--source",
        default=DEFAULT_SOURCE_LANGUAGE,
        choices=sorted(LANGUAGE_NAMES),
        help="Speaker language (default: %(default)s).",
    )
    replay.add_argument(
        "--targets",
        default=None,
        help="Comma-separated target languages (default: all but --source).",
    )
    replay.add_argument(
        "--silence-threshold",
        type=int,
        default=None,
        help="Silence threshold in ms, 100-1000 (default: {}).".format(
            DEFAULT_SILENCE_THRESHOLD_MS
        ),
    )
    replay.add_argument(
        "--preset",
        choices=sorted(SILENCE_THRESHOLD_PRESETS),
        default=None,
        help="Named silence threshold, used when --silence-threshold is absent.",
    )
    replay.add_argument(
        "--silence-finalizer",
        action=argparse.BooleanOptionalAction,
        default=USE_SILENCE_FINALIZER,
        help="Finalize interim text after silence (default: %(default)s).",
    )

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: %(default)s).")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: %(default)s).")

    return parser


def _run_replay(args: argparse.Namespace) -> int:
    try:
        threshold_ms = resolve_threshold(args)
        targets = resolve_targets(args)
        if args.events == "-":
            events = parse_events(sys.stdin)
        else:
            with open(args.events, encoding="utf-8") as handle:
                events = parse_events(handle)
    except (OSError, ValueError) as exc:
        _status("Error: {}".format(exc))
        return 2

    applied = asyncio.run(_replay(events, args, threshold_ms, targets))
    _status("Done: {} caption update(s) applied".format(applied))
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for ``python -m caption_relay`` and ``caption-relay``.

    RULES:
    - argv=None means use sys.argv (normal CLI invocation)
    - Explicit argv is for testing
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if args.command == "serve":
        from caption_relay.server.app import run_api
        run_api(host=args.host, port=args.port)
        return

    code = _run_replay(args)
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main()
