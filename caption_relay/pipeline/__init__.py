"""Punctuation, translation and session orchestration.

WHY: The core package decides WHAT to send; this package sends it.
Everything here talks to providers (through caption_relay.api) or to
the event loop.

HOW: translator.py wraps providers into never-failing punctuate /
translate services, fanout.py runs one translation leg per target
language concurrently, audio.py is the audio end-to-end path,
session.py ties the reconciliation cycle to a recognizer stream, and
services.py opens the shared provider clients.
"""
