"""Caption Relay: live speech captions with simultaneous translation.

WHY: A speech recognizer emits a stream of interim and final hypotheses
with no punctuation. Live captions need readable sentences, and a
multilingual audience needs those sentences in several languages at
once, without waiting for one translation after another.

HOW: Four layers: api (provider HTTP clients, retry, credential pool),
core (pure delta/segment/leftover/finalizer logic), pipeline
(punctuation, translation fan-out, session orchestration), and server
(HTTP surface and record store). The CLI replays recorded recognition
events or serves the API.

RULES:
- core never performs I/O; everything with a clock or a network lives
  in pipeline or api
- A failing provider degrades captions, it never stops them
"""

__version__ = "0.1.0"
