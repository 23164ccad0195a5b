"""Core text and timing primitives of the reconciliation pipeline.

WHY: The algorithmic heart of the relay (what is new, what is finished,
what has waited too long, when an interim hypothesis counts as final)
has no I/O. Keeping it here makes every rule testable without a
network or an event loop.

HOW: delta.py finds newly-spoken text, segmenter.py splits sentences,
leftover.py holds the unfinished tail, reconciler.py runs a cycle over
them, timers.py and finalizer.py implement silence-based finalization,
filters.py cleans model output.

RULES:
- No HTTP or provider imports in this package
- Times are milliseconds; clocks and schedulers are injected
"""
