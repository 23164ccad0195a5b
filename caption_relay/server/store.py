"""In-memory store of the latest record per caption session, with TTL cleanup.

WHY: Display clients (the caption overlay, the operator view) poll for
the newest transcript and translations of a session. They only ever
need the latest consolidated record, never the history, and the relay
is a single-process tool, so a dict behind a lock is enough.

HOW: CaptionSession writes through save() on every transcript or
translation change. Each entry remembers when it was last written;
cleanup_expired() drops sessions nobody has written to for longer than
the TTL and reports their IDs so the caller can stop them.

RULES:
- All access to the dict holds self._lock (sessions write from the
  event loop, the HTTP layer reads from request handlers)
- get() returns None for unknown session IDs (no exceptions)
- TTL is measured from the last save(), not from creation
- Default TTL is 1 hour (3600 seconds)
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from caption_relay.pipeline.session import SessionRecord

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


@dataclass
class _Entry:
    record: SessionRecord
    updated_at: float


class SessionStore:
    """Thread-safe latest-record store keyed by session ID."""

    def __init__(
        self,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: Dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._ttl_seconds = ttl_seconds
        self._clock = clock

    def save(self, record: SessionRecord) -> None:
        """Replace the session's record with a newer one."""
        with self._lock:
            self._entries[record.session_id] = _Entry(record, self._clock())

    def get(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            entry = self._entries.get(session_id)
            return entry.record if entry is not None else None

    def list_ids(self) -> List[str]:
        """Session IDs, least recently updated first."""
        with self._lock:
            ordered = sorted(self._entries.items(), key=lambda item: item[1].updated_at)
            return [session_id for session_id, _ in ordered]

    def delete(self, session_id: str) -> bool:
        """Remove a session's record. Returns True if it existed."""
        with self._lock:
            removed = self._entries.pop(session_id, None)
        if removed is None:
            return False
        logger.info("Deleted record for session %s", session_id)
        return True

    def cleanup_expired(self) -> List[str]:
        """Drop records not updated within the TTL; return their IDs."""
        now = self._clock()
        expired: List[str] = []

        with self._lock:
            for session_id, entry in list(self._entries.items()):
                if now - entry.updated_at > self._ttl_seconds:
                    del self._entries[session_id]
                    expired.append(session_id)

        for session_id in expired:
            logger.info("Expired idle session %s", session_id)
        return expired

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
