"""Unit tests for the in-memory session record store.

WHY: Display clients read whatever the store holds. A stale record
shown forever, or a live session reaped too early, are both visible to
the audience.

HOW: Each test builds its own SessionStore with a controllable clock.
  - TestSaveAndGet: latest-record semantics
  - TestDeletion: delete and list_ids
  - TestTTLCleanup: expiry measured from the last save
  - TestThreadSafety: concurrent writers do not corrupt state
"""

from __future__ import annotations

import threading

from caption_relay.pipeline.session import SessionRecord
from caption_relay.server.store import DEFAULT_TTL_SECONDS, SessionStore


class _Clock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


def _record(session_id="abc123", transcript="Hello.", translations=None):
    return SessionRecord(session_id, transcript, translations or {}, "en", 0.0)


class TestSaveAndGet:
    def test_get_unknown_returns_none(self):
        assert SessionStore().get("nope") is None

    def test_latest_record_wins(self):
        store = SessionStore()
        store.save(_record(transcript="Hello."))
        store.save(_record(transcript="Hello. World."))
        assert store.get("abc123").transcript == "Hello. World."
        assert len(store) == 1

    def test_default_ttl_is_one_hour(self):
        assert DEFAULT_TTL_SECONDS == 3600


class TestDeletion:
    def test_delete_existing(self):
        store = SessionStore()
        store.save(_record())
        assert store.delete("abc123") is True
        assert store.get("abc123") is None

    def test_delete_unknown(self):
        assert SessionStore().delete("nope") is False

    def test_list_ids_least_recent_first(self):
        clock = _Clock()
        store = SessionStore(clock=clock)
        store.save(_record("aaaaaa"))
        clock.now += 1
        store.save(_record("bbbbbb"))
        clock.now += 1
        store.save(_record("aaaaaa"))
        assert store.list_ids() == ["bbbbbb", "aaaaaa"]


class TestTTLCleanup:
    def test_expires_after_ttl(self):
        clock = _Clock()
        store = SessionStore(ttl_seconds=60, clock=clock)
        store.save(_record())
        clock.now += 61
        assert store.cleanup_expired() == ["abc123"]
        assert store.get("abc123") is None

    def test_boundary_is_not_expired(self):
        clock = _Clock()
        store = SessionStore(ttl_seconds=60, clock=clock)
        store.save(_record())
        clock.now += 60
        assert store.cleanup_expired() == []

    def test_save_refreshes_ttl(self):
        clock = _Clock()
        store = SessionStore(ttl_seconds=60, clock=clock)
        store.save(_record())
        clock.now += 50
        store.save(_record(transcript="More."))
        clock.now += 50
        assert store.cleanup_expired() == []


class TestThreadSafety:
    def test_concurrent_saves(self):
        store = SessionStore()

        def writer(prefix):
            for i in range(200):
                store.save(_record("{}{:05d}".format(prefix, i)))

        threads = [threading.Thread(target=writer, args=(p,)) for p in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(store) == 800
