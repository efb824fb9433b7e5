import os
from datetime import datetime, timedelta, timezone

import pytest

from src.helly.core.conversation_types import SessionState
from src.helly.core.durable_store import DurableStore
from src.helly.core.session_store import (
    SessionLoadError,
    SessionStore,
    TranscriptLog,
    append_transcript_events,
    cleanup_transcripts_older_than,
    load_transcript_events,
)


class _BrokenBackend:
    def load_user_state(self, user_id):
        raise RuntimeError(f"db down for {user_id}")

    def save_user_state(self, user_id, state, payload):
        _ = (state, payload)
        raise RuntimeError(f"db down for {user_id}")


def test_persist_and_load_from_durable_after_cache_clear(tmp_path):
    store = SessionStore(durable=DurableStore(db_path=tmp_path / "helly.db"))
    session = SessionState(user_id=1, chat_id=1, state="waiting_job", role="manager")
    assert store.persist(session) is True

    store.clear()
    loaded = store.load(1)
    assert loaded is not None
    assert loaded.state == "waiting_job"
    assert loaded.role == "manager"
    assert store.size() == 1


def test_load_without_durable_returns_none_for_unknown_user():
    assert SessionStore().load(404) is None


def test_lru_evicts_least_recently_used():
    store = SessionStore(capacity=2)
    store.persist(SessionState(user_id=1))
    store.persist(SessionState(user_id=2))
    store.cached(1)
    store.persist(SessionState(user_id=3))

    assert store.cached(2) is None
    assert store.cached(1) is not None
    assert store.size() == 2


def test_durable_failures_are_contained():
    store = SessionStore(durable=_BrokenBackend())
    session = SessionState(user_id=5, state="waiting_resume", role="candidate")

    assert store.persist(session) is False
    assert store.cached(5) is session
    store.evict(5)
    with pytest.raises(SessionLoadError, match="db down for 5"):
        store.load(5)


def test_unreadable_payload_is_a_load_error_not_a_missing_record(tmp_path):
    backend = DurableStore(db_path=tmp_path / "helly.db")
    backend.upsert(
        "user_states",
        {"telegram_user_id": 6, "state": "waiting_job", "payload": "{not json", "updated_at": "2026-01-01T00:00:00+00:00"},
        conflict_key="telegram_user_id",
    )

    with pytest.raises(SessionLoadError):
        SessionStore(durable=backend).load(6)
    assert backend.select("user_states", {"telegram_user_id": 6})[0]["payload"] == "{not json"


def test_from_dict_coerces_corrupt_payload(tmp_path):
    backend = DurableStore(db_path=tmp_path / "helly.db")
    backend.save_user_state(8, "bogus", {"state": "bogus", "role": "pirate", "answers": "none", "extra": 1})

    loaded = SessionStore(durable=backend).load(8)
    assert loaded is not None
    assert loaded.user_id == 8
    assert loaded.state == "role_selection"
    assert loaded.role == "unknown"
    assert loaded.answers == []


def test_append_and_load_transcript_events(tmp_path):
    append_transcript_events(7, [{"role": "user", "text": "Привіт"}], base_dir=tmp_path)
    append_transcript_events(7, [{"role": "bot", "text": "Hi"}], base_dir=tmp_path)

    assert load_transcript_events(7, base_dir=tmp_path) == [
        {"role": "user", "text": "Привіт"},
        {"role": "bot", "text": "Hi"},
    ]
    assert load_transcript_events(8, base_dir=tmp_path) == []


def test_cleanup_removes_only_old_transcripts(tmp_path):
    log = TranscriptLog(tmp_path)
    log.append(1, {"text": "old"})
    log.append(2, {"text": "new"})
    old_path = tmp_path / "1.jsonl"
    old_time = (datetime.now(timezone.utc) - timedelta(days=40)).timestamp()
    os.utime(old_path, (old_time, old_time))

    out = cleanup_transcripts_older_than(days=30, base_dir=tmp_path)

    assert out["removed_files"] == ["1.jsonl"]
    assert out["scanned"] == 2
    assert log.load(1) == []
    assert log.load(2) == [{"text": "new"}]
