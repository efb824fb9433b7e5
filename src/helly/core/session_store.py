"""Session persistence: LRU cache over a durable store, plus JSONL transcripts."""

from __future__ import annotations

import json
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Protocol

from .conversation_types import SessionState
from .logger import get_logger

logger = get_logger("session")

DEFAULT_CACHE_CAPACITY = 1000
DEFAULT_TRANSCRIPT_DIR = "data/transcripts"


class SessionLoadError(Exception):
    """The durable session copy exists or may exist but could not be read."""


class SessionBackend(Protocol):
    def load_user_state(self, user_id: int) -> dict[str, Any] | None: ...

    def save_user_state(self, user_id: int, state: str, payload: dict[str, Any]) -> None: ...


class SessionStore:
    """In-memory LRU of `SessionState`; the durable copy stays authoritative."""

    def __init__(self, *, durable: SessionBackend | None = None, capacity: int = DEFAULT_CACHE_CAPACITY) -> None:
        self._durable = durable
        self._capacity = max(1, int(capacity))
        self._cache: OrderedDict[int, SessionState] = OrderedDict()
        self._lock = Lock()

    def _remember(self, session: SessionState) -> None:
        with self._lock:
            self._cache[session.user_id] = session
            self._cache.move_to_end(session.user_id)
            while len(self._cache) > self._capacity:
                self._cache.popitem(last=False)

    def cached(self, user_id: int) -> SessionState | None:
        with self._lock:
            session = self._cache.get(user_id)
            if session is not None:
                self._cache.move_to_end(user_id)
            return session

    def load(self, user_id: int) -> SessionState | None:
        """Return cache hit, else the durable copy, else None when no record exists.

        A failed durable read raises `SessionLoadError`; callers must not treat
        it as a new user.
        """
        session = self.cached(user_id)
        if session is not None:
            return session
        if self._durable is None:
            return None

        try:
            payload = self._durable.load_user_state(user_id)
            if payload is None:
                return None
            session = SessionState.from_dict({**payload, "user_id": user_id})
        except Exception as exc:
            logger.warning("session.hydrate.failed user_id=%s error=%s", user_id, exc)
            raise SessionLoadError(f"Session read failed for user {user_id}: {exc}") from exc
        self._remember(session)
        return session

    def persist(self, session: SessionState) -> bool:
        """Write cache then durable store; a durable failure keeps the cached copy."""
        session.touch()
        self._remember(session)
        if self._durable is None:
            return True
        try:
            self._durable.save_user_state(session.user_id, session.state, session.to_dict())
        except Exception as exc:
            logger.warning("session.persist.failed user_id=%s state=%s error=%s", session.user_id, session.state, exc)
            return False
        return True

    def evict(self, user_id: int) -> None:
        with self._lock:
            self._cache.pop(user_id, None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._cache)


def _transcripts_dir(base_dir: str | Path = DEFAULT_TRANSCRIPT_DIR, *, root: Path | None = None) -> Path:
    path = Path(base_dir)
    if not path.is_absolute():
        path = (root or Path.cwd()) / path
    path.mkdir(parents=True, exist_ok=True)
    return path


def transcript_path(user_id: int, *, base_dir: str | Path = DEFAULT_TRANSCRIPT_DIR, root: Path | None = None) -> Path:
    return _transcripts_dir(base_dir, root=root) / f"{int(user_id)}.jsonl"


def append_transcript_events(
    user_id: int,
    events: list[dict[str, Any]],
    *,
    base_dir: str | Path = DEFAULT_TRANSCRIPT_DIR,
    root: Path | None = None,
) -> None:
    path = transcript_path(user_id, base_dir=base_dir, root=root)
    with path.open("a", encoding="utf-8") as fh:
        for event in events:
            fh.write(json.dumps(event, ensure_ascii=False) + "\n")


def load_transcript_events(
    user_id: int,
    *,
    base_dir: str | Path = DEFAULT_TRANSCRIPT_DIR,
    root: Path | None = None,
) -> list[dict[str, Any]]:
    path = transcript_path(user_id, base_dir=base_dir, root=root)
    if not path.exists():
        return []

    events: list[dict[str, Any]] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        parsed = json.loads(line)
        if isinstance(parsed, dict):
            events.append(parsed)
    return events


def cleanup_transcripts_older_than(
    *,
    days: int,
    base_dir: str | Path = DEFAULT_TRANSCRIPT_DIR,
    root: Path | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    if days < 0:
        raise ValueError("days must be >= 0")

    path = _transcripts_dir(base_dir, root=root)
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    removed: list[str] = []
    scanned = 0
    for file_path in path.glob("*.jsonl"):
        scanned += 1
        modified = datetime.fromtimestamp(file_path.stat().st_mtime, tz=timezone.utc)
        if modified < cutoff:
            file_path.unlink(missing_ok=True)
            removed.append(file_path.name)

    return {
        "ok": True,
        "scanned": scanned,
        "removed_count": len(removed),
        "removed_files": sorted(removed),
        "cutoff_iso_utc": cutoff.isoformat(),
    }


class TranscriptLog:
    """Append-only per-user turn log bound to one directory."""

    def __init__(self, base_dir: str | Path = DEFAULT_TRANSCRIPT_DIR, *, root: Path | None = None) -> None:
        self._base_dir = base_dir
        self._root = root
        self._lock = Lock()

    def append(self, user_id: int, event: dict[str, Any]) -> None:
        with self._lock:
            append_transcript_events(user_id, [event], base_dir=self._base_dir, root=self._root)

    def load(self, user_id: int) -> list[dict[str, Any]]:
        return load_transcript_events(user_id, base_dir=self._base_dir, root=self._root)

    def cleanup(self, *, days: int) -> dict[str, Any]:
        return cleanup_transcripts_older_than(days=days, base_dir=self._base_dir, root=self._root)
