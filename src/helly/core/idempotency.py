"""Exactly-once admission of inbound updates."""

from __future__ import annotations

from collections import OrderedDict
from threading import Lock
from typing import Any, Protocol

from .durable_store import DuplicateRowError, utc_now_iso
from .logger import get_logger

logger = get_logger("idempotency")

DEFAULT_MEMORY_CAPACITY = 5000
IDEMPOTENCY_TABLE = "telegram_updates"


class InsertOnlyStore(Protocol):
    def insert(self, table: str, row: dict[str, Any]) -> None: ...


class IdempotencyGate:
    """Bounded in-memory dedupe set backed by an optional durable store.

    The memory set answers repeats within this process; the store's unique
    constraint answers repeats across processes and restarts. Store outages
    admit the event (fail-open).
    """

    def __init__(self, *, store: InsertOnlyStore | None = None, capacity: int = DEFAULT_MEMORY_CAPACITY) -> None:
        self._store = store
        self._capacity = max(1, int(capacity))
        self._seen: OrderedDict[int, int] = OrderedDict()
        self._lock = Lock()
        self._admitted = 0
        self._duplicates = 0
        self._fail_open = 0

    def _forget(self, event_id: int) -> None:
        with self._lock:
            self._seen.pop(event_id, None)

    def should_process(self, event_id: int, user_id: int) -> bool:
        with self._lock:
            if event_id in self._seen:
                self._duplicates += 1
                logger.debug("idempotency.duplicate.memory event_id=%s user_id=%s", event_id, user_id)
                return False
            self._seen[event_id] = user_id
            while len(self._seen) > self._capacity:
                self._seen.popitem(last=False)

        if self._store is None:
            with self._lock:
                self._admitted += 1
            return True

        try:
            self._store.insert(
                IDEMPOTENCY_TABLE,
                {"update_id": int(event_id), "telegram_user_id": int(user_id), "received_at": utc_now_iso()},
            )
        except DuplicateRowError:
            self._forget(event_id)
            with self._lock:
                self._duplicates += 1
            logger.debug("idempotency.duplicate.store event_id=%s user_id=%s", event_id, user_id)
            return False
        except Exception as exc:
            with self._lock:
                self._fail_open += 1
                self._admitted += 1
            logger.warning(
                "idempotency.store.unavailable event_id=%s user_id=%s error=%s",
                event_id,
                user_id,
                exc,
            )
            return True

        with self._lock:
            self._admitted += 1
        return True

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "memory_size": len(self._seen),
                "memory_capacity": self._capacity,
                "durable_store": self._store is not None,
                "admitted": self._admitted,
                "duplicates": self._duplicates,
                "fail_open": self._fail_open,
            }
