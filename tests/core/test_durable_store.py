import pytest

from src.helly.core.durable_store import DuplicateRowError, DurableStore


def test_insert_and_select(tmp_path):
    store = DurableStore(db_path=tmp_path / "db" / "helly.db")
    store.insert("telegram_updates", {"update_id": 1, "telegram_user_id": 10, "received_at": "2026-01-01T00:00:00+00:00"})
    store.insert("telegram_updates", {"update_id": 2, "telegram_user_id": 11, "received_at": "2026-01-01T00:00:01+00:00"})

    rows = store.select("telegram_updates", {"telegram_user_id": 11})
    assert [row["update_id"] for row in rows] == [2]
    assert len(store.select("telegram_updates", limit=1)) == 1


def test_unique_violation_raises_duplicate_row_error(tmp_path):
    store = DurableStore(db_path=tmp_path / "helly.db")
    row = {"update_id": 5, "telegram_user_id": 10, "received_at": "now"}
    store.insert("telegram_updates", row)

    with pytest.raises(DuplicateRowError):
        store.insert("telegram_updates", row)


def test_unknown_table_or_column_is_rejected(tmp_path):
    store = DurableStore(db_path=tmp_path / "helly.db")
    with pytest.raises(ValueError, match="Unknown table"):
        store.insert("users; DROP TABLE x", {"a": 1})
    with pytest.raises(ValueError, match="Unknown columns"):
        store.select("telegram_updates", {"nope": 1})


def test_upsert_replaces_existing_row(tmp_path):
    store = DurableStore(db_path=tmp_path / "helly.db")
    base = {"telegram_user_id": 3, "payload": "{}", "updated_at": "2026-01-01T00:00:00+00:00"}
    store.upsert("user_states", {**base, "state": "waiting_job"}, conflict_key="telegram_user_id")
    store.upsert("user_states", {**base, "state": "interviewing_manager"}, conflict_key="telegram_user_id")

    rows = store.select("user_states", {"telegram_user_id": 3})
    assert len(rows) == 1
    assert rows[0]["state"] == "interviewing_manager"


def test_schema_has_only_tables_in_use(tmp_path):
    store = DurableStore(db_path=tmp_path / "helly.db")
    with pytest.raises(ValueError, match="Unknown table"):
        store.select("notification_limits")


def test_user_state_round_trip(tmp_path):
    store = DurableStore(db_path=tmp_path / "helly.db")
    assert store.load_user_state(9) is None

    store.save_user_state(9, "waiting_job", {"user_id": 9, "state": "waiting_job", "username": "Олена"})
    store.save_user_state(9, "interviewing_manager", {"user_id": 9, "state": "interviewing_manager"})

    assert store.load_user_state(9) == {"user_id": 9, "state": "interviewing_manager"}
