from __future__ import annotations

from pathlib import Path

from src.helly.runtime.service import RuntimeService


def _config(tmp_path: Path, **overrides) -> dict:
    config = {
        "system_persona": "You are Helly.",
        "default_model_alias": "main",
        "models": {"gpt5_mini": {"alias": "main", "provider": "openrouter", "endpoint": "openai/gpt-5-mini"}},
        "model_providers": {"openrouter": {"apikey": "KEY"}},
        "storage": {"db_path": str(tmp_path / "helly.db")},
        "session": {"transcript_dir": str(tmp_path / "transcripts")},
        "telegram": {"secret_token": "s3cret"},
    }
    config.update(overrides)
    return config


def test_start_is_idempotent_and_stop_resets(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    service = RuntimeService(config=_config(tmp_path), repo_root=tmp_path)

    first = service.start(source="app")
    second = service.start(source="daemon")
    assert first["already_started"] is False
    assert second["already_started"] is True

    health = service.health()
    assert health["runtime"]["started"] is True
    assert health["runtime"]["last_start_source"] == "daemon"
    assert health["oracle"]["persona_configured"] is True
    assert health["idempotency"]["durable_store"] is True

    stopped = service.stop(source="test")
    assert stopped["stopped"] is True
    assert service.health()["runtime"]["started"] is False
    assert service.health()["idempotency"] is None


def test_handle_update_lazily_starts_and_dedupes(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    service = RuntimeService(config=_config(tmp_path), repo_root=tmp_path)
    update = {
        "update_id": 1,
        "message": {"message_id": 1, "from": {"id": 42}, "chat": {"id": 42}, "text": "/start"},
    }

    first = service.handle_telegram_update(update)
    second = service.handle_telegram_update(update)

    assert first["handled"] is True
    assert first["state"] == "role_selection"
    assert first["sent"] is False
    assert second["reason"] == "duplicate"
    assert service.health()["runtime"]["last_start_source"] == "lazy"


def test_durable_dedupe_survives_restart(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    config = _config(tmp_path)
    update = {
        "update_id": 7,
        "message": {"message_id": 1, "from": {"id": 42}, "chat": {"id": 42}, "text": "/start"},
    }

    assert RuntimeService(config=config, repo_root=tmp_path).handle_telegram_update(update)["handled"] is True
    assert RuntimeService(config=config, repo_root=tmp_path).handle_telegram_update(update)["reason"] == "duplicate"


def test_telegram_settings_come_from_config(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("TELEGRAM_SECRET_TOKEN", raising=False)
    service = RuntimeService(config=_config(tmp_path), repo_root=tmp_path)
    assert service.telegram_settings()["secret_token"] == "s3cret"


def test_missing_config_file_is_reported_in_health(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("HELLY_CONFIG_PATH", str(tmp_path / "missing.json"))
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    service = RuntimeService(repo_root=tmp_path)
    service.start(source="test")

    health = service.health()
    assert health["config"]["loaded"] is False
    assert "missing.json" in health["config"]["path"]
    assert health["oracle"]["persona_configured"] is False
    service.stop(source="test")


def test_offer_match_goes_through_the_orchestrator(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("TELEGRAM_BOT_TOKEN", raising=False)
    service = RuntimeService(config=_config(tmp_path), repo_root=tmp_path)

    out = service.offer_match(match_id="m-1", candidate_user_id=77, manager_user_id=78, job_summary="Backend role")

    assert out == {"ok": False, "match_id": "m-1", "reason": "candidate_unavailable"}
    assert service.health()["runtime"]["started"] is True
