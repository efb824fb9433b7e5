import json
from pathlib import Path

import pytest

from src.helly.core.config_loader import (
    clear_config_cache,
    get_default_model,
    get_idempotency_config,
    get_model_config,
    get_provider_config,
    get_rate_limit_config,
    get_safe_call_config,
    get_session_config,
    get_storage_config,
    get_system_persona,
    get_telegram_config,
    load_config,
    resolve_config_path,
)


def _write_json(path: Path, payload: dict) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_resolve_config_path_uses_env_var(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    config_path = tmp_path / "custom.json"
    _write_json(config_path, {"ok": True})
    monkeypatch.setenv("HELLY_CONFIG_PATH", str(config_path))

    assert resolve_config_path() == config_path.resolve()


def test_load_config_reads_json_file(tmp_path: Path):
    clear_config_cache()
    config_path = tmp_path / "config.json"
    _write_json(config_path, {"system_persona": "Helly"})

    assert load_config(config_path=config_path, use_cache=False) == {"system_persona": "Helly"}


def test_load_config_invalid_json_raises_value_error(tmp_path: Path):
    clear_config_cache()
    config_path = tmp_path / "config.json"
    config_path.write_text("{ invalid", encoding="utf-8")

    with pytest.raises(ValueError, match="Invalid JSON in config file"):
        load_config(config_path=config_path, use_cache=False)


def test_load_config_missing_file_raises(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(config_path=tmp_path / "missing.json")


def test_model_and_provider_helpers():
    config = {
        "default_model_alias": "main",
        "models": {"gpt5_mini": {"alias": "main", "provider": "openrouter", "endpoint": "openai/gpt-5-mini"}},
        "model_providers": {"openrouter": {"apikey": "KEY"}},
    }
    model_id, model = get_default_model(config)
    assert model_id == "gpt5_mini"
    assert model["endpoint"] == "openai/gpt-5-mini"
    assert get_model_config("main", config)[0] == "gpt5_mini"
    assert get_provider_config("openrouter", config)["apikey"] == "KEY"

    with pytest.raises(ValueError):
        get_provider_config("other", config)


def test_section_helpers_fill_defaults_for_empty_config():
    config: dict = {}
    assert get_system_persona(config) is None
    assert get_safe_call_config(config) == {
        "timeout_sec": 25.0,
        "json_max_tokens": 280,
        "text_max_tokens": 180,
        "repair_min_tokens": 240,
        "repair_max_tokens": 2400,
    }
    assert get_idempotency_config(config) == {"memory_capacity": 5000}
    assert get_rate_limit_config(config) == {"window_sec": 30.0, "max_per_window": 10}
    assert get_session_config(config)["cache_capacity"] == 1000
    assert get_storage_config(config) == {"db_path": "data/helly.db"}


def test_section_helpers_replace_invalid_values():
    config = {
        "system_persona": "   ",
        "safe_call": {"timeout_sec": -3, "repair_min_tokens": 500, "repair_max_tokens": 100},
        "rate_limit": {"window_sec": "soon", "max_per_window": True},
        "storage": {"db_path": None},
    }
    safe = get_safe_call_config(config)
    assert get_system_persona(config) is None
    assert safe["timeout_sec"] == 25.0
    assert (safe["repair_min_tokens"], safe["repair_max_tokens"]) == (240, 2400)
    assert get_rate_limit_config(config) == {"window_sec": 30.0, "max_per_window": 10}
    assert get_storage_config(config) == {"db_path": None}


def test_telegram_config_prefers_env_secrets(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "env-token")
    monkeypatch.delenv("TELEGRAM_SECRET_TOKEN", raising=False)
    config = {"telegram": {"bot_token": "file-token", "secret_token": "s3cret", "webhook_path": "hooks/tg"}}

    out = get_telegram_config(config)
    assert out["bot_token"] == "env-token"
    assert out["secret_token"] == "s3cret"
    assert out["webhook_path"] == "/hooks/tg"
    assert out["api_base_url"] == "https://api.telegram.org"
