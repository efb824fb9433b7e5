"""Load and query Helly JSON config files."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("config/config.json")
_CONFIG_CACHE: dict[Path, tuple[int, dict[str, Any]]] = {}

DEFAULT_SAFE_CALL_CONFIG: dict[str, Any] = {
    "timeout_sec": 25.0,
    "json_max_tokens": 280,
    "text_max_tokens": 180,
    "repair_min_tokens": 240,
    "repair_max_tokens": 2400,
}
DEFAULT_IDEMPOTENCY_CONFIG: dict[str, Any] = {"memory_capacity": 5000}
DEFAULT_RATE_LIMIT_CONFIG: dict[str, Any] = {"window_sec": 30.0, "max_per_window": 10}
DEFAULT_SESSION_CONFIG: dict[str, Any] = {
    "cache_capacity": 1000,
    "transcript_dir": "data/transcripts",
}
DEFAULT_TELEGRAM_CONFIG: dict[str, Any] = {
    "bot_token": None,
    "webhook_path": "/telegram/webhook",
    "secret_token": None,
    "api_base_url": "https://api.telegram.org",
    "timeout_sec": 15.0,
}
DEFAULT_STORAGE_CONFIG: dict[str, Any] = {"db_path": "data/helly.db"}


def _repo_root() -> Path:
    return Path(__file__).resolve().parents[3]


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    """Resolve config path against repo root.

    Priority:
    1. explicit function argument
    2. `HELLY_CONFIG_PATH` environment variable
    3. default `config/config.json`
    """
    raw_path: str | Path | None = config_path or os.getenv("HELLY_CONFIG_PATH")
    candidate = Path(raw_path) if raw_path else DEFAULT_CONFIG_PATH
    if not candidate.is_absolute():
        candidate = _repo_root() / candidate
    return candidate.resolve()


def load_config(config_path: str | Path | None = None, *, use_cache: bool = True) -> dict[str, Any]:
    """Load config JSON as a dictionary."""
    resolved = resolve_config_path(config_path)
    if not resolved.exists():
        raise FileNotFoundError(f"Config file not found: {resolved}")

    mtime_ns = resolved.stat().st_mtime_ns
    if use_cache and resolved in _CONFIG_CACHE:
        cached_mtime_ns, cached_payload = _CONFIG_CACHE[resolved]
        if cached_mtime_ns == mtime_ns:
            return cached_payload

    try:
        payload = json.loads(resolved.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in config file: {resolved}") from exc

    if not isinstance(payload, dict):
        raise ValueError(f"Config root must be a JSON object: {resolved}")

    _CONFIG_CACHE[resolved] = (mtime_ns, payload)
    return payload


def clear_config_cache() -> None:
    """Clear in-memory config cache."""
    _CONFIG_CACHE.clear()


def _section(payload: dict[str, Any], key: str) -> dict[str, Any]:
    value = payload.get(key)
    return value if isinstance(value, dict) else {}


def _positive_number(raw: Any, default: float) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return float(default)
    return float(raw) if float(raw) > 0 else float(default)


def _positive_int(raw: Any, default: int) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        return int(default)
    return int(raw) if raw > 0 else int(default)


def _optional_str(raw: Any) -> str | None:
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return None


def get_model_by_alias(alias: str, config: dict[str, Any] | None = None) -> tuple[str, dict[str, Any]]:
    """Return `(model_id, model_payload)` for a unique alias."""
    payload = config if config is not None else load_config()
    models = payload.get("models")
    if not isinstance(models, dict):
        raise ValueError("Config models must be a JSON object keyed by model id.")

    matches = [
        (model_id, model)
        for model_id, model in models.items()
        if isinstance(model, dict) and model.get("alias") == alias
    ]
    if not matches:
        raise ValueError(f"No model found for alias '{alias}'.")
    if len(matches) > 1:
        raise ValueError(f"Alias '{alias}' is not unique across models.")
    return matches[0]


def get_default_model(config: dict[str, Any] | None = None) -> tuple[str, dict[str, Any]]:
    """Return default model resolved from `default_model_alias`."""
    payload = config if config is not None else load_config()
    alias = payload.get("default_model_alias")
    if not isinstance(alias, str) or not alias:
        raise ValueError("Config requires non-empty string `default_model_alias`.")
    return get_model_by_alias(alias, config=payload)


def get_model_by_id(model_id: str, config: dict[str, Any] | None = None) -> dict[str, Any]:
    payload = config if config is not None else load_config()
    models = payload.get("models")
    if not isinstance(models, dict):
        raise ValueError("Config models must be a JSON object keyed by model id.")

    model = models.get(model_id)
    if not isinstance(model, dict):
        raise ValueError(f"Model id '{model_id}' is not defined.")
    return model


def get_model_config(model_ref: str | None = None, config: dict[str, Any] | None = None) -> tuple[str, dict[str, Any]]:
    """Resolve model config by id, alias, or default alias when model_ref is None."""
    payload = config if config is not None else load_config()
    if model_ref is None:
        return get_default_model(payload)

    models = payload.get("models")
    if isinstance(models, dict) and isinstance(models.get(model_ref), dict):
        return model_ref, models[model_ref]
    return get_model_by_alias(model_ref, payload)


def get_provider_config(provider_name: str, config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return provider config from `model_providers`."""
    payload = config if config is not None else load_config()
    providers = payload.get("model_providers")
    if not isinstance(providers, dict):
        raise ValueError("Config model_providers must be a JSON object.")

    provider = providers.get(provider_name)
    if not isinstance(provider, dict):
        raise ValueError(f"Model provider '{provider_name}' is not defined.")
    return provider


def get_system_persona(config: dict[str, Any] | None = None) -> str | None:
    """Return the assistant persona prompt, or None when unset."""
    payload = config if config is not None else load_config()
    return _optional_str(payload.get("system_persona"))


def get_safe_call_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    payload = config if config is not None else load_config()
    raw = _section(payload, "safe_call")
    defaults = DEFAULT_SAFE_CALL_CONFIG
    repair_min = _positive_int(raw.get("repair_min_tokens"), defaults["repair_min_tokens"])
    repair_max = _positive_int(raw.get("repair_max_tokens"), defaults["repair_max_tokens"])
    if repair_max < repair_min:
        repair_min, repair_max = defaults["repair_min_tokens"], defaults["repair_max_tokens"]
    return {
        "timeout_sec": _positive_number(raw.get("timeout_sec"), defaults["timeout_sec"]),
        "json_max_tokens": _positive_int(raw.get("json_max_tokens"), defaults["json_max_tokens"]),
        "text_max_tokens": _positive_int(raw.get("text_max_tokens"), defaults["text_max_tokens"]),
        "repair_min_tokens": repair_min,
        "repair_max_tokens": repair_max,
    }


def get_idempotency_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    payload = config if config is not None else load_config()
    raw = _section(payload, "idempotency")
    return {
        "memory_capacity": _positive_int(
            raw.get("memory_capacity"), DEFAULT_IDEMPOTENCY_CONFIG["memory_capacity"]
        ),
    }


def get_rate_limit_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    payload = config if config is not None else load_config()
    raw = _section(payload, "rate_limit")
    return {
        "window_sec": _positive_number(raw.get("window_sec"), DEFAULT_RATE_LIMIT_CONFIG["window_sec"]),
        "max_per_window": _positive_int(raw.get("max_per_window"), DEFAULT_RATE_LIMIT_CONFIG["max_per_window"]),
    }


def get_session_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    payload = config if config is not None else load_config()
    raw = _section(payload, "session")
    return {
        "cache_capacity": _positive_int(raw.get("cache_capacity"), DEFAULT_SESSION_CONFIG["cache_capacity"]),
        "transcript_dir": _optional_str(raw.get("transcript_dir")) or DEFAULT_SESSION_CONFIG["transcript_dir"],
    }


def get_telegram_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return Telegram transport settings with defaults applied.

    Env vars `TELEGRAM_BOT_TOKEN` / `TELEGRAM_SECRET_TOKEN` win over file values
    so secrets can stay out of the config file.
    """
    payload = config if config is not None else load_config()
    raw = _section(payload, "telegram")
    defaults = DEFAULT_TELEGRAM_CONFIG
    webhook_path = _optional_str(raw.get("webhook_path")) or defaults["webhook_path"]
    if not webhook_path.startswith("/"):
        webhook_path = f"/{webhook_path}"
    return {
        "bot_token": _optional_str(os.getenv("TELEGRAM_BOT_TOKEN")) or _optional_str(raw.get("bot_token")),
        "webhook_path": webhook_path,
        "secret_token": _optional_str(os.getenv("TELEGRAM_SECRET_TOKEN")) or _optional_str(raw.get("secret_token")),
        "api_base_url": (_optional_str(raw.get("api_base_url")) or defaults["api_base_url"]).rstrip("/"),
        "timeout_sec": _positive_number(raw.get("timeout_sec"), defaults["timeout_sec"]),
    }


def get_storage_config(config: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return durable storage settings; `db_path` is None when disabled."""
    payload = config if config is not None else load_config()
    raw = _section(payload, "storage")
    if "db_path" in raw and raw.get("db_path") in (None, ""):
        return {"db_path": None}
    return {"db_path": _optional_str(raw.get("db_path")) or DEFAULT_STORAGE_CONFIG["db_path"]}
