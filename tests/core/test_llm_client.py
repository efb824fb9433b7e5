from urllib.error import HTTPError, URLError

import pytest

from src.helly.core.llm_client import LlmCallError, LlmClient, call_llm, is_timeout_error, is_transient_error

CONFIG = {
    "default_model_alias": "main",
    "models": {"gpt5_mini": {"alias": "main", "provider": "openrouter", "endpoint": "openai/gpt-5-mini"}},
    "model_providers": {"openrouter": {"apikey": "KEY_123", "timeout_sec": 12}},
}


def test_call_llm_resolves_and_invokes_provider(monkeypatch):
    captured = {}

    def fake_call_openrouter(**kwargs):
        captured.update(kwargs)
        return {"ok": True, "provider": "openrouter", "model": kwargs["model"], "text": "hi", "error": None}

    monkeypatch.setattr("src.helly.core.llm_client.call_openrouter", fake_call_openrouter)
    out = call_llm(messages=[{"role": "user", "content": "hello"}], json_mode=True, config=CONFIG)

    assert out["ok"] is True
    assert out["text"] == "hi"
    assert captured["api_key"] == "KEY_123"
    assert captured["model"] == "openai/gpt-5-mini"
    assert captured["timeout_sec"] == 12.0
    assert captured["json_mode"] is True


def test_call_llm_makes_exactly_one_provider_call_on_failure(monkeypatch):
    calls = {"count": 0}

    def failing_call_openrouter(**kwargs):
        _ = kwargs
        calls["count"] += 1
        raise RuntimeError("HTTP 503: upstream unavailable")

    monkeypatch.setattr("src.helly.core.llm_client.call_openrouter", failing_call_openrouter)
    out = call_llm(messages=[{"role": "user", "content": "hello"}], config=CONFIG)

    assert calls["count"] == 1
    assert out["ok"] is False
    assert out["retryable_error"] is True
    assert "HTTP 503" in out["error"]


def test_call_llm_reports_missing_api_key():
    config = {**CONFIG, "model_providers": {"openrouter": {}}}
    out = call_llm(messages=[], config=config)
    assert out["ok"] is False
    assert out["error"] == "OpenRouter API key missing."


def test_call_llm_reports_unresolvable_model():
    out = call_llm(messages=[], config={"models": {}})
    assert out["ok"] is False
    assert "default_model_alias" in out["error"]


@pytest.mark.parametrize(
    "exc",
    [
        HTTPError("https://x", 429, "Too Many Requests", hdrs=None, fp=None),
        HTTPError("https://x", 502, "Bad Gateway", hdrs=None, fp=None),
        URLError(ConnectionResetError("reset")),
        TimeoutError("read timed out"),
        ConnectionResetError("ECONNRESET"),
        RuntimeError("HTTP 500: boom"),
        RuntimeError("Rate limit exceeded, slow down"),
        LlmCallError("provider said so", retryable=True),
    ],
)
def test_transient_errors_are_detected(exc):
    assert is_transient_error(exc) is True


@pytest.mark.parametrize(
    "exc",
    [
        HTTPError("https://x", 400, "Bad Request", hdrs=None, fp=None),
        RuntimeError("HTTP 401: invalid key"),
        ValueError("Provider response must be a JSON object."),
        LlmCallError("content policy"),
    ],
)
def test_non_transient_errors_are_not_retryable(exc):
    assert is_transient_error(exc) is False


def test_timeout_detection_follows_exception_chain():
    try:
        try:
            raise TimeoutError("socket timed out")
        except TimeoutError as inner:
            raise RuntimeError("request failed") from inner
    except RuntimeError as outer:
        assert is_timeout_error(outer) is True
    assert is_timeout_error(LlmCallError("x", timed_out=True)) is True
    assert is_timeout_error(RuntimeError("HTTP 500")) is False


def test_llm_client_returns_text_and_sends_system_prompt(monkeypatch):
    captured = {}

    def fake_call_llm(**kwargs):
        captured.update(kwargs)
        return {"ok": True, "text": '  {"route": "META"}  '}

    monkeypatch.setattr("src.helly.core.llm_client.call_llm", fake_call_llm)
    client = LlmClient(config=CONFIG)
    out = client.generate_structured_json("prompt", 280, system_prompt="You are Helly")

    assert out == '{"route": "META"}'
    assert captured["messages"][0] == {"role": "system", "content": "You are Helly"}
    assert captured["json_mode"] is True
    assert captured["max_output_tokens"] == 280


def test_llm_client_raises_classified_error(monkeypatch):
    monkeypatch.setattr(
        "src.helly.core.llm_client.call_llm",
        lambda **kwargs: {"ok": False, "error": "HTTP 429: slow down", "retryable_error": True},
    )
    client = LlmClient(config=CONFIG)
    with pytest.raises(LlmCallError) as excinfo:
        client.generate_assistant_reply("hello")
    assert excinfo.value.retryable is True


def test_llm_client_rejects_empty_completion(monkeypatch):
    monkeypatch.setattr("src.helly.core.llm_client.call_llm", lambda **kwargs: {"ok": True, "text": "   "})
    with pytest.raises(LlmCallError):
        LlmClient(config=CONFIG).generate_assistant_reply("hello")
