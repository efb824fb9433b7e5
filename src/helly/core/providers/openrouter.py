"""OpenRouter chat-completions adapter (one HTTP call, no retries)."""

from __future__ import annotations

import json
from typing import Any
from urllib.error import HTTPError
from urllib.request import Request, urlopen

OPENROUTER_CHAT_URL = "https://openrouter.ai/api/v1/chat/completions"


def _error_detail(body: str, fallback: str) -> str:
    """Pull a human-readable message out of an OpenRouter error body."""
    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        return body.strip() or fallback
    if isinstance(parsed, dict):
        err = parsed.get("error")
        if isinstance(err, dict) and (err.get("message") or err.get("code")):
            return str(err.get("message") or err.get("code"))
        if isinstance(err, str) and err:
            return err
        if isinstance(parsed.get("message"), str):
            return parsed["message"]
    return body.strip() or fallback


def _build_headers(api_key: str, *, referer: str | None, app_title: str | None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    if referer:
        headers["HTTP-Referer"] = referer
    if app_title:
        headers["X-Title"] = app_title
    return headers


def _build_payload(
    model: str,
    messages: list[dict[str, Any]],
    *,
    max_output_tokens: int | None,
    temperature: float | None,
    json_mode: bool,
) -> dict[str, Any]:
    payload: dict[str, Any] = {"model": model, "messages": messages}
    if max_output_tokens is not None:
        payload["max_tokens"] = int(max_output_tokens)
    if temperature is not None:
        payload["temperature"] = float(temperature)
    if json_mode:
        payload["response_format"] = {"type": "json_object"}
    return payload


def _post_json(url: str, headers: dict[str, str], payload: dict[str, Any], timeout_sec: float) -> dict[str, Any]:
    req = Request(url, data=json.dumps(payload).encode("utf-8"), headers=headers, method="POST")
    try:
        with urlopen(req, timeout=timeout_sec) as response:
            body = response.read().decode("utf-8")
    except HTTPError as exc:
        raw_error = exc.read().decode("utf-8", errors="replace")
        raise RuntimeError(f"HTTP {exc.code}: {_error_detail(raw_error, str(exc))}") from exc
    parsed = json.loads(body)
    if not isinstance(parsed, dict):
        raise ValueError("Provider response must be a JSON object.")
    return parsed


def _first_choice(raw: dict[str, Any]) -> tuple[dict[str, Any], dict[str, Any]]:
    choices = raw.get("choices")
    choice = choices[0] if isinstance(choices, list) and choices else None
    if not isinstance(choice, dict):
        return {}, {}
    message = choice.get("message")
    return choice, message if isinstance(message, dict) else {}


def call_openrouter(
    *,
    api_key: str,
    model: str,
    messages: list[dict[str, Any]],
    max_output_tokens: int | None = None,
    temperature: float | None = None,
    json_mode: bool = False,
    timeout_sec: float = 30,
    base_url: str = OPENROUTER_CHAT_URL,
    referer: str | None = None,
    app_title: str | None = None,
) -> dict[str, Any]:
    """Send one chat completion; `json_mode` asks for a JSON object response."""
    raw = _post_json(
        base_url,
        headers=_build_headers(api_key, referer=referer, app_title=app_title),
        payload=_build_payload(
            model,
            messages,
            max_output_tokens=max_output_tokens,
            temperature=temperature,
            json_mode=json_mode,
        ),
        timeout_sec=timeout_sec,
    )
    choice, message = _first_choice(raw)
    return {
        "ok": True,
        "provider": "openrouter",
        "model": model,
        "text": message.get("content"),
        "finish_reason": choice.get("finish_reason"),
        "usage": raw.get("usage"),
        "raw": raw,
        "error": None,
    }
