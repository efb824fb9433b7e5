"""Provider-agnostic LLM client entrypoint.

`call_llm` performs exactly one provider call and reports whether a failure
looks transient. Retry policy lives in `safe_invoker`, so provider-level
retries are never stacked on top of it.
"""

from __future__ import annotations

import re
import socket
from typing import Any
from urllib.error import HTTPError, URLError

from .config_loader import get_model_config, get_provider_config, load_config
from .logger import get_logger
from .providers import call_openrouter

logger = get_logger("llm")

RETRYABLE_HTTP_CODES = frozenset({408, 425, 429, 500, 502, 503, 504})
_TRANSIENT_TEXT_MARKERS = (
    "timed out",
    "timeout",
    "econnreset",
    "connection reset",
    "connection refused",
    "connection aborted",
    "temporary failure",
    "name resolution",
    "network",
    "rate limit",
    "too many requests",
)


class LlmCallError(RuntimeError):
    """Oracle call failure carrying its transient/non-transient classification."""

    def __init__(self, message: str, *, retryable: bool = False, timed_out: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.timed_out = timed_out


def _exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        chain.append(current)
        seen.add(id(current))
        nxt = current.__cause__ if isinstance(current.__cause__, BaseException) else None
        if nxt is None:
            nxt = current.__context__ if isinstance(current.__context__, BaseException) else None
        current = nxt
    return chain


def _http_code_from_text(text: str) -> int | None:
    match = re.search(r"\bHTTP\s+(\d{3})\b", text, flags=re.IGNORECASE)
    if not match:
        return None
    return int(match.group(1))


def is_timeout_error(exc: BaseException) -> bool:
    for current in _exception_chain(exc):
        if isinstance(current, LlmCallError) and current.timed_out:
            return True
        if isinstance(current, (TimeoutError, socket.timeout)):
            return True
        if isinstance(current, URLError) and isinstance(getattr(current, "reason", None), TimeoutError):
            return True
    return False


def is_transient_error(exc: BaseException) -> bool:
    """Return True for timeouts, network resets, HTTP 408/425/429/5xx and rate-limit wording."""
    for current in _exception_chain(exc):
        if isinstance(current, LlmCallError):
            if current.retryable or current.timed_out:
                return True
            continue
        if isinstance(current, HTTPError):
            return int(current.code) in RETRYABLE_HTTP_CODES
        if isinstance(current, URLError):
            reason = getattr(current, "reason", None)
            if isinstance(reason, str):
                low = reason.lower()
                return any(marker in low for marker in _TRANSIENT_TEXT_MARKERS)
            # gaierror, TimeoutError and other socket failures
            return True
        if isinstance(current, (TimeoutError, ConnectionError, socket.timeout)):
            return True
        text = str(current)
        code = _http_code_from_text(text)
        if code is not None:
            return code in RETRYABLE_HTTP_CODES
        low = text.lower()
        if any(marker in low for marker in _TRANSIENT_TEXT_MARKERS):
            return True
    return False


def _failure(provider: str | None, model: str | None, error: str, *, retryable: bool = False) -> dict[str, Any]:
    return {
        "ok": False,
        "provider": provider,
        "model": model,
        "text": None,
        "finish_reason": None,
        "usage": None,
        "raw": None,
        "error": error,
        "retryable_error": retryable,
    }


def call_llm(
    *,
    messages: list[dict[str, Any]],
    model: str | None = None,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
    json_mode: bool = False,
    timeout_sec: float | None = None,
    config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Resolve model/provider from config and execute one model call."""
    try:
        payload = config if config is not None else load_config()
        model_id, model_cfg = get_model_config(model, payload)
    except (FileNotFoundError, ValueError) as exc:
        return _failure(None, model, str(exc))
    provider_name = model_cfg.get("provider")
    if not isinstance(provider_name, str) or not provider_name:
        return _failure(None, model_id, f"Model '{model_id}' missing provider.")

    try:
        provider_cfg = get_provider_config(provider_name, payload)
    except ValueError as exc:
        return _failure(provider_name, model_id, str(exc))
    endpoint = model_cfg.get("endpoint")
    if not isinstance(endpoint, str) or not endpoint:
        return _failure(provider_name, model_id, f"Model '{model_id}' missing endpoint.")

    if provider_name != "openrouter":
        return _failure(provider_name, model_id, f"Unsupported provider '{provider_name}'.")

    api_key = provider_cfg.get("apikey")
    if not isinstance(api_key, str) or not api_key:
        return _failure(provider_name, model_id, "OpenRouter API key missing.")

    provider_timeout = timeout_sec
    if provider_timeout is None:
        configured = provider_cfg.get("timeout_sec")
        provider_timeout = float(configured) if isinstance(configured, (int, float)) else 30.0

    try:
        return call_openrouter(
            api_key=api_key,
            model=endpoint,
            messages=messages,
            max_output_tokens=max_output_tokens,
            temperature=temperature,
            json_mode=json_mode,
            timeout_sec=provider_timeout,
            base_url=provider_cfg.get("base_url") or "https://openrouter.ai/api/v1/chat/completions",
            referer=provider_cfg.get("referer"),
            app_title=provider_cfg.get("app_title"),
        )
    except Exception as exc:
        out = _failure(provider_name, model_id, str(exc), retryable=is_transient_error(exc))
        out["timed_out"] = is_timeout_error(exc)
        return out


class LlmClient:
    """Text-generation oracle backed by `call_llm`.

    Both methods return the stripped completion text and raise `LlmCallError`
    on any failure, leaving retries and timeouts to the caller.
    """

    def __init__(
        self,
        *,
        model: str | None = None,
        config: dict[str, Any] | None = None,
        json_temperature: float = 0.2,
        reply_temperature: float = 0.4,
    ) -> None:
        self._model = model
        self._config = config
        self._json_temperature = json_temperature
        self._reply_temperature = reply_temperature

    def _complete(
        self,
        prompt: str,
        max_tokens: int,
        *,
        system_prompt: str | None,
        prompt_name: str,
        temperature: float,
        json_mode: bool,
        timeout_sec: float | None,
    ) -> str:
        messages: list[dict[str, Any]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        result = call_llm(
            messages=messages,
            model=self._model,
            temperature=temperature,
            max_output_tokens=max_tokens,
            json_mode=json_mode,
            timeout_sec=timeout_sec,
            config=self._config,
        )
        if not result.get("ok"):
            logger.warning("llm.call.failed prompt=%s error=%s", prompt_name, result.get("error"))
            raise LlmCallError(
                str(result.get("error") or "LLM call failed."),
                retryable=bool(result.get("retryable_error")),
                timed_out=bool(result.get("timed_out")),
            )
        text = result.get("text")
        if not isinstance(text, str) or not text.strip():
            raise LlmCallError("LLM response does not contain message content.")
        logger.debug("llm.call.completed prompt=%s max_tokens=%s", prompt_name, max_tokens)
        return text.strip()

    def generate_structured_json(
        self,
        prompt: str,
        max_tokens: int,
        *,
        system_prompt: str | None = None,
        prompt_name: str = "structured_json",
        timeout_sec: float | None = None,
    ) -> str:
        return self._complete(
            prompt,
            max_tokens,
            system_prompt=system_prompt,
            prompt_name=prompt_name,
            temperature=self._json_temperature,
            json_mode=True,
            timeout_sec=timeout_sec,
        )

    def generate_assistant_reply(
        self,
        prompt: str,
        max_tokens: int = 180,
        *,
        system_prompt: str | None = None,
        prompt_name: str = "assistant_reply",
        timeout_sec: float | None = None,
    ) -> str:
        return self._complete(
            prompt,
            max_tokens,
            system_prompt=system_prompt,
            prompt_name=prompt_name,
            temperature=self._reply_temperature,
            json_mode=False,
            timeout_sec=timeout_sec,
        )
