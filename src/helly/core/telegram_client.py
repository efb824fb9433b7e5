"""Minimal Telegram Bot API client for outbound messages."""

from __future__ import annotations

import json
from typing import Any
from urllib.error import HTTPError
from urllib.request import Request, urlopen

TELEGRAM_API_BASE_URL = "https://api.telegram.org"
MAX_MESSAGE_CHARS = 4096


class TelegramClient:
    def __init__(
        self,
        *,
        bot_token: str,
        api_base_url: str = TELEGRAM_API_BASE_URL,
        timeout_sec: float = 15.0,
    ) -> None:
        if not bot_token:
            raise ValueError("Telegram bot token is required.")
        self._bot_token = bot_token
        self._api_base_url = api_base_url.rstrip("/")
        self._timeout_sec = timeout_sec

    def _method_url(self, method: str) -> str:
        return f"{self._api_base_url}/bot{self._bot_token}/{method}"

    def _post(self, method: str, payload: dict[str, Any]) -> dict[str, Any]:
        req = Request(
            self._method_url(method),
            data=json.dumps(payload).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urlopen(req, timeout=self._timeout_sec) as response:
                body = response.read().decode("utf-8")
        except HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace").strip() or str(exc)
            raise RuntimeError(f"HTTP {exc.code}: {detail}") from exc
        parsed = json.loads(body)
        if not isinstance(parsed, dict) or not parsed.get("ok"):
            raise RuntimeError(f"Telegram {method} failed: {body[:300]}")
        return parsed

    def send_message(
        self,
        chat_id: int,
        text: str,
        *,
        reply_markup: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"chat_id": chat_id, "text": text[:MAX_MESSAGE_CHARS]}
        if reply_markup:
            payload["reply_markup"] = reply_markup
        return self._post("sendMessage", payload)

    def answer_callback_query(self, callback_query_id: str) -> dict[str, Any]:
        return self._post("answerCallbackQuery", {"callback_query_id": callback_query_id})
