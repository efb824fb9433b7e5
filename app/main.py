"""Telegram webhook surface for Helly."""

from __future__ import annotations

import hmac
import time
from typing import Any

from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.helly.core.config_loader import DEFAULT_TELEGRAM_CONFIG, get_telegram_config, load_config
from src.helly.core.logger import get_logger
from src.helly.runtime.service import get_runtime_service

logger = get_logger("webhook")

SECRET_HEADER = "x-telegram-bot-api-secret-token"

app = FastAPI(title="Helly Telegram Bot")


class SimulateMessageRequest(BaseModel):
    user_id: int
    text: str = Field(min_length=1)
    chat_id: int | None = None
    update_id: int | None = None
    username: str | None = None


def _configured_webhook_path() -> str:
    try:
        return get_telegram_config(load_config())["webhook_path"]
    except (FileNotFoundError, ValueError):
        return DEFAULT_TELEGRAM_CONFIG["webhook_path"]


WEBHOOK_PATH = _configured_webhook_path()


def _secret_matches(provided: str | None, expected: str) -> bool:
    return hmac.compare_digest((provided or "").encode("utf-8"), expected.encode("utf-8"))


@app.on_event("startup")
def _init_runtime() -> None:
    get_runtime_service().start(source="app")


@app.get("/health")
def health() -> dict:
    return get_runtime_service().health()


@app.post(WEBHOOK_PATH)
async def telegram_webhook(request: Request) -> JSONResponse:
    """Always 200 once authenticated and well-formed, so Telegram never redelivers in a loop."""
    runtime = get_runtime_service()
    settings = await run_in_threadpool(runtime.telegram_settings)
    expected = settings.get("secret_token")
    if expected and not _secret_matches(request.headers.get(SECRET_HEADER), expected):
        logger.warning("webhook.secret.mismatch client=%s", request.client.host if request.client else None)
        return JSONResponse(status_code=401, content={"ok": False, "error": "Invalid Telegram secret token"})

    try:
        body: Any = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        return JSONResponse(status_code=400, content={"ok": False, "error": "Invalid body"})

    try:
        await run_in_threadpool(runtime.handle_telegram_update, body)
    except Exception:
        logger.exception("webhook.update.failed update_id=%s", body.get("update_id"))
    return JSONResponse(content={"ok": True})


@app.post("/api/simulate/message")
def simulate_message(req: SimulateMessageRequest) -> dict:
    """Feed a text message through the same pipeline as the webhook (local testing)."""
    update = {
        "update_id": req.update_id if req.update_id is not None else time.time_ns() // 1000,
        "message": {
            "message_id": 1,
            "from": {"id": req.user_id, "username": req.username},
            "chat": {"id": req.chat_id if req.chat_id is not None else req.user_id},
            "text": req.text,
        },
    }
    return get_runtime_service().handle_telegram_update(update)
