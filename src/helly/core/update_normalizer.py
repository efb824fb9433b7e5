"""Convert raw Telegram update envelopes into `InboundEvent`."""

from __future__ import annotations

from typing import Any

from .conversation_types import InboundEvent


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None


def normalize_update(update: dict[str, Any]) -> InboundEvent | None:
    """Return None for updates with no user/chat we can answer (edits, channel posts, ...)."""
    update_id = _as_int(update.get("update_id"))
    if update_id is None:
        return None

    message = _as_dict(update.get("message"))
    sender = _as_dict(message.get("from"))
    chat = _as_dict(message.get("chat"))
    user_id = _as_int(sender.get("id"))
    chat_id = _as_int(chat.get("id"))

    if message and user_id is not None and chat_id is not None:
        base: dict[str, Any] = {
            "event_id": update_id,
            "user_id": user_id,
            "chat_id": chat_id,
            "username": sender.get("username"),
        }
        text = message.get("text")
        if isinstance(text, str) and text:
            return InboundEvent(kind="text", text=text, **base)

        document = _as_dict(message.get("document"))
        if document.get("file_id"):
            return InboundEvent(
                kind="document",
                file_id=str(document["file_id"]),
                file_name=document.get("file_name"),
                mime_type=document.get("mime_type"),
                text=message.get("caption") if isinstance(message.get("caption"), str) else None,
                **base,
            )

        voice = _as_dict(message.get("voice"))
        if voice.get("file_id"):
            return InboundEvent(
                kind="voice",
                file_id=str(voice["file_id"]),
                duration_sec=_as_int(voice.get("duration")),
                mime_type=voice.get("mime_type"),
                **base,
            )
        return InboundEvent(kind="other", **base)

    callback = _as_dict(update.get("callback_query"))
    callback_message = _as_dict(callback.get("message"))
    callback_from = _as_dict(callback.get("from"))
    callback_user = _as_int(callback_from.get("id"))
    callback_chat = _as_int(_as_dict(callback_message.get("chat")).get("id"))
    data = callback.get("data")
    if isinstance(data, str) and data and callback_user is not None and callback_chat is not None:
        return InboundEvent(
            event_id=update_id,
            user_id=callback_user,
            chat_id=callback_chat,
            kind="callback",
            username=callback_from.get("username"),
            callback_data=data,
            callback_query_id=str(callback.get("id")) if callback.get("id") is not None else None,
        )
    return None
