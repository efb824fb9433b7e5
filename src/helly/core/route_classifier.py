"""Always-on update router: oracle JSON in, normalized `RouteDecision` out."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .conversation_types import (
    CONTROL_TYPES,
    CONVERSATION_INTENTS,
    MATCHING_INTENTS,
    META_TYPES,
    ROUTES,
    RouteDecision,
)
from .logger import get_logger
from .messages import next_step_hint
from .prompts import build_router_prompt
from .safe_invoker import SafeInvoker

logger = get_logger("router")

ROUTER_PROMPT_NAME = "always_on_router_v1"
ROUTER_MAX_TOKENS = 280
ROUTER_SCHEMA_HINT = (
    "Router JSON: {route, conversation_intent, meta_type, control_type, matching_intent, "
    "reply, should_advance, should_process_text_as_document}"
)

TEXT_INTAKE_ROUTES = frozenset({"JD_TEXT", "RESUME_TEXT"})

_INTENT_BY_ROUTE: dict[str, str] = {
    "INTERVIEW_ANSWER": "ANSWER",
    "MATCHING_COMMAND": "MATCHING",
    "CONTROL": "COMMAND",
    "META": "CLARIFY",
}


class RouteDecisionError(ValueError):
    """Oracle payload violates the routing contract."""

    def __init__(self, error_code: str, message: str | None = None) -> None:
        super().__init__(message or error_code)
        self.error_code = error_code


class RouteClassificationError(RuntimeError):
    """Routing failed; the caller must apply its own fallback policy."""

    def __init__(self, error_code: str, detail: str | None = None) -> None:
        super().__init__(f"{ROUTER_PROMPT_NAME}_failed:{error_code}")
        self.error_code = error_code
        self.detail = detail


@dataclass(slots=True, frozen=True)
class RouteContext:
    """Everything the router sees about one inbound update."""

    current_state: str
    role: str = "unknown"
    text: str | None = None
    has_document: bool = False
    has_voice: bool = False
    current_question: str | None = None
    last_bot_message: str | None = None
    known_user_name: str | None = None
    event_id: int | None = None
    user_id: int | None = None

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())

    def to_prompt_payload(self) -> dict[str, Any]:
        return {
            "current_state": self.current_state,
            "user_role": self.role,
            "has_text": self.has_text,
            "text_english": self.text if self.has_text else None,
            "text_length": len(self.text or ""),
            "has_document": self.has_document,
            "has_voice": self.has_voice,
            "current_question": self.current_question,
            "last_bot_message": self.last_bot_message,
            "known_user_name": self.known_user_name,
        }


def _normalized_token(value: Any, *, upper: bool = False) -> str | None:
    if not isinstance(value, str):
        return None
    token = value.strip()
    if not token:
        return None
    return token.upper() if upper else token.lower()


def _pick(value: Any, allowed: frozenset[str], default: str) -> str:
    token = _normalized_token(value)
    return token if token in allowed else default


def _same_text(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    return " ".join(left.split()).casefold() == " ".join(right.split()).casefold()


def normalize_route_decision(
    payload: dict[str, Any],
    *,
    last_bot_message: str | None = None,
    current_state: str | None = None,
) -> RouteDecision:
    """Validate oracle output and enforce field co-occurrence rules.

    Raises `RouteDecisionError` for contract violations (unknown route,
    empty reply, non-boolean flags).
    """
    if not isinstance(payload, dict):
        raise RouteDecisionError("payload_not_object")

    route = _normalized_token(payload.get("route"), upper=True)
    if route not in ROUTES:
        raise RouteDecisionError("route_not_supported", f"Unsupported route: {payload.get('route')!r}")

    intent = _normalized_token(payload.get("conversation_intent"), upper=True)
    if intent not in CONVERSATION_INTENTS:
        intent = _INTENT_BY_ROUTE.get(route, "OTHER")

    reply = payload.get("reply")
    if not isinstance(reply, str) or not reply.strip():
        raise RouteDecisionError("reply_empty")
    reply = reply.strip()

    should_advance = payload.get("should_advance")
    if not isinstance(should_advance, bool):
        raise RouteDecisionError("should_advance_not_boolean")
    as_document = payload.get("should_process_text_as_document")
    if not isinstance(as_document, bool):
        raise RouteDecisionError("should_process_text_as_document_not_boolean")

    if _same_text(reply, last_bot_message):
        reply = next_step_hint(current_state or "role_selection")
        if _same_text(reply, last_bot_message):
            reply = f"{reply} If something is unclear, just ask."

    return RouteDecision(
        route=route,  # type: ignore[arg-type]
        conversation_intent=intent,  # type: ignore[arg-type]
        meta_type=_pick(payload.get("meta_type"), META_TYPES, "other") if route == "META" else None,  # type: ignore[arg-type]
        control_type=_pick(payload.get("control_type"), CONTROL_TYPES, "help") if route == "CONTROL" else None,  # type: ignore[arg-type]
        matching_intent=(
            _pick(payload.get("matching_intent"), MATCHING_INTENTS, "help")  # type: ignore[arg-type]
            if route == "MATCHING_COMMAND"
            else None
        ),
        reply=reply,
        should_advance=should_advance,
        should_process_text_as_document=as_document and route in TEXT_INTAKE_ROUTES,
    )


def _payload_is_object(value: dict[str, Any]) -> bool:
    return isinstance(value, dict) and isinstance(value.get("route"), str)


class RouteClassifier:
    def __init__(self, invoker: SafeInvoker, *, max_tokens: int = ROUTER_MAX_TOKENS) -> None:
        self._invoker = invoker
        self._max_tokens = max_tokens

    def classify(self, context: RouteContext) -> RouteDecision:
        """Return a normalized decision or raise `RouteClassificationError`."""
        result = self._invoker.call_json_safe(
            build_router_prompt(context.to_prompt_payload()),
            self._max_tokens,
            prompt_name=ROUTER_PROMPT_NAME,
            schema_hint=ROUTER_SCHEMA_HINT,
            validate=_payload_is_object,
        )
        if not result.ok or result.data is None:
            code = result.error_code or "llm_failure"
            logger.warning(
                "router.parse.failed event_id=%s user_id=%s state=%s error_code=%s",
                context.event_id,
                context.user_id,
                context.current_state,
                code,
            )
            raise RouteClassificationError(code, result.error)

        try:
            decision = normalize_route_decision(
                result.data,
                last_bot_message=context.last_bot_message,
                current_state=context.current_state,
            )
        except RouteDecisionError as exc:
            logger.warning(
                "router.normalize.failed event_id=%s user_id=%s error_code=%s",
                context.event_id,
                context.user_id,
                exc.error_code,
            )
            raise RouteClassificationError(exc.error_code, str(exc)) from exc

        logger.debug(
            "router.decision event_id=%s route=%s intent=%s",
            context.event_id,
            decision.route,
            decision.conversation_intent,
        )
        return decision
