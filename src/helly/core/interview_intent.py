"""Interview-scoped intent classification with a deterministic fallback."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Any, Callable

from .conversation_types import CONTROL_TYPES, INTERVIEW_INTENTS, META_TYPES, InterviewIntentDecision
from .logger import get_logger
from .messages import (
    CLARIFY_REPLY,
    FORMAT_REPLY,
    HELP_REPLY,
    LANGUAGE_REPLY,
    OFFTOPIC_REPLY,
    TIMING_REPLY,
)
from .prompts import build_interview_intent_prompt
from .safe_invoker import SafeInvoker

logger = get_logger("interview.intent")

INTENT_PROMPT_NAME = "interview_intent_router_v1"
INTENT_MAX_TOKENS = 280
INTENT_SCHEMA_HINT = "Interview intent JSON: {intent, meta_type, control_type, reply, should_advance}"

FILLER_TOKENS = frozenset(
    {
        "ok",
        "okay",
        "k",
        "kk",
        "yes",
        "yeah",
        "yep",
        "no",
        "nope",
        "sure",
        "fine",
        "cool",
        "thanks",
        "thank you",
        "got it",
        "+",
        "ок",
        "окей",
        "да",
        "нет",
        "ага",
        "так",
        "ні",
        "добре",
        "хорошо",
    }
)
MIN_FALLBACK_ANSWER_WORDS = 4

_TIMING_RE = re.compile(
    r"\bhow long\b|\bhow much time\b|\bwhen (will|do|does|can|is|are)\b|\bhow many minutes\b"
    r"|сколько|когда|скільки|коли",
    re.IGNORECASE,
)
_LANGUAGE_RE = re.compile(
    r"\bvoice\b|\blanguage\b|\brussian\b|\bukrainian\b|голос|рус|укр",
    re.IGNORECASE,
)
_HELP_RE = re.compile(
    r"^/help\b|\bhelp\b|\bwhat (should i|do i|to) do\b|помо(щь|ги)|допомо",
    re.IGNORECASE,
)
_CLARIFY_RE = re.compile(
    r"\bwhat do you mean\b|\bwhat does (that|this|it) mean\b|\b(can|could) you (clarify|explain|rephrase)\b"
    r"|\brepeat the question\b|\bi (don't|do not) understand\b|\bfor example\?|\bwhich project\b"
    r"|не понял|не понимаю|не зрозумів|не розумію",
    re.IGNORECASE,
)


def _normalize_message(text: str | None) -> str:
    return " ".join((text or "").split()).strip().casefold()


def _is_punctuation_only(text: str) -> bool:
    """True when nothing in `text` is a letter or digit (covers emoji-only input)."""
    return not any(unicodedata.category(ch)[0] in {"L", "N"} for ch in text)


def is_filler_message(text: str | None) -> bool:
    normalized = _normalize_message(text)
    if not normalized or _is_punctuation_only(normalized):
        return True
    stripped = normalized.strip(" .,!?;:)(")
    return stripped in FILLER_TOKENS or normalized in FILLER_TOKENS


def _meta(meta_type: str, reply: str) -> InterviewIntentDecision:
    return InterviewIntentDecision(
        intent="META",
        meta_type=meta_type,  # type: ignore[arg-type]
        reply=reply,
        should_advance=False,
        source="fallback",
    )


def format_decision(source: str = "fallback") -> InterviewIntentDecision:
    return InterviewIntentDecision(
        intent="META",
        meta_type="format",
        reply=FORMAT_REPLY,
        should_advance=False,
        source=source,  # type: ignore[arg-type]
    )


@dataclass(slots=True, frozen=True)
class FallbackRule:
    """One `(predicate, decision)` pair of the fallback table."""

    name: str
    matches: Callable[[str], bool]
    decide: Callable[[str, str | None], InterviewIntentDecision]


def _match_timing(text: str) -> bool:
    return bool(_TIMING_RE.search(text))


def _match_language(text: str) -> bool:
    return bool(_LANGUAGE_RE.search(text))


def _match_help(text: str) -> bool:
    return bool(_HELP_RE.search(text))


def _match_clarify(text: str) -> bool:
    return bool(_CLARIFY_RE.search(text))


def _match_filler(text: str) -> bool:
    return is_filler_message(text) or len(text.split()) < MIN_FALLBACK_ANSWER_WORDS


def _clarify_reply(_: str, current_question: str | None) -> InterviewIntentDecision:
    reply = f"{CLARIFY_REPLY} {current_question}" if current_question else CLARIFY_REPLY.rsplit(" Here", 1)[0]
    return _meta("other", reply)


def _help_reply(_: str, __: str | None) -> InterviewIntentDecision:
    return InterviewIntentDecision(
        intent="CONTROL",
        control_type="help",
        reply=HELP_REPLY,
        should_advance=False,
        source="fallback",
    )


FALLBACK_RULES: tuple[FallbackRule, ...] = (
    FallbackRule("timing", _match_timing, lambda _text, _question: _meta("timing", TIMING_REPLY)),
    FallbackRule("language", _match_language, lambda _text, _question: _meta("language", LANGUAGE_REPLY)),
    FallbackRule("help", _match_help, _help_reply),
    FallbackRule("clarify", _match_clarify, _clarify_reply),
    FallbackRule("filler", _match_filler, lambda _text, _question: format_decision()),
)


def fallback_decision(user_message: str | None, current_question: str | None = None) -> InterviewIntentDecision:
    """Evaluate `FALLBACK_RULES` top to bottom; default is a substantive answer."""
    normalized = _normalize_message(user_message)
    for rule in FALLBACK_RULES:
        if rule.matches(normalized):
            logger.debug("interview.intent.fallback rule=%s", rule.name)
            return rule.decide(normalized, current_question)
    return InterviewIntentDecision(
        intent="ANSWER",
        reply="Thanks, noted.",
        should_advance=True,
        source="fallback",
    )


def apply_filler_guard(decision: InterviewIntentDecision, user_message: str | None) -> InterviewIntentDecision:
    """Downgrade an ANSWER for a trivial message to META/format."""
    if decision.intent != "ANSWER" or not is_filler_message(user_message):
        return decision
    return format_decision(source=decision.source)


def parse_intent_payload(payload: dict[str, Any]) -> InterviewIntentDecision:
    """Validate oracle JSON; raises `ValueError` on contract violations."""
    intent = str(payload.get("intent") or "").strip().upper()
    if intent not in INTERVIEW_INTENTS:
        raise ValueError(f"Invalid interview intent: {payload.get('intent')!r}")

    reply = payload.get("reply")
    if not isinstance(reply, str) or not reply.strip():
        raise ValueError("Interview intent reply is required.")
    should_advance = payload.get("should_advance")
    if not isinstance(should_advance, bool):
        raise ValueError("Interview intent should_advance must be boolean.")

    meta_type = None
    control_type = None
    if intent == "META":
        raw = str(payload.get("meta_type") or "").strip().lower()
        meta_type = raw if raw in META_TYPES else "other"
    elif intent == "CONTROL":
        raw = str(payload.get("control_type") or "").strip().lower()
        control_type = raw if raw in CONTROL_TYPES else "help"

    return InterviewIntentDecision(
        intent=intent,  # type: ignore[arg-type]
        meta_type=meta_type,  # type: ignore[arg-type]
        control_type=control_type,  # type: ignore[arg-type]
        reply=reply.strip(),
        should_advance=should_advance if intent == "ANSWER" else False,
        source="llm",
    )


class InterviewIntentClassifier:
    def __init__(self, invoker: SafeInvoker, *, max_tokens: int = INTENT_MAX_TOKENS) -> None:
        self._invoker = invoker
        self._max_tokens = max_tokens

    def classify(
        self,
        *,
        current_state: str,
        role: str,
        current_question: str,
        user_message: str,
        last_bot_message: str | None = None,
    ) -> InterviewIntentDecision:
        """Never raises: oracle or contract failures use `fallback_decision`."""
        result = self._invoker.call_json_safe(
            build_interview_intent_prompt(
                current_state=current_state,
                role=role,
                current_question=current_question,
                user_message=user_message,
                last_bot_message=last_bot_message,
            ),
            self._max_tokens,
            prompt_name=INTENT_PROMPT_NAME,
            schema_hint=INTENT_SCHEMA_HINT,
        )
        if not result.ok or result.data is None:
            logger.warning(
                "interview.intent.fallback state=%s error_code=%s",
                current_state,
                result.error_code,
            )
            return fallback_decision(user_message, current_question)

        try:
            decision = parse_intent_payload(result.data)
        except ValueError as exc:
            logger.warning("interview.intent.fallback state=%s error=%s", current_state, exc)
            return fallback_decision(user_message, current_question)

        if decision.intent == "OFFTOPIC" and decision.reply == last_bot_message:
            decision = InterviewIntentDecision(intent="OFFTOPIC", reply=OFFTOPIC_REPLY, should_advance=False)
        return apply_filler_guard(decision, user_message)
