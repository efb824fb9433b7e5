"""Core schemas for conversation orchestration."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any, Literal, get_args

EventKind = Literal["text", "document", "voice", "callback", "other"]
UserRole = Literal["candidate", "manager", "unknown"]
SessionStateName = Literal[
    "role_selection",
    "onboarding_candidate",
    "waiting_resume",
    "extracting_resume",
    "interviewing_candidate",
    "candidate_profile_ready",
    "candidate_mandatory_fields",
    "onboarding_manager",
    "waiting_job",
    "extracting_job",
    "interviewing_manager",
    "job_profile_ready",
    "manager_mandatory_fields",
    "job_published",
    "waiting_candidate_decision",
    "waiting_manager_decision",
    "contact_shared",
]
Route = Literal[
    "DOC",
    "VOICE",
    "JD_TEXT",
    "RESUME_TEXT",
    "INTERVIEW_ANSWER",
    "META",
    "CONTROL",
    "MATCHING_COMMAND",
    "OFFTOPIC",
    "OTHER",
]
ConversationIntent = Literal["ANSWER", "CLARIFY", "COMMAND", "MATCHING", "COMPLAINT", "SMALLTALK", "OTHER"]
MetaType = Literal["timing", "language", "format", "privacy", "other"]
ControlType = Literal["pause", "resume", "restart", "help", "stop"]
MatchingIntent = Literal["run", "show", "pause", "resume", "help"]
InterviewIntent = Literal["ANSWER", "META", "CONTROL", "OFFTOPIC"]
DecisionSource = Literal["llm", "fallback"]

EVENT_KINDS: frozenset[str] = frozenset(get_args(EventKind))
USER_ROLES: frozenset[str] = frozenset(get_args(UserRole))
SESSION_STATES: frozenset[str] = frozenset(get_args(SessionStateName))
ROUTES: frozenset[str] = frozenset(get_args(Route))
CONVERSATION_INTENTS: frozenset[str] = frozenset(get_args(ConversationIntent))
META_TYPES: frozenset[str] = frozenset(get_args(MetaType))
CONTROL_TYPES: frozenset[str] = frozenset(get_args(ControlType))
MATCHING_INTENTS: frozenset[str] = frozenset(get_args(MatchingIntent))
INTERVIEW_INTENTS: frozenset[str] = frozenset(get_args(InterviewIntent))

INTERVIEWING_STATES: frozenset[str] = frozenset({"interviewing_candidate", "interviewing_manager"})
INTAKE_STATES: frozenset[str] = frozenset({"waiting_resume", "waiting_job"})
PROFILE_FIELD_STATES: frozenset[str] = frozenset({"candidate_mandatory_fields", "manager_mandatory_fields"})


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(slots=True, frozen=True)
class InboundEvent:
    """One normalized update received from the messaging channel."""

    event_id: int
    user_id: int
    chat_id: int
    kind: EventKind
    text: str | None = None
    username: str | None = None
    file_id: str | None = None
    file_name: str | None = None
    mime_type: str | None = None
    duration_sec: int | None = None
    callback_data: str | None = None
    callback_query_id: str | None = None

    def __post_init__(self) -> None:
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"InboundEvent.kind is invalid: {self.kind!r}")

    @property
    def has_text(self) -> bool:
        return bool(self.text and self.text.strip())

    def with_text(self, text: str) -> "InboundEvent":
        """Return a text event carrying the same ids (used after transcription)."""
        return InboundEvent(
            event_id=self.event_id,
            user_id=self.user_id,
            chat_id=self.chat_id,
            kind="text",
            text=text,
            username=self.username,
        )

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(slots=True)
class SessionState:
    """Per-user conversation record; the durable copy is authoritative."""

    user_id: int
    chat_id: int | None = None
    state: SessionStateName = "role_selection"
    role: UserRole = "unknown"
    username: str | None = None
    current_question: str | None = None
    current_question_index: int = 0
    last_bot_message: str | None = None
    interview_plan: list[str] = field(default_factory=list)
    answers: list[dict[str, Any]] = field(default_factory=list)
    source_text: str | None = None
    paused: bool = False
    candidate_profile_complete: bool = False
    job_profile_complete: bool = False
    profile_fields: dict[str, Any] = field(default_factory=dict)
    profile_field_step: str | None = None
    active_match: dict[str, Any] | None = None
    interview_started_at: str | None = None
    interview_completed_at: str | None = None
    updated_at: str = field(default_factory=_utc_now_iso)

    def __post_init__(self) -> None:
        if self.state not in SESSION_STATES:
            raise ValueError(f"SessionState.state is invalid: {self.state!r}")
        if self.role not in USER_ROLES:
            raise ValueError(f"SessionState.role is invalid: {self.role!r}")

    @property
    def has_active_question(self) -> bool:
        return self.state in INTERVIEWING_STATES and bool(self.current_question)

    def touch(self) -> None:
        self.updated_at = _utc_now_iso()

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "chat_id": self.chat_id,
            "state": self.state,
            "role": self.role,
            "username": self.username,
            "current_question": self.current_question,
            "current_question_index": self.current_question_index,
            "last_bot_message": self.last_bot_message,
            "interview_plan": list(self.interview_plan),
            "answers": [dict(item) for item in self.answers],
            "source_text": self.source_text,
            "paused": self.paused,
            "candidate_profile_complete": self.candidate_profile_complete,
            "job_profile_complete": self.job_profile_complete,
            "profile_fields": dict(self.profile_fields),
            "profile_field_step": self.profile_field_step,
            "active_match": dict(self.active_match) if self.active_match else None,
            "interview_started_at": self.interview_started_at,
            "interview_completed_at": self.interview_completed_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "SessionState":
        """Rebuild from a persisted payload; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        data = {key: value for key, value in payload.items() if key in known}
        if data.get("state") not in SESSION_STATES:
            data["state"] = "role_selection"
        if data.get("role") not in USER_ROLES:
            data["role"] = "unknown"
        if not isinstance(data.get("interview_plan"), list):
            data["interview_plan"] = []
        if not isinstance(data.get("answers"), list):
            data["answers"] = []
        if not isinstance(data.get("current_question_index"), int):
            data["current_question_index"] = 0
        if not isinstance(data.get("profile_fields"), dict):
            data["profile_fields"] = {}
        if not isinstance(data.get("active_match"), dict):
            data["active_match"] = None
        if not data.get("updated_at"):
            data.pop("updated_at", None)
        return cls(**data)


@dataclass(slots=True, frozen=True)
class RouteDecision:
    """Normalized routing decision; sub-intents only set for their owning route."""

    route: Route
    conversation_intent: ConversationIntent
    reply: str
    should_advance: bool
    should_process_text_as_document: bool = False
    meta_type: MetaType | None = None
    control_type: ControlType | None = None
    matching_intent: MatchingIntent | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "route": self.route,
            "conversation_intent": self.conversation_intent,
            "meta_type": self.meta_type,
            "control_type": self.control_type,
            "matching_intent": self.matching_intent,
            "reply": self.reply,
            "should_advance": self.should_advance,
            "should_process_text_as_document": self.should_process_text_as_document,
        }


_INTERVIEW_INTENT_TO_ROUTE: dict[str, str] = {
    "ANSWER": "INTERVIEW_ANSWER",
    "META": "META",
    "CONTROL": "CONTROL",
    "OFFTOPIC": "OFFTOPIC",
}
_INTERVIEW_INTENT_TO_CONVERSATION: dict[str, str] = {
    "ANSWER": "ANSWER",
    "META": "CLARIFY",
    "CONTROL": "COMMAND",
    "OFFTOPIC": "OTHER",
}


@dataclass(slots=True, frozen=True)
class InterviewIntentDecision:
    """Interview-scoped classification of one message."""

    intent: InterviewIntent
    reply: str
    should_advance: bool
    meta_type: MetaType | None = None
    control_type: ControlType | None = None
    source: DecisionSource = "llm"

    def to_route_decision(self) -> RouteDecision:
        return RouteDecision(
            route=_INTERVIEW_INTENT_TO_ROUTE[self.intent],  # type: ignore[arg-type]
            conversation_intent=_INTERVIEW_INTENT_TO_CONVERSATION[self.intent],  # type: ignore[arg-type]
            reply=self.reply,
            should_advance=self.should_advance,
            meta_type=self.meta_type if self.intent == "META" else None,
            control_type=self.control_type if self.intent == "CONTROL" else None,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent,
            "meta_type": self.meta_type,
            "control_type": self.control_type,
            "reply": self.reply,
            "should_advance": self.should_advance,
            "source": self.source,
        }
