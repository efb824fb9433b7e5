"""Conversation orchestrator: one inbound update in, at most one reply out."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Protocol

from .conversation_types import INTAKE_STATES, PROFILE_FIELD_STATES, InboundEvent, RouteDecision, SessionState
from .dispatch import resolve_dispatch_action
from .idempotency import IdempotencyGate
from .interview_intent import InterviewIntentClassifier
from .interview_planner import InterviewPlanner
from .logger import get_logger
from .messages import (
    CANDIDATE_APPLIED_REPLY,
    CANDIDATE_DECISION_KEYBOARD,
    CANDIDATE_DECLINED_REPLY,
    CANDIDATE_INTERVIEW_DONE_REPLY,
    CANDIDATE_NOT_SELECTED_REPLY,
    CANDIDATE_ONBOARDING_REPLY,
    CANDIDATE_PROFILE_COMPLETE_REPLY,
    CONTACT_SHARED_REPLY,
    DECISION_NOT_EXPECTED_REPLY,
    DOCUMENT_FAILED_REPLY,
    DOCUMENT_NOT_EXPECTED_REPLY,
    DOCUMENT_RECEIVED_REPLY,
    HELP_REPLY,
    INTERVIEW_STARTED_REPLY,
    JOB_PUBLISHED_REPLY,
    MANAGER_DECISION_KEYBOARD,
    MANAGER_DECLINED_REPLY,
    MANAGER_INTERVIEW_DONE_REPLY,
    MANAGER_ONBOARDING_REPLY,
    MANAGER_REVIEW_REPLY,
    MATCH_CLOSED_REPLY,
    MATCH_OFFER_REPLY,
    MATCHING_UNAVAILABLE_REPLY,
    PAUSED_REPLY,
    PROFILE_FIELD_PROMPTS,
    PROFILE_FIELD_RETRY_REPLY,
    PROFILE_FIELDS_INTRO_REPLY,
    RATE_LIMIT_REPLY,
    RESTARTED_REPLY,
    RESUMED_REPLY,
    ROLE_KEYBOARD,
    ROLE_SELECTION_PROMPT,
    ROUTING_FAILURE_REPLY,
    SESSION_UNAVAILABLE_REPLY,
    VOICE_FAILED_REPLY,
    VOICE_TOO_LONG_REPLY,
    next_step_hint,
)
from .profile_fields import parse_step_answer
from .rate_limit import SlidingWindowRateLimiter
from .route_classifier import RouteClassificationError, RouteClassifier, RouteContext
from .session_store import SessionLoadError, TranscriptLog
from .state_machine import SessionStateMachine
from .update_normalizer import normalize_update

logger = get_logger("conversation")

DEFAULT_VOICE_MAX_DURATION_SEC = 180

ROLE_COMMANDS: dict[str, str] = {
    "/candidate": "candidate",
    "/manager": "manager",
    "role:candidate": "candidate",
    "role:manager": "manager",
}
CONTROL_COMMANDS: dict[str, str] = {
    "/restart": "restart",
    "/pause": "pause",
    "/resume": "resume",
    "/help": "help",
    "/stop": "stop",
}
DECISION_COMMANDS: dict[str, bool] = {
    "/accept": True,
    "/apply": True,
    "decision:accept": True,
    "/decline": False,
    "/skip": False,
    "decision:decline": False,
}


class MessageTransport(Protocol):
    def send_message(self, chat_id: int, text: str, *, reply_markup: dict[str, Any] | None = None) -> dict[str, Any]: ...


class DocumentExtractor(Protocol):
    def extract_text(self, event: InboundEvent) -> str: ...


class Transcriber(Protocol):
    def transcribe(self, event: InboundEvent) -> str: ...


class MatchingService(Protocol):
    def handle_command(self, session: SessionState, intent: str) -> str | None: ...


@dataclass(slots=True)
class TurnOutcome:
    action: str
    reply: str | None
    route: str | None = None
    reply_markup: dict[str, Any] | None = None
    decision_source: str | None = None


Handler = Callable[[InboundEvent, SessionState, RouteDecision, int], TurnOutcome]


def _command_token(text: str | None) -> str:
    if not text:
        return ""
    head = text.strip().split(maxsplit=1)
    if not head:
        return ""
    # "/start@HellyBot payload" -> "/start"
    return head[0].split("@", 1)[0].lower()


def _control_decision(control_type: str) -> RouteDecision:
    return RouteDecision(
        route="CONTROL",
        conversation_intent="COMMAND",
        control_type=control_type,  # type: ignore[arg-type]
        reply=HELP_REPLY,
        should_advance=False,
    )


def _media_decision(event: InboundEvent) -> RouteDecision:
    if event.kind == "document":
        return RouteDecision(
            route="DOC",
            conversation_intent="OTHER",
            reply=DOCUMENT_RECEIVED_REPLY,
            should_advance=False,
        )
    return RouteDecision(
        route="VOICE",
        conversation_intent="OTHER",
        reply="Got your voice message. Transcribing it now.",
        should_advance=False,
    )


def _join(*parts: str | None) -> str:
    return "\n\n".join(part.strip() for part in parts if part and part.strip())


def _current_prompt(session: SessionState) -> str:
    """The question the user owes an answer to, else the state's next-step hint."""
    if session.has_active_question and session.current_question:
        return session.current_question
    if session.state in PROFILE_FIELD_STATES and session.profile_field_step in PROFILE_FIELD_PROMPTS:
        return PROFILE_FIELD_PROMPTS[session.profile_field_step]
    return next_step_hint(session.state)


def _contact_card(session: SessionState) -> str:
    handle = f"@{session.username}" if session.username else "not set"
    return "\n".join([f"Telegram: {handle}", f"Chat: tg://user?id={session.user_id}"])


def _profile_summary(session: SessionState) -> str:
    fields = session.profile_fields
    lines: list[str] = []
    if fields.get("city") or fields.get("country"):
        lines.append(f"Location: {fields.get('city') or ''}, {fields.get('country') or ''}".strip(", "))
    if fields.get("work_mode"):
        lines.append(f"Work mode: {fields['work_mode']}")
    if fields.get("salary_amount") is not None:
        lines.append(
            f"Salary: {fields['salary_amount']:g} {fields.get('salary_currency')} per {fields.get('salary_period')}"
        )
    return "\n".join(lines) or "Profile details are available on request."


class ConversationOrchestrator:
    def __init__(
        self,
        *,
        gate: IdempotencyGate,
        state_machine: SessionStateMachine,
        route_classifier: RouteClassifier,
        intent_classifier: InterviewIntentClassifier,
        planner: InterviewPlanner,
        rate_limiter: SlidingWindowRateLimiter | None = None,
        transport: MessageTransport | None = None,
        document_extractor: DocumentExtractor | None = None,
        transcriber: Transcriber | None = None,
        matching_service: MatchingService | None = None,
        transcript_log: TranscriptLog | None = None,
        voice_max_duration_sec: int = DEFAULT_VOICE_MAX_DURATION_SEC,
    ) -> None:
        self._gate = gate
        self._fsm = state_machine
        self._router = route_classifier
        self._intents = intent_classifier
        self._planner = planner
        self._rate_limiter = rate_limiter
        self._transport = transport
        self._document_extractor = document_extractor
        self._transcriber = transcriber
        self._matching = matching_service
        self._transcripts = transcript_log
        self._voice_max_duration_sec = voice_max_duration_sec
        self._handlers: dict[str, Handler] = {
            "process_document": self._process_document,
            "transcribe_voice": self._transcribe_voice,
            "process_pasted_text": self._process_pasted_text,
            "process_interview_answer": self._process_interview_answer,
            "interview_clarify": self._interview_clarify,
            "matching_command": self._matching_command,
            "control": self._control,
            "meta_reply": self._plain_reply,
            "complaint_reply": self._plain_reply,
            "smalltalk_reply": self._plain_reply,
            "other_reply": self._plain_reply,
        }

    def handle_update(self, update: dict[str, Any]) -> dict[str, Any]:
        event = normalize_update(update)
        if event is None:
            return {"ok": True, "handled": False, "reason": "unsupported_update"}
        return self.handle_event(event)

    def handle_event(self, event: InboundEvent) -> dict[str, Any]:
        if not self._gate.should_process(event.event_id, event.user_id):
            return {"ok": True, "handled": False, "reason": "duplicate", "event_id": event.event_id}

        if self._rate_limiter is not None:
            verdict = self._rate_limiter.check_and_consume(event.user_id)
            if not verdict.allowed:
                logger.warning(
                    "conversation.rate_limited user_id=%s retry_after_sec=%s",
                    event.user_id,
                    verdict.retry_after_sec,
                )
                reply = RATE_LIMIT_REPLY.format(seconds=verdict.retry_after_sec)
                sent = self._send(event.chat_id, reply)
                return {
                    "ok": True,
                    "handled": False,
                    "reason": "rate_limited",
                    "retry_after_sec": verdict.retry_after_sec,
                    "sent": sent,
                }

        try:
            session = self._fsm.hydrate(event.user_id, chat_id=event.chat_id, username=event.username)
            state_before = session.state
            outcome = self._process(event, session, depth=0)
            if outcome.reply:
                self._fsm.set_last_bot_message(event.user_id, outcome.reply)
            session = self._fsm.get(event.user_id) or session
        except SessionLoadError as exc:
            logger.warning("conversation.session_unavailable event_id=%s user_id=%s error=%s", event.event_id, event.user_id, exc)
            self._ack_callback(event)
            sent = self._send(event.chat_id, SESSION_UNAVAILABLE_REPLY)
            return {
                "ok": True,
                "handled": False,
                "reason": "session_unavailable",
                "event_id": event.event_id,
                "sent": sent,
            }

        self._record_turn(event, outcome, state_before=state_before, state_after=session.state)
        self._ack_callback(event)
        sent = self._send(event.chat_id, outcome.reply, reply_markup=outcome.reply_markup) if outcome.reply else False
        return {
            "ok": True,
            "handled": True,
            "event_id": event.event_id,
            "user_id": event.user_id,
            "action": outcome.action,
            "route": outcome.route,
            "decision_source": outcome.decision_source,
            "state": session.state,
            "current_question": session.current_question,
            "reply": outcome.reply,
            "sent": sent,
        }

    def _process(self, event: InboundEvent, session: SessionState, *, depth: int) -> TurnOutcome:
        command = _command_token(event.callback_data if event.kind == "callback" else event.text)

        if command == "/start":
            self._fsm.reset(event.user_id)
            return TurnOutcome(action="start", reply=ROLE_SELECTION_PROMPT, reply_markup=ROLE_KEYBOARD)

        if command in ROLE_COMMANDS:
            return self._select_role(event, session, ROLE_COMMANDS[command])

        if command in CONTROL_COMMANDS:
            return self._dispatch(event, session, _control_decision(CONTROL_COMMANDS[command]), depth, source="command")

        if command in DECISION_COMMANDS:
            return self._decide(session, DECISION_COMMANDS[command])

        if session.state == "role_selection":
            return TurnOutcome(action="role_prompt", reply=ROLE_SELECTION_PROMPT, reply_markup=ROLE_KEYBOARD)

        if event.kind in {"document", "voice"}:
            return self._dispatch(event, session, _media_decision(event), depth, source="event_kind")

        if event.kind != "text" or not event.has_text:
            return TurnOutcome(action="unsupported", reply=next_step_hint(session.state))

        if session.state in PROFILE_FIELD_STATES and not session.paused:
            return self._collect_profile_field(event, session)

        if session.has_active_question and not session.paused:
            intent = self._intents.classify(
                current_state=session.state,
                role=session.role,
                current_question=session.current_question or "",
                user_message=event.text or "",
                last_bot_message=session.last_bot_message,
            )
            return self._dispatch(event, session, intent.to_route_decision(), depth, source=intent.source)

        try:
            decision = self._router.classify(
                RouteContext(
                    current_state=session.state,
                    role=session.role,
                    text=event.text,
                    current_question=session.current_question,
                    last_bot_message=session.last_bot_message,
                    known_user_name=session.username,
                    event_id=event.event_id,
                    user_id=event.user_id,
                )
            )
        except RouteClassificationError as exc:
            return self._routing_fallback(session, exc)
        return self._dispatch(event, session, decision, depth, source="llm")

    def _dispatch(
        self,
        event: InboundEvent,
        session: SessionState,
        decision: RouteDecision,
        depth: int,
        *,
        source: str,
    ) -> TurnOutcome:
        action = resolve_dispatch_action(decision, session)
        if action == "transcribe_voice" and event.kind != "voice":
            action = "other_reply"
        logger.info(
            "conversation.dispatch event_id=%s user_id=%s state=%s route=%s action=%s source=%s",
            event.event_id,
            event.user_id,
            session.state,
            decision.route,
            action,
            source,
        )
        outcome = self._handlers[action](event, session, decision, depth)
        outcome.action = outcome.action or action
        outcome.route = outcome.route or decision.route
        outcome.decision_source = outcome.decision_source or source
        return outcome

    def _routing_fallback(self, session: SessionState, exc: RouteClassificationError) -> TurnOutcome:
        """Hold state, do not advance, apologize with the next step for this state."""
        logger.warning(
            "conversation.routing_fallback user_id=%s state=%s error_code=%s",
            session.user_id,
            session.state,
            exc.error_code,
        )
        hint = _current_prompt(session)
        return TurnOutcome(action="routing_fallback", reply=f"{ROUTING_FAILURE_REPLY} {hint}", decision_source="fallback")

    def _select_role(self, event: InboundEvent, session: SessionState, role: str) -> TurnOutcome:
        if not self._fsm.select_role(event.user_id, role):  # type: ignore[arg-type]
            return TurnOutcome(action="select_role", reply=next_step_hint(session.state))
        reply = CANDIDATE_ONBOARDING_REPLY if role == "candidate" else MANAGER_ONBOARDING_REPLY
        return TurnOutcome(action="select_role", reply=reply)

    def _start_interview(self, session: SessionState, *, route: str, source_text: str) -> TurnOutcome | None:
        role = "manager" if session.state in {"waiting_job", "extracting_job"} else "candidate"
        questions = self._planner.build_plan(role, source_text)
        if not self._fsm.start_interview(session.user_id, route=route, questions=questions, source_text=source_text):
            return None
        refreshed = self._fsm.get(session.user_id) or session
        return TurnOutcome(action="", reply=_join(INTERVIEW_STARTED_REPLY, refreshed.current_question))

    def _process_document(self, event: InboundEvent, session: SessionState, decision: RouteDecision, depth: int) -> TurnOutcome:
        if session.state not in INTAKE_STATES:
            return TurnOutcome(
                action="process_document",
                reply=DOCUMENT_NOT_EXPECTED_REPLY.format(hint=next_step_hint(session.state)),
            )
        if self._document_extractor is None:
            return TurnOutcome(action="process_document", reply=DOCUMENT_FAILED_REPLY)

        self._fsm.begin_extraction(event.user_id)
        try:
            text = self._document_extractor.extract_text(event)
        except Exception as exc:
            logger.warning("conversation.document.failed user_id=%s error=%s", event.user_id, exc)
            text = ""
        if not text or not text.strip():
            self._fsm.fail_extraction(event.user_id)
            return TurnOutcome(action="process_document", reply=DOCUMENT_FAILED_REPLY)

        extracting = self._fsm.get(event.user_id) or session
        started = self._start_interview(extracting, route="DOC", source_text=text)
        if started is None:
            self._fsm.fail_extraction(event.user_id)
            return TurnOutcome(action="process_document", reply=DOCUMENT_FAILED_REPLY)
        started.action = "process_document"
        return started

    def _transcribe_voice(self, event: InboundEvent, session: SessionState, decision: RouteDecision, depth: int) -> TurnOutcome:
        if event.duration_sec is not None and event.duration_sec > self._voice_max_duration_sec:
            return TurnOutcome(
                action="transcribe_voice",
                reply=VOICE_TOO_LONG_REPLY.format(seconds=self._voice_max_duration_sec),
            )
        if self._transcriber is None or depth > 0:
            return TurnOutcome(action="transcribe_voice", reply=VOICE_FAILED_REPLY)
        try:
            text = self._transcriber.transcribe(event)
        except Exception as exc:
            logger.warning("conversation.voice.failed user_id=%s error=%s", event.user_id, exc)
            text = ""
        if not text or not text.strip():
            return TurnOutcome(action="transcribe_voice", reply=VOICE_FAILED_REPLY)
        return self._process(event.with_text(text.strip()), session, depth=depth + 1)

    def _process_pasted_text(self, event: InboundEvent, session: SessionState, decision: RouteDecision, depth: int) -> TurnOutcome:
        if decision.should_process_text_as_document and session.state in INTAKE_STATES and event.text:
            started = self._start_interview(session, route=decision.route, source_text=event.text)
            if started is not None:
                started.action = "process_pasted_text"
                return started
        return TurnOutcome(action="process_pasted_text", reply=decision.reply)

    def _process_interview_answer(
        self, event: InboundEvent, session: SessionState, decision: RouteDecision, depth: int
    ) -> TurnOutcome:
        if not self._fsm.advance_interview(
            event.user_id,
            answer_text=event.text or "",
            should_advance=decision.should_advance,
        ):
            if session.paused:
                return TurnOutcome(action="process_interview_answer", reply=PAUSED_REPLY)
            return TurnOutcome(action="process_interview_answer", reply=_join(decision.reply, _current_prompt(session)))

        refreshed = self._fsm.get(event.user_id) or session
        if refreshed.current_question:
            return TurnOutcome(action="process_interview_answer", reply=refreshed.current_question)
        done = MANAGER_INTERVIEW_DONE_REPLY if refreshed.state == "job_profile_ready" else CANDIDATE_INTERVIEW_DONE_REPLY
        if self._fsm.begin_profile_fields(event.user_id):
            refreshed = self._fsm.get(event.user_id) or refreshed
            if refreshed.profile_field_step:
                done = _join(done, PROFILE_FIELDS_INTRO_REPLY, PROFILE_FIELD_PROMPTS[refreshed.profile_field_step])
        return TurnOutcome(action="process_interview_answer", reply=done)

    def _interview_clarify(self, event: InboundEvent, session: SessionState, decision: RouteDecision, depth: int) -> TurnOutcome:
        return TurnOutcome(action="interview_clarify", reply=_join(decision.reply, session.current_question))

    def _matching_command(self, event: InboundEvent, session: SessionState, decision: RouteDecision, depth: int) -> TurnOutcome:
        if self._matching is None:
            return TurnOutcome(action="matching_command", reply=decision.reply)
        try:
            reply = self._matching.handle_command(session, decision.matching_intent or "help")
        except Exception as exc:
            logger.warning("conversation.matching.failed user_id=%s error=%s", event.user_id, exc)
            return TurnOutcome(action="matching_command", reply=MATCHING_UNAVAILABLE_REPLY)
        return TurnOutcome(action="matching_command", reply=reply or decision.reply)

    def _control(self, event: InboundEvent, session: SessionState, decision: RouteDecision, depth: int) -> TurnOutcome:
        control_type = decision.control_type or "help"
        if control_type == "restart":
            self._fsm.reset(event.user_id)
            return TurnOutcome(
                action="control",
                reply=_join(RESTARTED_REPLY, ROLE_SELECTION_PROMPT),
                reply_markup=ROLE_KEYBOARD,
            )
        if control_type in {"pause", "stop"}:
            self._fsm.set_paused(event.user_id, True)
            return TurnOutcome(action="control", reply=PAUSED_REPLY)
        if control_type == "resume":
            self._fsm.set_paused(event.user_id, False)
            return TurnOutcome(action="control", reply=_join(RESUMED_REPLY, _current_prompt(session)))
        return TurnOutcome(action="control", reply=decision.reply or HELP_REPLY)

    def _plain_reply(self, event: InboundEvent, session: SessionState, decision: RouteDecision, depth: int) -> TurnOutcome:
        # action is filled in by _dispatch with the handler key actually used
        return TurnOutcome(action="", reply=decision.reply)

    def _collect_profile_field(self, event: InboundEvent, session: SessionState) -> TurnOutcome:
        step = session.profile_field_step
        if step is None:
            return TurnOutcome(action="profile_field", reply=next_step_hint(session.state), decision_source="rule")
        values = parse_step_answer(step, event.text or "")
        if values is None or not self._fsm.record_profile_field(event.user_id, step=step, values=values):
            return TurnOutcome(
                action="profile_field",
                reply=_join(PROFILE_FIELD_RETRY_REPLY, PROFILE_FIELD_PROMPTS[step]),
                decision_source="rule",
            )

        refreshed = self._fsm.get(event.user_id) or session
        if refreshed.profile_field_step:
            reply = PROFILE_FIELD_PROMPTS[refreshed.profile_field_step]
        elif refreshed.state == "job_published":
            reply = JOB_PUBLISHED_REPLY
        else:
            reply = CANDIDATE_PROFILE_COMPLETE_REPLY
        return TurnOutcome(action="profile_field", reply=reply, decision_source="rule")

    def offer_match(
        self,
        *,
        match_id: str,
        candidate_user_id: int,
        manager_user_id: int,
        job_summary: str,
        candidate_summary: str | None = None,
    ) -> dict[str, Any]:
        """Entry point for the matching side: put one match in front of a candidate."""
        match = {
            "match_id": str(match_id),
            "candidate_user_id": int(candidate_user_id),
            "manager_user_id": int(manager_user_id),
            "job_summary": job_summary,
            "candidate_summary": candidate_summary,
        }
        try:
            if not self._fsm.offer_match(int(candidate_user_id), match):
                return {"ok": False, "match_id": match["match_id"], "reason": "candidate_unavailable"}
            candidate = self._fsm.get(int(candidate_user_id))
        except SessionLoadError as exc:
            logger.warning("conversation.match_offer.failed match_id=%s error=%s", match_id, exc)
            return {"ok": False, "match_id": match["match_id"], "reason": "session_unavailable"}

        sent = (
            self._notify(candidate, MATCH_OFFER_REPLY.format(summary=job_summary), reply_markup=CANDIDATE_DECISION_KEYBOARD)
            if candidate is not None
            else False
        )
        logger.info("conversation.match_offered match_id=%s candidate_user_id=%s", match_id, candidate_user_id)
        return {"ok": True, "match_id": match["match_id"], "state": "waiting_candidate_decision", "sent": sent}

    def _decide(self, session: SessionState, accepted: bool) -> TurnOutcome:
        match = session.active_match or {}
        if match.get("match_id") and session.state == "waiting_candidate_decision":
            return self._candidate_decision(session, match, accepted)
        if match.get("match_id") and session.state == "waiting_manager_decision":
            return self._manager_decision(session, match, accepted)
        return TurnOutcome(
            action="decision",
            reply=DECISION_NOT_EXPECTED_REPLY.format(hint=next_step_hint(session.state)),
            decision_source="command",
        )

    def _candidate_decision(self, session: SessionState, match: dict[str, Any], accepted: bool) -> TurnOutcome:
        match_id = match["match_id"]
        if not accepted:
            self._fsm.decline_match(session.user_id, match_id)
            return TurnOutcome(action="decision", reply=CANDIDATE_DECLINED_REPLY, decision_source="command")
        if match.get("candidate_decision") == "applied":
            return TurnOutcome(action="decision", reply=CANDIDATE_APPLIED_REPLY, decision_source="command")
        if not self._fsm.apply_to_match(session.user_id, match_id):
            return TurnOutcome(action="decision", reply=next_step_hint(session.state), decision_source="command")

        applied = (self._fsm.get(session.user_id) or session).active_match or {}
        manager_id = applied.get("manager_user_id")
        if not isinstance(manager_id, int) or not self._fsm.request_manager_decision(manager_id, applied):
            self._fsm.decline_match(session.user_id, match_id)
            return TurnOutcome(action="decision", reply=MATCH_CLOSED_REPLY, decision_source="command")

        summary = applied.get("candidate_summary") or _profile_summary(session)
        manager = self._fsm.get(manager_id)
        if manager is not None:
            self._notify(manager, MANAGER_REVIEW_REPLY.format(summary=summary), reply_markup=MANAGER_DECISION_KEYBOARD)
        return TurnOutcome(action="decision", reply=CANDIDATE_APPLIED_REPLY, decision_source="command")

    def _manager_decision(self, session: SessionState, match: dict[str, Any], accepted: bool) -> TurnOutcome:
        match_id = match["match_id"]
        candidate_id = match.get("candidate_user_id")
        candidate = self._fsm.get(candidate_id) if isinstance(candidate_id, int) else None
        if not accepted:
            self._fsm.decline_match(session.user_id, match_id)
            if candidate is not None and self._fsm.decline_match(candidate.user_id, match_id):
                self._notify(candidate, CANDIDATE_NOT_SELECTED_REPLY)
            return TurnOutcome(action="decision", reply=MANAGER_DECLINED_REPLY, decision_source="command")

        if candidate is None or not self._fsm.accept_match(session.user_id, match_id):
            self._fsm.decline_match(session.user_id, match_id)
            return TurnOutcome(action="decision", reply=MATCH_CLOSED_REPLY, decision_source="command")
        self._notify(candidate, CONTACT_SHARED_REPLY.format(contact=_contact_card(session)))
        return TurnOutcome(
            action="decision",
            reply=CONTACT_SHARED_REPLY.format(contact=_contact_card(candidate)),
            decision_source="command",
        )

    def _notify(self, session: SessionState, text: str, *, reply_markup: dict[str, Any] | None = None) -> bool:
        """Message a user outside their own turn (the other side of a match)."""
        if session.chat_id is None:
            return False
        self._fsm.set_last_bot_message(session.user_id, text)
        return self._send(session.chat_id, text, reply_markup=reply_markup)

    def _record_turn(self, event: InboundEvent, outcome: TurnOutcome, *, state_before: str, state_after: str) -> None:
        if self._transcripts is None:
            return
        try:
            self._transcripts.append(
                event.user_id,
                {
                    "event_id": event.event_id,
                    "kind": event.kind,
                    "text": event.text,
                    "route": outcome.route,
                    "action": outcome.action,
                    "decision_source": outcome.decision_source,
                    "state_before": state_before,
                    "state_after": state_after,
                    "reply": outcome.reply,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
            )
        except OSError as exc:
            logger.warning("conversation.transcript.failed user_id=%s error=%s", event.user_id, exc)

    def _ack_callback(self, event: InboundEvent) -> None:
        if event.kind != "callback" or not event.callback_query_id or self._transport is None:
            return
        answer = getattr(self._transport, "answer_callback_query", None)
        if answer is None:
            return
        try:
            answer(event.callback_query_id)
        except Exception as exc:
            logger.warning("conversation.callback_ack.failed user_id=%s error=%s", event.user_id, exc)

    def _send(self, chat_id: int, text: str | None, *, reply_markup: dict[str, Any] | None = None) -> bool:
        if not text or self._transport is None:
            return False
        try:
            self._transport.send_message(chat_id, text, reply_markup=reply_markup)
        except Exception:
            logger.exception("conversation.send.failed chat_id=%s", chat_id)
            return False
        return True
