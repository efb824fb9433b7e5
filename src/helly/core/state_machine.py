"""Per-user conversation state machine with guarded transitions."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from .conversation_types import INTAKE_STATES, SESSION_STATES, SessionState, UserRole
from .logger import get_logger
from .profile_fields import STEP_KEYS, next_missing_step
from .session_store import SessionStore

logger = get_logger("fsm")

INITIAL_STATE = "role_selection"

TRANSITION_RULES: dict[str, frozenset[str]] = {
    "role_selection": frozenset({"onboarding_candidate", "onboarding_manager", "waiting_resume", "waiting_job"}),
    "onboarding_candidate": frozenset({"waiting_resume"}),
    "waiting_resume": frozenset({"extracting_resume", "interviewing_candidate"}),
    "extracting_resume": frozenset({"interviewing_candidate", "waiting_resume"}),
    "interviewing_candidate": frozenset({"candidate_profile_ready"}),
    "candidate_profile_ready": frozenset({"candidate_mandatory_fields", "waiting_candidate_decision"}),
    "candidate_mandatory_fields": frozenset({"candidate_profile_ready"}),
    "onboarding_manager": frozenset({"waiting_job"}),
    "waiting_job": frozenset({"extracting_job", "interviewing_manager"}),
    "extracting_job": frozenset({"interviewing_manager", "waiting_job"}),
    "interviewing_manager": frozenset({"job_profile_ready"}),
    "job_profile_ready": frozenset({"manager_mandatory_fields", "job_published"}),
    "manager_mandatory_fields": frozenset({"job_profile_ready", "job_published"}),
    "job_published": frozenset({"manager_mandatory_fields", "waiting_candidate_decision", "waiting_manager_decision"}),
    "waiting_candidate_decision": frozenset(
        {"waiting_manager_decision", "candidate_profile_ready", "candidate_mandatory_fields", "contact_shared"}
    ),
    "waiting_manager_decision": frozenset({"manager_mandatory_fields", "contact_shared", "job_published"}),
    "contact_shared": frozenset(
        {"candidate_profile_ready", "candidate_mandatory_fields", "manager_mandatory_fields", "job_published"}
    ),
}

ROLE_ENTRY_STATES: dict[str, str] = {"candidate": "waiting_resume", "manager": "waiting_job"}
EXTRACTING_STATES: dict[str, str] = {"waiting_resume": "extracting_resume", "waiting_job": "extracting_job"}
INTERVIEW_TARGETS: dict[str, str] = {
    "waiting_resume": "interviewing_candidate",
    "extracting_resume": "interviewing_candidate",
    "waiting_job": "interviewing_manager",
    "extracting_job": "interviewing_manager",
}
# routes allowed to open an interview, keyed by the interviewing state they open
INTERVIEW_START_ROUTES: dict[str, frozenset[str]] = {
    "interviewing_candidate": frozenset({"RESUME_TEXT", "DOC"}),
    "interviewing_manager": frozenset({"JD_TEXT", "DOC"}),
}
COMPLETION_STATES: dict[str, str] = {
    "interviewing_candidate": "candidate_profile_ready",
    "interviewing_manager": "job_profile_ready",
}
PROFILE_FIELD_ENTRY: dict[str, str] = {
    "candidate_profile_ready": "candidate_mandatory_fields",
    "job_profile_ready": "manager_mandatory_fields",
}
PROFILE_FIELD_DONE: dict[str, str] = {
    "candidate_mandatory_fields": "candidate_profile_ready",
    "manager_mandatory_fields": "job_published",
}
PROFILE_FIELD_ROLES: dict[str, str] = {
    "candidate_mandatory_fields": "candidate",
    "manager_mandatory_fields": "manager",
}
# states where a finished profile waits for the next match
MATCH_POOL_STATES: dict[str, str] = {"candidate": "candidate_profile_ready", "manager": "job_published"}
DECISION_RETURN_STATES: dict[str, str] = {
    "waiting_candidate_decision": "candidate_profile_ready",
    "waiting_manager_decision": "job_published",
}


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def is_allowed_transition(from_state: str, to_state: str) -> bool:
    if from_state not in SESSION_STATES or to_state not in SESSION_STATES:
        return False
    if to_state == INITIAL_STATE:
        return True
    return to_state in TRANSITION_RULES.get(from_state, frozenset())


class SessionStateMachine:
    """Owns every mutation of `SessionState`; each one is persisted immediately.

    Illegal requests are logged and ignored: the session keeps its state and
    the method returns False.
    """

    def __init__(self, store: SessionStore) -> None:
        self._store = store

    @property
    def store(self) -> SessionStore:
        return self._store

    def get(self, user_id: int) -> SessionState | None:
        return self._store.load(user_id)

    def hydrate(self, user_id: int, *, chat_id: int | None = None, username: str | None = None) -> SessionState:
        """Load cache, then durable copy, else create a fresh `role_selection` record.

        `SessionLoadError` from the store propagates: an unreadable record is
        never replaced by a fresh one.
        """
        session = self._store.load(user_id)
        if session is None:
            session = SessionState(user_id=user_id, chat_id=chat_id, username=username)
            self._store.persist(session)
            return session

        changed = False
        if chat_id is not None and session.chat_id != chat_id:
            session.chat_id = chat_id
            changed = True
        if username and session.username != username:
            session.username = username
            changed = True
        if changed:
            self._store.persist(session)
        return session

    def _require(self, user_id: int) -> SessionState:
        session = self._store.load(user_id)
        if session is None:
            session = self.hydrate(user_id)
        return session

    def _reject(self, session: SessionState, action: str, reason: str, **extra: Any) -> bool:
        details = " ".join(f"{key}={value}" for key, value in extra.items())
        logger.warning(
            "fsm.transition.rejected user_id=%s state=%s action=%s reason=%s %s",
            session.user_id,
            session.state,
            action,
            reason,
            details,
        )
        return False

    def _move(self, session: SessionState, to_state: str, *, action: str) -> bool:
        if to_state == session.state:
            return True
        if not is_allowed_transition(session.state, to_state):
            return self._reject(session, action, "not_adjacent", to_state=to_state)
        logger.info("fsm.transition user_id=%s from=%s to=%s", session.user_id, session.state, to_state)
        session.state = to_state  # type: ignore[assignment]
        return True

    def transition(self, user_id: int, to_state: str) -> bool:
        session = self._require(user_id)
        if to_state == session.state:
            return True
        if not self._move(session, to_state, action="transition"):
            return False
        self._store.persist(session)
        return True

    def select_role(self, user_id: int, role: UserRole) -> bool:
        session = self._require(user_id)
        target = ROLE_ENTRY_STATES.get(role)
        if target is None:
            return self._reject(session, "select_role", "unknown_role", role=role)
        if session.state != INITIAL_STATE and session.state != target:
            return self._reject(session, "select_role", "role_already_selected", role=role)
        if not self._move(session, target, action="select_role"):
            return False
        session.role = role
        self._store.persist(session)
        return True

    def begin_extraction(self, user_id: int) -> bool:
        session = self._require(user_id)
        target = EXTRACTING_STATES.get(session.state)
        if target is None:
            return self._reject(session, "begin_extraction", "not_intake_state")
        if not self._move(session, target, action="begin_extraction"):
            return False
        self._store.persist(session)
        return True

    def fail_extraction(self, user_id: int) -> bool:
        """Return an `extracting_*` session to its intake state."""
        session = self._require(user_id)
        target = {value: key for key, value in EXTRACTING_STATES.items()}.get(session.state)
        if target is None:
            return self._reject(session, "fail_extraction", "not_extracting")
        if not self._move(session, target, action="fail_extraction"):
            return False
        self._store.persist(session)
        return True

    def start_interview(
        self,
        user_id: int,
        *,
        route: str,
        questions: list[str],
        source_text: str | None = None,
    ) -> bool:
        """Open an interview from an intake state on a JD/resume route."""
        session = self._require(user_id)
        target = INTERVIEW_TARGETS.get(session.state)
        if target is None:
            return self._reject(session, "start_interview", "not_intake_state", route=route)
        if route not in INTERVIEW_START_ROUTES[target]:
            return self._reject(session, "start_interview", "route_not_allowed", route=route)
        plan = [q.strip() for q in questions if isinstance(q, str) and q.strip()]
        if not plan:
            return self._reject(session, "start_interview", "empty_plan")
        if not self._move(session, target, action="start_interview"):
            return False

        session.interview_plan = plan
        session.answers = []
        session.current_question_index = 0
        session.current_question = plan[0]
        session.source_text = source_text
        session.paused = False
        session.interview_started_at = _utc_now_iso()
        session.interview_completed_at = None
        if session.role == "unknown":
            session.role = "manager" if target == "interviewing_manager" else "candidate"
        self._store.persist(session)
        return True

    def advance_interview(self, user_id: int, *, answer_text: str, should_advance: bool) -> bool:
        """Record the answer and move the cursor; completes the interview at the end of the plan."""
        session = self._require(user_id)
        if not session.has_active_question:
            return self._reject(session, "advance_interview", "no_active_question")
        if session.paused:
            return self._reject(session, "advance_interview", "paused")
        if not should_advance:
            return self._reject(session, "advance_interview", "should_advance_false")

        session.answers.append(
            {
                "question_index": session.current_question_index,
                "question": session.current_question,
                "answer": answer_text,
                "answered_at": _utc_now_iso(),
            }
        )
        next_index = session.current_question_index + 1
        if next_index < len(session.interview_plan):
            session.current_question_index = next_index
            session.current_question = session.interview_plan[next_index]
            self._store.persist(session)
            return True

        done_state = COMPLETION_STATES[session.state]
        if not self._move(session, done_state, action="advance_interview"):
            return False
        session.current_question = None
        session.current_question_index = next_index
        session.interview_completed_at = _utc_now_iso()
        self._store.persist(session)
        return True

    def begin_profile_fields(self, user_id: int) -> bool:
        """Enter `*_mandatory_fields` after a finished interview."""
        session = self._require(user_id)
        target = PROFILE_FIELD_ENTRY.get(session.state)
        if target is None:
            return self._reject(session, "begin_profile_fields", "profile_not_ready")
        if not self._move(session, target, action="begin_profile_fields"):
            return False
        session.profile_fields = dict(session.profile_fields)
        self._advance_profile_step(session)
        self._store.persist(session)
        return True

    def record_profile_field(self, user_id: int, *, step: str, values: dict[str, Any]) -> bool:
        """Store one parsed step; the last one completes the profile (`job_published` for managers)."""
        session = self._require(user_id)
        if session.state not in PROFILE_FIELD_ROLES:
            return self._reject(session, "record_profile_field", "not_collecting_fields", step=step)
        if session.paused:
            return self._reject(session, "record_profile_field", "paused", step=step)
        if step != session.profile_field_step:
            return self._reject(session, "record_profile_field", "unexpected_step", step=step)
        if not values or set(values) - set(STEP_KEYS[step]):
            return self._reject(session, "record_profile_field", "invalid_values", step=step)

        session.profile_fields = {**session.profile_fields, **values}
        self._advance_profile_step(session)
        self._store.persist(session)
        return True

    def _advance_profile_step(self, session: SessionState) -> None:
        role = PROFILE_FIELD_ROLES[session.state]
        session.profile_field_step = next_missing_step(role, session.profile_fields)
        if session.profile_field_step is not None:
            return
        self._move(session, PROFILE_FIELD_DONE[session.state], action="complete_profile_fields")
        if role == "candidate":
            session.candidate_profile_complete = True
        else:
            session.job_profile_complete = True

    def _load_existing(self, user_id: int, action: str) -> SessionState | None:
        session = self._store.load(user_id)
        if session is None:
            logger.warning("fsm.transition.rejected user_id=%s state=none action=%s reason=unknown_user", user_id, action)
        return session

    def _enter_match_pool(self, session: SessionState, role: str, action: str) -> bool:
        if session.role != role:
            return self._reject(session, action, "wrong_role", role=role)
        complete = session.candidate_profile_complete if role == "candidate" else session.job_profile_complete
        if not complete:
            return self._reject(session, action, "profile_incomplete")
        pool = MATCH_POOL_STATES[role]
        if session.state == "contact_shared":
            self._move(session, pool, action=action)
        if session.state != pool:
            return self._reject(session, action, "not_in_match_pool")
        return True

    def _pending_match(self, session: SessionState, match_id: str, *, state: str, action: str) -> dict[str, Any] | None:
        if session.state != state:
            self._reject(session, action, "no_pending_decision", match_id=match_id)
            return None
        match = session.active_match
        if not match or match.get("match_id") != match_id:
            self._reject(session, action, "unknown_match", match_id=match_id)
            return None
        return match

    def offer_match(self, candidate_user_id: int, match: dict[str, Any]) -> bool:
        """Show a suggested match to a candidate with a finished profile."""
        session = self._load_existing(candidate_user_id, "offer_match")
        if session is None:
            return False
        if not match.get("match_id"):
            return self._reject(session, "offer_match", "missing_match_id")
        if not self._enter_match_pool(session, "candidate", "offer_match"):
            return False
        if not self._move(session, "waiting_candidate_decision", action="offer_match"):
            return False
        session.active_match = {**match, "candidate_decision": "pending", "manager_decision": "pending"}
        self._store.persist(session)
        return True

    def apply_to_match(self, candidate_user_id: int, match_id: str) -> bool:
        session = self._require(candidate_user_id)
        match = self._pending_match(session, match_id, state="waiting_candidate_decision", action="apply_to_match")
        if match is None:
            return False
        if match.get("candidate_decision") != "pending":
            return self._reject(session, "apply_to_match", "already_decided", match_id=match_id)
        session.active_match = {**match, "candidate_decision": "applied"}
        self._store.persist(session)
        return True

    def request_manager_decision(self, manager_user_id: int, match: dict[str, Any]) -> bool:
        """Ask the manager about a match the candidate has applied to."""
        session = self._load_existing(manager_user_id, "request_manager_decision")
        if session is None:
            return False
        if match.get("candidate_decision") != "applied":
            return self._reject(
                session, "request_manager_decision", "candidate_not_applied", match_id=match.get("match_id")
            )
        if not self._enter_match_pool(session, "manager", "request_manager_decision"):
            return False
        if not self._move(session, "waiting_manager_decision", action="request_manager_decision"):
            return False
        session.active_match = {**match, "manager_decision": "pending"}
        self._store.persist(session)
        return True

    def decline_match(self, user_id: int, match_id: str) -> bool:
        """Close a pending match for one side and return it to its match pool."""
        session = self._require(user_id)
        target = DECISION_RETURN_STATES.get(session.state)
        if target is None:
            return self._reject(session, "decline_match", "no_pending_decision", match_id=match_id)
        match = self._pending_match(session, match_id, state=session.state, action="decline_match")
        if match is None:
            return False
        if not self._move(session, target, action="decline_match"):
            return False
        session.active_match = None
        self._store.persist(session)
        return True

    def accept_match(self, manager_user_id: int, match_id: str) -> bool:
        """Manager accepts an applied match; both sides move to `contact_shared` together."""
        manager = self._require(manager_user_id)
        match = self._pending_match(manager, match_id, state="waiting_manager_decision", action="accept_match")
        if match is None:
            return False
        candidate_id = match.get("candidate_user_id")
        candidate = self._load_existing(candidate_id, "accept_match") if isinstance(candidate_id, int) else None
        candidate_match = (candidate.active_match or {}) if candidate is not None else {}
        if (
            candidate is None
            or candidate.state != "waiting_candidate_decision"
            or candidate_match.get("match_id") != match_id
            or candidate_match.get("candidate_decision") != "applied"
        ):
            return self._reject(manager, "accept_match", "candidate_not_applied", match_id=match_id)

        agreed = {**match, "candidate_decision": "applied", "manager_decision": "accepted"}
        for session in (candidate, manager):
            self._move(session, "contact_shared", action="accept_match")
            session.active_match = dict(agreed)
            self._store.persist(session)
        return True

    def set_last_bot_message(self, user_id: int, text: str | None) -> None:
        session = self._require(user_id)
        session.last_bot_message = text
        self._store.persist(session)

    def set_paused(self, user_id: int, paused: bool) -> None:
        session = self._require(user_id)
        session.paused = bool(paused)
        self._store.persist(session)

    def reset(self, user_id: int) -> SessionState:
        """Return the user to `role_selection`, dropping interview progress."""
        previous = self._store.load(user_id)
        session = SessionState(
            user_id=user_id,
            chat_id=previous.chat_id if previous else None,
            username=previous.username if previous else None,
            last_bot_message=previous.last_bot_message if previous else None,
        )
        if previous is not None and previous.state != INITIAL_STATE:
            logger.info("fsm.transition user_id=%s from=%s to=%s", user_id, previous.state, INITIAL_STATE)
        self._store.persist(session)
        return session


def is_intake_state(state: str) -> bool:
    return state in INTAKE_STATES
