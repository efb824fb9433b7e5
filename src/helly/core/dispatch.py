"""Map a routing decision plus session state to exactly one action."""

from __future__ import annotations

from typing import Literal

from .conversation_types import INTERVIEWING_STATES, RouteDecision, SessionState

DispatchAction = Literal[
    "process_document",
    "transcribe_voice",
    "process_pasted_text",
    "process_interview_answer",
    "interview_clarify",
    "matching_command",
    "control",
    "meta_reply",
    "complaint_reply",
    "smalltalk_reply",
    "other_reply",
]

ROUTE_ACTIONS: dict[str, DispatchAction] = {
    "DOC": "process_document",
    "VOICE": "transcribe_voice",
    "JD_TEXT": "process_pasted_text",
    "RESUME_TEXT": "process_pasted_text",
    "INTERVIEW_ANSWER": "process_interview_answer",
    "MATCHING_COMMAND": "matching_command",
    "CONTROL": "control",
    "META": "meta_reply",
    "OFFTOPIC": "other_reply",
}

INTERVIEW_INTENT_ACTIONS: dict[str, DispatchAction] = {
    "CLARIFY": "interview_clarify",
    "COMPLAINT": "complaint_reply",
}

GENERIC_INTENT_ACTIONS: dict[str, DispatchAction] = {
    "SMALLTALK": "smalltalk_reply",
    "COMPLAINT": "complaint_reply",
}


def resolve_dispatch_action(decision: RouteDecision, session: SessionState) -> DispatchAction:
    """Route-carried actions win; `conversation_intent` only breaks ties for OTHER."""
    action = ROUTE_ACTIONS.get(decision.route)
    if action is not None:
        return action

    intent = decision.conversation_intent
    if session.state in INTERVIEWING_STATES and session.current_question:
        interview_action = INTERVIEW_INTENT_ACTIONS.get(intent)
        if interview_action is not None:
            return interview_action
    return GENERIC_INTENT_ACTIONS.get(intent, "other_reply")
