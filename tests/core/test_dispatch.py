import pytest

from src.helly.core.conversation_types import RouteDecision, SessionState
from src.helly.core.dispatch import resolve_dispatch_action


def _decision(route: str, intent: str = "OTHER") -> RouteDecision:
    return RouteDecision(route=route, conversation_intent=intent, reply="ok", should_advance=False)


def _interviewing() -> SessionState:
    return SessionState(user_id=1, state="interviewing_candidate", role="candidate", current_question="Tell me more")


@pytest.mark.parametrize(
    ("route", "action"),
    [
        ("DOC", "process_document"),
        ("VOICE", "transcribe_voice"),
        ("JD_TEXT", "process_pasted_text"),
        ("RESUME_TEXT", "process_pasted_text"),
        ("INTERVIEW_ANSWER", "process_interview_answer"),
        ("MATCHING_COMMAND", "matching_command"),
        ("CONTROL", "control"),
        ("META", "meta_reply"),
        ("OFFTOPIC", "other_reply"),
    ],
)
def test_route_determines_action(route, action):
    assert resolve_dispatch_action(_decision(route, "COMPLAINT"), _interviewing()) == action


def test_clarify_during_interview_is_interview_clarify():
    assert resolve_dispatch_action(_decision("OTHER", "CLARIFY"), _interviewing()) == "interview_clarify"


def test_clarify_outside_interview_is_other_reply():
    session = SessionState(user_id=1, state="waiting_resume", role="candidate")
    assert resolve_dispatch_action(_decision("OTHER", "CLARIFY"), session) == "other_reply"


def test_interviewing_state_without_question_uses_generic_actions():
    session = SessionState(user_id=1, state="interviewing_manager", role="manager")
    assert resolve_dispatch_action(_decision("OTHER", "CLARIFY"), session) == "other_reply"
    assert resolve_dispatch_action(_decision("OTHER", "SMALLTALK"), session) == "smalltalk_reply"


@pytest.mark.parametrize(
    ("intent", "action"),
    [("COMPLAINT", "complaint_reply"), ("SMALLTALK", "smalltalk_reply"), ("OTHER", "other_reply"), ("ANSWER", "other_reply")],
)
def test_generic_intents(intent, action):
    session = SessionState(user_id=1, state="job_published", role="manager")
    assert resolve_dispatch_action(_decision("OTHER", intent), session) == action
