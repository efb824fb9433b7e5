import sqlite3

import pytest

from src.helly.core.conversation_types import SESSION_STATES, SessionState
from src.helly.core.session_store import SessionLoadError, SessionStore
from src.helly.core.state_machine import (
    TRANSITION_RULES,
    SessionStateMachine,
    is_allowed_transition,
    is_intake_state,
)

QUESTIONS = ["What does the team build?", "What is the budget?"]


def _machine() -> SessionStateMachine:
    return SessionStateMachine(SessionStore())


def _manager_in_waiting_job(machine: SessionStateMachine, user_id: int = 1):
    machine.hydrate(user_id, chat_id=user_id)
    assert machine.select_role(user_id, "manager") is True
    return machine.get(user_id)


def test_transition_table_covers_every_state():
    assert set(TRANSITION_RULES) == set(SESSION_STATES)
    for targets in TRANSITION_RULES.values():
        assert targets <= SESSION_STATES


@pytest.mark.parametrize("state", sorted(SESSION_STATES))
def test_role_selection_is_reachable_from_everywhere(state):
    assert is_allowed_transition(state, "role_selection") is True


def test_unknown_states_are_never_allowed():
    assert is_allowed_transition("role_selection", "nowhere") is False
    assert is_allowed_transition("nowhere", "waiting_job") is False


def test_hydrate_creates_fresh_session_once():
    machine = _machine()
    first = machine.hydrate(1, chat_id=10, username="dana")
    second = machine.hydrate(1, chat_id=10)

    assert first is second
    assert first.state == "role_selection"
    assert first.username == "dana"


def test_select_role_sets_role_and_intake_state():
    machine = _machine()
    session = _manager_in_waiting_job(machine)

    assert session.state == "waiting_job"
    assert session.role == "manager"
    assert machine.select_role(1, "candidate") is False
    assert machine.get(1).state == "waiting_job"


def test_illegal_transition_is_rejected_without_change():
    machine = _machine()
    _manager_in_waiting_job(machine)

    assert machine.transition(1, "contact_shared") is False
    assert machine.get(1).state == "waiting_job"
    assert machine.transition(1, "waiting_job") is True


def test_start_interview_from_pasted_job_description():
    machine = _machine()
    _manager_in_waiting_job(machine)

    assert machine.start_interview(1, route="JD_TEXT", questions=QUESTIONS, source_text="JD body") is True
    session = machine.get(1)
    assert session.state == "interviewing_manager"
    assert session.current_question == QUESTIONS[0]
    assert session.current_question_index == 0
    assert session.interview_started_at is not None


def test_start_interview_rejects_wrong_route_or_empty_plan():
    machine = _machine()
    _manager_in_waiting_job(machine)

    assert machine.start_interview(1, route="RESUME_TEXT", questions=QUESTIONS) is False
    assert machine.start_interview(1, route="JD_TEXT", questions=["  "]) is False
    assert machine.get(1).state == "waiting_job"


def test_extraction_can_fail_back_to_intake():
    machine = _machine()
    _manager_in_waiting_job(machine)

    assert machine.begin_extraction(1) is True
    assert machine.get(1).state == "extracting_job"
    assert machine.fail_extraction(1) is True
    assert machine.get(1).state == "waiting_job"
    assert machine.fail_extraction(1) is False


def test_advance_interview_moves_cursor_and_completes():
    machine = _machine()
    _manager_in_waiting_job(machine)
    machine.start_interview(1, route="DOC", questions=QUESTIONS)

    assert machine.advance_interview(1, answer_text="Payments", should_advance=True) is True
    session = machine.get(1)
    assert session.current_question == QUESTIONS[1]
    assert session.current_question_index == 1

    assert machine.advance_interview(1, answer_text="100k", should_advance=True) is True
    session = machine.get(1)
    assert session.state == "job_profile_ready"
    assert session.current_question is None
    assert [item["answer"] for item in session.answers] == ["Payments", "100k"]


def test_advance_requires_flag_and_active_question():
    machine = _machine()
    _manager_in_waiting_job(machine)
    assert machine.advance_interview(1, answer_text="x", should_advance=True) is False

    machine.start_interview(1, route="JD_TEXT", questions=QUESTIONS)
    assert machine.advance_interview(1, answer_text="how long?", should_advance=False) is False
    session = machine.get(1)
    assert session.current_question_index == 0
    assert session.answers == []


def test_reset_returns_to_role_selection_and_keeps_contact():
    machine = _machine()
    machine.hydrate(3, chat_id=30, username="kai")
    machine.select_role(3, "candidate")
    machine.start_interview(3, route="RESUME_TEXT", questions=QUESTIONS)

    session = machine.reset(3)
    assert session.state == "role_selection"
    assert session.role == "unknown"
    assert session.current_question is None
    assert (session.chat_id, session.username) == (30, "kai")
    assert machine.get(3) is session


def test_pause_and_last_bot_message_are_persisted():
    machine = _machine()
    machine.hydrate(4)
    machine.set_paused(4, True)
    machine.set_last_bot_message(4, "Paused.")

    session = machine.get(4)
    assert session.paused is True
    assert session.last_bot_message == "Paused."


def test_is_intake_state():
    assert is_intake_state("waiting_resume") is True
    assert is_intake_state("interviewing_candidate") is False


class _LockedOnceBackend:
    """Durable rows whose first read fails like a locked SQLite file."""

    def __init__(self):
        self.rows = {}
        self.failures = 1

    def load_user_state(self, user_id):
        if self.failures:
            self.failures -= 1
            raise sqlite3.OperationalError("database is locked")
        return self.rows.get(user_id)

    def save_user_state(self, user_id, state, payload):
        _ = state
        self.rows[user_id] = dict(payload)


def test_failed_read_never_overwrites_saved_progress():
    backend = _LockedOnceBackend()
    backend.rows[7] = SessionState(
        user_id=7,
        chat_id=7,
        state="interviewing_candidate",
        role="candidate",
        interview_plan=["Q1", "Q2"],
        current_question="Q1",
    ).to_dict()
    machine = SessionStateMachine(SessionStore(durable=backend))

    with pytest.raises(SessionLoadError):
        machine.hydrate(7, chat_id=7)
    assert backend.rows[7]["state"] == "interviewing_candidate"
    assert backend.rows[7]["interview_plan"] == ["Q1", "Q2"]

    session = machine.hydrate(7, chat_id=7)
    assert session.state == "interviewing_candidate"
    assert session.current_question == "Q1"


def test_paused_interview_does_not_advance():
    machine = _machine()
    _manager_in_waiting_job(machine)
    machine.start_interview(1, route="JD_TEXT", questions=QUESTIONS)
    machine.set_paused(1, True)

    assert machine.advance_interview(1, answer_text="Payments", should_advance=True) is False
    session = machine.get(1)
    assert session.current_question_index == 0
    assert session.answers == []

    machine.set_paused(1, False)
    assert machine.advance_interview(1, answer_text="Payments", should_advance=True) is True
    assert machine.get(1).current_question_index == 1


CANDIDATE_FIELDS = [
    ("location", {"country": "Germany", "city": "Berlin"}),
    ("work_mode", {"work_mode": "remote"}),
    ("salary", {"salary_amount": 5000.0, "salary_currency": "EUR", "salary_period": "month"}),
]
BUDGET = {"budget_min": 6000.0, "budget_max": 7500.0, "budget_currency": "EUR", "budget_period": "month"}


def _finished_interview(machine, user_id, role):
    machine.hydrate(user_id, chat_id=user_id * 10, username=f"user{user_id}")
    machine.select_role(user_id, role)
    route = "JD_TEXT" if role == "manager" else "RESUME_TEXT"
    machine.start_interview(user_id, route=route, questions=["Only question"], source_text="text")
    assert machine.advance_interview(user_id, answer_text="answer", should_advance=True) is True


def _candidate_with_profile(machine, user_id=2):
    _finished_interview(machine, user_id, "candidate")
    machine.begin_profile_fields(user_id)
    for step, values in CANDIDATE_FIELDS:
        assert machine.record_profile_field(user_id, step=step, values=values) is True
    return machine.get(user_id)


def _published_manager(machine, user_id=1):
    _finished_interview(machine, user_id, "manager")
    machine.begin_profile_fields(user_id)
    assert machine.record_profile_field(user_id, step="work_format", values={"work_format": "hybrid"}) is True
    assert machine.record_profile_field(user_id, step="budget", values=BUDGET) is True
    return machine.get(user_id)


def _match(**extra):
    return {"match_id": "m-1", "candidate_user_id": 2, "manager_user_id": 1, "job_summary": "Backend role", **extra}


def test_candidate_profile_fields_are_collected_in_order():
    machine = _machine()
    _finished_interview(machine, 2, "candidate")

    assert machine.begin_profile_fields(2) is True
    session = machine.get(2)
    assert session.state == "candidate_mandatory_fields"
    assert session.profile_field_step == "location"

    assert machine.record_profile_field(2, step="salary", values=CANDIDATE_FIELDS[2][1]) is False
    assert machine.record_profile_field(2, step="location", values={"nickname": "x"}) is False
    for step, values in CANDIDATE_FIELDS:
        assert machine.record_profile_field(2, step=step, values=values) is True

    session = machine.get(2)
    assert session.state == "candidate_profile_ready"
    assert session.candidate_profile_complete is True
    assert session.profile_field_step is None
    assert session.profile_fields["city"] == "Berlin"


def test_remote_job_asks_for_countries_then_publishes():
    machine = _machine()
    _finished_interview(machine, 1, "manager")
    machine.begin_profile_fields(1)

    machine.record_profile_field(1, step="work_format", values={"work_format": "remote"})
    assert machine.get(1).profile_field_step == "remote_countries"
    machine.record_profile_field(1, step="remote_countries", values={"remote_worldwide": True, "remote_countries": []})
    machine.record_profile_field(1, step="budget", values=BUDGET)

    session = machine.get(1)
    assert session.state == "job_published"
    assert session.job_profile_complete is True


def test_profile_fields_require_a_finished_interview():
    machine = _machine()
    _manager_in_waiting_job(machine)
    assert machine.begin_profile_fields(1) is False
    assert machine.record_profile_field(1, step="work_format", values={"work_format": "remote"}) is False
    assert machine.get(1).state == "waiting_job"


def test_contact_is_shared_only_after_both_sides_accept():
    machine = _machine()
    _published_manager(machine)
    _candidate_with_profile(machine)

    assert machine.offer_match(2, _match()) is True
    assert machine.get(2).state == "waiting_candidate_decision"
    assert machine.request_manager_decision(1, machine.get(2).active_match) is False
    assert machine.accept_match(1, "m-1") is False

    assert machine.apply_to_match(2, "m-1") is True
    assert machine.apply_to_match(2, "m-1") is False
    assert machine.request_manager_decision(1, machine.get(2).active_match) is True
    assert machine.get(1).state == "waiting_manager_decision"
    assert machine.get(2).state == "waiting_candidate_decision"

    assert machine.accept_match(1, "other-match") is False
    assert machine.accept_match(1, "m-1") is True
    for user_id in (1, 2):
        session = machine.get(user_id)
        assert session.state == "contact_shared"
        assert session.active_match["candidate_decision"] == "applied"
        assert session.active_match["manager_decision"] == "accepted"


def test_withdrawn_application_blocks_contact_exchange():
    machine = _machine()
    _published_manager(machine)
    _candidate_with_profile(machine)
    machine.offer_match(2, _match())
    machine.apply_to_match(2, "m-1")
    machine.request_manager_decision(1, machine.get(2).active_match)

    assert machine.decline_match(2, "m-1") is True
    assert machine.get(2).state == "candidate_profile_ready"
    assert machine.accept_match(1, "m-1") is False
    assert machine.get(1).state == "waiting_manager_decision"

    assert machine.decline_match(1, "m-1") is True
    assert machine.get(1).state == "job_published"
    assert machine.get(1).active_match is None


def test_match_offer_requires_finished_candidate_profile():
    machine = _machine()
    _finished_interview(machine, 2, "candidate")

    assert machine.offer_match(2, _match()) is False
    assert machine.offer_match(404, _match(candidate_user_id=404)) is False
    assert machine.get(404) is None
    assert machine.get(2).state == "candidate_profile_ready"


def test_shared_contact_returns_to_pool_for_next_match():
    machine = _machine()
    _published_manager(machine)
    _candidate_with_profile(machine)
    machine.offer_match(2, _match())
    machine.apply_to_match(2, "m-1")
    machine.request_manager_decision(1, machine.get(2).active_match)
    machine.accept_match(1, "m-1")

    assert machine.offer_match(2, _match(match_id="m-2")) is True
    session = machine.get(2)
    assert session.state == "waiting_candidate_decision"
    assert session.active_match["match_id"] == "m-2"
    assert session.active_match["candidate_decision"] == "pending"
