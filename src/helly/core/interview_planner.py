"""Interview plan generation with per-role default questions."""

from __future__ import annotations

from typing import Any

from .logger import get_logger
from .prompts import build_interview_plan_prompt
from .safe_invoker import SafeInvoker

logger = get_logger("interview.plan")

PLAN_PROMPT_NAME = "interview_plan_v1"
PLAN_MAX_TOKENS = 600
PLAN_SCHEMA_HINT = 'Interview plan JSON: {"questions": ["string", ...]}'
MAX_QUESTIONS = 10
MAX_QUESTION_CHARS = 500

DEFAULT_QUESTIONS: dict[str, list[str]] = {
    "candidate": [
        "Tell me about the most complex project on your resume. What was your exact role?",
        "Which technologies did you use there every day, and which ones only occasionally?",
        "Describe a hard technical decision you made. What were the trade offs?",
        "What kind of team and work format do you want next?",
    ],
    "manager": [
        "What will this person own in the first three months?",
        "Which parts of the stack are must have, and which are nice to have?",
        "How is the team structured, and who will this person work with most?",
        "What work format, location and budget are fixed for this role?",
    ],
}


def _valid_plan(payload: dict[str, Any]) -> bool:
    questions = payload.get("questions")
    if not isinstance(questions, list) or not (1 <= len(questions) <= MAX_QUESTIONS):
        return False
    return all(isinstance(item, str) and item.strip() for item in questions)


def default_questions(role: str) -> list[str]:
    return list(DEFAULT_QUESTIONS.get(role, DEFAULT_QUESTIONS["candidate"]))


class InterviewPlanner:
    def __init__(self, invoker: SafeInvoker | None = None, *, max_tokens: int = PLAN_MAX_TOKENS) -> None:
        self._invoker = invoker
        self._max_tokens = max_tokens

    def build_plan(self, role: str, source_text: str) -> list[str]:
        """Return interview questions; falls back to `DEFAULT_QUESTIONS` on any failure."""
        if self._invoker is None:
            return default_questions(role)

        result = self._invoker.call_json_safe(
            build_interview_plan_prompt(role=role, source_text=source_text),
            self._max_tokens,
            prompt_name=PLAN_PROMPT_NAME,
            schema_hint=PLAN_SCHEMA_HINT,
            validate=_valid_plan,
        )
        if not result.ok or result.data is None:
            logger.warning("interview.plan.fallback role=%s error_code=%s", role, result.error_code)
            return default_questions(role)
        return [q.strip()[:MAX_QUESTION_CHARS] for q in result.data["questions"]]
