"""Prompt templates for oracle calls.

Each builder returns a single user-turn prompt: the fixed instructions
followed by a JSON block carrying the runtime context.
"""

from __future__ import annotations

import json
from typing import Any

JSON_REPAIR_PROMPT = """You repair malformed JSON.

You receive:
- schema_hint: plain text description of the expected shape.
- raw: malformed JSON-like text.

Rules:
- Return valid JSON only, no markdown and no commentary.
- Keep keys and values as close as possible to raw.
- If a field is unknown, use null, an empty array or an empty object."""

ROUTER_PROMPT = """You are the Helly update router.

You do not execute actions and you do not change state.
Classify the latest update and propose the next route.
Return STRICT JSON only.

Output schema:
{
  "route": "DOC | VOICE | JD_TEXT | RESUME_TEXT | INTERVIEW_ANSWER | META | CONTROL | MATCHING_COMMAND | OFFTOPIC | OTHER",
  "conversation_intent": "ANSWER | CLARIFY | COMMAND | MATCHING | COMPLAINT | SMALLTALK | OTHER",
  "meta_type": "timing | language | format | privacy | other | null",
  "control_type": "pause | resume | restart | help | stop | null",
  "matching_intent": "run | show | pause | resume | help | null",
  "reply": "string",
  "should_advance": boolean,
  "should_process_text_as_document": boolean
}

Routing rules:
1. has_document -> DOC, reply confirms the file will be processed.
2. has_voice -> VOICE, reply confirms the voice message will be transcribed.
3. waiting_job with text of 400+ characters, or clear job description structure -> JD_TEXT, should_process_text_as_document=true.
4. waiting_resume with text of 400+ characters, or clear resume structure -> RESUME_TEXT, should_process_text_as_document=true.
5. Interviewing and asking about timing, language, answer format or privacy -> META with meta_type, should_advance=false.
6. Interviewing with a substantive answer to current_question -> INTERVIEW_ANSWER, should_advance=true.
7. Asking to find roles or candidates, show, pause or resume matching -> MATCHING_COMMAND with matching_intent.
8. Asking to restart, pause, resume, stop or for help -> CONTROL with control_type.
9. Unrelated to hiring -> OFFTOPIC with a short redirect.
10. Otherwise OTHER with a useful next step for current_state.

Reply rules:
- reply is short, actionable and never empty.
- never repeat last_bot_message verbatim.
- meta_type, control_type, matching_intent are null unless the route owns them.
- should_process_text_as_document is true only for JD_TEXT or RESUME_TEXT."""

INTERVIEW_INTENT_PROMPT = """You are the Helly interview intent router.

Classify one user message sent during an active interview question.
Return STRICT JSON only.

Output schema:
{
  "intent": "ANSWER | META | CONTROL | OFFTOPIC",
  "meta_type": "timing | language | format | privacy | other | null",
  "control_type": "pause | resume | restart | help | stop | null",
  "reply": "string",
  "should_advance": boolean
}

Rules:
- ANSWER only if the message has substantive information addressing current_question.
- META if the user asks about timing, language, how to answer, privacy or what the question means.
- CONTROL if the user asks to pause, stop, restart, resume or for help.
- OFFTOPIC if unrelated to hiring and the interview.
- should_advance is true only for ANSWER.
- Never repeat last_bot_message verbatim."""

INTERVIEW_PLAN_PROMPT = """You are the Helly interview planner.

Read the source document and write a short interview plan.
Return STRICT JSON only: {"questions": ["string", ...]}

Rules:
- 3 to 7 questions.
- One objective per question, short and concrete.
- For a candidate, verify real hands-on experience from the resume.
- For a manager, clarify what the job description leaves vague: scope, stack, team, constraints."""


def _with_context(instructions: str, context: dict[str, Any]) -> str:
    return "\n".join(
        [
            instructions,
            "",
            "Runtime context JSON:",
            json.dumps(context, ensure_ascii=False, indent=2),
        ]
    )


def build_json_repair_prompt(*, schema_hint: str, raw: str) -> str:
    return _with_context(JSON_REPAIR_PROMPT, {"schema_hint": schema_hint, "raw": raw})


def build_router_prompt(context: dict[str, Any]) -> str:
    return _with_context(ROUTER_PROMPT, context)


def build_interview_intent_prompt(
    *,
    current_state: str,
    role: str,
    current_question: str,
    user_message: str,
    last_bot_message: str | None,
) -> str:
    return _with_context(
        INTERVIEW_INTENT_PROMPT,
        {
            "current_state": current_state,
            "user_role": role,
            "current_question": current_question,
            "user_message": user_message,
            "last_bot_message": last_bot_message,
        },
    )


def build_interview_plan_prompt(*, role: str, source_text: str, max_chars: int = 12000) -> str:
    return _with_context(
        INTERVIEW_PLAN_PROMPT,
        {"role": role, "source_text": source_text[:max_chars]},
    )
