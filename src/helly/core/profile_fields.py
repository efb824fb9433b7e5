"""Mandatory profile fields collected after the interview: step order and parsers."""

from __future__ import annotations

import re
from typing import Any, Callable

CANDIDATE_WORK_MODES: tuple[str, ...] = ("remote", "hybrid", "onsite", "flexible")
JOB_WORK_FORMATS: tuple[str, ...] = ("remote", "hybrid", "onsite")

CANDIDATE_STEPS: tuple[str, ...] = ("location", "work_mode", "salary")
MANAGER_STEPS: tuple[str, ...] = ("work_format", "remote_countries", "budget")

# step -> keys that must be present for the step to count as answered
STEP_KEYS: dict[str, tuple[str, ...]] = {
    "location": ("country", "city"),
    "work_mode": ("work_mode",),
    "salary": ("salary_amount", "salary_currency", "salary_period"),
    "work_format": ("work_format",),
    "remote_countries": ("remote_worldwide", "remote_countries"),
    "budget": ("budget_min", "budget_max", "budget_currency", "budget_period"),
}

_WORK_MODE_WORDS: dict[str, str] = {
    "remote": "remote",
    "remotely": "remote",
    "wfh": "remote",
    "hybrid": "hybrid",
    "onsite": "onsite",
    "on-site": "onsite",
    "on site": "onsite",
    "office": "onsite",
    "flexible": "flexible",
    "either": "flexible",
    "any": "flexible",
}

_CURRENCY_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\$|\busd\b|\bdollars?\b", re.IGNORECASE), "USD"),
    (re.compile(r"€|\beur\b|\beuros?\b", re.IGNORECASE), "EUR"),
    (re.compile(r"₪|\bils\b|\bnis\b|\bshekels?\b", re.IGNORECASE), "ILS"),
    (re.compile(r"£|\bgbp\b|\bpounds?\b", re.IGNORECASE), "GBP"),
)
_OTHER_CURRENCY_RE = re.compile(r"\b[A-Z]{3}\b")
_MONTH_RE = re.compile(r"\b(?:month|months|monthly|mo)\b|/\s*m\b", re.IGNORECASE)
_YEAR_RE = re.compile(r"\b(?:year|years|yearly|annual|annually|yr|pa)\b|/\s*y\b", re.IGNORECASE)
_THOUSANDS_SEP_RE = re.compile(r"(?<=\d)[,\s'](?=\d{3}(?!\d))")
_AMOUNT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(k)?\b", re.IGNORECASE)
_WORLDWIDE_RE = re.compile(r"\b(?:worldwide|anywhere|any country|global|globally)\b", re.IGNORECASE)
_LIST_SPLIT_RE = re.compile(r"[,;/\n]|\band\b", re.IGNORECASE)


def required_steps(role: str, fields: dict[str, Any]) -> tuple[str, ...]:
    if role == "candidate":
        return CANDIDATE_STEPS
    if fields.get("work_format") == "remote":
        return MANAGER_STEPS
    return tuple(step for step in MANAGER_STEPS if step != "remote_countries")


def is_step_answered(step: str, fields: dict[str, Any]) -> bool:
    return all(fields.get(key) is not None for key in STEP_KEYS[step])


def next_missing_step(role: str, fields: dict[str, Any]) -> str | None:
    for step in required_steps(role, fields):
        if not is_step_answered(step, fields):
            return step
    return None


def _match_work_mode(text: str, allowed: tuple[str, ...]) -> str | None:
    lowered = text.lower()
    for word in sorted(_WORK_MODE_WORDS, key=len, reverse=True):
        mode = _WORK_MODE_WORDS[word]
        if mode in allowed and re.search(rf"\b{re.escape(word)}\b", lowered):
            return mode
    return None


def _currency(text: str) -> str | None:
    for pattern, code in _CURRENCY_PATTERNS:
        if pattern.search(text):
            return code
    if _OTHER_CURRENCY_RE.search(text):
        return "other"
    return None


def _period(text: str) -> str | None:
    if _MONTH_RE.search(text):
        return "month"
    if _YEAR_RE.search(text):
        return "year"
    return None


def _amounts(text: str) -> list[float]:
    normalized = _THOUSANDS_SEP_RE.sub("", text)
    values: list[float] = []
    for number, thousands in _AMOUNT_RE.findall(normalized):
        value = float(number) * (1000 if thousands else 1)
        if value > 0:
            values.append(value)
    return values


def _split_list(text: str) -> list[str]:
    return [part.strip(" .") for part in _LIST_SPLIT_RE.split(text) if part and part.strip(" .")]


def parse_location(text: str) -> dict[str, Any] | None:
    """`"Germany, Berlin"` -> country and city; both parts are required."""
    parts = _split_list(text)
    if len(parts) < 2:
        return None
    return {"country": parts[0], "city": parts[1]}


def parse_work_mode(text: str) -> dict[str, Any] | None:
    mode = _match_work_mode(text, CANDIDATE_WORK_MODES)
    return {"work_mode": mode} if mode else None


def parse_work_format(text: str) -> dict[str, Any] | None:
    fmt = _match_work_mode(text, JOB_WORK_FORMATS)
    return {"work_format": fmt} if fmt else None


def parse_remote_countries(text: str) -> dict[str, Any] | None:
    if _WORLDWIDE_RE.search(text):
        return {"remote_worldwide": True, "remote_countries": []}
    countries = _split_list(text)
    if not countries:
        return None
    return {"remote_worldwide": False, "remote_countries": countries}


def parse_salary(text: str) -> dict[str, Any] | None:
    """Amount, currency and period are all required, e.g. `5000 EUR per month`."""
    amounts = _amounts(text)
    currency = _currency(text)
    period = _period(text)
    if not amounts or currency is None or period is None:
        return None
    return {"salary_amount": amounts[0], "salary_currency": currency, "salary_period": period}


def parse_budget(text: str) -> dict[str, Any] | None:
    """A single amount is read as a fixed budget (min == max)."""
    amounts = _amounts(text)
    currency = _currency(text)
    period = _period(text)
    if not amounts or currency is None or period is None:
        return None
    low, high = min(amounts[:2]), max(amounts[:2])
    return {"budget_min": low, "budget_max": high, "budget_currency": currency, "budget_period": period}


STEP_PARSERS: dict[str, Callable[[str], dict[str, Any] | None]] = {
    "location": parse_location,
    "work_mode": parse_work_mode,
    "salary": parse_salary,
    "work_format": parse_work_format,
    "remote_countries": parse_remote_countries,
    "budget": parse_budget,
}


def parse_step_answer(step: str, text: str) -> dict[str, Any] | None:
    parser = STEP_PARSERS.get(step)
    if parser is None or not text or not text.strip():
        return None
    return parser(text.strip())
