"""Timeout, single-retry and JSON-repair wrapper around oracle calls.

Every public call returns a `SafeCallResult`; expected failure modes are
reported through `error_code` and never raised:

- `missing_precondition`: no system persona configured, the oracle is not called
- `timeout`: the last attempt exceeded its wait budget
- `transient_failure`: the retry also failed with a network/rate-limit error
- `llm_failure`: non-retryable oracle error
- `json_parse_failed`: no JSON object could be recovered after one repair call
- `schema_invalid`: parsed JSON rejected by the caller's validator
"""

from __future__ import annotations

import json
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Literal, Protocol

from .llm_client import LlmCallError, is_timeout_error, is_transient_error
from .logger import get_logger
from .prompts import build_json_repair_prompt

logger = get_logger("llm.safe")

SafeErrorCode = Literal[
    "timeout",
    "transient_failure",
    "llm_failure",
    "json_parse_failed",
    "schema_invalid",
    "missing_precondition",
]

DEFAULT_TIMEOUT_SEC = 25.0
DEFAULT_TEXT_MAX_TOKENS = 180
DEFAULT_REPAIR_MIN_TOKENS = 240
DEFAULT_REPAIR_MAX_TOKENS = 2400


class OracleClient(Protocol):
    def generate_structured_json(
        self,
        prompt: str,
        max_tokens: int,
        *,
        system_prompt: str | None = None,
        prompt_name: str = ...,
        timeout_sec: float | None = None,
    ) -> str: ...

    def generate_assistant_reply(
        self,
        prompt: str,
        max_tokens: int = ...,
        *,
        system_prompt: str | None = None,
        prompt_name: str = ...,
        timeout_sec: float | None = None,
    ) -> str: ...


@dataclass(slots=True)
class SafeCallResult:
    """Tagged result of one safe oracle call; never persisted."""

    ok: bool
    data: dict[str, Any] | None = None
    text: str | None = None
    error_code: SafeErrorCode | None = None
    error: str | None = None
    raw: str | None = None
    attempts: int = 0
    repaired: bool = False

    @classmethod
    def failure(
        cls,
        error_code: SafeErrorCode,
        *,
        error: str | None = None,
        raw: str | None = None,
        attempts: int = 0,
        repaired: bool = False,
    ) -> "SafeCallResult":
        return cls(ok=False, error_code=error_code, error=error, raw=raw, attempts=attempts, repaired=repaired)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "data": self.data,
            "text": self.text,
            "error_code": self.error_code,
            "error": self.error,
            "raw": self.raw,
            "attempts": self.attempts,
            "repaired": self.repaired,
        }


@dataclass(slots=True)
class _AttemptOutcome:
    ok: bool
    text: str | None = None
    error_code: SafeErrorCode | None = None
    error: str | None = None
    attempts: int = 0


def extract_json_object(raw: str | None) -> dict[str, Any] | None:
    """Parse the span between the first `{` and the last `}` as a JSON object."""
    if not isinstance(raw, str):
        return None
    text = raw.strip()
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        return None
    try:
        parsed = json.loads(text[start : end + 1])
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _classify_failure(exc: BaseException, *, timed_out: bool) -> SafeErrorCode:
    if timed_out or is_timeout_error(exc):
        return "timeout"
    if is_transient_error(exc):
        return "transient_failure"
    return "llm_failure"


class SafeInvoker:
    """Runs oracle calls under a bounded wait with at most one retry.

    A timed-out call is abandoned, not interrupted: the worker thread keeps
    running until the provider returns and its result is dropped.
    """

    def __init__(
        self,
        oracle: OracleClient,
        *,
        system_persona: str | None,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        text_max_tokens: int = DEFAULT_TEXT_MAX_TOKENS,
        repair_min_tokens: int = DEFAULT_REPAIR_MIN_TOKENS,
        repair_max_tokens: int = DEFAULT_REPAIR_MAX_TOKENS,
        max_workers: int = 8,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._oracle = oracle
        self._system_persona = system_persona
        self._timeout_sec = timeout_sec if timeout_sec > 0 else DEFAULT_TIMEOUT_SEC
        self._text_max_tokens = text_max_tokens
        self._repair_min_tokens = repair_min_tokens
        self._repair_max_tokens = max(repair_min_tokens, repair_max_tokens)
        self._executor = executor or ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="helly-oracle")
        self._owns_executor = executor is None
        self._lock = Lock()
        self._abandoned_calls = 0

    @property
    def abandoned_calls(self) -> int:
        with self._lock:
            return self._abandoned_calls

    def shutdown(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)

    def _resolve_timeout(self, timeout_sec: float | None) -> float:
        if isinstance(timeout_sec, (int, float)) and timeout_sec > 0:
            return float(timeout_sec)
        return self._timeout_sec

    def _has_persona(self) -> bool:
        return bool(self._system_persona and self._system_persona.strip())

    def _run_bounded(self, call: Callable[[], str], timeout_sec: float) -> tuple[str | None, BaseException | None, bool]:
        """Run one oracle call; returns `(text, error, timed_out)`."""
        future: Future[str] = self._executor.submit(call)
        try:
            value = future.result(timeout=timeout_sec)
        except FutureTimeoutError as exc:
            if not future.done():
                future.cancel()
                with self._lock:
                    self._abandoned_calls += 1
                return None, LlmCallError(f"Oracle call timed out after {timeout_sec:.1f}s.", timed_out=True), True
            return None, exc, True
        except Exception as exc:
            return None, exc, False
        if not isinstance(value, str):
            return None, LlmCallError("Oracle returned a non-text response."), False
        return value, None, False

    def _attempt_with_single_retry(
        self,
        call: Callable[[], str],
        *,
        prompt_name: str,
        timeout_sec: float,
    ) -> _AttemptOutcome:
        """attempt -> classify -> retry once -> typed error."""
        text, exc, timed_out = self._run_bounded(call, timeout_sec)
        if exc is None:
            return _AttemptOutcome(ok=True, text=text, attempts=1)

        first_code = _classify_failure(exc, timed_out=timed_out)
        if first_code == "llm_failure":
            return _AttemptOutcome(ok=False, error_code="llm_failure", error=str(exc), attempts=1)

        logger.warning("llm.safe.retry.once prompt=%s error_code=%s error=%s", prompt_name, first_code, exc)
        text, exc, timed_out = self._run_bounded(call, timeout_sec)
        if exc is None:
            return _AttemptOutcome(ok=True, text=text, attempts=2)
        return _AttemptOutcome(
            ok=False,
            error_code=_classify_failure(exc, timed_out=timed_out),
            error=str(exc),
            attempts=2,
        )

    def _structured_call(self, prompt: str, max_tokens: int, prompt_name: str, timeout_sec: float) -> Callable[[], str]:
        def _call() -> str:
            return self._oracle.generate_structured_json(
                prompt,
                max_tokens,
                system_prompt=self._system_persona,
                prompt_name=prompt_name,
                timeout_sec=timeout_sec,
            )

        return _call

    def call_json_safe(
        self,
        prompt: str,
        max_tokens: int,
        *,
        prompt_name: str,
        schema_hint: str,
        validate: Callable[[dict[str, Any]], bool] | None = None,
        timeout_sec: float | None = None,
    ) -> SafeCallResult:
        if not self._has_persona():
            logger.warning("llm.safe.missing_persona prompt=%s", prompt_name)
            return SafeCallResult.failure("missing_precondition", error="System persona is not configured.")

        budget = self._resolve_timeout(timeout_sec)
        first = self._attempt_with_single_retry(
            self._structured_call(prompt, max_tokens, prompt_name, budget),
            prompt_name=prompt_name,
            timeout_sec=budget,
        )
        if not first.ok:
            return SafeCallResult.failure(first.error_code or "llm_failure", error=first.error, attempts=first.attempts)

        raw = first.text or ""
        attempts = first.attempts
        parsed = extract_json_object(raw)
        repaired = False
        if parsed is None:
            repair_name = f"{prompt_name}_json_repair"
            repair_tokens = max(self._repair_min_tokens, min(self._repair_max_tokens, int(max_tokens)))
            logger.warning("llm.safe.json.repair prompt=%s", prompt_name)
            second = self._attempt_with_single_retry(
                self._structured_call(
                    build_json_repair_prompt(schema_hint=schema_hint, raw=raw),
                    repair_tokens,
                    repair_name,
                    budget,
                ),
                prompt_name=repair_name,
                timeout_sec=budget,
            )
            attempts += second.attempts
            repaired = True
            if not second.ok:
                return SafeCallResult.failure(
                    second.error_code or "llm_failure",
                    error=second.error,
                    raw=raw,
                    attempts=attempts,
                    repaired=True,
                )
            raw = second.text or ""
            parsed = extract_json_object(raw)
            if parsed is None:
                return SafeCallResult.failure(
                    "json_parse_failed",
                    error="No JSON object found after repair.",
                    raw=raw,
                    attempts=attempts,
                    repaired=True,
                )

        if validate is not None and not validate(parsed):
            return SafeCallResult.failure(
                "schema_invalid",
                error="Parsed JSON does not satisfy the expected schema.",
                raw=raw,
                attempts=attempts,
                repaired=repaired,
            )
        return SafeCallResult(ok=True, data=parsed, raw=raw, attempts=attempts, repaired=repaired)

    def call_text_safe(
        self,
        prompt: str,
        max_tokens: int | None = None,
        *,
        prompt_name: str,
        timeout_sec: float | None = None,
    ) -> SafeCallResult:
        if not self._has_persona():
            logger.warning("llm.safe.missing_persona prompt=%s", prompt_name)
            return SafeCallResult.failure("missing_precondition", error="System persona is not configured.")

        budget = self._resolve_timeout(timeout_sec)
        tokens = int(max_tokens) if max_tokens else self._text_max_tokens

        def _call() -> str:
            return self._oracle.generate_assistant_reply(
                prompt,
                tokens,
                system_prompt=self._system_persona,
                prompt_name=prompt_name,
                timeout_sec=budget,
            )

        outcome = self._attempt_with_single_retry(_call, prompt_name=prompt_name, timeout_sec=budget)
        if not outcome.ok:
            return SafeCallResult.failure(outcome.error_code or "llm_failure", error=outcome.error, attempts=outcome.attempts)
        text = (outcome.text or "").strip()
        return SafeCallResult(ok=True, text=text, raw=outcome.text, attempts=outcome.attempts)
