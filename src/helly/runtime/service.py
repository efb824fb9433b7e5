"""Shared runtime ownership facade for daemon/app entrypoints."""

from __future__ import annotations

from pathlib import Path
from threading import RLock
from typing import Any

from src.helly.core.config_loader import (
    get_idempotency_config,
    get_rate_limit_config,
    get_safe_call_config,
    get_session_config,
    get_storage_config,
    get_system_persona,
    get_telegram_config,
    load_config,
    resolve_config_path,
)
from src.helly.core.conversation import ConversationOrchestrator
from src.helly.core.durable_store import DurableStore
from src.helly.core.idempotency import IdempotencyGate
from src.helly.core.interview_intent import InterviewIntentClassifier
from src.helly.core.interview_planner import InterviewPlanner
from src.helly.core.llm_client import LlmClient
from src.helly.core.logger import get_logger
from src.helly.core.rate_limit import SlidingWindowRateLimiter
from src.helly.core.route_classifier import RouteClassifier
from src.helly.core.safe_invoker import SafeInvoker
from src.helly.core.session_store import SessionStore, TranscriptLog
from src.helly.core.state_machine import SessionStateMachine
from src.helly.core.telegram_client import TelegramClient

logger = get_logger("runtime")


class RuntimeService:
    """Single authority for component lifecycle + app-facing operations."""

    def __init__(self, *, config: dict[str, Any] | None = None, repo_root: Path | None = None) -> None:
        self._lock = RLock()
        self._config_override = config
        self._repo_root = repo_root or Path(__file__).resolve().parents[3]
        self._started = False
        self._last_start_source: str | None = None
        self._last_stop_source: str | None = None
        self._config_status: dict[str, Any] = {"loaded": False, "path": None, "error": None}
        self._config: dict[str, Any] = {}
        self._invoker: SafeInvoker | None = None
        self._gate: IdempotencyGate | None = None
        self._sessions: SessionStore | None = None
        self._orchestrator: ConversationOrchestrator | None = None

    def _load_config(self) -> dict[str, Any]:
        if self._config_override is not None:
            self._config_status = {"loaded": True, "path": None, "error": None}
            return self._config_override
        path = resolve_config_path()
        try:
            payload = load_config()
        except (FileNotFoundError, ValueError) as exc:
            logger.warning("runtime.config.unavailable path=%s error=%s", path, exc)
            self._config_status = {"loaded": False, "path": str(path), "error": str(exc)}
            return {}
        self._config_status = {"loaded": True, "path": str(path), "error": None}
        return payload

    def _resolve_path(self, raw: str) -> Path:
        path = Path(raw)
        return path if path.is_absolute() else self._repo_root / path

    def _build(self) -> ConversationOrchestrator:
        config = self._load_config()
        safe_cfg = get_safe_call_config(config)
        session_cfg = get_session_config(config)
        telegram_cfg = get_telegram_config(config)
        rate_cfg = get_rate_limit_config(config)
        db_path = get_storage_config(config)["db_path"]

        durable = DurableStore(db_path=self._resolve_path(db_path)) if db_path else None
        invoker = SafeInvoker(
            LlmClient(config=config),
            system_persona=get_system_persona(config),
            timeout_sec=safe_cfg["timeout_sec"],
            text_max_tokens=safe_cfg["text_max_tokens"],
            repair_min_tokens=safe_cfg["repair_min_tokens"],
            repair_max_tokens=safe_cfg["repair_max_tokens"],
        )
        gate = IdempotencyGate(store=durable, capacity=get_idempotency_config(config)["memory_capacity"])
        sessions = SessionStore(durable=durable, capacity=session_cfg["cache_capacity"])
        transport = (
            TelegramClient(
                bot_token=telegram_cfg["bot_token"],
                api_base_url=telegram_cfg["api_base_url"],
                timeout_sec=telegram_cfg["timeout_sec"],
            )
            if telegram_cfg["bot_token"]
            else None
        )
        if transport is None:
            logger.warning("runtime.telegram.disabled reason=missing_bot_token")

        orchestrator = ConversationOrchestrator(
            gate=gate,
            state_machine=SessionStateMachine(sessions),
            route_classifier=RouteClassifier(invoker, max_tokens=safe_cfg["json_max_tokens"]),
            intent_classifier=InterviewIntentClassifier(invoker, max_tokens=safe_cfg["json_max_tokens"]),
            planner=InterviewPlanner(invoker),
            rate_limiter=SlidingWindowRateLimiter(
                window_sec=rate_cfg["window_sec"],
                max_per_window=rate_cfg["max_per_window"],
            ),
            transport=transport,
            transcript_log=TranscriptLog(session_cfg["transcript_dir"], root=self._repo_root),
        )
        self._config = config
        self._invoker = invoker
        self._gate = gate
        self._sessions = sessions
        return orchestrator

    def start(self, *, source: str = "runtime") -> dict[str, Any]:
        with self._lock:
            already_started = self._started
            if self._orchestrator is None:
                self._orchestrator = self._build()
            self._started = True
            self._last_start_source = source
        return {
            "ok": True,
            "source": "runtime_service",
            "already_started": already_started,
            "started": True,
            "start_source": source,
        }

    def stop(self, *, source: str = "runtime") -> dict[str, Any]:
        with self._lock:
            if self._invoker is not None:
                self._invoker.shutdown()
            self._invoker = None
            self._gate = None
            self._sessions = None
            self._orchestrator = None
            self._started = False
            self._last_stop_source = source
        return {"ok": True, "source": "runtime_service", "stopped": True, "stop_source": source}

    def _require_orchestrator(self) -> ConversationOrchestrator:
        with self._lock:
            if self._orchestrator is None:
                self.start(source="lazy")
            assert self._orchestrator is not None
            return self._orchestrator

    def telegram_settings(self) -> dict[str, Any]:
        with self._lock:
            if self._orchestrator is None:
                self.start(source="lazy")
            return get_telegram_config(self._config)

    def handle_telegram_update(self, update: dict[str, Any]) -> dict[str, Any]:
        return self._require_orchestrator().handle_update(update)

    def offer_match(
        self,
        *,
        match_id: str,
        candidate_user_id: int,
        manager_user_id: int,
        job_summary: str,
        candidate_summary: str | None = None,
    ) -> dict[str, Any]:
        return self._require_orchestrator().offer_match(
            match_id=match_id,
            candidate_user_id=candidate_user_id,
            manager_user_id=manager_user_id,
            job_summary=job_summary,
            candidate_summary=candidate_summary,
        )

    def health(self) -> dict[str, Any]:
        with self._lock:
            return {
                "ok": True,
                "source": "runtime_service",
                "runtime": {
                    "started": self._started,
                    "last_start_source": self._last_start_source,
                    "last_stop_source": self._last_stop_source,
                },
                "config": dict(self._config_status),
                "idempotency": self._gate.stats() if self._gate is not None else None,
                "sessions": {"cached": self._sessions.size()} if self._sessions is not None else None,
                "oracle": {
                    "persona_configured": bool(get_system_persona(self._config)) if self._started else False,
                    "abandoned_calls": self._invoker.abandoned_calls if self._invoker is not None else 0,
                },
            }


_RUNTIME_SERVICE: RuntimeService | None = None


def get_runtime_service() -> RuntimeService:
    global _RUNTIME_SERVICE
    if _RUNTIME_SERVICE is None:
        _RUNTIME_SERVICE = RuntimeService()
    return _RUNTIME_SERVICE
