"""Core conversation orchestration for Helly."""

from .config_loader import (
    clear_config_cache,
    get_default_model,
    get_idempotency_config,
    get_model_by_alias,
    get_model_by_id,
    get_model_config,
    get_provider_config,
    get_rate_limit_config,
    get_safe_call_config,
    get_session_config,
    get_storage_config,
    get_system_persona,
    get_telegram_config,
    load_config,
    resolve_config_path,
)
from .conversation import ConversationOrchestrator
from .conversation_types import InboundEvent, InterviewIntentDecision, RouteDecision, SessionState
from .dispatch import resolve_dispatch_action
from .durable_store import DuplicateRowError, DurableStore
from .idempotency import IdempotencyGate
from .interview_intent import InterviewIntentClassifier, fallback_decision
from .interview_planner import InterviewPlanner
from .llm_client import LlmCallError, LlmClient, call_llm
from .logger import get_logger
from .rate_limit import RateLimitDecision, SlidingWindowRateLimiter
from .route_classifier import (
    RouteClassificationError,
    RouteClassifier,
    RouteContext,
    RouteDecisionError,
    normalize_route_decision,
)
from .safe_invoker import SafeCallResult, SafeInvoker
from .session_store import SessionStore, TranscriptLog
from .state_machine import SessionStateMachine, is_allowed_transition
from .telegram_client import TelegramClient
from .update_normalizer import normalize_update

__all__ = [
    "ConversationOrchestrator",
    "DuplicateRowError",
    "DurableStore",
    "IdempotencyGate",
    "InboundEvent",
    "InterviewIntentClassifier",
    "InterviewIntentDecision",
    "InterviewPlanner",
    "LlmCallError",
    "LlmClient",
    "RateLimitDecision",
    "RouteClassificationError",
    "RouteClassifier",
    "RouteContext",
    "RouteDecision",
    "RouteDecisionError",
    "SafeCallResult",
    "SafeInvoker",
    "SessionState",
    "SessionStateMachine",
    "SessionStore",
    "SlidingWindowRateLimiter",
    "TelegramClient",
    "TranscriptLog",
    "call_llm",
    "clear_config_cache",
    "fallback_decision",
    "get_default_model",
    "get_idempotency_config",
    "get_logger",
    "get_model_by_alias",
    "get_model_by_id",
    "get_model_config",
    "get_provider_config",
    "get_rate_limit_config",
    "get_safe_call_config",
    "get_session_config",
    "get_storage_config",
    "get_system_persona",
    "get_telegram_config",
    "is_allowed_transition",
    "load_config",
    "normalize_route_decision",
    "normalize_update",
    "resolve_config_path",
    "resolve_dispatch_action",
]
