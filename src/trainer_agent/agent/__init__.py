"""
Agent module: event store, context building, context selection and the loop.
"""

from .context import ContextBuilder, ContextSnapshot, SYSTEM_PROMPT, estimate_tokens, fold_events
from .core import AgentLoop, LoopState, TurnOutcome, TurnResult
from .selector import ContextSelection, ContextSelector
from .session import EventCallback, SessionStore

__all__ = [
    "AgentLoop",
    "ContextBuilder",
    "ContextSelection",
    "ContextSelector",
    "ContextSnapshot",
    "EventCallback",
    "LoopState",
    "SYSTEM_PROMPT",
    "SessionStore",
    "TurnOutcome",
    "TurnResult",
    "estimate_tokens",
    "fold_events",
]
