"""Conversation turn services."""

from .context import ConversationContext, build_context
from .models import TurnResult, TurnState
from .sanitizer import sanitize
from .service import AssistantService

__all__ = [
    "AssistantService",
    "ConversationContext",
    "TurnResult",
    "TurnState",
    "build_context",
    "sanitize",
]
