"""Turning model output into committed ticket actions."""

from .extraction import (
    MalformedToolCallError,
    PatternFallbackExtractor,
    ToolCallExtractor,
    merge_candidates,
)
from .models import (
    KIND_ORDER,
    ActionCandidate,
    ActionKind,
    PatternCandidate,
    ResolvedAction,
    ToolCallCandidate,
    ToolResult,
)
from .resolver import ActionResolver

__all__ = [
    "KIND_ORDER",
    "ActionCandidate",
    "ActionKind",
    "ActionResolver",
    "MalformedToolCallError",
    "PatternCandidate",
    "PatternFallbackExtractor",
    "ResolvedAction",
    "ToolCallCandidate",
    "ToolCallExtractor",
    "ToolResult",
    "merge_candidates",
]
