"""Action candidates, resolved actions and tool results."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class ActionKind(str, Enum):
    TRANSFER_QUEUE = "transfer_queue"
    ADD_TAG = "add_tag"
    TRANSFER_USER = "transfer_user"
    ADD_NOTE = "add_note"


#: Resolution order shared by the text and audio paths.
KIND_ORDER: tuple[ActionKind, ...] = (
    ActionKind.TRANSFER_QUEUE,
    ActionKind.ADD_TAG,
    ActionKind.TRANSFER_USER,
    ActionKind.ADD_NOTE,
)


@dataclass(frozen=True)
class ToolCallCandidate:
    """Action requested through a structured tool call."""

    kind: ActionKind
    payload: Any
    call_id: str
    source: str = field(default="tool_call", init=False)


@dataclass(frozen=True)
class PatternCandidate:
    """Action recovered from a directive line in the free-text reply."""

    kind: ActionKind
    payload: Any
    line: str
    source: str = field(default="pattern", init=False)


ActionCandidate = Union[ToolCallCandidate, PatternCandidate]


@dataclass(frozen=True)
class ResolvedAction:
    """A validated action that changed (or upserted) ticket state."""

    kind: ActionKind
    target: str
    source: str
    entity_id: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "target": self.target,
            "source": self.source,
            "entity_id": self.entity_id,
        }


@dataclass
class ToolResult:
    """Outcome of one tool call, folded back into the prompt."""

    call_id: str
    name: str
    result: dict[str, Any]

    @property
    def success(self) -> bool:
        return bool(self.result.get("success"))

    def as_message(self) -> dict[str, Any]:
        return {
            "role": "tool",
            "tool_call_id": self.call_id,
            "content": json.dumps(self.result, ensure_ascii=False),
        }
