"""Domain models produced by a conversation turn."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..actions.models import ResolvedAction, ToolResult
from ..channels.base import DeliveryOutcome


class TurnState(str, Enum):
    IDLE = "idle"
    PROMPT_BUILT = "prompt_built"
    INVOKED = "invoked"
    TOOLS_EXECUTED = "tools_executed"
    SECOND_CALL_ISSUED = "second_call_issued"
    RESOLVED = "resolved"
    SANITIZED = "sanitized"
    DELIVERY_SCHEDULED = "delivery_scheduled"
    DELIVERED = "delivered"


@dataclass
class TurnResult:
    """Outcome of one turn.

    ``delivery`` is set when the reply was sent inline (text). Speech replies
    are delivered by ``delivery_task``, which resolves to the outcome once the
    background delivery finishes. Until then ``state`` stays at
    ``DELIVERY_SCHEDULED``; it moves to ``DELIVERED`` only when the voice note
    was sent without error.
    """

    ticket_id: int
    channel: str
    state: TurnState = TurnState.IDLE
    reply: str = ""
    escalated: bool = False
    resolved: list[ResolvedAction] = field(default_factory=list)
    tool_results: list[ToolResult] = field(default_factory=list)
    greeting: str | None = None
    delivery: DeliveryOutcome | None = None
    delivery_task: asyncio.Task[DeliveryOutcome] | None = None

    def summary(self) -> dict[str, Any]:
        return {
            "ticket_id": self.ticket_id,
            "state": self.state.value,
            "channel": self.channel,
            "reply": self.reply,
            "escalated": self.escalated,
            "resolved": [action.as_dict() for action in self.resolved],
            "tool_results": [
                {"call_id": item.call_id, "name": item.name, "result": item.result}
                for item in self.tool_results
            ],
            "greeting": self.greeting,
        }
