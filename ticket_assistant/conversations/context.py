"""Bounded conversation window and system directive for a turn."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from ..agents.prompts import render_directive
from ..tickets import schemas


@dataclass(frozen=True)
class WindowEntry:
    role: str
    content: str

    @property
    def from_customer(self) -> bool:
        return self.role == "user"

    def as_message(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}


@dataclass
class ConversationContext:
    directive: str
    window: list[WindowEntry] = field(default_factory=list)
    escalate: bool = False

    def to_prompt_messages(self) -> list[dict[str, Any]]:
        return [{"role": "system", "content": self.directive}] + [
            entry.as_message() for entry in self.window
        ]


def build_window(
    history: Sequence[schemas.StoredMessage],
    inbound_id: str,
    inbound_text: str,
    max_messages: int,
) -> list[WindowEntry]:
    """Chronological text-only window ending with the inbound message.

    ``history`` may or may not already contain the inbound message; it is
    matched by id and always placed last, so the window never holds more
    than ``max_messages`` entries.
    """

    limit = max(max_messages, 1)
    prior = [
        message
        for message in sorted(history, key=lambda m: m.created_at)
        if message.is_text and message.id != inbound_id
    ]
    keep = prior[len(prior) - (limit - 1):] if limit > 1 else []
    window = [
        WindowEntry(role="assistant" if message.from_me else "user", content=message.body)
        for message in keep
    ]
    window.append(WindowEntry(role="user", content=inbound_text))
    return window


def should_escalate(window: Sequence[WindowEntry], max_messages: int) -> bool:
    customer_messages = sum(1 for entry in window if entry.from_customer)
    return customer_messages >= 2 or len(window) >= max_messages - 1


def build_context(
    contact: schemas.Contact,
    history: Sequence[schemas.StoredMessage],
    inbound: schemas.InboundMessage,
    inbound_text: str,
    snapshot: schemas.EntitySnapshot,
    settings: schemas.AssistantSettings,
    prompt: str,
) -> ConversationContext:
    window = build_window(history, inbound.id, inbound_text, settings.max_messages)
    escalate = should_escalate(window, settings.max_messages)
    directive = render_directive(contact.name, snapshot, escalate=escalate, prompt=prompt)
    return ConversationContext(directive=directive, window=window, escalate=escalate)
