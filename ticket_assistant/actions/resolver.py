"""Per-turn reconciliation and commit of action candidates."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from ..agents.client import ToolCall
from ..agents.tools import ADD_TAG
from ..tickets import schemas
from ..tickets.service import TicketService
from .extraction import (
    MalformedToolCallError,
    PatternFallbackExtractor,
    ToolCallExtractor,
    merge_candidates,
    tool_call_priority,
)
from .models import (
    ActionCandidate,
    ActionKind,
    PatternCandidate,
    ResolvedAction,
    ToolResult,
)

logger = logging.getLogger(__name__)

QUEUE_REJECTED = "Fila não encontrada ou já atribuída"
USER_REJECTED = "Usuário não encontrado ou já atribuído"
TAGS_REJECTED = "Nenhuma tag válida informada"


class ActionResolver:
    """Resolves and commits the actions of a single turn.

    Tool calls are committed as they are dispatched. The pattern fallback,
    when used, only fills kinds for which no tool call committed anything, so
    a rejected or no-op tool call leaves its kind open. Notes are buffered and
    written once by :meth:`commit_notes` after every other kind.
    """

    def __init__(
        self,
        tickets: TicketService,
        ticket: schemas.Ticket,
        contact: schemas.Contact,
        snapshot: schemas.EntitySnapshot,
        *,
        tag_contact: bool = False,
        tool_extractor: ToolCallExtractor | None = None,
        pattern_extractor: PatternFallbackExtractor | None = None,
    ) -> None:
        self._tickets = tickets
        self._ticket = ticket
        self._contact = contact
        self._snapshot = snapshot
        self._tag_contact = tag_contact
        self._tool_extractor = tool_extractor or ToolCallExtractor()
        self._pattern_extractor = pattern_extractor or PatternFallbackExtractor()
        self.committed: list[ActionCandidate] = []
        self.resolved: list[ResolvedAction] = []
        self.greeting: str | None = None
        self._notes: list[tuple[str, str]] = []

    # ------------------------------------------------------------------
    # Strategy A

    async def run_tool_calls(self, calls: Sequence[ToolCall]) -> list[ToolResult]:
        """Execute tool calls queue-first, then tags, then users."""

        results = []
        for call in sorted(calls, key=tool_call_priority):
            results.append(await self.resolve_tool_call(call))
        return results

    async def resolve_tool_call(self, call: ToolCall) -> ToolResult:
        try:
            candidates = self._tool_extractor.extract(call)
        except MalformedToolCallError as exc:
            logger.warning("Rejected tool call %s (%s): %s", call.id, call.name, exc)
            return ToolResult(call.id, call.name, {"success": False, "reason": str(exc)})

        result: dict[str, Any] = {}
        for candidate in candidates:
            before = len(self.resolved)
            outcome = await self._apply(candidate)
            if len(self.resolved) > before or candidate.kind is ActionKind.ADD_NOTE:
                self.committed.append(candidate)
            result.update(outcome)
        if call.name == ADD_TAG:
            result.setdefault("note", None)
        return ToolResult(call.id, call.name, result)

    # ------------------------------------------------------------------
    # Strategy B

    async def resolve_fallback(self, text: str) -> list[ActionCandidate]:
        """Apply pattern candidates for kinds no tool call committed."""

        patterns = self._pattern_extractor.extract(text)
        chosen = [
            candidate
            for candidate in merge_candidates(self.committed, patterns)
            if isinstance(candidate, PatternCandidate)
        ]
        for candidate in chosen:
            logger.info("Fallback %s from line %r", candidate.kind.value, candidate.line)
            await self._apply(candidate)
        return chosen

    def strip_directives(self, text: str) -> str:
        return self._pattern_extractor.strip(text)

    # ------------------------------------------------------------------
    # Notes

    async def commit_notes(self) -> list[schemas.TicketNote]:
        created = []
        seen: set[str] = set()
        for note, source in self._notes:
            if note in seen:
                continue
            seen.add(note)
            record = await self._tickets.add_note(self._ticket, self._contact, note)
            if record is not None:
                created.append(record)
                self.resolved.append(ResolvedAction(ActionKind.ADD_NOTE, note, source, record.id))
        self._notes.clear()
        return created

    # ------------------------------------------------------------------
    # Commit helpers

    async def _apply(self, candidate: ActionCandidate) -> dict[str, Any]:
        if candidate.kind is ActionKind.TRANSFER_QUEUE:
            return await self._apply_queue(candidate)
        if candidate.kind is ActionKind.ADD_TAG:
            return await self._apply_tags(candidate)
        if candidate.kind is ActionKind.TRANSFER_USER:
            return await self._apply_user(candidate)
        self._notes.append((candidate.payload, candidate.source))
        return {"note": candidate.payload}

    async def _apply_queue(self, candidate: ActionCandidate) -> dict[str, Any]:
        queue = self._snapshot.find_queue(
            candidate.payload, ignore_case=isinstance(candidate, PatternCandidate)
        )
        if queue is None or not await self._tickets.transfer_queue(self._ticket, self._contact, queue):
            logger.info("Queue transfer not applied: %r (current %s)", candidate.payload, self._ticket.queue_id)
            return {"success": False, "reason": QUEUE_REJECTED}
        self.resolved.append(ResolvedAction(candidate.kind, queue.name, candidate.source, queue.id))
        if queue.greeting_message and queue.greeting_message.strip():
            self.greeting = queue.greeting_message
        return {"success": True, "queue": queue.name}

    async def _apply_tags(self, candidate: ActionCandidate) -> dict[str, Any]:
        tags = self._snapshot.find_tags(list(candidate.payload))
        if not tags:
            return {"success": False, "tags": [], "reason": TAGS_REJECTED}
        applied = await self._tickets.add_tags(
            self._ticket, self._contact, tags, tag_contact=self._tag_contact
        )
        for tag in applied:
            self.resolved.append(ResolvedAction(candidate.kind, tag.name, candidate.source, tag.id))
        return {"success": True, "tags": [tag.name for tag in applied]}

    async def _apply_user(self, candidate: ActionCandidate) -> dict[str, Any]:
        user = self._snapshot.find_user(
            candidate.payload, ignore_case=isinstance(candidate, PatternCandidate)
        )
        if user is None or not await self._tickets.transfer_user(self._ticket, user):
            logger.info("User transfer not applied: %r (current %s)", candidate.payload, self._ticket.user_id)
            return {"success": False, "reason": USER_REJECTED}
        self.resolved.append(ResolvedAction(candidate.kind, user.name, candidate.source, user.id))
        return {"success": True, "user": user.name}
