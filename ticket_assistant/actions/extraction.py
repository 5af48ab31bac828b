"""Extraction strategies turning model output into action candidates.

Two strategies produce the same candidate types:

- :class:`ToolCallExtractor` reads the JSON arguments of a structured tool
  call and is authoritative.
- :class:`PatternFallbackExtractor` scans the free-text reply for directives
  such as ``Fila: Suporte`` and is only consulted for kinds no tool call
  committed (see :func:`merge_candidates`).
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Sequence
from typing import Any

from ..agents.client import ToolCall
from ..agents.tools import ADD_TAG, TRANSFER_QUEUE, TRANSFER_USER
from .models import (
    KIND_ORDER,
    ActionCandidate,
    ActionKind,
    PatternCandidate,
    ToolCallCandidate,
)


class MalformedToolCallError(ValueError):
    """Raised when a tool call cannot be turned into a candidate."""


def _clean_value(value: str) -> str:
    return value.strip().strip("\"'").strip()


def _string_arg(args: dict[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise MalformedToolCallError(f"Missing '{key}' argument")
    return value.strip()


class ToolCallExtractor:
    """Strategy A: candidates from structured tool calls."""

    def extract(self, source: ToolCall) -> list[ActionCandidate]:
        try:
            args = json.loads(source.arguments or "{}")
        except json.JSONDecodeError as exc:
            raise MalformedToolCallError(f"Invalid JSON arguments: {exc.msg}") from exc
        if not isinstance(args, dict):
            raise MalformedToolCallError("Arguments must be a JSON object")

        if source.name == TRANSFER_QUEUE:
            return [ToolCallCandidate(ActionKind.TRANSFER_QUEUE, _string_arg(args, "queue"), source.id)]
        if source.name == TRANSFER_USER:
            return [ToolCallCandidate(ActionKind.TRANSFER_USER, _string_arg(args, "user"), source.id)]
        if source.name == ADD_TAG:
            tags = args.get("tags") or []
            if not isinstance(tags, list):
                raise MalformedToolCallError("'tags' must be a list")
            names = tuple(tag.strip() for tag in tags if isinstance(tag, str) and tag.strip())
            candidates: list[ActionCandidate] = [
                ToolCallCandidate(ActionKind.ADD_TAG, names, source.id)
            ]
            note = args.get("note")
            if isinstance(note, str) and note.strip():
                candidates.append(ToolCallCandidate(ActionKind.ADD_NOTE, note.strip(), source.id))
            return candidates
        raise MalformedToolCallError(f"Unknown tool '{source.name}'")


_QUEUE_LINE = re.compile(r"Fila:[ \t]*([^\n]+)", re.IGNORECASE)
_TAG_LINE = re.compile(r"\bTags?:[ \t]*([^\n]+)", re.IGNORECASE)
_USER_LINE = re.compile(r"Usu[aá]rio:[ \t]*([^\n]+)", re.IGNORECASE)
_NOTE_LINE = re.compile(r"Observa[cç][aã]o:[ \t]*([^\n]+)", re.IGNORECASE)
_DIRECTIVES = (_QUEUE_LINE, _TAG_LINE, _USER_LINE, _NOTE_LINE)


class PatternFallbackExtractor:
    """Strategy B: candidates from ``Fila:``/``Tags:``/``Usuário:``/``Observação:`` lines."""

    def extract(self, source: str) -> list[ActionCandidate]:
        text = source or ""
        candidates: list[ActionCandidate] = []
        match = _QUEUE_LINE.search(text)
        if match and _clean_value(match.group(1)):
            candidates.append(PatternCandidate(ActionKind.TRANSFER_QUEUE, _clean_value(match.group(1)), match.group(0)))
        match = _TAG_LINE.search(text)
        if match:
            names = tuple(
                name for name in (_clean_value(part) for part in match.group(1).split(",")) if name
            )
            if names:
                candidates.append(PatternCandidate(ActionKind.ADD_TAG, names, match.group(0)))
        match = _USER_LINE.search(text)
        if match and _clean_value(match.group(1)):
            candidates.append(PatternCandidate(ActionKind.TRANSFER_USER, _clean_value(match.group(1)), match.group(0)))
        match = _NOTE_LINE.search(text)
        if match and match.group(1).strip():
            candidates.append(PatternCandidate(ActionKind.ADD_NOTE, match.group(1).strip(), match.group(0)))
        return candidates

    def strip(self, text: str) -> str:
        """Remove directives so they never reach the customer.

        Each directive is cut from where its keyword starts to the end of its
        line, so an inline ``... Fila: X`` keeps the words before it. Lines left
        empty by the cut are dropped.
        """

        kept = []
        for line in (text or "").split("\n"):
            cut = line
            for pattern in _DIRECTIVES:
                cut = pattern.sub("", cut)
            if cut == line:
                kept.append(line)
            elif cut.strip():
                kept.append(cut.rstrip())
        return "\n".join(kept)


def merge_candidates(
    tool_candidates: Iterable[ActionCandidate],
    pattern_candidates: Iterable[ActionCandidate],
) -> list[ActionCandidate]:
    """Pick, per kind, the tool-call candidates if any exist, else the pattern ones.

    The two sources are never mixed for a single kind. The result is ordered
    by :data:`KIND_ORDER` and keeps insertion order inside each kind.
    """

    by_tool = _group(tool_candidates)
    by_pattern = _group(pattern_candidates)
    merged: list[ActionCandidate] = []
    for kind in KIND_ORDER:
        merged.extend(by_tool.get(kind) or by_pattern.get(kind) or [])
    return merged


def _group(candidates: Iterable[ActionCandidate]) -> dict[ActionKind, list[ActionCandidate]]:
    grouped: dict[ActionKind, list[ActionCandidate]] = {}
    for candidate in candidates:
        grouped.setdefault(candidate.kind, []).append(candidate)
    return grouped


def tool_call_priority(call: ToolCall) -> int:
    order: Sequence[str] = (TRANSFER_QUEUE, ADD_TAG, TRANSFER_USER)
    return order.index(call.name) if call.name in order else len(order)
