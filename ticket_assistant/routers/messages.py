"""Inbound message intake: one request runs one assistant turn."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..agents.client import ModelInvocationError
from ..conversations.service import AssistantService
from ..tickets import schemas
from ..tickets.repository import TicketNotFoundError, TicketStore

router = APIRouter(tags=["messages"])

logger = logging.getLogger(__name__)


class TurnSummary(BaseModel):
    ticket_id: int
    state: str
    channel: str
    reply: str
    escalated: bool
    resolved: list[dict[str, Any]] = Field(default_factory=list)
    tool_results: list[dict[str, Any]] = Field(default_factory=list)
    greeting: str | None = None


async def _load_ticket(store: TicketStore, ticket_id: int) -> tuple[schemas.Ticket, schemas.Contact]:
    ticket = await store.get_ticket(ticket_id)
    if ticket is None:
        raise TicketNotFoundError(f"Ticket {ticket_id} not found")
    contact = await store.get_contact(ticket.contact_id)
    if contact is None:
        raise TicketNotFoundError(f"Contact {ticket.contact_id} of ticket {ticket_id} not found")
    return ticket, contact


@router.post("/api/tickets/{ticket_id}/messages", response_model=TurnSummary)
async def receive_message(ticket_id: int, message: schemas.InboundMessage, request: Request):
    """Run a turn for ``message`` and return what the assistant did."""

    engine: AssistantService = request.app.state.assistant
    try:
        ticket, contact = await _load_ticket(request.app.state.ticket_store, ticket_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    settings = await request.app.state.settings_loader(ticket)
    try:
        result = await engine.handle_turn(settings, message, ticket, contact)
    except ModelInvocationError as exc:
        logger.error("Model failure on ticket %s: %s", ticket_id, exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    if result is None:
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content={"skipped": True})
    return TurnSummary(**result.summary())
