"""Commit layer applying assistant decisions to tickets."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Protocol

from . import schemas
from .repository import TicketStore

logger = logging.getLogger(__name__)


def ticket_channel(company_id: int) -> str:
    """Name of the company-scoped channel that receives ticket updates."""
    return f"company-{company_id}-ticket"


class ChangeNotifier(Protocol):
    """Broadcasts state changes to interested subscribers."""

    async def emit(self, channel: str, event: str, payload: Mapping[str, Any]) -> None: ...


class QueueTransfer(Protocol):
    """Moves a ticket into another queue."""

    async def transfer(
        self, queue: schemas.Queue, ticket: schemas.Ticket, contact: schemas.Contact
    ) -> schemas.Ticket: ...


class LoggingChangeNotifier:
    """Notifier used when no broadcast channel is wired; only logs the event."""

    async def emit(self, channel: str, event: str, payload: Mapping[str, Any]) -> None:
        logger.debug("Change notification %s on %s: %s", event, channel, payload)


class StoreQueueTransfer:
    """Default queue transfer: persist the new queue and broadcast the ticket."""

    def __init__(self, store: TicketStore, notifier: ChangeNotifier) -> None:
        self._store = store
        self._notifier = notifier

    async def transfer(
        self, queue: schemas.Queue, ticket: schemas.Ticket, contact: schemas.Contact
    ) -> schemas.Ticket:
        ticket.queue_id = queue.id
        saved = await self._store.save_ticket(ticket)
        await self._notifier.emit(
            ticket_channel(ticket.company_id), "update", {"ticket": saved.model_dump()}
        )
        return saved


class TicketService:
    """Applies queue, tag, user and note changes to a ticket."""

    def __init__(
        self,
        store: TicketStore,
        *,
        notifier: ChangeNotifier | None = None,
        queue_transfer: QueueTransfer | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier or LoggingChangeNotifier()
        self._queue_transfer = queue_transfer or StoreQueueTransfer(store, self._notifier)

    @property
    def store(self) -> TicketStore:
        return self._store

    async def snapshot(self, company_id: int) -> schemas.EntitySnapshot:
        queues, tags, users = await asyncio.gather(
            self._store.list_queues(company_id),
            self._store.list_tags(company_id),
            self._store.list_users(company_id),
        )
        logger.debug(
            "Snapshot for company %s: queues=%s tags=%s users=%s",
            company_id,
            [q.name for q in queues],
            [t.name for t in tags],
            [u.name for u in users],
        )
        return schemas.EntitySnapshot(queues=queues, tags=tags, users=users)

    async def transfer_queue(
        self, ticket: schemas.Ticket, contact: schemas.Contact, queue: schemas.Queue
    ) -> bool:
        """Move ``ticket`` to ``queue``; returns ``False`` when already there."""

        if ticket.queue_id == queue.id:
            return False
        await self._queue_transfer.transfer(queue, ticket, contact)
        ticket.queue_id = queue.id
        logger.info("Ticket %s transferred to queue %s", ticket.id, queue.name)
        return True

    async def transfer_user(self, ticket: schemas.Ticket, user: schemas.User) -> bool:
        """Assign ``ticket`` to ``user``; returns ``False`` when already assigned."""

        if ticket.user_id == user.id:
            return False
        ticket.user_id = user.id
        await self._store.save_ticket(ticket)
        await self._notify(ticket)
        logger.info("Ticket %s assigned to user %s", ticket.id, user.name)
        return True

    async def add_tags(
        self,
        ticket: schemas.Ticket,
        contact: schemas.Contact,
        tags: Iterable[schemas.Tag],
        *,
        tag_contact: bool = False,
    ) -> list[schemas.Tag]:
        applied: list[schemas.Tag] = []
        for tag in tags:
            await self._store.upsert_ticket_tag(ticket.id, tag.id)
            if tag_contact:
                await self._store.upsert_contact_tag(contact.id, tag.id)
            applied.append(tag)
        if applied:
            await self._notify(ticket)
            logger.info(
                "Ticket %s tagged with %s", ticket.id, ", ".join(tag.name for tag in applied)
            )
        return applied

    async def add_note(
        self, ticket: schemas.Ticket, contact: schemas.Contact, note: str
    ) -> schemas.TicketNote | None:
        text = (note or "").strip()
        if not text:
            return None
        return await self._store.create_note(ticket.id, contact.id, text, user_id=None)

    async def _notify(self, ticket: schemas.Ticket) -> None:
        await self._notifier.emit(
            ticket_channel(ticket.company_id), "update", {"ticket": ticket.model_dump()}
        )
