"""Ticketing store abstraction with PostgreSQL and in-memory implementations."""
from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Set, Tuple

import psycopg
from psycopg.rows import dict_row

from . import schemas


class TicketNotFoundError(RuntimeError):
    """Raised when a ticket (or its contact) could not be located."""


class TicketStore(Protocol):
    """Persistence abstraction consumed by the assistant."""

    async def get_ticket(self, ticket_id: int) -> Optional[schemas.Ticket]: ...

    async def get_contact(self, contact_id: int) -> Optional[schemas.Contact]: ...

    async def list_queues(self, company_id: int) -> List[schemas.Queue]: ...

    async def list_tags(self, company_id: int) -> List[schemas.Tag]: ...

    async def list_users(self, company_id: int) -> List[schemas.User]: ...

    async def list_messages(
        self,
        ticket_id: int,
        limit: int,
        *,
        media_types: Optional[Iterable[str]] = None,
    ) -> List[schemas.StoredMessage]: ...

    async def find_prompt(self, name: str) -> Optional[schemas.PromptOverride]: ...

    async def upsert_ticket_tag(self, ticket_id: int, tag_id: int) -> bool: ...

    async def upsert_contact_tag(self, contact_id: int, tag_id: int) -> bool: ...

    async def create_note(
        self, ticket_id: int, contact_id: int, note: str, user_id: Optional[int] = None
    ) -> schemas.TicketNote: ...

    async def save_ticket(self, ticket: schemas.Ticket) -> schemas.Ticket: ...


# ---------------------------------------------------------------------------
# Postgres repository implementation


class PostgresTicketStore:
    """PostgreSQL-backed ticket store reading the ticketing system's tables.

    Pass an open ``connection``, or a ``conninfo`` string and let :meth:`open`
    connect (the app lifespan does this for the default deployment).
    """

    def __init__(
        self,
        connection: Optional[psycopg.AsyncConnection] = None,
        *,
        conninfo: Optional[str] = None,
    ):
        self._conn = connection
        self._conninfo = conninfo

    async def open(self) -> None:
        if self._conn is not None:
            return
        if not self._conninfo:
            raise RuntimeError("DATABASE_URL not configured")
        self._conn = await psycopg.AsyncConnection.connect(self._conninfo, autocommit=True)

    async def close(self) -> None:
        # Only connections opened here are closed here.
        if self._conn is not None and self._conninfo:
            await self._conn.close()
            self._conn = None

    def cursor(self):
        if self._conn is None:
            raise RuntimeError("Ticket store is not connected")
        return self._conn.cursor(row_factory=dict_row)

    async def get_ticket(self, ticket_id: int) -> Optional[schemas.Ticket]:
        async with self.cursor() as cur:
            await cur.execute(
                """
                SELECT id, "companyId", "contactId", "queueId", "userId", status
                FROM "Tickets"
                WHERE id = %s
                """,
                (ticket_id,),
            )
            row = await cur.fetchone()
        return self._row_to_ticket(row) if row else None

    async def get_contact(self, contact_id: int) -> Optional[schemas.Contact]:
        async with self.cursor() as cur:
            await cur.execute(
                """
                SELECT id, "companyId", name, number, "disableBot"
                FROM "Contacts"
                WHERE id = %s
                """,
                (contact_id,),
            )
            row = await cur.fetchone()
        if not row:
            return None
        return schemas.Contact(
            id=row["id"],
            company_id=row["companyId"],
            name=row.get("name"),
            number=row.get("number"),
            disable_bot=bool(row.get("disableBot")),
        )

    async def list_queues(self, company_id: int) -> List[schemas.Queue]:
        async with self.cursor() as cur:
            await cur.execute(
                """
                SELECT id, "companyId", name, "greetingMessage"
                FROM "Queues"
                WHERE "companyId" = %s
                ORDER BY id
                """,
                (company_id,),
            )
            rows = await cur.fetchall()
        return [
            schemas.Queue(
                id=row["id"],
                company_id=row["companyId"],
                name=row["name"],
                greeting_message=row.get("greetingMessage"),
            )
            for row in rows
        ]

    async def list_tags(self, company_id: int) -> List[schemas.Tag]:
        async with self.cursor() as cur:
            await cur.execute(
                'SELECT id, "companyId", name FROM "Tags" WHERE "companyId" = %s ORDER BY id',
                (company_id,),
            )
            rows = await cur.fetchall()
        return [schemas.Tag(id=row["id"], company_id=row["companyId"], name=row["name"]) for row in rows]

    async def list_users(self, company_id: int) -> List[schemas.User]:
        async with self.cursor() as cur:
            await cur.execute(
                'SELECT id, "companyId", name FROM "Users" WHERE "companyId" = %s ORDER BY id',
                (company_id,),
            )
            rows = await cur.fetchall()
        return [schemas.User(id=row["id"], company_id=row["companyId"], name=row["name"]) for row in rows]

    async def list_messages(
        self,
        ticket_id: int,
        limit: int,
        *,
        media_types: Optional[Iterable[str]] = None,
    ) -> List[schemas.StoredMessage]:
        query = """
            SELECT id, "ticketId", body, "fromMe", "mediaType", "mediaUrl", "createdAt"
            FROM "Messages"
            WHERE "ticketId" = %s
        """
        params: List[Any] = [ticket_id]
        if media_types is not None:
            query += ' AND "mediaType" = ANY(%s)'
            params.append(list(media_types))
        query += ' ORDER BY "createdAt" DESC LIMIT %s'
        params.append(limit)
        async with self.cursor() as cur:
            await cur.execute(query, params)
            rows = await cur.fetchall()
        messages = [self._row_to_message(row) for row in rows]
        messages.reverse()
        return messages

    async def find_prompt(self, name: str) -> Optional[schemas.PromptOverride]:
        async with self.cursor() as cur:
            await cur.execute('SELECT name, prompt FROM "Prompts" WHERE name = %s LIMIT 1', (name,))
            row = await cur.fetchone()
        return schemas.PromptOverride(name=row["name"], prompt=row["prompt"]) if row else None

    async def load_settings(self, ticket: schemas.Ticket) -> Optional[schemas.AssistantSettings]:
        """Assistant settings for the ticket's queue, else the company-wide row."""

        async with self.cursor() as cur:
            await cur.execute(
                """
                SELECT name, prompt, voice, "voiceKey", "voiceRegion", "maxTokens",
                       temperature, "apiKey", "queueId", "maxMessages"
                FROM "Prompts"
                WHERE "companyId" = %s AND ("queueId" = %s OR "queueId" IS NULL)
                ORDER BY "queueId" IS NULL, id
                LIMIT 1
                """,
                (ticket.company_id, ticket.queue_id),
            )
            row = await cur.fetchone()
        if not row:
            return None
        return schemas.AssistantSettings.model_validate(
            {key: value for key, value in row.items() if value is not None}
        )

    async def upsert_ticket_tag(self, ticket_id: int, tag_id: int) -> bool:
        async with self.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO "TicketTags" ("ticketId", "tagId", "createdAt", "updatedAt")
                SELECT %s, %s, now(), now()
                WHERE NOT EXISTS (
                    SELECT 1 FROM "TicketTags" WHERE "ticketId" = %s AND "tagId" = %s
                )
                """,
                (ticket_id, tag_id, ticket_id, tag_id),
            )
            return cur.rowcount > 0

    async def upsert_contact_tag(self, contact_id: int, tag_id: int) -> bool:
        async with self.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO "ContactTags" ("contactId", "tagId", "createdAt", "updatedAt")
                SELECT %s, %s, now(), now()
                WHERE NOT EXISTS (
                    SELECT 1 FROM "ContactTags" WHERE "contactId" = %s AND "tagId" = %s
                )
                """,
                (contact_id, tag_id, contact_id, tag_id),
            )
            return cur.rowcount > 0

    async def create_note(
        self, ticket_id: int, contact_id: int, note: str, user_id: Optional[int] = None
    ) -> schemas.TicketNote:
        async with self.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO "TicketNotes" (note, "ticketId", "contactId", "userId", "createdAt", "updatedAt")
                VALUES (%s, %s, %s, %s, now(), now())
                RETURNING id, note, "ticketId", "contactId", "userId", "createdAt"
                """,
                (note, ticket_id, contact_id, user_id),
            )
            row = await cur.fetchone()
        return schemas.TicketNote(
            id=row["id"],
            ticket_id=row["ticketId"],
            contact_id=row["contactId"],
            note=row["note"],
            user_id=row.get("userId"),
            created_at=row["createdAt"],
        )

    async def save_ticket(self, ticket: schemas.Ticket) -> schemas.Ticket:
        async with self.cursor() as cur:
            await cur.execute(
                """
                UPDATE "Tickets"
                SET "queueId" = %s, "userId" = %s, status = %s, "updatedAt" = now()
                WHERE id = %s
                RETURNING id, "companyId", "contactId", "queueId", "userId", status
                """,
                (ticket.queue_id, ticket.user_id, ticket.status, ticket.id),
            )
            row = await cur.fetchone()
        if not row:
            raise TicketNotFoundError(f"Ticket {ticket.id} not found")
        return self._row_to_ticket(row)

    # ------------------------------------------------------------------
    # Row converters

    def _row_to_ticket(self, row: Dict[str, Any]) -> schemas.Ticket:
        return schemas.Ticket(
            id=row["id"],
            company_id=row["companyId"],
            contact_id=row["contactId"],
            queue_id=row.get("queueId"),
            user_id=row.get("userId"),
            status=row.get("status") or "pending",
        )

    def _row_to_message(self, row: Dict[str, Any]) -> schemas.StoredMessage:
        return schemas.StoredMessage(
            id=str(row["id"]),
            ticket_id=row["ticketId"],
            body=row.get("body") or "",
            from_me=bool(row.get("fromMe")),
            media_type=row.get("mediaType") or "conversation",
            media_url=row.get("mediaUrl"),
            created_at=row["createdAt"],
        )


# ---------------------------------------------------------------------------
# In-memory repository (useful for testing and sandbox environments)


class InMemoryTicketStore(TicketStore):
    def __init__(self) -> None:
        self.tickets: Dict[int, schemas.Ticket] = {}
        self.contacts: Dict[int, schemas.Contact] = {}
        self.queues: List[schemas.Queue] = []
        self.tags: List[schemas.Tag] = []
        self.users: List[schemas.User] = []
        self.messages: Dict[int, List[schemas.StoredMessage]] = {}
        self.prompts: Dict[str, schemas.PromptOverride] = {}
        self.ticket_tags: Set[Tuple[int, int]] = set()
        self.contact_tags: Set[Tuple[int, int]] = set()
        self.notes: List[schemas.TicketNote] = []
        self.saved: List[schemas.Ticket] = []
        self._note_id_seq = 1

    async def get_ticket(self, ticket_id: int) -> Optional[schemas.Ticket]:
        ticket = self.tickets.get(ticket_id)
        return ticket.model_copy() if ticket else None

    async def get_contact(self, contact_id: int) -> Optional[schemas.Contact]:
        return self.contacts.get(contact_id)

    async def list_queues(self, company_id: int) -> List[schemas.Queue]:
        return [queue for queue in self.queues if queue.company_id == company_id]

    async def list_tags(self, company_id: int) -> List[schemas.Tag]:
        return [tag for tag in self.tags if tag.company_id == company_id]

    async def list_users(self, company_id: int) -> List[schemas.User]:
        return [user for user in self.users if user.company_id == company_id]

    async def list_messages(
        self,
        ticket_id: int,
        limit: int,
        *,
        media_types: Optional[Iterable[str]] = None,
    ) -> List[schemas.StoredMessage]:
        allowed = set(media_types) if media_types is not None else None
        messages = sorted(self.messages.get(ticket_id, []), key=lambda m: m.created_at)
        if allowed is not None:
            messages = [m for m in messages if m.media_type in allowed]
        return messages[-limit:] if limit > 0 else []

    async def find_prompt(self, name: str) -> Optional[schemas.PromptOverride]:
        return self.prompts.get(name)

    async def upsert_ticket_tag(self, ticket_id: int, tag_id: int) -> bool:
        key = (ticket_id, tag_id)
        if key in self.ticket_tags:
            return False
        self.ticket_tags.add(key)
        return True

    async def upsert_contact_tag(self, contact_id: int, tag_id: int) -> bool:
        key = (contact_id, tag_id)
        if key in self.contact_tags:
            return False
        self.contact_tags.add(key)
        return True

    async def create_note(
        self, ticket_id: int, contact_id: int, note: str, user_id: Optional[int] = None
    ) -> schemas.TicketNote:
        record = schemas.TicketNote(
            id=self._note_id_seq,
            ticket_id=ticket_id,
            contact_id=contact_id,
            note=note,
            user_id=user_id,
            created_at=datetime.now(timezone.utc),
        )
        self._note_id_seq += 1
        self.notes.append(record)
        return record

    async def save_ticket(self, ticket: schemas.Ticket) -> schemas.Ticket:
        if ticket.id not in self.tickets:
            raise TicketNotFoundError(f"Ticket {ticket.id} not found")
        self.tickets[ticket.id] = ticket.model_copy()
        self.saved.append(ticket.model_copy())
        return ticket
