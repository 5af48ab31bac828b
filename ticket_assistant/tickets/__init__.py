"""Ticketing collaborators used by the assistant."""

from . import schemas
from .repository import InMemoryTicketStore, PostgresTicketStore, TicketNotFoundError, TicketStore
from .service import TicketService

__all__ = [
    "InMemoryTicketStore",
    "PostgresTicketStore",
    "TicketNotFoundError",
    "TicketService",
    "TicketStore",
    "schemas",
]
