"""Pydantic schemas for the ticketing records the assistant reads and mutates."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

TEXT_MEDIA_TYPES = frozenset({"conversation", "extendedTextMessage"})


class Queue(BaseModel):
    id: int
    company_id: int
    name: str
    greeting_message: str | None = None


class Tag(BaseModel):
    id: int
    company_id: int
    name: str


class User(BaseModel):
    id: int
    company_id: int
    name: str


class Contact(BaseModel):
    id: int
    company_id: int
    name: str | None = None
    number: str | None = None
    disable_bot: bool = False


class Ticket(BaseModel):
    """Mutable view of a ticket; ``queue_id``/``user_id`` change on transfer."""

    id: int
    company_id: int
    contact_id: int
    queue_id: int | None = None
    user_id: int | None = None
    status: str = "pending"


class StoredMessage(BaseModel):
    """A message already persisted against the ticket."""

    id: str
    ticket_id: int
    body: str = ""
    from_me: bool = False
    media_type: str = "conversation"
    media_url: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_text(self) -> bool:
        return self.media_type in TEXT_MEDIA_TYPES


class TicketNote(BaseModel):
    id: int
    ticket_id: int
    contact_id: int
    note: str
    user_id: int | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class PromptOverride(BaseModel):
    name: str
    prompt: str


class AssistantSettings(BaseModel):
    """Per-integration assistant configuration.

    Accepts the camelCase keys used by the integration settings table as well
    as the snake_case attribute names.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    prompt: str = ""
    voice: str = "text"
    voice_key: str | None = Field(default=None, alias="voiceKey")
    voice_region: str | None = Field(default=None, alias="voiceRegion")
    max_tokens: int = Field(default=100, alias="maxTokens")
    temperature: float = 1.0
    api_key: str | None = Field(default=None, alias="apiKey")
    queue_id: int | None = Field(default=None, alias="queueId")
    max_messages: int = Field(default=10, ge=1, alias="maxMessages")


class InboundMessage(BaseModel):
    """The customer message that triggered the turn."""

    id: str
    kind: str = "text"
    body: str = ""
    remote_jid: str
    media_url: str | None = None
    stub_type: int | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_audio(self) -> bool:
        return self.kind == "audio"


class SentMessage(BaseModel):
    """Receipt returned by the transport after delivering a message."""

    id: str
    remote_jid: str
    kind: str = "text"
    body: str | None = None
    media_path: str | None = None


class EntitySnapshot(BaseModel):
    """Queues, tags and users of a company, fetched once per turn."""

    queues: list[Queue] = Field(default_factory=list)
    tags: list[Tag] = Field(default_factory=list)
    users: list[User] = Field(default_factory=list)

    @property
    def queue_names(self) -> list[str]:
        return [queue.name for queue in self.queues]

    @property
    def tag_names(self) -> list[str]:
        return [tag.name for tag in self.tags]

    @property
    def user_names(self) -> list[str]:
        return [user.name for user in self.users]

    def find_queue(self, name: str, *, ignore_case: bool = False) -> Queue | None:
        return _find_named(self.queues, name, ignore_case)

    def find_user(self, name: str, *, ignore_case: bool = False) -> User | None:
        return _find_named(self.users, name, ignore_case)

    def find_tags(self, names: list[str]) -> list[Tag]:
        wanted = set(names)
        return [tag for tag in self.tags if tag.name in wanted]


def _find_named(items, name: str, ignore_case: bool):
    target = (name or "").strip()
    if not target:
        return None
    for item in items:
        if item.name == target:
            return item
    if ignore_case:
        folded = target.casefold()
        for item in items:
            if item.name.casefold() == folded:
                return item
    return None
