"""Base abstractions for reply output channels."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from ..tickets import schemas

#: Left-to-right mark prepended to every outgoing text, as the transport expects.
MESSAGE_PREFIX = "‎ "


class MessageTransport(Protocol):
    """Delivers messages to a conversation endpoint and records them on the ticket."""

    async def send_text(self, remote_jid: str, text: str) -> schemas.SentMessage: ...

    async def send_audio(
        self, remote_jid: str, path: str, *, mimetype: str, ptt: bool
    ) -> schemas.SentMessage: ...

    async def record_message(
        self, sent: schemas.SentMessage, ticket: schemas.Ticket, contact: schemas.Contact
    ) -> None: ...

    async def record_media(
        self, sent: schemas.SentMessage, ticket: schemas.Ticket, contact: schemas.Contact
    ) -> None: ...


class SpeechSynthesizer(Protocol):
    """Renders text into an audio file at ``base_path`` plus the format extension."""

    async def synthesize(
        self,
        text: str,
        base_path: str,
        *,
        voice_key: str | None,
        voice_region: str | None,
        voice: str,
        audio_format: str = "mp3",
    ) -> str: ...


@dataclass
class OutgoingReply:
    text: str
    remote_jid: str
    ticket: schemas.Ticket
    contact: schemas.Contact
    settings: schemas.AssistantSettings
    greeting: str | None = None


@dataclass
class DeliveryOutcome:
    channel: str
    delivered: bool = False
    sent: list[schemas.SentMessage] = field(default_factory=list)
    error: BaseException | None = None
    removed_paths: list[str] = field(default_factory=list)


class OutputChannel(ABC):
    """Abstract base class for the text and speech reply renderers."""

    #: Lowercase channel identifier used by the registry.
    channel_name: str

    #: Channels flagged as background are scheduled as a task by the caller.
    background: bool = False

    def __init__(
        self,
        *,
        transport: MessageTransport,
        synthesizer: SpeechSynthesizer | None = None,
        media_root: Path | None = None,
    ) -> None:
        self.transport = transport
        self.synthesizer = synthesizer
        self.media_root = media_root

    @abstractmethod
    async def deliver(self, reply: OutgoingReply) -> DeliveryOutcome:
        """Render and send ``reply``, followed by any queued greeting."""

    async def send_greeting(self, reply: OutgoingReply, outcome: DeliveryOutcome) -> None:
        if reply.greeting and reply.greeting.strip():
            sent = await self.transport.send_text(reply.remote_jid, f"{MESSAGE_PREFIX}{reply.greeting}")
            outcome.sent.append(sent)
