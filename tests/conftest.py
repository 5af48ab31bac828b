import copy
import pathlib
import sys
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from ticket_assistant.agents.client import ModelReply, ToolCall
from ticket_assistant.agents.providers import ModelSessionRegistry
from ticket_assistant.conversations.service import AssistantService
from ticket_assistant.tickets import InMemoryTicketStore, TicketService, schemas

COMPANY_ID = 1
CANCEL_GREETING = "Olá! Você foi direcionado para a fila de Cancelamentos."


class FakeModelClient:
    """Scripted model: returns queued replies in order and records every prompt."""

    def __init__(self, replies=None, *, transcription="", error=None):
        self.replies = list(replies or [])
        self.transcription = transcription
        self.error = error
        self.calls: list[dict] = []
        self.transcribed: list[pathlib.Path] = []

    async def complete(self, messages, tools, *, max_tokens, temperature):
        self.calls.append(
            {
                "messages": copy.deepcopy(list(messages)),
                "tools": [spec["function"]["name"] for spec in tools],
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if self.error is not None:
            raise self.error
        if not self.replies:
            return ModelReply()
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def transcribe(self, media_path):
        self.transcribed.append(pathlib.Path(media_path))
        if self.error is not None:
            raise self.error
        return self.transcription


class FakeTransport:
    def __init__(self, *, fail_send=False, fail_record=False):
        self.fail_send = fail_send
        self.fail_record = fail_record
        self.sent: list[schemas.SentMessage] = []
        self.recorded: list[schemas.SentMessage] = []
        self.recorded_media: list[schemas.SentMessage] = []
        self.audio_options: list[dict] = []

    def _receipt(self, remote_jid, kind, body=None, media_path=None):
        receipt = schemas.SentMessage(
            id=f"out-{len(self.sent) + 1}",
            remote_jid=remote_jid,
            kind=kind,
            body=body,
            media_path=media_path,
        )
        self.sent.append(receipt)
        return receipt

    async def send_text(self, remote_jid, text):
        if self.fail_send:
            raise ConnectionError("transport offline")
        return self._receipt(remote_jid, "text", body=text)

    async def send_audio(self, remote_jid, path, *, mimetype, ptt):
        if self.fail_send:
            raise ConnectionError("transport offline")
        self.audio_options.append({"path": path, "mimetype": mimetype, "ptt": ptt})
        return self._receipt(remote_jid, "audio", media_path=path)

    async def record_message(self, sent, ticket, contact):
        if self.fail_record:
            raise RuntimeError("message verification failed")
        self.recorded.append(sent)

    async def record_media(self, sent, ticket, contact):
        if self.fail_record:
            raise RuntimeError("media verification failed")
        self.recorded_media.append(sent)


class FakeSynthesizer:
    """Writes a placeholder audio file (and optionally a .wav sibling)."""

    def __init__(self, *, write_wav=False, error=None):
        self.write_wav = write_wav
        self.error = error
        self.calls: list[dict] = []

    async def synthesize(self, text, base_path, *, voice_key, voice_region, voice, audio_format="mp3"):
        self.calls.append({"text": text, "base_path": base_path, "voice": voice})
        if self.error is not None:
            raise self.error
        path = pathlib.Path(f"{base_path}.{audio_format}")
        path.write_bytes(b"ID3")
        if self.write_wav:
            pathlib.Path(f"{base_path}.wav").write_bytes(b"RIFF")
        return str(path)


@dataclass
class RecordingNotifier:
    events: list[tuple] = field(default_factory=list)

    async def emit(self, channel, event, payload):
        self.events.append((channel, event, payload))


def tool_call(name, arguments, call_id=None):
    return ToolCall(id=call_id or f"call_{name}", name=name, arguments=arguments)


def stored(ticket_id, index, body, *, from_me=False, media_type="conversation"):
    base = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    return schemas.StoredMessage(
        id=f"m{index}",
        ticket_id=ticket_id,
        body=body,
        from_me=from_me,
        media_type=media_type,
        created_at=base + timedelta(minutes=index),
    )


@pytest.fixture
def store():
    store = InMemoryTicketStore()
    store.queues = [
        schemas.Queue(id=1, company_id=COMPANY_ID, name="Suporte Técnico"),
        schemas.Queue(id=2, company_id=COMPANY_ID, name="Cancelamentos", greeting_message=CANCEL_GREETING),
        schemas.Queue(id=3, company_id=COMPANY_ID, name="Financeiro", greeting_message="  "),
    ]
    store.tags = [
        schemas.Tag(id=1, company_id=COMPANY_ID, name="VIP"),
        schemas.Tag(id=2, company_id=COMPANY_ID, name="Urgente"),
    ]
    store.users = [
        schemas.User(id=1, company_id=COMPANY_ID, name="Ana"),
        schemas.User(id=2, company_id=COMPANY_ID, name="Bruno"),
    ]
    store.contacts[10] = schemas.Contact(id=10, company_id=COMPANY_ID, name="Maria Clara", number="5511999990000")
    store.tickets[100] = schemas.Ticket(id=100, company_id=COMPANY_ID, contact_id=10, queue_id=1)
    return store


@pytest.fixture
def ticket(store):
    return store.tickets[100].model_copy()


@pytest.fixture
def contact(store):
    return store.contacts[10]


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def tickets(store, notifier):
    return TicketService(store, notifier=notifier)


@pytest.fixture
def settings():
    return schemas.AssistantSettings(name="atendimento", prompt="Você é o assistente da Loja.", maxMessages=10)


def make_engine(tickets, client, transport, *, synthesizer=None, media_root=None):
    return AssistantService(
        tickets,
        transport,
        sessions=ModelSessionRegistry(factory=lambda credentials: client),
        synthesizer=synthesizer,
        media_root=media_root,
    )
