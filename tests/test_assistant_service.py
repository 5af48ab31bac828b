"""End-to-end turn tests for :mod:`ticket_assistant.conversations.service`."""

import asyncio
import logging
import pathlib

import pytest
from conftest import (
    CANCEL_GREETING,
    FakeModelClient,
    FakeSynthesizer,
    FakeTransport,
    make_engine,
    stored,
    tool_call,
)

from ticket_assistant.actions.models import ActionKind
from ticket_assistant.agents.client import ModelInvocationError, ModelReply
from ticket_assistant.agents.prompts import ESCALATION_CLAUSE
from ticket_assistant.agents.providers import ModelSessionRegistry
from ticket_assistant.channels import MESSAGE_PREFIX
from ticket_assistant.conversations.models import TurnState
from ticket_assistant.conversations.service import AssistantService
from ticket_assistant.tickets import schemas

REMOTE_JID = "5511999990000@s.whatsapp.net"


def _text(body, message_id="in-1"):
    return schemas.InboundMessage(id=message_id, body=body, remote_jid=REMOTE_JID)


def _audio(media_url="https://cdn.example/media/audio-123.ogg"):
    return schemas.InboundMessage(id="in-audio", kind="audio", media_url=media_url, remote_jid=REMOTE_JID)


def test_text_turn_transfers_queue_and_sends_greeting_after_reply(store, tickets, ticket, contact, tmp_path):
    store.messages[100] = [stored(100, 0, "oi"), stored(100, 1, "Olá Maria, como posso ajudar?", from_me=True)]
    client = FakeModelClient(
        [
            ModelReply(tool_calls=[tool_call("transfer_queue", '{"queue": "Cancelamentos"}')]),
            ModelReply(text='Certo, Maria! tag: "VIP"\nVou te transferir.'),
        ]
    )
    transport = FakeTransport()
    engine = make_engine(tickets, client, transport, media_root=tmp_path)
    settings = schemas.AssistantSettings(name="atendimento", prompt="Base.", maxMessages=5)

    result = asyncio.run(engine.handle_turn(settings, _text("quero cancelar meu plano"), ticket, contact))

    assert result.state is TurnState.DELIVERED
    assert result.escalated is True
    assert ESCALATION_CLAUSE in client.calls[0]["messages"][0]["content"]
    assert client.calls[0]["tools"] == ["transfer_queue", "add_tag", "transfer_user"]
    assert client.calls[0]["max_tokens"] == 100

    follow_up = client.calls[1]["messages"]
    assert follow_up[-2]["tool_calls"][0]["function"]["name"] == "transfer_queue"
    assert follow_up[-1]["role"] == "tool"
    assert follow_up[-1]["tool_call_id"] == "call_transfer_queue"

    assert store.tickets[100].queue_id == 2
    assert [(a.kind, a.target) for a in result.resolved] == [(ActionKind.TRANSFER_QUEUE, "Cancelamentos")]
    assert result.reply == "Certo, Maria! Vou te transferir."
    assert [m.body for m in transport.sent] == [
        f"{MESSAGE_PREFIX}Certo, Maria! Vou te transferir.",
        f"{MESSAGE_PREFIX}{CANCEL_GREETING}",
    ]
    assert result.delivery.delivered


def test_text_turn_without_tools_makes_a_single_call(store, tickets, ticket, contact, settings):
    client = FakeModelClient([ModelReply(text="Pode me contar mais sobre o problema?\nFila: Financeiro")])
    transport = FakeTransport()
    engine = make_engine(tickets, client, transport)

    result = asyncio.run(engine.handle_turn(settings, _text("preciso de ajuda"), ticket, contact))

    assert len(client.calls) == 1
    assert result.state is TurnState.DELIVERED
    assert result.escalated is False
    assert result.resolved == []
    assert store.tickets[100].queue_id == 1


def test_tool_calls_from_follow_up_completion_are_ignored(store, tickets, ticket, contact, settings):
    client = FakeModelClient(
        [
            ModelReply(tool_calls=[tool_call("add_tag", '{"tags": ["VIP"], "note": "Cliente VIP"}')]),
            ModelReply(text="Anotado!", tool_calls=[tool_call("transfer_user", '{"user": "Ana"}')]),
        ]
    )
    engine = make_engine(tickets, client, FakeTransport())

    result = asyncio.run(engine.handle_turn(settings, _text("sou cliente antigo"), ticket, contact))

    assert store.tickets[100].user_id is None
    assert store.ticket_tags == {(100, 1)}
    assert store.contact_tags == set()
    assert [n.note for n in store.notes] == ["Cliente VIP"]
    assert [a.kind for a in result.resolved] == [ActionKind.ADD_TAG, ActionKind.ADD_NOTE]


def test_audio_turn_uses_pattern_fallback_and_speech(store, tickets, contact, tmp_path):
    store.tickets[100].queue_id = None
    ticket = store.tickets[100].model_copy()
    client = FakeModelClient(
        [ModelReply(text="Vou verificar sua conexão.\nFila: Suporte Técnico\nTag: VIP")],
        transcription="minha internet caiu",
    )
    transport = FakeTransport()
    synthesizer = FakeSynthesizer(write_wav=True)
    engine = make_engine(tickets, client, transport, synthesizer=synthesizer, media_root=tmp_path)
    settings = schemas.AssistantSettings(name="atendimento", voice="pt-BR-FranciscaNeural")

    async def scenario():
        result = await engine.handle_turn(settings, _audio(), ticket, contact)
        scheduled_state = result.state
        outcome = await result.delivery_task
        return result, scheduled_state, outcome

    result, scheduled_state, outcome = asyncio.run(scenario())

    assert scheduled_state is TurnState.DELIVERY_SCHEDULED
    assert result.state is TurnState.DELIVERED
    assert client.transcribed == [tmp_path / "company1" / "audio-123.ogg"]
    assert client.calls[0]["messages"][-1] == {"role": "user", "content": "minha internet caiu"}
    assert store.tickets[100].queue_id == 1
    assert store.ticket_tags == {(100, 1)}
    assert store.contact_tags == {(10, 1)}
    assert {a.source for a in result.resolved} == {"pattern"}
    assert result.reply == "Vou verificar sua conexão."
    assert result.channel == "speech"
    assert synthesizer.calls[0]["text"] == "Vou verificar sua conexão."
    assert outcome.delivered
    assert outcome.removed_paths
    assert not any(pathlib.Path(path).exists() for path in outcome.removed_paths)


def test_audio_turn_tool_call_beats_fallback_for_same_kind(store, tickets, ticket, contact, tmp_path):
    client = FakeModelClient(
        [
            ModelReply(
                text="Fila: Financeiro",
                tool_calls=[tool_call("transfer_queue", '{"queue": "Cancelamentos"}')],
            ),
            ModelReply(text="Tudo certo."),
        ],
        transcription="quero cancelar",
    )
    engine = make_engine(tickets, client, FakeTransport(), synthesizer=FakeSynthesizer(), media_root=tmp_path)
    settings = schemas.AssistantSettings(name="atendimento", voice="pt-BR-FranciscaNeural")

    async def scenario():
        result = await engine.handle_turn(settings, _audio(), ticket, contact)
        await engine.drain()
        return result

    result = asyncio.run(scenario())

    assert store.tickets[100].queue_id == 2
    assert [(a.target, a.source) for a in result.resolved] == [("Cancelamentos", "tool_call")]


def test_model_failure_propagates_after_committed_actions(store, tickets, ticket, contact, settings):
    client = FakeModelClient(
        [
            ModelReply(tool_calls=[tool_call("transfer_queue", '{"queue": "Cancelamentos"}')]),
            ModelInvocationError("Chat completion failed: timeout"),
        ]
    )
    transport = FakeTransport()
    engine = make_engine(tickets, client, transport)

    with pytest.raises(ModelInvocationError):
        asyncio.run(engine.handle_turn(settings, _text("cancelar"), ticket, contact))

    assert store.tickets[100].queue_id == 2
    assert transport.sent == []


def test_transport_failure_propagates(tickets, ticket, contact, settings):
    client = FakeModelClient([ModelReply(text="Olá!")])
    engine = make_engine(tickets, client, FakeTransport(fail_send=True))

    with pytest.raises(ConnectionError):
        asyncio.run(engine.handle_turn(settings, _text("oi"), ticket, contact))


@pytest.mark.parametrize(
    "case",
    ["no_settings", "bot_disabled", "empty_body", "stub", "audio_without_media"],
)
def test_turn_is_skipped_without_side_effects(case, store, tickets, ticket, contact, settings):
    inbound = _text("oi")
    if case == "no_settings":
        settings = None
    elif case == "bot_disabled":
        contact = contact.model_copy(update={"disable_bot": True})
    elif case == "empty_body":
        inbound = _text("   ")
    elif case == "stub":
        inbound = inbound.model_copy(update={"stub_type": 2})
    else:
        inbound = _audio(media_url=None)
    client = FakeModelClient([ModelReply(text="nunca enviado")])
    transport = FakeTransport()
    engine = make_engine(tickets, client, transport)

    assert asyncio.run(engine.handle_turn(settings, inbound, ticket, contact)) is None
    assert client.calls == []
    assert transport.sent == []
    assert store.saved == []


def test_prompt_override_replaces_configured_prompt(store, tickets, ticket, contact, settings):
    store.prompts["atendimento"] = schemas.PromptOverride(name="atendimento", prompt="Prompt da base.")
    client = FakeModelClient([ModelReply(text="Oi!")])
    engine = make_engine(tickets, client, FakeTransport())

    asyncio.run(engine.handle_turn(settings, _text("oi"), ticket, contact))

    directive = client.calls[0]["messages"][0]["content"]
    assert directive.rstrip().endswith("Prompt da base.")
    assert settings.prompt not in directive


def test_prompt_lookup_failure_falls_back_to_settings(store, tickets, ticket, contact, settings, caplog, monkeypatch):
    async def broken(name):
        raise ConnectionError("prompts table unavailable")

    monkeypatch.setattr(store, "find_prompt", broken)
    client = FakeModelClient([ModelReply(text="Oi!")])
    engine = make_engine(tickets, client, FakeTransport())

    with caplog.at_level(logging.WARNING, logger="ticket_assistant"):
        asyncio.run(engine.handle_turn(settings, _text("oi"), ticket, contact))

    assert client.calls[0]["messages"][0]["content"].rstrip().endswith(settings.prompt)
    assert any("Prompt lookup" in record.getMessage() for record in caplog.records)


def test_session_is_reused_across_turns_of_a_ticket(tickets, ticket, contact, settings):
    created = []
    client = FakeModelClient([ModelReply(text="Um"), ModelReply(text="Dois")])

    def factory(credentials):
        created.append(credentials)
        return client

    engine = AssistantService(tickets, FakeTransport(), sessions=ModelSessionRegistry(factory=factory))
    asyncio.run(engine.handle_turn(settings, _text("oi", "a"), ticket, contact))
    asyncio.run(engine.handle_turn(settings, _text("tudo bem?", "b"), ticket, contact))

    assert len(created) == 1
    assert len(client.calls) == 2


def test_engine_uses_the_session_registry_it_was_given(tickets, ticket, contact, settings):
    client = FakeModelClient([ModelReply(text="Olá!")])
    registry = ModelSessionRegistry(factory=lambda credentials: client)
    engine = AssistantService(tickets, FakeTransport(), sessions=registry)

    asyncio.run(engine.handle_turn(settings, _text("oi"), ticket, contact))

    assert 100 in registry
    assert len(client.calls) == 1


def test_audio_turn_noop_tool_call_falls_back_to_reply_directive(store, tickets, ticket, contact, tmp_path):
    client = FakeModelClient(
        [
            ModelReply(
                text="Fila: Financeiro",
                tool_calls=[tool_call("transfer_queue", '{"queue": "Suporte Técnico"}')],
            ),
            ModelReply(text="Vou te encaminhar ao financeiro."),
        ],
        transcription="dúvida sobre boleto",
    )
    engine = make_engine(tickets, client, FakeTransport(), synthesizer=FakeSynthesizer(), media_root=tmp_path)
    settings = schemas.AssistantSettings(name="atendimento", voice="pt-BR-FranciscaNeural")

    async def scenario():
        result = await engine.handle_turn(settings, _audio(), ticket, contact)
        await engine.drain()
        return result

    result = asyncio.run(scenario())

    assert result.tool_results[0].result["success"] is False
    assert store.tickets[100].queue_id == 3
    assert [(a.target, a.source) for a in result.resolved] == [("Financeiro", "pattern")]


def test_audio_turn_inline_directive_is_applied_and_removed(store, tickets, ticket, contact, tmp_path):
    client = FakeModelClient(
        [ModelReply(text="Vou te transferir. Fila: Financeiro")],
        transcription="preciso da segunda via",
    )
    synthesizer = FakeSynthesizer()
    engine = make_engine(tickets, client, FakeTransport(), synthesizer=synthesizer, media_root=tmp_path)
    settings = schemas.AssistantSettings(name="atendimento", voice="pt-BR-FranciscaNeural")

    async def scenario():
        result = await engine.handle_turn(settings, _audio(), ticket, contact)
        await engine.drain()
        return result

    result = asyncio.run(scenario())

    assert store.tickets[100].queue_id == 3
    assert result.reply == "Vou te transferir."
    assert "Fila" not in synthesizer.calls[0]["text"]


def test_failed_speech_delivery_never_reports_delivered(tickets, ticket, contact, tmp_path):
    client = FakeModelClient([ModelReply(text="Um momento.")], transcription="alô")
    synthesizer = FakeSynthesizer(error=RuntimeError("tts offline"))
    engine = make_engine(tickets, client, FakeTransport(), synthesizer=synthesizer, media_root=tmp_path)
    settings = schemas.AssistantSettings(name="atendimento", voice="pt-BR-FranciscaNeural")

    async def scenario():
        result = await engine.handle_turn(settings, _audio(), ticket, contact)
        outcome = await result.delivery_task
        return result, outcome

    result, outcome = asyncio.run(scenario())

    assert outcome.error is not None
    assert result.delivery is outcome
    assert result.state is TurnState.DELIVERY_SCHEDULED
