"""Turn orchestration: prompt, model calls, action resolution and delivery."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

from ..actions.resolver import ActionResolver
from ..agents.client import ModelClient, ModelReply
from ..agents.prompts import PromptResolver
from ..agents.providers import ModelSessionRegistry, ProviderRegistry
from ..agents.tools import TOOL_SPECS
from ..channels import channel_for_voice, get_channel
from ..channels.base import (
    DeliveryOutcome,
    MessageTransport,
    OutgoingReply,
    OutputChannel,
    SpeechSynthesizer,
)
from ..channels.speech import company_media_dir
from ..tickets import schemas
from ..tickets.service import TicketService
from .context import build_context
from .models import TurnResult, TurnState
from .sanitizer import sanitize

logger = logging.getLogger(__name__)

_PROVIDER = "openai"


class AssistantService:
    """Runs one assistant turn for an inbound customer message."""

    def __init__(
        self,
        tickets: TicketService,
        transport: MessageTransport,
        *,
        sessions: ModelSessionRegistry | None = None,
        providers: ProviderRegistry | None = None,
        synthesizer: SpeechSynthesizer | None = None,
        prompts: PromptResolver | None = None,
        media_root: Path | str | None = None,
    ) -> None:
        self._tickets = tickets
        self._transport = transport
        self._sessions = sessions if sessions is not None else ModelSessionRegistry()
        self._providers = providers if providers is not None else ProviderRegistry()
        self._synthesizer = synthesizer
        self._prompts = prompts if prompts is not None else PromptResolver(tickets.store)
        self._media_root = Path(media_root or os.getenv("MEDIA_ROOT", "public"))
        self._pending: set[asyncio.Task[DeliveryOutcome]] = set()

    @property
    def tickets(self) -> TicketService:
        return self._tickets

    # ------------------------------------------------------------------
    # Turn processing

    async def handle_turn(
        self,
        settings: schemas.AssistantSettings | None,
        inbound: schemas.InboundMessage,
        ticket: schemas.Ticket,
        contact: schemas.Contact,
    ) -> TurnResult | None:
        """Process ``inbound`` for ``ticket``; returns ``None`` when the turn is skipped."""

        reason = self._skip_reason(settings, inbound, contact)
        if reason is not None:
            logger.debug(
                "Skipping turn for ticket %s: %s", ticket.id, reason, extra={"ticket_id": ticket.id}
            )
            return None

        result = TurnResult(ticket_id=ticket.id, channel=channel_for_voice(settings.voice))
        prompt = await self._prompts.resolve(settings)
        snapshot = await self._tickets.snapshot(ticket.company_id)
        history = await self._tickets.store.list_messages(
            ticket.id, settings.max_messages + 1, media_types=schemas.TEXT_MEDIA_TYPES
        )
        credentials = self._providers.get_credentials(_PROVIDER, api_key=settings.api_key)
        session = self._sessions.acquire(ticket.id, credentials)

        inbound_text = inbound.body
        if inbound.is_audio:
            inbound_text = await session.transcribe(self.media_path(ticket.company_id, inbound.media_url))
            logger.info(
                "Transcribed audio message %s for ticket %s",
                inbound.id,
                ticket.id,
                extra={"ticket_id": ticket.id},
            )

        context = build_context(contact, history, inbound, inbound_text, snapshot, settings, prompt)
        result.escalated = context.escalate
        result.state = TurnState.PROMPT_BUILT
        messages = context.to_prompt_messages()

        resolver = ActionResolver(
            self._tickets, ticket, contact, snapshot, tag_contact=inbound.is_audio
        )
        first = await self._complete(session, messages, settings)
        result.state = TurnState.INVOKED
        reply_text = first.text

        if first.tool_calls:
            result.tool_results = await resolver.run_tool_calls(first.tool_calls)
            result.state = TurnState.TOOLS_EXECUTED
            messages.append(first.as_assistant_message())
            messages.extend(item.as_message() for item in result.tool_results)
            second = await self._complete(session, messages, settings)
            result.state = TurnState.SECOND_CALL_ISSUED
            if second.tool_calls:
                logger.info(
                    "Ignoring %d tool call(s) from follow-up completion for ticket %s",
                    len(second.tool_calls),
                    ticket.id,
                    extra={"ticket_id": ticket.id},
                )
            reply_text = second.text

        if inbound.is_audio:
            scanned = first.text if reply_text == first.text else f"{first.text}\n{reply_text}"
            await resolver.resolve_fallback(scanned)
            reply_text = resolver.strip_directives(reply_text)

        await resolver.commit_notes()
        result.resolved = list(resolver.resolved)
        result.greeting = resolver.greeting
        result.state = TurnState.RESOLVED

        result.reply = sanitize(reply_text)
        result.state = TurnState.SANITIZED

        await self._deliver(
            result,
            OutgoingReply(
                text=result.reply,
                remote_jid=inbound.remote_jid,
                ticket=ticket,
                contact=contact,
                settings=settings,
                greeting=resolver.greeting,
            ),
        )
        logger.info(
            "Turn finished for ticket %s: %d action(s), %d tool call(s), channel %s",
            ticket.id,
            len(result.resolved),
            len(result.tool_results),
            result.channel,
            extra={"ticket_id": ticket.id},
        )
        return result

    async def drain(self) -> list[DeliveryOutcome]:
        """Wait for background deliveries still in flight."""
        if not self._pending:
            return []
        return list(await asyncio.gather(*list(self._pending)))

    def media_path(self, company_id: int, media_url: str | None) -> Path:
        return company_media_dir(self._media_root, company_id) / os.path.basename(media_url or "")

    # ------------------------------------------------------------------
    # Helpers

    @staticmethod
    def _skip_reason(
        settings: schemas.AssistantSettings | None,
        inbound: schemas.InboundMessage,
        contact: schemas.Contact,
    ) -> str | None:
        if settings is None:
            return "no assistant settings"
        if contact.disable_bot:
            return "bot disabled for contact"
        if inbound.stub_type is not None:
            return "stub message"
        if inbound.is_audio:
            return None if inbound.media_url else "audio message without media"
        if not inbound.body.strip():
            return "empty body"
        return None

    @staticmethod
    async def _complete(
        session: ModelClient, messages: list[dict[str, Any]], settings: schemas.AssistantSettings
    ) -> ModelReply:
        return await session.complete(
            messages,
            TOOL_SPECS,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
        )

    async def _deliver(self, result: TurnResult, reply: OutgoingReply) -> None:
        channel = get_channel(result.channel)(
            transport=self._transport,
            synthesizer=self._synthesizer,
            media_root=self._media_root,
        )
        if channel.background:
            result.state = TurnState.DELIVERY_SCHEDULED
            result.delivery_task = self._schedule(
                self._deliver_in_background(channel, reply, result),
                name=f"speech-delivery-{result.ticket_id}",
            )
        else:
            result.delivery = await channel.deliver(reply)
            result.state = TurnState.DELIVERED

    @staticmethod
    async def _deliver_in_background(
        channel: OutputChannel, reply: OutgoingReply, result: TurnResult
    ) -> DeliveryOutcome:
        outcome = await channel.deliver(reply)
        result.delivery = outcome
        if outcome.error is None:
            result.state = TurnState.DELIVERED
        return outcome

    def _schedule(
        self, coro: Coroutine[Any, Any, DeliveryOutcome], *, name: str
    ) -> asyncio.Task[DeliveryOutcome]:
        task = asyncio.create_task(coro, name=name)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task
