"""Plain text reply channel."""

from __future__ import annotations

from .base import MESSAGE_PREFIX, DeliveryOutcome, OutgoingReply, OutputChannel


class TextOutputChannel(OutputChannel):
    channel_name = "text"

    async def deliver(self, reply: OutgoingReply) -> DeliveryOutcome:
        outcome = DeliveryOutcome(channel=self.channel_name)
        if reply.text:
            sent = await self.transport.send_text(reply.remote_jid, f"{MESSAGE_PREFIX}{reply.text}")
            await self.transport.record_message(sent, reply.ticket, reply.contact)
            outcome.sent.append(sent)
            outcome.delivered = True
        await self.send_greeting(reply, outcome)
        return outcome
