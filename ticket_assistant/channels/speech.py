"""Synthesized speech reply channel.

Delivery runs in a background task scheduled by the caller, so failures here
are logged and reported through :class:`DeliveryOutcome` instead of being
raised into the conversation turn.
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable
from pathlib import Path

from .base import DeliveryOutcome, OutgoingReply, OutputChannel

logger = logging.getLogger(__name__)

AUDIO_MIMETYPE = "audio/mpeg"
_CLEANUP_SUFFIXES = (".mp3", ".wav")
_UNSPEAKABLE = re.compile(r"[^a-zA-Z0-9áéíóúÁÉÍÓÚâêîôûÂÊÎÔÛãõÃÕçÇ!?.,;:\s]")


def speakable_text(text: str) -> str:
    """Drop characters the synthesizer would read out literally."""
    return _UNSPEAKABLE.sub("", text or "")


def company_media_dir(media_root: Path, company_id: int) -> Path:
    return Path(media_root) / f"company{company_id}"


class SpeechOutputChannel(OutputChannel):
    channel_name = "speech"
    background = True

    def __init__(self, *args, clock: Callable[[], float] = time.time, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._clock = clock

    def _base_path(self, reply: OutgoingReply) -> Path:
        if self.media_root is None:
            raise RuntimeError("Speech output requires a media root")
        stamp = int(self._clock() * 1000)
        return company_media_dir(self.media_root, reply.ticket.company_id) / f"{reply.ticket.id}_{stamp}"

    async def deliver(self, reply: OutgoingReply) -> DeliveryOutcome:
        outcome = DeliveryOutcome(channel=self.channel_name)
        text = speakable_text(reply.text).strip()
        base_path: Path | None = None
        try:
            if text:
                if self.synthesizer is None:
                    raise RuntimeError("Speech output requires a synthesizer")
                base_path = self._base_path(reply)
                base_path.parent.mkdir(parents=True, exist_ok=True)
                await self.synthesizer.synthesize(
                    text,
                    str(base_path),
                    voice_key=reply.settings.voice_key,
                    voice_region=reply.settings.voice_region,
                    voice=reply.settings.voice,
                    audio_format="mp3",
                )
                sent = await self.transport.send_audio(
                    reply.remote_jid, f"{base_path}.mp3", mimetype=AUDIO_MIMETYPE, ptt=True
                )
                outcome.sent.append(sent)
                outcome.delivered = True
                await self.transport.record_media(sent, reply.ticket, reply.contact)
        except Exception as exc:
            logger.exception("Speech delivery failed for ticket %s", reply.ticket.id)
            outcome.error = exc
        finally:
            if base_path is not None:
                outcome.removed_paths = self._cleanup(base_path)

        if outcome.delivered or not text:
            try:
                await self.send_greeting(reply, outcome)
            except Exception as exc:
                logger.exception("Greeting delivery failed for ticket %s", reply.ticket.id)
                outcome.error = outcome.error or exc
        return outcome

    def _cleanup(self, base_path: Path) -> list[str]:
        removed = []
        for suffix in _CLEANUP_SUFFIXES:
            path = Path(f"{base_path}{suffix}")
            try:
                path.unlink()
            except FileNotFoundError:
                continue
            except OSError:
                logger.warning("Could not remove synthesized audio %s", path, exc_info=True)
                continue
            removed.append(str(path))
        return removed
