"""Output channel registry for text and speech replies."""

from __future__ import annotations

from .base import (
    MESSAGE_PREFIX,
    DeliveryOutcome,
    MessageTransport,
    OutgoingReply,
    OutputChannel,
    SpeechSynthesizer,
)
from .speech import SpeechOutputChannel
from .text import TextOutputChannel

#: Voice settings that select plain text output instead of synthesis.
TEXT_VOICES = frozenset({"text", "texto"})

_REGISTRY: dict[str, type[OutputChannel]] = {}


def register_channel(channel: type[OutputChannel]) -> None:
    """Register an output channel class in the global registry."""
    _REGISTRY[channel.channel_name] = channel


def get_channel(name: str) -> type[OutputChannel]:
    """Retrieve a channel class for ``name`` or raise ``KeyError``."""
    normalized = name.lower()
    if normalized not in _REGISTRY:
        raise KeyError(f"Output channel '{name}' is not configured")
    return _REGISTRY[normalized]


def get_output_channel(voice: str | None) -> type[OutputChannel]:
    """Return the channel class that renders replies for ``voice``."""
    return get_channel(channel_for_voice(voice))


def channel_for_voice(voice: str | None) -> str:
    """Map an assistant voice setting to a registered channel name."""
    if not voice or voice.strip().lower() in TEXT_VOICES:
        return TextOutputChannel.channel_name
    return SpeechOutputChannel.channel_name


# Pre-register built-in channels
register_channel(TextOutputChannel)
register_channel(SpeechOutputChannel)

__all__ = [
    "MESSAGE_PREFIX",
    "TEXT_VOICES",
    "DeliveryOutcome",
    "MessageTransport",
    "OutgoingReply",
    "OutputChannel",
    "SpeechOutputChannel",
    "SpeechSynthesizer",
    "TextOutputChannel",
    "channel_for_voice",
    "get_channel",
    "get_output_channel",
    "register_channel",
]
