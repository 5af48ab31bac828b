"""Chat-completion and transcription capability used by the assistant."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, Sequence

from openai import AsyncOpenAI, OpenAIError

logger = logging.getLogger(__name__)

_DEFAULT_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
_DEFAULT_TRANSCRIPTION_MODEL = os.getenv("OPENAI_TRANSCRIPTION_MODEL", "whisper-1")


class ModelInvocationError(RuntimeError):
    """Raised when the model provider fails to answer a completion or transcription."""


@dataclass(frozen=True)
class ToolCall:
    """A function invocation requested by the model; ``arguments`` is raw JSON."""

    id: str
    name: str
    arguments: str

    def as_message_entry(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


@dataclass
class ModelReply:
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)

    def as_assistant_message(self) -> dict[str, Any]:
        message: dict[str, Any] = {"role": "assistant", "content": self.text or None}
        if self.tool_calls:
            message["tool_calls"] = [call.as_message_entry() for call in self.tool_calls]
        return message


class ModelClient(Protocol):
    """Capability interface; implementations must raise on provider failure."""

    async def complete(
        self,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[dict[str, Any]],
        *,
        max_tokens: int,
        temperature: float,
    ) -> ModelReply: ...

    async def transcribe(self, media_path: Path) -> str: ...


class OpenAIModelClient:
    """:class:`ModelClient` backed by ``openai.AsyncOpenAI``."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str | None = None,
        transcription_model: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._client = client or AsyncOpenAI(api_key=api_key)
        self.model = model or _DEFAULT_MODEL
        self.transcription_model = transcription_model or _DEFAULT_TRANSCRIPTION_MODEL

    async def complete(
        self,
        messages: Sequence[dict[str, Any]],
        tools: Sequence[dict[str, Any]],
        *,
        max_tokens: int,
        temperature: float,
    ) -> ModelReply:
        try:
            completion = await self._client.chat.completions.create(
                model=self.model,
                messages=list(messages),
                tools=list(tools),
                tool_choice="auto",
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except OpenAIError as exc:
            raise ModelInvocationError(f"Chat completion failed: {exc}") from exc
        if not completion.choices:
            return ModelReply()
        message = completion.choices[0].message
        calls = [
            ToolCall(id=call.id, name=call.function.name, arguments=call.function.arguments or "{}")
            for call in (message.tool_calls or [])
            if call.type == "function"
        ]
        return ModelReply(text=message.content or "", tool_calls=calls)

    async def transcribe(self, media_path: Path) -> str:
        with open(media_path, "rb") as media:
            try:
                transcription = await self._client.audio.transcriptions.create(
                    model=self.transcription_model,
                    file=media,
                )
            except OpenAIError as exc:
                raise ModelInvocationError(f"Transcription failed: {exc}") from exc
        return transcription.text or ""
