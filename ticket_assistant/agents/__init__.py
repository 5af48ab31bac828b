"""Model access: clients, credentials, session registry, tools and prompts."""

from .client import ModelClient, ModelInvocationError, ModelReply, OpenAIModelClient, ToolCall
from .providers import ModelSessionRegistry, ProviderCredentials, ProviderRegistry

__all__ = [
    "ModelClient",
    "ModelInvocationError",
    "ModelReply",
    "ModelSessionRegistry",
    "OpenAIModelClient",
    "ProviderCredentials",
    "ProviderRegistry",
    "ToolCall",
]
