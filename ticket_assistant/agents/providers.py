"""Provider credential helpers and the per-ticket model session registry."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover - typing only
    from .client import ModelClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCredentials:
    """Container for credentials resolved for a provider."""

    provider: str
    api_key: str | None
    extras: dict[str, str] = field(default_factory=dict)


class ProviderRegistry:
    """Resolve provider credentials from explicit keys, overrides or environment."""

    _DEFAULT_ENV_MAP: Mapping[str, str] = {
        "openai": "OPENAI_API_KEY",
        "azure": "AZURE_OPENAI_API_KEY",
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, str]] | None = None):
        self._overrides = {
            (k.lower() if isinstance(k, str) else k): dict(v)
            for k, v in (overrides or {}).items()
        }

    def get_credentials(self, provider: str, api_key: str | None = None) -> ProviderCredentials:
        """Return credentials for ``provider``.

        An explicit ``api_key`` (the one stored with the assistant settings)
        wins; otherwise overrides injected during testing are used, and the
        environment variable from ``_DEFAULT_ENV_MAP`` is the last resort.
        """

        key = provider.lower()
        if api_key:
            return ProviderCredentials(provider=provider, api_key=api_key)
        if key in self._overrides:
            override = self._overrides[key]
            return ProviderCredentials(
                provider=provider,
                api_key=override.get("api_key"),
                extras={k: v for k, v in override.items() if k != "api_key"},
            )
        env_var = self._DEFAULT_ENV_MAP.get(key)
        env_key = os.getenv(env_var) if env_var else None
        return ProviderCredentials(provider=provider, api_key=env_key)


def _default_factory(credentials: ProviderCredentials) -> "ModelClient":
    from .client import OpenAIModelClient

    return OpenAIModelClient(api_key=credentials.api_key)


class ModelSessionRegistry:
    """Process-lifetime cache holding one model client per ticket.

    Entries are created on first use and never evicted. Credentials supplied
    for a ticket that already has a session are ignored, so rotating a key
    only affects tickets seen afterwards.
    """

    def __init__(
        self, factory: Callable[[ProviderCredentials], "ModelClient"] | None = None
    ) -> None:
        self._factory = factory or _default_factory
        self._sessions: dict[int, "ModelClient"] = {}
        self._lock = threading.Lock()

    def acquire(self, ticket_id: int, credentials: ProviderCredentials) -> "ModelClient":
        session = self._sessions.get(ticket_id)
        if session is not None:
            return session
        with self._lock:
            session = self._sessions.get(ticket_id)
            if session is None:
                session = self._factory(credentials)
                self._sessions[ticket_id] = session
                logger.debug("Created model session for ticket %s", ticket_id)
        return session

    def __contains__(self, ticket_id: object) -> bool:
        return ticket_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
