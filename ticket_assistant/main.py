"""FastAPI application wiring for the ticket assistant.

``create_app`` receives the collaborators already built, so tests can pass an
in-memory store and fake transports. ``create_default_app`` builds the
production wiring: a Postgres store on ``DATABASE_URL``, OpenAI sessions and
the store as settings loader. The messaging transport lives outside this
service, so the deployment hands it in and starts the server with ``serve``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .channels.base import MessageTransport, SpeechSynthesizer
from .conversations.service import AssistantService
from .routers import messages
from .tickets import schemas
from .tickets.repository import PostgresTicketStore, TicketStore
from .tickets.service import TicketService

load_dotenv()

logger = logging.getLogger(__name__)

SettingsLoader = Callable[[schemas.Ticket], Awaitable[Optional[schemas.AssistantSettings]]]


def create_app(
    engine: AssistantService,
    store: TicketStore,
    settings_loader: SettingsLoader,
) -> FastAPI:
    """Build the HTTP app around an assistant ``engine``."""

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        opener = getattr(store, "open", None)
        if opener is not None:
            await opener()
        try:
            yield
            outcomes = await engine.drain()
            if outcomes:
                logger.info("Drained %d background deliveries on shutdown", len(outcomes))
        finally:
            closer = getattr(store, "close", None)
            if closer is not None:
                await closer()

    app = FastAPI(title="Ticket Assistant", version=__version__, lifespan=lifespan)
    init_logging(app)
    app.state.assistant = engine
    app.state.ticket_store = store
    app.state.settings_loader = settings_loader

    @app.get("/api/health")
    async def health():
        """Liveness check."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    app.include_router(messages.router)
    return app


def create_default_app(
    transport: MessageTransport,
    *,
    synthesizer: SpeechSynthesizer | None = None,
    database_url: str | None = None,
) -> FastAPI:
    """Build the app against the ticketing database named by ``DATABASE_URL``."""

    dsn = database_url or os.getenv("DATABASE_URL")
    if not dsn:
        raise RuntimeError("DATABASE_URL not configured")
    store = PostgresTicketStore(conninfo=dsn)
    engine = AssistantService(TicketService(store), transport, synthesizer=synthesizer)
    return create_app(engine, store, store.load_settings)


def serve(app: FastAPI, *, host: str | None = None, port: int | None = None) -> None:
    """Run ``app`` under uvicorn; HOST and PORT default from the environment."""

    uvicorn.run(
        app,
        host=host or os.getenv("HOST", "0.0.0.0"),
        port=port or int(os.getenv("PORT", "8000")),
    )
