"""Scribe entry point.

Initializes all components and starts the server:
  Settings -> OpenRouterClient -> SessionStore -> Guides -> ResourceOrchestrator -> App -> Uvicorn

Components are started and stopped in a Starlette lifespan so they share
uvicorn's event loop.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette

from scribe.api.client import OpenRouterClient
from scribe.api.rest import create_app
from scribe.config import Settings
from scribe.orchestration.engine import ResourceOrchestrator
from scribe.orchestration.sessions import SessionStore
from scribe.orchestration.usage import UsageLedger
from scribe.resources.guides import GuideLoader, GuideRegistry

logger = logging.getLogger(__name__)


def create_components(settings: Settings) -> dict:
    """Build all components in dependency order (nothing is started yet)."""
    client = OpenRouterClient(settings)
    sessions = SessionStore(settings)
    guide_registry = GuideRegistry(settings)
    guide_loader = GuideLoader(settings)
    usage_ledger = UsageLedger()

    orchestrator = ResourceOrchestrator(
        client,
        sessions,
        settings,
        guide_registry=guide_registry,
        guide_loader=guide_loader,
        usage_callback=usage_ledger.record,
    )
    return {
        "client": client,
        "sessions": sessions,
        "guide_registry": guide_registry,
        "guide_loader": guide_loader,
        "usage_ledger": usage_ledger,
        "orchestrator": orchestrator,
    }


async def start_components(components: dict) -> None:
    await components["client"].start()
    await components["sessions"].start()


async def shutdown_components(components: dict) -> None:
    """Graceful shutdown in reverse order."""
    logger.info("Shutting down Scribe...")
    sessions = components.get("sessions")
    if sessions is not None:
        await sessions.stop()
    client = components.get("client")
    if client is not None:
        await client.close()
    logger.info("Scribe shutdown complete.")


def build_app(settings: Settings, components: dict | None = None) -> Starlette:
    """Build the Starlette app with lifespan-managed components."""
    if components is None:
        components = create_components(settings)

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await start_components(components)
        app.state.components = components
        logger.info(
            "Scribe started: model=%s, max_turns=%d",
            settings.model,
            settings.max_turns,
        )
        try:
            yield
        finally:
            await shutdown_components(components)

    return create_app(
        orchestrator=components["orchestrator"],
        settings=settings,
        guide_registry=components["guide_registry"],
        usage_ledger=components["usage_ledger"],
        lifespan=lifespan,
    )


def main() -> None:
    """Entry point: parse settings, build app, run server."""
    settings = Settings()

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    logger.info("Starting Scribe (model: %s)", settings.model)
    if not settings.openrouter_api_key:
        logger.warning("OPENROUTER_API_KEY is not set, model endpoints will fail")

    app = build_app(settings)

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
