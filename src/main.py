"""Session broker FastAPI application."""

from contextlib import asynccontextmanager

import httpx
import logfire
from fastapi import FastAPI

from src.api import proxy
from src.config import Settings, get_settings
from src.logging_config import instrument_broker
from src.middleware.correlation_id import CorrelationIDMiddleware
from src.models.session_models import RunContext
from src.models.site_models import ServerConfig


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Broker lifespan: the upstream client lives as long as the server."""
    logfire.info("Session broker started", server=app.state.server.url)

    yield

    await app.state.upstream.aclose()
    logfire.info("Session broker stopped", server=app.state.server.url)


def create_upstream_client(
    server: ServerConfig,
    settings: Settings,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Client for the remote server carrying the run's credentials."""
    return httpx.AsyncClient(
        base_url=server.url,
        headers={"Authorization": server.authorization_header()},
        timeout=settings.http_timeout_seconds,
        follow_redirects=True,
        transport=transport,
    )


def create_broker_app(
    server: ServerConfig,
    context: RunContext | None = None,
    settings: Settings | None = None,
    upstream: httpx.AsyncClient | None = None,
) -> FastAPI:
    """
    Build the broker app for one run.

    Args:
        server: Remote server to forward to
        context: Per-run staging area; a fresh one when omitted
        settings: Application settings
        upstream: Pre-built upstream client (tests inject transports here)

    Returns:
        FastAPI app with the run's state attached
    """
    settings = settings or get_settings()

    app = FastAPI(
        title="CMS Session Broker",
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.server = server
    app.state.run_context = context or RunContext()
    app.state.upstream = upstream or create_upstream_client(server, settings)

    # Correlation ID middleware (must be first for request tracing)
    app.add_middleware(CorrelationIDMiddleware)

    app.include_router(proxy.router, tags=["proxy"])
    instrument_broker(app)
    return app
