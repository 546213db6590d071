"""Session broker: a local reverse proxy holding the run's authenticated session.

The broker is a FastAPI app served by uvicorn on the loopback interface.
Pipeline code talks to the remote server only through it, so credentials,
the idc token and the CSRF token are injected in one place.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable

import httpx
import logfire
import uvicorn
from fastapi import FastAPI

from src.config import Settings, get_settings
from src.constants import ANONYMOUS_USER
from src.logging_config import redact_tokens
from src.main import create_broker_app
from src.models.session_models import RunContext
from src.models.site_models import ServerConfig
from src.services.cms_client import CMSClient
from src.services.errors import (
    PollTimeoutError,
    RemoteCallError,
    SessionError,
    SessionTimeoutError,
)
from src.services.polling import poll_until

logger = logging.getLogger(__name__)

SESSION_TIMEOUT_MESSAGE = "disconnected from the server, try again"

# Statuses meaning the credentials were rejected; anything else is retried
_AUTH_REJECTED_STATUSES = (401, 403)


@dataclass
class Session:
    """Established session, valid until the broker is stopped."""

    broker_address: str
    user: str
    idc_token: str
    csrf_token: str | None
    context: RunContext
    client: CMSClient
    cancel: Callable[[], None] = field(repr=False, default=lambda: None)


def _is_established(tenant: dict) -> bool:
    user = tenant.get("dUser")
    return bool(user) and user != ANONYMOUS_USER and bool(tenant.get("idcToken"))


async def establish_session(
    client: CMSClient, settings: Settings
) -> tuple[str, str, str | None]:
    """
    Wait for the remote to report an authenticated user, then fetch the CSRF token.

    Returns:
        (user, idc_token, csrf_token)

    Raises:
        SessionError: When the remote rejects the credentials
        SessionTimeoutError: When the poll budget runs out
    """

    async def fetch_tenant() -> dict:
        try:
            return await client.get_tenant_config()
        except RemoteCallError as e:
            if e.status_code in _AUTH_REJECTED_STATUSES:
                raise SessionError(f"failed to connect to the server: {e}") from e
            logfire.warn("Tenant config not available yet", error=str(e))
            return {}

    def log_attempt(attempt: int, tenant: dict) -> None:
        logfire.info(
            "Waiting for session",
            attempt=attempt,
            max_attempts=settings.session_poll_max_attempts,
            user=tenant.get("dUser"),
        )

    try:
        tenant = await poll_until(
            fetch_tenant,
            _is_established,
            interval=settings.session_poll_interval_seconds,
            max_attempts=settings.session_poll_max_attempts,
            on_poll=log_attempt,
            initial_delay=False,
        )
    except PollTimeoutError as e:
        logfire.error("Session not established", attempts=e.attempts)
        raise SessionTimeoutError(SESSION_TIMEOUT_MESSAGE) from e

    csrf_token = await client.get_csrf_token()
    logfire.info(
        "Session established",
        **redact_tokens(
            {"user": tenant["dUser"], "idc_token": tenant["idcToken"], "csrf_token": csrf_token}
        ),
    )
    return tenant["dUser"], tenant["idcToken"], csrf_token


class SessionBroker:
    """Runs the broker app with uvicorn for the lifetime of one run."""

    def __init__(self, app: FastAPI, settings: Settings):
        self.app = app
        self.settings = settings
        self._server: uvicorn.Server | None = None
        self._task: asyncio.Task | None = None

    @property
    def address(self) -> str:
        if self._server is None or not self._server.servers:
            raise SessionError("session broker is not running")
        host, port = self._server.servers[0].sockets[0].getsockname()[:2]
        return f"http://{host}:{port}"

    async def start(self) -> str:
        """Serve the app and return the broker's base URL."""
        config = uvicorn.Config(
            self.app,
            host=self.settings.broker_host,
            port=self.settings.broker_port,
            log_level="warning",
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve())

        while not self._server.started:
            if self._task.done():
                error = self._task.exception()
                raise SessionError(f"failed to start the session broker: {error}")
            await asyncio.sleep(0.05)

        address = self.address
        logger.info("Session broker listening on %s", address)
        return address

    def request_stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True

    async def stop(self) -> None:
        if self._server is None or self._task is None:
            return
        self.request_stop()
        try:
            await self._task
        finally:
            self._server = None
            self._task = None


@asynccontextmanager
async def open_session(
    server: ServerConfig, settings: Settings | None = None
) -> AsyncIterator[Session]:
    """
    Start a broker, establish the session and yield it.

    The broker is always shut down on exit, whether the session was
    established or not.
    """
    settings = settings or get_settings()
    context = RunContext()
    broker = SessionBroker(create_broker_app(server, context, settings), settings)

    with logfire.span("open session", server=server.url):
        address = await broker.start()
        client = CMSClient(
            httpx.AsyncClient(base_url=address, timeout=settings.http_timeout_seconds)
        )
        try:
            user, idc_token, csrf_token = await establish_session(client, settings)
            context.idc_token = idc_token
            context.csrf_token = csrf_token
            yield Session(
                broker_address=address,
                user=user,
                idc_token=idc_token,
                csrf_token=csrf_token,
                context=context,
                client=client,
                cancel=broker.request_stop,
            )
        finally:
            await client.aclose()
            await broker.stop()
