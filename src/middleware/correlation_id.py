"""Correlation ID middleware for tracing broker requests to the remote server."""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

import logfire


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Tag every broker request with a correlation ID.

    The ID is taken from the incoming header when the caller sets one,
    generated otherwise. Handlers read it from `request.state` and forward
    it upstream so remote logs can be matched against local ones.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Correlation-ID"):
        """
        Initialize correlation ID middleware.

        Args:
            app: ASGI application
            header_name: HTTP header name for correlation ID
        """
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(self.header_name.lower()) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        start_time = time.time()
        with logfire.span(
            "broker {method} {path}",
            method=request.method,
            path=request.url.path,
            correlation_id=correlation_id,
        ):
            response = await call_next(request)
            logfire.info(
                "Broker request handled",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                response_time_ms=(time.time() - start_time) * 1000,
            )

        response.headers[self.header_name] = correlation_id
        return response
