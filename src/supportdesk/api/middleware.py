"""Pure ASGI middleware: request log context and access logging."""

import time

import structlog
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from supportdesk.common.logging import bind_request_context

logger = structlog.get_logger()

CORRELATION_HEADER = b"x-correlation-id"
MAX_CORRELATION_ID_LENGTH = 64


class CorrelationIdMiddleware:
    """Binds a fresh structlog context per request and echoes ``X-Correlation-ID``.

    An incoming header value is reused when it is short enough to be a sane ID;
    otherwise a new one is generated.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        incoming: str | None = None
        for name, value in scope.get("headers", []):
            if name == CORRELATION_HEADER:
                incoming = value.decode("latin-1").strip() or None
                break
        if incoming is not None and len(incoming) > MAX_CORRELATION_ID_LENGTH:
            incoming = None

        cid = bind_request_context(incoming)

        async def send_with_cid(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message).append("X-Correlation-ID", cid)
            await send(message)

        await self.app(scope, receive, send_with_cid)


class RequestLoggingMiddleware:
    """One ``http_request`` log line per request with status and latency."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status_code = 500

        async def send_with_status(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_with_status)
        finally:
            logger.info(
                "http_request",
                method=scope["method"],
                path=scope["path"],
                query=scope.get("query_string", b"").decode("latin-1") or None,
                status_code=status_code,
                latency_ms=round((time.perf_counter() - start) * 1000, 1),
            )
