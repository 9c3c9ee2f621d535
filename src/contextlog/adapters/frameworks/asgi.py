"""ASGI request-timing middleware.

Wraps any ASGI application (Starlette, FastAPI, Django's ASGI handler)
so that every HTTP request runs inside its own logging scope and ends
with exactly one completion event carrying ``ExecutionTimeMs``.
"""

import fnmatch
from collections.abc import Callable, Coroutine
from typing import Any

from contextlog.pipeline import LoggingPipeline, RequestMetadata

# ASGI type aliases
Scope = dict[str, Any]
Receive = Callable[[], Coroutine[Any, Any, dict[str, Any]]]
Send = Callable[[dict[str, Any]], Coroutine[Any, Any, None]]
ASGIApp = Callable[[Scope, Receive, Send], Coroutine[Any, Any, None]]

STATE_KEY = "log_context"


def _get_header(scope: Scope, header_name: str) -> str | None:
    """Return a request header value (case-insensitive), or None if absent.

    Args:
        scope: ASGI scope dictionary containing request metadata.
        header_name: Name of the header to search for.
    """
    header_bytes = header_name.lower().encode()
    headers: list[tuple[bytes, bytes]] = scope.get("headers", [])
    for name, value in headers:
        if name.lower() == header_bytes:
            return str(value.decode("utf-8", errors="replace"))
    return None


def _get_user_id(scope: Scope) -> str | None:
    """Name of the authenticated user set by an authentication middleware.

    Understands Starlette-style ``scope["user"]`` objects exposing
    ``is_authenticated`` and ``display_name``.
    """
    user = scope.get("user")
    if user is None or not getattr(user, "is_authenticated", False):
        return None
    name = getattr(user, "display_name", None) or getattr(user, "identity", None)
    return str(name) if name else None


def _get_client_address(scope: Scope) -> str | None:
    client = scope.get("client")
    if not client:
        return None
    return str(client[0])


def request_metadata_from_scope(
    scope: Scope, correlation_id_header: str | None = None
) -> RequestMetadata:
    """Extract request metadata from an HTTP scope.

    Args:
        scope: ASGI HTTP scope.
        correlation_id_header: Header carrying an inbound correlation id.
            ``None`` always generates a fresh id.
    """
    correlation_id = None
    if correlation_id_header is not None:
        correlation_id = _get_header(scope, correlation_id_header) or None
    return RequestMetadata(
        path=scope.get("path", ""),
        method=scope.get("method", "GET"),
        user_id=_get_user_id(scope),
        client_address=_get_client_address(scope),
        user_agent=_get_header(scope, "User-Agent") or "",
        correlation_id=correlation_id,
    )


class RequestTimingMiddleware:
    """ASGI middleware that scopes, times and logs each HTTP request.

    On entry a request frame (correlation id, request id, user, path,
    client, user agent, operation name) is pushed and bound as the
    current context; it is also available as
    ``scope["state"]["log_context"]``. When the app returns, raises or is
    cancelled, one Information event "Request completed in
    {ExecutionTimeMs} ms" is emitted and the frame released. Errors from
    the app propagate unchanged.
    """

    def __init__(
        self,
        app: ASGIApp,
        pipeline: LoggingPipeline,
        exclude_paths: list[str] | None = None,
        correlation_id_header: str | None = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application to wrap.
            pipeline: Pipeline receiving request events.
            exclude_paths: Paths to leave unscoped. Supports exact matches
                and wildcard patterns (e.g., "/health/*").
            correlation_id_header: Header to take an inbound correlation id
                from (e.g. "X-Correlation-ID"); ``None`` always generates.
        """
        self.app = app
        self.pipeline = pipeline
        self.exclude_paths = exclude_paths or []
        self.correlation_id_header = correlation_id_header

    def _path_excluded(self, path: str) -> bool:
        """Check if path matches any pattern in exclude_paths."""
        return any(fnmatch.fnmatch(path, pattern) for pattern in self.exclude_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI callable interface that processes requests through the wrapped app."""
        if scope["type"] != "http" or self._path_excluded(scope.get("path", "")):
            await self.app(scope, receive, send)
            return

        metadata = request_metadata_from_scope(scope, self.correlation_id_header)
        with self.pipeline.request_scope(metadata) as request:
            scope.setdefault("state", {})[STATE_KEY] = request.context

            async def wrapped_send(message: dict[str, Any]) -> None:
                if message["type"] == "http.response.start":
                    request.status_code = message["status"]
                await send(message)

            await self.app(scope, receive, wrapped_send)
