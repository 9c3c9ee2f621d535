"""Public entry points of the logging pipeline.

The request-serving collaborator (an ASGI middleware, a framework hook,
a job runner) calls :meth:`LoggingPipeline.begin_request_scope` when a
request arrives, emits events while it is served, and calls
:meth:`LoggingPipeline.end_request_scope` when it finishes. The
:meth:`LoggingPipeline.request_scope` context manager pairs the two so
the completion event and frame release happen on every exit path.
"""

import asyncio
import logging
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from types import TracebackType
from typing import Any

from contextlog.adapters.dispatcher import SinkDispatcher
from contextlog.core.config import PipelineConfig
from contextlog.core.context import (
    ScopedContext,
    ScopeHandle,
    bind_context,
    get_current_context,
)
from contextlog.core.enrich import Enricher
from contextlog.core.errors import ContextImbalanceError
from contextlog.core.logs import ExceptionInput, create_event
from contextlog.core.models import LogEvent, LogLevel, utc_now
from contextlog.core.ports import SinkPort

logger = logging.getLogger(__name__)

ANONYMOUS_USER = "Anonymous"
UNKNOWN_CLIENT = "Unknown"
COMPLETION_TEMPLATE = "Request completed in {ExecutionTimeMs} ms"


class Outcome(StrEnum):
    COMPLETED = "Completed"
    FAILED = "Failed"
    CANCELLED = "Cancelled"


@dataclass(frozen=True)
class RequestMetadata:
    """What the request-serving collaborator knows about a request.

    Attributes:
        path: Request path.
        method: HTTP method (or another verb for non-HTTP work).
        user_id: Authenticated user name; ``None`` logs as "Anonymous".
        client_address: Remote address; ``None`` logs as "Unknown".
        user_agent: User-Agent header value.
        correlation_id: Inbound correlation id; ``None`` generates one.
    """

    path: str
    method: str = "GET"
    user_id: str | None = None
    client_address: str | None = None
    user_agent: str = ""
    correlation_id: str | None = None


@dataclass(frozen=True)
class RequestOutcome:
    status_code: int | None = None
    exception: BaseException | None = None
    cancelled: bool = False

    @property
    def outcome(self) -> Outcome:
        if self.cancelled:
            return Outcome.CANCELLED
        if self.exception is not None:
            return Outcome.FAILED
        return Outcome.COMPLETED


def new_correlation_id() -> str:
    return str(uuid.uuid4())


def new_request_id(now: datetime | None = None) -> str:
    """Time-derived, sortable request id, e.g. ``REQ-20261018-131500123``."""
    now = now or utc_now()
    return f"REQ-{now:%Y%m%d-%H%M%S}{now.microsecond // 1000:03d}"


class RequestScope:
    """An active request: its context, pushed frame and timer."""

    def __init__(
        self,
        context: ScopedContext,
        handle: ScopeHandle,
        metadata: RequestMetadata,
    ) -> None:
        self.context = context
        self.handle = handle
        self.metadata = metadata
        self.status_code: int | None = None
        self.completed = False
        self._started = time.perf_counter()

    @property
    def correlation_id(self) -> str:
        return str(self.handle.frame["CorrelationId"])

    @property
    def request_id(self) -> str:
        return str(self.handle.frame["RequestId"])

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._started) * 1000)


class LoggingPipeline:
    """Enrichment and dispatch of contextual log events.

    Args:
        config: Pipeline options and sink targets.
        sinks: Additional ready-made sinks (e.g. test fakes).

    Example:
        ```python
        pipeline = LoggingPipeline(PipelineConfig(
            service_name="OrderService",
            sinks=(SinkTarget.console(), SinkTarget.sqlite("logs.db")),
        ))
        async with pipeline:
            with pipeline.request_scope(RequestMetadata(path="/checkout")):
                pipeline.info("Processing checkout order")
        ```
    """

    def __init__(self, config: PipelineConfig, sinks: Iterable[SinkPort] = ()) -> None:
        self.config = config
        self.enricher = Enricher(
            service_name=config.service_name, environment=config.environment
        )
        self.dispatcher = SinkDispatcher(
            queue_capacity=config.queue_capacity,
            shutdown_timeout=config.shutdown_timeout,
            enricher=self.enricher,
        )
        for target in config.sinks:
            self.dispatcher.register(target)
        for sink in sinks:
            self.dispatcher.register(sink)
        self._open_scopes = 0

    async def start(self) -> None:
        """Provision sinks and start delivery."""
        await self.dispatcher.start()

    async def shutdown(self, timeout: float | None = None) -> None:
        """Drain and close every sink."""
        if self._open_scopes:
            logger.warning(
                "Context imbalance: %s",
                ContextImbalanceError(
                    f"{self._open_scopes} request scope(s) still open at shutdown"
                ),
            )
        await self.dispatcher.shutdown(timeout)

    async def __aenter__(self) -> "LoggingPipeline":
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.shutdown()

    @property
    def open_scopes(self) -> int:
        return self._open_scopes

    def emit(
        self,
        level: LogLevel | str,
        message_template: str,
        fields: Mapping[str, Any] | None = None,
        *,
        context: ScopedContext | None = None,
        exception: ExceptionInput = None,
    ) -> LogEvent:
        """Create an event from the current context and dispatch it.

        Args:
            level: Event severity.
            message_template: Message with ``{Name}`` placeholders.
            fields: Explicit properties; they win over context values.
            context: Context to read; defaults to the one bound to the
                running task, if any.
            exception: Optional error to attach.

        Returns:
            The dispatched event.
        """
        if context is None:
            context = get_current_context()
        event = create_event(
            level, message_template, context, self.enricher, fields, exception
        )
        self.dispatcher.dispatch(event)
        return event

    def trace(self, message_template: str, **fields: Any) -> LogEvent:
        return self.emit(LogLevel.TRACE, message_template, fields)

    def debug(self, message_template: str, **fields: Any) -> LogEvent:
        return self.emit(LogLevel.DEBUG, message_template, fields)

    def info(self, message_template: str, **fields: Any) -> LogEvent:
        return self.emit(LogLevel.INFORMATION, message_template, fields)

    def warning(self, message_template: str, **fields: Any) -> LogEvent:
        return self.emit(LogLevel.WARNING, message_template, fields)

    def error(
        self,
        message_template: str,
        exception: ExceptionInput = None,
        **fields: Any,
    ) -> LogEvent:
        return self.emit(LogLevel.ERROR, message_template, fields, exception=exception)

    def fatal(
        self,
        message_template: str,
        exception: ExceptionInput = None,
        **fields: Any,
    ) -> LogEvent:
        return self.emit(LogLevel.FATAL, message_template, fields, exception=exception)

    def begin_request_scope(self, metadata: RequestMetadata) -> RequestScope:
        """Create a request context and push the request frame."""
        context = ScopedContext()
        frame: dict[str, Any] = {
            "CorrelationId": metadata.correlation_id or new_correlation_id(),
            "RequestId": new_request_id(),
            "UserId": metadata.user_id or ANONYMOUS_USER,
            "RequestPath": metadata.path,
            "RequestMethod": metadata.method,
            "ClientIP": metadata.client_address or UNKNOWN_CLIENT,
            "UserAgent": metadata.user_agent,
        }
        if self.config.default_operation_name is not None:
            frame["OperationName"] = self.config.default_operation_name
        handle = context.push(frame)
        self._open_scopes += 1
        return RequestScope(context, handle, metadata)

    def end_request_scope(
        self, scope: RequestScope, outcome: RequestOutcome | None = None
    ) -> LogEvent | None:
        """Emit the completion event and release the request frame.

        Calling it again for the same scope does nothing.

        Returns:
            The completion event, or ``None`` if the scope was already ended.
        """
        if scope.completed:
            return None
        scope.completed = True
        outcome = outcome or RequestOutcome(status_code=scope.status_code)
        fields: dict[str, Any] = {
            "ExecutionTimeMs": scope.elapsed_ms(),
            "Outcome": outcome.outcome.value,
        }
        if scope.context.operation_name is not None:
            fields["OperationName"] = scope.context.operation_name
        if outcome.status_code is not None:
            fields["StatusCode"] = outcome.status_code
        try:
            return self.emit(
                LogLevel.INFORMATION,
                COMPLETION_TEMPLATE,
                fields,
                context=scope.context,
                exception=outcome.exception,
            )
        finally:
            self._open_scopes -= 1
            scope.context.unwind(scope.handle)
            scope.context.close()

    @contextmanager
    def request_scope(self, metadata: RequestMetadata) -> Iterator[RequestScope]:
        """Begin a request scope, bind its context, end it on every exit path."""
        scope = self.begin_request_scope(metadata)
        exception: BaseException | None = None
        cancelled = False
        try:
            with bind_context(scope.context):
                yield scope
        except asyncio.CancelledError:
            cancelled = True
            raise
        except Exception as exc:
            exception = exc
            raise
        finally:
            self.end_request_scope(
                scope,
                RequestOutcome(
                    status_code=scope.status_code,
                    exception=exception,
                    cancelled=cancelled,
                ),
            )
