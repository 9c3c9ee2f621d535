"""BDD step definitions for request logging features.

Each When step runs a complete pipeline lifetime (start, serve one
request, shut down) in its own event loop, so the Then steps only
inspect what the sinks recorded.
"""

import asyncio
import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx
import pytest
from pytest_bdd import given, parsers, then, when

from contextlog.adapters.frameworks.asgi import RequestTimingMiddleware
from contextlog.adapters.sinks.in_memory import InMemorySink
from contextlog.adapters.sinks.sqlite import SQLiteLogSink, StoredLogRow
from contextlog.core.config import PipelineConfig, SinkTarget
from contextlog.core.context import operation_scope
from contextlog.core.models import LogEvent
from contextlog.pipeline import COMPLETION_TEMPLATE, LoggingPipeline

SQLITE_SINK = "sqlite"


def run_async(coro: Any) -> Any:
    """Run a coroutine in a new event loop (for sync step functions)."""
    return asyncio.run(coro)


@dataclass
class RequestLoggingContext:
    """Shared state between steps in a request logging scenario."""

    service_name: str = ""
    environment: str = ""
    console: io.StringIO = field(default_factory=io.StringIO)
    targets: list[SinkTarget] = field(default_factory=list)
    memory: InMemorySink | None = None
    handler_message: str | None = None
    status_code: int = 0
    failed: dict[str, int] = field(default_factory=dict)
    rows: list[StoredLogRow] = field(default_factory=list)

    @property
    def events(self) -> list[LogEvent]:
        assert self.memory is not None, "scenario has no in-memory sink"
        return self.memory.events

    @property
    def completion(self) -> LogEvent:
        [event] = [e for e in self.events if e.message_template == COMPLETION_TEMPLATE]
        return event


@pytest.fixture
def ctx() -> RequestLoggingContext:
    return RequestLoggingContext()


def _build_app(ctx: RequestLoggingContext, pipeline: LoggingPipeline) -> Any:
    message = ctx.handler_message

    async def app(scope, receive, send) -> None:
        if message is not None:
            with operation_scope("CheckoutOrder"):
                pipeline.info(message)
        await send({"type": "http.response.start", "status": 200, "headers": []})
        await send({"type": "http.response.body", "body": b"ok"})

    return RequestTimingMiddleware(app, pipeline)


async def _serve(ctx: RequestLoggingContext, method: str, path: str, client_ip: str) -> None:
    config = PipelineConfig(
        service_name=ctx.service_name,
        environment=ctx.environment,
        sinks=tuple(ctx.targets),
    )
    extra_sinks = [ctx.memory] if ctx.memory is not None else []
    pipeline = LoggingPipeline(config, sinks=extra_sinks)
    await pipeline.start()
    try:
        transport = httpx.ASGITransport(
            app=_build_app(ctx, pipeline), client=(client_ip, 123)
        )
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.request(method, path)
        ctx.status_code = response.status_code
    finally:
        await pipeline.shutdown()
    for name in pipeline.dispatcher.sink_names:
        ctx.failed[name] = pipeline.dispatcher.counters(name).failed
    if SQLITE_SINK in pipeline.dispatcher.sink_names:
        sink = pipeline.dispatcher.sink(SQLITE_SINK)
        assert isinstance(sink, SQLiteLogSink)
        if not ctx.failed[SQLITE_SINK]:
            try:
                ctx.rows = [row async for row in sink.read()]
            finally:
                await sink.close()


# === Background Steps ===
@given(parsers.parse('a pipeline for service "{service}" in environment "{environment}"'))
def step_pipeline(ctx: RequestLoggingContext, service: str, environment: str) -> None:
    ctx.service_name = service
    ctx.environment = environment


@given("a console sink")
def step_console_sink(ctx: RequestLoggingContext) -> None:
    ctx.targets.append(SinkTarget.console(stream=ctx.console))


# === Sink Steps ===
@given("an in-memory sink")
def step_memory_sink(ctx: RequestLoggingContext) -> None:
    ctx.memory = InMemorySink()


@given("a SQLite sink whose database cannot be reached")
def step_unreachable_sqlite(ctx: RequestLoggingContext, tmp_path: Path) -> None:
    ctx.targets.append(
        SinkTarget.sqlite(
            str(tmp_path / "missing" / "logs.db"), max_retries=1, retry_backoff=0.0
        )
    )


@given("a SQLite sink with a writable database")
def step_sqlite(ctx: RequestLoggingContext, tmp_path: Path) -> None:
    ctx.targets.append(SinkTarget.sqlite(str(tmp_path / "logs.db")))


# === Handler Steps ===
@given(parsers.parse('a checkout handler that logs "{message}"'))
def step_checkout_handler(ctx: RequestLoggingContext, message: str) -> None:
    ctx.handler_message = message


@given("a handler that logs nothing")
def step_silent_handler(ctx: RequestLoggingContext) -> None:
    ctx.handler_message = None


# === Request Steps ===
@when(
    parsers.parse(
        'a {method} request to "{path}" is served without an authenticated user'
    )
)
def step_request(ctx: RequestLoggingContext, method: str, path: str) -> None:
    run_async(_serve(ctx, method, path, "127.0.0.1"))


@when(
    parsers.parse(
        'a {method} request to "{path}" is served from a client address of '
        "{length:d} characters"
    )
)
def step_request_long_client(
    ctx: RequestLoggingContext, method: str, path: str, length: int
) -> None:
    run_async(_serve(ctx, method, path, "9" * length))


# === Assertion Steps ===
@then(parsers.parse("the request completes with status {status:d}"))
def step_status(ctx: RequestLoggingContext, status: int) -> None:
    assert ctx.status_code == status


@then(parsers.parse('the completion event has {name} "{value}"'))
def step_completion_field(ctx: RequestLoggingContext, name: str, value: str) -> None:
    assert ctx.completion.properties[name] == value


@then("the completion event has a non-negative ExecutionTimeMs")
def step_execution_time(ctx: RequestLoggingContext) -> None:
    elapsed = ctx.completion.properties["ExecutionTimeMs"]
    assert isinstance(elapsed, int)
    assert elapsed >= 0


@then(parsers.parse('every event carries ServiceName "{service}"'))
def step_every_event_service(ctx: RequestLoggingContext, service: str) -> None:
    assert ctx.events
    assert all(e.properties["ServiceName"] == service for e in ctx.events)


@then(parsers.parse("the console received {count:d} line"))
@then(parsers.parse("the console received {count:d} lines"))
def step_console_lines(ctx: RequestLoggingContext, count: int) -> None:
    assert len(ctx.console.getvalue().splitlines()) == count


@then(parsers.parse("the SQLite sink failure counter is {count:d}"))
def step_sqlite_failures(ctx: RequestLoggingContext, count: int) -> None:
    assert ctx.failed[SQLITE_SINK] == count


@then(parsers.parse("the stored ClientIP is {length:d} characters long"))
def step_stored_client_ip(ctx: RequestLoggingContext, length: int) -> None:
    [row] = ctx.rows
    assert len(str(row.properties["ClientIP"])) == length
