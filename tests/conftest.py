"""Shared test fixtures for all test modules."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest

from contextlog.adapters.sinks.in_memory import InMemorySink
from contextlog.core.config import PipelineConfig
from contextlog.core.models import LogEvent
from contextlog.pipeline import LoggingPipeline

try:
    import httpx
except ImportError:
    httpx = None


class FailingSink:
    """Sink whose writes always raise, for failure-isolation tests."""

    def __init__(self, name: str = "failing") -> None:
        self.name = name
        self.attempts = 0

    async def open(self) -> None:
        return None

    async def write(self, event: LogEvent) -> None:
        self.attempts += 1
        raise ConnectionError("store unreachable")

    async def close(self) -> None:
        return None


@pytest.fixture
def log_db_path(tmp_path: Path) -> str:
    """Provide a temporary database path for SQLite sink tests."""
    return str(tmp_path / "logs.db")


@pytest.fixture
def unreachable_db_path(tmp_path: Path) -> str:
    """A database path whose parent directory does not exist."""
    return str(tmp_path / "missing" / "nested" / "logs.db")


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig(service_name="OrderService", environment="Testing")


@pytest.fixture
def memory_sink() -> InMemorySink:
    return InMemorySink()


@pytest.fixture
def failing_sink() -> FailingSink:
    return FailingSink()


@pytest.fixture
async def pipeline(
    config: PipelineConfig, memory_sink: InMemorySink
) -> AsyncGenerator[LoggingPipeline]:
    """Started pipeline delivering to ``memory_sink``."""
    pipeline = LoggingPipeline(config, sinks=[memory_sink])
    await pipeline.start()
    yield pipeline
    await pipeline.shutdown()


# === ASGI Test Fixtures ===


@pytest.fixture
def asgi_scope():
    """Factory fixture for creating ASGI HTTP scope dicts."""

    def _scope(
        method: str = "GET",
        path: str = "/test",
        headers: dict[str, str] | None = None,
        client: tuple[str, int] | None = None,
    ) -> dict[str, object]:
        return {
            "type": "http",
            "method": method,
            "path": path,
            "query_string": b"",
            "headers": [
                (k.lower().encode(), v.encode()) for k, v in (headers or {}).items()
            ],
            "client": client,
        }

    return _scope


@pytest.fixture
def asgi_send_capture():
    """Fixture that returns a send callable and a responses list for capture."""

    responses: list[dict[str, object]] = []

    async def send(message: dict[str, object]) -> None:
        """Capture ASGI messages."""
        responses.append(message)

    return send, responses


@pytest.fixture
def asgi_test_client():
    """Factory fixture that creates an httpx.AsyncClient for ASGI testing.

    Usage:
        async def test_something(asgi_test_client):
            async with asgi_test_client(app) as client:
                response = await client.get("/endpoint")
    """
    if httpx is None:
        pytest.skip("httpx not installed")

    def _get_client(app, client: tuple[str, int] = ("127.0.0.1", 123)):
        """Return an AsyncClient context manager for the given app."""
        return httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app, client=client),
            base_url="http://test",
        )

    return _get_client
