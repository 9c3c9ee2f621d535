"""Port interface for log sinks.

The dispatcher depends only on this protocol, not on concrete sinks, so
tests can substitute fakes freely.
"""

from typing import Protocol, runtime_checkable

from contextlog.core.models import LogEvent


@runtime_checkable
class SinkPort(Protocol):
    """A destination that records emitted events.

    Examples: ConsoleSink, SQLiteLogSink, InMemorySink.
    """

    name: str

    async def open(self) -> None:
        """Prepare the sink (connect, provision tables). Called once at startup."""
        ...

    async def write(self, event: LogEvent) -> None:
        """Record one event. May raise; the dispatcher isolates failures."""
        ...

    async def close(self) -> None:
        """Release resources. Called once at shutdown."""
        ...
