"""In-memory sink for tests and low-volume applications."""

from collections import deque

from contextlog.core.models import LogEvent


class InMemorySink:
    """In-memory implementation of SinkPort.

    Stores events in a list, or in a ring buffer that evicts the oldest
    event when ``max_size`` is given. Suitable for testing and
    low-volume applications where persistence is not required.
    """

    def __init__(self, max_size: int | None = None, name: str = "memory") -> None:
        self.name = name
        self._events: deque[LogEvent] = deque(maxlen=max_size)

    @property
    def events(self) -> list[LogEvent]:
        """Recorded events, in delivery order."""
        return list(self._events)

    async def open(self) -> None:
        return None

    async def write(self, event: LogEvent) -> None:
        """Write an event to storage."""
        self._events.append(event)

    async def close(self) -> None:
        return None

    def clear(self) -> None:
        self._events.clear()
