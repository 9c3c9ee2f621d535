"""Console sink writing one human-readable line per event."""

import sys
from typing import TextIO

from contextlog.core.models import LogEvent


def format_console_line(event: LogEvent) -> str:
    """Format an event as ``<timestamp> [LVL] <message>``.

    Exception text, when present, follows on the next lines.
    """
    timestamp = event.timestamp.isoformat(timespec="milliseconds")
    line = f"{timestamp} [{event.level.short_name}] {event.rendered_message}"
    if event.exception is not None:
        line = f"{line}\n{event.exception.format()}"
    return line


class ConsoleSink:
    """SinkPort implementation that writes to a text stream.

    Args:
        stream: Output stream; ``None`` resolves ``sys.stdout`` at write time
            so test capture tools see the output.
        name: Sink name used in counters and diagnostics.
    """

    def __init__(self, stream: TextIO | None = None, name: str = "console") -> None:
        self.name = name
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    async def open(self) -> None:
        return None

    async def write(self, event: LogEvent) -> None:
        stream = self.stream
        stream.write(format_console_line(event) + "\n")
        stream.flush()

    async def close(self) -> None:
        if self._stream is not None:
            self._stream.flush()
