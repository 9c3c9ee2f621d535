"""Sink adapters implementing the core SinkPort."""

from contextlog.adapters.sinks.console import ConsoleSink, format_console_line
from contextlog.adapters.sinks.in_memory import InMemorySink
from contextlog.adapters.sinks.sqlite import SQLiteLogSink, StoredLogRow
from contextlog.core.config import SinkKind, SinkTarget
from contextlog.core.errors import ConfigurationError
from contextlog.core.ports import SinkPort


def build_sink(target: SinkTarget) -> SinkPort:
    """Instantiate the sink a target describes.

    Raises:
        ConfigurationError: If the target kind has no sink implementation.
    """
    match target.kind:
        case SinkKind.CONSOLE:
            return ConsoleSink(stream=target.stream, name=target.name)
        case SinkKind.SQLITE:
            assert target.db_path is not None
            return SQLiteLogSink(
                db_path=target.db_path,
                table_name=target.table_name,
                columns=target.columns,
                auto_create_table=target.auto_create_table,
                name=target.name,
            )
        case SinkKind.MEMORY:
            return InMemorySink(name=target.name)
    raise ConfigurationError(f"No sink implementation for kind {target.kind!r}")


__all__ = [
    "ConsoleSink",
    "InMemorySink",
    "SQLiteLogSink",
    "StoredLogRow",
    "build_sink",
    "format_console_line",
]
