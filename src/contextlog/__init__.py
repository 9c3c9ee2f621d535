"""contextlog - contextual, structured request logging with multi-sink dispatch."""

from contextlog.adapters.dispatcher import SinkCounters, SinkDispatcher
from contextlog.adapters.frameworks.asgi import RequestTimingMiddleware
from contextlog.adapters.logging import PipelineHandler
from contextlog.adapters.sinks import (
    ConsoleSink,
    InMemorySink,
    SQLiteLogSink,
    StoredLogRow,
)
from contextlog.core.config import (
    DEFAULT_COLUMNS,
    Column,
    ColumnMapping,
    ColumnType,
    PipelineConfig,
    SinkKind,
    SinkTarget,
)
from contextlog.core.context import (
    ScopedContext,
    ScopeHandle,
    bind_context,
    get_current_context,
    operation_scope,
    push_properties,
)
from contextlog.core.enrich import Enricher
from contextlog.core.errors import (
    ConfigurationError,
    ContextImbalanceError,
    PipelineError,
    QueueOverflow,
    SinkWriteError,
)
from contextlog.core.models import ExceptionDetail, LogEvent, LogLevel, PropertyBag
from contextlog.core.ports import SinkPort
from contextlog.pipeline import (
    LoggingPipeline,
    RequestMetadata,
    RequestOutcome,
    RequestScope,
)

__all__ = [
    "DEFAULT_COLUMNS",
    "Column",
    "ColumnMapping",
    "ColumnType",
    "ConfigurationError",
    "ConsoleSink",
    "ContextImbalanceError",
    "Enricher",
    "ExceptionDetail",
    "InMemorySink",
    "LogEvent",
    "LogLevel",
    "LoggingPipeline",
    "PipelineConfig",
    "PipelineError",
    "PipelineHandler",
    "PropertyBag",
    "QueueOverflow",
    "RequestMetadata",
    "RequestOutcome",
    "RequestScope",
    "RequestTimingMiddleware",
    "SQLiteLogSink",
    "ScopeHandle",
    "ScopedContext",
    "SinkCounters",
    "SinkDispatcher",
    "SinkKind",
    "SinkPort",
    "SinkTarget",
    "SinkWriteError",
    "StoredLogRow",
    "bind_context",
    "get_current_context",
    "operation_scope",
    "push_properties",
]
