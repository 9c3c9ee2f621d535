"""Pipeline configuration: sink targets, column mappings and options.

Everything here is immutable and validated at construction time, so a
bad configuration fails at startup with :class:`ConfigurationError`
instead of surfacing per request.
"""

import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any

from contextlog.core.errors import ConfigurationError

ENVIRONMENT_VARIABLE = "CONTEXTLOG_ENVIRONMENT"
DEFAULT_ENVIRONMENT = "Production"
DEFAULT_OPERATION_NAME = "UnknownOperation"

STANDARD_COLUMNS = (
    "Id",
    "Message",
    "MessageTemplate",
    "Level",
    "TimeStamp",
    "Exception",
    "Properties",
)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ColumnType(StrEnum):
    TEXT = "TEXT"
    INTEGER = "INTEGER"
    REAL = "REAL"
    BOOLEAN = "BOOLEAN"
    TIMESTAMP = "TIMESTAMP"


class SinkKind(StrEnum):
    CONSOLE = "console"
    SQLITE = "sqlite"
    MEMORY = "memory"


@dataclass(frozen=True)
class Column:
    """A typed column that one property maps onto by name.

    Attributes:
        name: Column name, also the property name it receives.
        type: Column type; a property only maps if its value fits.
        max_length: TEXT only. Longer values are truncated.
    """

    name: str
    type: ColumnType = ColumnType.TEXT
    max_length: int | None = None

    def __post_init__(self) -> None:
        if not _IDENTIFIER.match(self.name):
            raise ConfigurationError(f"Invalid column name: {self.name!r}")
        if self.max_length is not None:
            if self.type is not ColumnType.TEXT:
                raise ConfigurationError(
                    f"Column {self.name!r}: max_length only applies to TEXT columns"
                )
            if self.max_length <= 0:
                raise ConfigurationError(
                    f"Column {self.name!r}: max_length must be positive"
                )

    @property
    def sql_type(self) -> str:
        if self.type is ColumnType.TEXT and self.max_length is not None:
            return f"VARCHAR({self.max_length})"
        return self.type.value

    def accepts(self, value: Any) -> bool:
        """True if ``value`` is type-compatible with this column."""
        if value is None:
            return True
        match self.type:
            case ColumnType.TEXT:
                return isinstance(value, str)
            case ColumnType.INTEGER:
                return isinstance(value, int) and not isinstance(value, bool)
            case ColumnType.REAL:
                return isinstance(value, (int, float)) and not isinstance(value, bool)
            case ColumnType.BOOLEAN:
                return isinstance(value, bool)
            case ColumnType.TIMESTAMP:
                return isinstance(value, datetime)
        return False

    def to_db(self, value: Any) -> Any:
        """Convert an accepted value to its stored form, truncating text."""
        if value is None:
            return None
        if self.type is ColumnType.TEXT and self.max_length is not None:
            return value[: self.max_length]
        if self.type is ColumnType.BOOLEAN:
            return int(value)
        if self.type is ColumnType.TIMESTAMP:
            return value.isoformat()
        return value

    def from_db(self, value: Any) -> Any:
        if value is None:
            return None
        if self.type is ColumnType.BOOLEAN:
            return bool(value)
        if self.type is ColumnType.TIMESTAMP:
            return datetime.fromisoformat(value)
        return value


DEFAULT_COLUMNS: tuple[Column, ...] = (
    Column("CorrelationId", max_length=256),
    Column("RequestId", max_length=256),
    Column("UserId", max_length=256),
    Column("ServiceName", max_length=256),
    Column("Environment", max_length=256),
    Column("RequestPath", max_length=500),
    Column("ClientIP", max_length=256),
    Column("UserAgent", max_length=256),
    Column("OperationName", max_length=256),
    Column("ExecutionTimeMs", ColumnType.INTEGER),
)


@dataclass(frozen=True)
class ColumnMapping:
    """Fixed set of mapped columns plus the overflow column.

    Properties without a matching, type-compatible column are serialized
    into the overflow column as JSON, so nothing is lost.
    """

    columns: tuple[Column, ...] = DEFAULT_COLUMNS
    overflow_column: str = "Properties"

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        seen: set[str] = set()
        for column in self.columns:
            if column.name in seen:
                raise ConfigurationError(f"Duplicate column: {column.name!r}")
            if column.name in STANDARD_COLUMNS:
                raise ConfigurationError(
                    f"Column {column.name!r} clashes with a standard column"
                )
            seen.add(column.name)
        if not _IDENTIFIER.match(self.overflow_column) or self.overflow_column in seen:
            raise ConfigurationError(
                f"Invalid overflow column: {self.overflow_column!r}"
            )

    def get(self, name: str) -> Column | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(column.name for column in self.columns)

    def with_lengths(self, lengths: Mapping[str, int]) -> "ColumnMapping":
        """Return a mapping with overridden TEXT column lengths.

        Raises:
            ConfigurationError: If a name does not match a mapped column.
        """
        if not lengths:
            return self
        unknown = set(lengths) - set(self.names)
        if unknown:
            raise ConfigurationError(
                f"column_lengths names unknown columns: {sorted(unknown)}"
            )
        return replace(
            self,
            columns=tuple(
                replace(c, max_length=lengths[c.name]) if c.name in lengths else c
                for c in self.columns
            ),
        )


@dataclass(frozen=True)
class SinkTarget:
    """Descriptor for one destination.

    Attributes:
        kind: Sink kind.
        name: Unique sink name (defaults to the kind).
        db_path: SQLite database path (``sqlite`` only; ":memory:" allowed).
        table_name: Table receiving one row per event (``sqlite`` only).
        columns: Column mapping (``sqlite`` only).
        auto_create_table: Create the table at startup if absent.
        max_retries: Extra delivery attempts after a failed write.
        retry_backoff: Base delay in seconds, doubled per attempt.
        queue_capacity: Per-sink queue size; ``None`` uses the pipeline default.
        stream: Console output stream; ``None`` means ``sys.stdout``.
    """

    kind: SinkKind
    name: str = ""
    db_path: str | None = None
    table_name: str = "Logs"
    columns: ColumnMapping = field(default_factory=ColumnMapping)
    auto_create_table: bool = True
    max_retries: int = 0
    retry_backoff: float = 0.0
    queue_capacity: int | None = None
    stream: Any = None

    def __post_init__(self) -> None:
        try:
            kind = SinkKind(self.kind)
        except ValueError:
            raise ConfigurationError(f"Unknown sink kind: {self.kind!r}") from None
        object.__setattr__(self, "kind", kind)
        if not self.name:
            object.__setattr__(self, "name", kind.value)
        if kind is SinkKind.SQLITE:
            if not self.db_path:
                raise ConfigurationError(f"Sink {self.name!r}: db_path is required")
            if not _IDENTIFIER.match(self.table_name):
                raise ConfigurationError(
                    f"Sink {self.name!r}: invalid table name {self.table_name!r}"
                )
        if self.max_retries < 0:
            raise ConfigurationError(f"Sink {self.name!r}: max_retries must be >= 0")
        if self.retry_backoff < 0:
            raise ConfigurationError(
                f"Sink {self.name!r}: retry_backoff must be >= 0"
            )
        if self.queue_capacity is not None and self.queue_capacity <= 0:
            raise ConfigurationError(
                f"Sink {self.name!r}: queue_capacity must be positive"
            )

    @classmethod
    def console(cls, stream: Any = None, **options: Any) -> "SinkTarget":
        return cls(kind=SinkKind.CONSOLE, stream=stream, **options)

    @classmethod
    def sqlite(cls, db_path: str, **options: Any) -> "SinkTarget":
        options.setdefault("max_retries", 2)
        options.setdefault("retry_backoff", 0.05)
        return cls(kind=SinkKind.SQLITE, db_path=db_path, **options)

    @classmethod
    def memory(cls, **options: Any) -> "SinkTarget":
        return cls(kind=SinkKind.MEMORY, **options)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SinkTarget":
        """Build a target from a plain dict (e.g. parsed JSON or TOML)."""
        if "kind" not in data:
            raise ConfigurationError(f"Sink target without 'kind': {dict(data)!r}")
        options = dict(data)
        kind = options.pop("kind")
        columns = options.pop("columns", None)
        try:
            if columns is not None:
                options["columns"] = ColumnMapping(
                    columns=tuple(
                        Column(
                            name=c["name"],
                            type=ColumnType(c.get("type", "TEXT").upper()),
                            max_length=c.get("max_length"),
                        )
                        for c in columns
                    ),
                    overflow_column=options.pop("overflow_column", "Properties"),
                )
            if kind == SinkKind.SQLITE:
                options.setdefault("max_retries", 2)
                options.setdefault("retry_backoff", 0.05)
            return cls(kind=kind, **options)
        except (TypeError, KeyError, ValueError) as exc:
            raise ConfigurationError(f"Invalid sink target {dict(data)!r}: {exc}") from exc


def _default_environment() -> str:
    return os.environ.get(ENVIRONMENT_VARIABLE) or DEFAULT_ENVIRONMENT


@dataclass(frozen=True)
class PipelineConfig:
    """Recognized pipeline options.

    Attributes:
        service_name: Value of the ``ServiceName`` property on every event.
        environment: Value of ``Environment``; defaults to
            ``$CONTEXTLOG_ENVIRONMENT`` or "Production".
        sinks: Sink targets, in registration order.
        queue_capacity: Default per-sink queue size.
        shutdown_timeout: Seconds to wait for queues to drain on shutdown.
        column_lengths: TEXT column length overrides applied to every
            SQLite target.
        default_operation_name: ``OperationName`` pushed at request start;
            ``None`` omits the field until a handler sets it.
    """

    service_name: str
    environment: str = field(default_factory=_default_environment)
    sinks: tuple[SinkTarget, ...] = ()
    queue_capacity: int = 1024
    shutdown_timeout: float = 5.0
    column_lengths: Mapping[str, int] = field(default_factory=dict)
    default_operation_name: str | None = DEFAULT_OPERATION_NAME

    def __post_init__(self) -> None:
        object.__setattr__(self, "sinks", tuple(self.sinks))
        if not self.service_name:
            raise ConfigurationError("service_name is required")
        if not self.environment:
            raise ConfigurationError("environment must not be empty")
        if self.queue_capacity <= 0:
            raise ConfigurationError("queue_capacity must be positive")
        if self.shutdown_timeout < 0:
            raise ConfigurationError("shutdown_timeout must be >= 0")
        names = [target.name for target in self.sinks]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ConfigurationError(f"Duplicate sink names: {sorted(duplicates)}")
        if self.column_lengths:
            object.__setattr__(
                self,
                "sinks",
                tuple(
                    replace(t, columns=t.columns.with_lengths(self.column_lengths))
                    if t.kind is SinkKind.SQLITE
                    else t
                    for t in self.sinks
                ),
            )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PipelineConfig":
        """Build a config from a plain dict.

        Example:
            ```python
            PipelineConfig.from_mapping({
                "service_name": "OrderService",
                "sinks": [
                    {"kind": "console"},
                    {"kind": "sqlite", "db_path": "logs.db"},
                ],
            })
            ```
        """
        options = dict(data)
        sinks: Iterable[Mapping[str, Any]] = options.pop("sinks", ())
        try:
            return cls(
                sinks=tuple(SinkTarget.from_mapping(s) for s in sinks), **options
            )
        except TypeError as exc:
            raise ConfigurationError(f"Invalid pipeline configuration: {exc}") from exc
