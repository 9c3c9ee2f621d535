"""Python logging handler adapter for contextlog.

This adapter bridges Python's standard library logging module to the
pipeline, so records from libraries and legacy code pick up the current
request context and reach the same sinks.
"""

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from contextlog.core.models import ExceptionDetail, LogLevel, PropertyValue

if TYPE_CHECKING:
    from contextlog.pipeline import LoggingPipeline

# Standard LogRecord attributes that should not be treated as extra fields
_STANDARD_LOGRECORD_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)

# Default LogRecord attributes to include as properties
_DEFAULT_INCLUDE_ATTRS = ["SourceContext"]

# Loggers whose records are produced while delivering events; handling them
# would feed every write back into the pipeline.
_OWN_LOGGER = "contextlog"
DEFAULT_EXCLUDED_LOGGERS = (_OWN_LOGGER, "aiosqlite", "asyncio")


def _escape_braces(message: str) -> str:
    return message.replace("{", "{{").replace("}", "}}")


class PipelineHandler(logging.Handler):
    """Logging handler that emits records through a LoggingPipeline.

    The formatted record message becomes the event's template (with
    braces escaped, so it renders verbatim). ``extra=`` fields become
    properties, and ``exc_info`` becomes the event's exception.

    Example:
        ```python
        handler = PipelineHandler(pipeline)
        logging.getLogger().addHandler(handler)
        ```
    """

    def __init__(
        self,
        pipeline: "LoggingPipeline",
        include_attrs: list[str] | None = None,
        level: int = logging.NOTSET,
        exclude_loggers: Iterable[str] | None = None,
    ) -> None:
        """Initialize the handler with a pipeline.

        Args:
            pipeline: Pipeline that receives the events.
            include_attrs: Record-derived properties to include, from
                "SourceContext", "FunctionName", "LineNumber", "PathName".
                Defaults to ["SourceContext"].
            level: Minimum record level handled.
            exclude_loggers: Logger names whose records (and those of their
                children) are ignored. Defaults to DEFAULT_EXCLUDED_LOGGERS;
                "contextlog" is always excluded.
        """
        super().__init__(level)
        self._pipeline = pipeline
        self._include_attrs = (
            _DEFAULT_INCLUDE_ATTRS if include_attrs is None else include_attrs
        )
        if exclude_loggers is None:
            exclude_loggers = DEFAULT_EXCLUDED_LOGGERS
        self._exclude_loggers = tuple(dict.fromkeys((_OWN_LOGGER, *exclude_loggers)))

    @property
    def exclude_loggers(self) -> tuple[str, ...]:
        return self._exclude_loggers

    def _is_excluded(self, name: str) -> bool:
        return any(
            name == prefix or name.startswith(prefix + ".")
            for prefix in self._exclude_loggers
        )

    def emit(self, record: logging.LogRecord) -> None:
        """Emit a log record through the pipeline.

        Args:
            record: The log record to emit.
        """
        if self._is_excluded(record.name):
            return
        try:
            attr_mapping: dict[str, PropertyValue] = {
                "SourceContext": record.name,
                "FunctionName": record.funcName or "",
                "LineNumber": record.lineno,
                "PathName": record.pathname,
            }
            fields: dict[str, Any] = {
                key: attr_mapping[key]
                for key in self._include_attrs
                if key in attr_mapping
            }
            for key, value in record.__dict__.items():
                if key not in _STANDARD_LOGRECORD_ATTRS and not key.startswith("_"):
                    fields[key] = value

            exception = None
            if record.exc_info and record.exc_info[1] is not None:
                exception = ExceptionDetail.from_exception(record.exc_info[1])

            self._pipeline.emit(
                LogLevel.from_stdlib(record.levelno),
                _escape_braces(record.getMessage()),
                fields,
                exception=exception,
            )
        except Exception:
            self.handleError(record)
