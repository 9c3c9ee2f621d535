"""Event finalization: freezing context and fields into a LogEvent."""

from collections.abc import Mapping
from typing import Any

from contextlog.core.context import ScopedContext
from contextlog.core.enrich import RESERVED_PROPERTIES, Enricher
from contextlog.core.models import (
    ExceptionDetail,
    LogEvent,
    LogLevel,
    PropertyBag,
    utc_now,
)

ExceptionInput = BaseException | ExceptionDetail | None


def _exception_detail(exception: ExceptionInput) -> ExceptionDetail | None:
    if exception is None or isinstance(exception, ExceptionDetail):
        return exception
    return ExceptionDetail.from_exception(exception)


def render_properties(
    enricher: Enricher,
    context: ScopedContext | None,
    fields: Mapping[str, Any] | None = None,
) -> PropertyBag:
    """Compute ``enrich(context snapshot)`` merged with explicit fields.

    Explicit fields win over ambient context, but never over the
    enricher's reserved identity fields.
    """
    snapshot = context.snapshot() if context is not None else PropertyBag.empty()
    properties = enricher(snapshot)
    if fields:
        properties = properties.merge(
            {k: v for k, v in fields.items() if k not in RESERVED_PROPERTIES}
        )
    return properties


def create_event(
    level: LogLevel | str,
    message_template: str,
    context: ScopedContext | None,
    enricher: Enricher,
    fields: Mapping[str, Any] | None = None,
    exception: ExceptionInput = None,
) -> LogEvent:
    """Create an immutable LogEvent stamped with the current UTC time.

    Args:
        level: Event severity (a LogLevel or a name ``LogLevel.parse`` accepts).
        message_template: Message with ``{Name}`` placeholders.
        context: Scoped context to flatten, or ``None`` for no request scope.
        enricher: Process-wide enricher.
        fields: Explicit per-call properties.
        exception: Optional exception or pre-built ExceptionDetail.

    Returns:
        A LogEvent whose properties are detached from ``context``.
    """
    return LogEvent(
        timestamp=utc_now(),
        level=LogLevel.parse(level),
        message_template=message_template,
        properties=render_properties(enricher, context, fields),
        exception=_exception_detail(exception),
    )
