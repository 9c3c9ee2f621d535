"""Core domain models for structured log events."""

import traceback
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import IntEnum
from typing import Any

from contextlog.core.templates import render_template

PropertyValue = str | int | float | bool | datetime | None

_SCALAR_TYPES = (str, int, float, bool, datetime)


def _capture_value(value: Any) -> PropertyValue:
    """Coerce a value into something a PropertyBag may hold."""
    if value is None or isinstance(value, _SCALAR_TYPES):
        return value
    return str(value)


class PropertyBag(Mapping[str, PropertyValue]):
    """Immutable, ordered mapping of property names to scalar values.

    Values are copied on construction, so mutating the source mapping
    afterwards never changes the bag.
    """

    __slots__ = ("_items",)

    def __init__(
        self,
        items: Mapping[str, Any] | None = None,
        /,
        **fields: Any,
    ) -> None:
        merged: dict[str, PropertyValue] = {}
        for source in (items or {}, fields):
            for key, value in source.items():
                if not isinstance(key, str) or not key:
                    raise TypeError(f"Property names must be non-empty str: {key!r}")
                merged[key] = _capture_value(value)
        self._items = merged

    @classmethod
    def empty(cls) -> "PropertyBag":
        return _EMPTY_BAG

    def __getitem__(self, key: str) -> PropertyValue:
        return self._items[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"PropertyBag({self._items!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PropertyBag):
            return self._items == other._items
        if isinstance(other, Mapping):
            return self._items == dict(other)
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def merge(self, other: Mapping[str, Any] | None) -> "PropertyBag":
        """Return a new bag where keys from ``other`` win on collision."""
        if not other:
            return self
        return PropertyBag({**self._items, **other})

    def without(self, *names: str) -> "PropertyBag":
        """Return a new bag with the given keys removed."""
        return PropertyBag({k: v for k, v in self._items.items() if k not in names})

    def to_dict(self) -> dict[str, PropertyValue]:
        return dict(self._items)


_EMPTY_BAG = PropertyBag()


class LogLevel(IntEnum):
    """Event severity, totally ordered from Trace to Fatal."""

    TRACE = 0
    DEBUG = 1
    INFORMATION = 2
    WARNING = 3
    ERROR = 4
    FATAL = 5

    @property
    def display_name(self) -> str:
        """Name used in storage (e.g. "Information")."""
        return self.name.capitalize()

    @property
    def short_name(self) -> str:
        """Three-letter code used by the console sink (e.g. "INF")."""
        return _SHORT_NAMES[self]

    @classmethod
    def parse(cls, value: "str | int | LogLevel") -> "LogLevel":
        """Parse a level from its name, short code, stdlib name or number.

        Raises:
            ValueError: If the value does not name a level.
        """
        if isinstance(value, LogLevel):
            return value
        if isinstance(value, int):
            return cls(value)
        key = value.strip().upper()
        if key in _ALIASES:
            return _ALIASES[key]
        raise ValueError(f"Unknown log level: {value!r}")

    @classmethod
    def from_stdlib(cls, levelno: int) -> "LogLevel":
        """Map a stdlib ``logging`` level number onto a LogLevel."""
        if levelno >= 50:
            return cls.FATAL
        if levelno >= 40:
            return cls.ERROR
        if levelno >= 30:
            return cls.WARNING
        if levelno >= 20:
            return cls.INFORMATION
        if levelno >= 10:
            return cls.DEBUG
        return cls.TRACE


_SHORT_NAMES = {
    LogLevel.TRACE: "VRB",
    LogLevel.DEBUG: "DBG",
    LogLevel.INFORMATION: "INF",
    LogLevel.WARNING: "WRN",
    LogLevel.ERROR: "ERR",
    LogLevel.FATAL: "FTL",
}

_ALIASES: dict[str, LogLevel] = {
    **{level.name: level for level in LogLevel},
    **{code: level for level, code in _SHORT_NAMES.items()},
    "VERBOSE": LogLevel.TRACE,
    "INFO": LogLevel.INFORMATION,
    "WARN": LogLevel.WARNING,
    "CRITICAL": LogLevel.FATAL,
}


@dataclass(frozen=True)
class ExceptionDetail:
    """Structured error information attached to an event.

    Attributes:
        type_name: Exception class name.
        message: ``str(exc)``.
        stack_trace: Formatted traceback text (may be empty).
    """

    type_name: str
    message: str
    stack_trace: str = ""

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ExceptionDetail":
        return cls(
            type_name=type(exc).__name__,
            message=str(exc),
            stack_trace="".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            ),
        )

    def format(self) -> str:
        """Render the error as text for sinks."""
        if self.stack_trace:
            return self.stack_trace.rstrip("\n")
        return f"{self.type_name}: {self.message}"


@dataclass(frozen=True)
class LogEvent:
    """An immutable structured log event.

    Attributes:
        timestamp: Emission time (timezone-aware, UTC).
        level: Event severity.
        message_template: Message with named ``{Placeholder}`` holes.
        properties: Flattened context, enricher output and explicit fields.
        exception: Optional error detail.
    """

    timestamp: datetime
    level: LogLevel
    message_template: str
    properties: PropertyBag = field(default_factory=PropertyBag)
    exception: ExceptionDetail | None = None

    @property
    def rendered_message(self) -> str:
        return render_template(self.message_template, self.properties)

    def with_properties(self, fields: Mapping[str, Any]) -> "LogEvent":
        """Return a copy whose properties include ``fields`` (fields win)."""
        return replace(self, properties=self.properties.merge(fields))


def utc_now() -> datetime:
    return datetime.now(UTC)
