"""Error taxonomy for the logging pipeline.

Only :class:`ConfigurationError` is ever raised to callers, and only at
startup. The others describe failures that the pipeline recovers from
locally: they are constructed so they can be logged with full context,
then counted and dropped.
"""


class PipelineError(Exception):
    """Base type for every error defined by ``contextlog``."""


class ConfigurationError(PipelineError):
    """An invalid or missing sink target or option. Fatal at startup."""


class SinkWriteError(PipelineError):
    """A single delivery attempt to one sink failed.

    Attributes:
        sink_name: Name of the sink the write targeted.
        attempts: Number of attempts made before giving up.
    """

    def __init__(self, sink_name: str, attempts: int, cause: BaseException) -> None:
        super().__init__(
            f"Sink {sink_name!r} failed after {attempts} attempt(s): "
            f"{type(cause).__name__}: {cause}"
        )
        self.sink_name = sink_name
        self.attempts = attempts
        self.__cause__ = cause


class ContextImbalanceError(PipelineError):
    """Scope frames were released out of order or never released.

    Reported as a diagnostic: it points at a bug in the calling code, not
    at a pipeline failure.
    """


class QueueOverflow(PipelineError):
    """A sink queue was full and an event was dropped."""

    def __init__(self, sink_name: str, capacity: int) -> None:
        super().__init__(
            f"Queue for sink {sink_name!r} is full (capacity {capacity}); event dropped"
        )
        self.sink_name = sink_name
        self.capacity = capacity
