"""Scoped property stack for request-level log context.

A :class:`ScopedContext` belongs to exactly one logical request. Code
running on behalf of that request pushes frames of properties as it
nests deeper, and every log event emitted in the meantime sees the
flattened view of all open frames, innermost value winning.

Example:
    ```python
    ctx = ScopedContext()
    with ctx.push(CorrelationId="abc", OperationName="UnknownOperation"):
        with ctx.push(OperationName="CheckoutOrder"):
            ctx.snapshot()["OperationName"]  # "CheckoutOrder"
        ctx.snapshot()["OperationName"]  # "UnknownOperation"
    ```
"""

import contextvars
import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from types import TracebackType
from typing import Any

from contextlog.core.errors import ContextImbalanceError
from contextlog.core.models import PropertyBag

logger = logging.getLogger(__name__)

_current_context: contextvars.ContextVar["ScopedContext | None"] = (
    contextvars.ContextVar("contextlog_current_context", default=None)
)


class ScopeHandle:
    """Handle for one pushed frame. Releasing it pops that frame.

    Usable as a context manager so the frame is popped on every exit
    path. ``release()`` is idempotent.
    """

    __slots__ = ("_context", "_frame", "_released")

    def __init__(self, context: "ScopedContext", frame: PropertyBag) -> None:
        self._context = context
        self._frame = frame
        self._released = False

    @property
    def frame(self) -> PropertyBag:
        return self._frame

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self._context._remove(self)

    def __enter__(self) -> "ScopeHandle":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class ScopedContext:
    """Stack of property frames for one request or sub-operation.

    Args:
        base: Optional properties visible beneath every pushed frame.
        strict: Raise :class:`ContextImbalanceError` on out-of-order
            release instead of only reporting it.
    """

    def __init__(
        self, base: Mapping[str, Any] | None = None, strict: bool = False
    ) -> None:
        self._base = PropertyBag(base)
        self._strict = strict
        self._frames: list[ScopeHandle] = []
        self._snapshot: PropertyBag | None = self._base
        self.imbalances = 0
        self.operation_name: str | None = None

    @property
    def depth(self) -> int:
        """Number of frames currently pushed."""
        return len(self._frames)

    @property
    def open_frames(self) -> tuple[PropertyBag, ...]:
        """Frames currently pushed, outermost first."""
        return tuple(handle.frame for handle in self._frames)

    def push(
        self, frame: Mapping[str, Any] | None = None, /, **fields: Any
    ) -> ScopeHandle:
        """Push a frame of properties and return the handle that pops it."""
        handle = ScopeHandle(self, PropertyBag(frame, **fields))
        self._frames.append(handle)
        self._snapshot = None
        return handle

    def snapshot(self) -> PropertyBag:
        """Flattened view of all open frames (innermost wins)."""
        snapshot = self._snapshot
        if snapshot is None:
            merged = self._base.to_dict()
            for handle in self._frames:
                merged.update(handle.frame)
            snapshot = PropertyBag(merged)
            self._snapshot = snapshot
        return snapshot

    current_snapshot = snapshot

    def derive(self) -> "ScopedContext":
        """Independent context seeded with the current snapshot.

        Concurrent child tasks of one request each take their own derived
        context rather than pushing onto the shared stack.
        """
        return ScopedContext(self.snapshot(), strict=self._strict)

    def close(self) -> int:
        """Pop every open frame, reporting any that were left unreleased.

        Returns:
            The number of frames that were still open.
        """
        leftover = len(self._frames)
        if leftover:
            self._discard(self._frames)
            self._report(
                ContextImbalanceError(f"{leftover} scope frame(s) never released")
            )
        return leftover

    def unwind(self, handle: ScopeHandle) -> int:
        """Pop ``handle`` and every frame pushed after it.

        Frames above ``handle`` that were never released are reported as
        a single imbalance.

        Returns:
            The number of frames above ``handle`` that were still open.
        """
        if handle not in self._frames:
            handle._released = True
            return 0
        index = self._frames.index(handle)
        above = len(self._frames) - index - 1
        self._discard(self._frames[index:])
        if above:
            self._report(
                ContextImbalanceError(
                    f"{above} scope frame(s) never released before their parent"
                )
            )
        return above

    def _discard(self, handles: list[ScopeHandle]) -> None:
        for handle in list(handles):
            handle._released = True
            self._frames.remove(handle)
        self._snapshot = None

    def _remove(self, handle: ScopeHandle) -> None:
        if handle not in self._frames:
            return
        in_order = self._frames[-1] is handle
        self._frames.remove(handle)
        self._snapshot = None
        if not in_order:
            self._report(
                ContextImbalanceError(
                    "scope frame released while inner frames were still open"
                )
            )

    def _report(self, error: ContextImbalanceError) -> None:
        self.imbalances += 1
        if self._strict:
            raise error
        logger.warning("Context imbalance: %s", error)


def get_current_context() -> ScopedContext | None:
    """Return the context bound to the running task, if any."""
    return _current_context.get()


@contextmanager
def bind_context(context: ScopedContext) -> Iterator[ScopedContext]:
    """Make ``context`` the current one for the enclosed block.

    Bindings are per ``contextvars`` context, so concurrent asyncio tasks
    never see each other's binding.
    """
    token = _current_context.set(context)
    try:
        yield context
    finally:
        _current_context.reset(token)


def push_properties(
    frame: Mapping[str, Any] | None = None, /, **fields: Any
) -> ScopeHandle:
    """Push a frame onto the current context.

    Outside any bound context the frame goes to a detached context, so
    the call is harmless but has no visible effect.
    """
    context = get_current_context() or ScopedContext()
    return context.push(frame, **fields)


def operation_scope(name: str) -> ScopeHandle:
    """Narrow ``OperationName`` for the enclosed block.

    The name is also remembered on the context, so the request's
    completion event reports the operation the handler narrowed to.

    Example:
        ```python
        with operation_scope("CheckoutOrder"):
            pipeline.info("Processing checkout order")
        ```
    """
    context = get_current_context()
    if context is None:
        return ScopedContext().push(OperationName=name)
    context.operation_name = name
    return context.push(OperationName=name)
