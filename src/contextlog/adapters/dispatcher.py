"""Fan-out of finished events to every registered sink.

Each sink gets its own bounded queue and worker task, so a slow or
failing sink never delays or breaks delivery to the others, and
``dispatch`` never waits for I/O. Events reach each sink in the order
they were dispatched from a given thread.
"""

import asyncio
import logging
from dataclasses import dataclass

from contextlog.adapters.sinks import build_sink
from contextlog.core.config import SinkTarget
from contextlog.core.enrich import Enricher
from contextlog.core.errors import ConfigurationError, QueueOverflow, SinkWriteError
from contextlog.core.models import LogEvent
from contextlog.core.ports import SinkPort

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 2.0


@dataclass
class SinkCounters:
    """Delivery statistics for one sink.

    Attributes:
        delivered: Events written successfully.
        failed: Events given up on after all retries.
        dropped: Events rejected because the queue was full or closed.
        lost: Events still queued when shutdown gave up waiting.
    """

    delivered: int = 0
    failed: int = 0
    dropped: int = 0
    lost: int = 0


class _SinkWorker:
    """Queue plus consumer task for a single sink."""

    def __init__(
        self,
        sink: SinkPort,
        capacity: int,
        max_retries: int,
        retry_backoff: float,
    ) -> None:
        self.sink = sink
        self.capacity = capacity
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.queue: asyncio.Queue[LogEvent] = asyncio.Queue(maxsize=capacity)
        self.counters = SinkCounters()
        self.task: asyncio.Task[None] | None = None

    def offer(self, event: LogEvent) -> None:
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.record_drop()

    def record_drop(self) -> None:
        self.counters.dropped += 1
        # First drop, then every 1000th, to avoid flooding diagnostics.
        if self.counters.dropped % 1000 == 1:
            logger.warning(
                "%s (dropped so far: %d)",
                QueueOverflow(self.sink.name, self.capacity),
                self.counters.dropped,
            )

    async def run(self) -> None:
        while True:
            event = await self.queue.get()
            try:
                await self._deliver(event)
            except asyncio.CancelledError:
                self.counters.lost += 1
                raise
            finally:
                self.queue.task_done()

    async def _deliver(self, event: LogEvent) -> None:
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                await self.sink.write(event)
            except Exception as exc:
                if attempt + 1 < attempts:
                    delay = min(self.retry_backoff * 2**attempt, MAX_BACKOFF_SECONDS)
                    await asyncio.sleep(delay)
                    continue
                self.counters.failed += 1
                logger.warning("%s", SinkWriteError(self.sink.name, attempts, exc))
                return
            self.counters.delivered += 1
            return


class SinkDispatcher:
    """Delivers every dispatched event to all registered sinks.

    Sinks are registered before :meth:`start`; the sink set is fixed
    afterwards.

    Args:
        queue_capacity: Default queue size per sink.
        shutdown_timeout: Default seconds :meth:`shutdown` waits to drain.
        enricher: If given, events missing its identity fields get them
            filled in before delivery.
    """

    def __init__(
        self,
        queue_capacity: int = 1024,
        shutdown_timeout: float = 5.0,
        enricher: Enricher | None = None,
    ) -> None:
        self._queue_capacity = queue_capacity
        self._shutdown_timeout = shutdown_timeout
        self._enricher = enricher
        self._workers: dict[str, _SinkWorker] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._started = False
        self._closed = False

    @property
    def sink_names(self) -> list[str]:
        return list(self._workers)

    @property
    def started(self) -> bool:
        return self._started

    @property
    def closed(self) -> bool:
        return self._closed

    def sink(self, name: str) -> SinkPort:
        return self._workers[name].sink

    def counters(self, name: str) -> SinkCounters:
        """Live counters for the named sink."""
        return self._workers[name].counters

    @property
    def total_failed(self) -> int:
        return sum(w.counters.failed for w in self._workers.values())

    @property
    def total_dropped(self) -> int:
        return sum(
            w.counters.dropped + w.counters.lost for w in self._workers.values()
        )

    def register(
        self,
        target: SinkTarget | SinkPort,
        *,
        max_retries: int = 0,
        retry_backoff: float = 0.0,
        queue_capacity: int | None = None,
    ) -> SinkPort:
        """Register a sink target (or a ready-made sink) before startup.

        Keyword options apply to ready-made sinks only; a SinkTarget
        carries its own.

        Raises:
            ConfigurationError: After startup, or on a duplicate sink name.
        """
        if self._started or self._closed:
            raise ConfigurationError("Sinks must be registered before startup")
        if isinstance(target, SinkTarget):
            sink = build_sink(target)
            max_retries = target.max_retries
            retry_backoff = target.retry_backoff
            queue_capacity = target.queue_capacity
        elif isinstance(target, SinkPort):
            sink = target
        else:
            raise ConfigurationError(f"Not a sink target: {target!r}")
        if sink.name in self._workers:
            raise ConfigurationError(f"Duplicate sink name: {sink.name!r}")
        self._workers[sink.name] = _SinkWorker(
            sink,
            capacity=queue_capacity or self._queue_capacity,
            max_retries=max_retries,
            retry_backoff=retry_backoff,
        )
        return sink

    async def start(self) -> None:
        """Open every sink and start the delivery workers.

        A sink that fails to open stays registered and its writes count as
        failures.

        Raises:
            ConfigurationError: If no sink is registered or none could open.
        """
        if self._started:
            return
        if self._closed:
            raise ConfigurationError("Dispatcher has been shut down")
        if not self._workers:
            raise ConfigurationError("No sinks registered")
        failures = 0
        for worker in self._workers.values():
            try:
                await worker.sink.open()
            except Exception:
                failures += 1
                logger.error(
                    "Sink %r failed to open", worker.sink.name, exc_info=True
                )
        if failures == len(self._workers):
            raise ConfigurationError("Every sink failed to open")
        self._start_workers()

    def _start_workers(self) -> None:
        self._loop = asyncio.get_running_loop()
        for worker in self._workers.values():
            worker.task = self._loop.create_task(
                worker.run(), name=f"contextlog-sink-{worker.sink.name}"
            )
        self._started = True

    def dispatch(self, event: LogEvent) -> None:
        """Queue an event for every sink without waiting for delivery.

        Safe to call from any thread; calls from outside the event loop
        thread are handed over with ``call_soon_threadsafe``.
        """
        if self._enricher is not None:
            missing = {
                k: v for k, v in self._enricher.identity().items()
                if k not in event.properties
            }
            if missing:
                event = event.with_properties(missing)
        if self._closed:
            for worker in self._workers.values():
                worker.record_drop()
            return
        loop = self._loop
        if loop is not None:
            try:
                running = asyncio.get_running_loop()
            except RuntimeError:
                running = None
            if running is not loop:
                try:
                    loop.call_soon_threadsafe(self._offer_all, event)
                except RuntimeError:
                    for worker in self._workers.values():
                        worker.record_drop()
                return
        self._offer_all(event)

    def _offer_all(self, event: LogEvent) -> None:
        for worker in self._workers.values():
            worker.offer(event)

    async def flush(self) -> None:
        """Wait until every queued event has been handled."""
        if not self._started:
            raise RuntimeError("Dispatcher is not started")
        await asyncio.gather(*(w.queue.join() for w in self._workers.values()))

    async def shutdown(self, timeout: float | None = None) -> None:
        """Drain queues (bounded by ``timeout``), stop workers, close sinks.

        Events still queued when the timeout expires are discarded and
        counted as ``lost``. Later dispatches are dropped.
        """
        if self._closed:
            return
        timeout = self._shutdown_timeout if timeout is None else timeout
        if not self._started and any(w.queue.qsize() for w in self._workers.values()):
            self._start_workers()
        self._closed = True
        if self._started:
            try:
                await asyncio.wait_for(self.flush(), timeout)
            except TimeoutError:
                logger.warning("Sink queues not drained within %.2fs", timeout)
            tasks = [w.task for w in self._workers.values() if w.task is not None]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        for worker in self._workers.values():
            lost = worker.queue.qsize()
            while not worker.queue.empty():
                worker.queue.get_nowait()
            if lost:
                worker.counters.lost += lost
                logger.warning(
                    "Sink %r lost %d event(s) at shutdown", worker.sink.name, lost
                )
            try:
                await worker.sink.close()
            except Exception:
                logger.error("Sink %r failed to close", worker.sink.name, exc_info=True)
