"""Single-flight, rate-limited execution channel for outbound device I/O.

Every poll, power reading and on/off command for a device runs through one
CommandQueue: one task at a time, task starts spaced by at least `interval`
seconds, and each task bounded by `timeout` seconds.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar, cast

from meross_sync.const import QUEUE_INTERVAL, QUEUE_TIMEOUT
from meross_sync.correlation import correlation_context
from meross_sync.exceptions import CommandTimeoutError, QueueClosedError
from meross_sync.instrumentation import timed_async
from meross_sync.logging_abstraction import get_logger

__all__ = ["CommandQueue"]

T = TypeVar("T")
TaskFactory = Callable[[], Awaitable[Any]]
IdleListener = Callable[[], None]

logger = get_logger(__name__)


@dataclass(slots=True)
class _QueuedTask:
    label: str
    factory: TaskFactory
    future: asyncio.Future[Any]


def _discard_result(task: asyncio.Future[Any]) -> None:
    """Retrieve the outcome of an abandoned task so asyncio does not warn about it."""
    if not task.cancelled():
        _ = task.exception()


class CommandQueue:
    """Serialize device operations for one device."""

    def __init__(
        self,
        name: str = "device",
        *,
        interval: float = QUEUE_INTERVAL,
        timeout: float = QUEUE_TIMEOUT,
    ) -> None:
        self.lp: str = f"CommandQueue:{name}:"
        self.interval: float = interval
        self.timeout: float = timeout
        self._queue: asyncio.Queue[_QueuedTask] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._running: bool = False
        self._closed: bool = False
        self._last_start: float | None = None
        self._idle: asyncio.Event = asyncio.Event()
        self._idle.set()
        self._idle_listeners: list[IdleListener] = []

    @property
    def busy(self) -> bool:
        """True from enqueue until the task finishes, including the wait for its start slot."""
        return self._running or not self._queue.empty()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def is_idle(self) -> bool:
        return not self.busy

    @property
    def pending(self) -> int:
        """Number of tasks waiting behind the running one."""
        return self._queue.qsize()

    def add_idle_listener(self, listener: IdleListener) -> None:
        """Call `listener` every time the queue drains."""
        self._idle_listeners.append(listener)

    async def wait_idle(self) -> None:
        """Block until nothing is pending or running."""
        _ = await self._idle.wait()

    async def enqueue(self, task: Callable[[], Awaitable[T]], *, label: str = "task") -> T:
        """Run `task` when its turn comes and return its result.

        The task's own exception is re-raised unchanged; an overrun of the
        execution timeout raises CommandTimeoutError, and closing the queue
        before the task finishes raises QueueClosedError.
        """
        if self._closed:
            raise QueueClosedError(self.lp)

        future: asyncio.Future[T] = asyncio.get_running_loop().create_future()
        self._idle.clear()
        self._queue.put_nowait(_QueuedTask(label=label, factory=task, future=future))
        logger.debug("%s queued %s (queue size: %d)", self.lp, label, self._queue.qsize())
        self._ensure_worker()
        return await future

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._process_queue(), name=f"{self.lp}worker")

    async def _process_queue(self) -> None:
        """Worker loop: take one task at a time until cancelled."""
        loop = asyncio.get_running_loop()
        while True:
            item = await self._queue.get()
            try:
                if item.future.done():
                    # caller gave up before the task started
                    continue
                # busy covers the wait for the start slot
                self._running = True
                await self._wait_for_slot(loop)
                self._last_start = loop.time()
                with correlation_context():
                    await self._execute(item)
            except asyncio.CancelledError:
                if not item.future.done():
                    item.future.set_exception(QueueClosedError(self.lp))
                raise
            finally:
                self._running = False
                self._queue.task_done()
                if self._queue.empty():
                    self._notify_idle()

    async def _wait_for_slot(self, loop: asyncio.AbstractEventLoop) -> None:
        if self._last_start is None:
            return
        while (delay := self._last_start + self.interval - loop.time()) > 0:
            await asyncio.sleep(delay)

    async def _execute(self, item: _QueuedTask) -> None:
        try:
            result = await self._run_with_timeout(item)
        except CommandTimeoutError as exc:
            logger.warning("%s %s", self.lp, exc, extra={"operation": item.label, "timeout_s": self.timeout})
            if not item.future.done():
                item.future.set_exception(exc)
        except Exception as exc:
            logger.debug("%s %s failed: %s", self.lp, item.label, exc)
            if not item.future.done():
                item.future.set_exception(exc)
        else:
            if not item.future.done():
                item.future.set_result(result)

    @timed_async("command_queue_task")
    async def _run_with_timeout(self, item: _QueuedTask) -> object:
        """Run the task; abandon it (cancel without waiting) once the deadline passes."""
        inner = asyncio.ensure_future(item.factory())
        try:
            done, _ = await asyncio.wait({inner}, timeout=self.timeout)
        except asyncio.CancelledError:
            _ = inner.cancel()
            inner.add_done_callback(_discard_result)
            raise
        if not done:
            _ = inner.cancel()
            inner.add_done_callback(_discard_result)
            raise CommandTimeoutError(item.label, self.timeout)
        return cast("object", inner.result())

    def _notify_idle(self) -> None:
        self._idle.set()
        for listener in list(self._idle_listeners):
            try:
                listener()
            except Exception:
                logger.exception("%s idle listener failed", self.lp)

    async def close(self) -> None:
        """Stop the worker; callers of unfinished tasks get QueueClosedError."""
        self._closed = True
        if self._worker is not None and not self._worker.done():
            _ = self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
        self._worker = None
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if not item.future.done():
                item.future.set_exception(QueueClosedError(self.lp))
            self._queue.task_done()
        self._running = False
        self._idle.set()
