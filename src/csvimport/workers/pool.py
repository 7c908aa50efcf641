"""Bounded FIFO task executor for asyncio coroutines."""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Protocol, TypeVar

import structlog

from csvimport.exceptions import HandlerNotConfiguredError
from csvimport.schemas.job import WorkerStats

logger = structlog.get_logger()

InputT = TypeVar("InputT")
ResultT = TypeVar("ResultT")

MIN_WORKERS = 1
MAX_WORKERS = 10


class TaskObserver(Protocol):
    """Optional hooks for task lifecycle events."""

    def on_task_start(self, task_id: str) -> None:
        ...

    def on_task_complete(self, task_id: str) -> None:
        ...

    def on_task_error(self, task_id: str, error: BaseException) -> None:
        ...


@dataclass
class _QueuedTask(Generic[InputT, ResultT]):
    task_id: str
    data: InputT
    future: "asyncio.Future[ResultT]"


class BoundedTaskExecutor(Generic[InputT, ResultT]):
    """
    Runs submitted tasks oldest-first with at most ``max_workers`` in flight.

    The handler is installed after construction with ``set_handler`` so the
    executor can be built before the code that processes tasks is known.
    A failing handler only fails its own future.
    """

    def __init__(
        self,
        max_workers: int = 5,
        handler: Callable[[InputT, str], Awaitable[ResultT]] | None = None,
        observer: TaskObserver | None = None,
    ):
        self.max_workers = max(MIN_WORKERS, min(max_workers, MAX_WORKERS))
        self._handler = handler
        self._observer = observer
        self._queue: deque[_QueuedTask[InputT, ResultT]] = deque()
        self._active = 0
        self._running: set[asyncio.Task] = set()

    def set_handler(self, handler: Callable[[InputT, str], Awaitable[ResultT]]) -> None:
        self._handler = handler

    def submit(self, task_id: str, data: InputT) -> "asyncio.Future[ResultT]":
        """Queue a task and return a future for its result."""
        future: asyncio.Future[ResultT] = asyncio.get_running_loop().create_future()
        self._queue.append(_QueuedTask(task_id, data, future))
        logger.debug("Task enqueued", task_id=task_id, queued_tasks=len(self._queue))
        self._dispatch()
        return future

    async def execute(self, task_id: str, data: InputT) -> ResultT:
        """Submit a task and wait for its result."""
        return await self.submit(task_id, data)

    def _dispatch(self) -> None:
        while self._active < self.max_workers and self._queue:
            queued = self._queue.popleft()
            if queued.future.cancelled():
                continue
            self._active += 1
            task = asyncio.create_task(self._run(queued), name=f"task-{queued.task_id}")
            self._running.add(task)
            task.add_done_callback(self._running.discard)

    async def _run(self, queued: _QueuedTask[InputT, ResultT]) -> None:
        logger.info("Task started", task_id=queued.task_id, active_workers=self._active)
        if self._observer:
            self._observer.on_task_start(queued.task_id)
        try:
            if self._handler is None:
                raise HandlerNotConfiguredError()
            result = await self._handler(queued.data, queued.task_id)
        except asyncio.CancelledError:
            queued.future.cancel()
            raise
        except Exception as e:
            logger.error("Task failed", task_id=queued.task_id, error=str(e))
            if self._observer:
                self._observer.on_task_error(queued.task_id, e)
            if not queued.future.done():
                queued.future.set_exception(e)
        else:
            logger.info("Task completed", task_id=queued.task_id)
            if self._observer:
                self._observer.on_task_complete(queued.task_id)
            if not queued.future.done():
                queued.future.set_result(result)
        finally:
            self._active -= 1
            self._dispatch()

    def get_stats(self) -> WorkerStats:
        return WorkerStats(
            active_workers=self._active,
            queued_tasks=len(self._queue),
            max_workers=self.max_workers,
        )

    def clear(self) -> int:
        """Drop tasks that have not started yet, cancelling their futures."""
        dropped = 0
        while self._queue:
            self._queue.popleft().future.cancel()
            dropped += 1
        return dropped
