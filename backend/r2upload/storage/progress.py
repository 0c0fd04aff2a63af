"""
Progress reporting.

Progress is delivered either through plain callbacks or through a
ProgressStream, an async iterator of snapshots that a UI can consume
without registering callbacks.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Optional, TypeVar

T = TypeVar("T")
E = TypeVar("E")


@dataclass(frozen=True)
class UploadProgress:
    """Byte-level progress of one file."""
    loaded: int
    total: int

    @property
    def fraction(self) -> float:
        if self.total <= 0:
            return 1.0
        return min(self.loaded / self.total, 1.0)

    @property
    def percentage(self) -> float:
        return self.fraction * 100


@dataclass(frozen=True)
class BatchProgress:
    """Overall progress of a batch: (completed_files + current fraction) / total_files."""
    file_index: int
    total_files: int
    completed_files: int
    filename: Optional[str] = None
    file_progress: Optional[UploadProgress] = None

    @property
    def fraction(self) -> float:
        if self.total_files <= 0:
            return 1.0
        current = self.file_progress.fraction if self.file_progress else 0.0
        return min((self.completed_files + current) / self.total_files, 1.0)

    @property
    def percentage(self) -> float:
        return self.fraction * 100


ProgressCallback = Callable[[UploadProgress], Any]
BatchProgressCallback = Callable[[BatchProgress], Any]


class ProgressTracker:
    """
    Turns raw byte counts into non-decreasing UploadProgress events.

    After close() no more events are delivered.
    """

    def __init__(self, total: int, callback: Optional[ProgressCallback] = None):
        self.total = total
        self.loaded = 0
        self._callback = callback
        self._emitted = False
        self._closed = False

    def update(self, loaded: int) -> None:
        loaded = min(max(loaded, 0), self.total)
        if self._emitted and loaded <= self.loaded:
            return
        self.loaded = max(self.loaded, loaded)
        self._emit()

    def finish(self) -> None:
        self.update(self.total)

    def close(self) -> None:
        self._closed = True

    def _emit(self) -> None:
        if self._callback is None or self._closed:
            return
        self._emitted = True
        self._callback(UploadProgress(loaded=self.loaded, total=self.total))


_DONE = object()


class ProgressStream(Generic[E, T]):
    """
    Run an upload coroutine and expose its progress events as an async iterator.

    Usage:
        stream = orchestrator.stream(files)
        async for event in stream:
            print(f"{event.percentage:.0f}%")
        results = await stream.results()
    """

    def __init__(self, run: Callable[[Callable[[E], None]], Awaitable[T]]):
        self._run = run
        self._queue: "asyncio.Queue[Any]" = asyncio.Queue()
        self._task: Optional["asyncio.Task[T]"] = None

    def _start(self) -> "asyncio.Task[T]":
        if self._task is None:
            self._task = asyncio.ensure_future(self._run(self._queue.put_nowait))
            self._task.add_done_callback(lambda _: self._queue.put_nowait(_DONE))
        return self._task

    def __aiter__(self) -> AsyncIterator[E]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[E]:
        self._start()
        while True:
            item = await self._queue.get()
            if item is _DONE:
                return
            yield item

    async def results(self) -> T:
        """Wait for the upload to finish and return (or raise) its outcome."""
        return await self._start()

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()
