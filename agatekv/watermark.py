"""Tracking of the lowest index below which every task has finished."""

from __future__ import annotations

import heapq
import queue
import threading
from dataclasses import dataclass
from typing import Iterable, Optional

_QUEUE_SIZE = 100


@dataclass(frozen=True)
class _Mark:
    """One or more indices that began or finished, or a waiter for an index."""

    indices: tuple[int, ...]
    done: bool = False
    waiter: Optional[threading.Event] = None


class WaterMark:
    """Keeps track of the minimum unfinished index.

    An index ``k`` is done once ``done(k)`` has been called as many times as
    ``begin(k)``, and at least once. An index may also become done through
    :meth:`set_done_until`, as long as that call is not interleaved with
    ``begin``/``done`` calls.

    Marks are processed by a background thread started with :meth:`init` and
    stopped with :meth:`close`.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._done_until = 0
        self._last_index = 0
        self._queue: "queue.Queue[Optional[_Mark]]" = queue.Queue(maxsize=_QUEUE_SIZE)
        self._thread: Optional[threading.Thread] = None
        self._error: Optional[BaseException] = None

    def __enter__(self) -> "WaterMark":
        self.init()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def init(self) -> None:
        """Start the thread that processes marks. Must be called before use."""
        if self._thread is not None:
            raise RuntimeError(f"watermark {self.name} is already running")
        self._thread = threading.Thread(
            target=self._process, name=f"watermark-{self.name}", daemon=True
        )
        self._thread.start()

    def close(self) -> None:
        """Stop the processing thread; re-raise any error it met."""
        if self._thread is None:
            return
        if self._thread.is_alive():
            self._queue.put(None)
        self._thread.join()
        self._thread = None
        if self._error is not None:
            error, self._error = self._error, None
            raise error

    def begin(self, index: int) -> None:
        """Mark ``index`` as begun and make it the last index."""
        self._last_index = index
        self._queue.put(_Mark(indices=(index,)))

    def begin_many(self, indices: Iterable[int]) -> None:
        """Like :meth:`begin` for several indices; the last one becomes the last index."""
        indices = tuple(indices)
        if not indices:
            raise ValueError("begin_many needs at least one index")
        self._last_index = indices[-1]
        self._queue.put(_Mark(indices=indices))

    def done(self, index: int) -> None:
        """Mark ``index`` as done."""
        self._queue.put(_Mark(indices=(index,), done=True))

    def done_many(self, indices: Iterable[int]) -> None:
        """Like :meth:`done` for several indices."""
        self._queue.put(_Mark(indices=tuple(indices), done=True))

    def done_until(self) -> int:
        """The largest index such that it and every smaller index are done."""
        return self._done_until

    def set_done_until(self, value: int) -> None:
        """Set the largest index below which everything is done."""
        self._done_until = value

    def last_index(self) -> int:
        """The last index passed to ``begin``."""
        return self._last_index

    def wait_for_mark(self, index: int) -> None:
        """Block until ``index`` is done."""
        if self._done_until >= index:
            return
        waiter = threading.Event()
        self._queue.put(_Mark(indices=(index,), waiter=waiter))
        waiter.wait()

    def _process(self) -> None:
        indices: list[int] = []
        pending: dict[int, int] = {}
        waiters: dict[int, list[threading.Event]] = {}

        def process_one(index: int, done: bool) -> None:
            if index not in pending:
                heapq.heappush(indices, index)
            count = pending.get(index, 0)
            pending[index] = max(count - 1, 0) if done else count + 1

            done_until = self._done_until
            if done_until > index:
                raise RuntimeError(
                    f"name: {self.name}, done_until: {done_until}, index: {index}"
                )

            until = done_until
            while indices:
                smallest = indices[0]
                if pending.get(smallest, 0) > 0:
                    break
                heapq.heappop(indices)
                pending.pop(smallest, None)
                until = smallest

            if until != done_until:
                self._done_until = until

            for idx in [idx for idx in waiters if idx <= until]:
                for waiter in waiters.pop(idx):
                    waiter.set()

        try:
            while True:
                mark = self._queue.get()
                if mark is None:
                    return
                if mark.waiter is not None:
                    index = mark.indices[0]
                    if self._done_until >= index:
                        mark.waiter.set()
                    else:
                        waiters.setdefault(index, []).append(mark.waiter)
                    continue
                for index in mark.indices:
                    process_one(index, mark.done)
        except BaseException as err:  # noqa: BLE001 - reported by close()
            self._error = err
        finally:
            for events in waiters.values():
                for waiter in events:
                    waiter.set()