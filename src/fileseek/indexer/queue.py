from __future__ import annotations

import queue
from typing import Generic, Iterator, Optional, TypeVar

T = TypeVar("T")

_CLOSED = object()


class JobQueue(Generic[T]):
    """FIFO channel between a producer thread and a consumer.

    `close()` ends iteration for the consumer once queued items are drained.
    """

    def __init__(self, maxsize: int = 0) -> None:
        self._q: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def put(self, job: T, timeout: float | None = None) -> None:
        if self._closed:
            return
        self._q.put(job, timeout=timeout)

    def get(self, timeout: float | None = None) -> Optional[T]:
        """Next job, or None once the queue is closed. Raises queue.Empty on timeout."""
        item = self._q.get(timeout=timeout)
        self._q.task_done()
        if item is _CLOSED:
            # Leave the marker for any other consumer
            self._q.put(_CLOSED)
            return None
        return item  # type: ignore[return-value]

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._q.put(_CLOSED)

    def __iter__(self) -> Iterator[T]:
        while True:
            job = self.get()
            if job is None:
                return
            yield job
