# solver/tasks.py — owned worker pool for independent solves
from __future__ import annotations

import itertools
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

_STOP = object()


@dataclass
class QueuedTask:
    task_id: int
    fn: Callable[..., Any]
    args: tuple = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    state: str = "queued"          # queued | running | done | failed | cancelled
    result: Any = None
    error: Optional[BaseException] = None
    submitted: float = field(default_factory=time.time)
    finished: Optional[float] = None
    _done: threading.Event = field(default_factory=threading.Event, repr=False)

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def get(self, timeout: Optional[float] = None) -> Any:
        if not self._done.wait(timeout):
            raise TimeoutError(f"task {self.task_id} still {self.state}")
        if self.error is not None:
            raise self.error
        return self.result


class TaskQueue:
    """
    FIFO queue drained by ``workers`` daemon threads. The queue is an object
    you own: create it, submit, then :meth:`close` (or use it as a context
    manager). Cancelling only affects tasks that have not started.
    """

    def __init__(self, workers: int = 1, name: str = "solve"):
        self.workers = max(1, int(workers))
        self._q: "queue.Queue[Any]" = queue.Queue()
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._tasks: Dict[int, QueuedTask] = {}
        self._closed = False
        self._threads = [
            threading.Thread(target=self._worker, name=f"{name}-{i}", daemon=True)
            for i in range(self.workers)
        ]
        for th in self._threads:
            th.start()

    def __enter__(self) -> "TaskQueue":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _worker(self) -> None:
        while True:
            item = self._q.get()
            try:
                if item is _STOP:
                    return
                task: QueuedTask = item
                with self._lock:
                    if task.state == "cancelled":
                        continue
                    task.state = "running"
                try:
                    task.result = task.fn(*task.args, **task.kwargs)
                    task.state = "done"
                except Exception as e:
                    task.error = e
                    task.state = "failed"
                task.finished = time.time()
                task._done.set()
            finally:
                self._q.task_done()

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> QueuedTask:
        with self._lock:
            if self._closed:
                raise RuntimeError("task queue is closed")
            task = QueuedTask(next(self._ids), fn, args, kwargs)
            self._tasks[task.task_id] = task
        self._q.put(task)
        return task

    def cancel(self, task: QueuedTask) -> bool:
        with self._lock:
            if task.state != "queued":
                return False
            task.state = "cancelled"
            task.finished = time.time()
        task._done.set()
        return True

    def wait_all(self, timeout: Optional[float] = None) -> bool:
        deadline = None if timeout is None else time.monotonic() + timeout
        for task in list(self._tasks.values()):
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            if not task.wait(remaining):
                return False
        return True

    def statistics(self) -> Dict[str, int]:
        with self._lock:
            stats = {"queued": 0, "running": 0, "done": 0, "failed": 0, "cancelled": 0}
            for task in self._tasks.values():
                stats[task.state] += 1
        stats["total"] = sum(stats.values())
        stats["workers"] = self.workers
        return stats

    def tasks(self) -> List[QueuedTask]:
        with self._lock:
            return list(self._tasks.values())

    def close(self, wait: bool = True) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        for _ in self._threads:
            self._q.put(_STOP)
        if wait:
            for th in self._threads:
                th.join()


__all__ = ["QueuedTask", "TaskQueue"]
