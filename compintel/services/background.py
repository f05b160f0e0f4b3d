"""
Background task runners for best-effort post-processing.

Post-save enrichment and aggregation must never fail a save, but their
outcome should still be visible. Each submitted task is tracked as a
BackgroundTask whose status and error can be inspected, and failures are
logged when they happen.

Task records are kept in a bounded history (max_history, newest kept).
"""

import logging
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Deque, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_HISTORY = 100


class TaskStatus:
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BackgroundTask:
    """A tracked unit of background work."""
    name: str
    status: str = TaskStatus.PENDING
    result: Any = None
    error: Optional[BaseException] = None
    submitted_at: datetime = field(default_factory=_utcnow)
    finished_at: Optional[datetime] = None

    @property
    def done(self) -> bool:
        return self.status != TaskStatus.PENDING


def _run_tracked(task: BackgroundTask, func: Callable[..., Any], args, kwargs) -> None:
    try:
        task.result = func(*args, **kwargs)
        task.status = TaskStatus.SUCCEEDED
    except Exception as e:
        task.error = e
        task.status = TaskStatus.FAILED
        logger.warning(f"Background task {task.name} failed: {e}")
    finally:
        task.finished_at = _utcnow()


class InlineTaskRunner:
    """Runs tasks synchronously in the caller's thread (tests, CLI)."""

    def __init__(self, max_history: int = DEFAULT_HISTORY):
        self.tasks: Deque[BackgroundTask] = deque(maxlen=max_history)

    def submit(self, name: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> BackgroundTask:
        task = BackgroundTask(name=name)
        self.tasks.append(task)
        _run_tracked(task, func, args, kwargs)
        return task

    def wait(self, timeout: Optional[float] = None) -> List[BackgroundTask]:
        return list(self.tasks)

    def shutdown(self) -> None:
        pass


class BackgroundTaskRunner:
    """
    Runs tasks on a thread pool and keeps a record of each one.

    At most max_history records are kept. wait() hands back the records it
    collected and forgets the finished ones, so callers that drain the runner
    regularly hold only in-flight tasks.

    Usage:
        runner = BackgroundTaskRunner(max_workers=2)
        task = runner.submit("aggregate:123", aggregate, "123")
        runner.wait(timeout=30)
        print(task.status, task.error)
    """

    def __init__(self, max_workers: int = 2, max_history: int = DEFAULT_HISTORY):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="compintel-bg")
        self._futures: List[Future] = []
        self.tasks: Deque[BackgroundTask] = deque(maxlen=max_history)
        self._lock = threading.Lock()

    def submit(self, name: str, func: Callable[..., Any], *args: Any, **kwargs: Any) -> BackgroundTask:
        task = BackgroundTask(name=name)
        future = self._executor.submit(_run_tracked, task, func, args, kwargs)
        with self._lock:
            self.tasks.append(task)
            self._futures = [f for f in self._futures if not f.done()]
            self._futures.append(future)
        logger.debug(f"Submitted background task {name}")
        return task

    def pending(self) -> List[BackgroundTask]:
        with self._lock:
            return [t for t in self.tasks if not t.done]

    def wait(self, timeout: Optional[float] = None) -> List[BackgroundTask]:
        """
        Block until submitted tasks finish (or timeout).

        Returns:
            The task records held when the wait ended; finished ones are
            then dropped from the history
        """
        with self._lock:
            futures = list(self._futures)
        wait(futures, timeout=timeout)
        with self._lock:
            self._futures = [f for f in self._futures if not f.done()]
            collected = list(self.tasks)
            self.tasks = deque((t for t in self.tasks if not t.done), maxlen=self.tasks.maxlen)
        return collected

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)
