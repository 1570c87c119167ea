import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 16

TaskT = TypeVar("TaskT")
ValueT = TypeVar("ValueT")


@dataclass
class TaskOutcome(Generic[TaskT, ValueT]):
    task: TaskT
    value: ValueT | None = None
    error: BaseException | None = None
    duration_ms: int | None = None

    @property
    def success(self) -> bool:
        return self.error is None


class ParallelExecutor(Generic[TaskT, ValueT]):
    """Fan tasks out over a thread pool and collect every outcome in input order.

    A failing task never cancels its siblings; its exception is kept on the
    corresponding ``TaskOutcome`` instead.
    """

    def __init__(self, max_workers: int = DEFAULT_MAX_WORKERS, *, thread_name_prefix: str = "vwork"):
        self.max_workers = max(1, int(max_workers))
        self.thread_name_prefix = thread_name_prefix

    def run_ordered(
        self,
        tasks: list[TaskT],
        fn: Callable[[TaskT], ValueT],
    ) -> list[TaskOutcome[TaskT, ValueT]]:
        if not tasks:
            return []

        if len(tasks) == 1:
            return [self._timed_call(fn, tasks[0])]

        workers = min(self.max_workers, len(tasks))
        logger.debug(f"Executing {len(tasks)} tasks with {workers} workers")

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=self.thread_name_prefix) as executor:
            futures = [executor.submit(self._timed_call, fn, task) for task in tasks]
            wait(futures)

        return [future.result() for future in futures]

    @staticmethod
    def _timed_call(fn: Callable[[TaskT], ValueT], task: TaskT) -> TaskOutcome[TaskT, ValueT]:
        start = time.monotonic()
        try:
            value = fn(task)
        except Exception as e:
            duration_ms = int((time.monotonic() - start) * 1000)
            return TaskOutcome(task=task, error=e, duration_ms=duration_ms)
        duration_ms = int((time.monotonic() - start) * 1000)
        return TaskOutcome(task=task, value=value, duration_ms=duration_ms)
