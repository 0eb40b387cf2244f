import logging
import threading

from collections import deque
from concurrent.futures import ThreadPoolExecutor, wait, FIRST_COMPLETED
from typing import Callable, Deque, Dict, Iterable, Optional

# A task returns False if it couldn't run yet (job paused) and has to go back into the queue.
Task = Callable[[], Optional[bool]]


class FetchWorkerPool:
    """
    Runs tasks on a thread pool with at most `concurrency` of them in flight.

    Queued tasks are only handed to the executor while the pool isn't paused, which makes pause() a gate on the
    queue: tasks that already run are never interrupted. clear() drops everything that hasn't started yet.
    """
    def __init__(self, concurrency: int, logger: logging.Logger = None):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")  # important to avoid deadlock

        self.concurrency = concurrency
        self.logger = logger or logging.getLogger(__name__)
        self._pending: Deque[Task] = deque()
        self._condition = threading.Condition()
        self._paused = False

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def size(self) -> int:
        """Number of queued tasks that haven't started yet."""
        with self._condition:
            return len(self._pending)

    def pause(self) -> None:
        with self._condition:
            self._paused = True

    def resume(self) -> None:
        with self._condition:
            self._paused = False
            self._condition.notify_all()

    def clear(self) -> int:
        with self._condition:
            dropped = len(self._pending)
            self._pending.clear()
            self._condition.notify_all()

        if dropped:
            self.logger.debug(f"Dropped {dropped} queued tasks")

        return dropped

    def submit_all(self, tasks: Iterable[Task]) -> None:
        """
        Queues all tasks and blocks until the pool is drained: every task finished, failed or got dropped.
        The first exception of a task clears the queue, the tasks in flight are still waited for, then the
        exception is raised.
        """
        with self._condition:
            self._pending.extend(tasks)
            total = len(self._pending)

        if total == 0:
            return

        first_error: Optional[BaseException] = None
        in_flight: Dict = {}  # future -> task
        workers = max(1, min(self.concurrency, total))
        self.logger.debug(f"Pool start: tasks={total} workers={workers}")

        with ThreadPoolExecutor(max_workers=workers) as executor:
            while True:
                with self._condition:
                    while not self._paused and self._pending and len(in_flight) < self.concurrency:
                        task = self._pending.popleft()
                        in_flight[executor.submit(task)] = task

                    if not in_flight:
                        if not self._pending:
                            break

                        # Paused with queued work and nothing running: sleep until resume() or clear()
                        self.logger.debug(f"Pool paused with {len(self._pending)} queued tasks")
                        self._condition.wait()
                        continue

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)

                for future in done:
                    task = in_flight.pop(future)
                    try:
                        settled = future.result()

                    except Exception as e:
                        if first_error is None:
                            first_error = e
                            self.logger.error(f"Task failed, dropping the queue: {e}")
                            self.clear()

                        else:
                            self.logger.debug(f"Another task failed while draining: {e}")

                        continue

                    if settled is False and first_error is None:
                        with self._condition:
                            self._pending.appendleft(task)

        self.logger.debug("Pool drained")
        if first_error is not None:
            raise first_error
