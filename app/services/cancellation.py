"""Cooperative cancellation tokens."""

import threading
from collections.abc import Callable
from uuid import UUID


class CancellationToken:
    """Poll-based cancellation flag checked at defined checkpoints.

    A token is cancelled locally via cancel() or when its check callable reports
    a stop (for tasks, the persisted "stopped" status). Nothing is interrupted;
    callers decide where to look.
    """

    def __init__(self, check: Callable[[], bool] | None = None):
        self._event = threading.Event()
        self._check = check

    def cancel(self) -> None:
        self._event.set()

    def is_cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._check is not None and self._check():
            self._event.set()
            return True
        return False

    @classmethod
    def for_task(cls, task_id: UUID) -> "CancellationToken":
        """Token backed by the task's persisted stop flag."""
        from app.services.task import TaskService

        return cls(check=lambda: TaskService.is_task_stopped(task_id))
