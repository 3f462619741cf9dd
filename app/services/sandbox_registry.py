"""Registry of live sandboxes, used to reach them from stop requests."""

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from uuid import UUID

from app.core.config import settings
from app.services.sandbox import SandboxService

logger = logging.getLogger(__name__)


@dataclass
class KillResult:
    """Outcome of a kill request."""

    success: bool
    message: str | None = None
    task_id: UUID | None = None


class SandboxRegistry:
    """Thread-safe map from task id to live sandbox handle.

    Entries are kept in registration order so the oldest one can be torn down
    when a stop request names a task with no entry. That fallback can hit a
    sandbox belonging to another task; set fallback_to_oldest=False to disable it.
    """

    def __init__(self, fallback_to_oldest: bool | None = None):
        if fallback_to_oldest is None:
            fallback_to_oldest = settings.registry_kill_oldest_fallback
        self.fallback_to_oldest = fallback_to_oldest
        self._lock = threading.Lock()
        self._sandboxes: OrderedDict[UUID, object] = OrderedDict()

    def register(self, task_id: UUID, sandbox) -> None:
        with self._lock:
            self._sandboxes[task_id] = sandbox
        logger.info(f"Registered sandbox for task {task_id}")

    def unregister(self, task_id: UUID) -> bool:
        """Remove an entry. Safe to call repeatedly.

        Returns:
            True if an entry was removed
        """
        with self._lock:
            removed = self._sandboxes.pop(task_id, None) is not None
        if removed:
            logger.info(f"Unregistered sandbox for task {task_id}")
        return removed

    def get(self, task_id: UUID):
        with self._lock:
            return self._sandboxes.get(task_id)

    def active_count(self) -> int:
        with self._lock:
            return len(self._sandboxes)

    def kill_sandbox(self, task_id: UUID, sandbox_id: str | None = None) -> KillResult:
        """Remove and destroy the sandbox registered for a task.

        A task with no entry here may own a sandbox registered in another
        process (a Celery worker); it is killed through its persisted sandbox_id.
        Failing both, falls back to the oldest registered sandbox.
        """
        with self._lock:
            sandbox = self._sandboxes.pop(task_id, None)

        if sandbox is None and sandbox_id:
            result = self._kill_by_id(task_id, sandbox_id)
            if result.success:
                return result

        with self._lock:
            target_id = task_id
            fallback = False
            if sandbox is None and self.fallback_to_oldest and self._sandboxes:
                target_id, sandbox = self._sandboxes.popitem(last=False)
                fallback = True

        if sandbox is None:
            return KillResult(
                success=False, message="No active sandbox found for this task"
            )

        try:
            sandbox.kill()
        except Exception as e:
            logger.error(f"Failed to kill sandbox for task {target_id}: {e}")
            return KillResult(
                success=False,
                message=str(e) or "Failed to kill sandbox",
                task_id=target_id,
            )

        if fallback:
            logger.warning(
                f"No sandbox for task {task_id}, killed sandbox for task {target_id}"
            )
            return KillResult(
                success=True,
                message=f"Killed sandbox for task {target_id} (fallback)",
                task_id=target_id,
            )
        return KillResult(success=True, message="Sandbox terminated", task_id=target_id)

    @staticmethod
    def _kill_by_id(task_id: UUID, sandbox_id: str) -> KillResult:
        try:
            killed = SandboxService.kill_sandbox_by_id(sandbox_id)
        except Exception as e:
            logger.error(f"Failed to kill sandbox {sandbox_id} for task {task_id}: {e}")
            return KillResult(success=False, message=str(e) or "Failed to kill sandbox")

        if not killed:
            return KillResult(success=False, message=f"Sandbox {sandbox_id} not found")
        return KillResult(success=True, message="Sandbox terminated", task_id=task_id)


# Process-wide default, injected into the orchestrator and the stop path
sandbox_registry = SandboxRegistry()
