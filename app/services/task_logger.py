"""Per-task structured log and progress/status writer."""

import logging
from uuid import UUID

from app.core.redaction import redact_sensitive_info
from app.services.task import TaskService

logger = logging.getLogger(__name__)


class TaskLogger:
    """Append-only log stream for one task.

    Every message is redacted before it is written anywhere, including the
    process log.
    """

    def __init__(self, task_id: UUID, extra_secrets: tuple[str, ...] = ()):
        self.task_id = task_id
        self._extra_secrets = extra_secrets

    def _write(self, log_type: str, message: str) -> str:
        redacted = redact_sensitive_info(message, self._extra_secrets)
        log_level = logging.ERROR if log_type == "error" else logging.INFO
        logger.log(log_level, f"[task {self.task_id}] [{log_type}] {redacted}")
        TaskService.append_log(self.task_id, log_type, redacted)
        return redacted

    def info(self, message: str) -> str:
        return self._write("info", message)

    def command(self, message: str) -> str:
        return self._write("command", message)

    def error(self, message: str) -> str:
        return self._write("error", message)

    def success(self, message: str) -> str:
        return self._write("success", message)

    def update_progress(self, progress: int, message: str | None = None) -> None:
        """Raise progress (never lowers it) and optionally log a message."""
        TaskService.update_progress(self.task_id, progress)
        if message:
            self.info(message)

    def update_status(self, status: str, message: str | None = None) -> bool:
        """Move the task to a new status.

        For "error" the message becomes the task's error summary; otherwise it is
        logged as info.

        Returns:
            True if the transition was applied (terminal statuses are final)
        """
        if status == "error":
            error = redact_sensitive_info(message, self._extra_secrets) if message else None
            return TaskService.update_task_status(self.task_id, status, error=error)

        applied = TaskService.update_task_status(self.task_id, status)
        if applied and message:
            self.info(message)
        return applied

    def complete(self, message: str = "Task completed successfully") -> bool:
        """Mark the task completed with progress 100."""
        applied = TaskService.update_task_status(self.task_id, "completed")
        if applied:
            self.success(message)
        return applied
