"""Task service for business logic."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import urlparse
from uuid import UUID

from sqlalchemy import delete, func, update
from sqlmodel import col, select

from app.core.database import get_session
from app.core.errors import NotFoundError, ValidationError
from app.models import (
    ACTIVE_STATUSES,
    AGENT_TYPES,
    LOG_TYPES,
    TERMINAL_STATUSES,
    Task,
    TaskLog,
)

logger = logging.getLogger(__name__)

# Bulk-delete action names mapped to the status they remove
DELETE_ACTIONS = {"completed": "completed", "failed": "error", "stopped": "stopped"}


@dataclass
class StopResult:
    """Outcome of a stop request."""

    success: bool
    message: str


class TaskService:
    """Service for task-related business logic."""

    @staticmethod
    def validate_task_request(
        prompt: str,
        repository_url: str,
        selected_agent: str,
        max_duration: int,
    ) -> None:
        """Validate a task request before anything is persisted.

        Raises:
            ValidationError: If any field is malformed
        """
        if not prompt or not prompt.strip():
            raise ValidationError("Prompt is required")

        parsed = urlparse(repository_url or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(f"Must be a valid URL: {repository_url!r}")

        if selected_agent not in AGENT_TYPES:
            raise ValidationError(
                f"Unknown agent {selected_agent!r}. "
                f"Valid agents: {', '.join(AGENT_TYPES)}"
            )

        if max_duration < 1:
            raise ValidationError("max_duration must be at least 1 minute")

    @staticmethod
    def create_task(
        prompt: str,
        repository_url: str | None = None,
        selected_agent: str = "claude",
        selected_model: str | None = None,
        install_dependencies: bool = False,
        max_duration: int = 5,
        parent_task_id: UUID | None = None,
        dispatch: bool = True,
    ) -> Task:
        """Create a new task and queue it for execution.

        A follow-up task (parent_task_id set) inherits the parent's repository
        and continues on the parent's branch.
        """
        branch_name = None
        if parent_task_id is not None:
            parent = TaskService.get_task_by_id(parent_task_id)
            repository_url = repository_url or parent.repository_url
            branch_name = parent.branch_name

        TaskService.validate_task_request(
            prompt, repository_url or "", selected_agent, max_duration
        )

        with get_session() as session:
            task = Task(
                prompt=prompt,
                repository_url=repository_url,
                selected_agent=selected_agent,
                selected_model=selected_model,
                install_dependencies=install_dependencies,
                max_duration=max_duration,
                parent_task_id=parent_task_id,
                branch_name=branch_name,
                status="pending",
                progress=0,
            )
            session.add(task)
            session.commit()
            session.refresh(task)

        if dispatch:
            # Fire and forget: branch naming and processing race in the background
            from app.tasks import dispatch_task

            dispatch_task(task.id)

        return task

    @staticmethod
    def get_task_by_id(task_id: UUID) -> Task:
        """Get task by ID."""
        with get_session() as session:
            statement = select(Task).where(Task.id == task_id)
            result = session.execute(statement)
            task = result.scalar_one_or_none()

            if task is None:
                raise NotFoundError(f"Task with id {task_id} not found")

            return task

    @staticmethod
    def list_tasks(limit: int = 100, offset: int = 0) -> tuple[list[Task], int]:
        """List all tasks with pagination."""
        with get_session() as session:
            # Get total count
            count_statement = select(func.count()).select_from(Task)
            total = session.execute(count_statement).scalar()

            # Get paginated results ordered by created_at desc
            statement = (
                select(Task)
                .order_by(col(Task.created_at).desc())
                .offset(offset)
                .limit(limit)
            )
            tasks = session.execute(statement).scalars().all()

            return list(tasks), total

    @staticmethod
    def update_task_status(
        task_id: UUID,
        status: str,
        error: str | None = None,
    ) -> bool:
        """Move an active task to a new status.

        Only pending/processing tasks can change status, so a terminal status
        (in particular "stopped") is never overwritten.

        Returns:
            True if the transition was applied
        """
        now = datetime.now(UTC)
        values: dict = {"status": status, "updated_at": now}
        if error is not None:
            values["error"] = error
        if status in TERMINAL_STATUSES:
            values["completed_at"] = now
        if status == "completed":
            values["progress"] = 100

        allowed_from = ("pending",) if status == "pending" else ACTIVE_STATUSES
        statement = (
            update(Task)
            .where(col(Task.id) == task_id, col(Task.status).in_(allowed_from))
            .values(**values)
        )
        with get_session() as session:
            applied = session.execute(statement).rowcount > 0

        if not applied:
            current = TaskService.get_task_by_id(task_id)
            logger.info(
                f"Ignoring status {status!r} for task {task_id}: "
                f"already {current.status!r}"
            )
        return applied

    @staticmethod
    def update_progress(task_id: UUID, progress: int) -> bool:
        """Raise a processing task's progress. Never lowers it."""
        progress = max(0, min(100, progress))
        statement = (
            update(Task)
            .where(
                col(Task.id) == task_id,
                col(Task.status) == "processing",
                col(Task.progress) <= progress,
            )
            .values(progress=progress, updated_at=datetime.now(UTC))
        )
        with get_session() as session:
            return session.execute(statement).rowcount > 0

    @staticmethod
    def append_log(task_id: UUID, log_type: str, message: str) -> TaskLog:
        """Append an entry to a task's log stream."""
        if log_type not in LOG_TYPES:
            raise ValueError(f"Invalid log type: {log_type}")

        with get_session() as session:
            entry = TaskLog(task_id=task_id, type=log_type, message=message)
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return entry

    @staticmethod
    def get_task_logs(
        task_id: UUID, limit: int = 100, offset: int = 0
    ) -> tuple[list[TaskLog], int]:
        """Get logs for a task in generation order, with pagination.

        Raises:
            NotFoundError: If task not found
        """
        # Verify task exists
        TaskService.get_task_by_id(task_id)

        with get_session() as session:
            count_statement = (
                select(func.count())
                .select_from(TaskLog)
                .where(TaskLog.task_id == task_id)
            )
            total = session.execute(count_statement).scalar()

            statement = (
                select(TaskLog)
                .where(TaskLog.task_id == task_id)
                .order_by(col(TaskLog.id).asc())
                .offset(offset)
                .limit(limit)
            )
            logs = session.execute(statement).scalars().all()

            return list(logs), total

    @staticmethod
    def set_branch_name_if_absent(task_id: UUID, branch_name: str) -> bool:
        """Persist a branch name unless one is already set (compare-and-set).

        Returns:
            True if this call wrote the name
        """
        statement = (
            update(Task)
            .where(col(Task.id) == task_id, col(Task.branch_name).is_(None))
            .values(branch_name=branch_name, updated_at=datetime.now(UTC))
        )
        with get_session() as session:
            return session.execute(statement).rowcount > 0

    @staticmethod
    def set_sandbox_info(
        task_id: UUID,
        sandbox_url: str | None = None,
        sandbox_id: str | None = None,
    ) -> None:
        """Record where the task's sandbox lives."""
        values: dict = {"updated_at": datetime.now(UTC)}
        if sandbox_url is not None:
            values["sandbox_url"] = sandbox_url
        if sandbox_id is not None:
            values["sandbox_id"] = sandbox_id

        with get_session() as session:
            session.execute(
                update(Task).where(col(Task.id) == task_id).values(**values)
            )

    @staticmethod
    def is_task_stopped(task_id: UUID) -> bool:
        """Check the persisted stop flag."""
        try:
            return TaskService.get_task_by_id(task_id).status == "stopped"
        except Exception as e:
            logger.error(f"Error checking task status for {task_id}: {e}")
            return False

    @staticmethod
    def stop_task(task_id: UUID, registry=None) -> StopResult:
        """Request a stop. Idempotent.

        Flips the persisted status to "stopped" (observed by the orchestrator at its
        checkpoints) and tears down the task's sandbox through the registry.

        Raises:
            NotFoundError: If task not found
        """
        from app.services.sandbox_registry import sandbox_registry
        from app.services.task_logger import TaskLogger

        registry = registry if registry is not None else sandbox_registry
        task = TaskService.get_task_by_id(task_id)

        if task.status == "stopped":
            return StopResult(success=True, message="Task is already stopped")
        if task.status not in ACTIVE_STATUSES:
            return StopResult(
                success=False,
                message=f"Task cannot be stopped because it is already {task.status}",
            )

        if not TaskService.update_task_status(task_id, "stopped"):
            # Lost the race against a terminal write
            current = TaskService.get_task_by_id(task_id)
            if current.status == "stopped":
                return StopResult(success=True, message="Task is already stopped")
            return StopResult(
                success=False,
                message=f"Task cannot be stopped because it is already {current.status}",
            )

        task_logger = TaskLogger(task_id)
        task_logger.error("Task was stopped by user")

        kill_result = registry.kill_sandbox(task_id, sandbox_id=task.sandbox_id)
        if kill_result.success:
            task_logger.info(kill_result.message or "Sandbox terminated")
        else:
            task_logger.info(f"No sandbox to terminate: {kill_result.message}")

        return StopResult(success=True, message="Task stopped successfully")

    @staticmethod
    def delete_tasks_by_status(actions: list[str]) -> tuple[str, int]:
        """Delete tasks whose status matches any of the given actions.

        Args:
            actions: Any of "completed", "failed", "stopped"

        Returns:
            Tuple of (summary message, deleted count)

        Raises:
            ValidationError: If no actions or an unknown action is given
        """
        actions = [a.strip() for a in actions if a.strip()]
        if not actions:
            raise ValidationError("Action parameter is required")

        invalid = [a for a in actions if a not in DELETE_ACTIONS]
        if invalid:
            raise ValidationError(
                f"Invalid action(s): {', '.join(invalid)}. "
                f"Valid actions: {', '.join(DELETE_ACTIONS)}"
            )

        statuses = [DELETE_ACTIONS[a] for a in actions]
        with get_session() as session:
            rows = session.execute(
                select(Task.id, Task.status).where(col(Task.status).in_(statuses))
            ).all()
            task_ids = [row[0] for row in rows]
            if task_ids:
                # Follow-ups outlive their parent
                session.execute(
                    update(Task)
                    .where(col(Task.parent_task_id).in_(task_ids))
                    .values(parent_task_id=None)
                )
                session.execute(delete(TaskLog).where(col(TaskLog.task_id).in_(task_ids)))
                session.execute(delete(Task).where(col(Task.id).in_(task_ids)))

        counts = {a: sum(1 for _, s in rows if s == DELETE_ACTIONS[a]) for a in actions}
        parts = [f"{count} {action}" for action, count in counts.items() if count > 0]
        message = (
            f"{' and '.join(parts)} task(s) deleted successfully"
            if parts
            else "No tasks found to delete"
        )
        return message, len(task_ids)
