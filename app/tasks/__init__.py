"""Background tasks and their dispatch."""

import logging
from concurrent.futures import ThreadPoolExecutor
from uuid import UUID

from app.core.config import settings
from app.tasks.agent_execution import execute_agent_task, run_agent_task
from app.tasks.branch_naming import generate_branch_name, run_branch_naming

logger = logging.getLogger(__name__)

_executor: ThreadPoolExecutor | None = None


def get_thread_executor() -> ThreadPoolExecutor:
    """Process-local pool used when TASK_EXECUTION_MODE=thread."""
    global _executor

    if _executor is None:
        _executor = ThreadPoolExecutor(
            max_workers=settings.task_thread_workers,
            thread_name_prefix="task-worker",
        )
    return _executor


def dispatch_task(task_id: UUID) -> None:
    """Start branch naming and task processing without waiting for either."""
    if settings.task_execution_mode == "thread":
        executor = get_thread_executor()
        executor.submit(run_branch_naming, task_id)
        executor.submit(run_agent_task, task_id)
    else:
        generate_branch_name.delay(str(task_id))
        execute_agent_task.delay(str(task_id))
    logger.info(f"Dispatched task {task_id} ({settings.task_execution_mode} mode)")


def shutdown_thread_executor() -> None:
    global _executor

    if _executor is not None:
        _executor.shutdown(wait=False)
        _executor = None


__all__ = [
    "dispatch_task",
    "execute_agent_task",
    "generate_branch_name",
    "get_thread_executor",
    "shutdown_thread_executor",
]
