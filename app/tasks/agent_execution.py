"""Agent execution Celery task."""

import logging
from uuid import UUID

from app.celery_app import app
from app.services import AgentExecutionService

logger = logging.getLogger(__name__)


def run_agent_task(task_id: UUID) -> dict[str, str]:
    """Process a task to a terminal status in the current worker."""
    try:
        return AgentExecutionService().execute_task(task_id)
    except Exception as exc:
        logger.error(f"Error executing task {task_id}: {exc}")
        raise


@app.task(name="app.tasks.agent_execution.execute_agent_task")
def execute_agent_task(task_id: str):
    """Execute an agent task in a Novita sandbox.

    This is a thin Celery wrapper around AgentExecutionService. It is not retried:
    the orchestrator writes a terminal status for every failure.

    Args:
        task_id: UUID of the task to execute
    """
    return run_agent_task(UUID(task_id))
