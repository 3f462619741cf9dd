"""Branch name generation Celery task."""

import logging
from uuid import UUID

from app.celery_app import app
from app.services.branch_name import BranchNameService

logger = logging.getLogger(__name__)


def run_branch_naming(task_id: UUID) -> str | None:
    """Generate and persist a branch name, logging rather than raising failures."""
    try:
        return BranchNameService.generate_for_task(task_id)
    except Exception as exc:
        logger.error(f"Error generating branch name for task {task_id}: {exc}")
        return None


@app.task(name="app.tasks.branch_naming.generate_branch_name")
def generate_branch_name(task_id: str):
    """Race a generated branch name against the orchestrator's fallback.

    Args:
        task_id: UUID of the task to name a branch for
    """
    return run_branch_naming(UUID(task_id))
