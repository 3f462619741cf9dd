"""Tests for background task dispatch."""

from app.core.config import settings
from app.tasks import dispatch_task, shutdown_thread_executor
from app.tasks.agent_execution import execute_agent_task
from app.tasks.branch_naming import generate_branch_name, run_branch_naming
from tests.conftest import create_test_task, wait_until


def test_dispatch_celery_mode(mock_celery_task):
    """Test that both background tasks are queued with the task id."""
    task = create_test_task(dispatch=False)

    dispatch_task(task.id)

    execute, generate = mock_celery_task
    execute.assert_called_once_with(str(task.id))
    generate.assert_called_once_with(str(task.id))


def test_dispatch_thread_mode(mocker, mock_celery_task):
    """Test that thread mode runs both jobs in-process."""
    mocker.patch.object(settings, "task_execution_mode", "thread")
    run_agent = mocker.patch("app.tasks.run_agent_task")
    run_naming = mocker.patch("app.tasks.run_branch_naming")
    task = create_test_task(dispatch=False)

    try:
        dispatch_task(task.id)
        assert wait_until(lambda: run_agent.called and run_naming.called)
    finally:
        shutdown_thread_executor()

    execute, _ = mock_celery_task
    execute.assert_not_called()
    run_agent.assert_called_once_with(task.id)
    run_naming.assert_called_once_with(task.id)


def test_task_names():
    """Test the registered Celery task names."""
    assert execute_agent_task.name == "app.tasks.agent_execution.execute_agent_task"
    assert generate_branch_name.name == "app.tasks.branch_naming.generate_branch_name"


def test_run_branch_naming_never_raises(mocker):
    """Test that naming failures are logged, not raised."""
    mocker.patch(
        "app.tasks.branch_naming.BranchNameService.generate_for_task",
        side_effect=RuntimeError("database unavailable"),
    )
    task = create_test_task(dispatch=False)

    assert run_branch_naming(task.id) is None


def test_execute_agent_task_parses_id(mocker):
    """Test that the Celery wrapper hands a UUID to the orchestrator."""
    execute = mocker.patch(
        "app.tasks.agent_execution.AgentExecutionService.execute_task",
        return_value={"status": "completed"},
    )
    task = create_test_task(dispatch=False)

    assert execute_agent_task(str(task.id)) == {"status": "completed"}
    execute.assert_called_once_with(task.id)
