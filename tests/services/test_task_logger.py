"""Tests for TaskLogger."""

from app.core.config import settings
from app.services import TaskLogger, TaskService
from tests.conftest import FakeSandbox, create_test_task, ok


def _messages(task_id) -> list[str]:
    logs, _ = TaskService.get_task_logs(task_id, limit=1000)
    return [log.message for log in logs]


def test_log_types_are_recorded():
    """Test that each helper writes its own entry type."""
    task = create_test_task()
    task_logger = TaskLogger(task.id)

    task_logger.info("starting")
    task_logger.command("git status")
    task_logger.error("something failed")
    task_logger.success("done")

    logs, total = TaskService.get_task_logs(task.id)
    assert total == 4
    assert [log.type for log in logs] == ["info", "command", "error", "success"]


def test_secret_in_command_is_never_persisted(mocker):
    """Test that a secret embedded in a command string is redacted before storage."""
    mocker.patch.object(settings, "github_token", "tok_ABCDEF123")
    task = create_test_task()
    task_logger = TaskLogger(task.id)

    task_logger.command("git clone https://tok_ABCDEF123@github.com/test/repo.git")
    task_logger.command("export GITHUB_TOKEN=tok_ABCDEF123")
    task_logger.error("push failed for tok_ABCDEF123")

    messages = _messages(task.id)
    assert len(messages) == 3
    assert all("tok_ABCDEF123" not in message for message in messages)


def test_secret_in_command_output_is_never_persisted(mocker):
    """Test that output echoed by a sandbox command is redacted."""
    from app.services.agents.base import run_and_log_command

    mocker.patch.object(settings, "github_token", "tok_ABCDEF123")
    task = create_test_task()
    task_logger = TaskLogger(task.id)
    sandbox = FakeSandbox({"env": ok("GITHUB_TOKEN=tok_ABCDEF123\nHOME=/home/user")})

    run_and_log_command(sandbox, "env", None, task_logger)

    messages = _messages(task.id)
    assert messages[0] == "env"
    assert all("tok_ABCDEF123" not in message for message in messages)


def test_update_progress_logs_message():
    """Test that a progress update can carry a log message."""
    task = create_test_task()
    task_logger = TaskLogger(task.id)
    task_logger.update_status("processing", "Task started")

    task_logger.update_progress(25, "Halfway there")

    assert TaskService.get_task_by_id(task.id).progress == 25
    assert _messages(task.id) == ["Task started", "Halfway there"]


def test_update_status_error_stores_redacted_summary(mocker):
    """Test that an error status keeps a redacted error summary."""
    mocker.patch.object(settings, "github_token", "tok_ABCDEF123")
    task = create_test_task()
    task_logger = TaskLogger(task.id)

    applied = task_logger.update_status("error", "clone failed with tok_ABCDEF123")

    assert applied is True
    updated = TaskService.get_task_by_id(task.id)
    assert updated.status == "error"
    assert "tok_ABCDEF123" not in updated.error
    assert updated.error.startswith("clone failed with")


def test_complete_after_stop_is_ignored():
    """Test that completion does not overwrite a stop."""
    task = create_test_task()
    task_logger = TaskLogger(task.id)
    TaskService.update_task_status(task.id, "stopped")

    assert task_logger.complete() is False
    assert TaskService.get_task_by_id(task.id).status == "stopped"
    assert "Task completed successfully" not in _messages(task.id)
