"""Tests for AgentExecutionService."""

import json
import threading

import pytest

from app.core.config import settings
from app.core.errors import ProvisioningError
from app.services import AgentExecutionService, SandboxRegistry, TaskService
from app.services.agent_execution import TaskExecutionContext
from app.services.sandbox import CommandResult
from tests.conftest import create_test_task, fail, ok, wait_until

CLAUDE_REPLY = ok(json.dumps({"result": "Fixed the typo in README.md"}))


class RecordingRegistry(SandboxRegistry):
    """Registry that counts registrations and removals."""

    def __init__(self):
        super().__init__(fallback_to_oldest=False)
        self.registrations = 0
        self.removals = 0

    def register(self, task_id, sandbox):
        self.registrations += 1
        super().register(task_id, sandbox)

    def unregister(self, task_id):
        removed = super().unregister(task_id)
        if removed:
            self.removals += 1
        return removed

    def kill_sandbox(self, task_id, sandbox_id=None):
        result = super().kill_sandbox(task_id, sandbox_id)
        if result.task_id is not None:
            self.removals += 1
        return result


@pytest.fixture
def registry():
    return RecordingRegistry()


@pytest.fixture
def service(registry):
    return AgentExecutionService(registry=registry)


@pytest.fixture
def sandbox(fake_sandbox):
    fake_sandbox.respond("claude -p", CLAUDE_REPLY)
    fake_sandbox.respond("git status --porcelain", ok(" M README.md"))
    return fake_sandbox


@pytest.fixture
def mock_create(mocker, sandbox):
    return mocker.patch(
        "app.services.provisioning.SandboxService.create_sandbox",
        return_value=sandbox,
    )


def _logs(task_id):
    logs, _ = TaskService.get_task_logs(task_id, limit=1000)
    return logs


def _messages(task_id) -> list[str]:
    return [log.message for log in _logs(task_id)]


def test_execute_task_success(service, registry, sandbox, mock_create):
    """Test a task running end to end with the claude agent."""
    task = create_test_task(prompt="Fix typo in README")

    result = service.execute_task(task.id)

    assert result["status"] == "completed"
    updated = TaskService.get_task_by_id(task.id)
    assert updated.status == "completed"
    assert updated.progress == 100
    assert updated.error is None
    assert updated.branch_name.startswith("agent/")
    assert updated.sandbox_id == "sbx-test"
    assert updated.sandbox_url == "https://3000-sbx-test.sandbox.test"
    assert updated.completed_at is not None

    log_types = [log.type for log in _logs(task.id)]
    assert "command" in log_types
    assert "success" in log_types
    messages = _messages(task.id)
    assert "Agent response: Fixed the typo in README.md" in messages
    assert messages[-1] == "Task completed successfully"

    assert f"git push origin {updated.branch_name}" in sandbox.commands
    assert "git commit -m 'Fix typo in README'" in sandbox.commands
    assert sandbox.killed
    assert registry.registrations == 1
    assert registry.removals == 1
    assert registry.active_count() == 0


def test_execute_task_uses_generated_branch_name(service, sandbox, mock_create):
    """Test that a name resolved before provisioning is the one pushed."""
    task = create_test_task()
    TaskService.set_branch_name_if_absent(task.id, "fix/readme-typo-a1b2c3")

    service.execute_task(task.id)

    assert TaskService.get_task_by_id(task.id).branch_name == "fix/readme-typo-a1b2c3"
    assert "git checkout -b fix/readme-typo-a1b2c3" in sandbox.commands
    assert "git push origin fix/readme-typo-a1b2c3" in sandbox.commands
    assert "Using generated branch name: fix/readme-typo-a1b2c3" in _messages(task.id)


def test_execute_follow_up_task(service, sandbox, mock_create):
    """Test that a follow-up continues on its parent's branch."""
    parent = create_test_task(prompt="Initial change")
    TaskService.set_branch_name_if_absent(parent.id, "feature/parent")
    child = TaskService.create_task(prompt="Follow up change", parent_task_id=parent.id)

    result = service.execute_task(child.id)

    assert result["status"] == "completed"
    assert mock_create.call_args.kwargs["revision"] == "feature/parent"
    assert "git checkout feature/parent" in sandbox.commands
    assert "git push origin feature/parent" in sandbox.commands
    assert TaskService.get_task_by_id(child.id).branch_name == "feature/parent"


def test_execute_task_no_changes(service, sandbox, mock_create):
    """Test that an agent making no changes still completes."""
    sandbox.respond("git status --porcelain", ok(""))
    task = create_test_task()

    result = service.execute_task(task.id)

    assert result["status"] == "completed"
    assert not sandbox.ran("git push")
    assert "Claude CLI executed successfully (No changes made)" in _messages(task.id)


def test_install_failure_still_runs_agent(service, sandbox, mock_create):
    """Test that dependency failures never fail the task."""
    sandbox.respond("test -f package.json", ok())
    sandbox.respond("npm install --no-audit", fail("ETIMEDOUT"))
    task = create_test_task(install_dependencies=True)

    result = service.execute_task(task.id)

    assert result["status"] == "completed"
    assert sandbox.ran("claude -p")
    assert any(m.startswith("Warning: Failed to install Node.js") for m in _messages(task.id))


def test_push_permission_failure(service, sandbox, mock_create):
    """Test that a rejected push fails the task after committing locally."""
    sandbox.respond("git push", fail("remote: Permission to test/repo.git denied (403)"))
    task = create_test_task()

    result = service.execute_task(task.id)

    assert result["status"] == "error"
    updated = TaskService.get_task_by_id(task.id)
    assert updated.status == "error"
    assert updated.error == "Failed to push changes to repository"
    messages = _messages(task.id)
    assert "Task failed: Unable to push changes to repository" in messages
    assert "Error: Failed to push changes to repository" in messages
    assert sandbox.killed


def test_agent_failure(service, sandbox, mock_create):
    """Test that an agent failure becomes the task error."""
    sandbox.respond("claude -p", fail("rate limited"))
    task = create_test_task()

    service.execute_task(task.id)

    updated = TaskService.get_task_by_id(task.id)
    assert updated.status == "error"
    assert updated.error == "Claude CLI failed (exit code 1): rate limited"
    assert not sandbox.ran("git push")
    assert sandbox.killed


def test_missing_agent_credentials(mocker, service, sandbox, mock_create):
    """Test that missing credentials fail the task with a clear message."""
    mocker.patch.object(settings, "anthropic_api_key", None)
    task = create_test_task()

    service.execute_task(task.id)

    updated = TaskService.get_task_by_id(task.id)
    assert updated.status == "error"
    assert updated.error == "ANTHROPIC_API_KEY environment variable is required but not found"


def test_provisioning_failure(mocker, service, registry):
    """Test that a sandbox creation failure is redacted into the task error."""
    mocker.patch(
        "app.services.provisioning.SandboxService.create_sandbox",
        side_effect=ProvisioningError(
            f"Sandbox creation failed: bad token {settings.novita_api_key}"
        ),
    )
    task = create_test_task()

    service.execute_task(task.id)

    updated = TaskService.get_task_by_id(task.id)
    assert updated.status == "error"
    assert updated.error.startswith("Sandbox creation failed: bad token")
    assert settings.novita_api_key not in updated.error
    assert registry.registrations == 0


def test_stopped_before_processing(service, registry, mock_create):
    """Test that a task stopped while pending is never processed."""
    task = create_test_task()
    TaskService.stop_task(task.id, registry=registry)

    result = service.execute_task(task.id)

    assert result["status"] == "stopped"
    mock_create.assert_not_called()


def test_stopped_before_sandbox_creation(mocker, service, registry, mock_create):
    """Test that a stop during branch resolution never creates a sandbox."""
    task = create_test_task()

    def stop_while_waiting(task_id, max_wait=None):
        TaskService.stop_task(task_id, registry=registry)
        return None

    mocker.patch(
        "app.services.agent_execution.BranchNameService.wait_for_branch_name",
        side_effect=stop_while_waiting,
    )

    result = service.execute_task(task.id)

    assert result["status"] == "stopped"
    mock_create.assert_not_called()
    assert registry.registrations == 0
    updated = TaskService.get_task_by_id(task.id)
    assert updated.status == "stopped"
    assert updated.error is None


def test_stopped_during_agent_execution(service, registry, sandbox, mock_create):
    """Test that a stop after provisioning deregisters the sandbox exactly once."""
    task = create_test_task()

    def stop_during_agent(command, env):
        TaskService.stop_task(task.id, registry=registry)
        return CLAUDE_REPLY

    sandbox.respond("claude -p", stop_during_agent)

    result = service.execute_task(task.id)

    assert result["status"] == "stopped"
    updated = TaskService.get_task_by_id(task.id)
    assert updated.status == "stopped"
    assert updated.error is None
    assert registry.registrations == 1
    assert registry.removals == 1
    assert registry.active_count() == 0
    assert sandbox.killed
    assert not sandbox.ran("git push")
    assert "Task was stopped before publishing changes" in _messages(task.id)


def test_global_timeout(mocker, service, registry, sandbox):
    """Test that the task budget wins the race and the late sandbox is destroyed."""
    mocker.patch.object(settings, "task_timeout", 0.3)
    release = threading.Event()
    worker = {}

    def slow_create(*args, **kwargs):
        worker["thread"] = threading.current_thread()
        release.wait(5)
        return sandbox

    mocker.patch(
        "app.services.provisioning.SandboxService.create_sandbox",
        side_effect=slow_create,
    )
    task = create_test_task()

    try:
        result = service.execute_task(task.id)

        assert result["status"] == "error"
        updated = TaskService.get_task_by_id(task.id)
        assert updated.error.startswith("Task execution timed out after")
        assert updated.error.endswith("The operation took too long to complete.")
        assert wait_until(
            lambda: any(
                m.startswith("Task is approaching timeout") for m in _messages(task.id)
            )
        )
    finally:
        release.set()
        if "thread" in worker:
            worker["thread"].join(5)

    assert sandbox.killed
    assert registry.registrations == 0
    assert TaskService.get_task_by_id(task.id).status == "error"


def test_agent_timeout(mocker, service, registry, sandbox, mock_create):
    """Test that an agent exceeding its budget fails the task."""
    mocker.patch.object(settings, "agent_timeout", 0.2)
    release = threading.Event()
    worker = {}

    def hanging_agent(command, env):
        worker["thread"] = threading.current_thread()
        release.wait(5)
        return CLAUDE_REPLY

    sandbox.respond("claude -p", hanging_agent)
    task = create_test_task()

    try:
        service.execute_task(task.id)

        updated = TaskService.get_task_by_id(task.id)
        assert updated.status == "error"
        assert updated.error.startswith("claude agent timed out after")
        assert sandbox.killed
        assert registry.active_count() == 0
    finally:
        release.set()
        if "thread" in worker:
            worker["thread"].join(5)

    assert not sandbox.ran("git push")
    assert TaskService.get_task_by_id(task.id).status == "error"


def test_attach_registers_and_records_sandbox(registry, sandbox):
    """Test that attaching a sandbox registers it and persists its id."""
    task = create_test_task()
    context = TaskExecutionContext(task.id, registry)

    context.attach(sandbox)

    assert registry.get(task.id) is sandbox
    assert TaskService.get_task_by_id(task.id).sandbox_id == "sbx-test"

    assert context.teardown() is True
    assert registry.get(task.id) is None
    assert registry.removals == 1
    assert sandbox.killed


def test_attach_after_teardown_never_registers(registry, sandbox):
    """Test that a sandbox arriving after teardown is destroyed, not registered."""
    task = create_test_task()
    context = TaskExecutionContext(task.id, registry)
    context.teardown()

    with pytest.raises(ProvisioningError, match="Task ended before the sandbox was ready"):
        context.attach(sandbox)

    assert sandbox.killed
    assert registry.registrations == 0
    assert registry.active_count() == 0
    assert TaskService.get_task_by_id(task.id).sandbox_id is None
