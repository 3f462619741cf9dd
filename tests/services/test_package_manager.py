"""Tests for PackageManagerService."""

import threading

from app.core.config import settings
from app.services.package_manager import PackageManagerService
from app.services.sandbox import CommandResult
from app.services.task import TaskService
from tests.conftest import FakeSandbox, fail, ok


def _messages(task_logger) -> list[str]:
    logs, _ = TaskService.get_task_logs(task_logger.task_id, limit=1000)
    return [log.message for log in logs]


def node_sandbox(lock_file: str | None = None, **responses) -> FakeSandbox:
    sandbox = FakeSandbox({"test -f": fail(""), "test -f package.json": ok()})
    if lock_file:
        sandbox.respond(f"test -f {lock_file}", ok())
    for prefix, response in responses.items():
        sandbox.respond(prefix, response)
    return sandbox


def test_detect_project_type():
    """Test classification by manifest file."""
    assert PackageManagerService.detect_project_type(node_sandbox()) == "node"

    python = FakeSandbox({"test -f": fail(""), "test -f requirements.txt": ok()})
    assert PackageManagerService.detect_project_type(python) == "python"

    assert PackageManagerService.detect_project_type(FakeSandbox({"test -f": fail("")})) is None


def test_detect_package_manager_prefers_pnpm(task_logger):
    """Test that lock files are checked in priority order."""
    sandbox = node_sandbox("pnpm-lock.yaml")
    sandbox.respond("test -f yarn.lock", ok())

    assert PackageManagerService.detect_package_manager(sandbox, task_logger) == "pnpm"
    assert "Detected pnpm (pnpm-lock.yaml found)" in _messages(task_logger)


def test_detect_package_manager_defaults_to_npm(task_logger):
    """Test the fallback when no lock file exists."""
    sandbox = node_sandbox()

    assert PackageManagerService.detect_package_manager(sandbox, task_logger) == "npm"


def test_node_install_falls_back_to_npm_once(task_logger):
    """Test a failed pnpm install retried exactly once with npm."""
    sandbox = node_sandbox(
        "pnpm-lock.yaml",
        **{"pnpm install": fail("ERR_PNPM_OUTDATED_LOCKFILE")},
    )
    progress = []

    result = PackageManagerService.install_node_dependencies(
        sandbox, task_logger, on_progress=lambda p, m: progress.append(p)
    )

    assert result.success is True
    assert "pnpm config set store-dir /tmp/pnpm-store" in sandbox.commands
    assert "pnpm install --frozen-lockfile" in sandbox.commands
    assert sandbox.commands.count("npm install --no-audit --no-fund") == 1
    assert progress == [35, 37]
    assert "pnpm stderr: ERR_PNPM_OUTDATED_LOCKFILE" in _messages(task_logger)


def test_missing_package_manager_uses_npm(task_logger):
    """Test that a failed global install of yarn goes straight to npm."""
    sandbox = node_sandbox(
        "yarn.lock",
        **{"which yarn": fail(""), "npm install -g yarn": fail("EACCES")},
    )

    PackageManagerService.install_node_dependencies(sandbox, task_logger)

    assert not sandbox.ran("yarn install")
    assert sandbox.commands.count("npm install --no-audit --no-fund") == 1


def test_prime_swallows_install_failure(task_logger):
    """Test that a failed install is logged as a warning and never raised."""
    sandbox = node_sandbox(**{"npm install --no-audit": fail("network down")})

    PackageManagerService.prime(sandbox, "node", task_logger)

    messages = _messages(task_logger)
    assert (
        "Warning: Failed to install Node.js dependencies, "
        "but continuing with sandbox setup"
    ) in messages


def test_install_timeout_is_reported(mocker, task_logger):
    """Test that a slow install times out without raising."""
    mocker.patch.object(settings, "install_timeout", 0.05)
    release = threading.Event()

    def hanging(command, env):
        release.wait(5)
        return CommandResult(exit_code=0)

    sandbox = node_sandbox(**{"npm install --no-audit": hanging})
    try:
        result = PackageManagerService.install_dependencies(sandbox, "npm", task_logger)
    finally:
        release.set()

    assert result.success is False
    assert result.timed_out is True
    assert "timed out" in result.error


def test_python_install(task_logger):
    """Test requirements.txt installation when pip is available."""
    sandbox = FakeSandbox()

    result = PackageManagerService.install_python_dependencies(sandbox, task_logger)

    assert result.success is True
    assert "python3 -m pip install --upgrade pip" in sandbox.commands
    assert "python3 -m pip install -r requirements.txt" in sandbox.commands
    assert "Python dependencies installed successfully" in _messages(task_logger)


def test_python_install_without_pip(task_logger):
    """Test that a missing pip which cannot be bootstrapped is only a warning."""
    sandbox = FakeSandbox(
        {"python3 -m pip --version": fail("No module named pip"), "sh -c": fail("curl: 6")}
    )

    PackageManagerService.prime(sandbox, "python", task_logger)

    assert not sandbox.ran("python3 -m pip install -r")
    assert (
        "Warning: Could not install pip, skipping Python dependencies"
        in _messages(task_logger)
    )


def test_prime_without_project_type(task_logger):
    """Test that unknown projects skip installation."""
    sandbox = FakeSandbox()

    PackageManagerService.prime(sandbox, None, task_logger)

    assert sandbox.commands == []
