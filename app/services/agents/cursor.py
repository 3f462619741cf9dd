"""Cursor CLI agent.

cursor-agent does not always exit after printing its result, so it runs in the
background and completion is detected from the streamed JSON instead.
"""

import logging
import threading
import time

from app.core.config import settings
from app.core.redaction import redact_sensitive_info
from app.services.agents.base import (
    AgentExecutionResult,
    failure,
    finish,
    run_and_log_command,
)
from app.services.sandbox import CommandResult, SandboxHandle, build_command
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

CLI_NAME = "cursor"
LABEL = "Cursor CLI"
CURSOR_BIN = "/home/user/.local/bin/cursor-agent"
INSTALL_SCRIPT = 'timeout 300 bash -c "curl https://cursor.com/install -fsS | bash"'
PATH_PREFIX = 'export PATH="$HOME/.local/bin:$PATH"; '


def is_completion_marker(data: str) -> bool:
    """True when a chunk carries cursor-agent's successful result event."""
    return '"type":"result"' in data and (
        '"subtype":"success"' in data or '"is_error":false' in data
    )


class OutputCapture:
    """Collects streamed output and flags the completion marker."""

    def __init__(self):
        self.stdout: list[str] = []
        self.stderr: list[str] = []
        self.completed = threading.Event()
        self._lock = threading.Lock()

    def on_stdout(self, data: str) -> None:
        with self._lock:
            self.stdout.append(data)
        if is_completion_marker(data):
            self.completed.set()

    def on_stderr(self, data: str) -> None:
        with self._lock:
            self.stderr.append(data)

    @property
    def output(self) -> str:
        with self._lock:
            return "".join(self.stdout)

    @property
    def error(self) -> str:
        with self._lock:
            return "".join(self.stderr)


def install_cursor_cli(sandbox: SandboxHandle, task_logger: TaskLogger) -> str | None:
    """Install cursor-agent with the official script.

    Returns:
        An error message, or None on success
    """
    check = ["-c", PATH_PREFIX + "which cursor-agent"]
    if run_and_log_command(sandbox, "sh", check, task_logger).success:
        return None

    task_logger.info("Starting Cursor CLI installation...")
    install = run_and_log_command(sandbox, "sh", ["-c", INSTALL_SCRIPT], task_logger)
    if not install.success:
        return (
            f"Failed to install Cursor CLI: "
            f"{install.error or 'Installation timed out or failed'}"
        )

    if not run_and_log_command(sandbox, "sh", check, task_logger).success:
        run_and_log_command(
            sandbox, "sh", ["-c", "ls -la ~/.local/bin/ 2>/dev/null || true"], task_logger
        )
        return "Cursor CLI (cursor-agent) not found after installation"
    return None


def wait_for_completion(
    capture: OutputCapture, ceiling: float, task_logger: TaskLogger
) -> bool:
    """Poll for the completion marker until the ceiling elapses."""
    started = time.monotonic()
    next_report = 10.0
    while not capture.completed.is_set():
        elapsed = time.monotonic() - started
        if elapsed >= ceiling:
            return False
        capture.completed.wait(timeout=min(settings.cursor_poll_interval, ceiling - elapsed))
        if elapsed >= next_report:
            task_logger.info(f"Still waiting for completion... {int(elapsed)}s elapsed")
            next_report += 10
    return True


def execute_cursor_in_sandbox(
    sandbox: SandboxHandle,
    instruction: str,
    task_logger: TaskLogger,
    selected_model: str | None = None,
) -> AgentExecutionResult:
    """Run cursor-agent in the background and wait for its result event."""
    if not settings.cursor_api_key:
        return failure(
            CLI_NAME, "CURSOR_API_KEY not found. Please set the API key to use Cursor agent."
        )

    install_error = install_cursor_cli(sandbox, task_logger)
    if install_error:
        task_logger.error(install_error)
        return failure(CLI_NAME, install_error)

    args = ["-p", "--force", "--output-format", "json"]
    if selected_model:
        args += ["--model", selected_model]
        task_logger.info(f"Executing cursor-agent with model: {selected_model}")
    args.append(instruction)
    task_logger.command(build_command("cursor-agent", args))

    capture = OutputCapture()
    command = sandbox.run_background(
        CURSOR_BIN,
        args,
        env={"CURSOR_API_KEY": settings.cursor_api_key},
        on_stdout=capture.on_stdout,
        on_stderr=capture.on_stderr,
    )
    task_logger.info("Cursor command started, monitoring for completion...")

    started = time.monotonic()
    ceiling = settings.agent_timeout_for(CLI_NAME)
    completed = wait_for_completion(capture, ceiling, task_logger)

    if completed:
        task_logger.info(
            f"Cursor completed successfully in {int(time.monotonic() - started)} seconds"
        )
        result = CommandResult(exit_code=0, stdout=capture.output, stderr=capture.error)
    else:
        task_logger.info("Timeout waiting for completion, stopping cursor-agent")
        try:
            command.kill()
        except Exception as e:
            logger.warning(f"Failed to stop cursor-agent: {redact_sensitive_info(str(e))}")
        result = CommandResult(
            exit_code=124,
            stdout=capture.output,
            stderr=capture.error or "Timeout waiting for completion",
        )

    if result.output.strip():
        task_logger.info(result.output.strip())
    if not result.success:
        task_logger.error(result.error)

    return finish(sandbox, result, CLI_NAME, LABEL, task_logger)
