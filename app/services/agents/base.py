"""Result shape and sandbox helpers shared by every agent variant."""

import logging
from dataclasses import dataclass

from app.core.errors import CommandTimeoutError
from app.core.redaction import redact_sensitive_info
from app.services.sandbox import CommandResult, SandboxHandle, build_command
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)


@dataclass
class AgentExecutionResult:
    """Uniform outcome of one agent run."""

    success: bool
    cli_name: str
    output: str | None = None
    agent_response: str | None = None
    changes_detected: bool = False
    error: str | None = None


def run_and_log_command(
    sandbox: SandboxHandle,
    command: str,
    args: list[str] | None,
    task_logger: TaskLogger,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run a command, logging the command line, its output and any error.

    A command timeout is returned as exit code 124 instead of raised.
    """
    task_logger.command(build_command(command, args))

    try:
        result = sandbox.run_command(command, args, env=env, timeout=timeout)
    except CommandTimeoutError as e:
        task_logger.error(str(e))
        return CommandResult(exit_code=124, stderr=str(e))

    if result.output.strip():
        task_logger.info(result.output.strip())
    if not result.success and result.error:
        task_logger.error(result.error)
    return result


def detect_changes(sandbox: SandboxHandle, task_logger: TaskLogger) -> bool:
    """True when the working tree has uncommitted changes."""
    status = run_and_log_command(sandbox, "git", ["status", "--porcelain"], task_logger)
    return status.success and bool(status.output.strip())


def ensure_cli(
    sandbox: SandboxHandle,
    cli: str,
    install_command: str,
    install_args: list[str],
    task_logger: TaskLogger,
    label: str,
) -> str | None:
    """Install a CLI if it is not on PATH.

    Returns:
        An error message, or None if the CLI is available
    """
    if run_and_log_command(sandbox, "which", [cli], task_logger).success:
        return None

    task_logger.info(f"Installing {label}...")
    install = run_and_log_command(sandbox, install_command, install_args, task_logger)
    if not install.success:
        return f"Failed to install {label}"
    task_logger.info(f"{label} installed successfully")

    if not run_and_log_command(sandbox, "which", [cli], task_logger).success:
        return f"{label} installation completed but CLI still not found"
    return None


def failure(cli_name: str, error: str, agent_response: str | None = None,
            changes_detected: bool = False) -> AgentExecutionResult:
    return AgentExecutionResult(
        success=False,
        cli_name=cli_name,
        error=redact_sensitive_info(error),
        agent_response=redact_sensitive_info(agent_response) if agent_response else None,
        changes_detected=changes_detected,
    )


def success(cli_name: str, label: str, agent_response: str | None,
            changes_detected: bool) -> AgentExecutionResult:
    suffix = " (Changes detected)" if changes_detected else " (No changes made)"
    return AgentExecutionResult(
        success=True,
        cli_name=cli_name,
        output=f"{label} executed successfully{suffix}",
        agent_response=redact_sensitive_info(agent_response or "No detailed response available"),
        changes_detected=changes_detected,
    )


def finish(
    sandbox: SandboxHandle,
    result: CommandResult,
    cli_name: str,
    label: str,
    task_logger: TaskLogger,
    agent_response: str | None = None,
) -> AgentExecutionResult:
    """Turn the main CLI invocation into a result, checking the working tree."""
    task_logger.info(f"{label} exit code: {result.exit_code}")
    if result.output:
        task_logger.info(f"{label} output length: {len(result.output)} characters")

    changes = detect_changes(sandbox, task_logger)
    response = agent_response if agent_response is not None else result.output

    if result.success:
        if not changes:
            task_logger.info("No changes detected after agent run")
        return success(cli_name, label, response, changes)

    return failure(
        cli_name,
        f"{label} failed (exit code {result.exit_code}): {result.error or 'No error message'}",
        agent_response=response,
        changes_detected=changes,
    )
