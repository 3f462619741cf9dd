"""Agent CLI variants behind one execution contract."""

import logging
from collections.abc import Callable

from app.core.redaction import redact_sensitive_info
from app.models.task import AGENT_TYPES
from app.services.agents.base import AgentExecutionResult
from app.services.agents.claude import execute_claude_in_sandbox
from app.services.agents.codex import execute_codex_in_sandbox
from app.services.agents.cursor import execute_cursor_in_sandbox
from app.services.agents.gemini import execute_gemini_in_sandbox
from app.services.agents.opencode import execute_opencode_in_sandbox
from app.services.cancellation import CancellationToken
from app.services.sandbox import SandboxHandle
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

AgentExecutor = Callable[[SandboxHandle, str, TaskLogger, str | None], AgentExecutionResult]

AGENT_EXECUTORS: dict[str, AgentExecutor] = {
    "claude": execute_claude_in_sandbox,
    "codex": execute_codex_in_sandbox,
    "cursor": execute_cursor_in_sandbox,
    "gemini": execute_gemini_in_sandbox,
    "opencode": execute_opencode_in_sandbox,
}


def execute_agent_in_sandbox(
    sandbox: SandboxHandle,
    instruction: str,
    agent_type: str,
    task_logger: TaskLogger,
    selected_model: str | None = None,
    cancellation: CancellationToken | None = None,
) -> AgentExecutionResult:
    """Run the selected agent against the sandbox's working tree.

    Never raises: unexpected failures are returned as an unsuccessful result.
    """
    if cancellation and cancellation.is_cancelled():
        task_logger.info("Task was cancelled before agent execution")
        return AgentExecutionResult(
            success=False, cli_name=agent_type, error="Task was cancelled"
        )

    executor = AGENT_EXECUTORS.get(agent_type)
    if executor is None:
        return AgentExecutionResult(
            success=False, cli_name=agent_type, error=f"Unknown agent type: {agent_type}"
        )

    try:
        return executor(sandbox, instruction, task_logger, selected_model)
    except Exception as e:
        error = redact_sensitive_info(str(e)) or f"Failed to execute {agent_type} in sandbox"
        logger.error(f"Agent {agent_type} raised: {error}")
        return AgentExecutionResult(success=False, cli_name=agent_type, error=error)


__all__ = [
    "AGENT_EXECUTORS",
    "AGENT_TYPES",
    "AgentExecutionResult",
    "execute_agent_in_sandbox",
]
