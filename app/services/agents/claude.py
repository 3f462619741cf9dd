"""Claude Code CLI agent."""

import json
import logging

from app.core.config import settings
from app.services.agents.base import (
    AgentExecutionResult,
    ensure_cli,
    failure,
    finish,
    run_and_log_command,
)
from app.services.sandbox import SandboxHandle
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

CLI_NAME = "claude"
LABEL = "Claude CLI"


def parse_claude_response(output: str) -> str | None:
    """Pull the final answer out of `--output-format json` output."""
    try:
        payload = json.loads(output)
    except (TypeError, ValueError):
        return None
    if isinstance(payload, dict):
        return payload.get("result")
    return None


def execute_claude_in_sandbox(
    sandbox: SandboxHandle,
    instruction: str,
    task_logger: TaskLogger,
    selected_model: str | None = None,
) -> AgentExecutionResult:
    """Run Claude Code non-interactively against the checked-out repository."""
    if not settings.anthropic_api_key:
        return failure(
            CLI_NAME, "ANTHROPIC_API_KEY environment variable is required but not found"
        )

    install_error = ensure_cli(
        sandbox,
        "claude",
        "npm",
        ["install", "-g", "@anthropic-ai/claude-code"],
        task_logger,
        LABEL,
    )
    if install_error:
        return failure(CLI_NAME, install_error)

    model = selected_model or settings.claude_default_model
    task_logger.info(
        f"Attempting to execute Claude CLI with model {model} "
        f"and instruction: {instruction[:100]}..."
    )

    result = run_and_log_command(
        sandbox,
        "claude",
        [
            "-p",
            "--dangerously-skip-permissions",
            "--output-format",
            "json",
            "--model",
            model,
            instruction,
        ],
        task_logger,
        env={"ANTHROPIC_API_KEY": settings.anthropic_api_key},
        timeout=settings.agent_timeout_for(CLI_NAME),
    )

    return finish(
        sandbox,
        result,
        CLI_NAME,
        LABEL,
        task_logger,
        agent_response=parse_claude_response(result.output),
    )
