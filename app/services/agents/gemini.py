"""Gemini CLI agent."""

import logging

from app.core.config import settings
from app.services.agents.base import (
    AgentExecutionResult,
    ensure_cli,
    failure,
    finish,
    run_and_log_command,
)
from app.services.sandbox import CommandResult, SandboxHandle
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

CLI_NAME = "gemini"
LABEL = "Gemini CLI"

MISSING_CREDENTIALS = (
    "Gemini CLI requires credentials. Please set GEMINI_API_KEY, "
    "GOOGLE_API_KEY (with GOOGLE_GENAI_USE_VERTEXAI=true), "
    "or GOOGLE_CLOUD_PROJECT environment variable."
)


def select_gemini_auth() -> tuple[str | None, dict[str, str]]:
    """Choose an authentication method in order of preference.

    Returns:
        Tuple of (method name, environment for the CLI). Method is None when
        nothing is configured.
    """
    if settings.gemini_api_key:
        return "api_key", {"GEMINI_API_KEY": settings.gemini_api_key}
    if settings.google_api_key and settings.google_genai_use_vertexai:
        return "vertex_ai", {
            "GOOGLE_API_KEY": settings.google_api_key,
            "GOOGLE_GENAI_USE_VERTEXAI": "true",
        }
    if settings.google_cloud_project:
        return "oauth_project", {"GOOGLE_CLOUD_PROJECT": settings.google_cloud_project}
    return None, {}


def is_tool_registry_error(result: CommandResult) -> bool:
    return "Tool" in result.error and "not found in registry" in result.error


def invocation_chain(instruction: str, selected_model: str | None) -> list[list[str]]:
    """Argument lists to try in order, from richest to most basic."""
    model_args = ["-m", selected_model] if selected_model else []
    return [
        [*model_args, "--yolo", "-o", "json", instruction],
        [*model_args, "--approval-mode", "auto_edit", "-o", "text", instruction],
        [*model_args, instruction],
    ]


def execute_gemini_in_sandbox(
    sandbox: SandboxHandle,
    instruction: str,
    task_logger: TaskLogger,
    selected_model: str | None = None,
) -> AgentExecutionResult:
    """Run the Gemini CLI, stepping down its flags on tool-registry errors."""
    auth_method, auth_env = select_gemini_auth()
    if auth_method is None:
        return failure(CLI_NAME, MISSING_CREDENTIALS)

    install_error = ensure_cli(
        sandbox, "gemini", "npm", ["install", "-g", "@google/gemini-cli"], task_logger, LABEL
    )
    if install_error:
        return failure(CLI_NAME, install_error)

    if selected_model:
        task_logger.info(f"Using model: {selected_model}")
    task_logger.info(f"Executing Gemini CLI with {auth_method} authentication")

    timeout = settings.agent_timeout_for(CLI_NAME)
    result = None
    for attempt, args in enumerate(invocation_chain(instruction, selected_model)):
        if attempt == 1:
            task_logger.info("Retrying with auto_edit approval mode...")
        elif attempt == 2:
            task_logger.info("Retrying with minimal flags...")
        result = run_and_log_command(
            sandbox, "gemini", args, task_logger, env=auth_env, timeout=timeout
        )
        if result.success or not is_tool_registry_error(result):
            break

    if not result.success:
        if "authentication" in result.error or "login" in result.error:
            return failure(
                CLI_NAME,
                f"Gemini CLI authentication failed. {MISSING_CREDENTIALS} "
                f"Error: {result.error}",
                agent_response=result.output,
                changes_detected=False,
            )
        if is_tool_registry_error(result):
            return failure(
                CLI_NAME,
                "Gemini CLI tool registry error - the CLI may have restricted file "
                f"operation capabilities in this environment. Error: {result.error}",
                agent_response=result.output,
            )

    return finish(sandbox, result, CLI_NAME, LABEL, task_logger)
