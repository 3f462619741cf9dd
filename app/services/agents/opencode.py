"""OpenCode CLI agent."""

import logging

from app.core.config import settings
from app.services.agents.base import (
    AgentExecutionResult,
    failure,
    finish,
    run_and_log_command,
)
from app.services.sandbox import SandboxHandle
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

CLI_NAME = "opencode"
LABEL = "OpenCode"


def provider_env() -> dict[str, str]:
    """Provider API keys OpenCode can use, keyed by their environment name."""
    env = {}
    if settings.openai_api_key:
        env["OPENAI_API_KEY"] = settings.openai_api_key
    if settings.anthropic_api_key:
        env["ANTHROPIC_API_KEY"] = settings.anthropic_api_key
    return env


def resolve_opencode_binary(sandbox: SandboxHandle, task_logger: TaskLogger) -> str | None:
    """Find a runnable opencode, falling back to npm's global bin directory."""
    if run_and_log_command(sandbox, "opencode", ["--version"], task_logger).success:
        return "opencode"

    prefix = run_and_log_command(sandbox, "npm", ["prefix", "-g"], task_logger)
    if not prefix.success or not prefix.output.strip():
        return None

    binary = f"{prefix.output.strip()}/bin/opencode"
    if run_and_log_command(sandbox, binary, ["--version"], task_logger).success:
        return binary
    return None


def configure_providers(
    sandbox: SandboxHandle, binary: str, env: dict[str, str], task_logger: TaskLogger
) -> None:
    """Register each available provider key with `opencode auth add`.

    Keys are piped from the environment so they never appear in a command line.
    """
    for env_key, provider in (("OPENAI_API_KEY", "openai"), ("ANTHROPIC_API_KEY", "anthropic")):
        if env_key not in env:
            continue
        task_logger.info(f"Configuring {provider} provider...")
        result = sandbox.run_command(
            "sh",
            ["-c", f'printf "%s" "${env_key}" | {binary} auth add {provider}'],
            env={env_key: env[env_key]},
        )
        if not result.success:
            task_logger.info(f"Failed to configure {provider} provider, but continuing...")


def execute_opencode_in_sandbox(
    sandbox: SandboxHandle,
    instruction: str,
    task_logger: TaskLogger,
    selected_model: str | None = None,
) -> AgentExecutionResult:
    """Run `opencode run` in non-interactive mode."""
    env = provider_env()
    if not env:
        error = "OpenAI API key or Anthropic API key is required for OpenCode agent"
        task_logger.error(error)
        return failure(CLI_NAME, error)

    task_logger.info("Installing OpenCode CLI...")
    install = run_and_log_command(sandbox, "npm", ["install", "-g", "opencode-ai"], task_logger)
    if not install.success:
        return failure(
            CLI_NAME,
            f"Failed to install OpenCode CLI: {install.error or 'Unknown error'}",
        )

    binary = resolve_opencode_binary(sandbox, task_logger)
    if binary is None:
        return failure(
            CLI_NAME,
            "OpenCode CLI not found after installation and could not be located "
            "in the npm global bin directory.",
        )
    task_logger.success("OpenCode CLI verified successfully")

    configure_providers(sandbox, binary, env, task_logger)

    args = ["run"]
    if selected_model:
        args += ["--model", selected_model]
        task_logger.info(f"Using selected model: {selected_model}")
    args.append(instruction)

    result = run_and_log_command(
        sandbox,
        binary,
        args,
        task_logger,
        env=env,
        timeout=settings.agent_timeout_for(CLI_NAME),
    )
    return finish(sandbox, result, CLI_NAME, LABEL, task_logger)
