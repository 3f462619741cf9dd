"""OpenAI Codex CLI agent."""

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

CLI_NAME = "codex"
LABEL = "Codex CLI"
CONFIG_PATH = "/home/user/.codex/config.toml"

OPENAI_KEY_PREFIX = "sk-"
GATEWAY_KEY_PREFIX = "vck_"

GATEWAY_CONFIG = """model = "{model}"
model_provider = "ai-gateway"

[model_providers.ai-gateway]
name = "AI Gateway"
base_url = "{base_url}"
env_key = "AI_GATEWAY_API_KEY"
wire_api = "chat"
"""

OPENAI_CONFIG = """model = "{model}"
model_provider = "openai"

[model_providers.openai]
name = "OpenAI"
base_url = "https://api.openai.com/v1"
env_key = "OPENAI_API_KEY"
wire_api = "responses"
"""


def resolve_codex_credentials() -> tuple[str | None, str | None]:
    """Pick the API key and its provider from the configured credentials.

    Returns:
        Tuple of (provider, error). Provider is "ai-gateway" or "openai".
    """
    api_key = settings.ai_gateway_api_key or settings.openai_api_key
    if not api_key:
        return None, (
            "AI Gateway API key not found. "
            "Please set AI_GATEWAY_API_KEY or OPENAI_API_KEY environment variable."
        )
    if api_key.startswith(GATEWAY_KEY_PREFIX):
        return "ai-gateway", None
    if api_key.startswith(OPENAI_KEY_PREFIX):
        return "openai", None
    return None, (
        f'Invalid API key format. Expected to start with "{OPENAI_KEY_PREFIX}" (OpenAI) '
        f'or "{GATEWAY_KEY_PREFIX}" (AI Gateway)'
    )


def build_codex_config(provider: str, model: str) -> str:
    if provider == "ai-gateway":
        return GATEWAY_CONFIG.format(model=model, base_url=settings.ai_gateway_base_url)
    return OPENAI_CONFIG.format(model=model)


def execute_codex_in_sandbox(
    sandbox: SandboxHandle,
    instruction: str,
    task_logger: TaskLogger,
    selected_model: str | None = None,
) -> AgentExecutionResult:
    """Run `codex exec` with a provider config chosen by the key's prefix."""
    provider, error = resolve_codex_credentials()
    if error:
        task_logger.error(error)
        return failure(CLI_NAME, error)

    install_error = ensure_cli(
        sandbox, "codex", "npm", ["install", "-g", "@openai/codex"], task_logger, LABEL
    )
    if install_error:
        return failure(CLI_NAME, install_error)

    model = selected_model or settings.codex_default_model
    sandbox.write_file(CONFIG_PATH, build_codex_config(provider, model))
    provider_name = "AI Gateway" if provider == "ai-gateway" else "OpenAI API"
    task_logger.info(f"Configured Codex CLI for {provider_name}")
    task_logger.info(f"Executing Codex with model {model} via {provider_name}")

    api_key = settings.ai_gateway_api_key or settings.openai_api_key
    env_key = "AI_GATEWAY_API_KEY" if provider == "ai-gateway" else "OPENAI_API_KEY"
    result = run_and_log_command(
        sandbox,
        "codex",
        ["exec", "--dangerously-bypass-approvals-and-sandbox", instruction],
        task_logger,
        env={env_key: api_key, "HOME": "/home/user", "CI": "true"},
        timeout=settings.agent_timeout_for(CLI_NAME),
    )

    return finish(sandbox, result, CLI_NAME, LABEL, task_logger)
