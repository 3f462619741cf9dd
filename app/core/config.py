"""Application configuration."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Environment
    env: str = os.getenv("APP_ENV", "development")
    api_secret_key: str = os.getenv("API_SECRET_KEY", "dev-secret-key")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database
    # Default uses local socket connection with trust auth (no password needed in sandboxes)
    database_url: str = os.getenv(
        "DATABASE_URL", "postgresql:///codingagent?user=postgres"
    )

    # Background execution: "celery" dispatches to workers, "thread" runs in-process
    celery_broker_url: str = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379")
    task_execution_mode: str = os.getenv("TASK_EXECUTION_MODE", "celery")
    task_thread_workers: int = int(os.getenv("TASK_THREAD_WORKERS", "8"))

    # Sandbox (Novita speaks the E2B protocol)
    novita_api_key: str | None = os.getenv("NOVITA_API_KEY")
    sandbox_domain: str = os.getenv("SANDBOX_DOMAIN", "sandbox.novita.ai")
    sandbox_template: str = os.getenv("SANDBOX_TEMPLATE", "base")
    sandbox_port: int = int(os.getenv("SANDBOX_PORT", "3000"))

    # Git
    github_token: str | None = os.getenv("GITHUB_TOKEN")
    git_author_name: str = os.getenv("GIT_AUTHOR_NAME", "Coding Agent")
    git_author_email: str = os.getenv("GIT_AUTHOR_EMAIL", "agent@example.com")

    # Agent credentials
    anthropic_api_key: str | None = os.getenv("ANTHROPIC_API_KEY")
    openai_api_key: str | None = os.getenv("OPENAI_API_KEY")
    ai_gateway_api_key: str | None = os.getenv("AI_GATEWAY_API_KEY")
    ai_gateway_base_url: str = os.getenv(
        "AI_GATEWAY_BASE_URL", "https://ai-gateway.vercel.sh/v1"
    )
    cursor_api_key: str | None = os.getenv("CURSOR_API_KEY")
    gemini_api_key: str | None = os.getenv("GEMINI_API_KEY")
    google_api_key: str | None = os.getenv("GOOGLE_API_KEY")
    google_genai_use_vertexai: bool = os.getenv(
        "GOOGLE_GENAI_USE_VERTEXAI", ""
    ).lower() in ("1", "true", "yes")
    google_cloud_project: str | None = os.getenv("GOOGLE_CLOUD_PROJECT")

    # Default models
    claude_default_model: str = os.getenv(
        "CLAUDE_DEFAULT_MODEL", "claude-sonnet-4-5-20250929"
    )
    codex_default_model: str = os.getenv("CODEX_DEFAULT_MODEL", "openai/gpt-4o")
    branch_name_model: str = os.getenv("BRANCH_NAME_MODEL", "openai/gpt-4o-mini")

    # Timeouts (in seconds)
    task_timeout: float = float(os.getenv("TASK_TIMEOUT", "300"))  # 5 minutes
    task_timeout_warning_ratio: float = float(
        os.getenv("TASK_TIMEOUT_WARNING_RATIO", "0.8")
    )
    agent_timeout: float = float(os.getenv("AGENT_TIMEOUT", "180"))  # 3 minutes
    extended_agent_timeout: float = float(
        os.getenv("EXTENDED_AGENT_TIMEOUT", "300")
    )  # 5 minutes
    extended_timeout_agents: tuple[str, ...] = ("cursor",)
    install_timeout: float = float(os.getenv("INSTALL_TIMEOUT", "180"))  # 3 minutes
    branch_name_wait: float = float(os.getenv("BRANCH_NAME_WAIT", "10"))
    branch_name_poll_interval: float = float(
        os.getenv("BRANCH_NAME_POLL_INTERVAL", "0.5")
    )
    branch_name_generation_timeout: float = float(
        os.getenv("BRANCH_NAME_GENERATION_TIMEOUT", "30")
    )
    sandbox_command_timeout: int = int(os.getenv("SANDBOX_COMMAND_TIMEOUT", "600"))
    cursor_poll_interval: float = float(os.getenv("CURSOR_POLL_INTERVAL", "1"))

    # Sandbox registry: kill the oldest sandbox when a stop finds no entry
    registry_kill_oldest_fallback: bool = os.getenv(
        "REGISTRY_KILL_OLDEST_FALLBACK", "true"
    ).lower() in ("1", "true", "yes")

    def agent_timeout_for(self, agent: str) -> float:
        """Per-agent execution timeout in seconds."""
        if agent in self.extended_timeout_agents:
            return self.extended_agent_timeout
        return self.agent_timeout

    def secret_values(self) -> list[str]:
        """All configured secret values, for redaction."""
        candidates = [
            self.api_secret_key,
            self.novita_api_key,
            self.github_token,
            self.anthropic_api_key,
            self.openai_api_key,
            self.ai_gateway_api_key,
            self.cursor_api_key,
            self.gemini_api_key,
            self.google_api_key,
        ]
        return [value for value in candidates if value]


settings = Settings()
