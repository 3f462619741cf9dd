"""Task model for agent execution."""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import Column, DateTime, ForeignKey, String, Uuid
from sqlmodel import Field, SQLModel

AGENT_TYPES = ("claude", "codex", "cursor", "gemini", "opencode")
TASK_STATUSES = ("pending", "processing", "completed", "error", "stopped")
ACTIVE_STATUSES = ("pending", "processing")
TERMINAL_STATUSES = ("completed", "error", "stopped")


class Task(SQLModel, table=True):
    """Task for agent execution."""

    __tablename__ = "tasks"

    # Primary key and timestamps
    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True,
        description="Unique identifier for the task",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the task was created",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the task was last updated",
    )
    completed_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), nullable=True),
        description="Timestamp when the task reached a terminal status",
    )

    # Request fields
    prompt: str = Field(
        description="Natural language prompt describing the task to execute"
    )
    repository_url: str = Field(
        description="GitHub repository URL to clone and work on"
    )
    selected_agent: str = Field(
        default="claude", description="Agent CLI: claude, codex, cursor, gemini, opencode"
    )
    selected_model: str | None = Field(
        default=None, description="Model identifier forwarded to the agent CLI"
    )
    install_dependencies: bool = Field(
        default=False, description="Prime project dependencies before running the agent"
    )
    max_duration: int = Field(
        default=5, description="Sandbox lifetime in minutes"
    )
    parent_task_id: UUID | None = Field(
        default=None,
        sa_column=Column(
            Uuid, ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True
        ),
        description="Parent task whose branch this task continues",
    )

    # Execution state
    status: str = Field(
        default="pending",
        sa_column=Column(String, index=True, nullable=False),
        description="Task status: pending, processing, completed, error, stopped",
    )
    progress: int = Field(default=0, description="Progress percentage (0-100)")
    error: str | None = Field(
        default=None, description="Redacted error summary for failed tasks"
    )
    branch_name: str | None = Field(
        default=None, description="Git branch the changes are pushed to (write-once)"
    )
    sandbox_url: str | None = Field(
        default=None, description="Public URL of the sandbox"
    )
    sandbox_id: str | None = Field(
        default=None, description="ID of the sandbox where the task is running"
    )
