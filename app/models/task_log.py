"""Task log model for storing execution logs."""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import Column, DateTime, ForeignKey, String, Text, Uuid
from sqlmodel import Field, SQLModel

LOG_TYPES = ("info", "command", "error", "success")


class TaskLog(SQLModel, table=True):
    """Log entry for task execution.

    Rows are append-only; the autoincrement id is the generation order.
    """

    __tablename__ = "task_logs"

    id: int | None = Field(
        default=None,
        primary_key=True,
        description="Sequence number of the log entry",
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        sa_column=Column(DateTime(timezone=True)),
        description="Timestamp when the log entry was created",
    )

    # Foreign key to task
    task_id: UUID = Field(
        sa_column=Column(
            Uuid, ForeignKey("tasks.id", ondelete="CASCADE"), index=True, nullable=False
        ),
        description="ID of the task this log belongs to",
    )

    # Log fields
    type: str = Field(
        sa_column=Column(String, index=True, nullable=False),
        description="Entry type: info, command, error, success",
    )
    message: str = Field(
        sa_column=Column(Text, nullable=False),
        description="Redacted log message",
    )
