"""Database models."""

from .task import (
    ACTIVE_STATUSES,
    AGENT_TYPES,
    TASK_STATUSES,
    TERMINAL_STATUSES,
    Task,
)
from .task_log import LOG_TYPES, TaskLog

__all__ = [
    "ACTIVE_STATUSES",
    "AGENT_TYPES",
    "LOG_TYPES",
    "TASK_STATUSES",
    "TERMINAL_STATUSES",
    "Task",
    "TaskLog",
]
