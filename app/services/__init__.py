"""Business logic services."""

from .agent_execution import AgentExecutionService
from .branch_name import BranchNameService
from .provisioning import ProvisioningService
from .sandbox_registry import SandboxRegistry, sandbox_registry
from .task import TaskService
from .task_logger import TaskLogger

__all__ = [
    "AgentExecutionService",
    "BranchNameService",
    "ProvisioningService",
    "SandboxRegistry",
    "TaskLogger",
    "TaskService",
    "sandbox_registry",
]
