"""Core exception classes for the application."""


class NotFoundError(Exception):
    """Raised when a resource is not found."""


class ValidationError(Exception):
    """Raised when validation fails."""


class ProvisioningError(Exception):
    """Raised when the sandbox service fails to provide an environment."""


class ProvisioningTimeoutError(ProvisioningError):
    """Raised when sandbox creation times out."""


class DependencyInstallWarning(Exception):
    """Raised when dependency priming fails. Never fatal to a task."""


class AgentError(Exception):
    """Raised when an agent CLI fails, times out or lacks credentials."""


class PublishError(Exception):
    """Raised when committing or pushing the agent's changes fails."""


class CommandTimeoutError(Exception):
    """Raised when a sandbox command exceeds its timeout."""
