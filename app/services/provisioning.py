"""Sandbox provisioning: environment, dependencies, git identity and branch."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from uuid import UUID

from app.core.config import settings
from app.core.errors import ProvisioningError, ProvisioningTimeoutError
from app.core.redaction import redact_sensitive_info
from app.services.agents.base import run_and_log_command
from app.services.branch_name import create_timestamp_branch_name
from app.services.cancellation import CancellationToken
from app.services.git import GitService
from app.services.package_manager import PackageManagerService
from app.services.sandbox import SandboxHandle, SandboxService
from app.services.sandbox_registry import SandboxRegistry
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

# Reads the token from the sandbox environment so it is never written to disk
CREDENTIAL_HELPER = (
    '!f() { echo "username=x-access-token"; echo "password=$GITHUB_TOKEN"; }; f'
)


@dataclass
class SandboxConfig:
    """Everything needed to provision one task's sandbox."""

    task_id: UUID
    repository_url: str
    timeout_minutes: int = 5
    ports: list[int] = field(default_factory=lambda: [settings.sandbox_port])
    install_dependencies: bool = False
    selected_agent: str = "claude"
    pre_determined_branch_name: str | None = None
    existing_branch_name: str | None = None
    on_progress: Callable[[int, str], None] | None = None
    cancellation: CancellationToken | None = None
    registry: SandboxRegistry | None = None
    on_sandbox_created: Callable[[SandboxHandle], None] | None = None


@dataclass
class SandboxResult:
    """A provisioned sandbox, or a cancelled provisioning attempt."""

    sandbox: SandboxHandle | None = None
    domain: str | None = None
    branch_name: str | None = None
    cancelled: bool = False


def validate_environment() -> None:
    """Raise ProvisioningError naming every missing required variable."""
    errors = []
    if not settings.novita_api_key:
        errors.append("NOVITA_API_KEY is required for sandbox creation")
    if not settings.github_token:
        errors.append("GITHUB_TOKEN is required for repository access")
    if errors:
        raise ProvisioningError(", ".join(errors))


class ProvisioningService:
    """Creates and configures the sandbox a task runs in."""

    @staticmethod
    def _cancelled(config: SandboxConfig, task_logger: TaskLogger, where: str) -> bool:
        if config.cancellation and config.cancellation.is_cancelled():
            task_logger.info(f"Task was cancelled {where}")
            return True
        return False

    @staticmethod
    def _progress(config: SandboxConfig, progress: int, message: str) -> None:
        if config.on_progress:
            config.on_progress(progress, message)

    @staticmethod
    def create_sandbox(config: SandboxConfig, task_logger: TaskLogger) -> SandboxResult:
        """Provision a sandbox with the repository checked out on the task branch.

        Returns:
            SandboxResult; cancelled=True if a stop was observed at a checkpoint.
            The sandbox is included whenever one was created so the caller can
            tear it down.

        Raises:
            ProvisioningTimeoutError: If sandbox creation timed out
            ProvisioningError: If creation, git setup or branch resolution failed
        """
        task_logger.info(f"Repository URL: {redact_sensitive_info(config.repository_url)}")

        if ProvisioningService._cancelled(config, task_logger, "before sandbox creation"):
            return SandboxResult(cancelled=True)

        ProvisioningService._progress(config, 20, "Validating environment variables...")
        validate_environment()
        task_logger.info("Environment variables validated")

        authenticated_url = GitService.create_authenticated_repo_url(
            config.repository_url, settings.github_token
        )
        task_logger.info("Added GitHub authentication to repository URL")

        ProvisioningService._progress(config, 25, "Validating configuration...")
        try:
            sandbox = SandboxService.create_sandbox(
                authenticated_url,
                revision=config.existing_branch_name,
                timeout=config.timeout_minutes * 60,
                envs={"GITHUB_TOKEN": settings.github_token},
                metadata={"task_id": str(config.task_id)},
            )
        except ProvisioningTimeoutError:
            task_logger.error("Sandbox creation timed out")
            task_logger.error(
                "This usually happens when the repository is large or has many dependencies"
            )
            raise
        except ProvisioningError as e:
            task_logger.error(f"Sandbox creation failed: {e}")
            raise

        task_logger.info("Sandbox created successfully")
        if config.on_sandbox_created:
            config.on_sandbox_created(sandbox)
        if config.registry is not None:
            config.registry.register(config.task_id, sandbox)

        if ProvisioningService._cancelled(config, task_logger, "after sandbox creation"):
            return SandboxResult(sandbox=sandbox, cancelled=True)

        ProvisioningService._progress(config, 30, "Sandbox created, installing dependencies...")

        project_type = PackageManagerService.detect_project_type(sandbox)
        if config.install_dependencies:
            task_logger.info("Detecting project type and installing dependencies...")
            PackageManagerService.prime(
                sandbox,
                project_type,
                task_logger,
                on_progress=config.on_progress,
            )
            if ProvisioningService._cancelled(
                config, task_logger, "after dependency installation"
            ):
                return SandboxResult(sandbox=sandbox, cancelled=True)
        else:
            task_logger.info("Skipping dependency installation as requested by user")

        domain = sandbox.domain(config.ports[0] if config.ports else settings.sandbox_port)
        ProvisioningService._log_project_type(sandbox, project_type, domain, task_logger)

        if ProvisioningService._cancelled(config, task_logger, "before Git configuration"):
            return SandboxResult(sandbox=sandbox, domain=domain, cancelled=True)

        ProvisioningService._configure_git(sandbox, task_logger)
        branch_name = ProvisioningService._resolve_branch(sandbox, config, task_logger)

        return SandboxResult(sandbox=sandbox, domain=domain, branch_name=branch_name)

    @staticmethod
    def _log_project_type(
        sandbox: SandboxHandle, project_type: str | None, domain: str, task_logger: TaskLogger
    ) -> None:
        if project_type == "node":
            task_logger.info("Node.js project detected, sandbox ready for development")
        elif project_type == "python":
            task_logger.info("Python project detected, sandbox ready for development")
            if sandbox.run_command("test", ["-f", "app.py"]).success:
                task_logger.info("Flask app.py detected, you can run: python3 app.py")
            elif sandbox.run_command("test", ["-f", "manage.py"]).success:
                task_logger.info(
                    "Django manage.py detected, you can run: python3 manage.py runserver"
                )
        else:
            task_logger.info("Project type not detected, sandbox ready for general development")
        task_logger.info(f"Sandbox available at: {domain}")

    @staticmethod
    def _configure_git(sandbox: SandboxHandle, task_logger: TaskLogger) -> None:
        sandbox.run_command("git", ["config", "user.name", settings.git_author_name])
        sandbox.run_command("git", ["config", "user.email", settings.git_author_email])

        if sandbox.run_command("git", ["rev-parse", "--git-dir"]).success:
            task_logger.info("Git repository detected")
        else:
            task_logger.info("Not in a Git repository, initializing...")
            if not sandbox.run_command("git", ["init"]).success:
                raise ProvisioningError("Failed to initialize Git repository")
            task_logger.info("Git repository initialized")

        remotes = sandbox.run_command("git", ["remote", "-v"])
        task_logger.info(f"Git remotes: {remotes.output.strip() or 'No remotes configured'}")

        if settings.github_token:
            task_logger.info("Configuring Git authentication with GitHub token")
            sandbox.run_command("git", ["config", "credential.helper", CREDENTIAL_HELPER])

    @staticmethod
    def _log_branch_diagnostics(sandbox: SandboxHandle, task_logger: TaskLogger) -> None:
        status = sandbox.run_command("git", ["status"])
        task_logger.info(f"Git status: {status.output.strip() or 'No output'}")
        branches = sandbox.run_command("git", ["branch", "-a"])
        task_logger.info(f"Git branches: {branches.output.strip() or 'No output'}")
        commits = sandbox.run_command("git", ["log", "--oneline", "-5"])
        task_logger.info(f"Recent commits: {commits.output.strip() or 'No commits'}")

    @staticmethod
    def _resolve_branch(
        sandbox: SandboxHandle, config: SandboxConfig, task_logger: TaskLogger
    ) -> str:
        """Check out the task branch, creating it when needed.

        Raises:
            ProvisioningError: If the branch cannot be checked out or created
        """
        if config.existing_branch_name:
            branch = config.existing_branch_name
            task_logger.info(f"Checking out existing branch: {branch}")
            checkout = run_and_log_command(sandbox, "git", ["checkout", branch], task_logger)
            if not checkout.success:
                ProvisioningService._log_branch_diagnostics(sandbox, task_logger)
                raise ProvisioningError(f"Failed to checkout existing branch {branch}")

            task_logger.info("Pulling latest changes from remote...")
            pull = run_and_log_command(sandbox, "git", ["pull", "origin", branch], task_logger)
            if not pull.success:
                task_logger.info("Warning: Failed to pull latest changes, continuing")
            return branch

        if config.pre_determined_branch_name:
            branch = config.pre_determined_branch_name
            task_logger.info(f"Using pre-determined branch name: {branch}")

            local = sandbox.run_command(
                "git", ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"]
            )
            if local.success:
                task_logger.info(f"Branch {branch} already exists locally, checking it out")
                args = ["checkout", branch]
                error = f"Failed to checkout Git branch {branch}"
            else:
                remote = sandbox.run_command(
                    "git", ["ls-remote", "--heads", "origin", branch]
                )
                if remote.success and remote.output.strip():
                    task_logger.info(f"Branch {branch} exists on remote, checking it out")
                    sandbox.run_command(
                        "git", ["fetch", "--depth", "1", "origin", f"{branch}:refs/remotes/origin/{branch}"]
                    )
                    args = ["checkout", "-b", branch, "--track", f"origin/{branch}"]
                    error = f"Failed to checkout remote Git branch {branch}"
                else:
                    task_logger.info(f"Creating new branch: {branch}")
                    args = ["checkout", "-b", branch]
                    error = f"Failed to create Git branch {branch}"
        else:
            branch = create_timestamp_branch_name()
            task_logger.info(f"No predetermined branch name, using fallback: {branch}")
            args = ["checkout", "-b", branch]
            error = f"Failed to create Git branch {branch}"

        result = run_and_log_command(sandbox, "git", args, task_logger)
        if not result.success:
            ProvisioningService._log_branch_diagnostics(sandbox, task_logger)
            raise ProvisioningError(error)

        task_logger.info(f"Working on branch: {branch}")
        return branch
