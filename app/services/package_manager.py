"""Project type detection and best-effort dependency priming."""

import logging
from collections.abc import Callable
from dataclasses import dataclass

from app.core.config import settings
from app.core.errors import DependencyInstallWarning
from app.core.timeouts import run_with_timeout
from app.services.sandbox import CommandResult, SandboxHandle
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)

# Checked in order; the first lock file present wins
LOCK_FILES = (
    ("pnpm", "pnpm-lock.yaml"),
    ("yarn", "yarn.lock"),
    ("npm", "package-lock.json"),
)
FALLBACK_PACKAGE_MANAGER = "npm"

INSTALL_COMMANDS = {
    "pnpm": ["pnpm", "install", "--frozen-lockfile"],
    "yarn": ["yarn", "install", "--frozen-lockfile"],
    "npm": ["npm", "install", "--no-audit", "--no-fund"],
}

PNPM_STORE_DIR = "/tmp/pnpm-store"


@dataclass
class InstallResult:
    """Outcome of one install attempt."""

    success: bool
    error: str | None = None
    timed_out: bool = False


def file_exists(sandbox: SandboxHandle, path: str) -> bool:
    return sandbox.run_command("test", ["-f", path]).success


class PackageManagerService:
    """Detects the project's package manager and primes dependencies."""

    @staticmethod
    def detect_project_type(sandbox: SandboxHandle) -> str | None:
        """Classify the project by its manifest: "node", "python" or None."""
        if file_exists(sandbox, "package.json"):
            return "node"
        if file_exists(sandbox, "requirements.txt"):
            return "python"
        return None

    @staticmethod
    def detect_package_manager(sandbox: SandboxHandle, task_logger: TaskLogger) -> str:
        """Pick a Node package manager from the lock files present."""
        for package_manager, lock_file in LOCK_FILES:
            if file_exists(sandbox, lock_file):
                task_logger.info(f"Detected {package_manager} ({lock_file} found)")
                return package_manager

        task_logger.info(
            f"No lock file found, defaulting to {FALLBACK_PACKAGE_MANAGER}"
        )
        return FALLBACK_PACKAGE_MANAGER

    @staticmethod
    def ensure_package_manager(
        sandbox: SandboxHandle, package_manager: str, task_logger: TaskLogger
    ) -> bool:
        """Install pnpm/yarn globally when the project needs them and they are missing."""
        if package_manager == FALLBACK_PACKAGE_MANAGER:
            return True
        if sandbox.run_command("which", [package_manager]).success:
            return True

        task_logger.info(f"Installing {package_manager} globally...")
        result = sandbox.run_command("npm", ["install", "-g", package_manager])
        if not result.success:
            task_logger.error(
                f"Failed to install {package_manager} globally, "
                f"falling back to {FALLBACK_PACKAGE_MANAGER}"
            )
            return False

        task_logger.info(f"{package_manager} installed globally")
        return True

    @staticmethod
    def install_dependencies(
        sandbox: SandboxHandle,
        package_manager: str,
        task_logger: TaskLogger,
        timeout: float | None = None,
    ) -> InstallResult:
        """Run one install with a bounded timeout.

        A timeout is reported as InstallResult(timed_out=True); the install command
        itself is left running.
        """
        timeout = timeout if timeout is not None else settings.install_timeout
        timeout_minutes = timeout / 60

        if package_manager == "pnpm":
            store = sandbox.run_command(
                "pnpm", ["config", "set", "store-dir", PNPM_STORE_DIR]
            )
            if store.success:
                task_logger.info(f"Configured pnpm to use {PNPM_STORE_DIR}")
            else:
                task_logger.error("Failed to configure pnpm store directory")

        command = INSTALL_COMMANDS[package_manager]
        task_logger.info(
            f"Attempting {package_manager} install with "
            f"{timeout_minutes:g}-minute timeout..."
        )

        outcome = run_with_timeout(
            lambda: sandbox.run_command(command[0], command[1:]),
            timeout,
            name=f"{package_manager}-install",
        )

        if outcome.timed_out:
            error = f"{package_manager} install timed out after {timeout_minutes:g} minutes"
            task_logger.error(f"{package_manager} install timed out")
            return InstallResult(success=False, error=error, timed_out=True)

        result: CommandResult = outcome.value
        if result.success:
            task_logger.info(f"Node.js dependencies installed with {package_manager}")
            return InstallResult(success=True)

        task_logger.error(f"{package_manager} install failed")
        task_logger.error(f"{package_manager} exit code: {result.exit_code}")
        if result.stdout:
            task_logger.error(f"{package_manager} stdout: {result.stdout}")
        if result.stderr:
            task_logger.error(f"{package_manager} stderr: {result.stderr}")
        return InstallResult(
            success=False,
            error=result.stderr or f"{package_manager} exited with {result.exit_code}",
        )

    @staticmethod
    def install_node_dependencies(
        sandbox: SandboxHandle,
        task_logger: TaskLogger,
        on_progress: Callable[[int, str], None] | None = None,
    ) -> InstallResult:
        """Install Node dependencies, retrying once with npm if needed.

        Raises:
            DependencyInstallWarning: If every attempt failed
        """
        package_manager = PackageManagerService.detect_package_manager(
            sandbox, task_logger
        )
        if not PackageManagerService.ensure_package_manager(
            sandbox, package_manager, task_logger
        ):
            package_manager = FALLBACK_PACKAGE_MANAGER

        if on_progress:
            on_progress(35, "Installing Node.js dependencies...")

        result = PackageManagerService.install_dependencies(
            sandbox, package_manager, task_logger
        )

        if not result.success and package_manager != FALLBACK_PACKAGE_MANAGER:
            task_logger.info(
                f"{package_manager} failed, trying {FALLBACK_PACKAGE_MANAGER} as fallback..."
            )
            if on_progress:
                on_progress(
                    37,
                    f"{package_manager} failed, trying {FALLBACK_PACKAGE_MANAGER} fallback...",
                )
            result = PackageManagerService.install_dependencies(
                sandbox, FALLBACK_PACKAGE_MANAGER, task_logger
            )

        if not result.success:
            raise DependencyInstallWarning(
                "Failed to install Node.js dependencies, "
                "but continuing with sandbox setup"
            )
        return result

    @staticmethod
    def install_python_dependencies(
        sandbox: SandboxHandle,
        task_logger: TaskLogger,
        on_progress: Callable[[int, str], None] | None = None,
    ) -> InstallResult:
        """Install requirements.txt with pip, bootstrapping pip if needed.

        Raises:
            DependencyInstallWarning: If pip is unavailable or the install failed
        """
        if on_progress:
            on_progress(35, "Installing Python dependencies...")

        if sandbox.run_command("python3", ["-m", "pip", "--version"]).success:
            task_logger.info("pip is available")
            upgrade = sandbox.run_command(
                "python3", ["-m", "pip", "install", "--upgrade", "pip"]
            )
            if not upgrade.success:
                task_logger.info("Warning: Failed to upgrade pip, continuing anyway")
        else:
            task_logger.info("pip not found, installing pip...")
            get_pip = sandbox.run_command(
                "sh",
                [
                    "-c",
                    "cd /tmp && curl -fsS https://bootstrap.pypa.io/get-pip.py -o get-pip.py"
                    " && python3 get-pip.py && rm -f get-pip.py",
                ],
            )
            if not get_pip.success:
                raise DependencyInstallWarning(
                    "Could not install pip, skipping Python dependencies"
                )
            task_logger.info("pip installed successfully")

        timeout = settings.install_timeout
        outcome = run_with_timeout(
            lambda: sandbox.run_command(
                "python3", ["-m", "pip", "install", "-r", "requirements.txt"]
            ),
            timeout,
            name="pip-install",
        )
        if outcome.timed_out:
            task_logger.error("pip install timed out")
            raise DependencyInstallWarning(
                f"pip install timed out after {timeout / 60:g} minutes, "
                "but continuing with sandbox setup"
            )

        result: CommandResult = outcome.value
        if not result.success:
            task_logger.info(f"pip exit code: {result.exit_code}")
            if result.stderr:
                task_logger.info(f"pip stderr: {result.stderr}")
            raise DependencyInstallWarning(
                "Failed to install Python dependencies, "
                "but continuing with sandbox setup"
            )

        task_logger.info("Python dependencies installed successfully")
        return InstallResult(success=True)

    @staticmethod
    def prime(
        sandbox: SandboxHandle,
        project_type: str | None,
        task_logger: TaskLogger,
        on_progress: Callable[[int, str], None] | None = None,
    ) -> None:
        """Best-effort dependency priming for a detected project type.

        Failures are logged as warnings and never raised.
        """
        try:
            if project_type == "node":
                task_logger.info("package.json found, installing Node.js dependencies...")
                PackageManagerService.install_node_dependencies(
                    sandbox, task_logger, on_progress
                )
            elif project_type == "python":
                task_logger.info(
                    "requirements.txt found, installing Python dependencies..."
                )
                PackageManagerService.install_python_dependencies(
                    sandbox, task_logger, on_progress
                )
            else:
                task_logger.info(
                    "No package.json or requirements.txt found, "
                    "skipping dependency installation"
                )
        except DependencyInstallWarning as e:
            task_logger.info(f"Warning: {e}")
        except Exception as e:
            task_logger.info(f"Warning: dependency installation failed: {e}")
