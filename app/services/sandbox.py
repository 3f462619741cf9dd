"""Sandbox service for Novita sandbox operations."""

import logging
import os
import shlex
import threading
from collections.abc import Callable
from dataclasses import dataclass

from e2b import CommandExitException, TimeoutException
from e2b_code_interpreter import Sandbox

from app.core.config import settings
from app.core.errors import CommandTimeoutError, ProvisioningError, ProvisioningTimeoutError

logger = logging.getLogger(__name__)

REPO_DIR = "/home/user/repo"


@dataclass
class CommandResult:
    """Exit code and captured output of a sandbox command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return self.stdout or ""

    @property
    def error(self) -> str:
        return self.stderr or ""


def build_command(command: str, args: list[str] | None = None) -> str:
    """Join a command and its arguments into a safely quoted shell string."""
    if not args:
        return command
    return shlex.join([command, *args])


class SandboxHandle:
    """Live sandbox owned by one task.

    Wraps the E2B sandbox with the run-command / domain / kill contract the rest
    of the service uses. kill() is idempotent.
    """

    def __init__(self, sandbox: Sandbox, workdir: str = REPO_DIR):
        self._sandbox = sandbox
        self.workdir = workdir
        self._kill_lock = threading.Lock()
        self._killed = False

    @property
    def sandbox_id(self) -> str:
        return self._sandbox.sandbox_id

    @property
    def killed(self) -> bool:
        return self._killed

    def run_command(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        cwd: str | None = None,
    ) -> CommandResult:
        """Run a command in the sandbox.

        Non-zero exit codes are returned, not raised.

        Raises:
            CommandTimeoutError: If the command exceeds its timeout
        """
        full_command = build_command(command, args)
        try:
            result = self._sandbox.commands.run(
                full_command,
                envs=env or None,
                cwd=cwd or self.workdir,
                timeout=timeout or settings.sandbox_command_timeout,
            )
        except CommandExitException as e:
            # E2B raises for non-zero exit codes, but the output is still there
            return CommandResult(
                exit_code=e.exit_code,
                stdout=getattr(e, "stdout", "") or "",
                stderr=getattr(e, "stderr", "") or str(e),
            )
        except TimeoutException as e:
            raise CommandTimeoutError(f"Command timed out: {command}") from e

        return CommandResult(
            exit_code=result.exit_code,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

    def run_background(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        on_stdout: Callable[[str], None] | None = None,
        on_stderr: Callable[[str], None] | None = None,
    ):
        """Start a detached command streaming its output to callbacks.

        Returns:
            A command handle exposing kill()
        """

        def _text(callback):
            if callback is None:
                return None
            return lambda chunk: callback(getattr(chunk, "line", chunk))

        return self._sandbox.commands.run(
            build_command(command, args),
            background=True,
            envs=env or None,
            cwd=self.workdir,
            on_stdout=_text(on_stdout),
            on_stderr=_text(on_stderr),
            timeout=settings.sandbox_command_timeout,
        )

    def write_file(self, path: str, content: str) -> None:
        self._sandbox.files.write(path, content)

    def domain(self, port: int) -> str:
        """Public URL for a port exposed by the sandbox."""
        return f"https://{self._sandbox.get_host(port)}"

    def kill(self) -> bool:
        """Destroy the sandbox. Only the first call does anything.

        Returns:
            True if this call destroyed the sandbox
        """
        with self._kill_lock:
            if self._killed:
                return False
            self._killed = True
        self._sandbox.kill()
        logger.info(f"Sandbox {self.sandbox_id} killed")
        return True


class SandboxService:
    """Service for Novita sandbox operations."""

    @staticmethod
    def create_sandbox(
        repository_url: str,
        revision: str | None = None,
        timeout: int | None = None,
        envs: dict[str, str] | None = None,
        metadata: dict[str, str] | None = None,
    ) -> SandboxHandle:
        """Create a sandbox with a shallow clone of the repository.

        Args:
            repository_url: Clone URL, credentials included for private repos
            revision: Branch to clone; the remote's default branch when None
            timeout: Sandbox lifetime in seconds
            envs: Environment variables for the sandbox
            metadata: Labels attached to the sandbox

        Raises:
            ProvisioningTimeoutError: If creation or clone times out
            ProvisioningError: If the sandbox service or clone fails
        """
        # Configure for Novita
        os.environ["E2B_API_KEY"] = settings.novita_api_key or ""
        os.environ["E2B_DOMAIN"] = settings.sandbox_domain

        sandbox_timeout = timeout or settings.sandbox_command_timeout
        try:
            sandbox = Sandbox.create(
                template=settings.sandbox_template,
                timeout=sandbox_timeout,
                envs=envs or {},
                metadata=metadata or {},
            )
        except TimeoutException as e:
            raise ProvisioningTimeoutError(
                "Sandbox creation timed out. "
                "Try with a smaller repository or fewer dependencies."
            ) from e
        except Exception as e:
            raise ProvisioningError(f"Sandbox creation failed: {e}") from e

        handle = SandboxHandle(sandbox)
        logger.info(
            f"Created sandbox {handle.sandbox_id} with {sandbox_timeout}s timeout"
        )

        clone_args = ["clone", "--depth", "1"]
        if revision:
            clone_args += ["--branch", revision]
        clone_args += [repository_url, REPO_DIR]

        try:
            result = handle.run_command("git", clone_args, cwd="/home/user")
        except CommandTimeoutError as e:
            SandboxService.shutdown_sandbox(handle)
            raise ProvisioningTimeoutError(
                "Repository clone timed out. "
                "Try with a smaller repository or fewer dependencies."
            ) from e

        if not result.success:
            SandboxService.shutdown_sandbox(handle)
            raise ProvisioningError(
                f"Failed to clone repository (exit code {result.exit_code}): "
                f"{result.stderr.strip() or 'No error message'}"
            )

        return handle

    @staticmethod
    def shutdown_sandbox(sandbox: SandboxHandle | None) -> tuple[bool, str | None]:
        """Destroy a sandbox, reporting rather than raising failures.

        Returns:
            Tuple of (success, error message)
        """
        if sandbox is None:
            return True, None
        try:
            sandbox.kill()
            return True, None
        except Exception as e:
            logger.error(f"Error killing sandbox: {e}")
            return False, str(e) or "Failed to shutdown sandbox"

    @staticmethod
    def kill_sandbox_by_id(sandbox_id: str) -> bool:
        """Destroy a sandbox by id, including one created by another process.

        Returns:
            True if the sandbox existed and was killed
        """
        killed = Sandbox.kill(
            sandbox_id=sandbox_id,
            api_key=settings.novita_api_key,
            domain=settings.sandbox_domain,
        )
        if killed:
            logger.info(f"Sandbox {sandbox_id} killed")
        return bool(killed)
