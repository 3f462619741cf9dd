"""Task orchestration: drives a task from pending to a terminal status."""

import logging
import threading
from uuid import UUID

from app.core.config import settings
from app.core.errors import AgentError, ProvisioningError, PublishError
from app.core.redaction import redact_sensitive_info
from app.core.timeouts import run_with_timeout
from app.models import Task
from app.services.agents import AgentExecutionResult, execute_agent_in_sandbox
from app.services.branch_name import BranchNameService
from app.services.cancellation import CancellationToken
from app.services.git import GitService
from app.services.provisioning import ProvisioningService, SandboxConfig
from app.services.sandbox import SandboxHandle, SandboxService
from app.services.sandbox_registry import SandboxRegistry, sandbox_registry
from app.services.task import TaskService
from app.services.task_logger import TaskLogger

logger = logging.getLogger(__name__)


def format_minutes(seconds: float) -> str:
    return f"{seconds / 60:g}"


class TaskExecutionContext:
    """Owns the sandbox of one task run and tears it down exactly once."""

    def __init__(self, task_id: UUID, registry: SandboxRegistry):
        self.task_id = task_id
        self.registry = registry
        self.sandbox: SandboxHandle | None = None
        self._lock = threading.Lock()
        self._torn_down = False

    def attach(self, sandbox: SandboxHandle) -> None:
        """Take ownership of a freshly created sandbox and register it.

        Registration happens under the teardown lock, so a concurrent teardown
        either sees the entry or the sandbox is never registered.

        Raises:
            ProvisioningError: If the run was already torn down; the sandbox is
                destroyed before raising
        """
        with self._lock:
            torn_down = self._torn_down
            if not torn_down:
                self.sandbox = sandbox
                self.registry.register(self.task_id, sandbox)
        if torn_down:
            SandboxService.shutdown_sandbox(sandbox)
            raise ProvisioningError("Task ended before the sandbox was ready")

        # Lets a stop request from another process reach the sandbox
        TaskService.set_sandbox_info(self.task_id, sandbox_id=sandbox.sandbox_id)

    def teardown(self) -> bool:
        """Deregister and destroy the sandbox. Later calls do nothing.

        Returns:
            True if this call performed the teardown
        """
        with self._lock:
            if self._torn_down:
                return False
            self._torn_down = True
            sandbox = self.sandbox

        self.registry.unregister(self.task_id)
        if sandbox is not None:
            success, error = SandboxService.shutdown_sandbox(sandbox)
            if not success:
                logger.error(
                    f"Failed to shut down sandbox for task {self.task_id}: "
                    f"{redact_sensitive_info(error)}"
                )
        return True


class AgentExecutionService:
    """Runs tasks end to end: branch, sandbox, agent, publish, teardown."""

    def __init__(self, registry: SandboxRegistry | None = None):
        self.registry = registry if registry is not None else sandbox_registry

    def execute_task(self, task_id: UUID) -> dict[str, str]:
        """Process a task under the global task timeout.

        A warning is logged at the configured fraction of the budget. On expiry the
        task is torn down and marked as errored; the abandoned processing thread
        cannot overwrite that status.

        Args:
            task_id: UUID of the task to execute

        Returns:
            Dict with the final status
        """
        task_logger = TaskLogger(task_id)
        context = TaskExecutionContext(task_id, self.registry)
        timeout = settings.task_timeout

        warning = threading.Timer(
            timeout * settings.task_timeout_warning_ratio,
            self._warn_timeout,
            args=(task_id, task_logger, timeout),
        )
        warning.daemon = True
        warning.start()
        try:
            outcome = run_with_timeout(
                lambda: self.process_task(task_id, task_logger, context),
                timeout,
                name=f"task-{task_id}",
            )
        finally:
            warning.cancel()

        if not outcome.timed_out:
            return outcome.value

        minutes = format_minutes(timeout)
        logger.error(f"Task {task_id} timed out after {minutes} minutes")
        context.teardown()
        if TaskService.get_task_by_id(task_id).status in ("pending", "processing"):
            task_logger.error(f"Task execution timed out after {minutes} minutes")
            task_logger.update_status(
                "error",
                f"Task execution timed out after {minutes} minutes. "
                "The operation took too long to complete.",
            )
        return {"status": TaskService.get_task_by_id(task_id).status}

    @staticmethod
    def _warn_timeout(task_id: UUID, task_logger: TaskLogger, timeout: float) -> None:
        try:
            if TaskService.get_task_by_id(task_id).status == "processing":
                task_logger.info(
                    f"Task is approaching timeout "
                    f"({format_minutes(timeout * settings.task_timeout_warning_ratio)} "
                    f"of {format_minutes(timeout)} minutes used)"
                )
        except Exception as e:
            logger.error(f"Failed to log timeout warning for {task_id}: {e}")

    def process_task(
        self,
        task_id: UUID,
        task_logger: TaskLogger,
        context: TaskExecutionContext,
    ) -> dict[str, str]:
        """Run the task pipeline with the single outer error handler.

        Any failure tears the sandbox down, is redacted, logged, and written as
        the task error unless the task was stopped meanwhile.
        """
        cancellation = CancellationToken.for_task(task_id)
        try:
            return self._run(task_id, task_logger, context, cancellation)
        except Exception as e:
            context.teardown()
            if cancellation.is_cancelled():
                logger.info(f"Task {task_id} failed after being stopped: {e}")
                return {"status": "stopped"}

            message = redact_sensitive_info(str(e)) or "Unknown error occurred"
            logger.error(f"Error processing task {task_id}: {message}")
            task_logger.error(f"Error: {message}")
            task_logger.update_status("error", message)
            return {"status": "error", "error": message}
        finally:
            context.teardown()

    def _stopped(
        self, task_logger: TaskLogger, context: TaskExecutionContext, where: str
    ) -> dict[str, str]:
        task_logger.info(f"Task was stopped {where}")
        context.teardown()
        return {"status": "stopped"}

    def _run(
        self,
        task_id: UUID,
        task_logger: TaskLogger,
        context: TaskExecutionContext,
        cancellation: CancellationToken,
    ) -> dict[str, str]:
        task = TaskService.get_task_by_id(task_id)

        if not task_logger.update_status("processing", "Task started"):
            logger.info(f"Task {task_id} is {task.status}, not processing it")
            return {"status": TaskService.get_task_by_id(task_id).status}

        task_logger.update_progress(10, "Initializing task...")
        if cancellation.is_cancelled():
            return self._stopped(task_logger, context, "before branch resolution")

        existing_branch, branch_name = self._resolve_branch_name(task, task_logger)

        if cancellation.is_cancelled():
            return self._stopped(task_logger, context, "before sandbox creation")

        task_logger.update_progress(15, "Creating sandbox...")
        provisioned = ProvisioningService.create_sandbox(
            SandboxConfig(
                task_id=task_id,
                repository_url=task.repository_url,
                timeout_minutes=task.max_duration,
                install_dependencies=task.install_dependencies,
                selected_agent=task.selected_agent,
                pre_determined_branch_name=None if existing_branch else branch_name,
                existing_branch_name=existing_branch,
                on_progress=task_logger.update_progress,
                cancellation=cancellation,
                on_sandbox_created=context.attach,
            ),
            task_logger,
        )
        if provisioned.cancelled or cancellation.is_cancelled():
            return self._stopped(task_logger, context, "after sandbox creation")

        sandbox = provisioned.sandbox
        TaskService.set_sandbox_info(
            task_id, sandbox_url=provisioned.domain, sandbox_id=sandbox.sandbox_id
        )
        branch_name = provisioned.branch_name
        if not TaskService.set_branch_name_if_absent(task_id, branch_name):
            persisted = TaskService.get_task_by_id(task_id).branch_name
            if persisted != branch_name:
                logger.warning(
                    f"Task {task_id} branch {persisted} differs from working branch "
                    f"{branch_name}"
                )

        if cancellation.is_cancelled():
            return self._stopped(task_logger, context, "before agent execution")

        agent = task.selected_agent
        task_logger.update_progress(50, f"Executing {agent} agent...")
        agent_result = self._execute_agent(task, sandbox, task_logger, cancellation)

        if not agent_result.success:
            if cancellation.is_cancelled():
                return self._stopped(task_logger, context, "during agent execution")
            raise AgentError(agent_result.error or "Agent execution failed")

        task_logger.success(agent_result.output or f"{agent} agent finished")
        if agent_result.agent_response:
            task_logger.info(f"Agent response: {agent_result.agent_response[:2000]}")

        if cancellation.is_cancelled():
            return self._stopped(task_logger, context, "before publishing changes")

        push = GitService.push_changes_to_branch(
            sandbox,
            branch_name,
            GitService.truncate_commit_message(task.prompt),
            task_logger,
        )
        context.teardown()

        if push.push_failed:
            task_logger.error("Task failed: Unable to push changes to repository")
            raise PublishError("Failed to push changes to repository")
        if not push.success:
            raise PublishError(push.error or "Failed to commit changes")

        task_logger.complete()
        return {"status": "completed", "branch_name": branch_name}

    def _resolve_branch_name(
        self, task: Task, task_logger: TaskLogger
    ) -> tuple[str | None, str]:
        """Settle the task's branch before any sandbox exists.

        Returns:
            Tuple of (existing branch to resume or None, branch name to use)
        """
        if task.parent_task_id and task.branch_name:
            task_logger.info(f"Continuing on existing branch: {task.branch_name}")
            return task.branch_name, task.branch_name

        # The resolver only runs when a naming service is configured
        max_wait = settings.branch_name_wait if settings.ai_gateway_api_key else 0
        branch_name = BranchNameService.wait_for_branch_name(task.id, max_wait=max_wait)
        if branch_name:
            task_logger.info(f"Using generated branch name: {branch_name}")
            return None, branch_name

        # Claim the fallback before creating the branch so the pushed branch and
        # the persisted name agree
        branch_name = BranchNameService.claim_fallback_branch_name(task.id)
        task_logger.info(f"Branch name generation timed out, using fallback: {branch_name}")
        return None, branch_name

    def _execute_agent(
        self,
        task: Task,
        sandbox: SandboxHandle,
        task_logger: TaskLogger,
        cancellation: CancellationToken,
    ) -> AgentExecutionResult:
        """Run the agent under its timeout; a timeout is an ordinary failure."""
        agent = task.selected_agent
        timeout = settings.agent_timeout_for(agent)
        outcome = run_with_timeout(
            lambda: execute_agent_in_sandbox(
                sandbox,
                task.prompt,
                agent,
                task_logger,
                task.selected_model,
                cancellation,
            ),
            timeout,
            name=f"agent-{task.id}",
        )
        if outcome.timed_out:
            error = f"{agent} agent timed out after {format_minutes(timeout)} minutes"
            task_logger.error(error)
            return AgentExecutionResult(success=False, cli_name=agent, error=error)
        return outcome.value
