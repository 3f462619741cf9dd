"""Branch name resolution for task branches."""

import logging
import re
import secrets
import string
import time
from datetime import UTC, datetime
from uuid import UUID

import httpx

from app.core.config import settings
from app.core.timeouts import run_with_timeout
from app.services.git import GitService
from app.services.task import TaskService

logger = logging.getLogger(__name__)

BRANCH_PREFIX = "agent"
SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
SUFFIX_LENGTH = 6
MAX_SLUG_LENGTH = 40


class BranchNameError(Exception):
    """Raised when the naming service returns nothing usable."""


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


def timestamp() -> str:
    return datetime.now(UTC).strftime("%Y%m%d%H%M%S")


def slugify(text: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    """Lowercase, hyphen-separated slug safe for a git ref component."""
    slug = re.sub(r"[^a-z0-9/]+", "-", text.lower())
    slug = re.sub(r"-{2,}", "-", slug).strip("-/")
    return slug[:max_length].rstrip("-/")


def create_fallback_branch_name(task_id: UUID) -> str:
    """Deterministic name from the current time and the task id."""
    return f"{BRANCH_PREFIX}/{timestamp()}-{task_id.hex[:12]}"


def create_timestamp_branch_name() -> str:
    """Name used when no other name is available at provisioning time."""
    return f"{BRANCH_PREFIX}/{timestamp()}-{random_suffix()}"


class BranchNameGenerator:
    """Client for an OpenAI-compatible chat-completions endpoint."""

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        self.base_url = (base_url or settings.ai_gateway_base_url).rstrip("/")
        self.api_key = api_key or settings.ai_gateway_api_key
        self.model = model or settings.branch_name_model
        self.timeout = timeout or settings.branch_name_generation_timeout

    def generate(
        self, description: str, repo_name: str | None = None, context: str | None = None
    ) -> str:
        """Ask the model for a short branch name.

        Raises:
            httpx.HTTPError: If the request fails
            BranchNameError: If the response holds no usable name
        """
        details = [f"Task: {description}"]
        if repo_name:
            details.append(f"Repository: {repo_name}")
        if context:
            details.append(f"Context: {context}")

        response = httpx.post(
            f"{self.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "model": self.model,
                "messages": [
                    {
                        "role": "system",
                        "content": (
                            "Reply with a short git branch name in kebab-case, "
                            "such as feature/add-login or fix/readme-typo. "
                            "Reply with the name only."
                        ),
                    },
                    {"role": "user", "content": "\n".join(details)},
                ],
                "max_tokens": 30,
                "temperature": 0.3,
            },
            timeout=self.timeout,
        )
        response.raise_for_status()

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise BranchNameError("Unexpected response from branch name service") from e

        name = slugify(content or "")
        if not name:
            raise BranchNameError("Branch name service returned an empty name")
        return name


class BranchNameService:
    """Resolves the single branch name a task's changes are pushed to."""

    @staticmethod
    def generate_for_task(
        task_id: UUID, generator: BranchNameGenerator | None = None
    ) -> str | None:
        """Generate a name for a task and persist it if none is set yet.

        Any generation failure or timeout falls back to a timestamp + task id name.
        A name that loses the compare-and-set is discarded.

        Returns:
            The task's persisted branch name, or None if generation was skipped
        """
        task = TaskService.get_task_by_id(task_id)
        if task.branch_name:
            logger.info(f"Task {task_id} already has branch {task.branch_name}, skipping")
            return task.branch_name
        if not settings.ai_gateway_api_key and generator is None:
            logger.info(f"No AI gateway key configured, skipping branch name for {task_id}")
            return None

        generator = generator or BranchNameGenerator()
        repo_name = GitService.get_repo_name(task.repository_url)
        context = f"{task.selected_agent} agent task"

        try:
            outcome = run_with_timeout(
                lambda: generator.generate(task.prompt, repo_name, context),
                settings.branch_name_generation_timeout,
                name="branch-name",
            )
            if outcome.timed_out:
                raise BranchNameError("Branch name generation timed out")
            branch_name = f"{outcome.value}-{random_suffix()}"
        except Exception as e:
            logger.warning(f"Branch name generation failed for {task_id}: {e}")
            branch_name = create_fallback_branch_name(task_id)

        if TaskService.set_branch_name_if_absent(task_id, branch_name):
            logger.info(f"Generated branch name {branch_name} for task {task_id}")
            return branch_name

        winner = TaskService.get_task_by_id(task_id).branch_name
        logger.info(
            f"Discarding branch name {branch_name} for task {task_id}, "
            f"already set to {winner}"
        )
        return winner

    @staticmethod
    def wait_for_branch_name(
        task_id: UUID, max_wait: float | None = None, poll_interval: float | None = None
    ) -> str | None:
        """Poll the task until a branch name appears or max_wait elapses."""
        max_wait = settings.branch_name_wait if max_wait is None else max_wait
        poll_interval = (
            settings.branch_name_poll_interval if poll_interval is None else poll_interval
        )

        deadline = time.monotonic() + max_wait
        while True:
            branch_name = TaskService.get_task_by_id(task_id).branch_name
            if branch_name:
                return branch_name
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            time.sleep(min(poll_interval, remaining))

    @staticmethod
    def claim_fallback_branch_name(task_id: UUID) -> str:
        """Persist a provisioning-time name unless another writer got there first.

        Returns:
            Whichever name the task ends up with
        """
        candidate = create_timestamp_branch_name()
        if TaskService.set_branch_name_if_absent(task_id, candidate):
            logger.info(f"Claimed fallback branch name {candidate} for task {task_id}")
            return candidate
        return TaskService.get_task_by_id(task_id).branch_name
