"""Pytest configuration and fixtures."""

import os
import tempfile
import threading
import time
from collections.abc import Callable

# Configure the environment before the app reads its settings
_db_dir = tempfile.mkdtemp(prefix="coding-agent-tests-")
os.environ["APP_ENV"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_db_dir}/test.db"
os.environ["TASK_EXECUTION_MODE"] = "celery"
os.environ["NOVITA_API_KEY"] = "novita-test-key-123"
os.environ["GITHUB_TOKEN"] = "ghp_testtoken123456"
os.environ["ANTHROPIC_API_KEY"] = "sk-ant-test-key-123"
for name in (
    "AI_GATEWAY_API_KEY",
    "OPENAI_API_KEY",
    "CURSOR_API_KEY",
    "GEMINI_API_KEY",
    "GOOGLE_API_KEY",
    "GOOGLE_CLOUD_PROJECT",
    "GOOGLE_GENAI_USE_VERTEXAI",
):
    os.environ.pop(name, None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

from app.core.database import clean_database, close_db, get_engine  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Task  # noqa: E402
from app.services import TaskService  # noqa: E402
from app.services.sandbox import CommandResult, build_command  # noqa: E402

Response = CommandResult | Callable[[str, dict | None], CommandResult]


def create_test_task(
    prompt: str = "Test task prompt",
    repository_url: str = "https://github.com/test/repo.git",
    **kwargs,
) -> Task:
    """Helper function to create a test task with default values."""
    return TaskService.create_task(prompt=prompt, repository_url=repository_url, **kwargs)


def wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll a condition, for work finishing on background threads."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class FakeCommand:
    """Handle returned by FakeSandbox.run_background."""

    def __init__(self):
        self.killed = False

    def kill(self):
        self.killed = True


class FakeSandbox:
    """In-memory stand-in for SandboxHandle with scripted command results.

    Responses are matched by the longest registered prefix of the full command
    line. Unmatched commands succeed with empty output.
    """

    def __init__(self, responses: dict[str, Response] | None = None, sandbox_id="sbx-test"):
        self.sandbox_id = sandbox_id
        self.responses: dict[str, Response] = dict(responses or {})
        self.commands: list[str] = []
        self.envs: list[dict | None] = []
        self.files: dict[str, str] = {}
        self.background_lines: list[str] = []
        self.background_commands: list[FakeCommand] = []
        self.kill_count = 0
        self._lock = threading.Lock()

    @property
    def killed(self) -> bool:
        return self.kill_count > 0

    def respond(self, prefix: str, response: Response) -> None:
        self.responses[prefix] = response

    def ran(self, prefix: str) -> bool:
        return any(command.startswith(prefix) for command in self.commands)

    def run_command(self, command, args=None, env=None, timeout=None, cwd=None):
        full_command = build_command(command, args)
        with self._lock:
            self.commands.append(full_command)
            self.envs.append(env)

        matches = [p for p in self.responses if full_command.startswith(p)]
        if not matches:
            return CommandResult(exit_code=0)
        response = self.responses[max(matches, key=len)]
        if callable(response):
            return response(full_command, env)
        return response

    def run_background(self, command, args=None, env=None, on_stdout=None, on_stderr=None):
        full_command = build_command(command, args)
        with self._lock:
            self.commands.append(full_command)
            self.envs.append(env)
        for line in self.background_lines:
            if on_stdout:
                on_stdout(line)
        handle = FakeCommand()
        self.background_commands.append(handle)
        return handle

    def write_file(self, path, content):
        self.files[path] = content

    def domain(self, port):
        return f"https://{port}-{self.sandbox_id}.sandbox.test"

    def kill(self):
        with self._lock:
            self.kill_count += 1
            return self.kill_count == 1


def ok(stdout: str = "") -> CommandResult:
    return CommandResult(exit_code=0, stdout=stdout)


def fail(stderr: str = "failed", exit_code: int = 1, stdout: str = "") -> CommandResult:
    return CommandResult(exit_code=exit_code, stdout=stdout, stderr=stderr)


@pytest.fixture(autouse=True, scope="function")
def mock_celery_task(mocker):
    """Mock Celery task dispatch for all tests."""
    execute = mocker.patch("app.tasks.agent_execution.execute_agent_task.delay")
    generate = mocker.patch("app.tasks.branch_naming.generate_branch_name.delay")
    return execute, generate


@pytest.fixture(autouse=True, scope="function")
def clean_db():
    """Initialize and clean database for each test."""
    # Create tables
    engine = get_engine()
    SQLModel.metadata.create_all(engine)

    # Clean all tables before test to ensure isolation
    clean_database()

    yield

    # Close DB connections
    close_db()


@pytest.fixture(scope="function")
def test_client():
    """Create a test client."""
    with TestClient(app) as client:
        yield client


@pytest.fixture(scope="function")
def auth_headers():
    """Provide authentication headers for API requests."""
    from app.core.config import settings

    return {"X-API-Key": settings.api_secret_key}


@pytest.fixture
def fake_sandbox():
    """Sandbox double with a non-Node, non-Python repository checked out."""
    return FakeSandbox(
        {
            "test -f": fail(""),
            "git status --porcelain": ok(""),
            "git show-ref": fail(""),
            "git ls-remote": ok(""),
        }
    )


@pytest.fixture
def task_logger():
    """TaskLogger bound to a fresh task."""
    from app.services.task_logger import TaskLogger

    task = create_test_task()
    return TaskLogger(task.id)
