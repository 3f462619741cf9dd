"""Coding Agent CLI - Simple command-line interface for the coding agent API."""

from datetime import datetime
from pathlib import Path

import httpx
import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from app.services.api_client import ApiClientService
from app.services.git import GitError, GitService

# Load .env file from project root (parent of app/ directory)
env_path = Path(__file__).parent.parent / ".env"
load_dotenv(env_path)

app = typer.Typer(help="Coding Agent CLI")
task_app = typer.Typer(help="Task management commands")
app.add_typer(task_app, name="task")

console = Console()

STATUS_STYLES = {
    "pending": "yellow",
    "processing": "blue",
    "completed": "green",
    "error": "red",
    "stopped": "magenta",
}
LOG_STYLES = {"info": "white", "command": "cyan", "error": "red", "success": "green"}


def resolve_repo(repo: str | None) -> str:
    """Repository URL from --repo or the current git checkout."""
    if repo is not None:
        return GitService.normalize_repo_url(repo)

    try:
        repo_url, _ = GitService.get_current_repo()
    except GitError as e:
        console.print(f"[red]✗[/red] {e}")
        console.print("  Either run from a git repo or specify --repo explicitly")
        raise typer.Exit(1) from None
    return repo_url


def print_http_error(error: httpx.HTTPStatusError) -> None:
    try:
        detail = error.response.json().get("detail", error.response.text)
    except ValueError:
        detail = error.response.text
    console.print(f"[red]✗[/red] {error.response.status_code}: {detail}")


@task_app.command("create")
def create_task(
    prompt: str = typer.Argument(..., help="Natural language prompt for the task"),
    repo: str = typer.Option(
        None, "--repo", help="Repository URL or org/name (defaults to current git repo)"
    ),
    agent: str = typer.Option("claude", "--agent", "-a", help="Agent CLI to run"),
    model: str = typer.Option(None, "--model", "-m", help="Model passed to the agent"),
    install_deps: bool = typer.Option(
        False, "--install-deps", help="Install project dependencies first"
    ),
    max_duration: int = typer.Option(
        5, "--max-duration", help="Sandbox lifetime in minutes"
    ),
    parent: str = typer.Option(
        None, "--parent", help="Parent task ID to continue on its branch"
    ),
):
    """Create a new task."""
    repo_url = None if parent and repo is None else resolve_repo(repo)

    try:
        task = ApiClientService.create_task(
            prompt,
            repository_url=repo_url,
            selected_agent=agent,
            selected_model=model,
            install_dependencies=install_deps,
            max_duration=max_duration,
            parent_task_id=parent,
        )
    except httpx.HTTPStatusError as e:
        print_http_error(e)
        raise typer.Exit(1) from None

    console.print(f"[green]✓[/green] Task created: [bold]{task['id']}[/bold]")
    console.print(f"  Status: {task['status']}")
    console.print(f"  Agent: {task['selected_agent']}")
    console.print(f"  Repository: {task['repository_url']}")

    if task.get("branch_name"):
        console.print(f"  Branch: [cyan]{task['branch_name']}[/cyan]")


@task_app.command("list")
def list_tasks(
    limit: int = typer.Option(10, "--limit", "-n", help="Number of tasks to show"),
):
    """List recent tasks."""
    data = ApiClientService.list_tasks(limit=limit)
    tasks = data["tasks"]

    if not tasks:
        console.print("[yellow]No tasks found[/yellow]")
        return

    table = Table(title=f"Recent Tasks (showing {len(tasks)} of {data['total']})")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Agent", style="white")
    table.add_column("Progress", justify="right")
    table.add_column("Prompt", style="white")
    table.add_column("Created", style="dim")

    for task in tasks:
        # Truncate prompt for display
        prompt = (
            task["prompt"][:50] + "..." if len(task["prompt"]) > 50 else task["prompt"]
        )
        style = STATUS_STYLES.get(task["status"], "white")

        table.add_row(
            task["id"][:8],  # Show first 8 chars of UUID
            f"[{style}]{task['status']}[/{style}]",
            task["selected_agent"],
            f"{task['progress']}%",
            prompt,
            task["created_at"][:10],
        )

    console.print(table)


@task_app.command("get")
def get_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Get task details."""
    try:
        task = ApiClientService.get_task(task_id)
    except httpx.HTTPStatusError as e:
        print_http_error(e)
        raise typer.Exit(1) from None

    # Calculate duration
    created = datetime.fromisoformat(task["created_at"].replace("Z", "+00:00"))
    finished = task.get("completed_at") or task["updated_at"]
    duration = datetime.fromisoformat(finished.replace("Z", "+00:00")) - created

    console.print(f"[bold]Task {task['id']}[/bold]")
    console.print(f"  Status: {task['status']} ({task['progress']}%)")
    console.print(f"  Agent: {task['selected_agent']}")
    if task.get("selected_model"):
        console.print(f"  Model: {task['selected_model']}")
    console.print(f"  Repository: {task['repository_url']}")
    console.print(f"  Created: {task['created_at']}")
    console.print(f"  Duration: {duration.total_seconds():.1f}s")

    if task.get("branch_name"):
        console.print(f"  Branch: [cyan]{task['branch_name']}[/cyan]")
    if task.get("sandbox_url"):
        console.print(f"  Sandbox: {task['sandbox_url']}")
    if task.get("parent_task_id"):
        console.print(f"  Parent: [dim]{task['parent_task_id']}[/dim]")

    console.print(f"\n[bold]Prompt:[/bold]\n{task['prompt']}")

    if task.get("error"):
        console.print(f"\n[bold red]Error:[/bold red]\n{task['error']}")


@task_app.command("logs")
def get_logs(
    task_id: str = typer.Argument(..., help="Task ID"),
    limit: int = typer.Option(100, "--limit", "-n", help="Number of entries"),
    offset: int = typer.Option(0, "--offset", help="Entries to skip"),
):
    """Get task logs."""
    try:
        data = ApiClientService.get_task_logs(task_id, limit=limit, offset=offset)
    except httpx.HTTPStatusError as e:
        print_http_error(e)
        raise typer.Exit(1) from None

    logs = data["logs"]

    if not logs:
        console.print("[yellow]No logs found[/yellow]")
        return

    console.print(f"[bold]Logs for task {task_id}[/bold] ({data['total']} entries)\n")

    for log in logs:
        style = LOG_STYLES.get(log["type"], "white")
        timestamp = log["created_at"][11:19]
        prefix = "$ " if log["type"] == "command" else ""
        console.print(
            f"[dim]{timestamp}[/dim] [{style}]{prefix}{log['message']}[/{style}]",
            markup=True,
            highlight=False,
        )


@task_app.command("stop")
def stop_task(task_id: str = typer.Argument(..., help="Task ID")):
    """Stop a running task."""
    try:
        result = ApiClientService.stop_task(task_id)
    except httpx.HTTPStatusError as e:
        print_http_error(e)
        raise typer.Exit(1) from None

    console.print(f"[green]✓[/green] {result['message']}")


@task_app.command("wait")
def wait_task(
    task_id: str = typer.Argument(..., help="Task ID"),
    timeout: int = typer.Option(600, "--timeout", "-t", help="Timeout in seconds"),
):
    """Wait for task to finish."""
    with console.status(f"Waiting for task {task_id}..."):
        try:
            task = ApiClientService.wait_for_task(task_id, timeout=timeout)
        except TimeoutError:
            console.print(f"[red]✗[/red] Timeout after {timeout}s")
            raise typer.Exit(1) from None

    if task["status"] == "completed":
        console.print("[green]✓[/green] Task completed")
        if task.get("branch_name"):
            console.print(f"  Branch: [cyan]{task['branch_name']}[/cyan]")
        return

    console.print(f"[red]✗[/red] Task {task['status']}")
    if task.get("error"):
        console.print(f"  {task['error']}")
    raise typer.Exit(1)


@task_app.command("delete")
def delete_tasks(
    actions: list[str] = typer.Argument(
        ..., help="Statuses to delete: completed, failed, stopped"
    ),
):
    """Delete tasks by status."""
    try:
        result = ApiClientService.delete_tasks(actions)
    except httpx.HTTPStatusError as e:
        print_http_error(e)
        raise typer.Exit(1) from None

    console.print(f"[green]✓[/green] {result['message']}")


if __name__ == "__main__":
    app()
