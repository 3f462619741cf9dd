"""API client service for interacting with the Coding Agent API."""

import os
import time
from typing import Any

import httpx

TERMINAL_STATUSES = ("completed", "error", "stopped")


class ApiClientService:
    """Service for Coding Agent API client operations."""

    @staticmethod
    def get_client(
        base_url: str | None = None, api_key: str | None = None
    ) -> httpx.Client:
        """Get configured HTTP client.

        Args:
            base_url: API base URL (defaults to CODING_AGENT_URL env var or http://localhost:8000)
            api_key: API key for authentication (defaults to API_SECRET_KEY env var)

        Returns:
            Configured httpx.Client with base_url, headers, and timeout
        """
        if base_url is None:
            base_url = os.getenv("CODING_AGENT_URL", "http://localhost:8000")
        if api_key is None:
            api_key = os.getenv("API_SECRET_KEY", "")

        return httpx.Client(
            base_url=base_url,
            headers={"X-API-Key": api_key},
            timeout=30.0,
        )

    @staticmethod
    def _request(
        method: str,
        path: str,
        client: httpx.Client | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        should_close = client is None
        if client is None:
            client = ApiClientService.get_client()

        try:
            response = client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        finally:
            if should_close:
                client.close()

    @staticmethod
    def create_task(
        prompt: str,
        repository_url: str | None = None,
        selected_agent: str = "claude",
        selected_model: str | None = None,
        install_dependencies: bool = False,
        max_duration: int = 5,
        parent_task_id: str | None = None,
        client: httpx.Client | None = None,
    ) -> dict[str, Any]:
        """Create a new task.

        Args:
            prompt: Natural language prompt for the task
            repository_url: Repository URL (optional for follow-ups)
            selected_agent: Agent CLI to run
            selected_model: Model forwarded to the agent
            install_dependencies: Prime dependencies before running the agent
            max_duration: Sandbox lifetime in minutes
            parent_task_id: Optional parent task whose branch to continue
            client: Optional httpx.Client to use (if None, creates new client)

        Returns:
            Task data as dict

        Raises:
            httpx.HTTPStatusError: If API request fails
        """
        payload: dict[str, Any] = {
            "prompt": prompt,
            "selected_agent": selected_agent,
            "install_dependencies": install_dependencies,
            "max_duration": max_duration,
        }
        if repository_url is not None:
            payload["repository_url"] = repository_url
        if selected_model is not None:
            payload["selected_model"] = selected_model
        if parent_task_id is not None:
            payload["parent_task_id"] = parent_task_id

        return ApiClientService._request("POST", "/v1/tasks", client, json=payload)

    @staticmethod
    def get_task(task_id: str, client: httpx.Client | None = None) -> dict[str, Any]:
        """Get task by ID.

        Raises:
            httpx.HTTPStatusError: If API request fails (e.g., 404 for not found)
        """
        return ApiClientService._request("GET", f"/v1/tasks/{task_id}", client)

    @staticmethod
    def list_tasks(
        limit: int = 100, offset: int = 0, client: httpx.Client | None = None
    ) -> dict[str, Any]:
        return ApiClientService._request(
            "GET", "/v1/tasks", client, params={"limit": limit, "offset": offset}
        )

    @staticmethod
    def get_task_logs(
        task_id: str,
        limit: int = 100,
        offset: int = 0,
        client: httpx.Client | None = None,
    ) -> dict[str, Any]:
        return ApiClientService._request(
            "GET",
            f"/v1/tasks/{task_id}/logs",
            client,
            params={"limit": limit, "offset": offset},
        )

    @staticmethod
    def stop_task(task_id: str, client: httpx.Client | None = None) -> dict[str, Any]:
        """Stop a running task.

        Raises:
            httpx.HTTPStatusError: 400 if the task already finished, 404 if unknown
        """
        return ApiClientService._request("POST", f"/v1/tasks/{task_id}/stop", client)

    @staticmethod
    def delete_tasks(
        actions: list[str], client: httpx.Client | None = None
    ) -> dict[str, Any]:
        """Bulk-delete tasks by status (completed, failed, stopped)."""
        return ApiClientService._request(
            "DELETE", "/v1/tasks", client, params={"action": ",".join(actions)}
        )

    @staticmethod
    def wait_for_task(
        task_id: str,
        timeout: int = 600,
        poll_interval: int = 5,
    ) -> dict[str, Any]:
        """Wait for task to reach a terminal status with polling.

        Args:
            task_id: Task ID to wait for
            timeout: Maximum time to wait in seconds (default: 600)
            poll_interval: Time between status checks in seconds (default: 5)

        Returns:
            Final task data when completed, errored or stopped

        Raises:
            TimeoutError: If task doesn't finish within timeout period
            httpx.HTTPStatusError: If the API returns an error
        """
        start_time = time.time()

        while True:
            if time.time() - start_time > timeout:
                raise TimeoutError(f"Task {task_id} did not complete within {timeout}s")

            task = ApiClientService.get_task(task_id)

            if task["status"] in TERMINAL_STATUSES:
                return task

            time.sleep(poll_interval)
