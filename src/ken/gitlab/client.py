"""GitLab REST API client using httpx.

This module provides an async HTTP client for the GitLab v4 API covering
the read paths used to build project context and workload reports, plus
issue and merge request creation. Authentication uses a personal access
token sent in the PRIVATE-TOKEN header.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from ken.context.models import HotIssue, ProjectLabel, ProjectMilestone
from ken.gitlab.models import (
    GitLabIssue,
    GitLabLabel,
    GitLabMergeRequest,
    GitLabMilestone,
    GitLabProject,
    ProjectMember,
)

if TYPE_CHECKING:
    from ken.config import Config

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_RETRIES = 3
INITIAL_BACKOFF = 1.0  # seconds
MAX_RATE_LIMIT_WAIT = 60.0
PAGE_SIZE = 100
MAX_PAGES = 10


class GitLabClientError(Exception):
    """Base exception for GitLab client errors."""


class GitLabTransportError(GitLabClientError):
    """The request never got a response (connection failure, timeout)."""


class GitLabAPIError(GitLabClientError):
    """GitLab answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitLabAuthError(GitLabAPIError):
    """Authentication with GitLab failed."""

    def __init__(self, message: str, status_code: int = 401) -> None:
        super().__init__(message, status_code)


class GitLabNotFoundError(GitLabAPIError):
    """Requested resource not found."""

    def __init__(self, message: str, status_code: int = 404) -> None:
        super().__init__(message, status_code)


def encode_project_id(project_id: str | int) -> str:
    """Percent-encode a project ID for use as a path segment."""
    return quote(str(project_id), safe="")


class GitLabClient:
    """Async GitLab API client.

    Must be used as an async context manager. Bulk list calls used for
    context building (labels, members, milestones, open and unassigned
    issues) return an empty list on a non-2xx response; every other call
    raises.
    """

    def __init__(
        self,
        gitlab_url: str,
        token: str,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the GitLab client.

        Args:
            gitlab_url: Instance URL, e.g. https://gitlab.com.
            token: Personal access token.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).

        Raises:
            GitLabAuthError: If no token is provided.
        """
        if not token:
            raise GitLabAuthError("No GitLab token provided. Run 'ken auth login' first.")

        self.base_url = f"{gitlab_url.rstrip('/')}/api/v4"
        self.timeout = timeout
        self._transport = transport
        # Never log the token
        self._headers = {"PRIVATE-TOKEN": token, "Accept": "application/json"}
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, config: Config, **kwargs: Any) -> GitLabClient:
        """Create a client from a ``Config``."""
        return cls(config.gitlab_url, config.api_token, **kwargs)

    async def __aenter__(self) -> GitLabClient:
        """Enter async context manager."""
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, ensuring it's initialized."""
        if self._client is None:
            raise RuntimeError("GitLabClient must be used as async context manager")
        return self._client

    async def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Make an HTTP request with retry logic.

        Args:
            method: HTTP method (GET, POST, ...).
            endpoint: API endpoint relative to /api/v4 (path segments already encoded).
            **kwargs: Additional arguments passed to httpx request.

        Returns:
            httpx.Response object.

        Raises:
            GitLabAuthError: On 401/403.
            GitLabNotFoundError: On 404.
            GitLabAPIError: For any other non-2xx response.
            GitLabTransportError: If no response was received after retries.
        """
        backoff = INITIAL_BACKOFF

        for attempt in range(MAX_RETRIES):
            try:
                response = await self.client.request(method, endpoint, **kwargs)
            except httpx.TimeoutException as e:
                if attempt < MAX_RETRIES - 1:
                    wait_time = backoff * (2**attempt)
                    logger.warning(f"Request timeout, retrying in {wait_time:.1f}s")
                    await asyncio.sleep(wait_time)
                    continue
                raise GitLabTransportError(f"Request timeout after {MAX_RETRIES} attempts") from e
            except httpx.TransportError as e:
                if attempt < MAX_RETRIES - 1:
                    wait_time = backoff * (2**attempt)
                    logger.warning(f"HTTP error: {e}, retrying in {wait_time:.1f}s")
                    await asyncio.sleep(wait_time)
                    continue
                raise GitLabTransportError(f"Could not reach GitLab after {MAX_RETRIES} attempts: {e}") from e

            status = response.status_code

            if status == 429:
                if attempt < MAX_RETRIES - 1:
                    wait_time = _retry_after(response, default=backoff * (2**attempt))
                    logger.warning(f"Rate limit hit, waiting {wait_time:.1f}s (attempt {attempt + 1}/{MAX_RETRIES})")
                    await asyncio.sleep(wait_time)
                    continue
                raise GitLabAPIError("GitLab API rate limit exceeded", status_code=status)

            if status in (401, 403):
                raise GitLabAuthError(f"GitLab authentication failed ({status}). Check your token and URL.", status_code=status)

            if status == 404:
                raise GitLabNotFoundError(f"Resource not found: {endpoint}")

            if status >= 400:
                error_body = response.text
                logger.error(f"GitLab API error {status}: {error_body[:500]}")
                raise GitLabAPIError(f"GitLab API error {status}: {error_body[:200]}", status_code=status)

            return response

        raise GitLabClientError("Max retries exceeded")

    async def _get_list(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        max_pages: int = MAX_PAGES,
    ) -> list[dict[str, Any]]:
        """GET a list endpoint, following X-Next-Page up to ``max_pages``."""
        query = {"per_page": PAGE_SIZE, **(params or {})}
        items: list[dict[str, Any]] = []

        for _ in range(max_pages):
            response = await self._request("GET", endpoint, params=query)
            data = _decode(response, endpoint)
            if not isinstance(data, list):
                logger.warning(f"Expected a list from {endpoint}, got {type(data).__name__}")
                break
            items.extend(item for item in data if isinstance(item, dict))

            next_page = response.headers.get("X-Next-Page", "")
            if not next_page:
                break
            query["page"] = next_page

        return items

    async def _get_list_soft(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Like ``_get_list`` but a non-2xx response yields an empty list."""
        try:
            return await self._get_list(endpoint, params)
        except GitLabAPIError as e:
            logger.warning(f"Ignoring failed fetch of {endpoint}: {e}")
            return []

    # =========================================================================
    # User / Project Operations
    # =========================================================================

    async def verify_credentials(self) -> str:
        """Check the token against GET /user.

        Returns:
            The authenticated username.

        Raises:
            GitLabAuthError: If the call fails or returns no username.
            GitLabTransportError: If GitLab cannot be reached.
        """
        try:
            response = await self._request("GET", "/user")
            data = _decode(response, "/user")
        except GitLabAPIError as e:
            raise GitLabAuthError("Authentication failed. Please check your token and URL.", status_code=e.status_code) from e

        username = data.get("username") if isinstance(data, dict) else None
        if not username:
            raise GitLabAuthError("Authentication failed. Please check your token and URL.", status_code=response.status_code)
        return username

    async def list_projects(
        self,
        search: str | None = None,
        owned: bool = False,
        limit: int = 20,
    ) -> list[GitLabProject]:
        """List projects visible to the user.

        Args:
            search: Optional name filter.
            owned: Only projects the user is a member of.
            limit: Maximum number of projects.
        """
        params: dict[str, Any] = {"simple": "true", "per_page": limit, "order_by": "last_activity_at"}
        if search:
            params["search"] = search
        if owned:
            params["membership"] = "true"
        data = await self._get_list("/projects", params, max_pages=1)
        return [GitLabProject.model_validate(item) for item in data]

    async def find_user_id(self, username: str) -> int | None:
        """Resolve a username to a user ID."""
        data = await self._get_list("/users", {"username": username.lstrip("@")}, max_pages=1)
        if not data:
            return None
        return data[0].get("id")

    # =========================================================================
    # Project Metadata (soft-fail)
    # =========================================================================

    async def list_labels(self, project_id: str) -> list[ProjectLabel]:
        """List project labels with open issue counts."""
        endpoint = f"/projects/{encode_project_id(project_id)}/labels"
        data = await self._get_list_soft(endpoint, {"with_counts": "true"})
        return [GitLabLabel.model_validate(item).to_project_label() for item in data]

    async def list_project_members(self, project_id: str) -> list[ProjectMember]:
        """List all project members, including inherited ones."""
        endpoint = f"/projects/{encode_project_id(project_id)}/members/all"
        data = await self._get_list_soft(endpoint)
        return [ProjectMember.model_validate(item) for item in data]

    async def list_milestones(self, project_id: str) -> list[ProjectMilestone]:
        """List project milestones."""
        endpoint = f"/projects/{encode_project_id(project_id)}/milestones"
        data = await self._get_list_soft(endpoint)
        return [GitLabMilestone.model_validate(item).to_project_milestone() for item in data]

    async def list_open_issues(self, project_id: str) -> list[HotIssue]:
        """List all open issues in the simplified context shape."""
        endpoint = f"/projects/{encode_project_id(project_id)}/issues"
        data = await self._get_list_soft(endpoint, {"state": "opened"})
        return [GitLabIssue.model_validate(item).to_hot_issue() for item in data]

    async def list_unassigned_issues(self, project_id: str) -> list[HotIssue]:
        """List open issues with no assignee at all."""
        endpoint = f"/projects/{encode_project_id(project_id)}/issues"
        data = await self._get_list_soft(endpoint, {"state": "opened"})
        issues = [GitLabIssue.model_validate(item) for item in data]
        return [issue.to_hot_issue() for issue in issues if issue.is_unassigned]

    # =========================================================================
    # Issue Operations
    # =========================================================================

    async def list_issues(
        self,
        project_id: str,
        state: str | None = None,
        labels: str | None = None,
        search: str | None = None,
        assignee_username: str | None = None,
        limit: int = 20,
        order_by: str | None = None,
        sort: str | None = None,
    ) -> list[GitLabIssue]:
        """List issues with server-side filtering (single page).

        Args:
            project_id: Project ID or path.
            state: opened, closed or all.
            labels: Comma-separated label names.
            search: Text to search in title and description.
            assignee_username: Only issues assigned to this user.
            limit: Page size.
            order_by: created_at, updated_at, ...
            sort: asc or desc.
        """
        params: dict[str, Any] = {"per_page": limit}
        if state and state != "all":
            params["state"] = state
        if labels:
            params["labels"] = labels
        if search:
            params["search"] = search
        if assignee_username:
            params["assignee_username"] = assignee_username.lstrip("@")
        if order_by:
            params["order_by"] = order_by
        if sort:
            params["sort"] = sort

        endpoint = f"/projects/{encode_project_id(project_id)}/issues"
        data = await self._get_list(endpoint, params, max_pages=1)
        return [GitLabIssue.model_validate(item) for item in data]

    async def list_issues_by_assignee(self, project_id: str, username: str) -> list[GitLabIssue]:
        """List open issues assigned to a user."""
        endpoint = f"/projects/{encode_project_id(project_id)}/issues"
        params = {"state": "opened", "assignee_username": username.lstrip("@")}
        data = await self._get_list(endpoint, params)
        return [GitLabIssue.model_validate(item) for item in data]

    async def get_issue(self, project_id: str, issue_iid: int) -> GitLabIssue:
        """Get a single issue by its project-scoped IID."""
        endpoint = f"/projects/{encode_project_id(project_id)}/issues/{issue_iid}"
        response = await self._request("GET", endpoint)
        return GitLabIssue.model_validate(_decode(response, endpoint))

    async def create_issue(
        self,
        project_id: str,
        title: str,
        description: str = "",
        labels: list[str] | None = None,
        assignee_ids: list[int] | None = None,
    ) -> GitLabIssue:
        """Create an issue.

        Returns:
            The created GitLabIssue.
        """
        payload: dict[str, Any] = {"title": title, "description": description}
        if labels:
            payload["labels"] = ",".join(labels)
        if assignee_ids:
            payload["assignee_ids"] = assignee_ids

        endpoint = f"/projects/{encode_project_id(project_id)}/issues"
        response = await self._request("POST", endpoint, json=payload)
        return GitLabIssue.model_validate(_decode(response, endpoint))

    # =========================================================================
    # Merge Request Operations
    # =========================================================================

    async def list_merge_requests(
        self,
        project_id: str,
        state: str | None = "opened",
        assignee_username: str | None = None,
        limit: int = 20,
    ) -> list[GitLabMergeRequest]:
        """List merge requests with server-side filtering (single page)."""
        params: dict[str, Any] = {"per_page": limit}
        if state and state != "all":
            params["state"] = state
        if assignee_username:
            params["assignee_username"] = assignee_username.lstrip("@")

        endpoint = f"/projects/{encode_project_id(project_id)}/merge_requests"
        data = await self._get_list(endpoint, params, max_pages=1)
        return [GitLabMergeRequest.model_validate(item) for item in data]

    async def list_mrs_by_assignee(self, project_id: str, username: str) -> list[GitLabMergeRequest]:
        """List open merge requests assigned to a user."""
        endpoint = f"/projects/{encode_project_id(project_id)}/merge_requests"
        params = {"state": "opened", "assignee_username": username.lstrip("@")}
        data = await self._get_list(endpoint, params)
        return [GitLabMergeRequest.model_validate(item) for item in data]

    async def create_merge_request(
        self,
        project_id: str,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str = "",
        remove_source_branch: bool = True,
    ) -> GitLabMergeRequest:
        """Create a merge request."""
        payload = {
            "source_branch": source_branch,
            "target_branch": target_branch,
            "title": title,
            "description": description,
            "remove_source_branch": remove_source_branch,
        }
        endpoint = f"/projects/{encode_project_id(project_id)}/merge_requests"
        response = await self._request("POST", endpoint, json=payload)
        return GitLabMergeRequest.model_validate(_decode(response, endpoint))


def _decode(response: httpx.Response, endpoint: str) -> Any:
    """Parse a JSON body; an HTML login page or proxy error is an API error."""
    try:
        return response.json()
    except ValueError as e:
        logger.error(f"Non-JSON response from {endpoint}: {response.text[:200]}")
        raise GitLabAPIError(f"GitLab returned an invalid JSON response for {endpoint}", status_code=response.status_code) from e


def _retry_after(response: httpx.Response, default: float) -> float:
    """Seconds to wait from a Retry-After header, capped."""
    value = response.headers.get("Retry-After")
    try:
        wait = float(value) if value is not None else default
    except ValueError:
        wait = default
    return min(wait, MAX_RATE_LIMIT_WAIT)
