"""Static GitLab query tools."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ken.agent.tools.base import Tool, ToolError
from ken.gitlab.client import GitLabClient, GitLabClientError

if TYPE_CHECKING:
    from ken.config import Config
    from ken.gitlab.models import GitLabIssue, GitLabMergeRequest

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 20
MAX_LIMIT = 50
DESCRIPTION_PREVIEW_CHARS = 100

ClientFactory = Callable[["Config"], GitLabClient]


def _truncate(text: str, limit: int = DESCRIPTION_PREVIEW_CHARS) -> str:
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def simplify_issue(issue: GitLabIssue, include_description: bool = False) -> dict[str, Any]:
    """Reduce an issue to the fields worth spending prompt tokens on."""
    data: dict[str, Any] = {
        "id": issue.iid,
        "title": issue.title,
        "state": issue.state,
        "assignee": issue.primary_assignee,
        "author": issue.author.username or None,
        "created_at": issue.created_at,
        "updated_at": issue.updated_at,
        "labels": issue.labels,
        "milestone": issue.milestone_title,
        "web_url": issue.web_url,
    }
    if include_description and issue.description:
        data["description"] = _truncate(issue.description)
    return data


def simplify_merge_request(mr: GitLabMergeRequest) -> dict[str, Any]:
    """Reduce a merge request to its key fields."""
    return {
        "id": mr.iid,
        "title": mr.title,
        "state": mr.state,
        "assignee": mr.primary_assignee,
        "author": mr.author.username or None,
        "source_branch": mr.source_branch,
        "target_branch": mr.target_branch,
        "merge_status": mr.merge_status,
        "updated_at": mr.updated_at,
        "web_url": mr.web_url,
    }


def _clamp_limit(value: Any) -> int:
    try:
        limit = int(value) if value is not None else DEFAULT_LIMIT
    except (TypeError, ValueError):
        limit = DEFAULT_LIMIT
    return max(1, min(limit, MAX_LIMIT))


class _GitLabTool(Tool):
    """Shared plumbing for tools that query GitLab."""

    def __init__(self, config: Config, client_factory: ClientFactory | None = None) -> None:
        self.config = config
        self._client_factory = client_factory or GitLabClient.from_config

    def _project_id(self, args: dict[str, Any]) -> str:
        project_id = args.get("project_id") or self.config.default_project_id
        if not project_id:
            raise ToolError("No project ID provided and no default set")
        return str(project_id)


class ListIssuesTool(_GitLabTool):
    """List and search GitLab issues."""

    name = "list_gitlab_issues"
    description = (
        "List and search GitLab issues. Can filter by assignee, state, labels, and search terms. "
        "Server-side filtering for efficiency. Limited to 50 issues max."
    )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "assignee_username": {
                    "type": "string",
                    "description": "Filter by assignee username (e.g., 'alice')",
                },
                "state": {
                    "type": "string",
                    "enum": ["opened", "closed", "all"],
                    "description": "Filter by issue state",
                },
                "labels": {
                    "type": "string",
                    "description": "Filter by labels (comma-separated)",
                },
                "search": {
                    "type": "string",
                    "description": "Search within title and description",
                },
                "project_id": {
                    "type": "string",
                    "description": "Project ID (uses default from config if not provided)",
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": MAX_LIMIT,
                    "description": "Maximum number of issues to return (default: 20, max: 50)",
                },
                "include_descriptions": {
                    "type": "boolean",
                    "description": "Include issue descriptions (default: false to save context)",
                },
            },
            "required": [],
        }

    async def call(self, args: dict[str, Any]) -> Any:
        project_id = self._project_id(args)
        include_descriptions = bool(args.get("include_descriptions", False))
        logger.debug(f"Listing issues in {project_id} with filters {args}")

        try:
            async with self._client_factory(self.config) as client:
                issues = await client.list_issues(
                    project_id,
                    state=args.get("state"),
                    labels=args.get("labels"),
                    search=args.get("search"),
                    assignee_username=args.get("assignee_username"),
                    limit=_clamp_limit(args.get("limit")),
                )
        except GitLabClientError as e:
            raise ToolError(f"Failed to fetch issues: {e}") from e

        return {
            "project_id": project_id,
            "count": len(issues),
            "issues": [simplify_issue(issue, include_descriptions) for issue in issues],
        }


class ListMergeRequestsTool(_GitLabTool):
    """List GitLab merge requests."""

    name = "list_gitlab_merge_requests"
    description = "List GitLab merge requests, optionally filtered by state and assignee. Limited to 50 max."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "assignee_username": {
                    "type": "string",
                    "description": "Filter by assignee username",
                },
                "state": {
                    "type": "string",
                    "enum": ["opened", "closed", "merged", "all"],
                    "description": "Filter by merge request state (default: opened)",
                },
                "project_id": {
                    "type": "string",
                    "description": "Project ID (uses default from config if not provided)",
                },
                "limit": {
                    "type": "integer",
                    "minimum": 1,
                    "maximum": MAX_LIMIT,
                    "description": "Maximum number of merge requests to return (default: 20)",
                },
            },
            "required": [],
        }

    async def call(self, args: dict[str, Any]) -> Any:
        project_id = self._project_id(args)

        try:
            async with self._client_factory(self.config) as client:
                mrs = await client.list_merge_requests(
                    project_id,
                    state=args.get("state", "opened"),
                    assignee_username=args.get("assignee_username"),
                    limit=_clamp_limit(args.get("limit")),
                )
        except GitLabClientError as e:
            raise ToolError(f"Failed to fetch merge requests: {e}") from e

        return {
            "project_id": project_id,
            "count": len(mrs),
            "merge_requests": [simplify_merge_request(mr) for mr in mrs],
        }
