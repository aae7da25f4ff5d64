"""Tools exposing the project context cache and workload data."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from ken.agent.tools.base import ToolError
from ken.agent.tools.gitlab import _GitLabTool
from ken.context.refresh import ensure_fresh
from ken.context.store import ContextError, ContextStore, summarize
from ken.gitlab.client import GitLabClientError
from ken.workload import WorkloadAggregator

if TYPE_CHECKING:
    from ken.agent.tools.gitlab import ClientFactory
    from ken.config import Config


class RefreshContextTool(_GitLabTool):
    """Refresh the cached project context."""

    name = "refresh_project_context"
    description = (
        "Refresh project context by fetching current labels, users, milestones, open issues and workload "
        "from GitLab. Use this when you need up-to-date project information to make intelligent query decisions."
    )

    def __init__(
        self,
        config: Config,
        store: ContextStore | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        super().__init__(config, client_factory)
        self.store = store or ContextStore()

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "force_refresh": {
                    "type": "boolean",
                    "description": "Force refresh even if context is fresh (default: false)",
                },
                "project_id": {
                    "type": "string",
                    "description": "Project ID (uses default from config if not provided)",
                },
            },
            "required": [],
        }

    async def call(self, args: dict[str, Any]) -> Any:
        project_id = self._project_id(args)
        force = bool(args.get("force_refresh", False))

        try:
            async with self._client_factory(self.config) as client:
                context, refreshed = await ensure_fresh(self.store, client, project_id, force=force)
        except (GitLabClientError, ContextError) as e:
            raise ToolError(f"Failed to refresh context: {e}") from e

        message = "Project context refreshed successfully" if refreshed else "Context is fresh, no refresh needed"
        return {"success": True, "message": message, **summarize(context)}


class TeamWorkloadTool(_GitLabTool):
    """Report per-member workload for the project."""

    name = "get_team_workload"
    description = (
        "Get the workload of project members: open issues and merge requests per person, a load score "
        "(issues + 2 x MRs), a High/Medium/Low status, and unassigned issues. Use this to suggest assignees."
    )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "username": {
                    "type": "string",
                    "description": "Only report this user (optional)",
                },
                "project_id": {
                    "type": "string",
                    "description": "Project ID (uses default from config if not provided)",
                },
            },
            "required": [],
        }

    async def call(self, args: dict[str, Any]) -> Any:
        project_id = self._project_id(args)
        username = args.get("username")

        try:
            async with self._client_factory(self.config) as client:
                aggregator = WorkloadAggregator(client, project_id)
                if username:
                    workload = await aggregator.member_workload(str(username).lstrip("@"))
                    return {**workload.model_dump(), "status": workload.status.value}
                report = await aggregator.compute()
        except GitLabClientError as e:
            raise ToolError(f"Failed to compute workload: {e}") from e

        return {
            "project_id": project_id,
            "members": [
                {
                    "username": entry.workload.username,
                    "name": entry.member.display_name,
                    "role": entry.member.role_name,
                    "issue_count": entry.workload.issue_count,
                    "mr_count": entry.workload.mr_count,
                    "total_score": entry.workload.total_score,
                    "status": entry.status.value,
                }
                for entry in report.entries
            ],
            "status_counts": {status.value: count for status, count in report.status_counts.items()},
            "active_members": report.active_members,
            "unassigned_count": len(report.unassigned_issues),
            "unassigned_sample": [issue.model_dump() for issue in report.unassigned_issues[:5]],
        }
