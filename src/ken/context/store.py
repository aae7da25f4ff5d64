"""On-disk cache of project contexts."""

from __future__ import annotations

import logging
import re
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ken.config import get_ken_dir
from ken.context.models import ProjectContext

logger = logging.getLogger(__name__)

STALE_AFTER = timedelta(hours=1)

MAX_PROMPT_LABELS = 20
MAX_PROMPT_USERS = 15
MAX_PROMPT_ISSUES = 10

_UNSAFE_CHARS = re.compile(r'[/\\:*?"<>|]')


class ContextError(Exception):
    """A cached context file exists but cannot be read."""


def sanitize_project_id(project_id: str) -> str:
    """Replace path-unsafe characters with underscores."""
    return _UNSAFE_CHARS.sub("_", project_id)


class ContextStore:
    """Loads and saves ``ProjectContext`` documents, one JSON file per project."""

    def __init__(self, base_dir: Path | None = None) -> None:
        """Initialize the store.

        Args:
            base_dir: Directory holding the context files (default: <ken home>/contexts).
        """
        self.base_dir = base_dir or get_ken_dir() / "contexts"

    def context_path(self, project_id: str) -> Path:
        """Get the file path for a project's context."""
        return self.base_dir / f"{sanitize_project_id(project_id)}.json"

    def load(self, project_id: str) -> ProjectContext:
        """Load a project's context, or an empty one if none is cached.

        Raises:
            ContextError: If the file exists but cannot be read or parsed.
        """
        path = self.context_path(project_id)
        if not path.exists():
            return ProjectContext(project_id=project_id)

        try:
            return ProjectContext.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise ContextError(f"Failed to read context for {project_id} ({path}): {e}") from e

    def save(self, context: ProjectContext) -> Path:
        """Write the whole context document, replacing any previous one."""
        path = self.context_path(context.project_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(context.model_dump_json(indent=2), encoding="utf-8")
        logger.debug(f"Saved context for {context.project_id} to {path}")
        return path


def utc_now() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(UTC)


def stamp(context: ProjectContext, now: datetime | None = None) -> None:
    """Set ``last_updated`` to now (ISO-8601, UTC)."""
    context.last_updated = (now or utc_now()).isoformat()


def is_stale(context: ProjectContext, now: datetime | None = None) -> bool:
    """Check whether a context needs refreshing.

    A context is stale when it has no timestamp, an unparsable one, or one
    more than an hour old.
    """
    if not context.last_updated:
        return True

    try:
        updated = datetime.fromisoformat(context.last_updated.replace("Z", "+00:00"))
    except ValueError:
        return True

    if updated.tzinfo is None:
        updated = updated.replace(tzinfo=UTC)

    return (now or utc_now()) - updated > STALE_AFTER


def render_for_prompt(context: ProjectContext) -> str:
    """Render a context as a text block for LLM prompts.

    Sections appear in a fixed order and are left out entirely when empty.
    """
    parts = [f"## Project Context for {context.project_id}\n\n"]

    if context.labels:
        parts.append("**Available Labels:**\n")
        for label in context.labels[:MAX_PROMPT_LABELS]:
            usage = f" ({label.usage_count})" if label.usage_count is not None else ""
            parts.append(f"- `{label.name}`: {label.description or 'No description'}{usage}\n")
        parts.append("\n")

    if context.users:
        parts.append("**Project Members:**\n")
        for user in context.users[:MAX_PROMPT_USERS]:
            role = user.role or "Member"
            name = user.name or user.username
            parts.append(f"- `{user.username}` ({role}): {name}\n")
        parts.append("\n")

    if context.teams:
        parts.append("**Known Teams:**\n")
        for team_name, members in context.teams.items():
            parts.append(f"- `{team_name}`: {', '.join(members)}\n")
        parts.append("\n")

    if context.hot_issues:
        parts.append("**Recent Activity:**\n")
        for issue in context.hot_issues[:MAX_PROMPT_ISSUES]:
            assignee = issue.assignee or "Unassigned"
            labels = ", ".join(issue.labels) if issue.labels else "No labels"
            parts.append(f"- Issue #{issue.id}: {issue.title} (Assigned: {assignee}, Labels: {labels})\n")
        parts.append("\n")

    patterns = context.issue_patterns
    if patterns.most_used_labels:
        parts.append("**Common Patterns:**\n")
        parts.append(f"- Most used labels: {', '.join(patterns.most_used_labels)}\n")
        parts.append(f"- Active assignees: {', '.join(patterns.active_assignees)}\n")
        if patterns.priority_levels:
            parts.append(f"- Priority levels: {', '.join(patterns.priority_levels)}\n")
        parts.append("\n")

    if context.last_updated:
        parts.append(f"*Context last updated: {context.last_updated}*\n")

    return "".join(parts)


def summarize(context: ProjectContext) -> dict[str, Any]:
    """Counts and samples describing a context."""
    workload = context.workload_data
    return {
        "project_id": context.project_id,
        "labels_count": len(context.labels),
        "users_count": len(context.users),
        "milestones_count": len(context.milestones),
        "hot_issues_count": len(context.hot_issues),
        "active_members": len(workload.user_assignments),
        "unassigned_issues": len(workload.unassigned_issues),
        "total_open_issues": workload.total_open_issues,
        "top_labels": [label.name for label in context.labels[:10]],
        "sample_users": [user.username for user in context.users[:5]],
        "last_updated": context.last_updated,
        "stale": is_stale(context),
    }
