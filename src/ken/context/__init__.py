"""Per-project context cache.

This package holds the cached snapshot of a project's labels, members,
milestones, open issues and workload, its on-disk store, and the refresh
logic that rebuilds it from GitLab.
"""

from __future__ import annotations

from ken.context.models import (
    HotIssue,
    IssuePatterns,
    MergeRequestSummary,
    ProjectContext,
    ProjectLabel,
    ProjectMilestone,
    ProjectUser,
    UserWorkload,
    WorkloadData,
    WorkloadStatus,
    classify_score,
    load_score,
)
from ken.context.store import (
    ContextError,
    ContextStore,
    is_stale,
    render_for_prompt,
    sanitize_project_id,
    summarize,
)

__all__ = [
    "ContextError",
    "ContextStore",
    "HotIssue",
    "IssuePatterns",
    "MergeRequestSummary",
    "ProjectContext",
    "ProjectLabel",
    "ProjectMilestone",
    "ProjectUser",
    "UserWorkload",
    "WorkloadData",
    "WorkloadStatus",
    "classify_score",
    "is_stale",
    "load_score",
    "render_for_prompt",
    "sanitize_project_id",
    "summarize",
]
