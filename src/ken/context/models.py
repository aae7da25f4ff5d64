"""Project context data models.

These records make up the per-project snapshot that is cached on disk and
rendered into LLM prompts.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class WorkloadStatus(str, Enum):
    """Load classification for an active project member."""

    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


# =============================================================================
# Project Metadata
# =============================================================================


class ProjectLabel(BaseModel):
    """A label defined on the project."""

    name: str
    color: str | None = None
    description: str | None = None
    usage_count: int | None = None


class ProjectUser(BaseModel):
    """A project member as seen by the context cache."""

    username: str
    name: str | None = None
    email: str | None = None
    role: str | None = None


class ProjectMilestone(BaseModel):
    """A project milestone."""

    title: str
    state: str = ""
    description: str | None = None
    due_date: str | None = None


class HotIssue(BaseModel):
    """Simplified issue record kept in the context cache."""

    id: int
    title: str
    assignee: str | None = None
    labels: list[str] = Field(default_factory=list)
    state: str = "opened"
    updated_recently: bool = False
    priority: str | None = None


class MergeRequestSummary(BaseModel):
    """Simplified merge request record."""

    id: int
    title: str
    source_branch: str = ""
    target_branch: str = ""
    state: str = "opened"


class IssuePatterns(BaseModel):
    """Reserved for label/assignee/keyword pattern mining. Never populated."""

    most_used_labels: list[str] = Field(default_factory=list)
    active_assignees: list[str] = Field(default_factory=list)
    common_keywords: list[str] = Field(default_factory=list)
    priority_levels: list[str] = Field(default_factory=list)


# =============================================================================
# Workload
# =============================================================================


class UserWorkload(BaseModel):
    """Open work assigned to a single user."""

    username: str
    open_issues: list[HotIssue] = Field(default_factory=list)
    open_mrs: list[MergeRequestSummary] = Field(default_factory=list)
    issue_count: int = 0
    mr_count: int = 0
    total_score: int = 0

    @classmethod
    def from_work(
        cls,
        username: str,
        issues: list[HotIssue],
        mrs: list[MergeRequestSummary],
    ) -> UserWorkload:
        """Build a workload record, computing counts and the load score."""
        issue_count = len(issues)
        mr_count = len(mrs)
        return cls(
            username=username,
            open_issues=issues,
            open_mrs=mrs,
            issue_count=issue_count,
            mr_count=mr_count,
            total_score=load_score(issue_count, mr_count),
        )

    @property
    def status(self) -> WorkloadStatus:
        """Load classification for this user."""
        return classify_score(self.total_score)


class WorkloadData(BaseModel):
    """Workload snapshot stored in the project context.

    Only users with assigned work appear in ``user_assignments``.
    """

    user_assignments: dict[str, UserWorkload] = Field(default_factory=dict)
    unassigned_issues: list[HotIssue] = Field(default_factory=list)
    total_open_issues: int = 0


class ProjectContext(BaseModel):
    """Cached snapshot of a project's metadata."""

    project_id: str
    labels: list[ProjectLabel] = Field(default_factory=list)
    users: list[ProjectUser] = Field(default_factory=list)
    milestones: list[ProjectMilestone] = Field(default_factory=list)
    teams: dict[str, list[str]] = Field(default_factory=dict)  # reserved, never populated
    hot_issues: list[HotIssue] = Field(default_factory=list)
    issue_patterns: IssuePatterns = Field(default_factory=IssuePatterns)
    workload_data: WorkloadData = Field(default_factory=WorkloadData)
    last_updated: str | None = None


def load_score(issue_count: int, mr_count: int) -> int:
    """Load score: open issues plus twice the open merge requests."""
    return issue_count + 2 * mr_count


def classify_score(score: int) -> WorkloadStatus:
    """Classify a load score: High above 8, Medium from 4 to 8, else Low."""
    if score > 8:
        return WorkloadStatus.HIGH
    if score >= 4:
        return WorkloadStatus.MEDIUM
    return WorkloadStatus.LOW
