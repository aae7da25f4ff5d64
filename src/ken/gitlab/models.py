"""Typed records for GitLab REST API responses.

GitLab omits or nulls fields depending on version and permissions, so every
record here is built on ``LenientModel``: a missing, null or wrongly-typed
field falls back to its default once, at parse time, instead of failing the
whole response.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator

from ken.context.models import HotIssue, MergeRequestSummary, ProjectLabel, ProjectMilestone, ProjectUser

logger = logging.getLogger(__name__)

ACCESS_LEVEL_ROLES: dict[int, str] = {
    10: "Guest",
    20: "Reporter",
    30: "Developer",
    40: "Maintainer",
    50: "Owner",
}
UNKNOWN_ROLE = "Unknown"


def access_level_to_role(level: int | None) -> str:
    """Map a numeric access level to its role name."""
    if level is None:
        return UNKNOWN_ROLE
    return ACCESS_LEVEL_ROLES.get(level, UNKNOWN_ROLE)


class LenientModel(BaseModel):
    """Base model that defaults any field that fails validation."""

    model_config = ConfigDict(extra="ignore")

    @field_validator("*", mode="wrap")
    @classmethod
    def _default_on_error(cls, value: Any, handler: Any, info: ValidationInfo) -> Any:
        try:
            return handler(value)
        except ValidationError:
            field = cls.model_fields[info.field_name]
            logger.debug(f"{cls.__name__}.{info.field_name}: unusable value {value!r}, using default")
            return field.get_default(call_default_factory=True)


def _label_names(value: Any) -> Any:
    """Accept label names or label objects (``with_labels_details``)."""
    if isinstance(value, list):
        return [item.get("name", "") if isinstance(item, dict) else item for item in value]
    return value


class GitLabUser(LenientModel):
    """A GitLab user as embedded in issues and merge requests."""

    id: int = 0
    username: str = ""
    name: str = ""
    email: str | None = None
    state: str = ""
    avatar_url: str | None = None


class ProjectMember(GitLabUser):
    """A project member with access level."""

    access_level: int = 0

    @property
    def role_name(self) -> str:
        """Role derived from the access level."""
        return access_level_to_role(self.access_level)

    @property
    def display_name(self) -> str:
        """Full name, falling back to username."""
        return self.name or self.username

    def to_project_user(self) -> ProjectUser:
        """Convert to the context cache record."""
        return ProjectUser(
            username=self.username,
            name=self.name or None,
            email=self.email,
            role=self.role_name,
        )


class GitLabLabel(LenientModel):
    """A project label."""

    name: str = ""
    color: str | None = None
    description: str | None = None
    open_issues_count: int | None = None

    def to_project_label(self) -> ProjectLabel:
        """Convert to the context cache record."""
        return ProjectLabel(
            name=self.name,
            color=self.color,
            description=self.description,
            usage_count=self.open_issues_count,
        )


class GitLabMilestone(LenientModel):
    """A project milestone."""

    id: int = 0
    title: str = ""
    state: str = ""
    description: str | None = None
    due_date: str | None = None

    def to_project_milestone(self) -> ProjectMilestone:
        """Convert to the context cache record."""
        return ProjectMilestone(
            title=self.title,
            state=self.state,
            description=self.description,
            due_date=self.due_date,
        )


class _AssignableItem(LenientModel):
    """Fields shared by issues and merge requests."""

    id: int = 0
    iid: int = 0
    title: str = ""
    description: str | None = None
    state: str = ""
    created_at: str = ""
    updated_at: str = ""
    assignee: GitLabUser | None = None
    assignees: list[GitLabUser] = Field(default_factory=list)
    author: GitLabUser = Field(default_factory=GitLabUser)
    labels: list[str] = Field(default_factory=list)
    web_url: str = ""

    @field_validator("labels", mode="before")
    @classmethod
    def _normalize_labels(cls, value: Any) -> Any:
        return _label_names(value)

    @property
    def primary_assignee(self) -> str | None:
        """First of ``assignees``, else the singular ``assignee``."""
        if self.assignees and self.assignees[0].username:
            return self.assignees[0].username
        if self.assignee is not None and self.assignee.username:
            return self.assignee.username
        return None

    @property
    def is_unassigned(self) -> bool:
        """True when neither ``assignee`` nor ``assignees`` is set."""
        return self.assignee is None and not self.assignees


class GitLabIssue(_AssignableItem):
    """A GitLab issue."""

    milestone: dict[str, Any] | None = None

    @property
    def milestone_title(self) -> str | None:
        """Title of the linked milestone, if any."""
        if self.milestone:
            return self.milestone.get("title")
        return None

    def to_hot_issue(self) -> HotIssue:
        """Convert to the simplified context cache record."""
        return HotIssue(
            id=self.iid,
            title=self.title,
            assignee=self.primary_assignee,
            labels=list(self.labels),
            state=self.state or "opened",
        )


class GitLabMergeRequest(_AssignableItem):
    """A GitLab merge request."""

    source_branch: str = ""
    target_branch: str = ""
    merge_status: str = ""

    def to_summary(self) -> MergeRequestSummary:
        """Convert to the simplified context cache record."""
        return MergeRequestSummary(
            id=self.iid,
            title=self.title,
            source_branch=self.source_branch,
            target_branch=self.target_branch,
            state=self.state or "opened",
        )


class GitLabProject(LenientModel):
    """A GitLab project."""

    id: int = 0
    name: str = ""
    path_with_namespace: str = ""
    web_url: str = ""
    description: str | None = None
