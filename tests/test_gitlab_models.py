"""Tests for GitLab API response models."""

from __future__ import annotations

import pytest

from ken.gitlab.models import (
    UNKNOWN_ROLE,
    GitLabIssue,
    GitLabLabel,
    GitLabMergeRequest,
    ProjectMember,
    access_level_to_role,
)


class TestAccessLevels:
    """Test access level to role mapping."""

    @pytest.mark.parametrize(
        ("level", "role"),
        [(10, "Guest"), (20, "Reporter"), (30, "Developer"), (40, "Maintainer"), (50, "Owner")],
    )
    def test_known_levels(self, level: int, role: str) -> None:
        """Test the five standard access levels."""
        assert access_level_to_role(level) == role

    @pytest.mark.parametrize("level", [None, 0, 5, 60])
    def test_unknown_levels(self, level: int | None) -> None:
        """Test anything else maps to Unknown."""
        assert access_level_to_role(level) == UNKNOWN_ROLE

    def test_member_to_project_user(self) -> None:
        """Test member conversion carries the role name."""
        member = ProjectMember.model_validate({"username": "bob", "name": "Bob", "access_level": 30})
        user = member.to_project_user()
        assert user.username == "bob"
        assert user.role == "Developer"
        assert member.display_name == "Bob"


class TestLenientParsing:
    """Test malformed fields fall back to defaults."""

    def test_null_and_wrong_types_default(self) -> None:
        """Test nulls and wrong types do not fail the record."""
        issue = GitLabIssue.model_validate(
            {
                "iid": 7,
                "title": None,
                "labels": None,
                "assignees": "not-a-list",
                "author": None,
                "extra_field": {"ignored": True},
            }
        )
        assert issue.iid == 7
        assert issue.title == ""
        assert issue.labels == []
        assert issue.assignees == []
        assert issue.author.username == ""

    def test_label_objects_are_flattened(self) -> None:
        """Test labels given as objects are reduced to names."""
        issue = GitLabIssue.model_validate({"iid": 1, "labels": [{"name": "bug"}, "urgent"]})
        assert issue.labels == ["bug", "urgent"]

    def test_label_usage_count(self) -> None:
        """Test open issue count becomes the usage count."""
        label = GitLabLabel.model_validate({"name": "bug", "open_issues_count": 4}).to_project_label()
        assert label.usage_count == 4


class TestAssignees:
    """Test assignee resolution."""

    def test_assignees_win_over_assignee(self) -> None:
        """Test the first entry of assignees is preferred."""
        issue = GitLabIssue.model_validate(
            {"iid": 1, "assignee": {"username": "old"}, "assignees": [{"username": "new"}, {"username": "other"}]}
        )
        assert issue.primary_assignee == "new"
        assert issue.is_unassigned is False

    def test_singular_assignee_fallback(self) -> None:
        """Test the singular assignee is used when assignees is empty."""
        issue = GitLabIssue.model_validate({"iid": 1, "assignee": {"username": "solo"}, "assignees": []})
        assert issue.primary_assignee == "solo"

    def test_unassigned(self) -> None:
        """Test an issue without any assignee."""
        issue = GitLabIssue.model_validate({"iid": 1, "assignee": None, "assignees": []})
        assert issue.primary_assignee is None
        assert issue.is_unassigned is True

    def test_to_hot_issue(self) -> None:
        """Test conversion to the cached issue record."""
        issue = GitLabIssue.model_validate(
            {"iid": 3, "title": "Crash", "state": "opened", "labels": ["bug"], "assignees": [{"username": "amy"}]}
        )
        hot = issue.to_hot_issue()
        assert (hot.id, hot.title, hot.assignee, hot.labels) == (3, "Crash", "amy", ["bug"])

    def test_merge_request_summary(self) -> None:
        """Test conversion of a merge request."""
        mr = GitLabMergeRequest.model_validate(
            {"iid": 9, "title": "Fix", "source_branch": "fix", "target_branch": "main", "state": "opened"}
        )
        summary = mr.to_summary()
        assert summary.id == 9
        assert summary.source_branch == "fix"
        assert summary.target_branch == "main"
