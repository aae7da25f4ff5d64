"""Tests for the project context cache and prompt rendering."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from ken.context.models import (
    HotIssue,
    IssuePatterns,
    ProjectContext,
    ProjectLabel,
    ProjectUser,
)
from ken.context.store import (
    ContextError,
    ContextStore,
    is_stale,
    render_for_prompt,
    sanitize_project_id,
    stamp,
    summarize,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def store(tmp_path: Path) -> ContextStore:
    """Context store in a temporary directory."""
    return ContextStore(tmp_path / "contexts")


class TestSanitize:
    """Test file name sanitisation."""

    def test_unsafe_characters_replaced(self) -> None:
        """Test every path-unsafe character becomes an underscore."""
        assert sanitize_project_id('a/b\\c:d*e?f"g<h>i|j') == "a_b_c_d_e_f_g_h_i_j"

    def test_same_id_same_path(self, store: ContextStore) -> None:
        """Test the mapping is stable."""
        assert store.context_path("group/repo") == store.context_path("group/repo")
        assert store.context_path("group/repo").name == "group_repo.json"

    def test_default_directory(self, ken_home: Path) -> None:
        """Test contexts live under the ken home by default."""
        assert ContextStore().context_path("42") == ken_home / "contexts" / "42.json"


class TestLoadSave:
    """Test persistence."""

    def test_missing_file_gives_empty_context(self, store: ContextStore) -> None:
        """Test loading an unknown project is not an error."""
        context = store.load("group/repo")
        assert context.project_id == "group/repo"
        assert context.labels == []
        assert context.last_updated is None

    def test_save_creates_directories(self, store: ContextStore) -> None:
        """Test save creates the contexts directory."""
        path = store.save(ProjectContext(project_id="group/repo"))
        assert path.exists()
        assert path.parent == store.base_dir

    def test_save_after_load_is_idempotent(self, store: ContextStore) -> None:
        """Test saving a loaded context reproduces the same document."""
        context = ProjectContext(
            project_id="group/repo",
            labels=[ProjectLabel(name="bug", description="Broken", usage_count=3)],
            users=[ProjectUser(username="amy", role="Developer")],
            hot_issues=[HotIssue(id=1, title="Crash", labels=["bug"])],
        )
        stamp(context, NOW)
        path = store.save(context)
        first = path.read_text()

        store.save(store.load("group/repo"))
        assert path.read_text() == first

    def test_corrupt_file_raises(self, store: ContextStore) -> None:
        """Test malformed JSON raises ContextError."""
        path = store.context_path("broken")
        path.parent.mkdir(parents=True)
        path.write_text("{not json")
        with pytest.raises(ContextError, match="broken"):
            store.load("broken")


class TestStaleness:
    """Test the one-hour freshness window."""

    def test_no_timestamp_is_stale(self) -> None:
        """Test a context never refreshed is stale."""
        assert is_stale(ProjectContext(project_id="p"), NOW) is True

    def test_unparsable_timestamp_is_stale(self) -> None:
        """Test garbage timestamps are treated as stale."""
        assert is_stale(ProjectContext(project_id="p", last_updated="yesterday"), NOW) is True

    def test_recent_is_fresh(self) -> None:
        """Test a context updated 30 minutes ago is fresh."""
        context = ProjectContext(project_id="p")
        stamp(context, NOW - timedelta(minutes=30))
        assert is_stale(context, NOW) is False

    def test_exactly_one_hour_is_fresh(self) -> None:
        """Test the boundary: 60 minutes is still fresh."""
        context = ProjectContext(project_id="p")
        stamp(context, NOW - timedelta(minutes=60))
        assert is_stale(context, NOW) is False

    def test_older_than_one_hour_is_stale(self) -> None:
        """Test 61 minutes is stale."""
        context = ProjectContext(project_id="p")
        stamp(context, NOW - timedelta(minutes=61))
        assert is_stale(context, NOW) is True

    def test_naive_and_zulu_timestamps(self) -> None:
        """Test naive and Z-suffixed timestamps are read as UTC."""
        assert is_stale(ProjectContext(project_id="p", last_updated="2025-03-01T11:30:00"), NOW) is False
        assert is_stale(ProjectContext(project_id="p", last_updated="2025-03-01T11:30:00Z"), NOW) is False


class TestRenderForPrompt:
    """Test the prompt text block."""

    def test_empty_context_has_only_heading(self) -> None:
        """Test every section is omitted when empty."""
        text = render_for_prompt(ProjectContext(project_id="group/repo"))
        assert text.startswith("## Project Context for group/repo")
        for section in ("Available Labels", "Project Members", "Known Teams", "Recent Activity", "Common Patterns"):
            assert section not in text
        assert "Context last updated" not in text

    def test_sections_in_order(self) -> None:
        """Test populated sections appear in a fixed order."""
        context = ProjectContext(
            project_id="p",
            labels=[ProjectLabel(name="bug", description="Something broken", usage_count=2)],
            users=[ProjectUser(username="amy", name="Amy", role="Maintainer")],
            teams={"backend": ["amy"]},
            hot_issues=[HotIssue(id=4, title="Crash", assignee="amy", labels=["bug", "p1"])],
            issue_patterns=IssuePatterns(most_used_labels=["bug"], active_assignees=["amy"]),
            last_updated="2025-03-01T12:00:00+00:00",
        )
        text = render_for_prompt(context)

        positions = [
            text.index(marker)
            for marker in (
                "Available Labels",
                "Project Members",
                "Known Teams",
                "Recent Activity",
                "Common Patterns",
                "*Context last updated: 2025-03-01T12:00:00+00:00*",
            )
        ]
        assert positions == sorted(positions)
        assert "- `bug`: Something broken (2)" in text
        assert "- `amy` (Maintainer): Amy" in text
        assert "- Issue #4: Crash (Assigned: amy, Labels: bug, p1)" in text

    def test_fallbacks(self) -> None:
        """Test missing description, role, assignee and labels."""
        context = ProjectContext(
            project_id="p",
            labels=[ProjectLabel(name="triage")],
            users=[ProjectUser(username="bob")],
            hot_issues=[HotIssue(id=1, title="Untriaged")],
        )
        text = render_for_prompt(context)
        assert "- `triage`: No description" in text
        assert "- `bob` (Member): bob" in text
        assert "(Assigned: Unassigned, Labels: No labels)" in text

    def test_list_limits(self) -> None:
        """Test at most 20 labels, 15 members and 10 issues are rendered."""
        context = ProjectContext(
            project_id="p",
            labels=[ProjectLabel(name=f"label-{i}") for i in range(30)],
            users=[ProjectUser(username=f"user-{i}") for i in range(30)],
            hot_issues=[HotIssue(id=i, title=f"Issue {i}") for i in range(30)],
        )
        text = render_for_prompt(context)
        assert text.count("- `label-") == 20
        assert text.count("- `user-") == 15
        assert text.count("- Issue #") == 10


class TestSummarize:
    """Test the summary used by /context and the refresh tool."""

    def test_counts_and_samples(self) -> None:
        """Test counts, top labels (10) and sample users (5)."""
        context = ProjectContext(
            project_id="p",
            labels=[ProjectLabel(name=f"l{i}") for i in range(12)],
            users=[ProjectUser(username=f"u{i}") for i in range(7)],
        )
        info = summarize(context)
        assert info["labels_count"] == 12
        assert info["users_count"] == 7
        assert len(info["top_labels"]) == 10
        assert info["sample_users"] == ["u0", "u1", "u2", "u3", "u4"]
        assert info["stale"] is True
