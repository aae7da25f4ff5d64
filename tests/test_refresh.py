"""Tests for building and refreshing project contexts."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from conftest import GITLAB_URL, PROJECT, FakeGitLab, issue, merge_request, user

from ken.context.models import ProjectLabel
from ken.context.refresh import ensure_fresh, refresh
from ken.context.store import ContextStore, is_stale, stamp
from ken.gitlab.client import GitLabClient, GitLabTransportError


@pytest.fixture
def populated(gitlab: FakeGitLab) -> FakeGitLab:
    """Fake GitLab with a small project."""
    gitlab.labels = [{"name": "bug", "description": "Broken", "open_issues_count": 2}]
    gitlab.milestones = [{"id": 1, "title": "v1.0", "state": "active", "due_date": "2025-06-01"}]
    gitlab.members = [user("amy", access_level=40), user("bob", access_level=30)]
    gitlab.issues = [issue(1, "Crash", ["amy"], ["bug"]), issue(2, "Typo")]
    gitlab.merge_requests = [merge_request(1, "amy")]
    return gitlab


class TestRefresh:
    """Test a full context rebuild."""

    @pytest.mark.asyncio
    async def test_refresh_populates_everything(self, populated: FakeGitLab) -> None:
        """Test labels, members, milestones, issues and workload are filled in."""
        async with populated.client() as client:
            context = await refresh(client, PROJECT)

        assert context.project_id == PROJECT
        assert [label.name for label in context.labels] == ["bug"]
        assert context.labels[0].usage_count == 2
        assert [(u.username, u.role) for u in context.users] == [("amy", "Maintainer"), ("bob", "Developer")]
        assert context.milestones[0].title == "v1.0"
        assert [i.id for i in context.hot_issues] == [1, 2]
        assert set(context.workload_data.user_assignments) == {"amy"}
        assert context.workload_data.user_assignments["amy"].total_score == 3
        assert [i.id for i in context.workload_data.unassigned_issues] == [2]
        assert not is_stale(context)

    @pytest.mark.asyncio
    async def test_partial_failure_leaves_field_empty(self, populated: FakeGitLab) -> None:
        """Test one failing fetch does not affect the others."""
        populated.fail("labels", 403)

        async with populated.client() as client:
            context = await refresh(client, PROJECT)

        assert context.labels == []
        assert len(context.users) == 2
        assert len(context.hot_issues) == 2

    @pytest.mark.asyncio
    async def test_non_json_body_leaves_field_empty(self, populated: FakeGitLab) -> None:
        """Test an HTML page served for one resource degrades only that field."""
        populated.serve_raw("labels", "<html>Sign in</html>")

        async with populated.client() as client:
            context = await refresh(client, PROJECT)

        assert context.labels == []
        assert len(context.users) == 2

    @pytest.mark.asyncio
    async def test_refresh_does_not_persist(self, populated: FakeGitLab, tmp_path: Path) -> None:
        """Test refresh alone writes nothing."""
        store = ContextStore(tmp_path)
        async with populated.client() as client:
            await refresh(client, PROJECT)
        assert not store.context_path(PROJECT).exists()


class TestEnsureFresh:
    """Test load-refresh-save."""

    @pytest.mark.asyncio
    async def test_stale_context_is_refreshed_and_saved(self, populated: FakeGitLab, tmp_path: Path) -> None:
        """Test a missing context triggers a refresh and is saved."""
        store = ContextStore(tmp_path)
        async with populated.client() as client:
            context, refreshed = await ensure_fresh(store, client, PROJECT)

        assert refreshed is True
        assert store.load(PROJECT).labels == context.labels

    @pytest.mark.asyncio
    async def test_fresh_context_is_reused(self, populated: FakeGitLab, tmp_path: Path) -> None:
        """Test a fresh context causes no GitLab requests."""
        store = ContextStore(tmp_path)
        cached = store.load(PROJECT)
        stamp(cached)
        store.save(cached)

        async with populated.client() as client:
            context, refreshed = await ensure_fresh(store, client, PROJECT)

        assert refreshed is False
        assert context.labels == []
        assert populated.requests == []

    @pytest.mark.asyncio
    async def test_force_refresh(self, populated: FakeGitLab, tmp_path: Path) -> None:
        """Test force refreshes a fresh context."""
        store = ContextStore(tmp_path)
        cached = store.load(PROJECT)
        stamp(cached)
        store.save(cached)

        async with populated.client() as client:
            context, refreshed = await ensure_fresh(store, client, PROJECT, force=True)

        assert refreshed is True
        assert len(context.labels) == 1

    @pytest.mark.asyncio
    async def test_unreachable_gitlab_keeps_cached_context(self, tmp_path: Path) -> None:
        """Test a transport failure raises and leaves the stale cache untouched."""
        store = ContextStore(tmp_path)
        cached = store.load(PROJECT)
        cached.labels = [ProjectLabel(name="bug")]
        stamp(cached, now=datetime(2020, 1, 1, tzinfo=UTC))
        store.save(cached)

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        client = GitLabClient(GITLAB_URL, "test-token", transport=httpx.MockTransport(handler))
        with patch("asyncio.sleep", new_callable=AsyncMock):
            async with client:
                with pytest.raises(GitLabTransportError):
                    await ensure_fresh(store, client, PROJECT)

        saved = store.load(PROJECT)
        assert [label.name for label in saved.labels] == ["bug"]
        assert saved.last_updated == cached.last_updated
        assert is_stale(saved)
