"""Shared fixtures: an in-memory GitLab behind httpx.MockTransport."""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest
from rich.console import Console

from ken.config import Config
from ken.gitlab.client import GitLabClient

GITLAB_URL = "https://gitlab.example.com"
PROJECT = "group/repo"

_PROJECT_ROUTE = re.compile(r"^/api/v4/projects/(?P<pid>[^/]+)/(?P<resource>[a-z_/]+?)(?:/(?P<iid>\d+))?$")


def user(username: str, **extra: Any) -> dict[str, Any]:
    """Minimal GitLab user payload."""
    return {"id": abs(hash(username)) % 10_000, "username": username, "name": username.title(), **extra}


def issue(iid: int, title: str = "", assignees: list[str] | None = None, labels: list[str] | None = None) -> dict[str, Any]:
    """Minimal GitLab issue payload."""
    names = assignees or []
    return {
        "id": 1000 + iid,
        "iid": iid,
        "title": title or f"Issue {iid}",
        "state": "opened",
        "assignee": user(names[0]) if names else None,
        "assignees": [user(name) for name in names],
        "author": user("reporter"),
        "labels": labels or [],
        "web_url": f"{GITLAB_URL}/{PROJECT}/-/issues/{iid}",
    }


def merge_request(iid: int, assignee: str | None = None) -> dict[str, Any]:
    """Minimal GitLab merge request payload."""
    return {
        "id": 2000 + iid,
        "iid": iid,
        "title": f"MR {iid}",
        "state": "opened",
        "assignee": user(assignee) if assignee else None,
        "assignees": [user(assignee)] if assignee else [],
        "author": user("reporter"),
        "source_branch": f"feature-{iid}",
        "target_branch": "main",
        "web_url": f"{GITLAB_URL}/{PROJECT}/-/merge_requests/{iid}",
    }


class FakeGitLab:
    """Serves a tiny subset of the GitLab v4 API from in-memory data."""

    def __init__(self) -> None:
        self.username = "alice"
        self.projects: list[dict[str, Any]] = []
        self.members: list[dict[str, Any]] = []
        self.labels: list[dict[str, Any]] = []
        self.milestones: list[dict[str, Any]] = []
        self.issues: list[dict[str, Any]] = []
        self.merge_requests: list[dict[str, Any]] = []
        self.failures: dict[str, int] = {}
        self.raw_bodies: dict[str, str] = {}
        self.requests: list[httpx.Request] = []
        self.created: list[dict[str, Any]] = []

    def fail(self, resource: str, status: int = 500) -> None:
        """Make every request to a project resource return ``status``."""
        self.failures[resource] = status

    def serve_raw(self, resource: str, body: str) -> None:
        """Answer a project resource with 200 and a non-JSON body."""
        self.raw_bodies[resource] = body

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.raw_path.split(b"?")[0].decode()
        params = request.url.params

        if path == "/api/v4/user":
            return httpx.Response(200, json={"id": 1, "username": self.username})
        if path == "/api/v4/projects":
            return httpx.Response(200, json=self.projects)

        match = _PROJECT_ROUTE.match(path)
        if not match:
            return httpx.Response(404, json={"message": "404 Not Found"})

        resource = match.group("resource")
        if resource in self.raw_bodies:
            return httpx.Response(200, text=self.raw_bodies[resource], headers={"Content-Type": "text/html"})
        if resource in self.failures:
            return httpx.Response(self.failures[resource], json={"message": "boom"})

        if resource == "members/all":
            return httpx.Response(200, json=self.members)
        if resource == "labels":
            return httpx.Response(200, json=self.labels)
        if resource == "milestones":
            return httpx.Response(200, json=self.milestones)
        if resource == "issues" and match.group("iid"):
            iid = int(match.group("iid"))
            found = [item for item in self.issues if item["iid"] == iid]
            if not found:
                return httpx.Response(404, json={"message": "404 Issue Not Found"})
            return httpx.Response(200, json=found[0])
        if resource == "issues" and request.method == "POST":
            payload = json.loads(request.content)
            created = issue(len(self.issues) + 1, payload["title"], labels=payload.get("labels", "").split(","))
            self.created.append(payload)
            return httpx.Response(201, json=created)
        if resource == "issues":
            return httpx.Response(200, json=self._filter(self.issues, params))
        if resource == "merge_requests":
            return httpx.Response(200, json=self._filter(self.merge_requests, params))
        return httpx.Response(404, json={"message": "404 Not Found"})

    @staticmethod
    def _filter(items: list[dict[str, Any]], params: httpx.QueryParams) -> list[dict[str, Any]]:
        username = params.get("assignee_username")
        if not username:
            return items
        return [item for item in items if any(a["username"] == username for a in item.get("assignees", []))]

    def client(self, token: str = "test-token") -> GitLabClient:
        return GitLabClient(GITLAB_URL, token, transport=httpx.MockTransport(self.handler))


@pytest.fixture
def gitlab() -> FakeGitLab:
    """Empty fake GitLab instance."""
    return FakeGitLab()


@pytest.fixture
def client_factory(gitlab: FakeGitLab) -> Callable[[Config], GitLabClient]:
    """Client factory wired to the fake GitLab."""
    return lambda config: gitlab.client(config.api_token)


@pytest.fixture
def ken_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point KEN_HOME at a temporary directory."""
    home = tmp_path / "ken-home"
    monkeypatch.setenv("KEN_HOME", str(home))
    return home


@pytest.fixture
def config() -> Config:
    """Config for the fake GitLab with a default project."""
    return Config(gitlab_url=GITLAB_URL, api_token="test-token", default_project_id=PROJECT)


@pytest.fixture
def mock_console() -> Console:
    """Quiet console for testing."""
    return Console(force_terminal=False, quiet=True)


@pytest.fixture
def recording_console() -> Console:
    """Console whose output can be read back with ``export_text()``."""
    return Console(force_terminal=False, record=True, width=200)
