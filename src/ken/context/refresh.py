"""Rebuilding project contexts from GitLab."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from typing import TYPE_CHECKING, TypeVar

from ken.context.models import ProjectContext
from ken.context.store import is_stale, stamp
from ken.gitlab.client import GitLabAPIError
from ken.workload import WorkloadAggregator

if TYPE_CHECKING:
    from ken.context.store import ContextStore
    from ken.gitlab.client import GitLabClient

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def _or_empty(what: str, fetch: Awaitable[list[T]]) -> list[T]:
    """Await a bulk fetch, degrading an API error to an empty list. Transport errors propagate."""
    try:
        return await fetch
    except GitLabAPIError as e:
        logger.warning(f"Failed to fetch {what}: {e}")
        return []


async def refresh(client: GitLabClient, project_id: str) -> ProjectContext:
    """Fetch a complete, fresh context for a project.

    Every sub-fetch is independent: one failing leaves its field empty
    without affecting the others. The result is not saved.

    Raises:
        GitLabTransportError: If GitLab cannot be reached.
    """
    labels, members, milestones, hot_issues = await asyncio.gather(
        _or_empty("labels", client.list_labels(project_id)),
        _or_empty("members", client.list_project_members(project_id)),
        _or_empty("milestones", client.list_milestones(project_id)),
        _or_empty("open issues", client.list_open_issues(project_id)),
    )

    context = ProjectContext(
        project_id=project_id,
        labels=labels,
        users=[member.to_project_user() for member in members],
        milestones=milestones,
        hot_issues=hot_issues,
    )

    try:
        report = await WorkloadAggregator(client, project_id).compute(members)
        context.workload_data = report.to_workload_data()
    except GitLabAPIError as e:
        logger.warning(f"Failed to compute workload for {project_id}: {e}")

    stamp(context)
    logger.info(
        f"Refreshed context for {project_id}: {len(labels)} labels, {len(members)} members, "
        f"{len(milestones)} milestones, {len(hot_issues)} open issues"
    )
    return context


async def ensure_fresh(
    store: ContextStore,
    client: GitLabClient,
    project_id: str,
    force: bool = False,
) -> tuple[ProjectContext, bool]:
    """Load a project's context, refreshing and saving it when stale.

    Returns:
        Tuple of (context, refreshed).
    """
    context = store.load(project_id)
    if not force and not is_stale(context):
        return context, False

    context = await refresh(client, project_id)
    store.save(context)
    return context, True
