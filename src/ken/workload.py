"""Team workload aggregation.

For every project member this module fetches open issues and merge requests,
computes a load score (issues + 2 x MRs), drops members with nothing
assigned, ranks the rest and classifies them as High / Medium / Low load.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from rich.table import Table

from ken.context.models import (
    HotIssue,
    MergeRequestSummary,
    UserWorkload,
    WorkloadData,
    WorkloadStatus,
)
from ken.gitlab.client import GitLabClientError

if TYPE_CHECKING:
    from rich.console import Console

    from ken.gitlab.client import GitLabClient
    from ken.gitlab.models import ProjectMember

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 5
MAX_UNASSIGNED_SAMPLES = 5

STATUS_STYLES = {
    WorkloadStatus.HIGH: "red",
    WorkloadStatus.MEDIUM: "yellow",
    WorkloadStatus.LOW: "green",
}


@dataclass
class WorkloadEntry:
    """A ranked row of the workload table."""

    member: ProjectMember
    workload: UserWorkload

    @property
    def status(self) -> WorkloadStatus:
        """Load classification."""
        return self.workload.status


@dataclass
class WorkloadReport:
    """Result of a workload aggregation run."""

    project_id: str
    entries: list[WorkloadEntry] = field(default_factory=list)
    unassigned_issues: list[HotIssue] = field(default_factory=list)

    @property
    def active_members(self) -> int:
        """Members with at least one open issue or MR."""
        return len(self.entries)

    @property
    def status_counts(self) -> dict[WorkloadStatus, int]:
        """Number of members per load classification."""
        counts = Counter(entry.status for entry in self.entries)
        return {status: counts.get(status, 0) for status in WorkloadStatus}

    @property
    def total_open_issues(self) -> int:
        """Assigned issues across active members plus unassigned issues."""
        return sum(entry.workload.issue_count for entry in self.entries) + len(self.unassigned_issues)

    def to_workload_data(self) -> WorkloadData:
        """Convert to the snapshot stored in the project context."""
        return WorkloadData(
            user_assignments={entry.workload.username: entry.workload for entry in self.entries},
            unassigned_issues=list(self.unassigned_issues),
            total_open_issues=self.total_open_issues,
        )

    def least_loaded(self) -> WorkloadEntry | None:
        """The active member with the lowest score, if any."""
        if not self.entries:
            return None
        return self.entries[-1]


class WorkloadAggregator:
    """Computes ranked per-member workload for a project."""

    def __init__(
        self,
        client: GitLabClient,
        project_id: str,
        concurrency: int = DEFAULT_CONCURRENCY,
    ) -> None:
        """Initialize the aggregator.

        Args:
            client: An open GitLabClient.
            project_id: Project ID or path.
            concurrency: Maximum members fetched at the same time.
        """
        self.client = client
        self.project_id = project_id
        self._semaphore = asyncio.Semaphore(concurrency)

    async def _fetch_issues(self, username: str) -> list[HotIssue]:
        try:
            issues = await self.client.list_issues_by_assignee(self.project_id, username)
        except GitLabClientError as e:
            logger.warning(f"Could not fetch issues for {username}: {e}")
            return []
        return [issue.to_hot_issue() for issue in issues]

    async def _fetch_mrs(self, username: str) -> list[MergeRequestSummary]:
        try:
            mrs = await self.client.list_mrs_by_assignee(self.project_id, username)
        except GitLabClientError as e:
            logger.warning(f"Could not fetch merge requests for {username}: {e}")
            return []
        return [mr.to_summary() for mr in mrs]

    async def member_workload(self, username: str) -> UserWorkload:
        """Fetch and score one user's open work. Failed fetches count as zero."""
        async with self._semaphore:
            issues, mrs = await asyncio.gather(
                self._fetch_issues(username),
                self._fetch_mrs(username),
            )
        return UserWorkload.from_work(username, issues, mrs)

    async def compute(self, members: list[ProjectMember] | None = None) -> WorkloadReport:
        """Run the aggregation.

        Args:
            members: Member list to use; fetched from GitLab when None.

        Returns:
            WorkloadReport with active members sorted by score, highest first.
        """
        if members is None:
            members = await self.client.list_project_members(self.project_id)

        members = [member for member in members if member.username]
        logger.debug(f"Computing workload for {len(members)} members of {self.project_id}")

        workloads = await asyncio.gather(*(self.member_workload(member.username) for member in members))

        entries = [
            WorkloadEntry(member=member, workload=workload)
            for member, workload in zip(members, workloads, strict=True)
            if workload.total_score > 0
        ]
        # sorted() is stable: member-list order breaks ties
        entries = sorted(entries, key=lambda entry: entry.workload.total_score, reverse=True)

        unassigned = await self.client.list_unassigned_issues(self.project_id)

        return WorkloadReport(
            project_id=self.project_id,
            entries=entries,
            unassigned_issues=unassigned,
        )


async def workload_for_user(client: GitLabClient, project_id: str, username: str) -> UserWorkload:
    """Single-user workload lookup."""
    aggregator = WorkloadAggregator(client, project_id)
    return await aggregator.member_workload(username.lstrip("@"))


# =============================================================================
# Rendering
# =============================================================================


def build_workload_table(report: WorkloadReport) -> Table:
    """Build the ranked workload table."""
    table = Table(title=f"Team Workload: {report.project_id}", show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Name")
    table.add_column("Username", style="cyan")
    table.add_column("Role")
    table.add_column("Issues", justify="right")
    table.add_column("MRs", justify="right")
    table.add_column("Score", justify="right", style="bold")
    table.add_column("Status")

    for rank, entry in enumerate(report.entries, start=1):
        style = STATUS_STYLES[entry.status]
        table.add_row(
            str(rank),
            entry.member.display_name,
            f"@{entry.workload.username}",
            entry.member.role_name,
            str(entry.workload.issue_count),
            str(entry.workload.mr_count),
            str(entry.workload.total_score),
            f"[{style}]{entry.status.value}[/{style}]",
        )
    return table


def render_workload_report(report: WorkloadReport, console: Console) -> None:
    """Print the workload table, summary counts and unassigned samples."""
    if report.entries:
        console.print(build_workload_table(report))
    else:
        console.print("[dim]No members have open issues or merge requests.[/dim]")

    counts = report.status_counts
    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(
        f"  [red]High:[/red] {counts[WorkloadStatus.HIGH]}  "
        f"[yellow]Medium:[/yellow] {counts[WorkloadStatus.MEDIUM]}  "
        f"[green]Low:[/green] {counts[WorkloadStatus.LOW]}"
    )
    console.print(f"  Active members: {report.active_members}")
    console.print(f"  Unassigned issues: {len(report.unassigned_issues)}")

    if report.unassigned_issues:
        console.print()
        console.print("[bold]Unassigned issues:[/bold]")
        for issue in report.unassigned_issues[:MAX_UNASSIGNED_SAMPLES]:
            console.print(f"  • #{issue.id}: {issue.title}")
        remaining = len(report.unassigned_issues) - MAX_UNASSIGNED_SAMPLES
        if remaining > 0:
            console.print(f"  [dim]… and {remaining} more[/dim]")


def render_user_workload(workload: UserWorkload, console: Console) -> None:
    """Print one user's open issues and merge requests."""
    style = STATUS_STYLES[workload.status]
    console.print(f"[bold]Workload for @{workload.username}[/bold]")
    console.print(
        f"  Issues: {workload.issue_count}  MRs: {workload.mr_count}  "
        f"Score: {workload.total_score}  Status: [{style}]{workload.status.value}[/{style}]"
    )

    if workload.total_score == 0:
        console.print("  [dim]No open issues or merge requests assigned.[/dim]")
        return

    if workload.open_issues:
        console.print()
        console.print("[bold]Open issues:[/bold]")
        for issue in workload.open_issues:
            labels = f" [dim]({', '.join(issue.labels)})[/dim]" if issue.labels else ""
            console.print(f"  • #{issue.id}: {issue.title}{labels}")

    if workload.open_mrs:
        console.print()
        console.print("[bold]Open merge requests:[/bold]")
        for mr in workload.open_mrs:
            console.print(f"  • !{mr.id}: {mr.title} [dim]({mr.source_branch} → {mr.target_branch})[/dim]")
