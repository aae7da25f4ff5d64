"""CLI interface for ken."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Coroutine
from typing import Annotated, Any, TypeVar

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from ken.agent.agent import AgentError, KenAgent
from ken.agent.mcp import McpError, McpToolProvider
from ken.agent.prompts import SUGGEST_PROMPT, SUMMARIZE_PROMPT
from ken.agent.tools import ToolError, ToolRegistry, build_static_registry
from ken.config import Config, ConfigError, normalize_gitlab_url
from ken.context.refresh import ensure_fresh
from ken.context.store import ContextError, ContextStore, render_for_prompt, summarize
from ken.gitlab.client import GitLabClient, GitLabClientError
from ken.workload import WorkloadAggregator, render_user_workload, render_workload_report, workload_for_user

__version__ = "0.1.0"

app = typer.Typer(
    name="ken",
    help="Ken: natural-language assistant for GitLab issues.",
    no_args_is_help=True,
)
auth_app = typer.Typer(help="Manage GitLab authentication.", no_args_is_help=True)
project_app = typer.Typer(help="Manage the default project and its context.", no_args_is_help=True)
app.add_typer(auth_app, name="auth")
app.add_typer(project_app, name="project")

console = Console()
logger = logging.getLogger(__name__)

T = TypeVar("T")

CLI_ERRORS = (ConfigError, GitLabClientError, ContextError, AgentError, ToolError, McpError, ValueError)

_ISSUE_URL = re.compile(r"^https?://[^/]+/(?P<project>.+?)(?:/-)?/issues/(?P<iid>\d+)/?(?:[?#].*)?$")
_ISSUE_PATH = re.compile(r"^(?P<project>[^#\s]+)#(?P<iid>\d+)$")

ProjectOption = Annotated[
    str | None,
    typer.Option("--project", "-p", help="Project ID or path (default: configured project)"),
]


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"ken {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
    version: Annotated[
        bool,
        typer.Option("--version", callback=_version_callback, is_eager=True, help="Show version and exit"),
    ] = False,
) -> None:
    """Ken: natural-language assistant for GitLab issues."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# =============================================================================
# Helpers
# =============================================================================


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning ken errors into a red message and exit code 1."""
    try:
        return asyncio.run(coro)
    except CLI_ERRORS as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _load_config() -> Config:
    try:
        return Config.load()
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


def _resolve_project(config: Config, project: str | None) -> str:
    project_id = project or config.default_project_id
    if not project_id:
        console.print("[red]Error:[/red] No project specified. Use --project or 'ken project set <id>'.")
        raise typer.Exit(1)
    return project_id


def parse_issue_ref(ref: str, default_project: str | None) -> tuple[str, int]:
    """Resolve an issue reference to (project, iid).

    Accepts ``42``, ``#42``, ``group/project#42`` or an issue URL.

    Raises:
        ValueError: If the reference cannot be parsed or needs a project.
    """
    ref = ref.strip()
    bare = ref.lstrip("#")
    if bare.isdigit():
        if not default_project:
            raise ValueError("No project specified. Use --project or 'ken project set <id>'.")
        return default_project, int(bare)

    for pattern in (_ISSUE_URL, _ISSUE_PATH):
        match = pattern.match(ref)
        if match:
            return match.group("project"), int(match.group("iid"))

    raise ValueError(f"Cannot parse issue reference '{ref}'. Use an issue number or URL.")


async def _context_text(client: GitLabClient, project_id: str) -> str:
    context, refreshed = await ensure_fresh(ContextStore(), client, project_id)
    if refreshed:
        logger.info(f"Refreshed context for {project_id}")
    return render_for_prompt(context)


# =============================================================================
# Auth Commands
# =============================================================================


@auth_app.command("login")
def auth_login(
    url: Annotated[
        str | None,
        typer.Option("--url", help="GitLab instance URL (default: https://gitlab.com)"),
    ] = None,
    token: Annotated[
        str | None,
        typer.Option("--token", help="Personal access token with api scope"),
    ] = None,
    project: ProjectOption = None,
) -> None:
    """Log in to GitLab and save credentials."""
    console.print("🔐 GitLab Authentication Setup")
    if url is None:
        url = typer.prompt("GitLab URL", default="https://gitlab.com")
    if token is None:
        token = typer.prompt("Personal access token", hide_input=True)
    if project is None:
        project = typer.prompt("Default project ID or path (optional)", default="", show_default=False)

    existing = Config.load_optional()
    config = Config(gitlab_url=normalize_gitlab_url(url), api_token=token, default_project_id=project or None)
    if existing is not None:
        config.llm = existing.llm
        config.mcp = existing.mcp

    async def _verify() -> str:
        async with GitLabClient.from_config(config) as client:
            return await client.verify_credentials()

    console.print("🔄 Verifying credentials...")
    username = _run(_verify())
    config.save()
    console.print(f"[green]✅ Successfully authenticated as {username}[/green]")


@auth_app.command("status")
def auth_status() -> None:
    """Show authentication status and verify the token."""
    config = _load_config()
    console.print(f"✅ Authenticated to: {config.gitlab_url}")
    if config.default_project_id:
        console.print(f"📁 Default project: {config.default_project_id}")

    async def _verify() -> str:
        async with GitLabClient.from_config(config) as client:
            return await client.verify_credentials()

    try:
        username = asyncio.run(_verify())
    except GitLabClientError as e:
        console.print(f"[red]❌ Token expired or invalid:[/red] {e}")
        raise typer.Exit(1) from e
    console.print(f"[green]✅ Token is valid ({username})[/green]")


@auth_app.command("logout")
def auth_logout() -> None:
    """Remove saved credentials."""
    if Config.delete():
        console.print("✅ Logged out successfully!")
    else:
        console.print("❌ Not currently logged in.")


# =============================================================================
# Issue Commands
# =============================================================================


@app.command()
def issue(
    description: Annotated[str, typer.Argument(help="What the issue is about, in plain language")],
    project: ProjectOption = None,
    yes: Annotated[
        bool,
        typer.Option("--yes", "-y", help="Create without confirmation"),
    ] = False,
) -> None:
    """Draft an issue with the assistant and create it."""
    config = _load_config()
    project_id = _resolve_project(config, project)
    store = ContextStore()

    async def _draft() -> Any:
        async with GitLabClient.from_config(config) as client:
            context, _ = await ensure_fresh(store, client, project_id)
        agent = KenAgent(config.llm, ToolRegistry(), project_id, render_for_prompt(context))
        draft = await agent.draft_issue(description)
        known = {label.name for label in context.labels}
        if known:
            dropped = [label for label in draft.labels if label not in known]
            if dropped:
                logger.info(f"Dropping unknown labels: {', '.join(dropped)}")
            draft.labels = [label for label in draft.labels if label in known]
        return draft

    with console.status("[cyan]Drafting issue...[/cyan]"):
        draft = _run(_draft())

    console.print(Panel(Markdown(draft.description or "_No description_"), title=draft.title, subtitle=", ".join(draft.labels)))
    if not yes and not typer.confirm("Create this issue?", default=True):
        console.print("Cancelled.")
        return

    async def _create() -> Any:
        async with GitLabClient.from_config(config) as client:
            return await client.create_issue(project_id, draft.title, draft.description, draft.labels)

    created = _run(_create())
    console.print(f"[green]✅ Created issue #{created.iid}:[/green] {created.web_url}")


@app.command("summarize")
def summarize_issue(
    ref: Annotated[str, typer.Argument(help="Issue number, project#number or issue URL")],
    project: ProjectOption = None,
) -> None:
    """Summarize an issue."""
    config = _load_config()

    async def _summarize() -> str:
        project_id, iid = parse_issue_ref(ref, project or config.default_project_id)
        async with GitLabClient.from_config(config) as client:
            found = await client.get_issue(project_id, iid)
            context_text = await _context_text(client, project_id)
        prompt = SUMMARIZE_PROMPT.format(
            iid=found.iid,
            title=found.title,
            state=found.state,
            author=found.author.username or "unknown",
            assignee=found.primary_assignee or "Unassigned",
            labels=", ".join(found.labels) or "None",
            milestone=found.milestone_title or "None",
            description=found.description or "(no description)",
        )
        agent = KenAgent(config.llm, ToolRegistry(), project_id, context_text)
        return await agent.chat(prompt)

    with console.status("[cyan]Summarizing...[/cyan]"):
        summary = _run(_summarize())
    console.print(Markdown(summary))


@app.command()
def suggest(
    ref: Annotated[str, typer.Argument(help="Issue number, project#number or issue URL")],
    project: ProjectOption = None,
) -> None:
    """Suggest an assignee for an issue based on team workload."""
    config = _load_config()

    async def _suggest() -> tuple[Any, str]:
        project_id, iid = parse_issue_ref(ref, project or config.default_project_id)
        async with GitLabClient.from_config(config) as client:
            found = await client.get_issue(project_id, iid)
            report = await WorkloadAggregator(client, project_id).compute()
        workload_lines = "\n".join(
            f"- @{entry.workload.username} ({entry.member.role_name}): {entry.workload.issue_count} issues, "
            f"{entry.workload.mr_count} MRs, score {entry.workload.total_score} ({entry.status.value})"
            for entry in report.entries
        )
        prompt = SUGGEST_PROMPT.format(
            iid=found.iid,
            title=found.title,
            labels=", ".join(found.labels) or "None",
            description=found.description or "(no description)",
            workload=workload_lines or "No member has open work.",
        )
        agent = KenAgent(config.llm, ToolRegistry(), project_id)
        return report, await agent.chat(prompt)

    with console.status("[cyan]Analyzing team workload...[/cyan]"):
        report, suggestion = _run(_suggest())

    render_workload_report(report, console)
    baseline = report.least_loaded()
    if baseline is not None:
        console.print(
            f"\n[bold]Least loaded active member:[/bold] @{baseline.workload.username} (score {baseline.workload.total_score})"
        )
    console.print()
    console.print(Markdown(suggestion))


@app.command()
def workload(
    username: Annotated[
        str | None,
        typer.Argument(help="Show only this user (leading @ optional)"),
    ] = None,
    project: ProjectOption = None,
) -> None:
    """Show team workload, or the open work of one user."""
    config = _load_config()
    project_id = _resolve_project(config, project)

    if username:

        async def _user() -> Any:
            async with GitLabClient.from_config(config) as client:
                return await workload_for_user(client, project_id, username)

        render_user_workload(_run(_user()), console)
        return

    async def _team() -> Any:
        async with GitLabClient.from_config(config) as client:
            return await WorkloadAggregator(client, project_id).compute()

    with console.status("[cyan]Computing team workload...[/cyan]"):
        report = _run(_team())
    render_workload_report(report, console)


@app.command()
def query(
    question: Annotated[str, typer.Argument(help="Question about the project, in plain language")],
    project: ProjectOption = None,
) -> None:
    """Ask the assistant a question about a project."""
    config = _load_config()
    project_id = _resolve_project(config, project)
    if project:
        config.default_project_id = project_id
    store = ContextStore()

    async def _ask() -> str:
        async with GitLabClient.from_config(config) as client:
            context, _ = await ensure_fresh(store, client, project_id)
        registry = build_static_registry(config, store)
        if not config.mcp.enabled:
            return await KenAgent(config.llm, registry, project_id, render_for_prompt(context)).chat(question)
        async with McpToolProvider.from_config(config) as provider:
            registry.extend(provider.tools)
            return await KenAgent(config.llm, registry, project_id, render_for_prompt(context)).chat(question)

    with console.status("[cyan]Thinking...[/cyan]"):
        answer = _run(_ask())
    console.print(Markdown(answer))


@app.command()
def interactive() -> None:
    """Start the interactive shell."""
    from ken.shell import KenSession

    try:
        asyncio.run(KenSession(console).run())
    except KeyboardInterrupt:
        pass


# =============================================================================
# Project Commands
# =============================================================================


@project_app.command("list")
def project_list(
    search: Annotated[
        str | None,
        typer.Option("--search", "-s", help="Filter projects by name"),
    ] = None,
    mine: Annotated[
        bool,
        typer.Option("--mine", help="Only projects you are a member of"),
    ] = False,
) -> None:
    """List accessible projects."""
    config = _load_config()

    async def _list() -> Any:
        async with GitLabClient.from_config(config) as client:
            return await client.list_projects(search=search, owned=mine)

    projects = _run(_list())
    if not projects:
        console.print("No projects found.")
        return

    table = Table(title="Projects", show_header=True, header_style="bold")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("Path")
    table.add_column("Name")
    for item in projects:
        marker = " [green]*[/green]" if item.path_with_namespace == config.default_project_id or str(item.id) == config.default_project_id else ""
        table.add_row(str(item.id), f"{item.path_with_namespace}{marker}", item.name)
    console.print(table)
    console.print("\n💡 Use 'ken project set <id_or_path>' to set a default project")


@project_app.command("set")
def project_set(
    project_id: Annotated[str, typer.Argument(help="Project ID or namespace/project path")],
) -> None:
    """Set the default project."""
    config = _load_config()
    config.default_project_id = project_id
    config.save()
    console.print(f"✅ Default project set to: {project_id}")


@project_app.command("current")
def project_current() -> None:
    """Show the default project."""
    config = _load_config()
    if config.default_project_id:
        console.print(f"📁 Current project: {config.default_project_id}")
    else:
        console.print("❌ No default project set.")


@project_app.command("update-context")
def project_update_context(project: ProjectOption = None) -> None:
    """Refresh the cached project context from GitLab."""
    config = _load_config()
    project_id = _resolve_project(config, project)
    store = ContextStore()

    async def _refresh() -> Any:
        async with GitLabClient.from_config(config) as client:
            context, _ = await ensure_fresh(store, client, project_id, force=True)
        return context

    with console.status(f"[cyan]Refreshing context for {project_id}...[/cyan]"):
        context = _run(_refresh())

    info = summarize(context)
    console.print(f"[green]✅ Context updated for {project_id}[/green]")
    console.print(
        f"  Labels: {info['labels_count']}  Members: {info['users_count']}  "
        f"Milestones: {info['milestones_count']}  Open issues: {info['hot_issues_count']}"
    )
    console.print(f"  Active members: {info['active_members']}  Unassigned issues: {info['unassigned_issues']}")
    console.print(f"  Saved to {store.context_path(project_id)}")


if __name__ == "__main__":
    app()
