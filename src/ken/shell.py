"""Interactive ken shell.

A read-eval loop over slash commands and free-text questions. All state
lives on the ``KenSession`` object: configuration, context store, tool
registry, MCP provider, agent and conversation history.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.table import Table

from ken.agent.agent import AgentError, KenAgent
from ken.agent.mcp import McpError, McpToolProvider
from ken.agent.tools import ToolError, ToolRegistry, build_static_registry
from ken.config import Config, ConfigError, get_ken_dir, normalize_gitlab_url
from ken.context.refresh import ensure_fresh
from ken.context.store import ContextError, ContextStore, render_for_prompt, summarize
from ken.gitlab.client import GitLabClient, GitLabClientError
from ken.workload import WorkloadAggregator, render_user_workload, render_workload_report, workload_for_user

try:
    import readline
except ImportError:  # Windows
    readline = None  # type: ignore[assignment]

if TYPE_CHECKING:
    from ken.context.models import ProjectContext

logger = logging.getLogger(__name__)

PROMPT = "[bold cyan]Ken>[/bold cyan] "
EXIT_COMMANDS = {"exit", "quit", "/exit", "/quit"}
HISTORY_LENGTH = 1000

SLASH_COMMANDS = {
    "/help": "Show this help",
    "/login": "Login to GitLab",
    "/logout": "Logout and remove credentials",
    "/status": "Check authentication status",
    "/projects": "List available projects",
    "/project": "Set default project: /project <id>",
    "/current": "Show current project",
    "/context": "Show cached project context",
    "/refresh": "Refresh project context from GitLab",
    "/workload": "Team workload, or one user: /workload [user]",
    "/tools": "List tools available to the assistant",
    "/new-issue": "Create an issue from a template",
    "/new-mr": "Create a merge request",
    "/clear": "Clear conversation history",
}

SESSION_ERRORS = (GitLabClientError, ConfigError, ContextError, AgentError, ToolError, McpError)


class CommandError(Exception):
    """A shell command cannot run in the current state."""


@dataclass
class IssueTemplate:
    """Prompts and default labels for an issue wizard."""

    label: str
    sections: list[str] = field(default_factory=list)


ISSUE_TEMPLATES = {
    "bug": IssueTemplate(label="bug", sections=["Steps to reproduce", "Expected behavior", "Actual behavior"]),
    "feature": IssueTemplate(label="feature", sections=["Problem", "Proposed solution"]),
    "task": IssueTemplate(label="task", sections=["Description", "Acceptance criteria"]),
}


def build_issue_description(template: IssueTemplate, answers: dict[str, str]) -> str:
    """Markdown body with one heading per template section."""
    blocks = [f"## {section}\n\n{answers.get(section) or '_Not provided_'}" for section in template.sections]
    return "\n\n".join(blocks)


def complete_command(text: str, state: int) -> str | None:
    """readline completer for slash commands."""
    matches = [name for name in (*SLASH_COMMANDS, "/exit", "/quit") if name.startswith(text)]
    return matches[state] if state < len(matches) else None


class KenSession:
    """State and command handlers of one interactive session."""

    def __init__(
        self,
        console: Console | None = None,
        config: Config | None = None,
        store: ContextStore | None = None,
        client_factory: Callable[[Config], GitLabClient] | None = None,
        agent_factory: Callable[..., KenAgent] | None = None,
    ) -> None:
        """Initialize the session.

        Args:
            console: Output console.
            config: Loaded configuration; read from disk when None.
            store: Context store.
            client_factory: Builds a GitLab client from a config.
            agent_factory: Builds the chat agent.
        """
        self.console = console or Console()
        self.config = config if config is not None else Config.load_optional()
        self.store = store or ContextStore()
        self.client_factory = client_factory or GitLabClient.from_config
        self.agent_factory = agent_factory or KenAgent
        self.registry = ToolRegistry()
        self.mcp: McpToolProvider | None = None
        self.agent: KenAgent | None = None
        self._agent_key: tuple[Any, ...] | None = None
        self.history: list[dict[str, str]] = []

        self._handlers: dict[str, Callable[[str], Awaitable[None]]] = {
            "/help": self.cmd_help,
            "/login": self.cmd_login,
            "/logout": self.cmd_logout,
            "/status": self.cmd_status,
            "/projects": self.cmd_projects,
            "/project": self.cmd_project,
            "/current": self.cmd_current,
            "/context": self.cmd_context,
            "/refresh": self.cmd_refresh,
            "/workload": self.cmd_workload,
            "/tools": self.cmd_tools,
            "/new-issue": self.cmd_new_issue,
            "/new-mr": self.cmd_new_mr,
            "/clear": self.cmd_clear,
        }

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def run(self) -> None:
        """Run the read-eval loop until exit, EOF or cancellation."""
        self._setup_readline()
        self.print_banner()
        try:
            await self.load_tools()
            while True:
                try:
                    line = (await self._read_line(PROMPT)).strip()
                except EOFError:
                    break
                if not line:
                    continue
                if line.lower() in EXIT_COMMANDS:
                    break
                await self.handle_line(line)
        finally:
            self.console.print("👋 Goodbye!")
            await self.close()
            self._save_history()

    async def close(self) -> None:
        """Shut down the MCP provider, if any."""
        if self.mcp is not None:
            provider, self.mcp = self.mcp, None
            await provider.close()

    async def load_tools(self) -> None:
        """Build the tool registry: built-in tools plus MCP tools when enabled."""
        await self.close()
        self.agent = None
        self._agent_key = None

        if self.config is None:
            self.registry = ToolRegistry()
            return

        self.registry = build_static_registry(self.config, self.store)
        if not self.config.mcp.enabled:
            return

        provider = McpToolProvider.from_config(self.config)
        try:
            tools = await provider.start()
        except McpError as e:
            logger.warning(f"MCP tool discovery failed: {e}")
            self.console.print(f"[yellow]⚠️  MCP server unavailable, using built-in tools: {e}[/yellow]")
            return
        self.mcp = provider
        self.registry.extend(tools)
        logger.debug(f"Registry now has {len(self.registry)} tools")
        self.console.print(f"[dim]Loaded {len(tools)} MCP tools[/dim]")

    def print_banner(self) -> None:
        """Show authentication and project status."""
        if self.config is not None:
            self.console.print(f"✅ Authenticated to: {self.config.gitlab_url}")
            if self.config.default_project_id:
                self.console.print(f"📁 Current project: {self.config.default_project_id}")
            else:
                self.console.print("❌ No default project set.")
        else:
            self.console.print("❌ Not authenticated. Use '/login' to authenticate.")
        self.console.print("💡 Type '/help' for commands or 'exit' to quit.\n")

    # =========================================================================
    # Input
    # =========================================================================

    def _setup_readline(self) -> None:
        if readline is None:
            return
        readline.set_completer(complete_command)
        readline.set_completer_delims(" \t\n")
        readline.parse_and_bind("tab: complete")
        history_file = get_ken_dir() / "history"
        with suppress(OSError):
            readline.read_history_file(history_file)
        readline.set_history_length(HISTORY_LENGTH)

    def _save_history(self) -> None:
        if readline is None:
            return
        history_file = get_ken_dir() / "history"
        with suppress(OSError):
            history_file.parent.mkdir(parents=True, exist_ok=True)
            readline.write_history_file(history_file)

    async def _read_line(self, prompt: str, password: bool = False) -> str:
        """Read a line without blocking the event loop.

        The read runs on a daemon thread so Ctrl-C cancels the session
        instead of waiting for the line to complete.

        Raises:
            EOFError: On Ctrl-D or an interrupted read.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[str] = loop.create_future()

        def _deliver(setter: Callable[[Any], None], value: Any) -> None:
            if not future.done():
                setter(value)

        def _worker() -> None:
            try:
                line = self.console.input(prompt, password=password)
            except (EOFError, KeyboardInterrupt) as e:
                outcome: tuple[Callable[[Any], None], Any] = (future.set_exception, EOFError(str(e)))
            else:
                outcome = (future.set_result, line)
            with suppress(RuntimeError):
                loop.call_soon_threadsafe(_deliver, *outcome)

        threading.Thread(target=_worker, name="ken-input", daemon=True).start()
        return await future

    async def _ask(self, label: str, default: str | None = None, password: bool = False) -> str:
        suffix = f" [dim]({default})[/dim]" if default else ""
        answer = (await self._read_line(f"{label}{suffix}: ", password=password)).strip()
        return answer or (default or "")

    async def _confirm(self, message: str, default: bool = True) -> bool:
        hint = "Y/n" if default else "y/N"
        answer = (await self._read_line(f"{message} [{hint}]: ")).strip().lower()
        if not answer:
            return default
        return answer in ("y", "yes")

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def handle_line(self, line: str) -> None:
        """Run one input line. Errors are printed, never raised."""
        try:
            if line.startswith("/"):
                await self.handle_command(line)
            else:
                await self.handle_query(line)
        except CommandError as e:
            self.console.print(f"❌ {e}")
        except EOFError:
            self.console.print("[dim]Cancelled.[/dim]")
        except SESSION_ERRORS as e:
            self.console.print(f"[red]❌ Error:[/red] {e}")
        except Exception as e:
            logger.exception(f"Unexpected error handling {line!r}")
            self.console.print(f"[red]❌ Error:[/red] {e}")

    async def handle_command(self, line: str) -> None:
        """Dispatch a slash command."""
        name, _, arg = line.partition(" ")
        handler = self._handlers.get(name.lower())
        if handler is None:
            self.console.print(f"❓ Unknown command: {name}. Type '/help' for available commands.")
            return
        await handler(arg.strip())

    def _require_config(self) -> Config:
        if self.config is None:
            raise CommandError("Not authenticated. Use '/login' first.")
        return self.config

    def _require_project(self) -> str:
        config = self._require_config()
        if not config.default_project_id:
            raise CommandError("No default project set. Use '/project <id>' first.")
        return config.default_project_id

    # =========================================================================
    # Natural Language Queries
    # =========================================================================

    async def _fresh_context(self, project_id: str) -> ProjectContext:
        config = self._require_config()
        async with self.client_factory(config) as client:
            context, refreshed = await ensure_fresh(self.store, client, project_id)
        if refreshed:
            self.console.print("[dim]🔄 Project context refreshed[/dim]")
        return context

    def _agent_for(self, project_id: str, context: ProjectContext) -> KenAgent:
        config = self._require_config()
        key = (project_id, context.last_updated, tuple(self.registry.names()))
        if self.agent is None or self._agent_key != key:
            self.agent = self.agent_factory(config.llm, self.registry, project_id, render_for_prompt(context))
            self._agent_key = key
        return self.agent

    async def handle_query(self, text: str) -> None:
        """Send free text to the agent with the current project context."""
        project_id = self._require_project()
        context = await self._fresh_context(project_id)
        agent = self._agent_for(project_id, context)

        with self.console.status("[cyan]Thinking...[/cyan]"):
            reply = await agent.chat(text, self.history)

        self.history.append({"role": "user", "content": text})
        self.history.append({"role": "assistant", "content": reply})
        self.console.print(Markdown(reply or "_No response_"))

    # =========================================================================
    # Commands
    # =========================================================================

    async def cmd_help(self, arg: str) -> None:
        self.console.print("📋 Available Commands:")
        for name, description in SLASH_COMMANDS.items():
            self.console.print(f"  {name:<14} - {description}")
        self.console.print(f"  {'exit':<14} - Quit Ken")
        self.console.print("\nAnything else is sent to the assistant as a question.")

    async def cmd_login(self, arg: str) -> None:
        self.console.print("🔐 GitLab Authentication Setup")
        gitlab_url = normalize_gitlab_url(await self._ask("GitLab URL", default="https://gitlab.com"))
        token = await self._ask("Personal access token", password=True)
        if not token:
            raise CommandError("A personal access token is required.")
        project = await self._ask("Default project ID or path (optional)")

        config = Config(gitlab_url=gitlab_url, api_token=token, default_project_id=project or None)
        if self.config is not None:
            config.llm = self.config.llm
            config.mcp = self.config.mcp

        self.console.print("🔄 Verifying credentials...")
        async with self.client_factory(config) as client:
            username = await client.verify_credentials()

        config.save()
        self.config = config
        self.console.print(f"✅ Successfully authenticated as {username}")
        await self.load_tools()

    async def cmd_logout(self, arg: str) -> None:
        if self.config is None:
            self.console.print("❌ Not currently logged in.")
            return
        Config.delete()
        self.config = None
        self.history.clear()
        await self.load_tools()
        self.console.print("✅ Logged out successfully!")

    async def cmd_status(self, arg: str) -> None:
        config = self._require_config()
        self.console.print(f"✅ Authenticated to: {config.gitlab_url}")
        if config.default_project_id:
            self.console.print(f"📁 Default project: {config.default_project_id}")

        try:
            async with self.client_factory(config) as client:
                username = await client.verify_credentials()
        except GitLabClientError:
            self.console.print("🔄 Verifying token... ❌ Token expired or invalid.")
            return
        self.console.print(f"🔄 Verifying token... ✅ Token is valid ({username}).")

    async def cmd_projects(self, arg: str) -> None:
        config = self._require_config()
        self.console.print("📋 Fetching projects from GitLab...")
        async with self.client_factory(config) as client:
            projects = await client.list_projects(search=arg or None)

        if not projects:
            self.console.print("No projects found.")
            return

        self.console.print("\n📂 Available Projects:")
        for project in projects:
            self.console.print(f"  • {project.name} (ID: {project.id}, Path: {project.path_with_namespace})")
        self.console.print("\n💡 Use '/project <id_or_path>' to set a default project")

    async def cmd_project(self, arg: str) -> None:
        if not arg:
            raise CommandError("Please specify a project ID: /project <id>")
        config = self._require_config()
        config.default_project_id = arg
        config.save()
        self.history.clear()
        self.agent = None
        self.console.print(f"✅ Default project set to: {arg}")

    async def cmd_current(self, arg: str) -> None:
        config = self._require_config()
        if config.default_project_id:
            self.console.print(f"📁 Current project: {config.default_project_id}")
        else:
            self.console.print("❌ No default project set.")

    async def cmd_context(self, arg: str) -> None:
        project_id = self._require_project()
        info = summarize(self.store.load(project_id))

        if not info["last_updated"]:
            self.console.print(f"📭 No cached context for {project_id}. Use '/refresh' to fetch it.")
            return

        self._print_context_summary(project_id, info)

    async def cmd_refresh(self, arg: str) -> None:
        project_id = self._require_project()
        config = self._require_config()
        with self.console.status(f"[cyan]Refreshing context for {project_id}...[/cyan]"):
            async with self.client_factory(config) as client:
                context, _ = await ensure_fresh(self.store, client, project_id, force=True)
        self.console.print("✅ Project context refreshed")
        self._print_context_summary(project_id, summarize(context))

    def _print_context_summary(self, project_id: str, info: dict[str, Any]) -> None:
        table = Table(title=f"Context: {project_id}", show_header=False, box=None, padding=(0, 2))
        table.add_column("Field", style="bold")
        table.add_column("Value")
        table.add_row("Labels", str(info["labels_count"]))
        table.add_row("Members", str(info["users_count"]))
        table.add_row("Milestones", str(info["milestones_count"]))
        table.add_row("Open issues", str(info["hot_issues_count"]))
        table.add_row("Top labels", ", ".join(info["top_labels"]) or "-")
        table.add_row("Sample users", ", ".join(info["sample_users"]) or "-")
        stale = " [yellow](stale)[/yellow]" if info["stale"] else ""
        table.add_row("Last updated", f"{info['last_updated'] or 'never'}{stale}")
        self.console.print(table)

    async def cmd_workload(self, arg: str) -> None:
        project_id = self._require_project()
        config = self._require_config()
        async with self.client_factory(config) as client:
            if arg:
                workload = await workload_for_user(client, project_id, arg)
                render_user_workload(workload, self.console)
                return
            with self.console.status("[cyan]Computing team workload...[/cyan]"):
                report = await WorkloadAggregator(client, project_id).compute()
        render_workload_report(report, self.console)

    async def cmd_tools(self, arg: str) -> None:
        if not len(self.registry):
            self.console.print("No tools available. Use '/login' first.")
            return
        table = Table(title="Available Tools", show_header=True, header_style="bold")
        table.add_column("Name", style="cyan")
        table.add_column("Source")
        table.add_column("Description")
        mcp_names = {tool.name for tool in self.mcp.tools} if self.mcp else set()
        for tool in self.registry:
            summary = (tool.description.strip().splitlines() or [""])[0]
            table.add_row(tool.name, "mcp" if tool.name in mcp_names else "built-in", summary)
        self.console.print(table)

    async def cmd_new_issue(self, arg: str) -> None:
        project_id = self._require_project()
        config = self._require_config()

        kind = (arg or await self._ask("Issue type (bug/feature/task)", default="task")).lower()
        template = ISSUE_TEMPLATES.get(kind)
        if template is None:
            raise CommandError(f"Unknown issue type '{kind}'. Choose one of: {', '.join(ISSUE_TEMPLATES)}")

        title = await self._ask("Title")
        if not title:
            raise CommandError("A title is required.")
        answers = {section: await self._ask(section) for section in template.sections}
        labels_text = await self._ask("Labels (comma-separated)", default=template.label)
        labels = [label.strip() for label in labels_text.split(",") if label.strip()]
        description = build_issue_description(template, answers)

        self.console.print(Panel(Markdown(description), title=title, subtitle=", ".join(labels)))
        if not await self._confirm("Create this issue?"):
            self.console.print("Cancelled.")
            return

        async with self.client_factory(config) as client:
            issue = await client.create_issue(project_id, title, description, labels)
        self.console.print(f"✅ Created issue #{issue.iid}: {issue.web_url}")

    async def cmd_new_mr(self, arg: str) -> None:
        project_id = self._require_project()
        config = self._require_config()

        source = await self._ask("Source branch", default=arg or None)
        if not source:
            raise CommandError("A source branch is required.")
        target = await self._ask("Target branch", default="main")
        title = await self._ask("Title", default=source)
        description = await self._ask("Description (optional)")

        self.console.print(f"\n[bold]{title}[/bold]\n  {source} → {target}")
        if not await self._confirm("Create this merge request?"):
            self.console.print("Cancelled.")
            return

        async with self.client_factory(config) as client:
            mr = await client.create_merge_request(project_id, source, target, title, description)
        self.console.print(f"✅ Created merge request !{mr.iid}: {mr.web_url}")

    async def cmd_clear(self, arg: str) -> None:
        self.history.clear()
        self.console.print("🧹 Conversation history cleared.")
