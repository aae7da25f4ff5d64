"""Tool that shells out to the GitLab CLI (glab)."""

from __future__ import annotations

import asyncio
import json
import logging
import shlex
import shutil
from typing import Any

from ken.agent.tools.base import Tool, ToolError

logger = logging.getLogger(__name__)

GLAB_TIMEOUT = 60.0
GLAB_INSTALL_HINT = "glab command not found. Please install GitLab CLI: https://gitlab.com/gitlab-org/cli"

_OUTPUT_FLAGS = ("--output", "-F", "--json")


def check_glab_available() -> bool:
    """Check if the glab CLI is installed and on PATH."""
    return shutil.which("glab") is not None


def build_glab_command(command: str, args: list[str] | None = None, project: str | None = None) -> list[str]:
    """Assemble a glab argv.

    ``--repo`` is appended when a project is known and JSON output is
    requested unless the caller already chose an output format.
    """
    parts = ["glab", *shlex.split(command)]
    if parts[1:2] == ["glab"]:
        parts.pop(1)
    parts.extend(args or [])

    if project and "--repo" not in parts and "-R" not in parts:
        parts.extend(["--repo", project])

    if not any(part == flag or part.startswith(f"{flag}=") for part in parts for flag in _OUTPUT_FLAGS):
        parts.extend(["--output", "json"])

    return parts


class GlabTool(Tool):
    """Run glab commands against the current project."""

    name = "execute_glab_command"
    description = (
        "Execute GitLab CLI (glab) commands to interact with GitLab.\n"
        "Common commands:\n"
        '- "issue list" - List issues\n'
        '- "issue list --author=username" - List issues by author\n'
        '- "issue list --assignee=username" - List issues by assignee\n'
        '- "issue list --label=bug" - List issues by label\n'
        '- "issue view 123" - View specific issue\n'
        '- "mr list" - List merge requests\n'
        "JSON output is requested automatically."
    )

    def __init__(self, default_project_id: str | None = None, timeout: float = GLAB_TIMEOUT) -> None:
        self.default_project_id = default_project_id
        self.timeout = timeout

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The glab command to execute (e.g., 'issue list --author=username')",
                },
                "args": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Additional arguments as a list",
                },
                "project": {
                    "type": "string",
                    "description": "Specify project (--repo flag)",
                },
            },
            "required": ["command"],
        }

    async def call(self, args: dict[str, Any]) -> Any:
        command = str(args.get("command") or "").strip()
        if not command:
            raise ToolError("Invalid command: empty command")

        try:
            cmd = build_glab_command(command, args.get("args"), args.get("project") or self.default_project_id)
        except ValueError as e:
            raise ToolError(f"Invalid command: {e}") from e

        if not check_glab_available():
            raise ToolError(GLAB_INSTALL_HINT)

        logger.debug(f"Running glab command: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise ToolError(GLAB_INSTALL_HINT) from e

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except TimeoutError as e:
            process.kill()
            await process.wait()
            raise ToolError(f"glab command timed out after {self.timeout:.0f}s") from e

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")

        if process.returncode != 0:
            raise ToolError(f"Command failed with exit code {process.returncode}: {stderr.strip()}")

        result: dict[str, Any] = {"success": True, "command": " ".join(cmd)}
        try:
            result["data"] = json.loads(stdout)
        except json.JSONDecodeError:
            result["output"] = stdout.strip()
        return result
