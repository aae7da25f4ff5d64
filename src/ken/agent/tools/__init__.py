"""Agent tools."""

from __future__ import annotations

from typing import TYPE_CHECKING

from ken.agent.tools.base import Tool, ToolDefinition, ToolError, ToolRegistry
from ken.agent.tools.context import RefreshContextTool, TeamWorkloadTool
from ken.agent.tools.gitlab import ListIssuesTool, ListMergeRequestsTool
from ken.agent.tools.glab import GlabTool

if TYPE_CHECKING:
    from ken.config import Config
    from ken.context.store import ContextStore


def build_static_registry(config: Config, store: ContextStore | None = None) -> ToolRegistry:
    """Registry of the built-in GitLab tools."""
    return ToolRegistry(
        [
            ListIssuesTool(config),
            ListMergeRequestsTool(config),
            RefreshContextTool(config, store),
            TeamWorkloadTool(config),
            GlabTool(config.default_project_id),
        ]
    )


__all__ = [
    "GlabTool",
    "ListIssuesTool",
    "ListMergeRequestsTool",
    "RefreshContextTool",
    "TeamWorkloadTool",
    "Tool",
    "ToolDefinition",
    "ToolError",
    "ToolRegistry",
    "build_static_registry",
]
