"""Tool interface and registry for the LLM agent.

A tool is a named, described, JSON-schema-typed async callable. Tools are
either defined statically in this package or discovered from an MCP server;
the agent only sees the registry and does not care where a tool came from.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any


class ToolError(Exception):
    """A tool could not complete its call."""


@dataclass
class ToolDefinition:
    """What the model is told about a tool."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=lambda: {"type": "object", "properties": {}, "required": []})


class Tool(ABC):
    """Abstract base class for agent tools."""

    name: str = ""
    description: str = ""

    @property
    def parameters(self) -> dict[str, Any]:
        """JSON schema of the call arguments."""
        return {"type": "object", "properties": {}, "required": []}

    def definition(self) -> ToolDefinition:
        """Get the tool definition."""
        return ToolDefinition(name=self.name, description=self.description, parameters=self.parameters)

    @abstractmethod
    async def call(self, args: dict[str, Any]) -> Any:
        """Run the tool.

        Args:
            args: Arguments matching ``parameters``.

        Returns:
            A JSON-serialisable result.

        Raises:
            ToolError: If the call fails.
        """


class ToolRegistry:
    """Ordered collection of tools keyed by name."""

    def __init__(self, tools: list[Tool] | None = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Add a tool. A later tool with the same name replaces the earlier one."""
        if not tool.name:
            raise ValueError(f"Tool {type(tool).__name__} has no name")
        self._tools[tool.name] = tool

    def extend(self, tools: list[Tool]) -> None:
        """Add several tools."""
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> Tool | None:
        """Look up a tool by name."""
        return self._tools.get(name)

    def names(self) -> list[str]:
        """Tool names in registration order."""
        return list(self._tools)

    def definitions(self) -> list[ToolDefinition]:
        """Definitions of every registered tool."""
        return [tool.definition() for tool in self._tools.values()]

    def describe(self) -> str:
        """Markdown bullet list of tools for the system prompt."""
        lines = []
        for tool in self:
            description = tool.description.strip()
            summary = description.splitlines()[0] if description else "No description"
            lines.append(f"- `{tool.name}`: {summary}\n")
        return "".join(lines)

    async def call(self, name: str, args: dict[str, Any]) -> Any:
        """Call a tool by name."""
        tool = self.get(name)
        if tool is None:
            raise ToolError(f"Unknown tool: {name}")
        return await tool.call(args)

    def __iter__(self) -> Iterator[Tool]:
        return iter(self._tools.values())

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
