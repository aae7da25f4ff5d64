"""LLM agent, prompts and tools."""

from ken.agent.agent import AgentError, IssueDraft, KenAgent, to_langchain_tool
from ken.agent.mcp import McpError, McpTool, McpToolProvider
from ken.agent.tools import ToolError, ToolRegistry, build_static_registry

__all__ = [
    "AgentError",
    "IssueDraft",
    "KenAgent",
    "McpError",
    "McpTool",
    "McpToolProvider",
    "ToolError",
    "ToolRegistry",
    "build_static_registry",
    "to_langchain_tool",
]
