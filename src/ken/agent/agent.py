"""LLM agent adapter.

Wraps an OpenAI-compatible chat model in a LangGraph ReAct agent whose tools
come from a ``ToolRegistry``. The rest of ken only calls ``KenAgent.chat``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

from langchain_core.tools import StructuredTool, ToolException
from langchain_openai import ChatOpenAI
from langgraph.prebuilt import create_react_agent
from pydantic import BaseModel, Field, ValidationError

from ken.agent.prompts import ISSUE_DRAFT_PROMPT, build_system_prompt
from ken.agent.tools.base import Tool, ToolError, ToolRegistry
from ken.gitlab.client import GitLabClientError

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

    from ken.config import LLMConfig

logger = logging.getLogger(__name__)

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class AgentError(Exception):
    """The model could not be reached or gave an unusable answer."""


class IssueDraft(BaseModel):
    """Issue fields proposed by the model."""

    title: str
    description: str = ""
    labels: list[str] = Field(default_factory=list)


def build_chat_model(settings: LLMConfig) -> ChatOpenAI:
    """Create the chat model for an OpenAI-compatible endpoint."""
    return ChatOpenAI(
        model=settings.model,
        base_url=settings.base_url,
        api_key=settings.resolved_api_key(),
        temperature=settings.temperature,
        max_tokens=settings.max_tokens,
    )


def to_langchain_tool(tool: Tool) -> StructuredTool:
    """Expose a ken tool to LangChain.

    Tool failures are reported back to the model as the tool result instead
    of aborting the run.
    """

    async def _run(**kwargs: Any) -> str:
        try:
            result = await tool.call(kwargs)
        except (ToolError, GitLabClientError) as e:
            logger.warning(f"Tool {tool.name} failed: {e}")
            raise ToolException(str(e)) from e
        if isinstance(result, str):
            return result
        return json.dumps(result, ensure_ascii=False, default=str)

    return StructuredTool.from_function(
        coroutine=_run,
        name=tool.name,
        description=tool.description or tool.name,
        args_schema=tool.parameters,
        handle_tool_error=True,
    )


def message_text(message: Any) -> str:
    """Plain text of a chat model message, minus any reasoning block."""
    content = getattr(message, "content", message)
    if isinstance(content, list):
        content = "".join(
            block.get("text", "") if isinstance(block, dict) else str(block) for block in content
        )
    return _THINK_BLOCK.sub("", str(content or "")).strip()


def parse_issue_draft(text: str) -> IssueDraft:
    """Extract the JSON issue draft from a model reply.

    Raises:
        AgentError: If no valid draft is found.
    """
    match = _JSON_OBJECT.search(text)
    if not match:
        raise AgentError("The model did not return an issue draft")
    try:
        return IssueDraft.model_validate_json(match.group(0))
    except ValidationError as e:
        raise AgentError(f"The model returned an invalid issue draft: {e.errors()[0]['msg']}") from e


class KenAgent:
    """Chat agent bound to a project, its context and a tool registry."""

    def __init__(
        self,
        settings: LLMConfig,
        registry: ToolRegistry | None = None,
        project_id: str | None = None,
        context_text: str | None = None,
        model: BaseChatModel | None = None,
    ) -> None:
        """Initialize the agent.

        Args:
            settings: LLM endpoint settings.
            registry: Tools the model may call.
            project_id: Current project.
            context_text: Rendered project context for the system prompt.
            model: Chat model override (defaults to ChatOpenAI from settings).
        """
        self.settings = settings
        self.registry = registry or ToolRegistry()
        self.project_id = project_id
        self.model = model or build_chat_model(settings)
        self.system_prompt = build_system_prompt(project_id, context_text, self.registry)
        self._graph: Any = None

    def _agent_graph(self) -> Any:
        if self._graph is None:
            tools = [to_langchain_tool(tool) for tool in self.registry]
            self._graph = create_react_agent(self.model, tools=tools)
        return self._graph

    async def chat(self, message: str, history: list[dict[str, str]] | None = None) -> str:
        """Send a user message and return the final answer.

        Args:
            message: The user message.
            history: Earlier turns as ``{"role", "content"}`` dicts.

        Raises:
            AgentError: If the model call fails.
        """
        messages = [
            {"role": "system", "content": self.system_prompt},
            *(history or []),
            {"role": "user", "content": message},
        ]

        try:
            if len(self.registry) == 0:
                reply = await self.model.ainvoke(messages)
            else:
                result = await self._agent_graph().ainvoke({"messages": messages})
                reply = result["messages"][-1]
        except Exception as e:
            raise AgentError(f"LLM request failed: {e}") from e

        text = message_text(reply)
        logger.debug(f"Agent reply: {len(text)} chars")
        return text

    async def draft_issue(self, description: str) -> IssueDraft:
        """Ask the model for a structured issue draft."""
        reply = await self.chat(ISSUE_DRAFT_PROMPT.format(description=description))
        return parse_issue_draft(reply)
