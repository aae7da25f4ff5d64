"""Agent tools discovered from an external MCP server.

The server is reached over SSE. When a launch command is configured the
server process is started first and owned by the provider for the rest of
the session.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from contextlib import AsyncExitStack, suppress
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from mcp import ClientSession
from mcp.client.sse import sse_client

from ken.agent.tools.base import Tool, ToolError

if TYPE_CHECKING:
    from ken.config import Config, McpConfig

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE = 5.0  # seconds between SIGTERM and SIGKILL


class McpError(Exception):
    """The MCP server could not be started, reached or queried."""


class McpTool(Tool):
    """A tool proxied to the MCP server via tools/call."""

    def __init__(
        self,
        provider: McpToolProvider,
        name: str,
        description: str | None,
        input_schema: dict[str, Any] | None,
    ) -> None:
        self.provider = provider
        self.name = name
        self.description = description or ""
        self._input_schema = input_schema or {"type": "object", "properties": {}}

    @property
    def parameters(self) -> dict[str, Any]:
        return self._input_schema

    async def call(self, args: dict[str, Any]) -> Any:
        return await self.provider.call_tool(self.name, args)


def _content_to_json(content: list[Any]) -> Any:
    """Flatten tools/call content blocks, decoding JSON text where possible."""
    values: list[Any] = []
    for block in content:
        text = getattr(block, "text", None)
        if text is None:
            values.append(block.model_dump(mode="json") if hasattr(block, "model_dump") else str(block))
            continue
        try:
            values.append(json.loads(text))
        except json.JSONDecodeError:
            values.append(text)

    if not values:
        return None
    if len(values) == 1:
        return values[0]
    return values


class McpToolProvider:
    """Owns the MCP server process and client session.

    Use as an async context manager or call ``start()`` / ``close()``.
    """

    def __init__(self, settings: McpConfig, gitlab_url: str = "", token: str = "") -> None:
        """Initialize the provider.

        Args:
            settings: MCP section of the configuration.
            gitlab_url: GitLab instance URL passed to a spawned server.
            token: GitLab token passed to a spawned server.
        """
        self.settings = settings
        self.gitlab_url = gitlab_url
        self._token = token
        self._process: asyncio.subprocess.Process | None = None
        self._stack: AsyncExitStack | None = None
        self._session: ClientSession | None = None
        self.tools: list[McpTool] = []

    @classmethod
    def from_config(cls, config: Config) -> McpToolProvider:
        """Create a provider from the ken configuration."""
        return cls(config.mcp, gitlab_url=config.api_url, token=config.api_token)

    async def __aenter__(self) -> McpToolProvider:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        """True while a session is open."""
        return self._session is not None

    def _server_env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self._token:
            env["GITLAB_PERSONAL_ACCESS_TOKEN"] = self._token
        if self.gitlab_url:
            env["GITLAB_API_URL"] = self.gitlab_url
        return env

    async def _spawn(self) -> None:
        command = self.settings.command
        logger.info(f"Starting MCP server: {command[0]}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                *command,
                env=self._server_env(),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise McpError(f"Failed to start MCP server '{command[0]}': {e}") from e

    async def _connect_once(self) -> None:
        stack = AsyncExitStack()
        try:
            read_stream, write_stream = await stack.enter_async_context(sse_client(self.settings.url))
            session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
            await asyncio.wait_for(session.initialize(), timeout=self.settings.list_timeout)
        except BaseException:
            await stack.aclose()
            raise
        self._stack = stack
        self._session = session

    async def _connect(self) -> None:
        attempts = max(1, self.settings.connect_retries)
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                await self._connect_once()
                logger.info(f"Connected to MCP server at {self.settings.url}")
                return
            except Exception as e:
                last_error = e
                logger.debug(f"MCP connection attempt {attempt}/{attempts} failed: {e}")
                if attempt < attempts:
                    await asyncio.sleep(self.settings.retry_backoff * attempt)

        raise McpError(f"Could not connect to MCP server at {self.settings.url}: {last_error}")

    async def start(self) -> list[McpTool]:
        """Start the server if configured, connect and discover tools.

        Raises:
            McpError: If any step fails. Anything already started is cleaned up.
        """
        try:
            if self.settings.command:
                await self._spawn()
            await self._connect()
            self.tools = await self.list_tools()
        except BaseException:
            await self.close()
            raise
        return self.tools

    async def list_tools(self) -> list[McpTool]:
        """Run tools/list and wrap every tool."""
        session = self._require_session()
        try:
            result = await asyncio.wait_for(session.list_tools(), timeout=self.settings.list_timeout)
        except TimeoutError as e:
            raise McpError(f"tools/list timed out after {self.settings.list_timeout:.0f}s") from e
        except Exception as e:
            raise McpError(f"tools/list failed: {e}") from e

        tools = [McpTool(self, tool.name, tool.description, tool.inputSchema) for tool in result.tools]
        logger.info(f"Found {len(tools)} MCP tools")
        return tools

    async def call_tool(self, name: str, args: dict[str, Any]) -> Any:
        """Run tools/call for one tool.

        Raises:
            ToolError: If the call fails, times out or the server reports an error.
        """
        session = self._require_session()
        logger.debug(f"Calling MCP tool '{name}' with args: {args}")
        try:
            result = await session.call_tool(
                name,
                args,
                read_timeout_seconds=timedelta(seconds=self.settings.call_timeout),
            )
        except Exception as e:
            raise ToolError(f"MCP tool '{name}' failed: {e}") from e

        value = _content_to_json(result.content)
        if result.isError:
            raise ToolError(f"MCP tool '{name}' returned an error: {value}")
        return value

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise McpError("MCP provider is not connected")
        return self._session

    async def close(self) -> None:
        """End the session and terminate a spawned server."""
        stack, self._stack = self._stack, None
        self._session = None
        if stack is not None:
            try:
                await stack.aclose()
            except Exception as e:
                logger.debug(f"Error closing MCP session: {e}")

        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return

        logger.debug(f"Stopping MCP server (PID {process.pid})")
        with suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=SHUTDOWN_GRACE)
        except TimeoutError:
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()
