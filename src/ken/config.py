"""Configuration management for ken."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

DEFAULT_LLM_BASE_URL = "http://llm-api.fixstars.com/v1"
DEFAULT_LLM_MODEL = "Qwen/Qwen3-32B"


class ConfigError(Exception):
    """Base exception for configuration errors."""


class ConfigNotFoundError(ConfigError):
    """No configuration file has been written yet."""


class LLMConfig(BaseModel):
    """Chat-completion endpoint settings (any OpenAI-compatible API)."""

    base_url: str = Field(default=DEFAULT_LLM_BASE_URL, description="OpenAI-compatible API base URL")
    model: str = Field(default=DEFAULT_LLM_MODEL, description="Model name sent to the completion API")
    api_key: str = Field(default="", repr=False, description="API key; falls back to KEN_LLM_API_KEY / OPENAI_API_KEY")
    temperature: float = Field(default=0.3, description="Sampling temperature")
    max_tokens: int = Field(default=4000, description="Maximum tokens in a completion")

    def resolved_api_key(self) -> str:
        """Get the API key from config or environment."""
        return self.api_key or os.getenv("KEN_LLM_API_KEY") or os.getenv("OPENAI_API_KEY") or "not-needed"


class McpConfig(BaseModel):
    """External MCP tool server settings."""

    enabled: bool = Field(default=False, description="Discover agent tools from an MCP server")
    command: list[str] = Field(default_factory=list, description="Command that launches the server (optional)")
    url: str = Field(default="http://127.0.0.1:8000/sse", description="SSE endpoint of the server")
    connect_retries: int = Field(default=3, description="Connection attempts while the server starts up")
    retry_backoff: float = Field(default=0.5, description="Seconds between connection attempts (grows linearly)")
    list_timeout: float = Field(default=10.0, description="Timeout for tools/list in seconds")
    call_timeout: float = Field(default=30.0, description="Timeout for tools/call in seconds")


class Config(BaseModel):
    """ken configuration.

    The API token is kept out of repr() so it never ends up in logs or
    tracebacks.
    """

    gitlab_url: str = Field(description="GitLab instance URL, e.g. https://gitlab.com")
    api_token: str = Field(repr=False, description="GitLab personal access token (api scope)")
    default_project_id: str | None = Field(default=None, description="Project ID or namespace/project path")
    llm: LLMConfig = Field(default_factory=LLMConfig)
    mcp: McpConfig = Field(default_factory=McpConfig)

    @property
    def api_url(self) -> str:
        """Base URL of the v4 REST API."""
        return f"{self.gitlab_url.rstrip('/')}/api/v4"

    @classmethod
    def load(cls, config_path: Path | None = None) -> Config:
        """Load configuration from file.

        Raises:
            ConfigNotFoundError: If no configuration has been saved yet.
            ConfigError: If the file cannot be parsed.
        """
        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigNotFoundError("No configuration found. Please run 'ken auth login' first.")

        try:
            with config_path.open() as f:
                data = yaml.safe_load(f) or {}
            return cls.model_validate(data)
        except (yaml.YAMLError, ValueError) as e:
            raise ConfigError(f"Invalid configuration file {config_path}: {e}") from e

    @classmethod
    def load_optional(cls, config_path: Path | None = None) -> Config | None:
        """Load configuration, returning None when not logged in."""
        try:
            return cls.load(config_path)
        except ConfigNotFoundError:
            return None

    def save(self, config_path: Path | None = None) -> None:
        """Save configuration to file."""
        if config_path is None:
            config_path = get_config_path()
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with config_path.open("w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False, sort_keys=False)
        # The file holds a secret
        config_path.chmod(0o600)

    @staticmethod
    def delete(config_path: Path | None = None) -> bool:
        """Remove the configuration file. Returns True if a file was removed."""
        if config_path is None:
            config_path = get_config_path()
        if config_path.exists():
            config_path.unlink()
            return True
        return False


def normalize_gitlab_url(url: str) -> str:
    """Add https:// when no scheme is given and strip trailing slashes."""
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url.rstrip("/")


def get_ken_dir() -> Path:
    """Get the ken home directory (~/.ken or $KEN_HOME)."""
    override = os.getenv("KEN_HOME")
    return Path(override) if override else Path.home() / ".ken"


def get_config_path() -> Path:
    """Get the path of the per-user config file."""
    return get_ken_dir() / "config.yaml"
