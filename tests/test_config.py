"""Tests for configuration loading and saving."""

from __future__ import annotations

import stat
from pathlib import Path

import pytest

from ken.config import (
    DEFAULT_LLM_MODEL,
    Config,
    ConfigError,
    ConfigNotFoundError,
    LLMConfig,
    get_config_path,
    get_ken_dir,
    normalize_gitlab_url,
)


class TestConfigPaths:
    """Test ken home resolution."""

    def test_ken_home_override(self, ken_home: Path) -> None:
        """Test KEN_HOME replaces ~/.ken."""
        assert get_ken_dir() == ken_home
        assert get_config_path() == ken_home / "config.yaml"

    def test_default_home(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test default home is ~/.ken."""
        monkeypatch.delenv("KEN_HOME", raising=False)
        assert get_ken_dir() == Path.home() / ".ken"


class TestConfigLoadSave:
    """Test YAML persistence."""

    def test_missing_config_raises(self, ken_home: Path) -> None:
        """Test loading without a config file asks the user to log in."""
        with pytest.raises(ConfigNotFoundError, match="ken auth login"):
            Config.load()

    def test_load_optional_returns_none(self, ken_home: Path) -> None:
        """Test load_optional swallows only the missing-file case."""
        assert Config.load_optional() is None

    def test_roundtrip(self, ken_home: Path) -> None:
        """Test saved config loads back with defaults filled in."""
        Config(gitlab_url="https://gitlab.com", api_token="secret", default_project_id="42").save()

        loaded = Config.load()
        assert loaded.gitlab_url == "https://gitlab.com"
        assert loaded.api_token == "secret"
        assert loaded.default_project_id == "42"
        assert loaded.llm.model == DEFAULT_LLM_MODEL
        assert loaded.mcp.enabled is False

    def test_saved_file_is_private(self, ken_home: Path) -> None:
        """Test the config file is readable by the owner only."""
        Config(gitlab_url="https://gitlab.com", api_token="secret").save()
        mode = stat.S_IMODE(get_config_path().stat().st_mode)
        assert mode == 0o600

    def test_invalid_yaml_raises_config_error(self, ken_home: Path) -> None:
        """Test a corrupt file raises ConfigError."""
        path = get_config_path()
        path.parent.mkdir(parents=True)
        path.write_text("gitlab_url: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid configuration"):
            Config.load()

    def test_missing_required_field_raises(self, ken_home: Path) -> None:
        """Test a config without a token is rejected."""
        path = get_config_path()
        path.parent.mkdir(parents=True)
        path.write_text("gitlab_url: https://gitlab.com\n")
        with pytest.raises(ConfigError):
            Config.load()

    def test_delete(self, ken_home: Path) -> None:
        """Test delete reports whether a file was removed."""
        Config(gitlab_url="https://gitlab.com", api_token="secret").save()
        assert Config.delete() is True
        assert Config.delete() is False

    def test_token_not_in_repr(self) -> None:
        """Test the token never appears in repr output."""
        config = Config(gitlab_url="https://gitlab.com", api_token="super-secret")
        assert "super-secret" not in repr(config)


class TestConfigHelpers:
    """Test URL normalisation and API key resolution."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("gitlab.com", "https://gitlab.com"),
            ("https://gitlab.example.com/", "https://gitlab.example.com"),
            ("http://localhost:8080", "http://localhost:8080"),
        ],
    )
    def test_normalize_gitlab_url(self, raw: str, expected: str) -> None:
        """Test scheme defaulting and trailing slash removal."""
        assert normalize_gitlab_url(raw) == expected

    def test_api_url(self) -> None:
        """Test api_url appends /api/v4."""
        config = Config(gitlab_url="https://gitlab.com/", api_token="t")
        assert config.api_url == "https://gitlab.com/api/v4"

    def test_llm_api_key_env_fallback(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test KEN_LLM_API_KEY wins over OPENAI_API_KEY."""
        monkeypatch.setenv("OPENAI_API_KEY", "openai")
        monkeypatch.setenv("KEN_LLM_API_KEY", "ken")
        assert LLMConfig().resolved_api_key() == "ken"
        assert LLMConfig(api_key="explicit").resolved_api_key() == "explicit"

    def test_llm_api_key_placeholder(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test a placeholder key is used for keyless local endpoints."""
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("KEN_LLM_API_KEY", raising=False)
        assert LLMConfig().resolved_api_key() == "not-needed"
