"""Tests for configuration loading and validation."""

from pathlib import Path
from tempfile import NamedTemporaryFile

import pytest
import yaml
from pydantic import ValidationError

from spotinfo.config import (
    HttpClientConfig,
    MCPConfig,
    ScoreConfig,
    SpotinfoConfig,
    default_config,
)


class TestHttpClientConfig:
    """Tests for HttpClientConfig model."""

    def test_default_values(self):
        """Test that default values are set correctly."""
        config = HttpClientConfig()
        assert config.timeout == 5
        assert config.max_retries == 0
        assert config.offline is False

    def test_timeout_validation(self):
        """Test timeout bounds."""
        with pytest.raises(ValidationError, match="greater than 0"):
            HttpClientConfig(timeout=0)

        with pytest.raises(ValidationError, match="cannot exceed 300 seconds"):
            HttpClientConfig(timeout=301)

    def test_max_retries_validation(self):
        """Test max_retries bounds."""
        with pytest.raises(ValidationError, match="greater than or equal to 0"):
            HttpClientConfig(max_retries=-1)

        with pytest.raises(ValidationError, match="cannot exceed 10"):
            HttpClientConfig(max_retries=11)


class TestScoreConfig:
    """Tests for ScoreConfig model."""

    def test_defaults(self):
        """Test score defaults."""
        config = ScoreConfig()
        assert config.timeout == 30
        assert config.max_concurrency == 8
        assert config.target_capacity == 1

    def test_concurrency_capped(self):
        """Test fan-out cannot exceed eight concurrent calls."""
        with pytest.raises(ValidationError):
            ScoreConfig(max_concurrency=9)

    def test_timeout_bounds(self):
        """Test the score deadline is between 1 and 300 seconds."""
        with pytest.raises(ValidationError):
            ScoreConfig(timeout=0.5)
        with pytest.raises(ValidationError):
            ScoreConfig(timeout=301)


class TestMCPConfig:
    """Tests for MCPConfig model."""

    def test_defaults(self):
        """Test MCP defaults."""
        config = MCPConfig()
        assert config.transport == "stdio"
        assert config.port == 8080

    def test_invalid_transport(self):
        """Test unknown transports are rejected."""
        with pytest.raises(ValidationError):
            MCPConfig(transport="websocket")


class TestSpotinfoConfig:
    """Tests for the root configuration."""

    def test_convenience_properties(self):
        """Test nested http_client values are exposed on the root."""
        config = SpotinfoConfig(http_client=HttpClientConfig(timeout=7, max_retries=2))
        assert config.timeout == 7
        assert config.max_retries == 2
        assert config.backoff_factor == 2.0
        assert config.base_delay == 0.5

    def test_default_config_loaded_from_yaml(self):
        """Test the packaged defaults.yaml."""
        assert default_config.timeout == 5
        assert default_config.scores.timeout == 30
        assert default_config.mcp.transport == "stdio"
        assert default_config.observability.service_name == "spotinfo"

    def test_from_yaml_missing_file(self):
        """Test loading a missing file fails."""
        with pytest.raises(FileNotFoundError, match="Configuration file not found"):
            SpotinfoConfig.from_yaml(Path("/nonexistent/spotinfo.yaml"))

    def test_load_merges_user_file(self):
        """Test a user file overrides only the keys it sets."""
        with NamedTemporaryFile("w", suffix=".yaml", delete=False) as f:
            yaml.safe_dump({"http_client": {"timeout": 10}, "mcp": {"port": 9090}}, f)
            path = Path(f.name)

        try:
            config = SpotinfoConfig.load(path, environ={})
        finally:
            path.unlink()

        assert config.timeout == 10
        assert config.max_retries == 0
        assert config.mcp.port == 9090
        assert config.mcp.transport == "stdio"

    def test_load_env_overrides(self):
        """Test SPOTINFO_* environment variables."""
        config = SpotinfoConfig.load(
            environ={
                "SPOTINFO_MCP_TRANSPORT": "SSE",
                "SPOTINFO_MCP_PORT": "9000",
                "SPOTINFO_LOG_LEVEL": "debug",
                "SPOTINFO_OFFLINE": "true",
            }
        )

        assert config.mcp.transport == "sse"
        assert config.mcp.port == 9000
        assert config.observability.log_level == "DEBUG"
        assert config.http_client.offline is True

    def test_load_invalid_env_value(self):
        """Test invalid environment values fail validation."""
        with pytest.raises(ValidationError):
            SpotinfoConfig.load(environ={"SPOTINFO_MCP_TRANSPORT": "carrier-pigeon"})

    def test_unknown_keys_ignored(self):
        """Test that unknown top-level keys are ignored."""
        config = SpotinfoConfig(**{"unknown": {"x": 1}})
        assert config.timeout == 5
