"""Configuration management for spotinfo.

Settings are pydantic models loaded from the packaged ``defaults.yaml``, an
optional user YAML file and a handful of ``SPOTINFO_*`` environment variables,
in that order of precedence (last wins).
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Literal, Self

import yaml
from pydantic import BaseModel, Field, field_validator

MAX_SCORE_CONCURRENCY = 8
MAX_DOWNLOAD_TIMEOUT = 300
MAX_DOWNLOAD_RETRIES = 10

DEFAULTS_PATH = Path(__file__).with_name("defaults.yaml")

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class ObservabilityConfig(BaseModel):
    """Where log lines and traces go.

    Attributes:
        enabled: Export traces and logs over OTLP
        honeycomb_api_key: Team key sent as ``x-honeycomb-team``
        service_name: ``service.name`` resource attribute
        environment: ``deployment.environment`` resource attribute
        log_level: Minimum level written to stderr
        json_log: One JSON object per line instead of key=value pairs
        exporter_protocol: OTLP wire protocol
        exporter_endpoint: OTLP collector base URL
    """

    enabled: bool = Field(default=False, description="Export telemetry over OTLP")
    honeycomb_api_key: str | None = Field(
        default=None,
        description="Honeycomb team key; HONEYCOMB_API_KEY is used when unset",
    )
    service_name: str = Field(default="spotinfo", description="Reported service name")
    environment: str = Field(default="development", description="Deployment environment")
    log_level: LogLevel = Field(default="INFO", description="stderr log level")
    json_log: bool = Field(default=False, description="Write log lines as JSON")
    exporter_protocol: Literal["http/protobuf", "grpc"] = Field(
        default="http/protobuf", description="OTLP protocol"
    )
    exporter_endpoint: str = Field(
        default="https://api.honeycomb.io:443", description="OTLP endpoint"
    )


class HttpClientConfig(BaseModel):
    """Download settings for the advisor and pricing feeds.

    Attributes:
        timeout: Whole-request deadline in seconds
        max_retries: Extra attempts after the first failed download
        backoff_factor: Multiplier applied to the delay after each attempt
        base_delay: Delay in seconds before the first retry
        offline: Skip the network and serve the embedded datasets
    """

    timeout: float = Field(default=5.0, gt=0, description="Download deadline in seconds")
    max_retries: int = Field(default=0, ge=0, description="Retries before falling back")
    backoff_factor: float = Field(default=2.0, gt=0, description="Retry delay multiplier")
    base_delay: float = Field(default=0.5, gt=0, description="First retry delay in seconds")
    offline: bool = Field(default=False, description="Use the embedded datasets only")

    @field_validator("timeout")
    @classmethod
    def cap_timeout(cls, v: float) -> float:
        if v > MAX_DOWNLOAD_TIMEOUT:
            msg = f"Timeout cannot exceed {MAX_DOWNLOAD_TIMEOUT} seconds"
            raise ValueError(msg)
        return v

    @field_validator("max_retries")
    @classmethod
    def cap_retries(cls, v: int) -> int:
        if v > MAX_DOWNLOAD_RETRIES:
            msg = f"max_retries cannot exceed {MAX_DOWNLOAD_RETRIES}"
            raise ValueError(msg)
        return v


class ScoreConfig(BaseModel):
    """Spot placement score enrichment settings.

    Attributes:
        timeout: Deadline in seconds shared by all fetches of one enrichment
        max_concurrency: Maximum number of concurrent placement score calls
        target_capacity: Target capacity sent with every placement score request
    """

    timeout: float = Field(
        default=30.0,
        ge=1,
        le=300,
        description="Score enrichment deadline in seconds",
    )
    max_concurrency: int = Field(
        default=MAX_SCORE_CONCURRENCY,
        ge=1,
        le=MAX_SCORE_CONCURRENCY,
        description="Concurrent GetSpotPlacementScores calls",
    )
    target_capacity: int = Field(
        default=1,
        ge=1,
        description="TargetCapacity for GetSpotPlacementScores",
    )


class MCPConfig(BaseModel):
    """MCP server settings.

    Attributes:
        transport: Transport to serve on
        host: Bind address for the SSE transport
        port: Port for the SSE transport
    """

    transport: Literal["stdio", "sse"] = Field(
        default="stdio",
        description="MCP transport",
    )
    host: str = Field(
        default="0.0.0.0",  # noqa: S104
        description="SSE bind address",
    )
    port: int = Field(
        default=8080,
        gt=0,
        lt=65536,
        description="SSE port",
    )


class SpotinfoConfig(BaseModel):
    """Root configuration, one section per concern. Unknown sections are ignored."""

    model_config = {"extra": "ignore"}

    http_client: HttpClientConfig = Field(default_factory=HttpClientConfig)
    scores: ScoreConfig = Field(default_factory=ScoreConfig)
    mcp: MCPConfig = Field(default_factory=MCPConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    # Shortcuts used by the download retry loop
    @property
    def timeout(self) -> float:
        return self.http_client.timeout

    @property
    def max_retries(self) -> int:
        return self.http_client.max_retries

    @property
    def backoff_factor(self) -> float:
        return self.http_client.backoff_factor

    @property
    def base_delay(self) -> float:
        return self.http_client.base_delay

    @classmethod
    def from_yaml(cls, path: Path) -> Self:
        """Validate a single YAML file.

        Raises:
            FileNotFoundError: If ``path`` does not exist
            ValueError: If the YAML is malformed or a value is out of range
        """
        if not path.exists():
            msg = f"Configuration file not found: {path}"
            raise FileNotFoundError(msg)

        with path.open("r") as f:
            data = yaml.safe_load(f)

        return cls.model_validate(data or {})

    @classmethod
    def load_defaults(cls) -> Self:
        return cls.from_yaml(DEFAULTS_PATH)

    @classmethod
    def load(cls, path: Path | None = None, environ: Mapping[str, str] | None = None) -> Self:
        """Resolve the effective configuration.

        Args:
            path: Optional user YAML file layered over the defaults; only the
                keys it sets replace the defaults
            environ: Environment mapping (defaults to ``os.environ``)
        """
        data = cls.load_defaults().model_dump()
        if path is not None:
            user = cls.from_yaml(path).model_dump(exclude_unset=True)
            data = _deep_merge(data, user)
        data = _deep_merge(data, _env_overrides(os.environ if environ is None else environ))
        return cls.model_validate(data)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    if transport := environ.get("SPOTINFO_MCP_TRANSPORT"):
        overrides.setdefault("mcp", {})["transport"] = transport.lower()
    if port := environ.get("SPOTINFO_MCP_PORT"):
        overrides.setdefault("mcp", {})["port"] = port
    if level := environ.get("SPOTINFO_LOG_LEVEL"):
        overrides.setdefault("observability", {})["log_level"] = level.upper()
    if offline := environ.get("SPOTINFO_OFFLINE"):
        overrides.setdefault("http_client", {})["offline"] = offline.lower() in {"1", "true", "yes"}
    return overrides


default_config = SpotinfoConfig.load_defaults()

__all__ = [
    "MAX_SCORE_CONCURRENCY",
    "HttpClientConfig",
    "MCPConfig",
    "ObservabilityConfig",
    "ScoreConfig",
    "SpotinfoConfig",
    "default_config",
]
