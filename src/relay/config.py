"""Configuration schema for the relay server.

Defines Pydantic models for loading and validating relay configuration
from YAML files and environment variables.
"""

import os
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, Field, field_validator


class WebSocketConfig(BaseModel):
    """WebSocket transport configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=8080, ge=0, le=65535, description="Bind port (0 = ephemeral)")
    max_connections: int = Field(default=100, ge=1, description="Maximum concurrent connections")
    max_message_bytes: int = Field(
        default=2**20, ge=1024, description="Maximum inbound frame size in bytes"
    )
    outbound_queue_size: int = Field(
        default=256, ge=8, description="Undelivered outbound messages per connection"
    )


class HttpConfig(BaseModel):
    """HTTP API configuration (session directory, token, health)."""

    enabled: bool = Field(default=True, description="Enable HTTP API")
    host: str = Field(default="0.0.0.0", description="Bind host address")  # noqa: S104
    port: int = Field(default=3000, ge=0, le=65535, description="Bind port (0 = ephemeral)")


class SessionLimitsConfig(BaseModel):
    """Input limits enforced on join and send."""

    max_session_id_length: int = Field(default=128, ge=1, le=1024)
    max_display_name_length: int = Field(default=64, ge=1, le=256)
    max_message_length: int = Field(default=8000, ge=1, le=1_000_000)


class TokenConfig(BaseModel):
    """Upstream realtime model credential issuance."""

    api_key: str | None = Field(default=None, description="Upstream API key (server side only)")
    base_url: str = Field(
        default="https://api.openai.com/v1/realtime/sessions",
        description="Ephemeral session endpoint",
    )
    model: str = Field(default="gpt-4o-mini-realtime-preview-2024-12-17")
    voice: str = Field(default="verse")
    timeout_s: float = Field(default=10.0, gt=0, le=120)


class RelayConfig(BaseModel):
    """Root relay configuration."""

    websocket: WebSocketConfig = Field(default_factory=WebSocketConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    limits: SessionLimitsConfig = Field(default_factory=SessionLimitsConfig)
    token: TokenConfig = Field(default_factory=TokenConfig)

    # Operational settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    graceful_shutdown_timeout_s: int = Field(
        default=10,
        ge=1,
        description="Graceful shutdown timeout in seconds",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate logging level name."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}, got '{v}'")
        return v.upper()

    @classmethod
    def from_yaml(cls, path: Path) -> "RelayConfig":
        """Load configuration from YAML file with environment variable overrides.

        Args:
            path: Path to YAML configuration file

        Returns:
            Loaded configuration

        Raises:
            FileNotFoundError: If configuration file doesn't exist
            ValueError: If YAML is invalid or validation fails
        """
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError(f"Configuration root must be a mapping: {path}")

        return cls.model_validate(apply_env_overrides(data))

    @classmethod
    def from_yaml_with_defaults(cls, path: Path | None = None) -> "RelayConfig":
        """Load configuration from YAML or use defaults if file doesn't exist.

        Environment overrides apply in both cases.
        """
        if path is not None and path.exists():
            return cls.from_yaml(path)

        return cls.model_validate(apply_env_overrides({}))


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    if not isinstance(data.get(name), dict):
        data[name] = {}
    section: dict[str, Any] = data[name]
    return section


def apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay environment variables onto raw config data.

    Supported: PORT (HTTP port), WS_PORT, OPENAI_API_KEY,
    OPENAI_REALTIME_MODEL, OPENAI_REALTIME_VOICE, LOG_LEVEL.
    """
    if port := os.getenv("PORT"):
        _section(data, "http")["port"] = int(port)

    if ws_port := os.getenv("WS_PORT"):
        _section(data, "websocket")["port"] = int(ws_port)

    if api_key := os.getenv("OPENAI_API_KEY"):
        _section(data, "token")["api_key"] = api_key

    if model := os.getenv("OPENAI_REALTIME_MODEL"):
        _section(data, "token")["model"] = model

    if voice := os.getenv("OPENAI_REALTIME_VOICE"):
        _section(data, "token")["voice"] = voice

    if log_level := os.getenv("LOG_LEVEL"):
        data["log_level"] = log_level

    return data
