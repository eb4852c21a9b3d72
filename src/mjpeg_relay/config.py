"""
mjpeg-relay Configuration
=========================

This module handles configuration loading for the MJPEG relay.

Configuration Sources (in order of precedence):
    1. Environment variables (highest priority)
    2. mjpeg_relay.yaml file
    3. Default values (lowest priority)

Environment Variable Mapping:
    MJPEG_RELAY_HOST              -> server.host
    MJPEG_RELAY_PORT              -> server.port
    MJPEG_RELAY_MODE              -> relay.mode
    MJPEG_RELAY_RETRY_BACKOFF_MS  -> relay.retry_backoff_ms
    MJPEG_RELAY_LOG_LEVEL         -> logging.level

Importing this module never configures logging. Host processes call
setup_logging() themselves.

Example:
    from mjpeg_relay.config import settings

    print(settings.server.port)
    print(settings.relay.mode)
"""

import os
import logging
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field


logger = logging.getLogger(__name__)


# =============================================================================
# Configuration Models
# =============================================================================

class ServerConfig(BaseModel):
    """Listener configuration."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8088, ge=0, le=65535, description="Bind port (0 = ephemeral)")
    backlog: int = Field(default=128, ge=1, description="listen() backlog")


class RelayConfig(BaseModel):
    """Frame distribution configuration."""

    mode: Literal["broadcast", "shared"] = Field(
        default="broadcast",
        description="'broadcast' copies every frame to each viewer, "
                    "'shared' hands each frame to a single viewer",
    )
    retry_backoff_ms: int = Field(
        default=500,
        ge=10,
        description="Wait before a viewer retries a receive on a closed relay",
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")


class Settings(BaseModel):
    """
    Main settings class for mjpeg-relay.

    Loads configuration from YAML file and environment variables.
    Environment variables take precedence over file values.
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# Configuration Loading
# =============================================================================

def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file and environment variables.

    Priority (highest to lowest):
        1. Environment variables
        2. YAML config file
        3. Default values

    Args:
        config_path: Path to mjpeg_relay.yaml. If None, searches the working directory.

    Returns:
        Settings: Loaded configuration

    Raises:
        pydantic.ValidationError: If a value is out of range
    """
    if config_path is None:
        for path in (Path("mjpeg_relay.yaml"), Path("mjpeg_relay.yml")):
            if path.exists():
                config_path = str(path)
                break

    config_data = {}
    if config_path and Path(config_path).exists():
        logger.info(f"Loading config from: {config_path}")
        with open(config_path, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        logger.debug("No config file found, using defaults and environment variables")

    _apply_env_overrides(config_data)

    return Settings.model_validate(config_data)


def _apply_env_overrides(config_data: dict) -> None:
    """Apply environment variable overrides to config data."""

    # Server settings
    if env_host := os.environ.get("MJPEG_RELAY_HOST"):
        config_data.setdefault("server", {})["host"] = env_host
    if env_port := os.environ.get("MJPEG_RELAY_PORT"):
        config_data.setdefault("server", {})["port"] = env_port

    # Relay settings
    if env_mode := os.environ.get("MJPEG_RELAY_MODE"):
        config_data.setdefault("relay", {})["mode"] = env_mode
    if env_backoff := os.environ.get("MJPEG_RELAY_RETRY_BACKOFF_MS"):
        config_data.setdefault("relay", {})["retry_backoff_ms"] = env_backoff

    # Logging settings
    if env_log := os.environ.get("MJPEG_RELAY_LOG_LEVEL"):
        config_data.setdefault("logging", {})["level"] = env_log


def setup_logging(settings: Settings) -> None:
    """Configure logging based on settings."""
    log_level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    if settings.logging.format == "json":
        log_format = '{"time": "%(asctime)s", "level": "%(levelname)s", "module": "%(name)s", "thread": "%(threadName)s", "message": "%(message)s"}'
    else:
        log_format = "%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        datefmt="%Y-%m-%dT%H:%M:%S",
    )


# =============================================================================
# Global Settings Instance
# =============================================================================

settings = load_config()
