"""
Configuration module for Vault Bridge.

Uses pydantic-settings for configuration management with environment variable support.
Environment variables use VAULT_BRIDGE_ prefix (e.g., VAULT_BRIDGE_VAULT_PATH).
"""

import os
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

VERSION = "0.1.2"

DEFAULT_PORT = 27182

LOOPBACK_HOSTS = ("127.0.0.1", "localhost", "::1")


def _get_default_vault_path() -> Path:
    """Get default vault path based on platform."""
    if os.name == "nt":  # Windows
        return Path.home() / "Documents" / "Vault"
    else:  # Linux/macOS
        return Path.home() / "Documents" / "Vault"


def _get_default_config_dir() -> Path:
    """Get the directory holding the bearer token file."""
    return Path.home() / ".vault-bridge"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Environment variables:
    - VAULT_BRIDGE_VAULT_PATH: Path to the note vault
    - VAULT_BRIDGE_HOST / VAULT_BRIDGE_PORT: Loopback listen address
    - VAULT_BRIDGE_CONFIG_DIR: Directory holding the token file
    - VAULT_BRIDGE_MAX_BODY_SIZE: Request body cap in bytes
    - VAULT_BRIDGE_REQUEST_TIMEOUT: Per-request handler deadline in seconds
    - VAULT_BRIDGE_SHUTDOWN_TIMEOUT: Drain window for in-flight requests
    - VAULT_BRIDGE_BATCH_SIZE: Concurrency width of bulk note scans
    - VAULT_BRIDGE_CACHE_TTL: Metadata index TTL in seconds
    """

    vault_path: Path = Field(default_factory=_get_default_vault_path)
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    config_dir: Path = Field(default_factory=_get_default_config_dir)
    token_file: str = "token"
    max_body_size: int = 10 * 1024 * 1024  # 10MiB
    request_timeout: float = 30.0
    shutdown_timeout: float = 5.0
    batch_size: int = 50
    graph_snapshot_limit: int = 100
    cache_ttl: int = 60
    cors_origins: list[str] = ["app://obsidian.md", "http://localhost", "http://127.0.0.1"]
    templates_folders: list[str] = ["Templates", "templates", "_templates"]
    daily_folder: str = "Daily"
    daily_format: str = "%Y-%m-%d"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="VAULT_BRIDGE_")

    @field_validator("host")
    @classmethod
    def _loopback_only(cls, value: str) -> str:
        if value not in LOOPBACK_HOSTS:
            raise ValueError(f"host must be a loopback address, got {value!r}")
        return value

    @property
    def token_path(self) -> Path:
        return self.config_dir / self.token_file


# Global settings instance
settings = Settings()
