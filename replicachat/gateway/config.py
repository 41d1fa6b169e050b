"""Configuration management for ReplicaChat: pydantic-settings + TOML."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from replicachat.constants import (
    CHAT_TIMEOUT,
    CONFIG_FILE,
    DEFAULT_API_VERSION,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_UPSTREAM_URL,
    REPLICA_ATTEMPT_TIMEOUT,
    REPLICA_MAX_ATTEMPTS,
    RETRY_BACKOFF_DELAY,
    USER_ATTEMPT_TIMEOUT,
    USER_CACHE_FILE,
    USER_MAX_ATTEMPTS,
)
from replicachat.upstream.retry import RetryPolicy


class GatewayConfig(BaseSettings):
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    cors_origins: list[str] = ["http://localhost:3000"]
    max_request_bytes: int = 10 * 1024 * 1024

    model_config = {"env_prefix": "REPLICACHAT_GATEWAY_"}

    @field_validator("host")
    @classmethod
    def validate_host(cls, v: str) -> str:
        if v == "0.0.0.0":
            raise ValueError(
                "Binding to 0.0.0.0 is FORBIDDEN by default. "
                "Put a reverse proxy in front of the gateway instead."
            )
        return v


class UpstreamConfig(BaseSettings):
    api_url: str = DEFAULT_UPSTREAM_URL
    api_version: str = DEFAULT_API_VERSION
    org_secret: str = ""
    chat_timeout_seconds: float = CHAT_TIMEOUT

    model_config = {"env_prefix": "REPLICACHAT_UPSTREAM_"}

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Upstream api_url must be an http(s) URL")
        return v.rstrip("/")


class RetryConfig(BaseSettings):
    user_max_attempts: int = USER_MAX_ATTEMPTS
    user_attempt_timeout_seconds: float = USER_ATTEMPT_TIMEOUT
    replica_max_attempts: int = REPLICA_MAX_ATTEMPTS
    replica_attempt_timeout_seconds: float = REPLICA_ATTEMPT_TIMEOUT
    backoff_seconds: float = RETRY_BACKOFF_DELAY

    model_config = {"env_prefix": "REPLICACHAT_RETRY_"}

    @property
    def user_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.user_max_attempts,
            per_attempt_timeout=self.user_attempt_timeout_seconds,
            backoff_delay=self.backoff_seconds,
        )

    @property
    def replica_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.replica_max_attempts,
            per_attempt_timeout=self.replica_attempt_timeout_seconds,
            backoff_delay=self.backoff_seconds,
        )


class CacheConfig(BaseSettings):
    user_cache_path: Path = USER_CACHE_FILE

    model_config = {"env_prefix": "REPLICACHAT_CACHE_"}


class LoggingConfig(BaseSettings):
    level: str = "INFO"
    format: str = "json"
    redact_secrets: bool = True  # CRITICAL: Always True in production

    model_config = {"env_prefix": "REPLICACHAT_LOGGING_"}


class ReplicaChatConfig(BaseSettings):
    """Root configuration for ReplicaChat. Loads from TOML + env vars."""

    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"env_prefix": "REPLICACHAT_"}


def load_config(config_path: Path | None = None) -> ReplicaChatConfig:
    """
    Load configuration from TOML file with env var overrides.

    Priority (highest to lowest):
    1. Environment variables (REPLICACHAT_<SECTION>_*)
    2. User config file (~/.replicachat/config.toml)
    3. Default config (config/default.toml)
    """
    import tomli

    merged: dict[str, Any] = {}

    default_path = Path(__file__).parent.parent.parent / "config" / "default.toml"
    if default_path.exists():
        with open(default_path, "rb") as f:
            merged = tomli.load(f)

    user_path = config_path or CONFIG_FILE
    if user_path.exists():
        with open(user_path, "rb") as f:
            merged = _deep_merge(merged, tomli.load(f))

    # Init kwargs beat env vars in pydantic-settings, so only pass file values
    # the environment doesn't override.
    return ReplicaChatConfig(
        gateway=_section(GatewayConfig, merged.get("gateway", {})),
        upstream=_section(UpstreamConfig, merged.get("upstream", {})),
        retry=_section(RetryConfig, merged.get("retry", {})),
        cache=_section(CacheConfig, merged.get("cache", {})),
        logging=_section(LoggingConfig, merged.get("logging", {})),
    )


def _section(cls: type[BaseSettings], values: dict[str, Any]) -> BaseSettings:
    prefix = cls.model_config.get("env_prefix", "")
    file_values = {
        k: v for k, v in values.items()
        if f"{prefix}{k}".upper() not in {name.upper() for name in os.environ}
    }
    return cls(**file_values)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts. Override values take precedence."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result
