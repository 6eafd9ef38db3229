"""Configuration settings using Pydantic for validation."""

import os
import re
from typing import Any, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUBSCRIPTIONS: List[str] = [
    "blocks", "ownBlocks", "transactions", "ownTransactions",
    "names", "ownNames", "motd"
]


class WsConfig(BaseModel):
    """WebSocket client configuration."""
    initial_subscriptions: List[str] = Field(default_factory=list, description="Events to subscribe to on every connection")
    initial_reconnect_seconds: float = Field(default=1.0, description="First reconnection delay")
    max_reconnect_seconds: float = Field(default=60.0, description="Upper bound of the reconnection delay")
    rate_limit_messages_per_minute: int = Field(default=120, description="Outgoing message budget shared by all clients")
    ping_interval_seconds: Optional[float] = Field(default=20.0, description="WebSocket ping interval")
    close_timeout_seconds: float = Field(default=10.0, description="WebSocket close handshake timeout")

    @field_validator('initial_subscriptions')
    @classmethod
    def validate_subscriptions(cls, v):
        for sub in v:
            if sub not in SUBSCRIPTIONS:
                raise ValueError(f"Unknown subscription '{sub}', expected one of {SUBSCRIPTIONS}")
        return v

    @field_validator('max_reconnect_seconds')
    @classmethod
    def clamp_max_reconnect(cls, v):
        return max(v, 1.0)

    @field_validator('initial_reconnect_seconds')
    @classmethod
    def validate_initial_reconnect(cls, v):
        if v <= 0:
            raise ValueError("initial_reconnect_seconds must be positive")
        return v


class RestConfig(BaseModel):
    """Krist REST API configuration."""
    request_timeout_seconds: int = Field(default=30, description="HTTP request timeout")
    rate_limit_requests_per_minute: int = Field(default=300, description="Request budget shared by all clients")


class RetryConfig(BaseModel):
    """Retry configuration for transient HTTP failures."""
    max_attempts: int = Field(default=3, description="Maximum attempts")
    initial_backoff_seconds: float = Field(default=1.0, description="Initial backoff delay")
    max_backoff_seconds: float = Field(default=10.0, description="Maximum backoff delay")
    backoff_multiplier: float = Field(default=2.0, description="Backoff multiplier")
    jitter: bool = Field(default=True, description="Add jitter to backoff")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")
    output: str = Field(default="stderr", description="Log output destination")

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        if v.lower() not in ['json', 'text']:
            raise ValueError("Format must be 'json' or 'text'")
        return v.lower()


class KristSettings(BaseSettings):
    """Main client settings."""

    model_config = SettingsConfigDict(
        env_prefix="KRIST_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    sync_node: str = Field(default="https://krist.dev/", description="Krist node base URL")
    user_agent: str = Field(default="krist.py", description="User-Agent sent to the node")

    ws: WsConfig = Field(default_factory=WsConfig)
    rest: RestConfig = Field(default_factory=RestConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('sync_node')
    @classmethod
    def validate_sync_node(cls, v):
        if not v.startswith(('http://', 'https://')):
            raise ValueError("sync_node must be an http(s) URL")
        return v if v.endswith('/') else v + '/'

    @field_validator('user_agent')
    @classmethod
    def validate_user_agent(cls, v):
        if not v:
            raise ValueError("user_agent must be non-empty")
        return v


def substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in configuration objects.

    Supports syntax:
    - ${VAR_NAME} - Required variable (raises error if not found)
    - ${VAR_NAME:-default} - Optional variable with default value

    Raises:
        ValueError: If required environment variable is not found
    """
    if isinstance(obj, dict):
        return {key: substitute_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        def replace_env_var(match):
            var_expr = match.group(1)

            if ':-' in var_expr:
                var_name, default_value = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default_value)

            var_name = var_expr.strip()
            value = os.getenv(var_name)
            if value is None:
                raise ValueError(f"Required environment variable '{var_name}' is not set")
            return value

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    else:
        return obj


def load_settings(config_file: Optional[str] = None) -> KristSettings:
    """
    Load settings from a YAML config file and environment variables.

    Args:
        config_file: Path to YAML configuration file

    Returns:
        KristSettings: Validated configuration object

    Raises:
        ValueError: If required environment variables are missing
        FileNotFoundError: If config file doesn't exist
    """
    if config_file and os.path.exists(config_file):
        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        config_data = substitute_env_vars(raw_config)
        return KristSettings(**config_data)

    elif config_file:
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    return KristSettings()
