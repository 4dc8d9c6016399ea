"""Configuration settings using Pydantic for validation."""

from typing import List, Optional, Any, Tuple, Type
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict
import os
import re


class BybitConfig(BaseModel):
    """Bybit private stream configuration."""
    ws_url: str = Field(default="wss://stream.bybit.com/v5/private", description="Bybit v5 private WebSocket URL")
    handshake_timeout_seconds: float = Field(default=10.0, description="WebSocket opening handshake timeout")
    auth_timeout_seconds: float = Field(default=5.0, description="Deadline for the authentication reply")
    auth_expiry_ms: int = Field(default=10000, description="Validity window of the signed auth request")
    read_timeout_seconds: float = Field(default=60.0, description="Read deadline, refreshed by reads and pongs")
    ping_interval_seconds: float = Field(default=20.0, description="Interval between protocol pings")
    ping_timeout_seconds: float = Field(default=10.0, description="Send deadline for a single ping")
    close_timeout_seconds: float = Field(default=5.0, description="Closing handshake timeout")
    topics: List[str] = Field(
        default=["order", "execution", "position", "wallet"],
        description="Private topics to subscribe to"
    )


class ReconnectConfig(BaseModel):
    """Reconnect policy for account connections."""
    initial_delay_seconds: float = Field(default=5.0, description="Initial backoff delay")
    max_delay_seconds: float = Field(default=300.0, description="Maximum backoff delay")
    multiplier: float = Field(default=2.0, description="Backoff multiplier")
    failure_threshold: int = Field(default=10, description="Consecutive failures before cooling down")
    cooldown_seconds: float = Field(default=30.0, description="Cooldown once the failure threshold is hit")
    stop_timeout_seconds: float = Field(default=5.0, description="How long stop waits for a connection task")

    @field_validator('failure_threshold')
    @classmethod
    def validate_threshold(cls, v):
        if v < 1:
            raise ValueError("failure_threshold must be at least 1")
        return v


class AggregationConfig(BaseModel):
    """Debounce windows and filters for event aggregation."""
    category: str = Field(default="inverse", description="Only this product category is reported")
    wallet_account_type: str = Field(default="UNIFIED", description="Wallet account type that is tracked")
    order_window_seconds: float = Field(default=2.0, description="Debounce window for new orders")
    cancel_window_seconds: float = Field(default=2.0, description="Debounce window for cancellations")
    execution_window_seconds: float = Field(default=300.0, description="Debounce window for the position summary")
    quick_fill_ms: int = Field(default=3000, description="Limit fills faster than this are reported as new orders")
    dust_threshold: float = Field(default=10.0, description="Coins worth less than this (USD) are skipped")


class NotificationConfig(BaseModel):
    """Outbound webhook configuration."""
    request_timeout_seconds: float = Field(default=10.0, description="HTTP request timeout")
    timezone: str = Field(default="America/Sao_Paulo", description="Timezone of the footer timestamp")
    timezone_label: str = Field(default="GMT-3", description="Label printed next to the footer timestamp")
    alert_icon: str = Field(default="🔔", description="First line of every notification")
    max_message_length: int = Field(default=2000, description="Longest message the webhook accepts")


class StorageConfig(BaseModel):
    """Account store configuration."""
    accounts_file: str = Field(default="data/accounts.json", description="JSON file holding monitored accounts")


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = Field(default="INFO", description="Log level")
    format: str = Field(default="text", description="Log format: json or text")
    output: str = Field(default="stdout", description="Log output destination: stdout, stderr or file")
    log_dir: str = Field(default="data/logs", description="Directory for file logs")
    max_bytes: int = Field(default=10 * 1024 * 1024, description="Rotate log files after this size")
    backup_count: int = Field(default=5, description="Rotated log files to keep")

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        if v.upper() not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
            raise ValueError(f"Unknown log level: {v}")
        return v.upper()


class HealthConfig(BaseModel):
    """Health check service configuration."""
    enabled: bool = Field(default=True, description="Serve health and metrics endpoints")
    port: int = Field(default=8080, description="Health check server port")
    host: str = Field(default="0.0.0.0", description="Health check server host")


class NotifierSettings(BaseSettings):
    """Main notifier service settings."""

    service_name: str = Field(default="bybit-notifier", description="Service name")
    environment: str = Field(default="local", description="Environment: local, dev, prod")

    bybit: BybitConfig = Field(default_factory=BybitConfig)
    reconnect: ReconnectConfig = Field(default_factory=ReconnectConfig)
    aggregation: AggregationConfig = Field(default_factory=AggregationConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)

    @field_validator('environment')
    @classmethod
    def validate_environment(cls, v):
        if v not in ['local', 'dev', 'prod', 'test']:
            raise ValueError("Environment must be 'local', 'dev', 'prod' or 'test'")
        return v

    model_config = SettingsConfigDict(
        env_prefix="NOTIFIER_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """NOTIFIER_ environment variables override values loaded from the YAML file."""
        return env_settings, dotenv_settings, init_settings, file_secret_settings


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
            else:
                var_name = var_expr.strip()
                value = os.getenv(var_name)
                if value is None:
                    raise ValueError(f"Required environment variable '{var_name}' is not set")
                return value

        return re.sub(r'\$\{([^}]+)\}', replace_env_var, obj)
    else:
        return obj


def load_settings(config_file: Optional[str] = None) -> NotifierSettings:
    """
    Load settings from config file and environment variables.

    Args:
        config_file: Path to YAML configuration file

    Returns:
        NotifierSettings: Validated configuration object

    Raises:
        ValueError: If required environment variables are missing
        FileNotFoundError: If config file doesn't exist
    """
    if config_file and os.path.exists(config_file):
        import yaml

        with open(config_file, 'r') as f:
            raw_config = yaml.safe_load(f) or {}

        config_data = substitute_env_vars(raw_config)
        return NotifierSettings(**config_data)

    elif config_file:
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    return NotifierSettings()
