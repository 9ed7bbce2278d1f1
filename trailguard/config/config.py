"""
Configuration models for trailguard.

Uses Pydantic for validation and type safety. Values come from
config.yaml (with ${VAR} expansion), then from the flat environment
variable names the bot has always used (TRACK_INTERVAL_SEC, BOT_TOKEN, ...).
"""
import os
import re
from decimal import Decimal
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from trailguard.exceptions import ConfigurationError

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

# Flat env var -> (section, key)
LEGACY_ENV_OVERRIDES = {
    "TRACK_INTERVAL_SEC": ("tracker", "track_interval_seconds"),
    "STOPLOSS_PERCENT": ("tracker", "stoploss_percent"),
    "TRAILING_TRIGGER_PERCENT": ("tracker", "trailing_trigger_percent"),
    "BOT_TOKEN": ("telegram", "bot_token"),
    "CHAT_ID": ("telegram", "admin_chat_id"),
    "SIGNER_URL": ("execution", "signer_url"),
    "PRICE_API_URL": ("price_feed", "base_url"),
    "DATABASE_URL": ("storage", "database_url"),
}

_ENV_PATTERN = re.compile(r'\$\{([^}]+)\}|\$([a-zA-Z_][a-zA-Z0-9_]*)')


class TrackerConfig(BaseSettings):
    """Polling cadence and exit-rule thresholds."""
    model_config = SettingsConfigDict(extra="ignore")

    track_interval_seconds: float = Field(default=120.0, gt=0, description="Seconds between price checks per position")
    stoploss_percent: float = Field(default=20.0, gt=0, le=100, description="Close when loss from entry reaches this")
    trailing_trigger_percent: float = Field(default=20.0, gt=0, le=100, description="Close when drawdown from peak reaches this")
    store_sync_interval_seconds: float = Field(default=30.0, gt=0, description="How often newly opened positions are picked up from the store")

    @property
    def stoploss_pct(self) -> Decimal:
        return Decimal(str(self.stoploss_percent))

    @property
    def trailing_pct(self) -> Decimal:
        return Decimal(str(self.trailing_trigger_percent))


class PriceFeedConfig(BaseSettings):
    """Token price API."""
    model_config = SettingsConfigDict(extra="ignore")

    base_url: str = "https://api.jup.ag/price/v2"
    timeout_seconds: float = Field(default=8.0, gt=0, le=60)


class ExecutionConfig(BaseSettings):
    """Signer service that performs the actual sells."""
    model_config = SettingsConfigDict(extra="ignore")

    # None = no signer deployed; every close request fails and tracking continues
    signer_url: Optional[str] = None
    timeout_seconds: float = Field(default=30.0, gt=0, le=300)


class TelegramConfig(BaseSettings):
    """Telegram delivery and command handling."""
    model_config = SettingsConfigDict(extra="ignore")

    enabled: bool = True
    bot_token: Optional[str] = None
    admin_chat_id: Optional[str] = None
    api_base: str = "https://api.telegram.org"
    poll_interval_seconds: float = Field(default=5.0, gt=0, le=60)
    timeout_seconds: float = Field(default=10.0, gt=0, le=60)

    @field_validator("admin_chat_id", mode="before")
    @classmethod
    def coerce_chat_id(cls, v):
        return str(v) if v is not None and v != "" else None


class StorageConfig(BaseSettings):
    """Position store."""
    model_config = SettingsConfigDict(extra="ignore")

    database_url: str = "sqlite:///data/positions.db"


class MonitoringConfig(BaseSettings):
    """Logging configuration."""
    model_config = SettingsConfigDict(extra="ignore")

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Optional[str] = "logs/run.log"


class SystemConfig(BaseSettings):
    """System metadata."""
    model_config = SettingsConfigDict(extra="ignore")

    name: str = "trailguard"
    version: str = "1.6.0"


class Config(BaseSettings):
    """Main configuration class."""
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        extra="ignore",
    )

    system: SystemConfig = Field(default_factory=SystemConfig)
    tracker: TrackerConfig = Field(default_factory=TrackerConfig)
    price_feed: PriceFeedConfig = Field(default_factory=PriceFeedConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    environment: Literal["dev", "prod"] = "prod"

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> "Config":
        """Load configuration from YAML file."""
        yaml_path = Path(yaml_path)
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        with open(yaml_path, "r") as f:
            raw_content = f.read()

        # Unset variables expand to empty, which YAML reads as null
        def replace_match(match):
            var_name = match.group(1) or match.group(2)
            return os.environ.get(var_name, "")

        expanded_content = _ENV_PATTERN.sub(replace_match, raw_content)
        config_dict = yaml.safe_load(expanded_content) or {}

        if "ENVIRONMENT" in os.environ:
            config_dict["environment"] = os.environ["ENVIRONMENT"]

        for env_name, (section, key) in LEGACY_ENV_OVERRIDES.items():
            value = os.environ.get(env_name)
            if value:
                config_dict.setdefault(section, {})
                if config_dict[section] is None:
                    config_dict[section] = {}
                config_dict[section][key] = value

        return cls(**config_dict)

    def validate_config(self) -> None:
        """Checks that need more than one field."""
        if self.tracker.store_sync_interval_seconds > self.tracker.track_interval_seconds * 10:
            raise ConfigurationError(
                "store_sync_interval_seconds is more than 10x track_interval_seconds; "
                "new positions would wait too long for their first check"
            )


def fail_fast_startup(config: Config) -> None:
    """
    Validate what the long-running service needs before any tracking starts.

    Raises:
        ConfigurationError: If Telegram is enabled without credentials
    """
    if config.telegram.enabled:
        missing = []
        if not config.telegram.bot_token:
            missing.append("BOT_TOKEN")
        if not config.telegram.admin_chat_id:
            missing.append("CHAT_ID")
        if missing:
            raise ConfigurationError(
                f"Missing {' and '.join(missing)}. Set them in .env or disable telegram in config.yaml"
            )


def load_config(config_path: str | Path | None = None) -> Config:
    """
    Load and validate configuration.

    Args:
        config_path: Path to config.yaml file. If None, uses trailguard/config/config.yaml

    Raises:
        FileNotFoundError: If config file not found
        ConfigurationError / pydantic.ValidationError: If validation fails
    """
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH

    config = Config.from_yaml(config_path)
    config.validate_config()

    return config
