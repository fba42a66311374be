from enum import Enum
from pathlib import Path
from typing import Optional, Type, TypeVar

import yaml
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class StoreType(str, Enum):
    SQLITE = "sqlite"
    MEMORY = "memory"


class SQLiteStoreConfig(BaseModel):
    path: str = "sms_relay.db"


class TelegramConfig(BaseModel):
    api_base: str = "https://api.telegram.org"
    connect_timeout: float = 15  # seconds
    read_timeout: float = 30  # seconds
    total_timeout: float = 30  # seconds
    max_message_length: int = 3900


class MetricsConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 9090
    path: str = "/metrics"


class BaseConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="SMS_RELAY_",
        extra="ignore",
    )

    log_level: str = "INFO"
    store_type: StoreType = StoreType.SQLITE
    sqlite_config: Optional[SQLiteStoreConfig] = SQLiteStoreConfig()
    telegram: TelegramConfig = TelegramConfig()
    metrics: MetricsConfig = MetricsConfig()
    # Whether forwarding is on before the user has ever toggled it
    forwarding_enabled_default: bool = True

    def validate_store_config(self) -> None:
        if self.store_type == StoreType.SQLITE and not self.sqlite_config:
            raise ValueError("SQLite store selected but no SQLite configuration provided")


class RelayConfig(BaseConfig):
    host: str = "127.0.0.1"
    port: int = 8000
    shutdown_timeout: float = 35  # seconds


ConfigT = TypeVar("ConfigT", bound=BaseConfig)


def load_config_from_file(
    config_path: str, config_class: Type[ConfigT] = RelayConfig
) -> ConfigT:
    """Load configuration from a YAML file."""
    file_path = Path(config_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(file_path, "r") as f:
        config_data = yaml.safe_load(f) or {}

    return config_class.model_validate(config_data)
