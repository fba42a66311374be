"""Common configuration, models and storage for the SMS relay."""

from sms_relay.common.config import (
    BaseConfig,
    MetricsConfig,
    RelayConfig,
    SQLiteStoreConfig,
    StoreType,
    TelegramConfig,
    load_config_from_file,
)
from sms_relay.common.models import (
    Credential,
    DestinationInfo,
    Failure,
    ForwardingState,
    InboundMessage,
    OutboundResult,
    SmsEvent,
    Success,
)
from sms_relay.common.store import (
    ConfigStore,
    KeyValueBackend,
    MemoryBackend,
    SQLiteBackend,
    create_backend,
)
from sms_relay.common.metrics import (
    MetricsRegistry,
    metrics,
    measure_time,
    start_metrics_server,
)

__all__ = [
    # Config
    "BaseConfig",
    "MetricsConfig",
    "RelayConfig",
    "SQLiteStoreConfig",
    "StoreType",
    "TelegramConfig",
    "load_config_from_file",
    # Models
    "Credential",
    "DestinationInfo",
    "Failure",
    "ForwardingState",
    "InboundMessage",
    "OutboundResult",
    "SmsEvent",
    "Success",
    # Store
    "ConfigStore",
    "KeyValueBackend",
    "MemoryBackend",
    "SQLiteBackend",
    "create_backend",
    # Metrics
    "MetricsRegistry",
    "metrics",
    "measure_time",
    "start_metrics_server",
]
