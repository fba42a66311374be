"""Forwarding pipeline: Telegram client, orchestrator and CLI."""

from sms_relay.forwarder.app import (
    cli,
    get_app_config,
    get_orchestrator,
    get_store,
    setup_app,
)
from sms_relay.forwarder.client import TelegramClient
from sms_relay.forwarder.orchestrator import (
    ForwardingOrchestrator,
    KeepAlive,
    StatusNotifier,
    WorkTracker,
)

__all__ = [
    "get_app_config",
    "get_orchestrator",
    "get_store",
    "setup_app",
    "cli",
    "TelegramClient",
    "ForwardingOrchestrator",
    "KeepAlive",
    "StatusNotifier",
    "WorkTracker",
]
