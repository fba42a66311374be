"""HTTP receiver that turns inbound SMS webhooks into forwarding events."""

from sms_relay.receiver.server import create_app, run_server

__all__ = [
    "create_app",
    "run_server",
]
