import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from sms_relay.common.config import (
    MetricsConfig,
    RelayConfig,
    SQLiteStoreConfig,
    StoreType,
)
from sms_relay.common.models import SmsEvent, Success
from sms_relay.common.store import ConfigStore, MemoryBackend
from sms_relay.forwarder.client import TelegramClient
from sms_relay.forwarder.orchestrator import (
    ForwardingOrchestrator,
    StatusNotifier,
    WorkTracker,
)
from sms_relay.receiver.server import create_app


FIXED_NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


class StubTelegramClient(TelegramClient):
    """Telegram client that records calls instead of talking to the network."""

    def __init__(self, result=None):
        super().__init__()
        self.result = result if result is not None else Success()
        self.sent = []

        # Create mocks that we can use to override behavior in tests
        self._send_mock = AsyncMock(side_effect=self._send_impl)
        self._list_mock = AsyncMock(return_value=Success(value=[]))

    async def send(self, token, destination_id, text):
        return await self._send_mock(token, destination_id, text)

    async def list_destinations(self, token):
        return await self._list_mock(token)

    async def _send_impl(self, token, destination_id, text):
        self.sent.append((token, destination_id, text))
        return self.result


def make_session_mock(status=200, text="{}"):
    """Build a mock aiohttp session whose get/post return one response."""
    mock_response = MagicMock()
    mock_response.status = status
    mock_response.text = AsyncMock(return_value=text)
    mock_response.json = AsyncMock(side_effect=lambda content_type="application/json": json.loads(text))

    cm = MagicMock()
    cm.__aenter__ = AsyncMock(return_value=mock_response)
    cm.__aexit__ = AsyncMock(return_value=None)

    mock_session = MagicMock()
    mock_session.__aenter__ = AsyncMock(return_value=mock_session)
    mock_session.__aexit__ = AsyncMock(return_value=None)
    mock_session.post.return_value = cm
    mock_session.get.return_value = cm
    return mock_session


@pytest.fixture
def memory_store():
    """Fixture that provides a config store backed by memory."""
    return ConfigStore(MemoryBackend())


@pytest.fixture
def configured_store(memory_store):
    """Fixture that provides a store with a saved credential."""
    memory_store.save_credential("123:ABC", "987654")
    return memory_store


@pytest.fixture
def stub_client():
    return StubTelegramClient()


@pytest.fixture
def notifier():
    return StatusNotifier()


@pytest.fixture
def tracker():
    return WorkTracker()


@pytest.fixture
def orchestrator(configured_store, stub_client, notifier, tracker):
    """Fixture that provides an orchestrator with a fixed clock."""
    return ForwardingOrchestrator(
        store=configured_store,
        client=stub_client,
        notifier=notifier,
        tracker=tracker,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def sample_event():
    return SmsEvent(
        originating_address="12345",
        fragments=["hello"],
        received_at=FIXED_NOW,
    )


@pytest.fixture
def relay_config(tmp_path):
    """Fixture that provides a relay configuration using a temporary database."""
    return RelayConfig(
        log_level="INFO",
        store_type=StoreType.SQLITE,
        sqlite_config=SQLiteStoreConfig(path=str(tmp_path / "relay.db")),
        metrics=MetricsConfig(enabled=False),
        host="127.0.0.1",
        port=8000,
        shutdown_timeout=1,
    )


@pytest.fixture
def receiver_app(relay_config, orchestrator):
    """Fixture that provides a receiver app wired to the test orchestrator."""
    with patch(
        "sms_relay.forwarder.app.get_orchestrator"
    ) as mock_get_orchestrator, patch(
        "sms_relay.forwarder.app.get_store"
    ) as mock_get_store:
        mock_get_orchestrator.return_value = orchestrator
        mock_get_store.return_value = orchestrator.store
        app = create_app(relay_config)
        yield app


@pytest.fixture
def receiver_client(receiver_app):
    """Fixture that provides a test client for the receiver API."""
    return TestClient(receiver_app)


@pytest.fixture
def session_mock():
    """Fixture that provides the factory for mock aiohttp sessions."""
    return make_session_mock
