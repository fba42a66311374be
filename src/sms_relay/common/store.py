import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import closing
from pathlib import Path
from typing import Dict, Mapping, Optional

from loguru import logger

from sms_relay.common.config import SQLiteStoreConfig, StoreType
from sms_relay.common.models import Credential, ForwardingState


KEY_API_TOKEN = "api_token"
KEY_CHAT_ID = "chat_id"
KEY_LAST_STATUS = "last_forward_status"
KEY_FORWARDING_ENABLED = "forwarding_enabled"
KEY_FIRST_RUN = "first_run"


class KeyValueBackend(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def put_many(self, values: Mapping[str, Optional[str]]) -> None:
        """Write all values in one atomic step. A None value removes the key."""
        pass

    def close(self) -> None:
        pass


class MemoryBackend(KeyValueBackend):
    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._data.get(key)

    def put_many(self, values: Mapping[str, Optional[str]]) -> None:
        with self._lock:
            for key, value in values.items():
                if value is None:
                    self._data.pop(key, None)
                else:
                    self._data[key] = value


class SQLiteBackend(KeyValueBackend):
    def __init__(self, config: SQLiteStoreConfig):
        self.path = Path(config.path)
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._conn = sqlite3.connect(str(self.path), check_same_thread=False)
        with self._conn:
            self._conn.execute(
                "CREATE TABLE IF NOT EXISTS settings ("
                "key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )

        logger.info(f"Initialized SQLite settings store at {self.path}")

    def get(self, key: str) -> Optional[str]:
        with self._lock, closing(self._conn.cursor()) as cur:
            cur.execute("SELECT value FROM settings WHERE key = ?", (key,))
            row = cur.fetchone()
        return row[0] if row else None

    def put_many(self, values: Mapping[str, Optional[str]]) -> None:
        with self._lock, self._conn:
            for key, value in values.items():
                if value is None:
                    self._conn.execute("DELETE FROM settings WHERE key = ?", (key,))
                else:
                    self._conn.execute(
                        "INSERT INTO settings(key, value) VALUES(?, ?) "
                        "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                        (key, value),
                    )

    def close(self) -> None:
        with self._lock:
            self._conn.close()


def create_backend(
    store_type: StoreType,
    sqlite_config: Optional[SQLiteStoreConfig] = None,
) -> KeyValueBackend:
    if store_type == StoreType.SQLITE:
        if not sqlite_config:
            raise ValueError("SQLite store selected but no SQLite configuration provided")
        return SQLiteBackend(sqlite_config)
    elif store_type == StoreType.MEMORY:
        return MemoryBackend()
    else:
        raise ValueError(f"Unsupported store type: {store_type}")


def _encode_bool(value: bool) -> str:
    return "true" if value else "false"


def _decode_bool(value: Optional[str], default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() == "true"


class ConfigStore:
    """Persisted credential, forwarding flags and the last status line."""

    def __init__(self, backend: KeyValueBackend, forwarding_enabled_default: bool = True):
        self.backend = backend
        self.forwarding_enabled_default = forwarding_enabled_default

    def save_credential(self, token: str, destination_id: str) -> None:
        self.backend.put_many(
            {
                KEY_API_TOKEN: (token or "").strip(),
                KEY_CHAT_ID: (destination_id or "").strip(),
            }
        )

    def load_credential(self) -> Optional[Credential]:
        token = (self.backend.get(KEY_API_TOKEN) or "").strip()
        destination_id = (self.backend.get(KEY_CHAT_ID) or "").strip()
        if not token or not destination_id:
            return None
        return Credential(token=token, destination_id=destination_id)

    def is_first_run(self) -> bool:
        flag = self.backend.get(KEY_FIRST_RUN)
        if flag is not None:
            return _decode_bool(flag, True)
        return not (self.backend.get(KEY_API_TOKEN) or "").strip()

    def set_first_run(self, first_run: bool) -> None:
        self.backend.put_many({KEY_FIRST_RUN: _encode_bool(first_run)})

    def complete_onboarding(self) -> None:
        self.set_first_run(False)

    def is_forwarding_enabled(self) -> bool:
        return _decode_bool(
            self.backend.get(KEY_FORWARDING_ENABLED), self.forwarding_enabled_default
        )

    def set_forwarding_enabled(self, enabled: bool) -> None:
        self.backend.put_many({KEY_FORWARDING_ENABLED: _encode_bool(enabled)})

    def save_last_status(self, status: str) -> None:
        self.backend.put_many({KEY_LAST_STATUS: status})

    def load_last_status(self) -> Optional[str]:
        return self.backend.get(KEY_LAST_STATUS)

    def state(self) -> ForwardingState:
        return ForwardingState(
            enabled=self.is_forwarding_enabled(),
            last_status=self.load_last_status(),
            first_run=self.is_first_run(),
        )

    def reset(self) -> None:
        self.backend.put_many(
            {
                KEY_API_TOKEN: None,
                KEY_CHAT_ID: None,
                KEY_LAST_STATUS: None,
                KEY_FORWARDING_ENABLED: _encode_bool(False),
                KEY_FIRST_RUN: _encode_bool(True),
            }
        )
        logger.info("Settings reset to defaults")
