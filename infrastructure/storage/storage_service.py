"""
Storage service - key/value persistence for conversations and UI preferences.

Three interchangeable backing stores share one contract:
- SQLiteStorageService: durable across restarts
- SessionStateStorageService: lives as long as the Streamlit session
- MemoryStorageService: process memory only

Values are stored JSON-encoded. Every operation tolerates an unavailable medium:
failures are logged at warning level and degrade to a no-op or the default value.
"""

import json
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, MutableMapping, Optional

import streamlit as st

from config.app_config import StorageConfig
from infrastructure.monitoring.logging_service import get_logger


class StorageKeys:
    """Logical keys persisted by the engine"""
    CONVERSATIONS = "conversations"
    CURRENT_CONVERSATION = "current-conversation-id"
    UI_STATE = "ui-state"
    THEME = "theme"
    LANGUAGE = "language"

    CHAT_KEYS = (CONVERSATIONS, CURRENT_CONVERSATION)
    PREFERENCE_KEYS = (UI_STATE, THEME, LANGUAGE)


class StorageService(ABC):
    """
    Base class for key/value storage.
    Subclasses only move raw strings; encoding and failure handling live here.
    """

    medium_name = "storage"

    def __init__(self, namespace: str = "dbaas_chat"):
        self.namespace = namespace
        self.logger = get_logger(__name__)

    @abstractmethod
    def _read(self, full_key: str) -> Optional[str]:
        """Return the raw value for a key, or None when absent"""

    @abstractmethod
    def _write(self, full_key: str, raw: str) -> None:
        """Store a raw value"""

    @abstractmethod
    def _delete(self, full_key: str) -> None:
        """Delete a key if present"""

    @abstractmethod
    def _list_keys(self) -> List[str]:
        """List every raw key held by the medium"""

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}:{key}" if self.namespace else key

    def _owns(self, full_key: str) -> bool:
        if not self.namespace:
            return True
        return full_key.startswith(f"{self.namespace}:")

    def _warn_unavailable(self, operation: str, key: Optional[str], error: Exception):
        target = f" key '{key}'" if key else ""
        self.logger.warning(
            f"{self.medium_name} unavailable during {operation}{target}: {error.__class__.__name__}: {error}"
        )

    def is_available(self) -> bool:
        """Check the medium with a throwaway write"""
        test_key = self._full_key("__storage_test__")
        try:
            self._write(test_key, "1")
            self._delete(test_key)
            return True
        except Exception:
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Get a decoded value, or default when absent or unreadable"""
        try:
            raw = self._read(self._full_key(key))
        except Exception as e:
            self._warn_unavailable("get", key, e)
            return default

        if raw is None:
            return default

        try:
            return json.loads(raw)
        except (TypeError, ValueError) as e:
            self.logger.warning(f"Discarding unreadable value for key '{key}': {e}")
            return default

    def set(self, key: str, value: Any) -> None:
        """Encode and store a JSON-serializable value"""
        try:
            raw = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            self.logger.warning(f"Value for key '{key}' is not JSON-serializable: {e}")
            return

        try:
            self._write(self._full_key(key), raw)
        except Exception as e:
            self._warn_unavailable("set", key, e)

    def remove(self, key: str) -> None:
        """Remove a key"""
        try:
            self._delete(self._full_key(key))
        except Exception as e:
            self._warn_unavailable("remove", key, e)

    def clear(self) -> None:
        """Remove every key in this service's namespace"""
        try:
            for full_key in self._list_keys():
                if self._owns(full_key):
                    self._delete(full_key)
        except Exception as e:
            self._warn_unavailable("clear", None, e)

    def keys(self) -> List[str]:
        """List logical keys in this namespace"""
        try:
            full_keys = self._list_keys()
        except Exception as e:
            self._warn_unavailable("keys", None, e)
            return []

        prefix_length = len(self.namespace) + 1 if self.namespace else 0
        return [k[prefix_length:] for k in full_keys if self._owns(k)]


class SQLiteStorageService(StorageService):
    """Durable storage in a single SQLite key/value table"""

    medium_name = "SQLite storage"

    def __init__(self, db_path: str = "data/chat_storage.db", namespace: str = "dbaas_chat"):
        super().__init__(namespace)
        self.db_path = db_path
        self._initialized = False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if not self._initialized:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(self.db_path)
        try:
            if not self._initialized:
                conn.execute('''
                    CREATE TABLE IF NOT EXISTS kv_store (
                        key TEXT PRIMARY KEY,
                        value TEXT NOT NULL,
                        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                    )
                ''')
                self._initialized = True
            yield conn
            conn.commit()
        finally:
            conn.close()

    def _read(self, full_key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (full_key,)).fetchone()
        return row[0] if row else None

    def _write(self, full_key: str, raw: str) -> None:
        with self._connect() as conn:
            conn.execute('''
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            ''', (full_key, raw))

    def _delete(self, full_key: str) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM kv_store WHERE key = ?", (full_key,))

    def _list_keys(self) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute("SELECT key FROM kv_store ORDER BY key").fetchall()
        return [row[0] for row in rows]


class SessionStateStorageService(StorageService):
    """
    Session-scoped storage backed by Streamlit's session state.
    Any mutable mapping can be injected in place of st.session_state.
    """

    medium_name = "Session state storage"

    def __init__(self, session_state: Optional[MutableMapping] = None, namespace: str = "dbaas_chat"):
        super().__init__(namespace)
        self._session_state = session_state

    @property
    def session_state(self) -> MutableMapping:
        if self._session_state is not None:
            return self._session_state
        return st.session_state

    def _read(self, full_key: str) -> Optional[str]:
        if full_key not in self.session_state:
            return None
        return self.session_state[full_key]

    def _write(self, full_key: str, raw: str) -> None:
        self.session_state[full_key] = raw

    def _delete(self, full_key: str) -> None:
        if full_key in self.session_state:
            del self.session_state[full_key]

    def _list_keys(self) -> List[str]:
        return [str(key) for key in list(self.session_state.keys())]


class MemoryStorageService(StorageService):
    """In-memory storage, lost when the process exits"""

    medium_name = "Memory storage"

    def __init__(self, namespace: str = "dbaas_chat"):
        super().__init__(namespace)
        self._storage: Dict[str, str] = {}

    def _read(self, full_key: str) -> Optional[str]:
        return self._storage.get(full_key)

    def _write(self, full_key: str, raw: str) -> None:
        self._storage[full_key] = raw

    def _delete(self, full_key: str) -> None:
        self._storage.pop(full_key, None)

    def _list_keys(self) -> List[str]:
        return list(self._storage.keys())


def create_storage_service(config: StorageConfig) -> StorageService:
    """
    Build the storage service selected by configuration

    Args:
        config: Storage configuration

    Returns:
        StorageService for the configured backend
    """
    if config.backend == "sqlite":
        return SQLiteStorageService(db_path=config.db_path, namespace=config.namespace)
    elif config.backend == "session":
        return SessionStateStorageService(namespace=config.namespace)
    elif config.backend == "memory":
        return MemoryStorageService(namespace=config.namespace)

    raise ValueError(f"Unknown storage backend: {config.backend}")
