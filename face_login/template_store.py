"""
Template Store Module

This module handles persistence of the single enrolled face template.

The system has exactly one profile: the store holds zero or one template,
every save replaces the previous one, and clear removes it. The template is
kept as one record in a key-value backend:

- InMemoryKeyValueStore: dict-backed, for tests and throwaway hosts
- SqliteKeyValueStore: a single-table SQLite database file

The record value is a JSON object:

    {"descriptor": [0.0123, ...], "dim": 128, "enrolled_at": "2026-..."}

A bare JSON array of floats (descriptor only) is accepted when loading.

Usage:
    from face_login.template_store import TemplateStore, SqliteKeyValueStore

    store = TemplateStore(SqliteKeyValueStore("storage/face_login.sqlite"))
    store.save(embedding)
    if store.exists():
        enrolled = store.load()
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

import numpy as np

from face_login.errors import NoTemplate
from face_login.face_embedder import as_embedding

# Setup logging
logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_KEY = "face_descriptor"


class KeyValueStore(ABC):
    """Durable string key-value storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the value stored under key, or None."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store value under key, replacing any previous value."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Deleting a missing key is not an error."""
        pass

    def close(self) -> None:
        """Release backend resources."""


class InMemoryKeyValueStore(KeyValueStore):
    """Key-value store kept in a dict. Contents vanish with the process."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqliteKeyValueStore(KeyValueStore):
    """
    Key-value store backed by a SQLite database file.

    Attributes:
        db_path: Path to the SQLite database file.
    """

    def __init__(self, db_path: str):
        """
        Open (and if needed create) the database.

        Args:
            db_path: Path to SQLite database file. Parent directories are created.
        """
        self.db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None

        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

        logger.info(f"SqliteKeyValueStore initialized: db={self.db_path}")

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get or create the SQLite connection.

        The connection may be used from the event loop thread and from
        worker threads; callers serialize access (see TemplateStore).
        """
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_database(self) -> None:
        """Create the kv table if it doesn't exist."""
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()
        logger.debug("Database schema initialized")

    def get(self, key: str) -> Optional[str]:
        cursor = self._get_connection().execute(
            "SELECT value FROM kv WHERE key = ?", (key,)
        )
        row = cursor.fetchone()
        return None if row is None else row["value"]

    def set(self, key: str, value: str) -> None:
        conn = self._get_connection()
        conn.execute("""
            INSERT INTO kv (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                           updated_at = excluded.updated_at
        """, (key, value))
        conn.commit()

    def delete(self, key: str) -> None:
        conn = self._get_connection()
        conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        conn.commit()

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.debug("Database connection closed")


@dataclass(frozen=True)
class EnrolledTemplate:
    """
    The enrolled embedding together with its enrollment time.

    Attributes:
        embedding: Read-only float64 vector of shape (D,).
        enrolled_at: ISO timestamp of enrollment, None for legacy records.
    """

    embedding: np.ndarray
    enrolled_at: Optional[str] = None

    @property
    def dim(self) -> int:
        return int(self.embedding.shape[0])


class TemplateStore:
    """
    Single-slot storage of the enrolled face embedding.

    All operations are serialized with a lock so that sessions sharing a
    store never observe a half-finished save or clear.
    """

    def __init__(self, backend: KeyValueStore, key: str = DEFAULT_TEMPLATE_KEY):
        self.backend = backend
        self.key = key
        self._lock = threading.Lock()

    def exists(self) -> bool:
        """Return True if a template is enrolled."""
        with self._lock:
            return self.backend.get(self.key) is not None

    def load(self) -> np.ndarray:
        """
        Load the enrolled embedding.

        Returns:
            Read-only float64 embedding equal to the one last saved.

        Raises:
            NoTemplate: If nothing is enrolled or the record is unreadable.
        """
        return self.load_record().embedding

    def load_record(self) -> EnrolledTemplate:
        """
        Load the enrolled embedding and its metadata.

        Raises:
            NoTemplate: If nothing is enrolled or the record is unreadable.
        """
        with self._lock:
            raw = self.backend.get(self.key)

        if raw is None:
            raise NoTemplate()

        try:
            return self._decode(raw)
        except (ValueError, TypeError, KeyError) as e:
            logger.warning(f"Stored template under '{self.key}' is unreadable: {e}")
            raise NoTemplate(f"Stored template is unreadable: {e}") from e

    def save(self, embedding: np.ndarray) -> None:
        """
        Save an embedding as the enrolled template, replacing any existing one.

        Args:
            embedding: 1-D vector of finite floats.
        """
        embedding = as_embedding(embedding)
        record = {
            "descriptor": embedding.tolist(),
            "dim": int(embedding.shape[0]),
            "enrolled_at": datetime.now().isoformat(),
        }
        # json writes floats with repr(), which round-trips float64 exactly
        value = json.dumps(record)

        with self._lock:
            self.backend.set(self.key, value)

        logger.info(f"Saved face template ({record['dim']}-d)")

    def clear(self) -> None:
        """Remove the enrolled template. Clearing an empty store is a no-op."""
        with self._lock:
            self.backend.delete(self.key)
        logger.info("Cleared face template")

    def close(self) -> None:
        self.backend.close()

    @staticmethod
    def _decode(raw: str) -> EnrolledTemplate:
        data = json.loads(raw)

        if isinstance(data, list):
            return EnrolledTemplate(embedding=as_embedding(data))

        embedding = as_embedding(data["descriptor"])
        dim = data.get("dim")
        if dim is not None and int(dim) != embedding.shape[0]:
            raise ValueError(
                f"descriptor has {embedding.shape[0]} values, record says {dim}"
            )
        return EnrolledTemplate(embedding=embedding, enrolled_at=data.get("enrolled_at"))


# Singleton instance for the store
_store_instance: Optional[TemplateStore] = None


def create_template_store(config: Optional[dict] = None) -> TemplateStore:
    """
    Build a TemplateStore from a storage configuration section.

    Args:
        config: Dictionary with optional keys:
            - backend: "sqlite" (default) or "memory"
            - db_path: SQLite file, relative paths resolved against the project root
            - key: Record key (default "face_descriptor")

    Raises:
        ValueError: If the backend name is unknown.
    """
    from face_login.config import resolve_path

    if config is None:
        config = {}

    backend_name = config.get("backend", "sqlite")
    key = config.get("key", DEFAULT_TEMPLATE_KEY)

    if backend_name == "memory":
        backend = InMemoryKeyValueStore()
    elif backend_name == "sqlite":
        db_path = resolve_path(config.get("db_path", "storage/face_login.sqlite"))
        backend = SqliteKeyValueStore(str(db_path))
    else:
        raise ValueError(f"Unknown storage backend: {backend_name}")

    return TemplateStore(backend, key=key)


def get_template_store() -> TemplateStore:
    """
    Get or create the singleton TemplateStore instance.

    The first call builds the store from the "storage" config section;
    subsequent calls return the same instance.
    """
    global _store_instance

    if _store_instance is None:
        from face_login.config import get_storage_config

        _store_instance = create_template_store(get_storage_config())

    return _store_instance
