# =============================================================================
# justice_bus/offline/local_store.py
# Durable Local Store for Offline Operations
# =============================================================================
"""
LocalStore - named partitions with get/put/delete/get_all over a durable engine.

Two engines implement the same contract:
- StructuredStore: SQLite file, one table per partition (primary tier)
- FlatStore: single JSON document (legacy tier, also usable in memory)

probe_local_store() picks the structured tier when it can be opened and falls
back to the flat tier otherwise. Adapters only see the LocalStore interface.
"""

from __future__ import annotations
import copy
import json
import os
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import pandas as pd

from justice_bus.errors import (
    DataValidationError,
    OpenError,
    StoreUnavailableError,
)
from justice_bus.logging import get_logger
from justice_bus.offline.serialization import dumps, loads, to_json_safe

logger = get_logger(__name__)

Key = Union[str, int]

SCHEMA_VERSION = 1


class Partitions:
    """Partition names shared by every feature adapter."""
    EVENTS = "events"
    FORMS = "forms"
    CASES = "cases"
    NOTIFICATIONS = "notifications"
    VERIFICATIONS = "verifications"
    SYNC_QUEUE = "sync-queue"
    SETTINGS = "app-settings"


@dataclass(frozen=True)
class PartitionConfig:
    """Definition of one partition."""
    name: str
    key_path: str = "id"
    auto_increment: bool = False


PARTITIONS: List[PartitionConfig] = [
    PartitionConfig(Partitions.EVENTS),
    PartitionConfig(Partitions.FORMS),
    PartitionConfig(Partitions.CASES),
    PartitionConfig(Partitions.NOTIFICATIONS, auto_increment=True),
    PartitionConfig(Partitions.VERIFICATIONS),
    PartitionConfig(Partitions.SYNC_QUEUE, auto_increment=True),
    PartitionConfig(Partitions.SETTINGS, key_path="key"),
]


class LocalStore(ABC):
    """
    Contract shared by every storage engine.

    Writes to an existing key overwrite the prior value. Reads never raise on
    a miss. Engine failures surface as StoreUnavailableError.
    """

    structured = False

    def __init__(self, partitions: Optional[List[PartitionConfig]] = None):
        self.partitions: Dict[str, PartitionConfig] = {
            p.name: p for p in (partitions or PARTITIONS)
        }

    @abstractmethod
    def open(self) -> LocalStore:
        """Open the engine and create missing partitions. Idempotent."""

    @abstractmethod
    def put(self, partition: str, record: Dict[str, Any], key: Optional[Key] = None) -> Key:
        """Insert or overwrite a record; returns its key."""

    @abstractmethod
    def get(self, partition: str, key: Key) -> Optional[Dict[str, Any]]:
        """Return the record stored under key, or None."""

    @abstractmethod
    def get_all(self, partition: str) -> List[Dict[str, Any]]:
        """Return every record of a partition in key order."""

    @abstractmethod
    def delete(self, partition: str, key: Key) -> None:
        """Remove a record; no-op when absent."""

    @abstractmethod
    def clear(self, partition: str) -> None:
        """Remove every record of a partition."""

    def close(self) -> None:
        """Release engine resources."""

    def keys(self, partition: str) -> List[Key]:
        key_path = self._config(partition).key_path
        return [record[key_path] for record in self.get_all(partition)]

    def to_dataframe(self, partition: str) -> pd.DataFrame:
        """
        Load a partition into a pandas DataFrame.

        Nested payloads are kept as objects in their own column.
        """
        records = self.get_all(partition)
        if not records:
            return pd.DataFrame(columns=[self._config(partition).key_path])
        return pd.DataFrame.from_records(records)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _config(self, partition: str) -> PartitionConfig:
        config = self.partitions.get(partition)
        if config is None:
            raise StoreUnavailableError(
                f"Unknown partition: {partition}",
                partition=partition,
            )
        return config

    def _prepare(
        self,
        partition: str,
        record: Dict[str, Any],
        key: Optional[Key],
    ) -> tuple[PartitionConfig, Dict[str, Any], Optional[Key]]:
        """Resolve the record key and return a JSON-safe copy without it."""
        config = self._config(partition)
        if not isinstance(record, dict):
            raise DataValidationError(
                f"Records stored in {partition} must be mappings",
                field="record",
                expected="dict",
                actual=type(record).__name__,
            )

        value = to_json_safe(dict(record))
        if key is None:
            key = value.get(config.key_path)
        value.pop(config.key_path, None)

        if key is None and not config.auto_increment:
            raise DataValidationError(
                f"Record for {partition} has no '{config.key_path}'",
                field=config.key_path,
            )
        return config, value, key


# =============================================================================
# STRUCTURED TIER (SQLite)
# =============================================================================

class StructuredStore(LocalStore):
    """
    SQLite-backed store. One table per partition holding JSON values.

    A single connection is shared across threads; the lock serializes
    transactions the way the browser engine does per partition.
    """

    structured = True

    def __init__(
        self,
        db_path: Union[str, Path],
        partitions: Optional[List[PartitionConfig]] = None,
        timeout: float = 5.0,
    ):
        super().__init__(partitions)
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self.timeout = timeout
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._opened = False

    def open(self) -> StructuredStore:
        with self._lock:
            if self._opened:
                return self

            try:
                if isinstance(self.db_path, Path):
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=self.timeout,
                    check_same_thread=False,
                )
                version = conn.execute("PRAGMA user_version").fetchone()[0]
            except (sqlite3.Error, OSError) as e:
                raise OpenError(f"Failed to open local store: {e}", path=str(self.db_path)) from e

            if version > SCHEMA_VERSION:
                conn.close()
                raise OpenError(
                    f"Local store schema v{version} is newer than supported v{SCHEMA_VERSION}",
                    path=str(self.db_path),
                )

            try:
                for config in self.partitions.values():
                    conn.execute(self._create_sql(config))
                    logger.debug(f"Created/verified partition: {config.name}")
                conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
                conn.commit()
            except sqlite3.Error as e:
                conn.close()
                raise OpenError(f"Failed to create partitions: {e}", path=str(self.db_path)) from e

            self._connection = conn
            self._opened = True
            logger.info(f"Local store opened at: {self.db_path}")
            return self

    @staticmethod
    def _create_sql(config: PartitionConfig) -> str:
        if config.auto_increment:
            return (
                f'CREATE TABLE IF NOT EXISTS "{config.name}" ('
                "id INTEGER PRIMARY KEY AUTOINCREMENT, value TEXT NOT NULL)"
            )
        return (
            f'CREATE TABLE IF NOT EXISTS "{config.name}" ('
            "key PRIMARY KEY, value TEXT NOT NULL)"
        )

    @contextmanager
    def transaction(self, partition: str, operation: str) -> Iterator[sqlite3.Connection]:
        """Context manager for one transaction; engine errors become StoreUnavailableError."""
        self.open()
        with self._lock:
            conn = self._connection
            try:
                yield conn
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StoreUnavailableError(
                    f"Transaction aborted: {e}",
                    partition=partition,
                    operation=operation,
                ) from e
            except Exception:
                conn.rollback()
                raise

    def _key_column(self, config: PartitionConfig) -> str:
        return "id" if config.auto_increment else "key"

    def _row_to_record(self, config: PartitionConfig, key: Key, value: str) -> Dict[str, Any]:
        return {config.key_path: key, **loads(value)}

    def put(self, partition: str, record: Dict[str, Any], key: Optional[Key] = None) -> Key:
        config, value, key = self._prepare(partition, record, key)
        payload = dumps(value)

        with self.transaction(partition, "put") as conn:
            if key is None:
                cursor = conn.execute(
                    f'INSERT INTO "{partition}" (value) VALUES (?)',
                    [payload],
                )
                key = cursor.lastrowid
            else:
                conn.execute(
                    f'INSERT OR REPLACE INTO "{partition}" ({self._key_column(config)}, value) VALUES (?, ?)',
                    [key, payload],
                )
        return key

    def get(self, partition: str, key: Key) -> Optional[Dict[str, Any]]:
        config = self._config(partition)
        with self.transaction(partition, "get") as conn:
            row = conn.execute(
                f'SELECT value FROM "{partition}" WHERE {self._key_column(config)} = ?',
                [key],
            ).fetchone()
        if row is None:
            return None
        return self._row_to_record(config, key, row[0])

    def get_all(self, partition: str) -> List[Dict[str, Any]]:
        config = self._config(partition)
        column = self._key_column(config)
        with self.transaction(partition, "get_all") as conn:
            rows = conn.execute(
                f'SELECT {column}, value FROM "{partition}" ORDER BY {column} ASC'
            ).fetchall()
        return [self._row_to_record(config, k, v) for k, v in rows]

    def delete(self, partition: str, key: Key) -> None:
        config = self._config(partition)
        with self.transaction(partition, "delete") as conn:
            conn.execute(
                f'DELETE FROM "{partition}" WHERE {self._key_column(config)} = ?',
                [key],
            )

    def clear(self, partition: str) -> None:
        self._config(partition)
        with self.transaction(partition, "clear") as conn:
            conn.execute(f'DELETE FROM "{partition}"')

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
            self._opened = False


# =============================================================================
# FLAT TIER (JSON document)
# =============================================================================

class FlatStore(LocalStore):
    """
    Flat key/value store persisted as one JSON document.

    Plays the role of the legacy storage tier: free-form items addressed by
    string keys (get_item/set_item) alongside the partition contract. With
    path=None it keeps everything in memory.

    Document layout:
    {
      "items": {"offline_form_queue": [...], ...},
      "partitions": {"sync-queue": {"seq": 3, "records": {"1": {...}}}}
    }
    """

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        partitions: Optional[List[PartitionConfig]] = None,
    ):
        super().__init__(partitions)
        self.path = Path(path) if path else None
        self._doc: Dict[str, Any] = {"items": {}, "partitions": {}}
        self._lock = threading.RLock()
        self._opened = False

    def open(self) -> FlatStore:
        with self._lock:
            if self._opened:
                return self

            if self.path is not None and self.path.exists():
                try:
                    with open(self.path, "r") as f:
                        doc = json.load(f)
                except (json.JSONDecodeError, OSError) as e:
                    raise OpenError(f"Failed to read flat store: {e}", path=str(self.path)) from e
                self._doc = {
                    "items": doc.get("items", {}),
                    "partitions": doc.get("partitions", {}),
                }

            for name in self.partitions:
                self._doc["partitions"].setdefault(name, {"seq": 0, "records": {}})

            self._opened = True
            self._save("open")
            return self

    def _save(self, operation: str) -> None:
        """Write the document atomically."""
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            with open(tmp_path, "w") as f:
                json.dump(self._doc, f, indent=2)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise StoreUnavailableError(
                f"Failed to write flat store: {e}",
                operation=operation,
            ) from e

    def _partition(self, partition: str) -> Dict[str, Any]:
        self._config(partition)
        self.open()
        return self._doc["partitions"][partition]

    # =========================================================================
    # FLAT KEY/VALUE API
    # =========================================================================

    def get_item(self, key: str) -> Any:
        with self._lock:
            self.open()
            return copy.deepcopy(self._doc["items"].get(key))

    def set_item(self, key: str, value: Any) -> None:
        safe = to_json_safe(value)
        with self._lock:
            self.open()
            self._doc["items"][key] = safe
            self._save("set_item")

    def remove_item(self, key: str) -> None:
        with self._lock:
            self.open()
            if self._doc["items"].pop(key, None) is not None:
                self._save("remove_item")

    def item_keys(self, prefix: str = "") -> List[str]:
        with self._lock:
            self.open()
            return [k for k in self._doc["items"] if k.startswith(prefix)]

    # =========================================================================
    # PARTITION API
    # =========================================================================

    def put(self, partition: str, record: Dict[str, Any], key: Optional[Key] = None) -> Key:
        config, value, key = self._prepare(partition, record, key)
        with self._lock:
            part = self._partition(partition)
            if key is None:
                part["seq"] += 1
                key = part["seq"]
            elif config.auto_increment and isinstance(key, int):
                part["seq"] = max(part["seq"], key)
            part["records"][str(key)] = {config.key_path: key, **value}
            self._save("put")
        return key

    def get(self, partition: str, key: Key) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._partition(partition)["records"].get(str(key))
            return copy.deepcopy(record) if record is not None else None

    def get_all(self, partition: str) -> List[Dict[str, Any]]:
        config = self._config(partition)
        with self._lock:
            records = copy.deepcopy(list(self._partition(partition)["records"].values()))
        if config.auto_increment:
            return sorted(records, key=lambda r: r[config.key_path])
        return sorted(records, key=lambda r: str(r[config.key_path]))

    def delete(self, partition: str, key: Key) -> None:
        with self._lock:
            if self._partition(partition)["records"].pop(str(key), None) is not None:
                self._save("delete")

    def clear(self, partition: str) -> None:
        with self._lock:
            self._partition(partition)["records"].clear()
            self._save("clear")


# =============================================================================
# CAPABILITY PROBE
# =============================================================================

def probe_local_store(
    db_path: Union[str, Path],
    flat_path: Optional[Union[str, Path]] = None,
) -> LocalStore:
    """
    Open the best available storage tier.

    Args:
        db_path: SQLite file for the structured tier
        flat_path: JSON file for the flat tier (None keeps it in memory)

    Returns:
        An opened LocalStore
    """
    try:
        return StructuredStore(db_path).open()
    except StoreUnavailableError as e:
        logger.warning(f"Structured store unavailable, falling back to flat store: {e}")

    try:
        return FlatStore(flat_path).open()
    except StoreUnavailableError as e:
        logger.warning(f"Flat store unavailable, keeping offline data in memory: {e}")
        return FlatStore(None).open()


def can_function_offline(store: LocalStore) -> bool:
    """Check whether the structured tier backs the offline system."""
    if not store.structured:
        logger.warning("Structured store is not available - offline mode will be limited")
        return False
    return True
