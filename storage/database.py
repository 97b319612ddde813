"""
Local key/value storage for the feed.

Stands in for the browser's localStorage/sessionStorage: a single SQLite
file holding JSON values under string keys, split into namespaces
("local", "session"). Every component reads and writes through this one
interface so persistence failures are handled in one place.

Writes are last-writer-wins. Listeners registered with subscribe() are
told which key changed after every write through this instance. Writes made
through another instance on the same file (another open view) are picked up
by poll(), which compares per-key versions against the last ones seen and
notifies listeners the same way.
"""

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional

from config import storage_config

logger = logging.getLogger(__name__)

LOCAL = "local"
SESSION = "session"


class QuotaExceededError(Exception):
    """Raised when a write would push a namespace past its quota."""


class SQLiteStore(ABC):
    """
    Shared connection handling for the SQLite-backed stores.

    Attributes:
        db_path: Path to the SQLite database file
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or storage_config.database_path
        self._init_database()

    @contextmanager
    def _get_connection(self):
        """
        Context manager for database connections.

        Commits on success, rolls back on error, always closes.
        """
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    @abstractmethod
    def _init_database(self):
        """Create the tables this store needs."""
        pass


class LocalStore(SQLiteStore):
    """
    Namespaced JSON key/value store.

    Attributes:
        namespace: "local" (persists) or "session" (cleared on sign-out)
        quota_bytes: Maximum total size of keys plus values in this namespace
    """

    def __init__(
        self,
        db_path: Optional[str] = None,
        namespace: str = LOCAL,
        quota_bytes: Optional[int] = None
    ):
        self.namespace = namespace
        self.quota_bytes = quota_bytes if quota_bytes is not None else storage_config.quota_bytes
        self._listeners: List[Callable[[str], None]] = []
        self._versions: Dict[str, int] = {}
        super().__init__(db_path)
        self._versions = self._read_versions()

    def _init_database(self):
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    version INTEGER NOT NULL DEFAULT 0,
                    PRIMARY KEY (namespace, key)
                )
            """)
            columns = [r["name"] for r in conn.execute("PRAGMA table_info(kv)").fetchall()]
            if "version" not in columns:
                conn.execute("ALTER TABLE kv ADD COLUMN version INTEGER NOT NULL DEFAULT 0")

            # Single-row write counter shared by every namespace
            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv_clock (
                    id INTEGER PRIMARY KEY CHECK (id = 0),
                    version INTEGER NOT NULL
                )
            """)
            conn.execute("INSERT OR IGNORE INTO kv_clock (id, version) VALUES (0, 0)")
        logger.debug(f"Local store ready: {self.db_path} [{self.namespace}]")

    # ------------------------------------------------------------------
    # Raw access
    # ------------------------------------------------------------------

    def get_raw(self, key: str) -> Optional[str]:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT value FROM kv WHERE namespace = ? AND key = ?",
                (self.namespace, key)
            ).fetchone()
            return row["value"] if row else None

    def set_raw(self, key: str, value: str):
        """
        Store a string value.

        Raises:
            QuotaExceededError: If the namespace would exceed its quota
        """
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT COALESCE(SUM(LENGTH(key) + LENGTH(value)), 0) FROM kv "
                "WHERE namespace = ? AND key != ?",
                (self.namespace, key)
            ).fetchone()
            used = row[0]
            needed = len(key) + len(value)
            if used + needed > self.quota_bytes:
                raise QuotaExceededError(
                    f"Writing {key!r} needs {needed} bytes, "
                    f"{self.quota_bytes - used} of {self.quota_bytes} left"
                )
            version = self._tick(conn)
            conn.execute(
                "INSERT OR REPLACE INTO kv (namespace, key, value, updated_at, version) "
                "VALUES (?, ?, ?, CURRENT_TIMESTAMP, ?)",
                (self.namespace, key, value, version)
            )
        self._versions[key] = version
        self._notify(key)

    def remove(self, key: str):
        with self._get_connection() as conn:
            conn.execute(
                "DELETE FROM kv WHERE namespace = ? AND key = ?",
                (self.namespace, key)
            )
        self._versions.pop(key, None)
        self._notify(key)

    def keys(self) -> List[str]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT key FROM kv WHERE namespace = ? ORDER BY key",
                (self.namespace,)
            ).fetchall()
            return [r["key"] for r in rows]

    def clear(self):
        """Remove every key in this namespace."""
        removed = self.keys()
        with self._get_connection() as conn:
            conn.execute("DELETE FROM kv WHERE namespace = ?", (self.namespace,))
        self._versions = {}
        for key in removed:
            self._notify(key)

    # ------------------------------------------------------------------
    # JSON access
    # ------------------------------------------------------------------

    def get_json(self, key: str, default: Any = None) -> Any:
        """
        Read and decode a JSON value.

        Malformed JSON is treated as absent.
        """
        raw = self.get_raw(key)
        if raw is None:
            return default
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning(f"Malformed JSON under {key!r}, treating as empty")
            return default

    def set_json(self, key: str, value: Any):
        """
        Encode and store a JSON value.

        Raises:
            QuotaExceededError: If the namespace would exceed its quota
        """
        self.set_raw(key, json.dumps(value, separators=(",", ":")))

    def get_number(self, key: str, default: int = 0) -> int:
        """Read a numeric watermark; anything unparseable yields the default."""
        raw = self.get_raw(key)
        if raw is None:
            return default
        try:
            return int(float(raw))
        except (ValueError, OverflowError):
            return default

    def set_number(self, key: str, value: int):
        self.set_raw(key, str(int(value)))

    # ------------------------------------------------------------------
    # Change notification
    # ------------------------------------------------------------------

    def subscribe(self, callback: Callable[[str], None]):
        """Call `callback(key)` after every write to this store."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[[str], None]):
        if callback in self._listeners:
            self._listeners.remove(callback)

    @staticmethod
    def _tick(conn) -> int:
        conn.execute("UPDATE kv_clock SET version = version + 1 WHERE id = 0")
        return conn.execute("SELECT version FROM kv_clock WHERE id = 0").fetchone()[0]

    def _read_versions(self) -> Dict[str, int]:
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT key, version FROM kv WHERE namespace = ?",
                (self.namespace,)
            ).fetchall()
            return {r["key"]: r["version"] for r in rows}

    def poll(self) -> List[str]:
        """
        Pick up writes made through other instances on the same database.

        Every key added, rewritten or removed since this instance last
        looked is passed to the listeners.

        Returns:
            The changed keys, sorted
        """
        current = self._read_versions()
        changed = sorted(
            key for key in set(current) | set(self._versions)
            if current.get(key) != self._versions.get(key)
        )
        self._versions = current
        if changed:
            logger.debug(f"{len(changed)} key(s) changed elsewhere in [{self.namespace}]")
        for key in changed:
            self._notify(key)
        return changed

    def _notify(self, key: str):
        for callback in list(self._listeners):
            try:
                callback(key)
            except Exception as e:
                logger.error(f"Storage listener failed for {key!r}: {e}")
