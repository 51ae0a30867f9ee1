"""Persistent embedding store.

Profiles live in a SQLite database inside the store directory, one row per
profile name holding the binary record from ``codec``. The database runs in
WAL mode: a single writer commits whole-record replacements while readers keep
seeing the last committed snapshot.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, List, Union

import numpy as np

from ..errors import DimensionMismatch, StorageError
from .codec import as_embedding, decode_embeddings, encode_embeddings

logger = logging.getLogger(__name__)

DATABASE_FILENAME = "profiles.db"


class EmbeddingStore:
    """Durable mapping of profile name to an ordered list of embeddings.

    Args:
        path: Store directory. Created in read-write mode if missing.
        read_only: Open without write access. The directory must exist.
    """

    def __init__(self, path: Union[str, Path], read_only: bool = False):
        self.path = Path(path).expanduser()
        self.read_only = read_only
        self.db_path = self.path / DATABASE_FILENAME

        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._write_lock = threading.RLock()
        self._closed = False

        if read_only:
            if not self.path.is_dir():
                raise StorageError(f"Embedding store directory not found: {self.path}")
            # Nothing enrolled yet: behave as an empty store
            self._empty = not self.db_path.exists()
        else:
            try:
                self.path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Cannot create store directory {self.path}: {e}") from e
            self._empty = False
            self._init_schema()

        mode = "read-only" if read_only else "read-write"
        logger.debug(f"Opened embedding store at {self.path} ({mode})")

    # -------------------------------------------------------------------------
    # Connections and transactions
    # -------------------------------------------------------------------------

    def _get_connection(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if self._closed:
            raise StorageError("Embedding store is closed")

        conn = getattr(self._local, "connection", None)
        if conn is None:
            try:
                conn = sqlite3.connect(
                    str(self.db_path),
                    timeout=5.0,
                    isolation_level=None,
                    check_same_thread=False,
                )
                if self.read_only:
                    conn.execute("PRAGMA query_only = ON")
                else:
                    conn.execute("PRAGMA journal_mode = WAL")
                    conn.execute("PRAGMA synchronous = FULL")
            except sqlite3.Error as e:
                raise StorageError(f"Cannot open {self.db_path}: {e}") from e
            self._local.connection = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    @contextmanager
    def _transaction(self) -> Generator[sqlite3.Cursor, None, None]:
        """Run one write transaction; roll back on any failure."""
        if self.read_only:
            raise StorageError("Embedding store opened read-only")

        conn = self._get_connection()
        with self._write_lock:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise StorageError(f"Cannot begin transaction: {e}") from e

            cursor = conn.cursor()
            try:
                yield cursor
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                self._rollback(conn)
                raise StorageError(f"Transaction failed: {e}") from e
            except BaseException:
                self._rollback(conn)
                raise
            finally:
                cursor.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection):
        if not conn.in_transaction:
            return
        try:
            conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"Rollback failed: {e}")

    def _query(self, sql: str, params: tuple = ()) -> List[tuple]:
        if self._empty:
            return []
        try:
            return self._get_connection().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Read failed: {e}") from e

    def _init_schema(self):
        """Create the profiles table."""
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS profiles (
                    name TEXT PRIMARY KEY,
                    record BLOB NOT NULL
                )
            """)

    # -------------------------------------------------------------------------
    # Profile operations
    # -------------------------------------------------------------------------

    def store(self, name: str, embedding: np.ndarray) -> int:
        """Append an embedding to a profile and commit the whole record.

        Args:
            name: Profile name
            embedding: Unit-norm embedding vector

        Returns:
            Number of samples now stored for ``name``

        Raises:
            DimensionMismatch: if ``name`` holds embeddings of another length
            StorageError: on I/O failure; the previous record stays intact
        """
        if not name:
            raise ValueError("Profile name must not be empty")
        vector = as_embedding(embedding)

        with self._transaction() as cursor:
            cursor.execute("SELECT record FROM profiles WHERE name = ?", (name,))
            row = cursor.fetchone()
            samples = decode_embeddings(row[0]) if row else []

            if samples and samples[0].size != vector.size:
                raise DimensionMismatch(samples[0].size, vector.size, name)

            samples.append(vector)
            cursor.execute(
                "INSERT OR REPLACE INTO profiles (name, record) VALUES (?, ?)",
                (name, encode_embeddings(samples)),
            )

        logger.info(f"Stored embedding for {name} ({len(samples)} total)")
        return len(samples)

    def get(self, name: str) -> List[np.ndarray]:
        """Get all embeddings for a profile (empty if absent)."""
        rows = self._query("SELECT record FROM profiles WHERE name = ?", (name,))
        if not rows:
            return []
        return decode_embeddings(rows[0][0])

    def get_all(self) -> Dict[str, List[np.ndarray]]:
        """Get every profile from one consistent snapshot."""
        rows = self._query("SELECT name, record FROM profiles ORDER BY name")
        return {name: decode_embeddings(record) for name, record in rows}

    def delete(self, name: str) -> bool:
        """Remove a profile.

        Returns:
            True if the profile existed
        """
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM profiles WHERE name = ?", (name,))
            found = cursor.rowcount > 0

        if found:
            logger.info(f"Removed profile: {name}")
        return found

    def clear(self):
        """Remove every profile."""
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM profiles")
        logger.info("Embedding store cleared")

    def size(self) -> int:
        """Number of distinct profiles."""
        rows = self._query("SELECT COUNT(*) FROM profiles")
        return rows[0][0] if rows else 0

    def names(self) -> List[str]:
        """Profile names in lexicographic order."""
        return [row[0] for row in self._query("SELECT name FROM profiles ORDER BY name")]

    def sample_count(self, name: str) -> int:
        """Number of embeddings stored for ``name``."""
        return len(self.get(name))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self):
        """Close every connection opened by this store."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()
        self._closed = True

    def __enter__(self) -> "EmbeddingStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __len__(self) -> int:
        return self.size()

    def __contains__(self, name: str) -> bool:
        return bool(self._query("SELECT 1 FROM profiles WHERE name = ?", (name,)))
