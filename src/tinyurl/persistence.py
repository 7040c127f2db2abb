"""
Persistence layer for short key mappings.

Defines the storage contract consumed by the submission pipeline and two
implementations: an in-memory store and a SQLite-backed store. Both support
the CSV bulk export used by the admin dump endpoint.
"""

import sqlite3
import threading
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, Optional

from .audit_logger import AuditLogger, LoggingMixin
from .exceptions import StorageError
from .models import UrlRecord


DUMP_HEADER = "token,url,created-unix-epoch-utc"
DUMP_ENCODING = "iso-8859-1"
CRLF = b"\r\n"


def write_dump(records: Iterable[UrlRecord], stream: BinaryIO) -> int:
    """
    Write records as CSV: header line, then one CRLF-terminated record per line.

    Text is encoded as ISO-8859-1, unencodable characters become '?'.

    Returns:
        Number of records written
    """
    count = 0
    stream.write(DUMP_HEADER.encode(DUMP_ENCODING))
    stream.write(CRLF)
    for record in records:
        line = f"{record.key},{record.url},{int(record.created_at)}"
        stream.write(line.encode(DUMP_ENCODING, errors="replace"))
        stream.write(CRLF)
        count += 1
    stream.flush()
    return count


class Persistence(ABC):
    """Storage contract for short key mappings."""

    @abstractmethod
    def open(self) -> None:
        """Open the storage. Raises StorageError on failure."""

    @abstractmethod
    def close(self) -> None:
        """Close the storage."""

    @abstractmethod
    def put(self, key: str, url: str) -> None:
        """Insert or replace the mapping for key."""

    @abstractmethod
    def put_if_absent(self, key: str, url: str) -> bool:
        """Insert the mapping only if key is free. Returns False if key was taken."""

    @abstractmethod
    def get(self, key: str) -> Optional[UrlRecord]:
        """Return the record stored under key, or None."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove the mapping for key (no error if absent)."""

    @abstractmethod
    def dump(self, stream: BinaryIO) -> int:
        """Export every record to stream. Returns the record count."""

    def __enter__(self) -> "Persistence":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class MemoryStorage(LoggingMixin, Persistence):
    """Process-local store, ordered by key on export."""

    _component = "MemoryStorage"

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._records: dict[str, UrlRecord] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._logger = logger

    def open(self) -> None:
        self._log_debug("Memory storage opened")

    def close(self) -> None:
        pass

    def put(self, key: str, url: str) -> None:
        record = UrlRecord(key=key, url=url, created_at=int(self._clock()))
        with self._lock:
            self._records[key] = record

    def put_if_absent(self, key: str, url: str) -> bool:
        record = UrlRecord(key=key, url=url, created_at=int(self._clock()))
        with self._lock:
            return self._records.setdefault(key, record) is record

    def get(self, key: str) -> Optional[UrlRecord]:
        with self._lock:
            return self._records.get(key)

    def remove(self, key: str) -> None:
        with self._lock:
            self._records.pop(key, None)

    def dump(self, stream: BinaryIO) -> int:
        with self._lock:
            records = [self._records[k] for k in sorted(self._records)]
        return write_dump(records, stream)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class SqliteStorage(LoggingMixin, Persistence):
    """
    SQLite-backed store.

    A single connection is shared between threads and serialized with a lock.
    """

    _component = "SqliteStorage"

    TABLE_CREATE = (
        "CREATE TABLE IF NOT EXISTS mapping ("
        " token TEXT PRIMARY KEY NOT NULL,"
        " url TEXT NOT NULL,"
        " timestamp INTEGER NOT NULL"
        ")"
    )

    def __init__(
        self,
        path: Path,
        clock: Callable[[], float] = time.time,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._path = Path(path)
        self._clock = clock
        self._logger = logger
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def open(self) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self._path), check_same_thread=False)
            conn.execute(self.TABLE_CREATE)
            conn.commit()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(
                code="open_failed",
                message=f"Failed to open storage: {e}",
                details={"path": str(self._path)},
            )
        self._conn = conn
        self._log_info("Storage opened", {"path": str(self._path)})

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError(
                code="not_open",
                message="Storage is not open",
                details={"path": str(self._path)},
            )
        return self._conn

    def put(self, key: str, url: str) -> None:
        try:
            with self._lock:
                conn = self._connection()
                conn.execute(
                    "REPLACE INTO mapping (token, url, timestamp) VALUES (?, ?, ?)",
                    (key, url, int(self._clock())),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StorageError(
                code="write_failed",
                message=f"Failed to store key: {e}",
                details={"key": key},
            )

    def put_if_absent(self, key: str, url: str) -> bool:
        try:
            with self._lock:
                conn = self._connection()
                cursor = conn.execute(
                    "INSERT OR IGNORE INTO mapping (token, url, timestamp) VALUES (?, ?, ?)",
                    (key, url, int(self._clock())),
                )
                conn.commit()
        except sqlite3.Error as e:
            raise StorageError(
                code="write_failed",
                message=f"Failed to store key: {e}",
                details={"key": key},
            )
        return cursor.rowcount == 1

    def get(self, key: str) -> Optional[UrlRecord]:
        try:
            with self._lock:
                row = self._connection().execute(
                    "SELECT token, url, timestamp FROM mapping WHERE token = ?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(
                code="read_failed",
                message=f"Failed to read key: {e}",
                details={"key": key},
            )
        if row is None:
            return None
        return UrlRecord(key=row[0], url=row[1], created_at=int(row[2]))

    def remove(self, key: str) -> None:
        try:
            with self._lock:
                conn = self._connection()
                conn.execute("DELETE FROM mapping WHERE token = ?", (key,))
                conn.commit()
        except sqlite3.Error as e:
            raise StorageError(
                code="write_failed",
                message=f"Failed to remove key: {e}",
                details={"key": key},
            )

    def dump(self, stream: BinaryIO) -> int:
        try:
            with self._lock:
                rows = self._connection().execute(
                    "SELECT token, url, timestamp FROM mapping ORDER BY token"
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(
                code="read_failed",
                message=f"Failed to export storage: {e}",
                details={"path": str(self._path)},
            )
        records = (UrlRecord(key=r[0], url=r[1], created_at=int(r[2])) for r in rows)
        return write_dump(records, stream)


def create_storage(
    backend: str,
    directory: Path,
    logger: Optional[AuditLogger] = None,
) -> Persistence:
    """
    Build the configured storage backend.

    Args:
        backend: 'sqlite' or 'memory'
        directory: Storage directory (SQLite file is <directory>/tinyurl.db)
        logger: Optional audit logger

    Raises:
        StorageError: For an unknown backend name
    """
    name = (backend or "").strip().lower()
    if name == "memory":
        return MemoryStorage(logger=logger)
    if name == "sqlite":
        return SqliteStorage(Path(directory) / "tinyurl.db", logger=logger)
    raise StorageError(
        code="unknown_backend",
        message=f"Unknown storage backend: {backend}",
        details={"backend": backend},
    )
