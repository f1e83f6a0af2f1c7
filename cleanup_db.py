from __future__ import annotations
import hashlib
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog

from cleanup_utils import StoreConnectionError, get_db_path, quote_identifier


class CleanupDB:
    """
    SQLite store handle for the repair runner.
    Transactions are explicit: the connection runs in autocommit mode and the
    runner issues BEGIN / COMMIT / ROLLBACK itself.
    """
    def __init__(self, db_path: Optional[str] = None, timeout: float = 5.0):
        self.db_path = db_path or get_db_path()
        # Seconds to wait on a locked database before giving up
        self.timeout = timeout
        self._conn: Optional[sqlite3.Connection] = None
        self.logger = structlog.get_logger(self.__class__.__name__)

    def connect(self) -> "CleanupDB":
        """Opens the store read-write. A missing file is an error, never created."""
        if self._conn:
            return self
        try:
            if self.db_path == ":memory:":
                conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
            else:
                path = Path(self.db_path)
                if not path.is_file():
                    raise StoreConnectionError(self.db_path, "Database file not found")
                uri = f"{path.resolve().as_uri()}?mode=rw"
                conn = sqlite3.connect(uri, uri=True, timeout=self.timeout, isolation_level=None)
            conn.row_factory = sqlite3.Row
            # Touch the schema so a corrupt or non-database file fails here
            conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
        except sqlite3.Error as e:
            raise StoreConnectionError(self.db_path, "Unable to open database", e) from e
        self._conn = conn
        self.logger.debug("Database opened", path=self.db_path)
        return self

    @property
    def conn(self) -> sqlite3.Connection:
        if not self._conn:
            raise StoreConnectionError(self.db_path, "Database is not open")
        return self._conn

    @property
    def in_transaction(self) -> bool:
        return bool(self._conn and self._conn.in_transaction)

    def begin(self) -> None:
        # IMMEDIATE takes the write lock up front so a concurrent writer
        # fails the run before any rule executes.
        try:
            self.conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise StoreConnectionError(self.db_path, "Unable to begin transaction", e) from e

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Executes one parameterized statement and returns the affected row count."""
        cursor = self.conn.execute(sql, tuple(params))
        return max(cursor.rowcount, 0)

    def commit(self) -> None:
        self.conn.execute("COMMIT")

    def rollback(self) -> None:
        if self.in_transaction:
            self.conn.execute("ROLLBACK")

    def close(self) -> None:
        if self._conn:
            if self._conn.in_transaction:
                self._conn.execute("ROLLBACK")
            self._conn.close()
            self._conn = None
            self.logger.debug("Database closed", path=self.db_path)

    def __enter__(self) -> "CleanupDB":
        return self.connect()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # --- INSPECTION ---
    def table_names(self) -> List[str]:
        cursor = self.conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [row[0] for row in cursor.fetchall()]

    def table_rows(self, table: str) -> List[Tuple[Any, ...]]:
        """All rows of a table in a deterministic order."""
        cursor = self.conn.execute(f"SELECT * FROM {quote_identifier(table)}")
        return sorted((tuple(row) for row in cursor.fetchall()), key=repr)

    def snapshot(self, tables: Optional[Sequence[str]] = None) -> Dict[str, List[Tuple[Any, ...]]]:
        return {t: self.table_rows(t) for t in (tables or self.table_names())}

    def table_checksum(self, table: str) -> Tuple[Optional[str], int]:
        if table not in self.table_names():
            return None, 0

        hasher = hashlib.sha256()
        rows = self.table_rows(table)
        for row in rows:
            hasher.update(repr(row).encode("utf-8"))
        return hasher.hexdigest(), len(rows)
