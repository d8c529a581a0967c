"""SQLite connection layer with the sqlite-vec extension."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec

MEMORY = ":memory:"


class Database:
    """A vector index database file (or ``:memory:``) with sqlite-vec loaded."""

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing),
                or ``:memory:``.
        """
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None

    @property
    def is_memory(self) -> bool:
        return self.db_path == MEMORY

    def connect(self, *, check_same_thread: bool = True) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection.

        Pass ``check_same_thread=False`` when the connection is shared between
        worker threads; callers must then serialise access themselves.
        """
        if not self.is_memory:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, check_same_thread=check_same_thread)
        try:
            conn.row_factory = sqlite3.Row
            conn.enable_load_extension(True)
            sqlite_vec.load(conn)
            conn.enable_load_extension(False)
            conn.execute("PRAGMA foreign_keys = ON")
            if not self.is_memory:
                conn.execute("PRAGMA journal_mode = WAL")
        except Exception:
            conn.close()
            raise
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None
