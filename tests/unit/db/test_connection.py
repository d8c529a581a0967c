"""Tests for the Database connection layer."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from codeground.db.connection import Database


def test_connect_creates_file_and_parent(tmp_path):
    db_path = tmp_path / "data" / "vectors.db"
    db = Database(db_path)
    conn = db.connect()
    conn.close()
    assert db_path.exists()


def test_sqlite_vec_loads(tmp_path):
    db = Database(tmp_path / "vectors.db")
    conn = db.connect()
    version = conn.execute("SELECT vec_version()").fetchone()[0]
    conn.close()
    assert version.startswith("v")


def test_foreign_keys_enabled(tmp_path):
    conn = Database(tmp_path / "vectors.db").connect()
    result = conn.execute("PRAGMA foreign_keys").fetchone()[0]
    conn.close()
    assert result == 1


def test_wal_journal_mode(tmp_path):
    conn = Database(tmp_path / "vectors.db").connect()
    mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    conn.close()
    assert mode == "wal"


def test_memory_database(tmp_path):
    db = Database(":memory:")
    assert db.is_memory
    conn = db.connect()
    assert conn.execute("SELECT vec_version()").fetchone()[0]
    conn.close()
    assert list(tmp_path.iterdir()) == []


def test_row_factory_set(tmp_path):
    conn = Database(tmp_path / "vectors.db").connect()
    conn.execute("CREATE TABLE t (x INTEGER)")
    conn.execute("INSERT INTO t VALUES (42)")
    row = conn.execute("SELECT x FROM t").fetchone()
    conn.close()
    assert row["x"] == 42


def test_shared_connection_across_threads(tmp_path):
    conn = Database(tmp_path / "vectors.db").connect(check_same_thread=False)
    result = []
    thread = threading.Thread(target=lambda: result.append(conn.execute("SELECT 1").fetchone()[0]))
    thread.start()
    thread.join()
    conn.close()
    assert result == [1]


def test_context_manager_closes_connection(tmp_path):
    db = Database(tmp_path / "vectors.db")
    with db as conn:
        conn.execute("CREATE TABLE t (x INTEGER)")
    # Connection should be closed: further use raises ProgrammingError
    with pytest.raises(Exception):
        conn.execute("SELECT 1")


def test_accepts_path_or_str(tmp_path):
    db = Database(Path(tmp_path / "vectors.db"))
    assert db.db_path == str(tmp_path / "vectors.db")
    with Database(str(tmp_path / "vectors.db")) as conn:
        assert conn.execute("SELECT 1").fetchone()[0] == 1
