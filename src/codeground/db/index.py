"""Vector index over SQLite + sqlite-vec, with a mock mode for outages.

Each collection is a ``points_<name>`` table holding ``id``, a float32
``vector`` blob and a JSON ``payload``. Similarity is cosine:
``score = 1 - vec_distance_cosine(vector, query)``.

Connection policy: ``initialize()`` tries each configured location in order
and stops at the first that opens with sqlite-vec loaded. If none does, or
collections cannot be created after ``max_retries`` attempts with exponential
backoff, the index switches to mock mode for the rest of its lifetime:

  search  → labelled synthetic hits (``payload["mock"] is True``)
  upsert / delete_by_filter / delete_ids → True (nothing stored)
  count / list_ids → empty

With ``allow_mock=False`` the same conditions raise VectorDBUnavailable.

Apart from that, operations report failure through their return value and
never raise for database errors. One connection is shared by all threads and
guarded by a re-entrant lock.
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import struct
import threading
import time
from typing import Any, Callable, Iterable

import sqlite_vec

from codeground.db.connection import Database
from codeground.db.filters import active_filters, build_where
from codeground.db.migrations import run_migrations
from codeground.db.models import EmbeddingPoint, SearchHit
from codeground.errors import VectorDBUnavailable

logger = logging.getLogger(__name__)

_COLLECTION_RE = re.compile(r"^[a-z0-9_]+$")
_DELETE_BATCH = 500
_MAX_MOCK_RESULTS = 5

DISCONNECTED = "disconnected"
CONNECTED = "sqlite"
MOCK = "mock"


class _DimensionMismatch(ValueError):
    pass


def points_table(collection: str) -> str:
    """Return the point table name for *collection*.

    Raises:
        ValueError: If *collection* is not a lowercase identifier.
    """
    if not _COLLECTION_RE.fullmatch(collection):
        raise ValueError(f"Invalid collection name '{collection}' (use [a-z0-9_]+)")
    return f"points_{collection}"


class VectorIndex:
    """Durable store of embedding points with filtered cosine search."""

    def __init__(
        self,
        locations: list[str] | str,
        *,
        dimensions: int = 1536,
        collections: Iterable[str] = ("code_embeddings",),
        max_retries: int = 3,
        retry_delay: float = 1.0,
        allow_mock: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.locations = [locations] if isinstance(locations, str) else list(locations)
        self.dimensions = dimensions
        self.collections = list(collections)
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.allow_mock = allow_mock
        self._sleep = sleep

        for name in self.collections:
            points_table(name)

        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._location: str | None = None
        self._mode = DISCONNECTED
        self._last_error: str | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def mode(self) -> str:
        return self._mode

    @property
    def is_mock(self) -> bool:
        return self._mode == MOCK

    @property
    def location(self) -> str | None:
        return self._location

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self) -> bool:
        """Open the first reachable location and ensure collections exist.

        Idempotent. Returns True when backed by a real database, False in
        mock mode.

        Raises:
            VectorDBUnavailable: If nothing is reachable and mock mode is disabled.
        """
        with self._lock:
            if self._mode == CONNECTED:
                return True
            if self._mode == MOCK:
                return False

            if self._conn is None:
                for location in self.locations:
                    try:
                        conn = Database(location).connect(check_same_thread=False)
                        run_migrations(conn)
                    except (sqlite3.Error, OSError, AttributeError) as exc:
                        logger.warning("Vector index location %s unavailable: %s", location, exc)
                        self._last_error = f"{location}: {exc}"
                        continue
                    self._conn = conn
                    self._location = location
                    logger.info("Vector index opened at %s", location)
                    break

            if self._conn is None:
                return self._degrade(self._last_error or "no location configured")
            return self.ensure_collections()

    def ensure_collections(self) -> bool:
        """Create missing collections; retry with backoff, then degrade to mock.

        Returns True when every collection exists with the configured
        dimensionality.
        """
        with self._lock:
            if self._mode == MOCK:
                return False
            if self._conn is None:
                return self.initialize()

            for attempt in range(1, self.max_retries + 1):
                try:
                    for name in self.collections:
                        self._create_collection(name)
                    self._mode = CONNECTED
                    return True
                except _DimensionMismatch as exc:
                    return self._degrade(str(exc))
                except sqlite3.Error as exc:
                    self._last_error = str(exc)
                    if attempt < self.max_retries:
                        delay = self.retry_delay * 2 ** (attempt - 1)
                        logger.warning(
                            "Creating collections failed (attempt %d/%d): %s; retrying in %.1fs",
                            attempt, self.max_retries, exc, delay,
                        )
                        self._sleep(delay)
            return self._degrade(f"collections unavailable after {self.max_retries} attempts: {self._last_error}")

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
            self._conn = None
            self._location = None
            self._mode = DISCONNECTED

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def upsert(self, collection: str, points: list[EmbeddingPoint]) -> bool:
        """Insert or replace *points* by ID.

        Points with a missing ID, missing payload or wrong vector dimension
        are dropped. Returns False when nothing valid remains or the write
        fails.
        """
        table = points_table(collection)
        valid = [p for p in points if self._is_valid(p)]
        if len(valid) < len(points):
            logger.warning(
                "Dropped %d invalid point(s) of %d for %s",
                len(points) - len(valid), len(points), collection,
            )
        if not valid:
            return False
        if not self._ready():
            return True

        rows = [
            (p.id, sqlite_vec.serialize_float32(p.vector), json.dumps(p.payload))
            for p in valid
        ]
        with self._lock:
            try:
                self._conn.executemany(
                    f"""
                    INSERT INTO {table} (id, vector, payload, updated_at)
                    VALUES (?, ?, ?, datetime('now'))
                    ON CONFLICT(id) DO UPDATE SET
                        vector = excluded.vector,
                        payload = excluded.payload,
                        updated_at = excluded.updated_at
                    """,
                    rows,
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                logger.error("Upsert of %d point(s) into %s failed: %s", len(rows), collection, exc)
                return False
        return True

    def delete_by_filter(self, collection: str, filters: dict[str, Any]) -> bool:
        """Delete every point matching *filters*. An empty filter is refused."""
        table = points_table(collection)
        if not active_filters(filters):
            logger.error("Refusing to delete from %s with an empty filter", collection)
            return False
        if not self._ready():
            return True

        with self._lock:
            try:
                where, params = build_where(filters)
                cur = self._conn.execute(f"DELETE FROM {table} WHERE {where}", params)
                self._conn.commit()
            except (sqlite3.Error, ValueError) as exc:
                self._conn.rollback()
                logger.error("Delete from %s failed: %s", collection, exc)
                return False
        logger.info("Deleted %d point(s) from %s matching %s", cur.rowcount, collection, filters)
        return True

    def delete_ids(self, collection: str, ids: Iterable[str]) -> bool:
        table = points_table(collection)
        ids = list(ids)
        if not ids:
            return True
        if not self._ready():
            return True

        with self._lock:
            try:
                for start in range(0, len(ids), _DELETE_BATCH):
                    batch = ids[start : start + _DELETE_BATCH]
                    placeholders = ", ".join("?" for _ in batch)
                    self._conn.execute(f"DELETE FROM {table} WHERE id IN ({placeholders})", batch)
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                logger.error("Delete of %d id(s) from %s failed: %s", len(ids), collection, exc)
                return False
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def search(
        self,
        collection: str,
        vector: list[float],
        filters: dict[str, Any] | None = None,
        limit: int = 10,
    ) -> list[SearchHit]:
        """Nearest neighbours of *vector* among points matching *filters*.

        Sorted by cosine similarity, best first. Falls back to labelled mock
        hits on query failure or an invalid filter key.
        """
        table = points_table(collection)
        if limit < 1:
            return []
        if not self._ready():
            return _mock_hits(filters, limit)
        if len(vector) != self.dimensions:
            logger.error(
                "Query vector has dimension %d, %s expects %d",
                len(vector), collection, self.dimensions,
            )
            return _mock_hits(filters, limit)

        with self._lock:
            try:
                where, params = build_where(filters)
                rows = self._conn.execute(
                    f"""
                    SELECT id, payload, 1 - vec_distance_cosine(vector, ?) AS score
                    FROM {table}
                    WHERE {where}
                    ORDER BY score DESC
                    LIMIT ?
                    """,
                    [sqlite_vec.serialize_float32(vector), *params, limit],
                ).fetchall()
            except (sqlite3.Error, ValueError) as exc:
                logger.error("Search in %s failed, returning mock results: %s", collection, exc)
                return _mock_hits(filters, limit)

        return [
            SearchHit(id=row["id"], score=float(row["score"]), payload=json.loads(row["payload"]))
            for row in rows
        ]

    def count(self, collection: str, filters: dict[str, Any] | None = None) -> int:
        """Number of points matching *filters*; 0 in mock mode or on error."""
        table = points_table(collection)
        if not self._ready():
            return 0
        with self._lock:
            try:
                where, params = build_where(filters)
                row = self._conn.execute(
                    f"SELECT COUNT(*) FROM {table} WHERE {where}", params
                ).fetchone()
            except (sqlite3.Error, ValueError) as exc:
                logger.error("Count in %s failed: %s", collection, exc)
                return 0
        return int(row[0])

    def list_ids(self, collection: str, filters: dict[str, Any] | None = None) -> set[str]:
        table = points_table(collection)
        if not self._ready():
            return set()
        with self._lock:
            try:
                where, params = build_where(filters)
                rows = self._conn.execute(f"SELECT id FROM {table} WHERE {where}", params).fetchall()
            except (sqlite3.Error, ValueError) as exc:
                logger.error("Listing ids in %s failed: %s", collection, exc)
                return set()
        return {row["id"] for row in rows}

    def get(self, collection: str, point_id: str) -> EmbeddingPoint | None:
        """Return one stored point with its vector, or None."""
        table = points_table(collection)
        if not self._ready():
            return None
        with self._lock:
            try:
                row = self._conn.execute(
                    f"SELECT id, vector, payload FROM {table} WHERE id = ?", (point_id,)
                ).fetchone()
            except sqlite3.Error as exc:
                logger.error("Fetching %s from %s failed: %s", point_id, collection, exc)
                return None
        if row is None:
            return None
        return EmbeddingPoint(
            id=row["id"],
            vector=_deserialize(row["vector"]),
            payload=json.loads(row["payload"]),
        )

    def health(self) -> dict[str, Any]:
        """Mode, location and per-collection point counts."""
        try:
            self._ready()
        except VectorDBUnavailable as exc:
            return {
                "healthy": False,
                "mode": self._mode,
                "location": None,
                "collections": {},
                "error": str(exc),
            }
        counts = {name: self.count(name) for name in self.collections} if self._mode == CONNECTED else {}
        return {
            "healthy": self._mode == CONNECTED,
            "mode": self._mode,
            "location": self._location,
            "collections": counts,
            "error": None if self._mode == CONNECTED else self._last_error,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ready(self) -> bool:
        """Initialise lazily; True when a real database backs the index."""
        if self._mode == DISCONNECTED:
            self.initialize()
        return self._mode == CONNECTED

    def _degrade(self, reason: str) -> bool:
        self._last_error = reason
        if not self.allow_mock:
            raise VectorDBUnavailable(reason)
        logger.warning("Vector index unavailable (%s); switching to mock mode", reason)
        self._mode = MOCK
        return False

    def _create_collection(self, name: str) -> None:
        table = points_table(name)
        row = self._conn.execute(
            "SELECT dimensions FROM collections WHERE name = ?", (name,)
        ).fetchone()
        if row is not None and row["dimensions"] != self.dimensions:
            raise _DimensionMismatch(
                f"Collection '{name}' has dimension {row['dimensions']}, "
                f"configured embedding dimension is {self.dimensions}"
            )
        self._conn.executescript(
            f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id          TEXT PRIMARY KEY,
                vector      BLOB NOT NULL,
                payload     TEXT NOT NULL,
                updated_at  DATETIME NOT NULL DEFAULT (datetime('now'))
            );
            CREATE INDEX IF NOT EXISTS idx_{table}_repo
                ON {table} (json_extract(payload, '$.owner'), json_extract(payload, '$.repo'));
            """
        )
        if row is None:
            self._conn.execute(
                "INSERT INTO collections (name, dimensions, distance) VALUES (?, ?, 'cosine')",
                (name, self.dimensions),
            )
            self._conn.commit()

    def _is_valid(self, point: EmbeddingPoint) -> bool:
        return (
            bool(point.id)
            and bool(point.payload)
            and isinstance(point.vector, (list, tuple))
            and len(point.vector) == self.dimensions
        )


def _deserialize(blob: bytes) -> list[float]:
    return list(struct.unpack(f"{len(blob) // 4}f", blob))


def _mock_hits(filters: dict[str, Any] | None, limit: int) -> list[SearchHit]:
    """Synthetic hits with descending scores, labelled ``mock``."""
    filters = filters or {}
    owner = filters.get("owner") if isinstance(filters.get("owner"), str) else "mock-owner"
    repo = filters.get("repo") if isinstance(filters.get("repo"), str) else "mock-repo"
    hits = []
    for i in range(min(limit, _MAX_MOCK_RESULTS)):
        unit_type = "component" if i == 0 else "function" if i == 1 else "file"
        hits.append(
            SearchHit(
                id=f"mock-{i}",
                score=round(0.9 - i * 0.1, 4),
                payload={
                    "owner": owner,
                    "repo": repo,
                    "path": f"mock/path/file{i}.js",
                    "type": unit_type,
                    "name": f"MockUnit{i}",
                    "content": f"// mock code unit {i}\nfunction mockCode{i}() {{}}",
                    "startLine": 1,
                    "endLine": 2,
                    "importance": round(2 - i * 0.2, 4),
                    "mock": True,
                },
            )
        )
    return hits
