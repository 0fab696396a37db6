from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional, Sequence, Union
import logging
import sqlite3
import threading

import numpy as np

from ..errors import SchemaError, StoreError
from ..models import Category, FileRecord, ImageVectorRow, TextVectorRow
from .schema import (
    FILES_SQL,
    FILES_TABLE,
    IMAGE_TABLE,
    META_SQL,
    TEXT_TABLE,
    VECTOR_TABLES,
    ensure_table,
    recreate_table,
)

logger = logging.getLogger(__name__)

VectorRow = Union[TextVectorRow, ImageVectorRow]


def _vec_to_blob(vec: np.ndarray) -> bytes:
    vec = np.asarray(vec, dtype=np.float32).ravel()
    return vec.tobytes()


def _blob_to_vec(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32)


@dataclass(frozen=True)
class VectorHit:
    path: str
    score: float
    chunk_id: Optional[str] = None
    ordinal: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)


class VectorStore:
    """SQLite-backed vector tables with brute-force cosine search.

    Each thread gets its own WAL connection; writers additionally serialise
    on a process-level lock and use BEGIN IMMEDIATE so a path's old rows and
    new rows are never visible together.
    """

    def __init__(self, db_path: Path, text_dims: int, image_dims: int) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.dims = {TEXT_TABLE: int(text_dims), IMAGE_TABLE: int(image_dims)}

        # Thread-local storage for per-thread connections
        self._local = threading.local()
        # Track all connections for cleanup
        self._connections: list[sqlite3.Connection] = []
        self._conn_lock = threading.Lock()
        self._write_lock = threading.Lock()

        self.schema_errors: dict[str, SchemaError] = {}
        self.write_count = 0

    def _get_conn(self) -> sqlite3.Connection:
        """Get a thread-local SQLite connection.

        Each thread gets its own connection with WAL mode and busy timeout.
        Connections are tracked for cleanup via close().
        """
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(str(self.db_path), isolation_level=None, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA busy_timeout=5000")
            self._local.conn = conn
            with self._conn_lock:
                self._connections.append(conn)
        return conn

    def close(self) -> None:
        """Close all thread-local connections."""
        with self._conn_lock:
            for conn in self._connections:
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.debug(f"Error closing connection: {e}")
            self._connections.clear()
        self._local = threading.local()

    def init(self) -> "VectorStore":
        """Create tables and check each vector table against configured dims.

        A mismatch is recorded per table; operations on that table raise the
        stored SchemaError while the other table keeps working.
        """
        conn = self._get_conn()
        with self._write_lock:
            conn.executescript(META_SQL + FILES_SQL)
            for table in VECTOR_TABLES:
                err = ensure_table(conn, table, self.dims[table])
                if err is not None:
                    logger.error(str(err))
                    self.schema_errors[table] = err
                else:
                    self.schema_errors.pop(table, None)
        return self

    def _check(self, table: str) -> None:
        if table not in self.dims:
            raise StoreError(f"Unknown table: {table}")
        err = self.schema_errors.get(table)
        if err is not None:
            raise err

    def is_usable(self, table: str) -> bool:
        return table in self.dims and table not in self.schema_errors

    def _check_dims(self, table: str, vec: np.ndarray) -> np.ndarray:
        v = np.asarray(vec, dtype=np.float32).ravel()
        if v.size != self.dims[table]:
            raise SchemaError(table, f"vector dimension {v.size} != configured {self.dims[table]}")
        return v

    # Writes

    def _insert_rows(self, conn: sqlite3.Connection, table: str, rows: Sequence[VectorRow]) -> None:
        if table == TEXT_TABLE:
            conn.executemany(
                """INSERT INTO documents(path, chunk_id, ordinal, content_hash, embedding, last_modified)
                   VALUES(?,?,?,?,?,?)""",
                [
                    (r.path, r.chunk_id, r.ordinal, r.content_hash,
                     _vec_to_blob(self._check_dims(table, r.embedding)), r.last_modified)
                    for r in rows
                ],
            )
        else:
            conn.executemany(
                """INSERT INTO images(path, content_hash, embedding, last_modified, width, height)
                   VALUES(?,?,?,?,?,?)""",
                [
                    (r.path, r.content_hash, _vec_to_blob(self._check_dims(table, r.embedding)),
                     r.last_modified, r.width, r.height)
                    for r in rows
                ],
            )

    def _transaction(self, work) -> None:
        conn = self._get_conn()
        with self._write_lock:
            conn.execute("BEGIN IMMEDIATE")
            try:
                work(conn)
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
            self.write_count += 1

    def upsert(self, table: str, path: str, rows: Sequence[VectorRow]) -> None:
        """Replace every row for `path` in `table` with `rows` atomically."""
        self._check(table)
        if any(r.path != path for r in rows):
            raise StoreError(f"All rows must belong to {path}")

        def work(conn: sqlite3.Connection) -> None:
            conn.execute(f"DELETE FROM {table} WHERE path = ?", (path,))
            self._insert_rows(conn, table, rows)

        self._transaction(work)

    def commit_file(self, record: FileRecord, modality: str, table: Optional[str], rows: Sequence[VectorRow]) -> None:
        """Replace all stored state for one file in a single transaction.

        Rows for the path are removed from every vector table, `rows` are
        written to `table` (None when the file produced no vectors) and the
        manifest entry is updated.
        """
        if table is not None:
            self._check(table)

        def work(conn: sqlite3.Connection) -> None:
            for t in VECTOR_TABLES:
                if self.is_usable(t):
                    conn.execute(f"DELETE FROM {t} WHERE path = ?", (record.path,))
            if table is not None and rows:
                self._insert_rows(conn, table, rows)
            conn.execute(
                """INSERT INTO files(path, content_hash, last_modified, category, size, modality)
                   VALUES(?,?,?,?,?,?)
                   ON CONFLICT(path) DO UPDATE SET
                     content_hash=excluded.content_hash, last_modified=excluded.last_modified,
                     category=excluded.category, size=excluded.size, modality=excluded.modality,
                     indexed_at=datetime('now')""",
                (record.path, record.content_hash, record.last_modified,
                 record.category.value, record.size, modality),
            )

        self._transaction(work)

    def delete(self, table: str, path: str) -> None:
        self._check(table)
        self._transaction(lambda conn: conn.execute(f"DELETE FROM {table} WHERE path = ?", (path,)))

    def delete_path(self, path: str) -> bool:
        """Remove `path` from every table. Returns True if anything was removed."""
        removed = 0

        def work(conn: sqlite3.Connection) -> None:
            nonlocal removed
            for t in VECTOR_TABLES:
                if self.is_usable(t):
                    removed += conn.execute(f"DELETE FROM {t} WHERE path = ?", (path,)).rowcount
            removed += conn.execute("DELETE FROM files WHERE path = ?", (path,)).rowcount

        self._transaction(work)
        return removed > 0

    def clear(self, table: Optional[str] = None) -> None:
        """Drop and recreate vector tables with the configured dims.

        Clearing a table also clears its recorded schema error.
        """
        tables = VECTOR_TABLES if table is None else (table,)
        conn = self._get_conn()
        with self._write_lock:
            for t in tables:
                if t not in self.dims:
                    raise StoreError(f"Unknown table: {t}")
                recreate_table(conn, t, self.dims[t])
                self.schema_errors.pop(t, None)
            if table is None:
                conn.execute("DELETE FROM files")
            else:
                modality = "text" if table == TEXT_TABLE else "image"
                conn.execute("DELETE FROM files WHERE modality = ?", (modality,))
            self.write_count += 1
        logger.info(f"Cleared tables: {', '.join(tables)}")

    # Reads

    def query(self, table: str, vector: np.ndarray, k: int, min_score: float = -1.0) -> list[VectorHit]:
        """Top-k paths by cosine similarity, keeping each path's best row.

        Ordering is score descending, then path ascending, so equal scores
        always come back in the same order.
        """
        self._check(table)
        q = self._check_dims(table, vector)
        if k <= 0:
            return []
        qn = float(np.linalg.norm(q)) + 1e-12

        if table == TEXT_TABLE:
            sql = "SELECT path, chunk_id, ordinal, embedding FROM documents"
        else:
            sql = "SELECT path, width, height, embedding FROM images"
        rows = self._get_conn().execute(sql).fetchall()
        if not rows:
            return []

        mat = np.vstack([_blob_to_vec(r["embedding"]) for r in rows])
        norms = np.linalg.norm(mat, axis=1) + 1e-12
        sims = (mat @ q) / (norms * qn)

        best: dict[str, tuple[float, sqlite3.Row]] = {}
        for sim, r in zip(sims.tolist(), rows):
            cur = best.get(r["path"])
            if cur is None or sim > cur[0]:
                best[r["path"]] = (sim, r)

        ranked = sorted(
            ((s, p, r) for p, (s, r) in best.items() if s >= min_score),
            key=lambda x: (-x[0], x[1]),
        )
        hits: list[VectorHit] = []
        for sim, path, r in ranked[:k]:
            if table == TEXT_TABLE:
                hits.append(VectorHit(path=path, score=float(sim), chunk_id=r["chunk_id"], ordinal=r["ordinal"]))
            else:
                meta = {key: r[key] for key in ("width", "height") if r[key] is not None}
                hits.append(VectorHit(path=path, score=float(sim), metadata=meta))
        return hits

    def get_content_hash(self, table: str, path: str) -> Optional[str]:
        self._check(table)
        row = self._get_conn().execute(
            f"SELECT content_hash FROM {table} WHERE path = ? LIMIT 1", (path,)
        ).fetchone()
        return row["content_hash"] if row else None

    def get_file(self, path: str) -> Optional[FileRecord]:
        row = self._get_conn().execute(
            "SELECT path, content_hash, last_modified, category, size FROM files WHERE path = ?", (path,)
        ).fetchone()
        if row is None:
            return None
        return FileRecord(
            path=row["path"],
            content_hash=row["content_hash"],
            last_modified=int(row["last_modified"]),
            category=Category.parse(row["category"]),
            size=int(row["size"]),
        )

    def find_by_hash(self, table: str, content_hash: str, exclude_path: Optional[str] = None) -> list[VectorRow]:
        """Rows of one other path already stored with `content_hash`, for reuse."""
        self._check(table)
        conn = self._get_conn()
        params: list[Any] = [content_hash]
        sql = f"SELECT path FROM {table} WHERE content_hash = ?"
        if exclude_path is not None:
            sql += " AND path != ?"
            params.append(exclude_path)
        row = conn.execute(sql + " ORDER BY path LIMIT 1", params).fetchone()
        if row is None:
            return []
        src = row["path"]
        if table == TEXT_TABLE:
            rows = conn.execute(
                "SELECT * FROM documents WHERE path = ? ORDER BY ordinal", (src,)
            ).fetchall()
            return [
                TextVectorRow(
                    path=r["path"], chunk_id=r["chunk_id"], ordinal=int(r["ordinal"]),
                    content_hash=r["content_hash"], embedding=_blob_to_vec(r["embedding"]),
                    last_modified=int(r["last_modified"]),
                )
                for r in rows
            ]
        r = conn.execute("SELECT * FROM images WHERE path = ?", (src,)).fetchone()
        if r is None:
            return []
        return [
            ImageVectorRow(
                path=r["path"], content_hash=r["content_hash"], embedding=_blob_to_vec(r["embedding"]),
                last_modified=int(r["last_modified"]), width=r["width"], height=r["height"],
            )
        ]

    def indexed_paths(self, table: Optional[str] = None) -> set[str]:
        """Paths with a manifest entry, or with rows in `table` when given."""
        if table is None:
            rows = self._get_conn().execute("SELECT path FROM files").fetchall()
        else:
            self._check(table)
            rows = self._get_conn().execute(f"SELECT DISTINCT path FROM {table}").fetchall()
        return {r["path"] for r in rows}

    def paths_under(self, folder: str) -> set[str]:
        prefix = folder.rstrip("/") + "/"
        return {p for p in self.indexed_paths() if p.startswith(prefix)}

    def _count(self, table: str) -> int:
        try:
            return int(self._get_conn().execute(f"SELECT COUNT(*) AS n FROM {table}").fetchone()["n"])
        except sqlite3.OperationalError as e:
            logger.warning(f"Cannot count rows in {table}: {e}")
            return 0

    def stats(self) -> dict[str, Any]:
        text_count = self._count(TEXT_TABLE)
        image_count = self._count(IMAGE_TABLE)
        out: dict[str, Any] = {
            "text_count": text_count,
            "image_count": image_count,
            "total": text_count + image_count,
            "files": self._count(FILES_TABLE),
        }
        if self.schema_errors:
            out["schema_errors"] = {t: str(e) for t, e in self.schema_errors.items()}
        return out
