"""Table layout and open-time schema checks for the vector database."""
from __future__ import annotations

from dataclasses import dataclass
import logging
import sqlite3

from ..errors import SchemaError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

TEXT_TABLE = "documents"
IMAGE_TABLE = "images"
FILES_TABLE = "files"
VECTOR_TABLES = (TEXT_TABLE, IMAGE_TABLE)


@dataclass(frozen=True)
class TableSchema:
    name: str
    columns: tuple[str, ...]
    create_sql: str


TABLES: dict[str, TableSchema] = {
    TEXT_TABLE: TableSchema(
        name=TEXT_TABLE,
        columns=("path", "chunk_id", "ordinal", "content_hash", "embedding", "last_modified"),
        create_sql="""
CREATE TABLE IF NOT EXISTS documents (
  path TEXT NOT NULL,
  chunk_id TEXT NOT NULL,
  ordinal INTEGER NOT NULL,
  content_hash TEXT NOT NULL,
  embedding BLOB NOT NULL,
  last_modified INTEGER NOT NULL,
  PRIMARY KEY (path, chunk_id)
);
CREATE INDEX IF NOT EXISTS idx_documents_hash ON documents(content_hash);
""",
    ),
    IMAGE_TABLE: TableSchema(
        name=IMAGE_TABLE,
        columns=("path", "content_hash", "embedding", "last_modified", "width", "height"),
        create_sql="""
CREATE TABLE IF NOT EXISTS images (
  path TEXT PRIMARY KEY,
  content_hash TEXT NOT NULL,
  embedding BLOB NOT NULL,
  last_modified INTEGER NOT NULL,
  width INTEGER,
  height INTEGER
);
CREATE INDEX IF NOT EXISTS idx_images_hash ON images(content_hash);
""",
    ),
}

# Per-file manifest: one row per successfully processed path, including
# files that produced zero vectors, so unchanged files are skipped on rescan.
FILES_SQL = """
CREATE TABLE IF NOT EXISTS files (
  path TEXT PRIMARY KEY,
  content_hash TEXT NOT NULL,
  last_modified INTEGER NOT NULL,
  category TEXT NOT NULL,
  size INTEGER NOT NULL,
  modality TEXT NOT NULL,
  indexed_at TEXT DEFAULT (datetime('now'))
);
"""

META_SQL = """
CREATE TABLE IF NOT EXISTS table_meta (
  name TEXT PRIMARY KEY,
  dims INTEGER NOT NULL,
  schema_version INTEGER NOT NULL
);
"""


def _table_columns(conn: sqlite3.Connection, table: str) -> tuple[str, ...]:
    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return tuple(r[1] for r in rows)


def ensure_table(conn: sqlite3.Connection, table: str, dims: int) -> SchemaError | None:
    """Create `table` if missing and verify it matches the expected layout.

    Returns the SchemaError instead of raising so the caller can disable just
    this table and keep its companion usable.
    """
    schema = TABLES[table]
    existing = _table_columns(conn, table)
    if existing and set(existing) != set(schema.columns):
        return SchemaError(table, f"columns {sorted(existing)} != expected {sorted(schema.columns)}")

    conn.executescript(schema.create_sql)
    row = conn.execute(
        "SELECT dims, schema_version FROM table_meta WHERE name = ?", (table,)
    ).fetchone()
    if row is None:
        conn.execute(
            "INSERT INTO table_meta(name, dims, schema_version) VALUES(?,?,?)",
            (table, dims, SCHEMA_VERSION),
        )
        logger.debug(f"Initialised table {table} with dims={dims}")
        return None

    stored_dims, version = int(row[0]), int(row[1])
    if version != SCHEMA_VERSION:
        return SchemaError(table, f"schema version {version} != expected {SCHEMA_VERSION}")
    if stored_dims != dims:
        return SchemaError(table, f"stored dimension {stored_dims} != configured {dims}")
    return None


def recreate_table(conn: sqlite3.Connection, table: str, dims: int) -> None:
    conn.execute(f"DROP TABLE IF EXISTS {table}")
    conn.execute("DELETE FROM table_meta WHERE name = ?", (table,))
    conn.executescript(TABLES[table].create_sql)
    conn.execute(
        "INSERT INTO table_meta(name, dims, schema_version) VALUES(?,?,?)",
        (table, dims, SCHEMA_VERSION),
    )
