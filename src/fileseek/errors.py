"""Exception taxonomy for the engine.

Per-file errors (extraction, embedding) are caught by the coordinator and
aggregated into IndexingStats. Store, schema and query errors propagate to
the caller of the triggering command.
"""
from __future__ import annotations


class FileSeekError(Exception):
    """Base class for all engine errors."""


class ConfigError(FileSeekError, ValueError):
    pass


# Watcher

class WatchError(FileSeekError):
    pass


class WatchTargetNotFound(WatchError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Watch target not found: {path}")
        self.path = path


class WatchTargetNotADirectory(WatchError):
    def __init__(self, path: str) -> None:
        super().__init__(f"Watch target is not a directory: {path}")
        self.path = path


# Indexing targets

class IndexTargetError(FileSeekError, ValueError):
    """A folder passed to index_folder or a filename scan is missing or not a directory."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{reason}: {path}")
        self.path = path
        self.reason = reason


# Extraction

class ExtractionError(FileSeekError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{reason}: {path}")
        self.path = path
        self.reason = reason


class UnsupportedFileError(ExtractionError):
    def __init__(self, path: str, reason: str = "Unsupported file type") -> None:
        super().__init__(path, reason)


class UnreadableFileError(ExtractionError):
    """Permission denied, missing or locked file."""


class CorruptFileError(ExtractionError):
    """The file was read but produced no usable content."""


# Embedding

class EmbeddingError(FileSeekError):
    pass


class EmbeddingTimeout(EmbeddingError):
    pass


# Storage

class StoreError(FileSeekError):
    pass


class SchemaError(StoreError):
    def __init__(self, table: str, detail: str) -> None:
        super().__init__(f"Schema mismatch for table '{table}': {detail}")
        self.table = table
        self.detail = detail


# Query

class QueryError(FileSeekError, ValueError):
    pass
