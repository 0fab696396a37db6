from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Optional
import json
import logging
import os
import tempfile
import threading

from ..models import Category, FilenameEntry
from .bktree import BKTree

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


@dataclass(frozen=True)
class FilenameMatch:
    entry: FilenameEntry
    distance: int

    @property
    def score(self) -> float:
        return 1.0 / (1.0 + self.distance)


def keys_for(name: str) -> set[str]:
    """Lower-cased name and lower-cased stem, so "raedme" finds "readme.txt"."""
    lowered = name.lower()
    keys = {lowered}
    stem = Path(lowered).stem
    if stem:
        keys.add(stem)
    return keys


class FilenameIndex:
    """Approximate-name index: path -> FilenameEntry plus a BK-tree of keys.

    A path's distance to a query is the minimum over its keys. All access is
    serialised by a re-entrant lock so readers see a consistent tree.
    """

    def __init__(self) -> None:
        self._entries: dict[str, FilenameEntry] = {}
        self._tree = BKTree()
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, path: object) -> bool:
        with self._lock:
            return path in self._entries

    def get(self, path: str) -> Optional[FilenameEntry]:
        with self._lock:
            return self._entries.get(path)

    def paths(self) -> set[str]:
        with self._lock:
            return set(self._entries)

    def add(self, entry: FilenameEntry) -> None:
        """Insert or replace the entry for `entry.path`."""
        with self._lock:
            if entry.path in self._entries:
                self._remove_locked(entry.path)
            self._entries[entry.path] = entry
            for key in keys_for(entry.name):
                self._tree.add(key, entry.path)

    def _remove_locked(self, path: str) -> bool:
        entry = self._entries.pop(path, None)
        if entry is None:
            return False
        for key in keys_for(entry.name):
            self._tree.remove(key, path)
        return True

    def remove(self, path: str) -> bool:
        with self._lock:
            return self._remove_locked(path)

    def rename(self, old_path: str, new_entry: FilenameEntry) -> None:
        with self._lock:
            self._remove_locked(old_path)
            self.add(new_entry)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tree.clear()

    def search(
        self,
        query: str,
        max_distance: int = 2,
        categories: Optional[Iterable[Category | str]] = None,
        limit: Optional[int] = None,
    ) -> list[FilenameMatch]:
        """Entries within `max_distance` edits of `query`.

        Ranked by distance, then lower-cased name, then path.
        """
        q = query.strip().lower()
        if not q or max_distance < 0:
            return []
        cats = {Category.parse(c) for c in categories} if categories else None

        with self._lock:
            best: dict[str, int] = {}
            for _key, paths, d in self._tree.search(q, max_distance):
                for p in paths:
                    if d < best.get(p, max_distance + 1):
                        best[p] = d
            matches = [
                FilenameMatch(entry=self._entries[p], distance=d)
                for p, d in best.items()
                if p in self._entries
            ]

        if cats is not None:
            matches = [m for m in matches if m.entry.category in cats]
        matches.sort(key=lambda m: (m.distance, m.entry.name.lower(), m.entry.path))
        if limit is not None:
            matches = matches[: max(limit, 0)]
        return matches

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {
                "entries": len(self._entries),
                "nodes": self._tree.node_count,
                "tombstones": self._tree.tombstones,
            }

    # Persistence

    def save(self, path: str | Path) -> None:
        """Write entries as JSON, atomically replacing any previous file."""
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            payload = {
                "version": FORMAT_VERSION,
                "entries": [
                    {
                        "path": e.path,
                        "name": e.name,
                        "category": e.category.value,
                        "size": e.size,
                        "last_modified": e.last_modified,
                    }
                    for e in sorted(self._entries.values(), key=lambda e: e.path)
                ],
            }
        fd, tmp = tempfile.mkstemp(prefix=".filename_index.", suffix=".tmp", dir=str(target.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f)
            os.replace(tmp, target)
        except OSError:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logger.debug(f"Saved {len(payload['entries'])} filename entries to {target}")

    def load(self, path: str | Path) -> int:
        """Replace the in-memory index with the JSON file's entries.

        A missing file leaves the index empty. Returns the number loaded.
        """
        source = Path(path)
        if not source.exists():
            self.clear()
            return 0
        data = json.loads(source.read_text(encoding="utf-8"))
        version = data.get("version")
        if version != FORMAT_VERSION:
            raise ValueError(f"Unsupported filename index version: {version}")
        with self._lock:
            self.clear()
            for raw in data.get("entries", []):
                self.add(FilenameEntry(
                    path=raw["path"],
                    name=raw["name"],
                    category=Category.parse(raw["category"]),
                    size=int(raw["size"]),
                    last_modified=int(raw["last_modified"]),
                ))
            count = len(self._entries)
        logger.info(f"Loaded {count} filename entries from {source}")
        return count
