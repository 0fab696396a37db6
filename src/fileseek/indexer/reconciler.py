from __future__ import annotations

from dataclasses import dataclass, field
from fnmatch import fnmatch
from pathlib import Path
import logging
import os

from ..paths import is_excluded_dir, is_relevant_file

logger = logging.getLogger(__name__)


def matches_ignore_pattern(rel_path: str, patterns: list[str]) -> bool:
    """Check if a relative path matches any of the ignore patterns.

    Supports glob patterns like:
    - "**/~$*" - match Office temp files in any directory
    - "build/**" - match everything under build
    - "*.tmp" - plain fnmatch against the relative path
    """
    rel_path = rel_path.replace("\\", "/")

    for pattern in patterns:
        pattern = pattern.replace("\\", "/")

        if pattern.startswith("**/"):
            suffix = pattern[3:]
            if fnmatch(rel_path, pattern) or fnmatch(rel_path, f"*/{suffix}"):
                return True
            parts = rel_path.split("/")
            for i, part in enumerate(parts):
                if fnmatch(part, suffix):
                    return True
                if fnmatch("/".join(parts[i:]), suffix):
                    return True

        elif pattern.endswith("/**"):
            prefix = pattern[:-3]
            if rel_path.startswith(prefix + "/") or rel_path == prefix:
                return True

        elif fnmatch(rel_path, pattern):
            return True

    return False


@dataclass
class Reconciler:
    root: Path
    ignore: list[str] = field(default_factory=list)

    def is_candidate(self, path: Path) -> bool:
        """Allow-list plus ignore patterns, relative to `root`."""
        if not is_relevant_file(path, self.root):
            return False
        try:
            rel = str(path.relative_to(self.root)).replace("\\", "/")
        except ValueError:
            return False
        return not matches_ignore_pattern(rel, self.ignore)

    def scan_files(self) -> list[Path]:
        """Walk `root` for indexable files, pruning hidden and excluded directories.

        Directory errors (permission denied) are logged and skipped. The
        result is sorted so runs are deterministic.
        """
        paths: list[Path] = []

        def onerror(err: OSError) -> None:
            logger.warning(f"Cannot scan {err.filename}: {err.strerror}")

        for dirpath, dirnames, filenames in os.walk(self.root, onerror=onerror):
            dirnames[:] = sorted(d for d in dirnames if not is_excluded_dir(d))
            base = Path(dirpath)
            for name in filenames:
                p = base / name
                if p.is_file() and self.is_candidate(p):
                    paths.append(p)
        paths.sort()
        return paths
