"""Data classes for the parallel indexing pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional
import threading

from ..models import Category, PipelineState


@dataclass
class PipelineOutcome:
    """Terminal result of one path's pipeline run."""

    path: str
    state: PipelineState
    category: Category = Category.OTHER
    modality: Optional[str] = None  # "text" | "image"
    reason: Optional[str] = None
    rows_written: int = 0
    chunks: int = 0
    chunk_failures: int = 0
    reused: bool = False
    abandoned: bool = False  # cancelled or superseded before commit
    db_writes: int = 0


def _counter() -> dict[str, int]:
    return {"processed": 0, "indexed": 0, "skipped": 0, "failed": 0}


@dataclass
class IndexingStats:
    """Aggregate of one index_folder run."""

    processed: int = 0
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    per_category: dict[str, dict[str, int]] = field(default_factory=dict)
    text_processed: int = 0
    text_indexed: int = 0
    text_failed: int = 0
    image_processed: int = 0
    image_indexed: int = 0
    image_failed: int = 0
    chunks_embedded: int = 0
    reused_embeddings: int = 0
    removed: int = 0
    indexed_files: list[str] = field(default_factory=list)
    failed_files: list[tuple[str, str]] = field(default_factory=list)
    db_writes: int = 0
    elapsed_seconds: float = 0.0
    cancelled: bool = False
    in_progress: bool = False

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record(self, outcome: PipelineOutcome) -> None:
        """Fold a terminal outcome into the counters. Abandoned runs are not counted."""
        with self._lock:
            self.db_writes += outcome.db_writes
            if outcome.abandoned:
                return
            cat = self.per_category.setdefault(outcome.category.value, _counter())
            self.processed += 1
            cat["processed"] += 1
            if outcome.modality == "text":
                self.text_processed += 1
            elif outcome.modality == "image":
                self.image_processed += 1

            if outcome.state == PipelineState.STORED:
                self.indexed += 1
                cat["indexed"] += 1
                self.indexed_files.append(outcome.path)
                self.chunks_embedded += outcome.rows_written if outcome.modality == "text" else 0
                if outcome.reused:
                    self.reused_embeddings += 1
                if outcome.modality == "text":
                    self.text_indexed += 1
                elif outcome.modality == "image":
                    self.image_indexed += 1
            elif outcome.state == PipelineState.FAILED:
                self.failed += 1
                cat["failed"] += 1
                self.failed_files.append((outcome.path, outcome.reason or "unknown error"))
                if outcome.modality == "text":
                    self.text_failed += 1
                elif outcome.modality == "image":
                    self.image_failed += 1
            else:
                self.skipped += 1
                cat["skipped"] += 1

    def add_writes(self, n: int = 1) -> None:
        with self._lock:
            self.db_writes += n

    def snapshot(self) -> "IndexingStats":
        with self._lock:
            return IndexingStats(
                processed=self.processed,
                indexed=self.indexed,
                skipped=self.skipped,
                failed=self.failed,
                per_category={k: dict(v) for k, v in self.per_category.items()},
                text_processed=self.text_processed,
                text_indexed=self.text_indexed,
                text_failed=self.text_failed,
                image_processed=self.image_processed,
                image_indexed=self.image_indexed,
                image_failed=self.image_failed,
                chunks_embedded=self.chunks_embedded,
                reused_embeddings=self.reused_embeddings,
                removed=self.removed,
                indexed_files=list(self.indexed_files),
                failed_files=list(self.failed_files),
                db_writes=self.db_writes,
                elapsed_seconds=self.elapsed_seconds,
                cancelled=self.cancelled,
                in_progress=self.in_progress,
            )

    def to_dict(self) -> dict[str, Any]:
        s = self.snapshot()
        return {
            "processed": s.processed,
            "indexed": s.indexed,
            "skipped": s.skipped,
            "failed": s.failed,
            "per_category": s.per_category,
            "text": {"processed": s.text_processed, "indexed": s.text_indexed, "failed": s.text_failed},
            "image": {"processed": s.image_processed, "indexed": s.image_indexed, "failed": s.image_failed},
            "chunks_embedded": s.chunks_embedded,
            "reused_embeddings": s.reused_embeddings,
            "removed": s.removed,
            "indexed_files": s.indexed_files,
            "failed_files": [{"path": p, "reason": r} for p, r in s.failed_files],
            "db_writes": s.db_writes,
            "elapsed_seconds": round(s.elapsed_seconds, 3),
            "cancelled": s.cancelled,
            "in_progress": s.in_progress,
        }
