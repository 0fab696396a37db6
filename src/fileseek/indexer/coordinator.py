from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Iterable, Optional
import logging
import os
import threading
import time

from ..chunking.base import Chunker
from ..embeddings.worker import EmbeddingWorker
from ..errors import (
    CorruptFileError,
    EmbeddingError,
    ExtractionError,
    IndexTargetError,
    SchemaError,
    UnreadableFileError,
    UnsupportedFileError,
)
from ..extractors.base import ExtractorRegistry, ImageContent, TextContent
from ..filename_index.index import FilenameIndex
from ..hashing import chunk_id_for, hash_file
from ..models import (
    Category,
    ChangeEvent,
    ChangeKind,
    FileRecord,
    FilenameEntry,
    ImageVectorRow,
    PipelineState,
    TextVectorRow,
)
from ..paths import categorize, normalize_path
from ..store.schema import IMAGE_TABLE, TEXT_TABLE
from ..store.vector_store import VectorStore
from .change_detector import ChangeDetector
from .parallel_types import IndexingStats, PipelineOutcome
from .reconciler import Reconciler

logger = logging.getLogger(__name__)


class _Abandoned(Exception):
    """Raised inside a pipeline when cancellation or a delete overtakes it."""


class IndexCoordinator:
    """Drives files through extract -> chunk -> embed -> store.

    Extraction and chunking run on a bounded thread pool; embedding goes
    through the single EmbeddingWorker. A per-path generation counter,
    bumped on every delete, lets in-flight pipelines notice they were
    overtaken and drop their results instead of resurrecting the file.
    """

    def __init__(
        self,
        store: VectorStore,
        filename_index: FilenameIndex,
        worker: EmbeddingWorker,
        extractors: ExtractorRegistry,
        chunker: Chunker,
        *,
        extraction_workers: int = 4,
        chunk_failure_threshold: float = 0.25,
        ignore: Optional[list[str]] = None,
        debounce_ms: int = 300,
        filename_index_path: Optional[Path] = None,
    ) -> None:
        self.store = store
        self.filename_index = filename_index
        self.worker = worker
        self.extractors = extractors
        self.chunker = chunker
        self.extraction_workers = extraction_workers
        self.chunk_failure_threshold = chunk_failure_threshold
        self.ignore = list(ignore or [])
        self.debounce_ms = debounce_ms
        self.filename_index_path = filename_index_path

        self._stats = IndexingStats()
        self._cancel = threading.Event()
        self._run_lock = threading.Lock()
        self._commit_lock = threading.Lock()
        self._generations: dict[str, int] = {}
        self._states: dict[str, PipelineState] = {}
        self._states_lock = threading.Lock()

        self._detector: Optional[ChangeDetector] = None
        self._watch_thread: Optional[threading.Thread] = None

    # State tracking

    @property
    def stats(self) -> IndexingStats:
        """Snapshot of the last completed or in-progress run."""
        return self._stats.snapshot()

    def _set_state(self, path: str, state: PipelineState) -> None:
        logger.debug(f"{path}: {state.value}")
        with self._states_lock:
            if state.terminal:
                self._states.pop(path, None)
            else:
                self._states[path] = state

    def _generation(self, path: str) -> int:
        with self._commit_lock:
            return self._generations.get(path, 0)

    def cancel(self) -> None:
        """Cancel the running index_folder; committed files stay committed."""
        self._cancel.set()

    def _check_live(self, path: str, generation: int, cancel: threading.Event) -> None:
        if cancel.is_set():
            raise _Abandoned("cancelled")
        if self._generations.get(path, 0) != generation:
            raise _Abandoned("deleted while indexing")

    # Filename index

    def _filename_entry(self, p: Path) -> FilenameEntry:
        st = p.stat()
        return FilenameEntry(
            path=normalize_path(p),
            name=p.name,
            category=categorize(p),
            size=int(st.st_size),
            last_modified=int(st.st_mtime),
        )

    def scan_filenames(self, root: str | Path) -> tuple[int, list[str]]:
        """Add every indexable file under `root` to the filename index.

        Entries under `root` for files that no longer exist are dropped.
        Returns (files_added, errors).
        """
        folder = self._resolve_folder(root)
        errors: list[str] = []
        seen: set[str] = set()
        for p in Reconciler(root=folder, ignore=self.ignore).scan_files():
            try:
                entry = self._filename_entry(p)
            except OSError as e:
                errors.append(f"{p}: {e}")
                continue
            self.filename_index.add(entry)
            seen.add(entry.path)

        prefix = normalize_path(folder).rstrip("/") + "/"
        for stale in [q for q in self.filename_index.paths() if q.startswith(prefix) and q not in seen]:
            self.filename_index.remove(stale)
        self._save_filenames()
        return len(seen), errors

    def _save_filenames(self) -> None:
        if self.filename_index_path is None:
            return
        try:
            self.filename_index.save(self.filename_index_path)
        except OSError as e:
            logger.warning(f"Failed to save filename index to {self.filename_index_path}: {e}")

    # Pipeline

    def index_file(self, path: str | Path, cancel: Optional[threading.Event] = None) -> PipelineOutcome:
        """Run one file through the pipeline. Per-file errors become the outcome."""
        p = Path(path)
        key = normalize_path(p)
        cancel = cancel or threading.Event()
        generation = self._generation(key)
        outcome = PipelineOutcome(path=key, state=PipelineState.DISCOVERED, category=categorize(p))
        self._set_state(key, PipelineState.DISCOVERED)
        try:
            self._run_pipeline(p, key, generation, cancel, outcome)
        except _Abandoned as e:
            outcome.abandoned = True
            outcome.reason = str(e)
            outcome.state = PipelineState.DELETED if "deleted" in str(e) else PipelineState.SKIPPED
            logger.debug(f"Abandoned {key}: {e}")
        except UnsupportedFileError as e:
            outcome.state = PipelineState.SKIPPED
            outcome.reason = e.reason
            outcome.db_writes += self._drop_ineligible(key)
        except CorruptFileError as e:
            outcome.state = PipelineState.FAILED
            outcome.reason = str(e)
            outcome.db_writes += self._drop_ineligible(key)
            logger.warning(f"Failed to index {key}: {e}")
        except (ExtractionError, EmbeddingError, SchemaError) as e:
            outcome.state = PipelineState.FAILED
            outcome.reason = str(e)
            logger.warning(f"Failed to index {key}: {e}")
        self._set_state(key, outcome.state)
        return outcome

    def _drop_ineligible(self, key: str) -> int:
        """Delete stored rows of a file that no longer yields indexable content.

        The filename entry stays so the file is still findable by name.
        """
        with self._commit_lock:
            if self.store.get_file(key) is None:
                return 0
            self.store.delete_path(key)
        logger.info(f"Removed stale rows for {key}")
        return 1

    def _run_pipeline(
        self,
        p: Path,
        key: str,
        generation: int,
        cancel: threading.Event,
        outcome: PipelineOutcome,
    ) -> None:
        if not self.extractors.supports(p):
            raise UnsupportedFileError(key)
        outcome.modality = "image" if outcome.category == Category.IMAGE else "text"

        self._set_state(key, PipelineState.EXTRACTING)
        try:
            st = p.stat()
            content_hash = hash_file(p)
        except OSError as e:
            raise UnreadableFileError(key, f"Cannot read file ({e.__class__.__name__}: {e})") from e

        existing = self.store.get_file(key)
        if existing is not None and existing.content_hash == content_hash:
            outcome.state = PipelineState.SKIPPED
            outcome.reason = "unchanged"
            return

        self._check_live(key, generation, cancel)
        content = self.extractors.extract(p)
        record = FileRecord(
            path=key,
            content_hash=content_hash,
            last_modified=int(st.st_mtime),
            category=categorize(p),
            size=int(st.st_size),
        )

        if isinstance(content, TextContent):
            outcome.modality = "text"
            self._set_state(key, PipelineState.CHUNKING)
            chunks = self.chunker.chunk(content.text, key)
            outcome.chunks = len(chunks)
            self._check_live(key, generation, cancel)
            rows = self._text_rows(key, record, [c.text for c in chunks], outcome)
            self._commit(record, "text", TEXT_TABLE if rows else None, rows, generation, cancel, outcome)
        elif isinstance(content, ImageContent):
            outcome.modality = "image"
            rows = self._image_rows(key, record, content, outcome)
            self._commit(record, "image", IMAGE_TABLE, rows, generation, cancel, outcome)

    def _text_rows(self, key: str, record: FileRecord, texts: list[str], outcome: PipelineOutcome) -> list[TextVectorRow]:
        if not texts:
            return []
        if not self.store.is_usable(TEXT_TABLE):
            raise self.store.schema_errors[TEXT_TABLE]

        self._set_state(key, PipelineState.EMBEDDING)
        cached = self.store.find_by_hash(TEXT_TABLE, record.content_hash, exclude_path=key)
        if cached and len(cached) == len(texts):
            outcome.reused = True
            return [
                TextVectorRow(
                    path=key,
                    chunk_id=chunk_id_for(key, r.ordinal),
                    ordinal=r.ordinal,
                    content_hash=record.content_hash,
                    embedding=r.embedding,
                    last_modified=record.last_modified,
                )
                for r in cached
            ]

        result = self.worker.embed_text_batch(texts, source=key)
        failures = len(result.failures)
        outcome.chunk_failures = failures
        if failures:
            logger.warning(f"{failures}/{len(texts)} chunks failed to embed for {key}")
            if len(texts) == 1 or result.failure_ratio > self.chunk_failure_threshold:
                first = next(iter(result.failures.values()))
                raise EmbeddingError(
                    f"{failures}/{len(texts)} chunks failed to embed ({first})"
                )
        return [
            TextVectorRow(
                path=key,
                chunk_id=chunk_id_for(key, i),
                ordinal=i,
                content_hash=record.content_hash,
                embedding=vec,
                last_modified=record.last_modified,
            )
            for i, vec in sorted(result.vectors.items())
        ]

    def _image_rows(self, key: str, record: FileRecord, content: ImageContent, outcome: PipelineOutcome) -> list[ImageVectorRow]:
        if not self.store.is_usable(IMAGE_TABLE):
            raise self.store.schema_errors[IMAGE_TABLE]
        if not self.worker.has_images:
            raise UnsupportedFileError(key, "Image embedding disabled")

        self._set_state(key, PipelineState.EMBEDDING)
        cached = self.store.find_by_hash(IMAGE_TABLE, record.content_hash, exclude_path=key)
        if cached:
            outcome.reused = True
            vec = cached[0].embedding
        else:
            result = self.worker.embed_image_batch([content.image], source=key)
            if result.failures:
                raise EmbeddingError(f"Image failed to embed ({result.failures[0]})")
            vec = result.vectors[0]
        return [
            ImageVectorRow(
                path=key,
                content_hash=record.content_hash,
                embedding=vec,
                last_modified=record.last_modified,
                width=content.width,
                height=content.height,
            )
        ]

    def _commit(
        self,
        record: FileRecord,
        modality: str,
        table: Optional[str],
        rows: list,
        generation: int,
        cancel: threading.Event,
        outcome: PipelineOutcome,
    ) -> None:
        with self._commit_lock:
            self._check_live(record.path, generation, cancel)
            if not os.path.exists(record.path):
                raise _Abandoned("deleted while indexing")
            self.store.commit_file(record, modality, table, rows)
        outcome.db_writes += 1
        outcome.rows_written = len(rows)
        outcome.state = PipelineState.STORED

    # Deletion

    def remove_path(self, path: str | Path) -> int:
        """Remove a file, or every indexed file under a directory, from all stores.

        Bumps the generation of each removed path so in-flight pipelines for
        it drop their results. Returns the number of store writes.
        """
        key = normalize_path(path)
        prefix = key.rstrip("/") + "/"
        writes = 0
        with self._commit_lock:
            targets = {key}
            targets |= self.store.paths_under(key)
            targets |= {q for q in self.filename_index.paths() if q.startswith(prefix)}
            # In-flight pipelines under the directory that have no rows yet
            with self._states_lock:
                targets |= {q for q in self._states if q == key or q.startswith(prefix)}
            for t in sorted(targets):
                self._generations[t] = self._generations.get(t, 0) + 1
                self.filename_index.remove(t)
                if self.store.delete_path(t):
                    writes += 1
                    logger.info(f"Removed {t} from index")
        return writes

    # Batch indexing

    def _resolve_folder(self, path: str | Path) -> Path:
        folder = Path(path).expanduser()
        if not folder.exists():
            raise IndexTargetError(str(folder), "Folder not found")
        if not folder.is_dir():
            raise IndexTargetError(str(folder), "Not a directory")
        return folder.resolve()

    def index_folder(self, path: str | Path, cancel: Optional[threading.Event] = None) -> IndexingStats:
        """Reconcile and index every eligible file under `path`.

        Files missing from disk but still indexed under the folder are
        removed. Per-file failures are recorded in the returned stats and
        never abort the batch.
        """
        folder = self._resolve_folder(path)
        with self._run_lock:
            self._cancel = cancel or threading.Event()
            stats = IndexingStats(in_progress=True)
            self._stats = stats
            start = time.time()
            try:
                self._index_folder(folder, stats, self._cancel)
            finally:
                stats.elapsed_seconds = time.time() - start
                stats.cancelled = self._cancel.is_set()
                stats.in_progress = False
                self._save_filenames()
            logger.info(
                f"Indexed {folder}: processed={stats.processed} indexed={stats.indexed} "
                f"skipped={stats.skipped} failed={stats.failed} removed={stats.removed} "
                f"({stats.elapsed_seconds:.2f}s{', cancelled' if stats.cancelled else ''})"
            )
            return stats.snapshot()

    def _index_folder(self, folder: Path, stats: IndexingStats, cancel: threading.Event) -> None:
        files = Reconciler(root=folder, ignore=self.ignore).scan_files()
        logger.info(f"Found {len(files)} files under {folder}")

        present: set[str] = set()
        for p in files:
            try:
                entry = self._filename_entry(p)
            except OSError as e:
                logger.warning(f"Cannot stat {p}: {e}")
                continue
            self.filename_index.add(entry)
            present.add(entry.path)

        prefix = normalize_path(folder).rstrip("/") + "/"
        stale = (self.store.paths_under(str(folder)) | {
            q for q in self.filename_index.paths() if q.startswith(prefix)
        }) - present
        for gone in sorted(stale):
            stats.add_writes(self.remove_path(gone))
            stats.removed += 1

        max_pending = self.extraction_workers * 2
        pending: set[Future] = set()
        with ThreadPoolExecutor(max_workers=self.extraction_workers, thread_name_prefix="index") as pool:
            for p in files:
                if cancel.is_set():
                    break
                if len(pending) >= max_pending:
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    self._collect(done, stats)
                pending.add(pool.submit(self.index_file, p, cancel))
            done, _ = wait(pending)
            self._collect(done, stats)

    def _collect(self, done: Iterable[Future], stats: IndexingStats) -> None:
        for fut in done:
            try:
                stats.record(fut.result())
            except Exception as e:
                # Store-level failures surface to the caller
                logger.error(f"Indexing worker crashed: {e}")
                raise

    # Events

    def handle_event(self, event: ChangeEvent) -> Optional[PipelineOutcome]:
        p = Path(event.path)
        if event.kind == ChangeKind.DELETED or not p.exists():
            self.remove_path(p)
            return None
        if p.is_dir():
            self.index_folder(p)
            return None
        try:
            self.filename_index.add(self._filename_entry(p))
        except OSError as e:
            logger.warning(f"Cannot stat {p}: {e}")
            return None
        outcome = self.index_file(p)
        self._save_filenames()
        if outcome.state == PipelineState.FAILED:
            logger.warning(f"{event.kind.value} {event.path}: failed ({outcome.reason})")
        else:
            logger.info(f"{event.kind.value} {event.path}: {outcome.state.value}")
        return outcome

    def watch(self, roots: Iterable[str | Path]) -> None:
        """Start consuming watcher events on a background thread."""
        if self._detector is not None:
            raise RuntimeError("Already watching")
        detector = ChangeDetector(debounce_ms=self.debounce_ms, ignore=self.ignore)
        stream = detector.watch(roots)
        self._detector = detector

        def loop() -> None:
            for event in stream:
                try:
                    self.handle_event(event)
                except Exception as e:
                    logger.error(f"Error processing {event.kind.value} {event.path}: {e}")

        self._watch_thread = threading.Thread(target=loop, name="watch-coordinator", daemon=True)
        self._watch_thread.start()

    @property
    def watching(self) -> bool:
        return self._detector is not None

    def stop(self, timeout: float = 10.0) -> None:
        detector, self._detector = self._detector, None
        if detector is not None:
            detector.stop()
        if self._watch_thread is not None:
            self._watch_thread.join(timeout=timeout)
            self._watch_thread = None
