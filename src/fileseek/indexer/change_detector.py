from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional
import logging
import queue
import threading
import time

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..errors import WatchTargetNotADirectory, WatchTargetNotFound
from ..models import ChangeEvent, ChangeKind
from ..paths import is_excluded_dir, normalize_path
from .queue import JobQueue
from .reconciler import Reconciler

logger = logging.getLogger(__name__)


def coalesce(previous: ChangeKind, new: ChangeKind) -> ChangeKind:
    """Merge two kinds seen for one path inside the debounce window."""
    if previous == ChangeKind.CREATED and new == ChangeKind.MODIFIED:
        return ChangeKind.CREATED
    return new


class Debouncer:
    """Consumer that coalesces raw events per path.

    A path's event is released once `debounce_ms` has passed without another
    event for it. Closing the input flushes everything still pending.
    """

    def __init__(
        self,
        source: JobQueue[ChangeEvent],
        sink: JobQueue[ChangeEvent],
        debounce_ms: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.sink = sink
        self.window_s = debounce_ms / 1000.0
        self._clock = clock
        # path -> (kind, deadline); dicts keep insertion order for flushing
        self._pending: dict[str, tuple[ChangeKind, float]] = {}

    def offer(self, event: ChangeEvent) -> None:
        prev = self._pending.pop(event.path, None)
        kind = coalesce(prev[0], event.kind) if prev else event.kind
        self._pending[event.path] = (kind, self._clock() + self.window_s)

    def flush_due(self, force: bool = False) -> int:
        now = self._clock()
        due = [p for p, (_, deadline) in self._pending.items() if force or deadline <= now]
        for p in due:
            kind, _ = self._pending.pop(p)
            self.sink.put(ChangeEvent(path=p, kind=kind))
        return len(due)

    def _next_timeout(self) -> float:
        if not self._pending:
            return 0.25
        earliest = min(deadline for _, deadline in self._pending.values())
        return max(0.0, earliest - self._clock())

    def run(self) -> None:
        while True:
            try:
                event = self.source.get(timeout=self._next_timeout())
            except queue.Empty:
                self.flush_due()
                continue
            if event is None:
                break
            self.offer(event)
            self.flush_due()
        self.flush_due(force=True)
        self.sink.close()


@dataclass
class ChangeDetector:
    """Filesystem change detector using watchdog.

    The observer thread only filters and enqueues raw events; a debouncer
    thread coalesces them into the stream returned by `watch()`.
    """
    debounce_ms: int = 300
    ignore: list[str] = field(default_factory=list)

    _observer: Optional[Observer] = field(default=None, init=False, repr=False)
    _raw: Optional[JobQueue[ChangeEvent]] = field(default=None, init=False, repr=False)
    _out: Optional[JobQueue[ChangeEvent]] = field(default=None, init=False, repr=False)
    _debounce_thread: Optional[threading.Thread] = field(default=None, init=False, repr=False)

    @staticmethod
    def validate_roots(root_paths: Iterable[str | Path]) -> list[Path]:
        roots: list[Path] = []
        for r in root_paths:
            p = Path(r).expanduser()
            if not p.exists():
                raise WatchTargetNotFound(str(p))
            if not p.is_dir():
                raise WatchTargetNotADirectory(str(p))
            # Resolve symlinks to match watchdog's resolved paths (e.g., /tmp -> /private/tmp on macOS)
            roots.append(p.resolve())
        return roots

    def watch(self, root_paths: Iterable[str | Path]) -> Iterator[ChangeEvent]:
        roots = self.validate_roots(root_paths)
        if self._observer is not None:
            raise RuntimeError("ChangeDetector is already watching")

        raw: JobQueue[ChangeEvent] = JobQueue()
        out: JobQueue[ChangeEvent] = JobQueue()
        self._raw, self._out = raw, out

        class Handler(FileSystemEventHandler):
            def __init__(self, root: Path, ignore: list[str]) -> None:
                self.reconciler = Reconciler(root=root, ignore=ignore)

            def _wanted(self, p: Path, is_directory: bool) -> bool:
                if is_directory:
                    # Directory events matter for creates/deletes of whole trees
                    try:
                        rel = p.relative_to(self.reconciler.root)
                    except ValueError:
                        return False
                    return not any(is_excluded_dir(part) for part in rel.parts)
                return self.reconciler.is_candidate(p)

            def _emit(self, src: str, kind: ChangeKind, is_directory: bool) -> None:
                p = Path(src)
                if self._wanted(p, is_directory):
                    raw.put(ChangeEvent(path=normalize_path(p), kind=kind))

            def dispatch(self, event: FileSystemEvent) -> None:
                try:
                    super().dispatch(event)
                except Exception as e:
                    # Never let one bad event kill the observer thread
                    logger.warning(f"Error handling {event.event_type} for {event.src_path}: {e}")

            def on_created(self, event):  # noqa
                self._emit(event.src_path, ChangeKind.CREATED, event.is_directory)

            def on_modified(self, event):  # noqa
                if event.is_directory:
                    return
                self._emit(event.src_path, ChangeKind.MODIFIED, False)

            def on_deleted(self, event):  # noqa
                self._emit(event.src_path, ChangeKind.DELETED, event.is_directory)

            def on_moved(self, event):  # noqa
                self._emit(event.src_path, ChangeKind.DELETED, event.is_directory)
                self._emit(event.dest_path, ChangeKind.CREATED, event.is_directory)

        observer = Observer()
        for root in roots:
            observer.schedule(Handler(root, self.ignore), str(root), recursive=True)
        observer.start()
        self._observer = observer

        debouncer = Debouncer(raw, out, debounce_ms=self.debounce_ms)
        self._debounce_thread = threading.Thread(target=debouncer.run, name="watch-debouncer", daemon=True)
        self._debounce_thread.start()
        logger.info(f"Watching {len(roots)} root(s): {', '.join(str(r) for r in roots)}")
        return self.events()

    def events(self) -> Iterator[ChangeEvent]:
        if self._out is None:
            return iter(())
        return iter(self._out)

    @property
    def running(self) -> bool:
        return self._observer is not None

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the observer and end the event stream after pending events flush."""
        observer = self._observer
        if observer is None:
            return
        self._observer = None
        observer.stop()
        observer.join(timeout=timeout)
        if self._raw is not None:
            self._raw.close()
        if self._debounce_thread is not None:
            self._debounce_thread.join(timeout=timeout)
            self._debounce_thread = None
        logger.info("Stopped watching")
