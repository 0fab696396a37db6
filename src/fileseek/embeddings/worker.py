from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Sequence
import logging
import queue
import threading

import numpy as np

from ..errors import EmbeddingError, EmbeddingTimeout
from .base import ImageEmbedder, TextEmbedder
from .resilience import RetryPolicy

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass
class _Request:
    fn: Callable[[], Any]
    future: Future
    label: str


@dataclass
class BatchResult:
    """Outcome of embedding a batch where items may fail independently."""
    vectors: dict[int, np.ndarray] = field(default_factory=dict)
    failures: dict[int, str] = field(default_factory=dict)

    @property
    def failure_ratio(self) -> float:
        total = len(self.vectors) + len(self.failures)
        return len(self.failures) / total if total else 0.0


class EmbeddingWorker:
    """Single-consumer actor that owns the embedding models.

    Models are not reentrant, so every inference call (indexing and query)
    goes through one dedicated thread. Requests wait in a bounded queue;
    when it is full, producers block, which is the pipeline's backpressure
    point. Each request is answered through a Future.
    """

    def __init__(
        self,
        text_embedder: TextEmbedder,
        image_embedder: ImageEmbedder | None = None,
        queue_size: int = 8,
        timeout_s: float = 60.0,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.text_embedder = text_embedder
        self.image_embedder = image_embedder
        self.timeout_s = timeout_s
        self.retry = retry or RetryPolicy()
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._processed = 0

    @property
    def has_images(self) -> bool:
        return self.image_embedder is not None

    @property
    def text_dims(self) -> int:
        return int(self.text_embedder.dims)

    @property
    def image_dims(self) -> int | None:
        return int(self.image_embedder.dims) if self.image_embedder is not None else None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self.running:
                return
            self._thread = threading.Thread(target=self._run, name="embedding-worker", daemon=True)
            self._thread.start()
            logger.debug("Embedding worker started")

    def stop(self, timeout: float | None = 5.0) -> None:
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._queue.put(_STOP)
            thread.join(timeout=timeout)
            self._thread = None
            logger.debug(f"Embedding worker stopped after {self._processed} requests")

    def _run(self) -> None:
        while True:
            req = self._queue.get()
            try:
                if req is _STOP:
                    return
                if not req.future.set_running_or_notify_cancel():
                    continue
                try:
                    req.future.set_result(req.fn())
                except Exception as e:
                    logger.debug(f"Embedding request {req.label} raised {type(e).__name__}: {e}")
                    req.future.set_exception(e)
                self._processed += 1
            finally:
                self._queue.task_done()

    def submit(self, fn: Callable[[], Any], label: str = "request") -> Future:
        if not self.running:
            self.start()
        fut: Future = Future()
        try:
            self._queue.put(_Request(fn=fn, future=fut, label=label), timeout=self.timeout_s)
        except queue.Full as e:
            raise EmbeddingTimeout(f"Embedding queue full for {self.timeout_s}s ({label})") from e
        return fut

    def _call(self, fn: Callable[[], Any], label: str) -> Any:
        fut = self.submit(fn, label)
        try:
            return fut.result(timeout=self.timeout_s)
        except TimeoutError as e:
            fut.cancel()
            raise EmbeddingTimeout(f"Embedding timed out after {self.timeout_s}s ({label})") from e

    # Direct (single-attempt) calls

    def embed_texts(self, texts: Sequence[str], label: str = "texts") -> np.ndarray:
        items = list(texts)
        return self._call(lambda: self.text_embedder.embed_texts(items), label)

    def embed_images(self, images: Sequence[Any], label: str = "images") -> np.ndarray:
        if self.image_embedder is None:
            raise EmbeddingError("No image embedder configured")
        items = list(images)
        return self._call(lambda: self.image_embedder.embed_images(items), label)

    def embed_text_query(self, query: str) -> np.ndarray:
        return self._call(lambda: self.text_embedder.embed_query(query), "query")

    def embed_image_query(self, query: str) -> np.ndarray:
        if self.image_embedder is None:
            raise EmbeddingError("No image embedder configured")
        return self._call(lambda: self.image_embedder.embed_query(query), "image-query")

    # Retrying batch calls used by the indexing pipeline

    def embed_text_batch(self, texts: Sequence[str], source: str = "unknown") -> BatchResult:
        return self._embed_batch(list(texts), self.embed_texts, source)

    def embed_image_batch(self, images: Sequence[Any], source: str = "unknown") -> BatchResult:
        return self._embed_batch(list(images), self.embed_images, source)

    def _embed_batch(self, items: list, embed: Callable[..., np.ndarray], source: str) -> BatchResult:
        """Embed the whole batch; if that fails, embed each item on its own.

        Every attempt is retried through the RetryPolicy, so one bad item
        costs only its own slot in the result.
        """
        result = BatchResult()
        if not items:
            return result
        try:
            vecs = self.retry.call(embed, items, label=source, source=source)
            for i, v in enumerate(vecs):
                result.vectors[i] = np.asarray(v, dtype=np.float32)
            return result
        except EmbeddingTimeout:
            raise
        except EmbeddingError as e:
            if len(items) == 1:
                result.failures[0] = str(e)
                return result
            logger.debug(f"Batch embedding failed for {source}, falling back to per-item: {e}")

        for i, item in enumerate(items):
            try:
                vecs = self.retry.call(embed, [item], label=f"{source}#{i}", source=f"{source}#{i}")
                result.vectors[i] = np.asarray(vecs[0], dtype=np.float32)
            except EmbeddingTimeout:
                raise
            except EmbeddingError as e:
                result.failures[i] = str(e)
        return result
