from __future__ import annotations

from pathlib import Path
from typing import Optional
import logging

from .chunking.text_chunker import TextChunker
from .config import EngineConfig
from .embeddings.base import ImageEmbedder, TextEmbedder
from .embeddings.resilience import RetryPolicy
from .embeddings.worker import EmbeddingWorker
from .errors import ConfigError
from .extractors import default_registry
from .filename_index.index import FilenameIndex
from .indexer.coordinator import IndexCoordinator
from .retrieval.search_engine import SearchEngine
from .store.vector_store import VectorStore

logger = logging.getLogger(__name__)


class Engine:
    """Owns every component for one index directory.

    Commands receive an Engine instead of reaching for module-level state.
    Embedders may be injected (tests pass deterministic fakes); otherwise
    the configured sentence-transformers models are loaded.
    """

    def __init__(
        self,
        cfg: EngineConfig,
        text_embedder: Optional[TextEmbedder] = None,
        image_embedder: Optional[ImageEmbedder] = None,
    ) -> None:
        self.cfg = cfg
        cfg.index_dir.mkdir(parents=True, exist_ok=True)

        if text_embedder is None:
            from .embeddings.sentence_transformers import SentenceTransformersEmbedder
            text_embedder = SentenceTransformersEmbedder(
                model_id=cfg.text_model,
                device=cfg.embedding_device,
                batch_size=cfg.embedding_batch_size,
                use_query_prefix=cfg.use_query_prefix,
                query_prefix=cfg.query_prefix,
            )
        if image_embedder is None and cfg.enable_images:
            from .embeddings.sentence_transformers import ClipImageEmbedder
            image_embedder = ClipImageEmbedder(model_id=cfg.image_model, device=cfg.embedding_device)
        if not cfg.enable_images:
            image_embedder = None

        if int(text_embedder.dims) != cfg.text_dim:
            raise ConfigError(
                f"Text model produces {text_embedder.dims}-dim vectors but text_dim is {cfg.text_dim}"
            )
        if image_embedder is not None and int(image_embedder.dims) != cfg.image_dim:
            raise ConfigError(
                f"Image model produces {image_embedder.dims}-dim vectors but image_dim is {cfg.image_dim}"
            )

        self.worker = EmbeddingWorker(
            text_embedder,
            image_embedder,
            queue_size=cfg.embed_queue_size,
            timeout_s=cfg.embed_timeout_s,
            retry=RetryPolicy(max_retries=cfg.embed_max_retries, backoff_base_ms=cfg.embed_backoff_ms),
        )
        self.worker.start()

        self.store = VectorStore(cfg.vector_db_path, text_dims=cfg.text_dim, image_dims=cfg.image_dim).init()

        self.filename_index = FilenameIndex()
        try:
            self.filename_index.load(cfg.filename_index_path)
        except (OSError, ValueError, KeyError) as e:
            # Rebuildable from a scan, so a bad file is not fatal
            logger.warning(f"Ignoring unreadable filename index {cfg.filename_index_path}: {e}")
            self.filename_index.clear()

        self.extractors = default_registry(
            max_text_chars=cfg.max_text_chars,
            enable_images=image_embedder is not None,
        )
        self.chunker = TextChunker(
            min_chars=cfg.min_chunk_chars,
            max_chars=cfg.max_chunk_chars,
            max_chunks=cfg.max_chunks,
        )
        self.coordinator = IndexCoordinator(
            self.store,
            self.filename_index,
            self.worker,
            self.extractors,
            self.chunker,
            extraction_workers=cfg.extraction_workers,
            chunk_failure_threshold=cfg.chunk_failure_threshold,
            ignore=cfg.ignore,
            debounce_ms=cfg.debounce_ms,
            filename_index_path=cfg.filename_index_path,
        )
        self.search_engine = SearchEngine(
            self.store,
            self.filename_index,
            self.worker,
            cross_modal=cfg.cross_modal,
            default_limit=cfg.search_limit,
            default_min_score=cfg.min_score,
            default_max_distance=cfg.max_distance,
        )
        logger.info(f"Engine ready: index_dir={cfg.index_dir}")

    @classmethod
    def from_config_file(cls, path: str | Path) -> "Engine":
        return cls(EngineConfig.from_toml(path))

    def save_filename_index(self) -> None:
        self.filename_index.save(self.cfg.filename_index_path)

    def close(self) -> None:
        self.coordinator.stop()
        self.worker.stop()
        try:
            self.save_filename_index()
        except OSError as e:
            logger.warning(f"Failed to save filename index: {e}")
        self.store.close()

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

