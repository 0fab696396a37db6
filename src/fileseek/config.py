from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import os
import tomllib

from .errors import ConfigError


def _expand(p: str) -> str:
    return os.path.expandvars(os.path.expanduser(p))


def _check_range(name: str, value: float, lo: float, hi: float) -> None:
    if value < lo or value > hi:
        raise ConfigError(f"Invalid {name}: {value}. Must be between {lo} and {hi}.")


@dataclass(frozen=True)
class EngineConfig:
    """Configuration for one engine instance (one index directory).

    Keep field names stable; they mirror the TOML keys.
    """

    index_dir: Path
    roots: list[Path] = field(default_factory=list)
    ignore: list[str] = field(default_factory=list)

    def __post_init__(self):
        """Convert string paths to Path objects and expand ~ and environment variables."""
        if isinstance(self.index_dir, str):
            object.__setattr__(self, "index_dir", Path(_expand(self.index_dir)))
        object.__setattr__(
            self, "roots", [Path(_expand(r)) if isinstance(r, str) else r for r in self.roots]
        )

    # Indexing
    extraction_workers: int = 4
    debounce_ms: int = 300
    max_text_chars: int = 100_000

    # Chunking
    min_chunk_chars: int = 500
    max_chunk_chars: int = 1500
    max_chunks: int = 100

    # Embeddings
    text_model: str = "BAAI/bge-small-en-v1.5"
    image_model: str = "clip-ViT-B-32"
    embedding_device: str = "cpu"  # cpu|cuda|mps
    embedding_batch_size: int = 32
    text_dim: int = 384
    image_dim: int = 512
    offline_mode: bool = False
    use_query_prefix: bool = True
    query_prefix: str = "Represent this sentence for searching relevant passages: "
    enable_images: bool = True
    embed_timeout_s: float = 60.0
    embed_max_retries: int = 2
    embed_backoff_ms: int = 200
    chunk_failure_threshold: float = 0.25
    embed_queue_size: int = 8

    # Search
    search_limit: int = 20
    min_score: float = 0.2
    max_distance: int = 2
    cross_modal: bool = True

    # Logging
    log_level: str = "INFO"

    @property
    def vector_db_path(self) -> Path:
        return self.index_dir / "vectors.sqlite"

    @property
    def filename_index_path(self) -> Path:
        return self.index_dir / "filename_index.json"

    def validate(self) -> "EngineConfig":
        _check_range("extraction_workers", self.extraction_workers, 1, 64)
        _check_range("debounce_ms", self.debounce_ms, 0, 10_000)
        _check_range("min_chunk_chars", self.min_chunk_chars, 1, 50_000)
        _check_range("max_chunk_chars", self.max_chunk_chars, 100, 50_000)
        if self.min_chunk_chars > self.max_chunk_chars:
            raise ConfigError(
                f"min_chunk_chars ({self.min_chunk_chars}) must not exceed max_chunk_chars ({self.max_chunk_chars})."
            )
        _check_range("max_chunks", self.max_chunks, 1, 100_000)
        _check_range("embedding_batch_size", self.embedding_batch_size, 1, 10_000)
        _check_range("text_dim", self.text_dim, 1, 8192)
        _check_range("image_dim", self.image_dim, 1, 8192)
        _check_range("embed_timeout_s", self.embed_timeout_s, 0.001, 3600)
        _check_range("embed_max_retries", self.embed_max_retries, 0, 10)
        _check_range("chunk_failure_threshold", self.chunk_failure_threshold, 0.0, 1.0)
        _check_range("embed_queue_size", self.embed_queue_size, 1, 10_000)
        _check_range("search_limit", self.search_limit, 1, 1000)
        _check_range("min_score", self.min_score, -1.0, 1.0)
        _check_range("max_distance", self.max_distance, 0, 10)
        valid_devices = ("cpu", "cuda", "mps")
        if self.embedding_device not in valid_devices:
            raise ConfigError(f"Invalid device: {self.embedding_device}. Must be one of {valid_devices}.")
        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigError(f"Invalid log level: {self.log_level}")
        return self

    @staticmethod
    def from_toml(path: str | Path) -> "EngineConfig":
        try:
            data = tomllib.loads(Path(path).read_text(encoding="utf-8"))
        except FileNotFoundError as e:
            raise ConfigError(f"Config file not found: {path}") from e
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {path}: {e}") from e

        index = data.get("index", {})
        chunking = data.get("chunking", {})
        emb = data.get("embeddings", {})
        search = data.get("search", {})
        log = data.get("logging", {})

        if "dir" not in index:
            raise ConfigError("Missing required key [index].dir")

        index_dir = Path(_expand(index["dir"])).resolve()
        roots = [Path(_expand(r)).resolve() for r in index.get("roots", [])]

        # Environment variable takes precedence if explicitly set
        offline_mode_env = os.environ.get("HF_OFFLINE_MODE")
        if offline_mode_env is not None:
            offline_mode = offline_mode_env.lower() in ("1", "true", "yes")
        else:
            offline_mode = bool(emb.get("offline_mode", False))

        # SIDE EFFECT: affects the whole process; model loading reads these.
        if offline_mode:
            os.environ.setdefault("HF_HUB_OFFLINE", "1")
            os.environ.setdefault("TRANSFORMERS_OFFLINE", "1")

        cfg = EngineConfig(
            index_dir=index_dir,
            roots=roots,
            ignore=list(index.get("ignore", [])),
            extraction_workers=int(index.get("extraction_workers", 4)),
            debounce_ms=int(index.get("debounce_ms", 300)),
            max_text_chars=int(index.get("max_text_chars", 100_000)),
            min_chunk_chars=int(chunking.get("min_chars", 500)),
            max_chunk_chars=int(chunking.get("max_chars", 1500)),
            max_chunks=int(chunking.get("max_chunks", 100)),
            text_model=emb.get("text_model", "BAAI/bge-small-en-v1.5"),
            image_model=emb.get("image_model", "clip-ViT-B-32"),
            embedding_device=emb.get("device", "cpu"),
            embedding_batch_size=int(emb.get("batch_size", 32)),
            text_dim=int(emb.get("text_dim", 384)),
            image_dim=int(emb.get("image_dim", 512)),
            offline_mode=offline_mode,
            use_query_prefix=bool(emb.get("use_query_prefix", True)),
            query_prefix=emb.get("query_prefix", "Represent this sentence for searching relevant passages: "),
            enable_images=bool(emb.get("enable_images", True)),
            embed_timeout_s=float(emb.get("timeout_s", 60.0)),
            embed_max_retries=int(emb.get("max_retries", 2)),
            embed_backoff_ms=int(emb.get("backoff_ms", 200)),
            chunk_failure_threshold=float(emb.get("chunk_failure_threshold", 0.25)),
            embed_queue_size=int(emb.get("queue_size", 8)),
            search_limit=int(search.get("limit", 20)),
            min_score=float(search.get("min_score", 0.2)),
            max_distance=int(search.get("max_distance", 2)),
            cross_modal=bool(search.get("cross_modal", True)),
            log_level=str(log.get("level", "INFO")).upper(),
        )
        return cfg.validate()
