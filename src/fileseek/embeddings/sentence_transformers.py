from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence
import logging

import numpy as np

logger = logging.getLogger(__name__)


def _load_model(model_id: str, device: str) -> Any:
    # Suppress harmless multiprocessing resource tracker warnings on macOS
    import warnings
    warnings.filterwarnings("ignore", message="resource_tracker: There appear to be.*leaked semaphore")

    from sentence_transformers import SentenceTransformer  # type: ignore
    logger.info(f"Loading embedding model {model_id} on {device}")
    return SentenceTransformer(model_id, device=device)


@dataclass
class _ModelHandle:
    model_id: str
    device: str
    batch_size: int
    _model: Any = field(init=False, repr=False)
    dims: int = field(init=False)

    def __post_init__(self) -> None:
        self._model = _load_model(self.model_id, self.device)
        self.dims = int(self._encode(["dimension_probe"]).shape[1])
        logger.debug(f"{self.model_id}: {self.dims} dims")

    def _encode(self, items: Sequence[Any]) -> np.ndarray:
        vecs = self._model.encode(
            list(items),
            batch_size=min(self.batch_size, max(len(items), 1)),
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        return np.asarray(vecs, dtype=np.float32)


@dataclass
class SentenceTransformersEmbedder(_ModelHandle):
    """Text embedder for documents and queries.

    bge models are trained for asymmetric retrieval: queries carry an
    instruction prefix, documents do not.
    """
    model_id: str = "BAAI/bge-small-en-v1.5"
    device: str = "cpu"
    batch_size: int = 32
    use_query_prefix: bool = True
    query_prefix: str = "Represent this sentence for searching relevant passages: "

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        return self._encode(texts)

    def embed_query(self, query: str) -> np.ndarray:
        if self.use_query_prefix and self.query_prefix:
            query = self.query_prefix + query
        return self._encode([query])[0]


@dataclass
class ClipImageEmbedder(_ModelHandle):
    """CLIP through sentence-transformers: images and text share one space."""
    model_id: str = "clip-ViT-B-32"
    device: str = "cpu"
    batch_size: int = 16

    def embed_images(self, images: Sequence[Any]) -> np.ndarray:
        return self._encode(images)

    def embed_query(self, query: str) -> np.ndarray:
        return self._encode([query])[0]
