from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Optional
import logging

from ..embeddings.worker import EmbeddingWorker
from ..errors import QueryError
from ..filename_index.index import FilenameIndex
from ..models import Category, Modality, SearchMode, SearchResult
from ..paths import categorize
from ..store.schema import IMAGE_TABLE, TEXT_TABLE
from ..store.vector_store import VectorHit, VectorStore
from .fusion import FusionRanker

logger = logging.getLogger(__name__)

# Fetch every candidate when a category filter may discard some of the top k
_ALL = 1 << 30


@dataclass(frozen=True)
class SearchResponse:
    query: str
    mode: SearchMode
    results: list[SearchResult] = field(default_factory=list)
    image_results: list[SearchResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "results": [r.to_dict() for r in self.results],
            "total": self.total,
            "query": self.query,
            "mode": self.mode.value,
        }
        if self.mode == SearchMode.SEMANTIC:
            d["image_results"] = [r.to_dict() for r in self.image_results]
        return d


def _parse_categories(categories: Optional[Iterable[Category | str]]) -> Optional[set[Category]]:
    if not categories:
        return None
    try:
        return {Category.parse(c) for c in categories}
    except ValueError as e:
        raise QueryError(str(e)) from e


class SearchEngine:
    """Answers semantic, filename and combined queries over the indexes."""

    def __init__(
        self,
        store: VectorStore,
        filename_index: FilenameIndex,
        worker: EmbeddingWorker,
        *,
        cross_modal: bool = True,
        default_limit: int = 20,
        default_min_score: float = 0.2,
        default_max_distance: int = 2,
    ) -> None:
        self.store = store
        self.filename_index = filename_index
        self.worker = worker
        self.cross_modal = cross_modal
        self.default_limit = default_limit
        self.default_min_score = default_min_score
        self.default_max_distance = default_max_distance
        self.ranker = FusionRanker()

    def search(
        self,
        query: str,
        mode: SearchMode | str = SearchMode.SEMANTIC,
        limit: Optional[int] = None,
        min_score: Optional[float] = None,
        categories: Optional[Iterable[Category | str]] = None,
        max_distance: Optional[int] = None,
    ) -> SearchResponse:
        if not isinstance(query, str) or not query.strip():
            raise QueryError("Query must not be empty")
        try:
            mode = SearchMode(mode)
        except ValueError as e:
            raise QueryError(f"Unknown search mode: {mode}") from e
        limit = self.default_limit if limit is None else int(limit)
        if limit < 1:
            raise QueryError(f"limit must be positive, got {limit}")
        min_score = self.default_min_score if min_score is None else float(min_score)
        max_distance = self.default_max_distance if max_distance is None else int(max_distance)
        if max_distance < 0:
            raise QueryError(f"max_distance must not be negative, got {max_distance}")
        cats = _parse_categories(categories)
        q = query.strip()

        if mode == SearchMode.FILENAME:
            return SearchResponse(query=q, mode=mode, results=self._filename(q, max_distance, cats, limit))

        text, images = self._semantic(q, limit, min_score, cats)
        if mode == SearchMode.SEMANTIC:
            return SearchResponse(query=q, mode=mode, results=text, image_results=images)

        names = self._filename(q, max_distance, cats, limit)
        fused = self.ranker.merge([text, images, names], limit)
        return SearchResponse(query=q, mode=mode, results=fused)

    # Modes

    def _semantic(
        self, q: str, limit: int, min_score: float, cats: Optional[set[Category]]
    ) -> tuple[list[SearchResult], list[SearchResult]]:
        k = limit if cats is None else _ALL
        qv = self.worker.embed_text_query(q)
        hits = self.store.query(TEXT_TABLE, qv, k=k, min_score=min_score)
        text = self._to_results(hits, Modality.TEXT, cats, limit)

        images: list[SearchResult] = []
        if self.cross_modal and self.worker.has_images:
            if not self.store.is_usable(IMAGE_TABLE):
                logger.warning(f"Skipping image search: {self.store.schema_errors[IMAGE_TABLE]}")
            else:
                iv = self.worker.embed_image_query(q)
                hits = self.store.query(IMAGE_TABLE, iv, k=k, min_score=min_score)
                images = self._to_results(hits, Modality.IMAGE, cats, limit)
        logger.debug(f"Semantic '{q}': {len(text)} text, {len(images)} image hits")
        return text, images

    def _filename(
        self, q: str, max_distance: int, cats: Optional[set[Category]], limit: int
    ) -> list[SearchResult]:
        matches = self.filename_index.search(q, max_distance=max_distance, categories=cats, limit=limit)
        return [
            SearchResult(
                path=m.entry.path,
                score=m.score,
                modality=Modality.FILENAME,
                distance=m.distance,
                metadata={"name": m.entry.name, "category": m.entry.category.value},
            )
            for m in matches
        ]

    def _to_results(
        self, hits: list[VectorHit], modality: Modality, cats: Optional[set[Category]], limit: int
    ) -> list[SearchResult]:
        out: list[SearchResult] = []
        for h in hits:
            category = categorize(h.path)
            if cats is not None and category not in cats:
                continue
            meta: dict[str, Any] = {"name": Path(h.path).name, "category": category.value}
            if h.ordinal is not None:
                meta["chunk"] = h.ordinal
            meta.update(h.metadata)
            out.append(SearchResult(path=h.path, score=h.score, modality=modality, metadata=meta))
            if len(out) >= limit:
                break
        return out
