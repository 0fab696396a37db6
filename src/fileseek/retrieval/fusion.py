from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Sequence

from ..models import Modality, SearchResult

# Lower sorts first when normalised scores tie
MODALITY_PRIORITY: dict[Modality, int] = {
    Modality.TEXT: 0,
    Modality.IMAGE: 1,
    Modality.FILENAME: 2,
}


def min_max_normalize(results: Sequence[SearchResult]) -> list[SearchResult]:
    """Rescale scores to [0, 1]. A single result or all-equal scores map to 1.0.

    The raw score is kept in metadata as `raw_score`.
    """
    if not results:
        return []
    scores = [r.score for r in results]
    lo, hi = min(scores), max(scores)
    span = hi - lo
    out: list[SearchResult] = []
    for r in results:
        norm = 1.0 if span <= 0 else (r.score - lo) / span
        out.append(replace(r, score=norm, metadata={**r.metadata, "raw_score": r.score}))
    return out


@dataclass
class FusionRanker:
    """Merge per-modality result lists into one ranked list.

    Each list is min-max normalised on its own, then all entries are sorted
    by normalised score descending, modality priority, and path. A path seen
    in several lists keeps only its highest-ranked entry.
    """

    priority: dict[Modality, int] = field(default_factory=lambda: dict(MODALITY_PRIORITY))

    def sort_key(self, r: SearchResult) -> tuple[float, int, str]:
        return (-r.score, self.priority.get(r.modality, len(self.priority)), r.path)

    def merge(self, lists: Sequence[Sequence[SearchResult]], limit: int) -> list[SearchResult]:
        merged: list[SearchResult] = []
        for results in lists:
            merged.extend(min_max_normalize(results))
        merged.sort(key=self.sort_key)

        seen: set[str] = set()
        out: list[SearchResult] = []
        for r in merged:
            if r.path in seen:
                continue
            seen.add(r.path)
            out.append(r)
            if len(out) >= limit:
                break
        return out
