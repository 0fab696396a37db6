from .fusion import FusionRanker, min_max_normalize
from .search_engine import SearchEngine, SearchResponse

__all__ = ["FusionRanker", "SearchEngine", "SearchResponse", "min_max_normalize"]
