from .base import ImageEmbedder, TextEmbedder
from .resilience import CircuitBreaker, RetryPolicy
from .worker import BatchResult, EmbeddingWorker

__all__ = [
    "BatchResult",
    "CircuitBreaker",
    "EmbeddingWorker",
    "ImageEmbedder",
    "RetryPolicy",
    "TextEmbedder",
]
