from .schema import IMAGE_TABLE, TEXT_TABLE
from .vector_store import VectorHit, VectorStore

__all__ = ["IMAGE_TABLE", "TEXT_TABLE", "VectorHit", "VectorStore"]
