from .base import Chunker
from .text_chunker import TextChunker

__all__ = ["Chunker", "TextChunker"]
