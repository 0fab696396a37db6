from __future__ import annotations

from typing import Iterator, Protocol

from ..models import Chunk


class Chunker(Protocol):
    def iter_chunks(self, text: str, source_path: str = "") -> Iterator[Chunk]:
        ...

    def chunk(self, text: str, source_path: str = "") -> list[Chunk]:
        ...
