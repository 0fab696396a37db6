from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator
import logging
import re

from ..hashing import chunk_id_for
from ..models import Chunk

logger = logging.getLogger(__name__)

_PARAGRAPH_RE = re.compile(r"\n\s*\n")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")
_WHITESPACE_RE = re.compile(r"\s+")


def _join(units: list[tuple[str, str]]) -> str:
    return units[0][0] + "".join(sep + piece for piece, sep in units[1:])


def _length(units: list[tuple[str, str]]) -> int:
    return len(units[0][0]) + sum(len(sep) + len(piece) for piece, sep in units[1:])


@dataclass
class TextChunker:
    """Pack text into chunks on paragraph, sentence, then word boundaries.

    Pieces are packed greedily up to `max_chars`. A final chunk shorter than
    `min_chars` takes trailing pieces from the chunk before it when both
    stay within the band; a tail that cannot be balanced that way (one
    long paragraph followed by a short one) stays short. A unit that cannot be
    split at any boundary (one very long word) is hard-split at `max_chars`,
    so every chunk fits the band's upper edge and the loop always terminates.
    Output stops after `max_chunks` chunks.
    """
    min_chars: int = 500
    max_chars: int = 1500
    max_chunks: int = 100

    def __post_init__(self) -> None:
        if self.min_chars < 1 or self.max_chars < self.min_chars:
            raise ValueError(f"Invalid chunk band: [{self.min_chars}, {self.max_chars}]")
        if self.max_chunks < 1:
            raise ValueError(f"max_chunks must be positive, got {self.max_chunks}")

    def _units(self, text: str) -> Iterator[tuple[str, str]]:
        # (piece, separator placed before it when packed after another piece)
        for para in _PARAGRAPH_RE.split(text):
            para = para.strip()
            if not para:
                continue
            if len(para) <= self.max_chars:
                yield para, "\n\n"
                continue
            sep = "\n\n"
            for sent in _SENTENCE_RE.split(para):
                sent = sent.strip()
                if not sent:
                    continue
                if len(sent) <= self.max_chars:
                    yield sent, sep
                    sep = " "
                    continue
                for word in _WHITESPACE_RE.split(sent):
                    if not word:
                        continue
                    for i in range(0, len(word), self.max_chars):
                        yield word[i:i + self.max_chars], sep
                        sep = " "

    def _pieces(self, text: str) -> Iterator[str]:
        prev: list[tuple[str, str]] = []
        cur: list[tuple[str, str]] = []
        cur_len = 0
        for piece, sep in self._units(text):
            if cur and cur_len + len(sep) + len(piece) > self.max_chars:
                if prev:
                    yield _join(prev)
                prev, cur, cur_len = cur, [], 0
            cur_len += len(piece) + (len(sep) if cur else 0)
            cur.append((piece, sep))
        if prev and cur:
            self._rebalance_tail(prev, cur)
        for units in (prev, cur):
            if units:
                yield _join(units)

    def _rebalance_tail(self, prev: list[tuple[str, str]], tail: list[tuple[str, str]]) -> None:
        # Shift trailing pieces of the previous chunk into a short final chunk
        # while both stay inside the band.
        while len(prev) > 1 and _length(tail) < self.min_chars:
            if _length([prev[-1]] + tail) > self.max_chars or _length(prev[:-1]) < self.min_chars:
                break
            tail.insert(0, prev.pop())

    def iter_chunks(self, text: str, source_path: str = "") -> Iterator[Chunk]:
        if not text or not text.strip():
            return
        for ordinal, piece in enumerate(self._pieces(text)):
            if ordinal >= self.max_chunks:
                logger.info(f"Limiting chunks to {self.max_chunks} for {source_path or '<text>'}")
                return
            yield Chunk(
                source_path=source_path,
                ordinal=ordinal,
                text=piece,
                chunk_id=chunk_id_for(source_path, ordinal),
            )

    def chunk(self, text: str, source_path: str = "") -> list[Chunk]:
        chunks = list(self.iter_chunks(text, source_path))
        logger.debug(f"Split {len(text)} chars into {len(chunks)} chunks")
        return chunks
