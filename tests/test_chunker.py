"""Tests for the boundary-aware text chunker."""
from __future__ import annotations

import pytest

from fileseek.chunking.text_chunker import TextChunker
from fileseek.hashing import chunk_id_for


class TestTextChunker:

    def test_empty_text_gives_no_chunks(self):
        chunker = TextChunker(min_chars=10, max_chars=50)
        assert chunker.chunk("") == []
        assert chunker.chunk("   \n\n  ") == []

    def test_short_text_is_single_chunk(self):
        chunker = TextChunker(min_chars=10, max_chars=50)
        chunks = chunker.chunk("hello world", "/tmp/a.txt")
        assert len(chunks) == 1
        assert chunks[0].text == "hello world"
        assert chunks[0].ordinal == 0
        assert chunks[0].chunk_id == chunk_id_for("/tmp/a.txt", 0)

    def test_paragraphs_are_packed_up_to_max(self):
        chunker = TextChunker(min_chars=10, max_chars=40)
        text = "\n\n".join(["para one is here", "para two is here", "para three is here"])
        chunks = chunker.chunk(text)
        assert all(len(c.text) <= 40 for c in chunks)
        # First two paragraphs (16 + 2 + 16 chars) fit together
        assert chunks[0].text == "para one is here\n\npara two is here"
        assert chunks[1].text == "para three is here"

    def test_long_paragraph_splits_on_sentences(self):
        chunker = TextChunker(min_chars=10, max_chars=30)
        text = "First sentence here. Second sentence here. Third one."
        chunks = chunker.chunk(text)
        assert [c.text for c in chunks] == [
            "First sentence here.",
            "Second sentence here.",
            "Third one.",
        ]

    def test_unbroken_word_is_hard_split(self):
        chunker = TextChunker(min_chars=5, max_chars=10)
        chunks = chunker.chunk("x" * 25)
        assert [len(c.text) for c in chunks] == [10, 10, 5]

    def test_short_tail_borrows_from_previous_chunk(self):
        chunker = TextChunker(min_chars=20, max_chars=60)
        a, b, c = "a" * 25, "b" * 25, "c" * 10
        chunks = chunker.chunk("\n\n".join([a, b, c]))
        # Greedy packing would leave "ccc..." alone at 10 chars
        assert [ch.text for ch in chunks] == [a, f"{b}\n\n{c}"]
        assert all(20 <= len(ch.text) <= 60 for ch in chunks)

    def test_tail_stays_short_when_nothing_can_move(self):
        chunker = TextChunker(min_chars=20, max_chars=60)
        long, short = "a" * 55, "b" * 10
        assert [ch.text for ch in chunker.chunk(f"{long}\n\n{short}")] == [long, short]

    def test_every_chunk_within_max(self):
        chunker = TextChunker(min_chars=50, max_chars=120)
        words = " ".join(f"word{i}" for i in range(500))
        chunks = chunker.chunk(words + ". " + "y" * 400)
        assert chunks
        assert all(0 < len(c.text) <= 120 for c in chunks)

    def test_max_chunks_caps_output(self):
        chunker = TextChunker(min_chars=5, max_chars=10, max_chunks=3)
        chunks = chunker.chunk("z" * 100)
        assert len(chunks) == 3
        assert [c.ordinal for c in chunks] == [0, 1, 2]

    def test_chunk_ids_are_deterministic(self):
        chunker = TextChunker(min_chars=5, max_chars=20)
        text = "alpha beta gamma delta epsilon zeta eta theta"
        first = [c.chunk_id for c in chunker.chunk(text, "/x/doc.txt")]
        second = [c.chunk_id for c in chunker.chunk(text, "/x/doc.txt")]
        other = [c.chunk_id for c in chunker.chunk(text, "/x/other.txt")]
        assert first == second
        assert first != other

    @pytest.mark.parametrize("min_chars,max_chars,max_chunks", [(0, 10, 1), (20, 10, 1), (5, 10, 0)])
    def test_invalid_band_rejected(self, min_chars, max_chars, max_chunks):
        with pytest.raises(ValueError):
            TextChunker(min_chars=min_chars, max_chars=max_chars, max_chunks=max_chunks)
