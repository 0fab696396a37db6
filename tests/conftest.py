"""Shared fixtures: deterministic embedders and a ready-to-use Engine."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Sequence

import numpy as np
import pytest

from fileseek.config import EngineConfig
from fileseek.engine import Engine

TEXT_DIM = 256
IMAGE_DIM = 16

_WORD_RE = re.compile(r"[a-z0-9]+")


class FakeTextEmbedder:
    """Bag-of-words embedder over a per-instance vocabulary.

    Each new word gets the next free dimension, so texts sharing no words
    score exactly 0. Optionally fails on texts containing a marker.
    """

    def __init__(self, dims: int = TEXT_DIM, fail_marker: str | None = None) -> None:
        self.dims = dims
        self.fail_marker = fail_marker
        self.calls: list[list[str]] = []
        self.queries: list[str] = []
        self._vocab: dict[str, int] = {}

    def _vector(self, text: str) -> np.ndarray:
        v = np.zeros(self.dims, dtype=np.float32)
        for tok in _WORD_RE.findall(text.lower()):
            idx = self._vocab.setdefault(tok, len(self._vocab) % self.dims)
            v[idx] += 1.0
        n = float(np.linalg.norm(v))
        if n == 0:
            v[self.dims - 1] = 1.0
            return v
        return v / n

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        items = list(texts)
        self.calls.append(items)
        if self.fail_marker is not None and any(self.fail_marker in t for t in items):
            raise ValueError("cannot embed poisoned chunk")
        return np.vstack([self._vector(t) for t in items])

    def embed_query(self, query: str) -> np.ndarray:
        self.queries.append(query)
        return self._vector(query)


class FakeImageEmbedder:
    """Embeds an image by its mean colour; text queries map to a fixed vector."""

    def __init__(self, dims: int = IMAGE_DIM) -> None:
        self.dims = dims
        self.calls = 0

    def embed_images(self, images: Sequence[Any]) -> np.ndarray:
        self.calls += 1
        out = []
        for img in images:
            r, g, b = img.resize((1, 1)).getpixel((0, 0))
            v = np.zeros(self.dims, dtype=np.float32)
            v[0], v[1], v[2] = r + 1, g + 1, b + 1
            out.append(v / np.linalg.norm(v))
        return np.vstack(out)

    def embed_query(self, query: str) -> np.ndarray:
        v = np.zeros(self.dims, dtype=np.float32)
        v[0] = 1.0
        return v


def make_config(tmp_path: Path, **overrides: Any) -> EngineConfig:
    params: dict[str, Any] = dict(
        index_dir=tmp_path / "idx",
        text_dim=TEXT_DIM,
        image_dim=IMAGE_DIM,
        extraction_workers=2,
        debounce_ms=50,
        min_chunk_chars=20,
        max_chunk_chars=200,
        min_score=0.1,
        embed_timeout_s=10.0,
        embed_backoff_ms=1,
    )
    params.update(overrides)
    return EngineConfig(**params)


@pytest.fixture
def cfg(tmp_path: Path) -> EngineConfig:
    return make_config(tmp_path)


@pytest.fixture
def text_embedder() -> FakeTextEmbedder:
    return FakeTextEmbedder()


@pytest.fixture
def image_embedder() -> FakeImageEmbedder:
    return FakeImageEmbedder()


@pytest.fixture
def engine(cfg: EngineConfig, text_embedder: FakeTextEmbedder, image_embedder: FakeImageEmbedder):
    eng = Engine(cfg, text_embedder=text_embedder, image_embedder=image_embedder)
    yield eng
    eng.close()


@pytest.fixture
def docs(tmp_path: Path) -> Path:
    """A small folder of text files."""
    root = tmp_path / "docs"
    root.mkdir()
    (root / "a.txt").write_text("the quick brown fox", encoding="utf-8")
    (root / "b.txt").write_text("a slow red fox", encoding="utf-8")
    (root / "notes.md").write_text("# Groceries\n\nmilk eggs bread", encoding="utf-8")
    return root
