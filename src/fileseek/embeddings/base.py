from __future__ import annotations

from typing import Any, Protocol, Sequence

import numpy as np


class TextEmbedder(Protocol):
    dims: int

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        """Return an (n, dims) float32 array of L2-normalised vectors."""
        ...

    def embed_query(self, query: str) -> np.ndarray:
        """Return a (dims,) vector; may apply an instruction prefix."""
        ...


class ImageEmbedder(Protocol):
    dims: int

    def embed_images(self, images: Sequence[Any]) -> np.ndarray:
        """Return an (n, dims) float32 array for decoded PIL images."""
        ...

    def embed_query(self, query: str) -> np.ndarray:
        """Embed text into the image space (text tower) for cross-modal search."""
        ...
