from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from PIL import Image, UnidentifiedImageError

from ..errors import CorruptFileError
from .base import ImageContent

IMAGE_SUFFIXES = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp")


@dataclass
class ImageExtractor:
    supported_suffixes = IMAGE_SUFFIXES

    def extract(self, path: Path) -> ImageContent:
        """Decode and verify an image.

        `verify()` invalidates the image object, so the file is opened twice:
        once to check integrity, once to load pixels for embedding.
        """
        try:
            with Image.open(path) as img:
                img.verify()
            with Image.open(path) as img:
                fmt = img.format
                img.load()
                rgb = img.convert("RGB")
        except (UnidentifiedImageError, SyntaxError) as e:
            raise CorruptFileError(str(path), f"Invalid image ({e})") from e

        w, h = rgb.size
        if w == 0 or h == 0:
            raise CorruptFileError(str(path), "Image has zero size")
        meta: dict[str, Any] = {"width": w, "height": h, "format": fmt}
        return ImageContent(image=rgb, width=w, height=h, metadata=meta)
