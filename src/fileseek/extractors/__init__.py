from __future__ import annotations

from .base import (
    ExtractedContent,
    Extractor,
    ExtractorRegistry,
    ImageContent,
    TextContent,
)


def default_registry(max_text_chars: int = 100_000, enable_images: bool = True) -> ExtractorRegistry:
    from .image import ImageExtractor
    from .pdf import PdfExtractor
    from .plaintext import PlainTextExtractor
    from .pptx import PptxExtractor
    from .xlsx import XlsxExtractor

    registry = ExtractorRegistry(max_text_chars=max_text_chars)
    registry.register(PlainTextExtractor(), text_fallback=True)
    registry.register(PdfExtractor())
    registry.register(PptxExtractor())
    registry.register(XlsxExtractor())
    if enable_images:
        registry.register(ImageExtractor())
    return registry


__all__ = [
    "ExtractedContent",
    "Extractor",
    "ExtractorRegistry",
    "ImageContent",
    "TextContent",
    "default_registry",
]
