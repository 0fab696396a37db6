from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, Union
import logging
import mimetypes

from ..errors import (
    CorruptFileError,
    ExtractionError,
    UnreadableFileError,
    UnsupportedFileError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextContent:
    text: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ImageContent:
    """A decoded, verified image ready for the image embedder."""
    image: Any  # PIL.Image.Image in RGB mode
    width: int
    height: int
    metadata: dict[str, Any] = field(default_factory=dict)


ExtractedContent = Union[TextContent, ImageContent]


class Extractor(Protocol):
    supported_suffixes: tuple[str, ...]

    def extract(self, path: Path) -> ExtractedContent:
        ...


class ExtractorRegistry:
    """Dispatches a path to the extractor registered for its suffix.

    Unknown suffixes fall back to MIME sniffing: anything that looks like
    text goes to the registered text fallback, everything else is rejected
    with UnsupportedFileError.
    """

    def __init__(self, max_text_chars: int = 100_000) -> None:
        self._by_suffix: dict[str, Extractor] = {}
        self._text_fallback: Extractor | None = None
        self.max_text_chars = max_text_chars

    def register(self, extractor: Extractor, text_fallback: bool = False) -> None:
        for s in extractor.supported_suffixes:
            self._by_suffix[s.lower()] = extractor
        if text_fallback:
            self._text_fallback = extractor

    def get(self, path: Path) -> Extractor | None:
        ext = self._by_suffix.get(path.suffix.lower())
        if ext is not None:
            return ext
        mime, _ = mimetypes.guess_type(path.name)
        if mime and mime.startswith("text/"):
            return self._text_fallback
        return None

    def supports(self, path: Path) -> bool:
        return self.get(path) is not None

    def extract(self, path: str | Path) -> ExtractedContent:
        p = Path(path)
        extractor = self.get(p)
        if extractor is None:
            raise UnsupportedFileError(str(p))
        try:
            content = extractor.extract(p)
        except ExtractionError:
            raise
        except OSError as e:
            raise UnreadableFileError(str(p), f"Cannot read file ({e.__class__.__name__}: {e})") from e
        except Exception as e:
            raise CorruptFileError(str(p), f"Failed to parse file ({e.__class__.__name__}: {e})") from e

        if isinstance(content, TextContent) and len(content.text) > self.max_text_chars:
            logger.warning(
                f"Text too large ({len(content.text)} chars), truncating to {self.max_text_chars}: {p}"
            )
            content = TextContent(
                text=content.text[: self.max_text_chars],
                metadata=dict(content.metadata, truncated=True),
            )
        return content
