from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import frontmatter

from ..errors import CorruptFileError
from .base import TextContent

TEXT_SUFFIXES = (
    ".txt", ".md", ".markdown", ".rst", ".csv", ".log", ".json", ".yaml",
    ".yml", ".toml", ".ini",
)

CODE_SUFFIXES = (
    ".py", ".js", ".jsx", ".ts", ".tsx", ".html", ".css", ".scss", ".rs",
    ".go", ".java", ".cpp", ".c", ".h", ".cs", ".php", ".rb", ".sh", ".sql",
)

MARKDOWN_SUFFIXES = (".md", ".markdown")


@dataclass
class PlainTextExtractor:
    supported_suffixes = TEXT_SUFFIXES + CODE_SUFFIXES

    def extract(self, path: Path) -> TextContent:
        raw = path.read_bytes()
        if b"\x00" in raw[:8192]:
            raise CorruptFileError(str(path), "Binary content in text file")
        text = raw.decode("utf-8", errors="replace")
        meta: dict[str, Any] = {}
        if path.suffix.lower() in MARKDOWN_SUFFIXES:
            post = frontmatter.loads(text)
            text = post.content
            if post.metadata:
                meta["frontmatter"] = dict(post.metadata)
        return TextContent(text=text, metadata=meta)
