from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import pdfplumber

from .base import TextContent


@dataclass
class PdfExtractor:
    supported_suffixes = (".pdf",)

    def extract(self, path: Path) -> TextContent:
        pages: list[str] = []
        with pdfplumber.open(str(path)) as pdf:
            for page in pdf.pages:
                t = page.extract_text() or ""
                if t.strip():
                    pages.append(t.strip())
            page_count = len(pdf.pages)

        text = "\n\n".join(pages)
        meta: dict[str, Any] = {"page_count": page_count}
        return TextContent(text=text, metadata=meta)
