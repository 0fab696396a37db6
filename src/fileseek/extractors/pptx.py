from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pptx import Presentation

from .base import TextContent


@dataclass
class PptxExtractor:
    supported_suffixes = (".pptx",)
    include_notes: bool = True

    def extract(self, path: Path) -> TextContent:
        prs = Presentation(str(path))
        slides_out: list[str] = []
        for slide in prs.slides:
            parts: list[str] = []
            for shape in slide.shapes:
                if getattr(shape, "has_text_frame", False) and shape.text_frame:
                    txt = shape.text_frame.text.strip()
                    if txt:
                        parts.append(txt)
            if self.include_notes and slide.has_notes_slide:
                notes = slide.notes_slide.notes_text_frame
                if notes is not None and notes.text.strip():
                    parts.append(notes.text.strip())
            if parts:
                slides_out.append("\n".join(parts))
        text = "\n\n".join(slides_out)
        meta: dict[str, Any] = {"slide_count": len(prs.slides)}
        return TextContent(text=text, metadata=meta)
