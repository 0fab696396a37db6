from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import openpyxl

from .base import TextContent


@dataclass
class XlsxExtractor:
    supported_suffixes = (".xlsx",)
    max_rows: int = 200
    max_cols: int = 30

    def extract(self, path: Path) -> TextContent:
        wb = openpyxl.load_workbook(str(path), read_only=True, data_only=True)
        try:
            out: list[str] = []
            for ws in wb.worksheets:
                out.append(f"Sheet: {ws.title}")
                for row in ws.iter_rows(max_row=self.max_rows, max_col=self.max_cols, values_only=True):
                    vals = ["" if v is None else str(v) for v in row]
                    if any(vals):
                        out.append("\t".join(vals).rstrip())
                out.append("")
            sheet_count = len(wb.worksheets)
        finally:
            wb.close()
        text = "\n".join(out).strip()
        meta: dict[str, Any] = {"sheet_count": sheet_count}
        return TextContent(text=text, metadata=meta)
