from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

import numpy as np


class Category(str, Enum):
    DOCUMENT = "Document"
    IMAGE = "Image"
    VIDEO = "Video"
    AUDIO = "Audio"
    ARCHIVE = "Archive"
    CODE = "Code"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: "str | Category") -> "Category":
        if isinstance(value, Category):
            return value
        for c in cls:
            if c.value.lower() == str(value).strip().lower():
                return c
        raise ValueError(f"Unknown category: {value}")


class Modality(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILENAME = "filename"


class ChangeKind(str, Enum):
    CREATED = "Created"
    MODIFIED = "Modified"
    DELETED = "Deleted"


class SearchMode(str, Enum):
    SEMANTIC = "semantic"
    FILENAME = "filename"
    COMBINED = "combined"


class PipelineState(str, Enum):
    DISCOVERED = "Discovered"
    EXTRACTING = "Extracting"
    CHUNKING = "Chunking"
    EMBEDDING = "Embedding"
    STORED = "Stored"
    SKIPPED = "Skipped"
    FAILED = "Failed"
    DELETED = "Deleted"

    @property
    def terminal(self) -> bool:
        return self in (PipelineState.STORED, PipelineState.SKIPPED, PipelineState.FAILED, PipelineState.DELETED)


@dataclass(frozen=True)
class FileRecord:
    path: str
    content_hash: str
    last_modified: int
    category: Category
    size: int


@dataclass(frozen=True)
class Chunk:
    source_path: str
    ordinal: int
    text: str
    chunk_id: str


@dataclass(frozen=True)
class TextVectorRow:
    path: str
    chunk_id: str
    ordinal: int
    content_hash: str
    embedding: np.ndarray
    last_modified: int


@dataclass(frozen=True)
class ImageVectorRow:
    path: str
    content_hash: str
    embedding: np.ndarray
    last_modified: int
    width: Optional[int] = None
    height: Optional[int] = None


@dataclass(frozen=True)
class FilenameEntry:
    path: str
    name: str
    category: Category
    size: int
    last_modified: int


@dataclass(frozen=True)
class SearchResult:
    path: str
    score: float
    modality: Modality
    distance: Optional[int] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "path": self.path,
            "score": self.score,
            "modality": self.modality.value,
        }
        if self.distance is not None:
            d["distance"] = self.distance
        if self.metadata:
            d["metadata"] = dict(self.metadata)
        return d


@dataclass(frozen=True)
class ChangeEvent:
    path: str
    kind: ChangeKind
