"""fileseek: local incremental search over files.

Keeps a semantic (vector) index and a fuzzy filename index in sync with
folders on disk, and answers natural-language and approximate-name queries.

Public API:
- EngineConfig
- Engine
"""

from .config import EngineConfig
from .engine import Engine

__version__ = "0.1.0"

__all__ = ["EngineConfig", "Engine"]
