from .bktree import BKTree
from .distance import damerau_levenshtein
from .index import FilenameIndex, FilenameMatch

__all__ = ["BKTree", "FilenameIndex", "FilenameMatch", "damerau_levenshtein"]
