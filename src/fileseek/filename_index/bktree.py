from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterator

from .distance import damerau_levenshtein


@dataclass
class _Node:
    key: str
    values: set[str] = field(default_factory=set)
    children: dict[int, int] = field(default_factory=dict)  # distance -> node index


class BKTree:
    """Burkhard-Keller tree over string keys, stored as an arena.

    Nodes live in a flat list and refer to children by index. Each node holds
    the set of values (paths) filed under its key. Removing the last value
    leaves a tombstone that still routes searches; once tombstones outnumber
    live nodes the arena is rebuilt from the live keys.

    Not thread-safe; the owning index serialises access.
    """

    def __init__(self, distance: Callable[[str, str], int] = damerau_levenshtein) -> None:
        self._distance = distance
        self._nodes: list[_Node] = []
        self._tombstones = 0

    def __len__(self) -> int:
        return len(self._nodes) - self._tombstones

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    @property
    def tombstones(self) -> int:
        return self._tombstones

    def add(self, key: str, value: str) -> None:
        if not self._nodes:
            self._nodes.append(_Node(key=key, values={value}))
            return
        idx = 0
        while True:
            node = self._nodes[idx]
            d = self._distance(key, node.key)
            if d == 0:
                if not node.values:
                    self._tombstones -= 1
                node.values.add(value)
                return
            child = node.children.get(d)
            if child is None:
                node.children[d] = len(self._nodes)
                self._nodes.append(_Node(key=key, values={value}))
                return
            idx = child

    def _find(self, key: str) -> _Node | None:
        if not self._nodes:
            return None
        idx: int | None = 0
        while idx is not None:
            node = self._nodes[idx]
            d = self._distance(key, node.key)
            if d == 0:
                return node
            idx = node.children.get(d)
        return None

    def remove(self, key: str, value: str) -> bool:
        node = self._find(key)
        if node is None or value not in node.values:
            return False
        node.values.discard(value)
        if not node.values:
            self._tombstones += 1
            if self._tombstones * 2 > len(self._nodes):
                self.compact()
        return True

    def compact(self) -> None:
        live = [(n.key, set(n.values)) for n in self._nodes if n.values]
        self._nodes = []
        self._tombstones = 0
        for key, values in live:
            for v in values:
                self.add(key, v)

    def clear(self) -> None:
        self._nodes = []
        self._tombstones = 0

    def search(self, query: str, max_distance: int) -> Iterator[tuple[str, frozenset[str], int]]:
        """Yield (key, values, distance) for every live key within max_distance.

        Exact: by the triangle inequality only children whose edge label lies
        in [d - max_distance, d + max_distance] can hold matches.
        """
        if not self._nodes:
            return
        stack = [0]
        while stack:
            node = self._nodes[stack.pop()]
            d = self._distance(query, node.key)
            if d <= max_distance and node.values:
                yield node.key, frozenset(node.values), d
            lo, hi = d - max_distance, d + max_distance
            for edge, child in node.children.items():
                if lo <= edge <= hi:
                    stack.append(child)
