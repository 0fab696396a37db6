"""Edit distance used by the filename index.

Unrestricted Damerau-Levenshtein: insertions, deletions, substitutions and
transpositions of adjacent characters each cost one, and a substring may be
edited after being transposed. Unlike the restricted (optimal string
alignment) variant it satisfies the triangle inequality, which the BK-tree
needs to prune correctly.
"""
from __future__ import annotations


def damerau_levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    la, lb = len(a), len(b)
    if la == 0:
        return lb
    if lb == 0:
        return la

    inf = la + lb
    # (la + 2) x (lb + 2) table with a sentinel row/column of `inf`
    d = [[0] * (lb + 2) for _ in range(la + 2)]
    d[0][0] = inf
    for i in range(la + 1):
        d[i + 1][0] = inf
        d[i + 1][1] = i
    for j in range(lb + 1):
        d[0][j + 1] = inf
        d[1][j + 1] = j

    last_row: dict[str, int] = {}
    for i in range(1, la + 1):
        ca = a[i - 1]
        last_match_col = 0
        for j in range(1, lb + 1):
            cb = b[j - 1]
            i1 = last_row.get(cb, 0)
            j1 = last_match_col
            if ca == cb:
                cost = 0
                last_match_col = j
            else:
                cost = 1
            d[i + 1][j + 1] = min(
                d[i][j] + cost,  # substitution
                d[i + 1][j] + 1,  # insertion
                d[i][j + 1] + 1,  # deletion
                d[i1][j1] + (i - i1 - 1) + 1 + (j - j1 - 1),  # transposition
            )
        last_row[ca] = i
    return d[la + 1][lb + 1]
