from __future__ import annotations

import hashlib
from pathlib import Path

HASH_HEX_LEN = 64


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hash_file(path: str | Path, chunk_size: int = 1024 * 1024) -> str:
    """Compute the content hash of a file's raw bytes (SHA-256, hex)."""
    p = Path(path)
    h = hashlib.sha256()
    with p.open("rb") as f:
        while True:
            b = f.read(chunk_size)
            if not b:
                break
            h.update(b)
    return h.hexdigest()


def chunk_id_for(path: str, ordinal: int) -> str:
    """Stable chunk identifier derived from (path, ordinal)."""
    return sha256_hex(f"{path}\x00{ordinal}".encode("utf-8"))[:32]
