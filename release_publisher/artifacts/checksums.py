from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterable


def sha256_file(path: Path, chunk_bytes: int = 1024 * 1024) -> str:
    """Compute SHA-256 for a file.

    A single canonical implementation is exposed here so the builder and the
    channels verify artifacts the same way.
    """
    h = hashlib.sha256()
    with Path(path).open("rb") as f:
        for chunk in iter(lambda: f.read(chunk_bytes), b""):
            h.update(chunk)
    return h.hexdigest()


def sha256_chunks(chunks: Iterable[bytes]) -> str:
    h = hashlib.sha256()
    for chunk in chunks:
        if chunk:
            h.update(chunk)
    return h.hexdigest()
