from __future__ import annotations

import hashlib
import re
from typing import Sequence

import numpy as np

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class HashingEmbedder:
    """Deterministic bag-of-words embedding; stands in until a real embedding model is wired."""

    def __init__(self, dim: int = 64) -> None:
        self.dim = dim

    def embed(self, text: str) -> np.ndarray:
        vector = np.zeros(self.dim, dtype=np.float32)
        for token in _TOKEN_RE.findall(text.casefold()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            bucket = int.from_bytes(digest[:4], "little") % self.dim
            sign = 1.0 if digest[4] % 2 == 0 else -1.0
            vector[bucket] += sign
        norm = np.linalg.norm(vector)
        if norm > 0:
            vector /= norm
        return vector


def cosine_scores(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    if matrix.size == 0:
        return np.empty(0, dtype=np.float32)
    sims = matrix @ vector
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(vector)
    return sims / np.clip(norms, 1e-12, None)


def as_matrix(embeddings: Sequence[Sequence[float]], dim: int) -> np.ndarray:
    rows = [list(item)[:dim] + [0.0] * max(0, dim - len(item)) for item in embeddings]
    if not rows:
        return np.empty((0, dim), dtype=np.float32)
    return np.asarray(rows, dtype=np.float32)
