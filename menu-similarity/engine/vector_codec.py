"""
Vector codec: compact storage form for embeddings plus cosine similarity.

Stored format is a bare little-endian float32 array: 4 bytes per
component, no header, no checksum.  The dimension is not recorded in
the bytes; it comes from configuration (``EMBEDDING_DIMENSIONS``).

Usage:
    from vector_codec import serialize, deserialize, cosine_similarity
    blob = serialize(vector)
    score = cosine_similarity(deserialize(blob), other)
"""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np

# Explicit byte order so the stored form is identical on every host.
_DTYPE = np.dtype("<f4")

VectorLike = Union[np.ndarray, Sequence[float]]


class DimensionMismatchError(ValueError):
    """Two vectors of different lengths were compared.

    Stored vectors all come from one model, so hitting this means the
    table holds mixed-model data and needs ``regenerate --all``.
    """

    def __init__(self, left: int, right: int) -> None:
        super().__init__(
            f"Vectors must have the same dimensions (got {left} and {right})"
        )
        self.left = left
        self.right = right


def serialize(vector: VectorLike) -> bytes:
    """Pack *vector* as little-endian float32 bytes, order preserved."""
    return np.asarray(vector, dtype=_DTYPE).reshape(-1).tobytes()


def deserialize(data: bytes) -> np.ndarray:
    """Inverse of :func:`serialize`.  Returns a writable float32 array."""
    if len(data) % _DTYPE.itemsize:
        raise ValueError(
            f"Embedding blob length {len(data)} is not a multiple of {_DTYPE.itemsize}"
        )
    return np.frombuffer(data, dtype=_DTYPE).astype(np.float32)


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """Cosine of the angle between *a* and *b*, in [-1, 1].

    Returns exactly 0.0 when either vector has zero magnitude.
    Raises :class:`DimensionMismatchError` on a length mismatch; vectors
    are never truncated to a common length.
    """
    va = np.asarray(a, dtype=np.float64).reshape(-1)
    vb = np.asarray(b, dtype=np.float64).reshape(-1)
    if va.shape[0] != vb.shape[0]:
        raise DimensionMismatchError(va.shape[0], vb.shape[0])

    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0

    score = float(np.dot(va, vb)) / (norm_a * norm_b)
    # Rounding can push |score| a hair past 1 for near-parallel vectors
    return max(-1.0, min(1.0, score))
