"""Pool-adjacent-violators projection onto monotone sequences."""

from __future__ import annotations

import numpy as np

__all__ = ["pool_adjacent_violators", "is_monotone"]


def pool_adjacent_violators(
    values: np.ndarray,
    *,
    increasing: bool = True,
    out: np.ndarray | None = None,
    pool_means: np.ndarray | None = None,
    pool_sizes: np.ndarray | None = None,
) -> np.ndarray:
    """Least-squares projection of ``values`` onto the monotone cone.

    Adjacent blocks that violate the ordering are merged and replaced by their
    mean, so the output is monotone and preserves the sum of ``values``.

    Parameters
    ----------
    values
        1-D input sequence (not modified unless it is also ``out``).
    increasing
        Project onto non-decreasing (True) or non-increasing (False) sequences.
    out, pool_means, pool_sizes
        Optional preallocated buffers of at least ``len(values)`` elements; the
        solver passes its workspace arrays here to avoid per-sweep allocation.

    Returns
    -------
    np.ndarray
        ``out`` (or a new array) holding the projected sequence.
    """
    values = np.asarray(values, dtype=float)
    n = values.size
    if out is None:
        out = np.empty(n)
    if pool_means is None:
        pool_means = np.empty(n)
    if pool_sizes is None:
        pool_sizes = np.empty(n, dtype=np.int64)
    if n == 0:
        return out

    sign = 1.0 if increasing else -1.0
    top = -1
    for v in values:
        top += 1
        pool_means[top] = sign * v
        pool_sizes[top] = 1
        while top > 0 and pool_means[top - 1] > pool_means[top]:
            merged = pool_sizes[top - 1] + pool_sizes[top]
            pool_means[top - 1] = (
                pool_means[top - 1] * pool_sizes[top - 1] + pool_means[top] * pool_sizes[top]
            ) / merged
            pool_sizes[top - 1] = merged
            top -= 1

    position = 0
    for block in range(top + 1):
        size = int(pool_sizes[block])
        out[position : position + size] = sign * pool_means[block]
        position += size
    return out


def is_monotone(values: np.ndarray, *, increasing: bool = True) -> bool:
    steps = np.diff(np.asarray(values, dtype=float))
    return bool(np.all(steps >= 0.0)) if increasing else bool(np.all(steps <= 0.0))
