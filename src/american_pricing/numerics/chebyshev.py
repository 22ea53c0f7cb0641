"""Chebyshev collocation primitives.

Pure, stateless helpers used to represent the exercise boundary:

- Chebyshev nodes of the first kind (open) and Chebyshev-Lobatto nodes
  (closed, endpoints included), returned in ascending order on ``[a, b]``
- barycentric weights and O(n) barycentric interpolation
- the spectral differentiation matrix on Lobatto nodes
- nodal values <-> Chebyshev coefficients (DCT-I) and Clenshaw evaluation

Notes
-----
Barycentric weights are only defined up to a common factor, so the affine
map to ``[a, b]`` and the node ordering do not change them beyond a sign.
"""

from __future__ import annotations

import numpy as np
from scipy.fft import dct

from ..exceptions import InvalidParametersError

__all__ = [
    "NODE_MATCH_TOLERANCE",
    "to_standard",
    "from_standard",
    "chebyshev_nodes",
    "lobatto_nodes",
    "chebyshev_weights",
    "lobatto_weights",
    "barycentric_interpolate",
    "differentiation_matrix",
    "values_to_coefficients",
    "evaluate_series",
]

NODE_MATCH_TOLERANCE = 1e-14


def _check_order(n: int, minimum: int) -> None:
    if int(n) != n or n < minimum:
        raise InvalidParametersError(f"order must be an integer >= {minimum}, got {n}")


def _check_interval(a: float, b: float) -> None:
    if not (np.isfinite(a) and np.isfinite(b)) or b <= a:
        raise InvalidParametersError(f"interval must satisfy a < b, got [{a}, {b}]")


def to_standard(x, a: float, b: float):
    """Map physical ``x`` in ``[a, b]`` to ``[-1, 1]``."""
    return (2.0 * np.asarray(x, dtype=float) - (a + b)) / (b - a)


def from_standard(t, a: float, b: float):
    """Map standard ``t`` in ``[-1, 1]`` to ``[a, b]``."""
    return 0.5 * (a + b) + 0.5 * (b - a) * np.asarray(t, dtype=float)


def chebyshev_nodes(n: int, a: float = -1.0, b: float = 1.0) -> np.ndarray:
    """Chebyshev nodes of the first kind (interior only), ascending."""
    _check_order(n, 1)
    _check_interval(a, b)
    k = np.arange(n)
    t = -np.cos((2.0 * k + 1.0) * np.pi / (2.0 * n))
    return from_standard(t, a, b)


def lobatto_nodes(n: int, a: float = -1.0, b: float = 1.0) -> np.ndarray:
    """Chebyshev-Lobatto (extrema) nodes including both endpoints, ascending."""
    _check_order(n, 2)
    _check_interval(a, b)
    k = np.arange(n)
    t = -np.cos(k * np.pi / (n - 1))
    nodes = from_standard(t, a, b)
    # pin the endpoints exactly
    nodes[0], nodes[-1] = a, b
    return nodes


def chebyshev_weights(n: int) -> np.ndarray:
    """Barycentric weights for first-kind nodes: (-1)^k sin((2k+1)pi/(2n))."""
    _check_order(n, 1)
    k = np.arange(n)
    return (-1.0) ** k * np.sin((2.0 * k + 1.0) * np.pi / (2.0 * n))


def lobatto_weights(n: int) -> np.ndarray:
    """Barycentric weights for Lobatto nodes: alternating signs, halved at the ends."""
    _check_order(n, 2)
    weights = (-1.0) ** np.arange(n)
    weights[0] *= 0.5
    weights[-1] *= 0.5
    return weights


def barycentric_interpolate(x, nodes: np.ndarray, weights: np.ndarray, values: np.ndarray):
    """Evaluate the barycentric interpolant through ``(nodes, values)`` at ``x``.

    Queries within ``NODE_MATCH_TOLERANCE`` of a node return that node's value
    exactly. Returns a float for scalar ``x``, otherwise an array.
    """
    x_arr = np.atleast_1d(np.asarray(x, dtype=float))
    values = np.asarray(values, dtype=float)
    diff = np.subtract.outer(x_arr, nodes)
    exact = np.abs(diff) < NODE_MATCH_TOLERANCE
    diff[exact] = 1.0
    terms = weights / diff
    result = (terms @ values) / terms.sum(axis=1)

    rows, cols = np.nonzero(exact)
    result[rows] = values[cols]
    if np.ndim(x) == 0:
        return float(result[0])
    return result


def differentiation_matrix(nodes: np.ndarray) -> np.ndarray:
    """Spectral differentiation matrix for Lobatto nodes in any order or interval.

    ``D @ values`` approximates the derivative of the interpolant at the nodes.
    The diagonal uses the negative-sum trick so constants differentiate to zero.
    """
    nodes = np.asarray(nodes, dtype=float)
    n = nodes.size
    _check_order(n, 2)
    c = np.ones(n)
    c[0] = c[-1] = 2.0
    c *= (-1.0) ** np.arange(n)

    dx = np.subtract.outer(nodes, nodes)
    np.fill_diagonal(dx, 1.0)
    D = np.outer(c, 1.0 / c) / dx
    np.fill_diagonal(D, 0.0)
    np.fill_diagonal(D, -D.sum(axis=1))
    return D


def values_to_coefficients(values: np.ndarray) -> np.ndarray:
    """Chebyshev coefficients of the interpolant through ascending Lobatto-node values.

    Uses the DCT-I: ``c_k = 2/(n-1) * sum'' f_j cos(k j pi/(n-1))`` with the
    endpoint terms halved. Pair with :func:`evaluate_series`, which halves the
    first and last coefficient.
    """
    values = np.asarray(values, dtype=float)
    n = values.size
    _check_order(n, 2)
    # DCT-I expects samples at cos(j pi/(n-1)), i.e. descending nodes
    return dct(values[::-1], type=1) / (n - 1)


def evaluate_series(coefficients: np.ndarray, x, a: float = -1.0, b: float = 1.0):
    """Clenshaw evaluation of ``sum'' c_k T_k`` at physical ``x`` in ``[a, b]``."""
    coefficients = np.asarray(coefficients, dtype=float)
    t = to_standard(x, a, b)
    n = coefficients.size
    if n == 0:
        return np.zeros_like(t) if np.ndim(t) else 0.0

    last = 0.5 * coefficients[-1] if n > 1 else coefficients[-1]
    b1 = np.zeros_like(t)
    b2 = np.zeros_like(t)
    two_t = 2.0 * t
    for k in range(n - 1, 0, -1):
        ck = last if k == n - 1 else coefficients[k]
        b1, b2 = two_t * b1 - b2 + ck, b1
    c0 = last if n == 1 else coefficients[0]
    result = 0.5 * c0 + t * b1 - b2
    if np.ndim(result) == 0:
        return float(result)
    return result
