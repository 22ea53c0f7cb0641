"""Quadrature rules and integrators.

Fixed-order Gaussian rules (Legendre, Laguerre, Hermite) are generated by
Newton iteration on the orthogonal-polynomial recurrences and cached as
read-only arrays; they are the only state shared between pricing calls.

Two integrators sit on top of them:

- :func:`tanh_sinh` for integrands with endpoint singularities
- :func:`adaptive_gauss_kronrod`, a 7/15-point adaptive bisection scheme

Every integrand is a vectorized callable ``f(x: np.ndarray) -> np.ndarray``.
Non-finite samples are dropped from the weighted sums; a rule whose samples are
all non-finite raises :class:`NumericalDegeneracyError`.
"""

from __future__ import annotations

from functools import lru_cache
import logging
from typing import Callable

import numpy as np

from ..exceptions import InvalidParametersError, NumericalDegeneracyError

logger = logging.getLogger(__name__)

__all__ = [
    "MAX_LEGENDRE_ORDER",
    "MAX_LAGUERRE_ORDER",
    "MAX_HERMITE_ORDER",
    "gauss_legendre",
    "gauss_laguerre",
    "gauss_hermite",
    "integrate_gauss_legendre",
    "tanh_sinh",
    "adaptive_gauss_kronrod",
]

Integrand = Callable[[np.ndarray], np.ndarray]

MAX_LEGENDRE_ORDER = 64
MAX_LAGUERRE_ORDER = 32
MAX_HERMITE_ORDER = 32

_NEWTON_TOLERANCE = 1e-15
_MAX_NEWTON_ITERATIONS = 100

TANH_SINH_WEIGHT_CUTOFF = 1e-20
TANH_SINH_OVERFLOW_LIMIT = 350.0
TANH_SINH_MAX_SAMPLES = 1000
_TANH_SINH_T_MAX = 4.0

ADAPTIVE_MAX_DEPTH = 15


def _check_order(n: int, maximum: int, name: str) -> int:
    if int(n) != n or not 1 <= n <= maximum:
        raise InvalidParametersError(f"{name} order must be an integer in [1, {maximum}], got {n}")
    return int(n)


def _freeze(*arrays: np.ndarray) -> tuple[np.ndarray, ...]:
    for arr in arrays:
        arr.flags.writeable = False
    return arrays


# ── Gaussian rules ──────────────────────────────────────────────────


@lru_cache(maxsize=None)
def _legendre_table(n: int) -> tuple[np.ndarray, np.ndarray]:
    m = (n + 1) // 2
    z = np.cos(np.pi * (np.arange(m) + 0.75) / (n + 0.5))
    pp = np.ones(m)
    for _ in range(_MAX_NEWTON_ITERATIONS):
        p1 = np.ones(m)
        p2 = np.zeros(m)
        for j in range(1, n + 1):
            p3 = p2
            p2 = p1
            p1 = ((2.0 * j - 1.0) * z * p2 - (j - 1.0) * p3) / j
        pp = n * (z * p1 - p2) / (z * z - 1.0)
        dz = p1 / pp
        z = z - dz
        if np.max(np.abs(dz)) < _NEWTON_TOLERANCE:
            break

    nodes = np.empty(n)
    weights = np.empty(n)
    w = 2.0 / ((1.0 - z * z) * pp * pp)
    nodes[:m] = -z
    nodes[n - m :] = z[::-1]
    weights[:m] = w
    weights[n - m :] = w[::-1]
    return _freeze(nodes, weights)


@lru_cache(maxsize=None)
def _laguerre_table(n: int) -> tuple[np.ndarray, np.ndarray]:
    nodes = np.empty(n)
    weights = np.empty(n)
    z = 0.0
    for i in range(n):
        if i == 0:
            z = 3.0 / (1.0 + 2.4 * n)
        elif i == 1:
            z += 15.0 / (1.0 + 2.5 * n)
        else:
            ai = i - 1
            z += (1.0 + 2.55 * ai) / (1.9 * ai) * (z - nodes[i - 2])
        p2 = 0.0
        pp = 1.0
        for _ in range(_MAX_NEWTON_ITERATIONS):
            p1, p2 = 1.0, 0.0
            for j in range(1, n + 1):
                p3 = p2
                p2 = p1
                p1 = ((2.0 * j - 1.0 - z) * p2 - (j - 1.0) * p3) / j
            pp = (n * p1 - n * p2) / z
            z_prev = z
            z = z_prev - p1 / pp
            if abs(z - z_prev) <= _NEWTON_TOLERANCE * max(1.0, abs(z)):
                break
        nodes[i] = z
        weights[i] = -1.0 / (pp * n * p2)
    return _freeze(nodes, weights)


@lru_cache(maxsize=None)
def _hermite_table(n: int) -> tuple[np.ndarray, np.ndarray]:
    pi_m4 = np.pi**-0.25
    m = (n + 1) // 2
    roots = np.empty(n)
    weights = np.empty(n)
    z = 0.0
    for i in range(m):
        if i == 0:
            z = np.sqrt(2.0 * n + 1.0) - 1.85575 * (2.0 * n + 1.0) ** -0.16667
        elif i == 1:
            z -= 1.14 * n**0.426 / z
        elif i == 2:
            z = 1.86 * z - 0.86 * roots[0]
        elif i == 3:
            z = 1.91 * z - 0.91 * roots[1]
        else:
            z = 2.0 * z - roots[i - 2]
        pp = 1.0
        for _ in range(_MAX_NEWTON_ITERATIONS):
            p1, p2 = pi_m4, 0.0
            for j in range(1, n + 1):
                p3 = p2
                p2 = p1
                p1 = z * np.sqrt(2.0 / j) * p2 - np.sqrt((j - 1.0) / j) * p3
            pp = np.sqrt(2.0 * n) * p2
            z_prev = z
            z = z_prev - p1 / pp
            if abs(z - z_prev) <= _NEWTON_TOLERANCE * max(1.0, abs(z)):
                break
        roots[i] = z
        roots[n - 1 - i] = -z
        weights[i] = weights[n - 1 - i] = 2.0 / (pp * pp)
    order = np.argsort(roots)
    return _freeze(roots[order], weights[order])


def gauss_legendre(n: int, a: float = -1.0, b: float = 1.0) -> tuple[np.ndarray, np.ndarray]:
    """Gauss-Legendre nodes and weights of order ``n`` (1..64) on ``[a, b]``.

    On the default interval the cached read-only table is returned directly.
    """
    n = _check_order(n, MAX_LEGENDRE_ORDER, "Gauss-Legendre")
    nodes, weights = _legendre_table(n)
    if a == -1.0 and b == 1.0:
        return nodes, weights
    half = 0.5 * (b - a)
    return 0.5 * (a + b) + half * nodes, half * weights


def gauss_laguerre(n: int) -> tuple[np.ndarray, np.ndarray]:
    """Gauss-Laguerre rule for ``int_0^inf exp(-x) f(x) dx`` (read-only arrays)."""
    return _laguerre_table(_check_order(n, MAX_LAGUERRE_ORDER, "Gauss-Laguerre"))


def gauss_hermite(n: int) -> tuple[np.ndarray, np.ndarray]:
    """Gauss-Hermite rule for ``int_-inf^inf exp(-x^2) f(x) dx`` (read-only arrays)."""
    return _hermite_table(_check_order(n, MAX_HERMITE_ORDER, "Gauss-Hermite"))


def _finite_weighted_sum(values: np.ndarray, weights: np.ndarray, label: str) -> float:
    values = np.asarray(values, dtype=float)
    finite = np.isfinite(values)
    if not finite.any():
        raise NumericalDegeneracyError(f"{label}: every integrand sample is non-finite")
    if not finite.all():
        logger.debug("%s: excluded %d non-finite samples", label, int((~finite).sum()))
        return float(np.dot(weights[finite], values[finite]))
    return float(np.dot(weights, values))


def integrate_gauss_legendre(f: Integrand, a: float, b: float, order: int = 16) -> float:
    """Fixed-order Gauss-Legendre estimate of ``int_a^b f``."""
    if a == b:
        return 0.0
    nodes, weights = gauss_legendre(order, a, b)
    return _finite_weighted_sum(f(nodes), weights, "gauss_legendre")


# ── Tanh-Sinh ───────────────────────────────────────────────────────


def _tanh_sinh_samples(t: np.ndarray, a: float, b: float) -> tuple[np.ndarray, np.ndarray]:
    """Abscissae and weights (without the step h) for the given t values."""
    half = 0.5 * (b - a)
    u = 0.5 * np.pi * np.sinh(t)
    keep = np.abs(u) < TANH_SINH_OVERFLOW_LIMIT
    t, u = t[keep], u[keep]
    cosh_u = np.cosh(u)
    weights = half * 0.5 * np.pi * np.cosh(t) / (cosh_u * cosh_u)
    # distance to the nearer endpoint, computed without cancellation
    gap = half * 2.0 / (np.exp(2.0 * np.abs(u)) + 1.0)
    x = np.where(u >= 0.0, b - gap, a + gap)
    keep = weights > TANH_SINH_WEIGHT_CUTOFF * max(half, 1.0)
    return x[keep], weights[keep]


def tanh_sinh(
    f: Integrand,
    a: float,
    b: float,
    *,
    tolerance: float = 1e-10,
    max_levels: int = 10,
    max_samples: int = TANH_SINH_MAX_SAMPLES,
) -> float:
    """Double-exponential quadrature of ``int_a^b f``, robust to endpoint singularities.

    Each level halves the step (doubling the sample density) and reuses the
    previous samples. Iteration stops once the relative change between levels
    is below ``tolerance``, or when ``max_levels`` / ``max_samples`` is hit.
    Non-finite samples, e.g. at a singular endpoint, are skipped.
    """
    if a == b:
        return 0.0
    if b < a:
        return -tanh_sinh(f, b, a, tolerance=tolerance, max_levels=max_levels, max_samples=max_samples)

    h = 1.0
    t = np.arange(-_TANH_SINH_T_MAX, _TANH_SINH_T_MAX + 0.5 * h, h)
    x, w = _tanh_sinh_samples(t, a, b)
    total = _finite_weighted_sum(f(x), w, "tanh_sinh")
    samples = x.size
    estimate = h * total

    for level in range(1, max_levels + 1):
        h *= 0.5
        t = np.arange(-_TANH_SINH_T_MAX + h, _TANH_SINH_T_MAX, 2.0 * h)
        x, w = _tanh_sinh_samples(t, a, b)
        if samples + x.size > max_samples:
            logger.debug("tanh_sinh: sample cap %d reached at level %d", max_samples, level)
            break
        values = np.asarray(f(x), dtype=float)
        finite = np.isfinite(values)
        total += float(np.dot(w[finite], values[finite]))
        samples += x.size
        previous, estimate = estimate, h * total
        if abs(estimate - previous) <= tolerance * abs(estimate) or estimate == previous:
            break
    return estimate


# ── Adaptive 7/15 ───────────────────────────────────────────────────


def _adaptive(f: Integrand, a: float, b: float, tolerance: float, depth: int, max_depth: int) -> float:
    coarse = integrate_gauss_legendre(f, a, b, 7)
    fine = integrate_gauss_legendre(f, a, b, 15)
    if abs(fine - coarse) <= tolerance or depth >= max_depth:
        return fine
    mid = 0.5 * (a + b)
    return _adaptive(f, a, mid, 0.5 * tolerance, depth + 1, max_depth) + _adaptive(
        f, mid, b, 0.5 * tolerance, depth + 1, max_depth
    )


def adaptive_gauss_kronrod(
    f: Integrand,
    a: float,
    b: float,
    *,
    tolerance: float = 1e-10,
    max_depth: int = ADAPTIVE_MAX_DEPTH,
) -> float:
    """Adaptive integration comparing 7- and 15-point Gauss-Legendre estimates.

    Subintervals whose estimated error exceeds the (absolute) tolerance are
    bisected; each level halves the tolerance and recursion stops at
    ``max_depth``.
    """
    if a == b:
        return 0.0
    if tolerance <= 0.0:
        raise InvalidParametersError(f"tolerance must be positive, got {tolerance}")
    return _adaptive(f, a, b, tolerance, 0, max_depth)
