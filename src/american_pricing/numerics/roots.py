"""Roots of the characteristic quadratic of the Black-Scholes operator.

For a perpetual claim ``V(S) = S**lam`` the Black-Scholes equation reduces to

    a*lam**2 + b*lam + c = 0,   a = sigma**2/2,  b = r - q - sigma**2/2,  c = -r

With a finite ``horizon`` tau, the quadratic (QD) approximation replaces ``c`` by ``-r/h``
where ``h = 1 - exp(-r*tau)`` (limit ``-1/tau`` as r -> 0), which keeps the
discriminant positive for every sign combination of r and q.

Each root is refined with Super-Halley iteration on the scale-normalized
polynomial. When that fast path cannot be trusted (vanishing scale ``|c|``,
underflowing derivatives, or no convergence), the solver falls back to a
bracketed bisection that always converges. The result records which path ran.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math

from ..enums import RootPath
from ..exceptions import InvalidParametersError, NumericalDegeneracyError

logger = logging.getLogger(__name__)

__all__ = [
    "CharacteristicRoots",
    "characteristic_coefficients",
    "characteristic_roots",
]

RESIDUAL_TOLERANCE = 1e-10
MAX_SUPER_HALLEY_ITERATIONS = 50
MAX_BRACKET_EXPANSIONS = 10
MAX_BISECTION_ITERATIONS = 200
_UNDERFLOW = 1e-300
_STEP_TOLERANCE = 4.0 * 2.220446049250313e-16


class _FastPathFailure(Exception):
    """Internal signal that Super-Halley cannot be used for this root."""


@dataclass(frozen=True, slots=True)
class CharacteristicRoots:
    """Ordered roots ``lambda1 >= lambda2`` and how they were obtained.

    Attributes
    ==========
    lambda1, lambda2:
        Larger and smaller root.
    path:
        RootPath.SUPER_HALLEY if both roots came from the fast path,
        RootPath.BISECTION if either one needed the bracketed fallback.
    residual:
        Largest scale-relative residual |f(lam)| / max(1, |a lam^2|, |b lam|, |c|).
    iterations:
        Total iterations spent over both roots.
    """

    lambda1: float
    lambda2: float
    path: RootPath
    residual: float
    iterations: int


def characteristic_coefficients(
    rate: float,
    dividend_yield: float,
    volatility: float,
    horizon: float | None = None,
) -> tuple[float, float, float]:
    """Return ``(a, b, c)`` for the (optionally horizon-adjusted) quadratic."""
    if not all(math.isfinite(x) for x in (rate, dividend_yield, volatility)):
        raise InvalidParametersError("rate, dividend_yield and volatility must be finite")
    if volatility <= 0.0:
        raise InvalidParametersError(f"volatility must be positive, got {volatility}")

    a = 0.5 * volatility * volatility
    b = rate - dividend_yield - a
    if horizon is None:
        c = -rate
    else:
        if not math.isfinite(horizon) or horizon <= 0.0:
            raise InvalidParametersError(f"horizon must be positive, got {horizon}")
        if rate == 0.0:
            c = -1.0 / horizon
        else:
            c = -rate / -math.expm1(-rate * horizon)
    return a, b, c


def _residual(a: float, b: float, c: float, lam: float) -> float:
    value = (a * lam + b) * lam + c
    scale = max(1.0, abs(a * lam * lam), abs(b * lam), abs(c))
    return abs(value) / scale


def _super_halley(a: float, b: float, c: float, guess: float) -> tuple[float, int]:
    """Refine ``guess`` with Super-Halley on f(lam)/|c|."""
    scale = abs(c)
    if scale < _UNDERFLOW:
        raise _FastPathFailure("scale |c| underflows")
    an, bn, cn = a / scale, b / scale, c / scale

    lam = guess
    for iteration in range(1, MAX_SUPER_HALLEY_ITERATIONS + 1):
        f = (an * lam + bn) * lam + cn
        fp = 2.0 * an * lam + bn
        fpp = 2.0 * an
        denominator = fp * fp - f * fpp
        if abs(fp) < _UNDERFLOW or abs(denominator) < _UNDERFLOW:
            raise _FastPathFailure("derivative underflow")
        # Super-Halley: lam - f/f' * (f'^2 - f f''/2) / (f'^2 - f f'')
        step = (f / fp) * (fp * fp - 0.5 * f * fpp) / denominator
        lam -= step
        if not math.isfinite(lam):
            raise _FastPathFailure("non-finite iterate")
        if abs(step) <= _STEP_TOLERANCE * max(1.0, abs(lam)):
            return lam, iteration
    raise _FastPathFailure("no convergence")


def _bisect(a: float, b: float, c: float, guess: float, upper: bool) -> tuple[float, int]:
    """Bracketed bisection on one side of the vertex ``-b/(2a)``.

    f(vertex) = -disc/(4a) <= 0, so expanding away from the vertex until f > 0
    always produces a sign change.
    """

    def f(x: float) -> float:
        return (a * x + b) * x + c

    vertex = -b / (2.0 * a)
    if f(vertex) == 0.0:
        return vertex, 0

    width = 2.0 * abs(guess - vertex) + 1.0
    for _ in range(MAX_BRACKET_EXPANSIONS + 1):
        edge = vertex + width if upper else vertex - width
        if f(edge) > 0.0:
            break
        width *= 4.0
    else:
        raise NumericalDegeneracyError(
            f"could not bracket characteristic root after {MAX_BRACKET_EXPANSIONS} expansions"
        )

    # lo has f <= 0, hi has f > 0
    lo, hi = vertex, edge
    iterations = 0
    for iterations in range(1, MAX_BISECTION_ITERATIONS + 1):
        mid = 0.5 * (lo + hi)
        f_mid = f(mid)
        if f_mid == 0.0:
            return mid, iterations
        if f_mid < 0.0:
            lo = mid
        else:
            hi = mid
        if abs(hi - lo) <= _STEP_TOLERANCE * max(1.0, abs(mid)):
            break
    return 0.5 * (lo + hi), iterations


def characteristic_roots(
    rate: float,
    dividend_yield: float,
    volatility: float,
    *,
    horizon: float | None = None,
) -> CharacteristicRoots:
    """Solve the characteristic quadratic with a verified fast path and a bisection fallback.

    Parameters
    ----------
    rate
        Continuously compounded risk-free rate (may be negative).
    dividend_yield
        Continuous dividend yield (may be negative).
    volatility
        Annualized volatility, strictly positive.
    horizon
        Optional time to expiry; selects the QD horizon-adjusted constant term.

    Returns
    -------
    CharacteristicRoots
        Roots ordered ``lambda1 >= lambda2``, tagged with the path taken.

    Raises
    ------
    InvalidParametersError
        If volatility is not positive or an input is non-finite.
    NumericalDegeneracyError
        If the discriminant is negative (no real roots).
    """
    a, b, c = characteristic_coefficients(rate, dividend_yield, volatility, horizon)
    discriminant = b * b - 4.0 * a * c
    if discriminant < 0.0:
        raise NumericalDegeneracyError(
            f"negative discriminant {discriminant:.3e} for r={rate}, q={dividend_yield}, "
            f"sigma={volatility}"
        )

    sqrt_disc = math.sqrt(discriminant)
    # Numerically stable pairing of the two quadratic-formula roots.
    if b >= 0.0:
        guess_low = (-b - sqrt_disc) / (2.0 * a)
        guess_high = (2.0 * c) / (-b - sqrt_disc) if sqrt_disc + b != 0.0 else -b / (2.0 * a)
    else:
        guess_high = (-b + sqrt_disc) / (2.0 * a)
        guess_low = (2.0 * c) / (-b + sqrt_disc)

    path = RootPath.SUPER_HALLEY
    total_iterations = 0
    refined = []
    for guess, upper in ((guess_high, True), (guess_low, False)):
        try:
            lam, iterations = _super_halley(a, b, c, guess)
            if _residual(a, b, c, lam) >= RESIDUAL_TOLERANCE:
                raise _FastPathFailure("residual check failed")
        except _FastPathFailure as exc:
            logger.debug("Super-Halley fallback to bisection (%s), guess=%s", exc, guess)
            path = RootPath.BISECTION
            lam, iterations = _bisect(a, b, c, guess, upper)
        total_iterations += iterations
        refined.append(lam)

    lambda1, lambda2 = max(refined), min(refined)
    residual = max(_residual(a, b, c, lambda1), _residual(a, b, c, lambda2))
    if residual >= RESIDUAL_TOLERANCE:
        raise NumericalDegeneracyError(
            f"characteristic roots failed residual check ({residual:.3e})"
        )
    return CharacteristicRoots(
        lambda1=lambda1,
        lambda2=lambda2,
        path=path,
        residual=residual,
        iterations=total_iterations,
    )
