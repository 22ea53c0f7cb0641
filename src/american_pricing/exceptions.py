"""Custom exception hierarchy for the american_pricing library.

All library-specific exceptions inherit from :class:`AmericanPricingError`,
so a caller can fall back to another model with a single ``except`` clause::

    try:
        result = engine.price_with_greeks(100.0, 100.0, 0.05, 0.02, 0.3, 0.5, OptionType.PUT)
    except ConvergenceError as exc:
        log.warning("Boundary solve failed after %d sweeps", exc.sweeps)
    except AmericanPricingError as exc:
        log.error("Library error: %s", exc)
"""

from __future__ import annotations


class AmericanPricingError(Exception):
    """Base exception for all library errors."""


# ── Input validation ────────────────────────────────────────────────


class InvalidParametersError(AmericanPricingError):
    """Invalid input values (non-positive vol/spot/strike, malformed dividends, etc.)."""


class ConfigurationError(AmericanPricingError):
    """Wrong types passed to a public API (e.g. raw int instead of enum)."""


class UnsupportedFeatureError(AmericanPricingError):
    """A valid combination of inputs that this pricer does not model."""


# ── Numerical issues ────────────────────────────────────────────────


class NumericalError(AmericanPricingError):
    """Base for errors arising from numerical computation."""


class ConvergenceError(NumericalError):
    """The boundary fixed-point iteration hit its sweep cap without converging."""

    def __init__(self, message: str, *, sweeps: int, max_change: float) -> None:
        super().__init__(message)
        self.sweeps = sweeps
        self.max_change = max_change


class NumericalDegeneracyError(NumericalError):
    """Degenerate numerics: negative discriminant or an entirely non-finite integrand."""
