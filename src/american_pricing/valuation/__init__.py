"""American option valuation.

American = European (closed form) + early-exercise premium, where the premium
is an integral over the early-exercise boundary. The boundary is solved by
fixed-point iteration on Chebyshev collocation nodes in ``sqrt(tau)``.

Public API
----------
Engine:
    OptionPricingEngine: Reentrant pricing facade
    PricingResult, Greeks, PricingDiagnostics: Result types
    compute_boundaries, price, price_with_greeks: Function-style wrappers
    price_batch: Lane-based batch pricing into a DataFrame

Inputs:
    OptionParameters: Contract and market inputs for one valuation
    PricingSettings: Numerical-quality settings

Boundary:
    ExerciseBoundary: Collocated boundary with O(n) evaluation
    ExerciseBoundarySolver: Single and double boundary solver
    classify_regime: Exercise-region topology for given rates
    quadratic_approximation: Quadratic (BAW/QD) boundary estimate

Supporting:
    NearExpiryHandler: Intrinsic fallback and linear blend near expiry
    SolverWorkspace: Caller-scoped scratch buffers
    EuropeanValuation: Closed-form European price, delta and gamma
"""

from .params import OptionParameters, PricingSettings
from .bsm import EuropeanValuation, d_plus_minus, european_price
from .boundary import (
    ExerciseBoundary,
    ExerciseBoundarySolver,
    classify_regime,
    quadratic_approximation,
)
from .near_expiry import NearExpiryAssessment, NearExpiryHandler
from .workspace import SolverWorkspace
from .engine import (
    Greeks,
    OptionPricingEngine,
    PricingDiagnostics,
    PricingResult,
    compute_boundaries,
    price,
    price_with_greeks,
)
from .batch import price_batch

__all__ = [
    # Inputs
    "OptionParameters",
    "PricingSettings",
    # European
    "EuropeanValuation",
    "d_plus_minus",
    "european_price",
    # Boundary
    "ExerciseBoundary",
    "ExerciseBoundarySolver",
    "classify_regime",
    "quadratic_approximation",
    # Near expiry and scratch
    "NearExpiryAssessment",
    "NearExpiryHandler",
    "SolverWorkspace",
    # Engine
    "Greeks",
    "OptionPricingEngine",
    "PricingDiagnostics",
    "PricingResult",
    "compute_boundaries",
    "price",
    "price_with_greeks",
    "price_batch",
]
