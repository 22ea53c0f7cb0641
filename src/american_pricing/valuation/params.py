"""Option parameters and numerical-quality settings.

Both are frozen dataclasses validated on construction, so a bad input is
rejected before any boundary solve starts.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from ..enums import DividendModel, FixedPointEquation, OptionType, SweepMode
from ..exceptions import ConfigurationError, InvalidParametersError
from ..numerics.quadrature import MAX_LEGENDRE_ORDER
from ..utils import TRADING_DAYS_PER_YEAR, require_finite, require_positive

__all__ = ["OptionParameters", "PricingSettings"]


def _coerce_enum(value, enum_cls, name: str):
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.lower())
        except ValueError as exc:
            raise InvalidParametersError(f"{name}: unknown value {value!r}") from exc
    raise ConfigurationError(f"{name} must be {enum_cls.__name__} enum, got {type(value).__name__}")


@dataclass(frozen=True, slots=True)
class OptionParameters:
    """Inputs for a single American option valuation.

    Attributes
    ==========
    spot:
        Current underlying price (> 0).
    strike:
        Strike price (> 0).
    rate:
        Continuously compounded risk-free rate; may be negative.
    dividend_yield:
        Continuous dividend yield; may be negative.
    volatility:
        Annualized volatility (> 0).
    time_to_expiry:
        Time to expiry in years (> 0).
    option_type:
        OptionType.CALL or OptionType.PUT ("call"/"put" strings are accepted).
    """

    spot: float
    strike: float
    rate: float
    dividend_yield: float
    volatility: float
    time_to_expiry: float
    option_type: OptionType = OptionType.PUT

    def __post_init__(self) -> None:
        object.__setattr__(self, "spot", require_positive("spot", self.spot))
        object.__setattr__(self, "strike", require_positive("strike", self.strike))
        object.__setattr__(self, "rate", require_finite("rate", self.rate))
        object.__setattr__(
            self, "dividend_yield", require_finite("dividend_yield", self.dividend_yield)
        )
        object.__setattr__(self, "volatility", require_positive("volatility", self.volatility))
        object.__setattr__(
            self, "time_to_expiry", require_positive("time_to_expiry", self.time_to_expiry)
        )
        object.__setattr__(
            self, "option_type", _coerce_enum(self.option_type, OptionType, "option_type")
        )

    def replace(self, **changes) -> OptionParameters:
        """Copy with some fields changed (re-validated)."""
        return replace(self, **changes)


@dataclass(frozen=True, slots=True)
class PricingSettings:
    """Numerical-quality settings for the boundary solve and pricing integrals.

    Attributes
    ==========
    collocation_order:
        Number of Chebyshev-Lobatto nodes used for the boundary. Default: 32.
    quadrature_order:
        Gauss-Legendre order for the bulk of each boundary integral (<= 64). Default: 16.
    tolerance:
        Relative per-node change at which the fixed-point sweeps stop. Default: 1e-8.
    max_sweeps:
        Sweep cap; exceeding it raises ConvergenceError. Default: 100.
    acceleration_depth:
        Number of past sweeps Anderson acceleration mixes; 0 runs plain sweeps. Default: 5.
    fixed_point_equation:
        SMOOTH_PASTING, VALUE_MATCHING or AUTO (smooth pasting only when |r - q| < 1e-3).
    sweep_mode:
        JACOBI (all nodes from the previous sweep) or GAUSS_SEIDEL (fresh values
        used as soon as they are available). Default: GAUSS_SEIDEL.
    dividend_model:
        How a DividendSchedule enters the valuation (SPOT or ESCROWED).
    near_expiry_min_time:
        Below this time to expiry the price is intrinsic. Default: 1 trading day.
    near_expiry_blend_width:
        Width of the linear model/intrinsic blend above the minimum. Default: 2 trading days.
    singular_split:
        Fraction of each integration range handled by tanh-sinh next to the
        1/sqrt(s) singularity. Default: 0.05.
    vol_bump, rate_bump, theta_days:
        Bump sizes for vega (absolute vol), rho (absolute rate) and theta (calendar days).
    log_timings:
        Emit DEBUG timing lines for the boundary solve and pricing integral.
    """

    collocation_order: int = 32
    quadrature_order: int = 16
    tolerance: float = 1e-8
    max_sweeps: int = 100
    acceleration_depth: int = 5
    fixed_point_equation: FixedPointEquation = FixedPointEquation.AUTO
    sweep_mode: SweepMode = SweepMode.GAUSS_SEIDEL
    dividend_model: DividendModel = DividendModel.SPOT
    near_expiry_min_time: float = 1.0 / TRADING_DAYS_PER_YEAR
    near_expiry_blend_width: float = 2.0 / TRADING_DAYS_PER_YEAR
    singular_split: float = 0.05
    vol_bump: float = 0.01
    rate_bump: float = 1e-4
    theta_days: float = 1.0
    log_timings: bool = False

    def __post_init__(self):
        object.__setattr__(
            self,
            "fixed_point_equation",
            _coerce_enum(self.fixed_point_equation, FixedPointEquation, "fixed_point_equation"),
        )
        object.__setattr__(
            self, "sweep_mode", _coerce_enum(self.sweep_mode, SweepMode, "sweep_mode")
        )
        object.__setattr__(
            self, "dividend_model", _coerce_enum(self.dividend_model, DividendModel, "dividend_model")
        )
        if int(self.collocation_order) != self.collocation_order or self.collocation_order < 4:
            raise InvalidParametersError(
                f"collocation_order must be an integer >= 4, got {self.collocation_order}"
            )
        if not 2 <= self.quadrature_order <= MAX_LEGENDRE_ORDER:
            raise InvalidParametersError(
                f"quadrature_order must be in [2, {MAX_LEGENDRE_ORDER}], got {self.quadrature_order}"
            )
        if not 0.0 < self.tolerance < 1e-2:
            raise InvalidParametersError(f"tolerance must be in (0, 1e-2), got {self.tolerance}")
        if self.max_sweeps < 1:
            raise InvalidParametersError(f"max_sweeps must be >= 1, got {self.max_sweeps}")
        if int(self.acceleration_depth) != self.acceleration_depth or self.acceleration_depth < 0:
            raise InvalidParametersError(
                f"acceleration_depth must be an integer >= 0, got {self.acceleration_depth}"
            )
        if self.near_expiry_min_time < 0.0 or self.near_expiry_blend_width <= 0.0:
            raise InvalidParametersError(
                "near_expiry_min_time must be >= 0 and near_expiry_blend_width > 0"
            )
        if not 0.0 < self.singular_split < 1.0:
            raise InvalidParametersError(f"singular_split must be in (0, 1), got {self.singular_split}")
        for name in ("vol_bump", "rate_bump", "theta_days"):
            if getattr(self, name) <= 0.0:
                raise InvalidParametersError(f"{name} must be positive, got {getattr(self, name)}")

    @property
    def near_expiry_threshold(self) -> float:
        """Time to expiry above which the model is used unblended."""
        return self.near_expiry_min_time + self.near_expiry_blend_width
