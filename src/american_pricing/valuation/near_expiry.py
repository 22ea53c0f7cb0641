"""Near-expiry handling.

As tau -> 0 the boundary integral equations become singular. Below
``min_time`` (one trading day by default) the engine prices at intrinsic
value; within the following ``blend_width`` it blends linearly between the
model and the intrinsic fallback. The handoff is deliberately C0 only: value
continuous, slope not. Do not replace it with a smoother blend.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math

from ..enums import BoundaryRegime, NearExpiryRecommendation, OptionType
from ..exceptions import InvalidParametersError
from ..utils import TRADING_DAYS_PER_YEAR
from .boundary import edges_from_put_space, expiry_limits, put_space_rates

logger = logging.getLogger(__name__)

__all__ = ["NearExpiryAssessment", "NearExpiryHandler", "IntrinsicGreeks"]

MIN_SPREAD = 0.01
UPPER_SPREAD_FRACTION = 0.3
LOWER_COLLAPSE_FACTOR = 0.99
MAX_GAMMA_MULTIPLE = 100.0
AT_THE_MONEY_BAND = 1e-8


@dataclass(frozen=True, slots=True)
class NearExpiryAssessment:
    recommendation: NearExpiryRecommendation
    blend_weight: float
    time_to_expiry: float


@dataclass(frozen=True, slots=True)
class IntrinsicGreeks:
    """Greeks of a position valued at intrinsic (no time value left)."""

    delta: float
    gamma: float
    vega: float = 0.0
    theta: float = 0.0
    rho: float = 0.0


@dataclass(frozen=True, slots=True)
class NearExpiryHandler:
    """Thresholds and fallbacks for options very close to expiry.

    Attributes
    ==========
    min_time:
        At or below this time to expiry the price is intrinsic. Default: 1/252.
    blend_width:
        Width of the linear blend zone above ``min_time``. Default: 2/252.
    """

    min_time: float = 1.0 / TRADING_DAYS_PER_YEAR
    blend_width: float = 2.0 / TRADING_DAYS_PER_YEAR

    def __post_init__(self) -> None:
        if self.min_time < 0.0 or self.blend_width <= 0.0:
            raise InvalidParametersError("min_time must be >= 0 and blend_width > 0")

    @property
    def threshold(self) -> float:
        return self.min_time + self.blend_width

    def blend_weight(self, time_to_expiry: float) -> float:
        """Model weight ``w = clamp((tau - min_time) / blend_width, 0, 1)``."""
        return min(max((time_to_expiry - self.min_time) / self.blend_width, 0.0), 1.0)

    def assess(self, time_to_expiry: float) -> NearExpiryAssessment:
        weight = self.blend_weight(time_to_expiry)
        if time_to_expiry <= self.min_time:
            recommendation = NearExpiryRecommendation.INTRINSIC
        elif weight < 1.0:
            recommendation = NearExpiryRecommendation.BLENDED
        else:
            recommendation = NearExpiryRecommendation.MODEL
        if recommendation is not NearExpiryRecommendation.MODEL:
            logger.debug(
                "Near expiry: tau=%.6f -> %s (w=%.4f)",
                time_to_expiry,
                recommendation.value,
                weight,
            )
        return NearExpiryAssessment(recommendation, weight, time_to_expiry)

    def fallback_boundary(
        self,
        strike: float,
        rate: float,
        dividend_yield: float,
        volatility: float,
        time_to_expiry: float,
        option_type: OptionType,
        regime: BoundaryRegime,
    ) -> tuple[float, float]:
        """Intrinsic-value boundary edges ``(upper, lower)`` scaled by ``sigma sqrt(tau)``."""
        r, q = put_space_rates(rate, dividend_yield, option_type)
        upper0, lower0 = expiry_limits(strike, r, q, regime)
        spread = max(MIN_SPREAD, volatility * math.sqrt(max(time_to_expiry, 0.0)))
        if regime is BoundaryRegime.SINGLE:
            upper, lower = upper0 * (1.0 - spread), 0.0
        elif regime is BoundaryRegime.DOUBLE:
            upper = upper0 * (1.0 - UPPER_SPREAD_FRACTION * spread)
            lower = max(lower0, upper0 * (1.0 - spread))
            if lower >= upper:
                lower = LOWER_COLLAPSE_FACTOR * upper
        else:
            upper = lower = math.nan
        edges = edges_from_put_space(option_type, regime, strike, upper, lower)
        return float(edges[0]), float(edges[1])

    def blend(self, model_value: float, fallback_value: float, time_to_expiry: float) -> float:
        """Linear (C0) blend ``w * model + (1 - w) * fallback``."""
        if math.isinf(model_value) and model_value == fallback_value:
            return model_value
        weight = self.blend_weight(time_to_expiry)
        return weight * model_value + (1.0 - weight) * fallback_value

    def blend_price(self, model_price: float, intrinsic: float, time_to_expiry: float) -> float:
        """``max(w * model + (1 - w) * intrinsic, intrinsic)``."""
        return max(self.blend(model_price, intrinsic, time_to_expiry), intrinsic)

    @staticmethod
    def intrinsic_greeks(
        spot: float,
        strike: float,
        volatility: float,
        time_to_expiry: float,
        option_type: OptionType,
    ) -> IntrinsicGreeks:
        """Step-function delta and an at-the-money gamma spike, capped at ``100 / S``."""
        sign = 1.0 if option_type is OptionType.CALL else -1.0
        moneyness = sign * (spot - strike)
        if abs(spot - strike) <= AT_THE_MONEY_BAND * strike:
            scale = volatility * math.sqrt(max(time_to_expiry, 0.0))
            gamma = MAX_GAMMA_MULTIPLE / spot
            if scale > 0.0:
                gamma = min(1.0 / (spot * scale), gamma)
            return IntrinsicGreeks(delta=0.5 * sign, gamma=gamma)
        if moneyness > 0.0:
            return IntrinsicGreeks(delta=sign, gamma=0.0)
        return IntrinsicGreeks(delta=0.0, gamma=0.0)
