"""Tests for near-expiry handling: intrinsic fallback and the linear blend."""

import math

import pytest

from american_pricing.enums import BoundaryRegime, NearExpiryRecommendation, OptionType
from american_pricing.exceptions import InvalidParametersError
from american_pricing.valuation import NearExpiryHandler, OptionParameters

ONE_DAY = 1.0 / 252.0


@pytest.fixture()
def handler() -> NearExpiryHandler:
    return NearExpiryHandler()


class TestAssessment:
    @pytest.mark.parametrize(
        "tau,expected",
        [
            (0.5 * ONE_DAY, NearExpiryRecommendation.INTRINSIC),
            (ONE_DAY, NearExpiryRecommendation.INTRINSIC),
            (2.0 * ONE_DAY, NearExpiryRecommendation.BLENDED),
            (3.5 * ONE_DAY, NearExpiryRecommendation.MODEL),
            (0.25, NearExpiryRecommendation.MODEL),
        ],
    )
    def test_recommendation(self, handler, tau, expected):
        assert handler.assess(tau).recommendation is expected

    def test_blend_weight_linear_and_clamped(self, handler):
        assert handler.blend_weight(ONE_DAY) == 0.0
        assert handler.blend_weight(2.0 * ONE_DAY) == pytest.approx(0.5)
        assert handler.blend_weight(3.0 * ONE_DAY) == pytest.approx(1.0)
        assert handler.blend_weight(1.0) == 1.0
        assert handler.threshold == pytest.approx(3.0 * ONE_DAY)

    def test_invalid_thresholds(self):
        with pytest.raises(InvalidParametersError):
            NearExpiryHandler(min_time=-1.0)
        with pytest.raises(InvalidParametersError):
            NearExpiryHandler(blend_width=0.0)


class TestBlend:
    def test_continuous_at_both_ends(self, handler):
        """C0 handoff: intrinsic at min_time, model at the threshold."""
        eps = 1e-12
        assert handler.blend(10.0, 4.0, ONE_DAY + eps) == pytest.approx(4.0)
        assert handler.blend(10.0, 4.0, handler.threshold - eps) == pytest.approx(10.0)

    def test_price_floored_at_intrinsic(self, handler):
        assert handler.blend_price(2.0, 5.0, 2.0 * ONE_DAY) == 5.0
        assert handler.blend_price(7.0, 5.0, 2.0 * ONE_DAY) == pytest.approx(6.0)

    def test_infinite_edges_pass_through(self, handler):
        assert handler.blend(math.inf, math.inf, 2.0 * ONE_DAY) == math.inf


class TestFallbackBoundary:
    def test_single_put(self, handler):
        upper, lower = handler.fallback_boundary(
            100.0, 0.05, 0.02, 0.2, ONE_DAY, OptionType.PUT, BoundaryRegime.SINGLE
        )
        spread = 0.2 * math.sqrt(ONE_DAY)
        assert upper == pytest.approx(100.0 * (1.0 - spread))
        assert lower == 0.0

    def test_minimum_spread(self, handler):
        upper, _ = handler.fallback_boundary(
            100.0, 0.05, 0.02, 0.01, ONE_DAY, OptionType.PUT, BoundaryRegime.SINGLE
        )
        assert upper == pytest.approx(99.0)

    def test_double_put_ordered(self, handler):
        upper, lower = handler.fallback_boundary(
            70.0, -0.02, -0.04, 0.2, ONE_DAY, OptionType.PUT, BoundaryRegime.DOUBLE
        )
        assert 35.0 <= lower < upper < 70.0

    def test_call_by_symmetry(self, handler):
        upper, lower = handler.fallback_boundary(
            100.0, 0.05, 0.02, 0.2, ONE_DAY, OptionType.CALL, BoundaryRegime.SINGLE
        )
        assert upper == math.inf
        assert lower > 100.0

    def test_no_early_exercise(self, handler):
        upper, lower = handler.fallback_boundary(
            100.0, 0.05, 0.0, 0.2, ONE_DAY, OptionType.CALL, BoundaryRegime.NO_EARLY_EXERCISE
        )
        assert math.isnan(upper) and math.isnan(lower)


class TestIntrinsicGreeks:
    def test_in_the_money_put(self):
        greeks = NearExpiryHandler.intrinsic_greeks(90.0, 100.0, 0.2, ONE_DAY, OptionType.PUT)
        assert greeks.delta == -1.0
        assert greeks.gamma == 0.0
        assert greeks.vega == greeks.theta == greeks.rho == 0.0

    def test_out_of_the_money_call(self):
        greeks = NearExpiryHandler.intrinsic_greeks(90.0, 100.0, 0.2, ONE_DAY, OptionType.CALL)
        assert greeks.delta == 0.0

    def test_at_the_money_gamma_capped(self):
        greeks = NearExpiryHandler.intrinsic_greeks(100.0, 100.0, 0.2, ONE_DAY, OptionType.CALL)
        assert greeks.delta == 0.5
        assert 0.0 < greeks.gamma <= 1.0


class TestEngineNearExpiry:
    def test_one_trading_day_prices_at_intrinsic(self, engine):
        params = OptionParameters(95.0, 100.0, 0.05, 0.02, 0.3, ONE_DAY, OptionType.PUT)
        result = engine.value(params)
        assert result.price == pytest.approx(5.0)
        assert result.diagnostics.near_expiry is NearExpiryRecommendation.INTRINSIC
        assert result.diagnostics.sweeps == 0
        assert result.greeks.delta == -1.0

    def test_blend_zone_price(self, engine):
        params = OptionParameters(97.0, 100.0, 0.05, 0.02, 0.3, 2.0 * ONE_DAY, OptionType.PUT)
        result = engine.value(params, greeks=False)
        diagnostics = result.diagnostics
        assert diagnostics.near_expiry is NearExpiryRecommendation.BLENDED
        assert diagnostics.blend_weight == pytest.approx(0.5)
        w = diagnostics.blend_weight
        expected = max(w * diagnostics.model_price + (1.0 - w) * 3.0, 3.0)
        assert result.price == pytest.approx(expected, rel=1e-12)

    def test_price_continuous_across_threshold(self, engine):
        threshold = engine.settings.near_expiry_threshold
        below = engine.price(100.0, 100.0, 0.05, 0.02, 0.3, threshold * (1.0 - 1e-6))
        above = engine.price(100.0, 100.0, 0.05, 0.02, 0.3, threshold * (1.0 + 1e-6))
        assert below == pytest.approx(above, abs=1e-3)

    def test_boundaries_blend_into_fallback(self, engine, handler):
        tau = 2.0 * ONE_DAY
        upper, lower = engine.compute_boundaries(100.0, 100.0, 0.05, 0.02, 0.3, tau)
        fallback_upper, _ = handler.fallback_boundary(
            100.0, 0.05, 0.02, 0.3, tau, OptionType.PUT, BoundaryRegime.SINGLE
        )
        params = OptionParameters(100.0, 100.0, 0.05, 0.02, 0.3, tau, OptionType.PUT)
        model_upper, _ = engine.solver.solve(params).edges(tau)
        w = handler.blend_weight(tau)
        assert upper == pytest.approx(w * model_upper + (1.0 - w) * fallback_upper)
        assert lower == 0.0
