"""Tests for the early-exercise boundary solver."""

import math

import numpy as np
import pytest

from american_pricing.enums import BoundaryRegime, FixedPointEquation, OptionType, SweepMode
from american_pricing.exceptions import ConvergenceError, UnsupportedFeatureError
from american_pricing.numerics.isotonic import is_monotone
from american_pricing.valuation import (
    ExerciseBoundarySolver,
    OptionParameters,
    PricingSettings,
    classify_regime,
    quadratic_approximation,
)
from american_pricing.valuation import boundary as boundary_module
from american_pricing.valuation.boundary import edges_from_put_space, expiry_limits


class TestRegimes:
    @pytest.mark.parametrize(
        "rate,q,option_type,expected",
        [
            (0.05, 0.02, OptionType.PUT, BoundaryRegime.SINGLE),
            (0.05, 0.00, OptionType.PUT, BoundaryRegime.SINGLE),
            (-0.02, -0.04, OptionType.PUT, BoundaryRegime.DOUBLE),
            (-0.04, -0.02, OptionType.PUT, BoundaryRegime.NO_EARLY_EXERCISE),
            (0.00, 0.02, OptionType.PUT, BoundaryRegime.NO_EARLY_EXERCISE),
            (0.05, 0.02, OptionType.CALL, BoundaryRegime.SINGLE),
            (0.05, 0.00, OptionType.CALL, BoundaryRegime.NO_EARLY_EXERCISE),
            (-0.04, -0.02, OptionType.CALL, BoundaryRegime.DOUBLE),
        ],
    )
    def test_classify_regime(self, rate, q, option_type, expected):
        assert classify_regime(rate, q, option_type) is expected

    def test_expiry_limits(self):
        assert expiry_limits(100.0, 0.05, 0.10, BoundaryRegime.SINGLE) == (50.0, 0.0)
        assert expiry_limits(100.0, 0.05, 0.00, BoundaryRegime.SINGLE) == (100.0, 0.0)
        assert expiry_limits(70.0, -0.02, -0.04, BoundaryRegime.DOUBLE) == pytest.approx((70.0, 35.0))

    def test_call_edges_by_symmetry(self):
        upper, lower = edges_from_put_space(OptionType.CALL, BoundaryRegime.SINGLE, 100.0, 80.0, 0.0)
        assert upper == np.inf
        assert lower == pytest.approx(125.0)


class TestQuadraticApproximation:
    def test_single_put_below_strike(self):
        upper, lower = quadratic_approximation(100.0, 0.05, 0.02, 0.3, 0.5, BoundaryRegime.SINGLE)
        assert 0.0 < upper < 100.0
        assert lower == 0.0

    def test_double_region_open_near_expiry(self):
        guess = quadratic_approximation(70.0, -0.02, -0.04, 0.2, 0.01, BoundaryRegime.DOUBLE)
        assert guess is not None
        upper, lower = guess
        assert 35.0 <= lower < upper <= 70.0


class TestSingleBoundary:
    def test_put_boundary_monotone_below_strike(self, solver, atm_put):
        boundary = solver.solve(atm_put)
        assert boundary.regime is BoundaryRegime.SINGLE
        assert boundary.converged
        assert is_monotone(boundary.log_upper, increasing=False)
        upper, lower = boundary.edges(boundary.nodes)
        assert np.all(upper <= atm_put.strike + 1e-12)
        assert np.all(upper > 0.5 * atm_put.strike)
        assert np.all(lower == 0.0)
        assert upper[0] == pytest.approx(atm_put.strike)

    def test_expiry_limit_with_high_dividend(self, solver):
        params = OptionParameters(100.0, 100.0, 0.03, 0.06, 0.25, 1.0, OptionType.PUT)
        boundary = solver.solve(params)
        assert boundary.edges(0.0)[0] == pytest.approx(50.0)

    def test_call_boundary_above_strike(self, solver, atm_call):
        boundary = solver.solve(atm_call)
        upper, lower = boundary.edges(boundary.nodes[1:])
        assert np.all(np.isinf(upper))
        assert np.all(lower > atm_call.strike)
        # call boundary rises with time to expiry
        assert is_monotone(lower, increasing=True)

    def test_interpolation_matches_chebyshev_series(self, solver, atm_put):
        boundary = solver.solve(atm_put)
        tau = np.linspace(0.01, atm_put.time_to_expiry, 7)
        log_upper = np.log(boundary.put_space(tau)[0] / atm_put.strike)
        assert np.allclose(boundary.series_log_upper(tau), log_upper, atol=1e-10)

    def test_slope_is_non_positive(self, solver, atm_put):
        boundary = solver.solve(atm_put)
        assert boundary.slope(0.0) == -np.inf
        assert np.all(boundary.slope(np.array([0.1, 0.3, 0.5])) <= 0.0)

    def test_jacobi_and_gauss_seidel_agree(self, fast_settings, atm_put):
        jacobi = ExerciseBoundarySolver(
            PricingSettings(collocation_order=12, tolerance=1e-7, sweep_mode=SweepMode.JACOBI)
        ).solve(atm_put)
        seidel = ExerciseBoundarySolver(fast_settings).solve(atm_put)
        assert np.allclose(jacobi.log_upper, seidel.log_upper, atol=1e-5)

    def test_auto_picks_smooth_pasting_when_rates_close(self, solver):
        params = OptionParameters(100.0, 100.0, 0.03, 0.0305, 0.25, 1.0, OptionType.PUT)
        boundary = solver.solve(params)
        assert boundary.equation is FixedPointEquation.SMOOTH_PASTING

    def test_auto_picks_value_matching(self, solver, atm_put):
        assert solver.solve(atm_put).equation is FixedPointEquation.VALUE_MATCHING

    def test_contains(self, solver, atm_put):
        boundary = solver.solve(atm_put)
        upper, _ = boundary.edges(atm_put.time_to_expiry)
        assert boundary.contains(0.9 * upper, atm_put.time_to_expiry)
        assert not boundary.contains(1.1 * upper, atm_put.time_to_expiry)

    def test_sweep_cap_raises(self, atm_put):
        solver = ExerciseBoundarySolver(PricingSettings(collocation_order=12, max_sweeps=1))
        with pytest.raises(ConvergenceError) as excinfo:
            solver.solve(atm_put)
        assert excinfo.value.sweeps == 1
        assert excinfo.value.max_change > 0.0


class TestAcceleratedSweeps:
    """Anderson mixing of the sweeps versus plain fixed-point sweeps."""

    @pytest.fixture()
    def plain_solver(self) -> ExerciseBoundarySolver:
        return ExerciseBoundarySolver(
            PricingSettings(
                collocation_order=12, tolerance=1e-7, acceleration_depth=0, max_sweeps=400
            )
        )

    def test_same_boundary_in_fewer_sweeps(self, solver, plain_solver, atm_put):
        accelerated = solver.solve(atm_put)
        plain = plain_solver.solve(atm_put)
        assert np.allclose(accelerated.log_upper, plain.log_upper, atol=1e-5)
        assert accelerated.sweeps < plain.sweeps

    def test_default_settings_converge_within_sweep_cap(self):
        """32 nodes at tolerance 1e-8 need well over 100 plain sweeps."""
        solver = ExerciseBoundarySolver()
        params = OptionParameters(100.0, 100.0, 0.05, 0.0, 0.2, 1.0, OptionType.PUT)
        boundary = solver.solve(params)
        assert boundary.converged
        assert boundary.sweeps <= solver.settings.max_sweeps
        assert boundary.max_change < solver.settings.tolerance
        assert is_monotone(boundary.log_upper, increasing=False)

    def test_default_settings_double_regime(self, negative_rate_put):
        boundary = ExerciseBoundarySolver().solve(negative_rate_put)
        assert boundary.regime is BoundaryRegime.DOUBLE
        assert boundary.sweeps <= 100
        upper, lower = boundary.edges(boundary.nodes[1:])
        assert np.all(upper >= lower)
        assert np.all(lower > 0.0)


class TestDoubleBoundary:
    def test_two_finite_boundaries(self, solver, negative_rate_put):
        """q < r < 0: Upper > Lower > 0 while the exercise region is open."""
        boundary = solver.solve(negative_rate_put)
        assert boundary.regime is BoundaryRegime.DOUBLE
        assert boundary.equation is FixedPointEquation.VALUE_MATCHING
        upper, lower = boundary.edges(boundary.nodes[1:3])
        assert np.all(np.isfinite(upper))
        assert np.all(upper > lower)
        assert np.all(lower > 0.0)
        assert np.all(upper <= negative_rate_put.strike + 1e-12)
        assert np.all(lower >= 35.0 - 1e-9)

    def test_monotone_and_ordered(self, solver, negative_rate_put):
        boundary = solver.solve(negative_rate_put)
        assert is_monotone(boundary.log_upper, increasing=False)
        assert is_monotone(boundary.log_lower, increasing=True)
        assert np.all(boundary.log_lower <= boundary.log_upper)

    def test_limits_at_expiry(self, solver, negative_rate_put):
        upper, lower = solver.solve(negative_rate_put).edges(0.0)
        assert upper == pytest.approx(70.0)
        assert lower == pytest.approx(35.0)

    def test_region_closed_past_crossing(self, solver, negative_rate_put):
        boundary = solver.solve(negative_rate_put)
        if boundary.crossing_time is None:
            pytest.skip("exercise region still open at expiry")
        upper, lower = boundary.edges(negative_rate_put.time_to_expiry)
        assert upper == pytest.approx(lower)
        assert not boundary.contains(0.5 * (upper + lower), negative_rate_put.time_to_expiry)


class TestNoEarlyExercise:
    def test_call_without_dividends(self, solver):
        params = OptionParameters(100.0, 100.0, 0.05, 0.0, 0.2, 1.0, OptionType.CALL)
        boundary = solver.solve(params)
        assert boundary.regime is BoundaryRegime.NO_EARLY_EXERCISE
        assert not boundary.has_early_exercise
        upper, lower = boundary.edges(0.5)
        assert math.isnan(upper) and math.isnan(lower)
        assert not boundary.contains(100.0, 0.5)


class TestDoubleBoundaryVolatilitySweep:
    """q < r < 0 put across volatilities; the region closes before expiry once vol is high."""

    @pytest.mark.parametrize("vol", [0.05, 0.1, 0.2, 0.25, 0.3, 0.35, 0.4, 0.5, 0.6])
    def test_solves_with_ordered_monotone_curves(self, solver, vol):
        params = OptionParameters(100.0, 70.0, -0.02, -0.04, vol, 1.0, OptionType.PUT)
        boundary = solver.solve(params)
        assert boundary.regime is BoundaryRegime.DOUBLE
        assert is_monotone(boundary.log_upper, increasing=False)
        assert is_monotone(boundary.log_lower, increasing=True)
        assert np.all(boundary.log_lower <= boundary.log_upper)
        upper, lower = boundary.edges(0.0)
        assert upper == pytest.approx(70.0)
        assert lower == pytest.approx(35.0)

    @pytest.mark.parametrize("vol", [0.4, 0.5, 0.6])
    def test_region_closes_before_expiry(self, solver, vol):
        params = OptionParameters(100.0, 70.0, -0.02, -0.04, vol, 1.0, OptionType.PUT)
        boundary = solver.solve(params)
        assert boundary.crossing_time is not None
        assert 0.0 < boundary.crossing_time < 1.0
        upper, lower = boundary.edges(1.0)
        assert upper == pytest.approx(lower)

    def test_horizon_cut_back_when_estimate_is_too_late(self, solver, monkeypatch):
        """Without a closing-time estimate the persistent crossings still find one."""
        params = OptionParameters(100.0, 70.0, -0.02, -0.04, 0.5, 1.0, OptionType.PUT)
        monkeypatch.setattr(boundary_module, "_crossing_time", lambda *args: None)
        boundary = solver.solve(params)
        assert boundary.crossing_time is not None
        assert boundary.solve_horizon == boundary.crossing_time < 1.0
        assert np.all(boundary.log_lower <= boundary.log_upper)
        assert not boundary.contains(60.0, 1.0)


class TestEscrowedBoundary:
    @pytest.fixture()
    def put(self) -> OptionParameters:
        return OptionParameters(98.0, 100.0, 0.05, 0.0, 0.3, 0.5, OptionType.PUT)

    def test_split_at_ex_date(self, solver, put):
        boundary = solver.solve(put, escrow_jumps=((0.25, 2.0),))
        assert boundary.solve_horizon == pytest.approx(0.25)
        assert len(boundary.segments) == 1
        segment = boundary.segments[0]
        assert segment.tau_start == pytest.approx(0.25)
        assert segment.tau_end == pytest.approx(0.5)
        assert boundary.segment_starts == (0.0, segment.tau_start)
        assert np.all((segment.ratios >= 0.0) & (segment.ratios <= segment.cap))

    def test_no_exercise_just_before_ex_date(self, solver, put):
        """Exercising an instant before the stock drops by the dividend is never optimal."""
        boundary = solver.solve(put, escrow_jumps=((0.25, 2.0),))
        assert boundary.segments[0].ratios[0] == 0.0
        assert not boundary.contains(50.0, 0.25)

    def test_after_last_ex_date_matches_dividend_free_boundary(self, solver, put):
        escrowed = solver.solve(put, escrow_jumps=((0.25, 2.0),))
        plain = solver.solve(put.replace(time_to_expiry=0.25))
        tau = np.array([0.02, 0.1, 0.2])
        assert np.allclose(escrowed.put_space(tau)[0], plain.put_space(tau)[0], rtol=1e-5)

    def test_escrowed_boundary_below_spot_model(self, solver, put):
        escrowed = solver.solve(put, escrow_jumps=((0.25, 2.0),))
        spot_model = solver.solve(put)
        tau = np.linspace(0.26, 0.5, 7)
        assert np.all(escrowed.put_space(tau)[0] <= spot_model.put_space(tau)[0] + 1e-9)

    def test_opens_far_from_a_small_dividend(self, solver):
        """A small dividend 0.9y away: deep in the money, early exercise still pays today."""
        params = OptionParameters(90.0, 100.0, 0.05, 0.0, 0.3, 1.0, OptionType.PUT)
        escrowed = solver.solve(params, escrow_jumps=((0.9, 0.2),))
        segment = escrowed.segments[0]
        assert segment.ratios[0] == 0.0
        assert segment.ratios[-1] > 0.0
        dividend_free = solver.solve(params).put_space(1.0)[0][0]
        assert 0.0 < escrowed.put_space(1.0)[0][0] < dividend_free

    def test_call_jumps_do_not_split(self, solver, atm_call):
        boundary = solver.solve(atm_call, escrow_jumps=((0.25, 2.0),))
        assert boundary.segments == ()
        assert boundary.solve_horizon == atm_call.time_to_expiry

    def test_double_regime_put_unsupported(self, solver, negative_rate_put):
        with pytest.raises(UnsupportedFeatureError):
            solver.solve(negative_rate_put, escrow_jumps=((0.5, 1.0),))
