"""Tests for quadrature rules and integrators."""

import math

import numpy as np
import pytest

from american_pricing.exceptions import InvalidParametersError, NumericalDegeneracyError
from american_pricing.numerics.quadrature import (
    adaptive_gauss_kronrod,
    gauss_hermite,
    gauss_laguerre,
    gauss_legendre,
    integrate_gauss_legendre,
    tanh_sinh,
)


class TestGaussianRules:
    @pytest.mark.parametrize("n", [2, 5, 16, 64])
    def test_legendre_exact_to_degree(self, n):
        """An n-point rule integrates x^k exactly for k <= 2n - 1."""
        nodes, weights = gauss_legendre(n)
        for k in (0, 1, 2 * n - 2, 2 * n - 1):
            exact = 0.0 if k % 2 else 2.0 / (k + 1)
            assert np.dot(weights, nodes**k) == pytest.approx(exact, abs=1e-12)

    def test_legendre_mapped_interval(self):
        nodes, weights = gauss_legendre(8, 1.0, 3.0)
        assert np.all((nodes > 1.0) & (nodes < 3.0))
        assert np.dot(weights, nodes**3) == pytest.approx((3.0**4 - 1.0) / 4.0, rel=1e-13)

    @pytest.mark.parametrize("n", [4, 12, 20])
    def test_laguerre_moments(self, n):
        """int_0^inf e^-x x^k dx = k!"""
        nodes, weights = gauss_laguerre(n)
        for k in range(0, min(2 * n - 1, 12)):
            assert np.dot(weights, nodes**k) == pytest.approx(math.factorial(k), rel=1e-10)

    @pytest.mark.parametrize("n", [5, 10, 20])
    def test_hermite_moments(self, n):
        """int e^-x^2 dx = sqrt(pi); int e^-x^2 x^2 dx = sqrt(pi)/2."""
        nodes, weights = gauss_hermite(n)
        assert weights.sum() == pytest.approx(math.sqrt(math.pi), rel=1e-12)
        assert np.dot(weights, nodes**2) == pytest.approx(0.5 * math.sqrt(math.pi), rel=1e-12)
        assert np.dot(weights, nodes) == pytest.approx(0.0, abs=1e-12)

    def test_tables_are_read_only_and_cached(self):
        nodes, weights = gauss_legendre(16)
        assert not nodes.flags.writeable
        assert not weights.flags.writeable
        assert gauss_legendre(16)[0] is nodes
        with pytest.raises(ValueError):
            nodes[0] = 0.0

    @pytest.mark.parametrize("n", [0, 65, 3.5])
    def test_order_out_of_range(self, n):
        with pytest.raises(InvalidParametersError):
            gauss_legendre(n)


class TestIntegrators:
    def test_gauss_legendre_integrate(self):
        assert integrate_gauss_legendre(np.exp, 0.0, 1.0, 16) == pytest.approx(math.e - 1.0, rel=1e-13)

    def test_tanh_sinh_inverse_sqrt_singularity(self):
        """int_0^1 x^-1/2 dx = 2."""
        result = tanh_sinh(lambda x: 1.0 / np.sqrt(x), 0.0, 1.0, tolerance=1e-12)
        assert result == pytest.approx(2.0, rel=1e-8)

    def test_tanh_sinh_log_singularity(self):
        """int_0^1 ln(x) dx = -1."""
        assert tanh_sinh(np.log, 0.0, 1.0, tolerance=1e-12) == pytest.approx(-1.0, rel=1e-8)

    def test_tanh_sinh_reversed_limits(self):
        forward = tanh_sinh(np.cos, 0.0, 1.0)
        assert tanh_sinh(np.cos, 1.0, 0.0) == pytest.approx(-forward)
        assert forward == pytest.approx(math.sin(1.0), rel=1e-10)

    def test_tanh_sinh_empty_interval(self):
        assert tanh_sinh(np.cos, 0.5, 0.5) == 0.0

    def test_adaptive_gauss_kronrod_peaked(self):
        """Narrow Gaussian bump centred off the midpoint."""
        width = 0.05

        def bump(x):
            return np.exp(-(((x - 0.37) / width) ** 2))

        expected = width * math.sqrt(math.pi)
        assert adaptive_gauss_kronrod(bump, 0.0, 1.0, tolerance=1e-12) == pytest.approx(
            expected, rel=1e-9
        )

    def test_adaptive_gauss_kronrod_rejects_bad_tolerance(self):
        with pytest.raises(InvalidParametersError):
            adaptive_gauss_kronrod(np.cos, 0.0, 1.0, tolerance=0.0)

    def test_all_non_finite_samples_raise(self):
        with pytest.raises(NumericalDegeneracyError):
            integrate_gauss_legendre(lambda x: np.full_like(x, np.nan), 0.0, 1.0)
