"""Tests for Chebyshev collocation primitives."""

import numpy as np
import pytest

from american_pricing.exceptions import InvalidParametersError
from american_pricing.numerics.chebyshev import (
    barycentric_interpolate,
    chebyshev_nodes,
    chebyshev_weights,
    differentiation_matrix,
    evaluate_series,
    from_standard,
    lobatto_nodes,
    lobatto_weights,
    to_standard,
    values_to_coefficients,
)


def _smooth(x):
    return np.exp(-x) * np.sin(3.0 * x) + 0.5 * x


class TestNodes:
    def test_lobatto_endpoints_pinned_and_ascending(self):
        nodes = lobatto_nodes(9, 0.0, 2.0)
        assert nodes[0] == 0.0
        assert nodes[-1] == 2.0
        assert np.all(np.diff(nodes) > 0.0)

    def test_first_kind_nodes_interior(self):
        nodes = chebyshev_nodes(7, -1.0, 1.0)
        assert np.all(np.abs(nodes) < 1.0)
        assert np.all(np.diff(nodes) > 0.0)

    def test_affine_maps_invert(self):
        x = np.linspace(0.3, 4.0, 11)
        assert np.allclose(from_standard(to_standard(x, 0.3, 4.0), 0.3, 4.0), x)

    def test_bad_interval_rejected(self):
        with pytest.raises(InvalidParametersError):
            lobatto_nodes(5, 1.0, 1.0)

    def test_bad_order_rejected(self):
        with pytest.raises(InvalidParametersError):
            lobatto_nodes(1)


class TestBarycentric:
    def test_reproduces_node_values_exactly(self):
        nodes = lobatto_nodes(10, 0.0, 1.0)
        values = _smooth(nodes)
        out = barycentric_interpolate(nodes, nodes, lobatto_weights(10), values)
        assert np.array_equal(out, values)

    def test_interpolates_smooth_function(self):
        nodes = lobatto_nodes(24, 0.0, 2.0)
        x = np.linspace(0.0, 2.0, 101)
        out = barycentric_interpolate(x, nodes, lobatto_weights(24), _smooth(nodes))
        assert np.max(np.abs(out - _smooth(x))) < 1e-10

    def test_first_kind_weights(self):
        nodes = chebyshev_nodes(20, -1.0, 1.0)
        x = np.linspace(-0.9, 0.9, 13)
        out = barycentric_interpolate(x, nodes, chebyshev_weights(20), np.cos(nodes))
        assert np.max(np.abs(out - np.cos(x))) < 1e-12

    def test_scalar_query_returns_float(self):
        nodes = lobatto_nodes(6)
        out = barycentric_interpolate(0.25, nodes, lobatto_weights(6), nodes**2)
        assert isinstance(out, float)
        assert out == pytest.approx(0.0625)


class TestSeries:
    def test_coefficient_round_trip(self):
        """Values -> DCT-I coefficients -> Clenshaw recovers the interpolant."""
        nodes = lobatto_nodes(24, 0.0, 2.0)
        coefficients = values_to_coefficients(_smooth(nodes))
        x = np.linspace(0.0, 2.0, 57)
        assert np.max(np.abs(evaluate_series(coefficients, x, 0.0, 2.0) - _smooth(x))) < 1e-10

    def test_polynomial_coefficients(self):
        """T_2(t) = 2t^2 - 1 has a single non-zero coefficient."""
        t = lobatto_nodes(5)
        coefficients = values_to_coefficients(2.0 * t**2 - 1.0)
        assert coefficients[2] == pytest.approx(1.0)
        assert np.allclose(np.delete(coefficients, 2), 0.0, atol=1e-14)

    def test_coefficients_decay_for_smooth_function(self):
        coefficients = values_to_coefficients(np.exp(lobatto_nodes(20)))
        assert abs(coefficients[-1]) < 1e-12

    def test_empty_series(self):
        assert evaluate_series(np.empty(0), 0.3) == 0.0


class TestDifferentiation:
    def test_differentiates_polynomial_exactly(self):
        nodes = lobatto_nodes(8, 0.0, 3.0)
        D = differentiation_matrix(nodes)
        assert np.allclose(D @ nodes**3, 3.0 * nodes**2, atol=1e-9)

    def test_constants_have_zero_derivative(self):
        D = differentiation_matrix(lobatto_nodes(12, 0.0, 1.0))
        assert np.allclose(D @ np.ones(12), 0.0, atol=1e-12)
