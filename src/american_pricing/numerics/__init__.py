"""Numerical building blocks: characteristic roots, Chebyshev collocation,
quadrature and isotonic projection.

These modules have no dependencies on the valuation layer.
"""

from .roots import CharacteristicRoots, characteristic_coefficients, characteristic_roots
from .chebyshev import (
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
from .quadrature import (
    adaptive_gauss_kronrod,
    gauss_hermite,
    gauss_laguerre,
    gauss_legendre,
    integrate_gauss_legendre,
    tanh_sinh,
)
from .isotonic import is_monotone, pool_adjacent_violators

__all__ = [
    "CharacteristicRoots",
    "characteristic_coefficients",
    "characteristic_roots",
    "barycentric_interpolate",
    "chebyshev_nodes",
    "chebyshev_weights",
    "differentiation_matrix",
    "evaluate_series",
    "from_standard",
    "lobatto_nodes",
    "lobatto_weights",
    "to_standard",
    "values_to_coefficients",
    "adaptive_gauss_kronrod",
    "gauss_hermite",
    "gauss_laguerre",
    "gauss_legendre",
    "integrate_gauss_legendre",
    "tanh_sinh",
    "is_monotone",
    "pool_adjacent_violators",
]
