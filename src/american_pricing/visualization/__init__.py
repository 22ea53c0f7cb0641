"""Visualization module for American option pricing.

This module provides plotting functions for:
- Early-exercise boundaries against time to expiry
"""

from .boundary import plot_exercise_boundary

__all__ = ["plot_exercise_boundary"]
