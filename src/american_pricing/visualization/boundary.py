"""Plot early-exercise boundaries."""

from typing import TYPE_CHECKING

import numpy as np
import matplotlib.pyplot as plt
from matplotlib.axes import Axes

from ..enums import BoundaryRegime

if TYPE_CHECKING:
    from ..valuation.boundary import ExerciseBoundary


def plot_exercise_boundary(
    boundary: "ExerciseBoundary",
    ax: Axes | None = None,
    num_points: int = 200,
    show_nodes: bool = True,
    figsize: tuple[float, float] = (10, 6),
) -> Axes:
    """Plot the exercise boundary (or both boundaries) against time to expiry.

    Parameters
    ----------
    boundary : ExerciseBoundary
        Solved boundary, e.g. from ``OptionPricingEngine.solve_boundary``
    ax : Axes, optional
        Axes to draw on. If None, a new figure is created.
    num_points : int, optional
        Number of evaluation points in tau (default: 200)
    show_nodes : bool, optional
        Mark the collocation nodes (default: True)
    figsize : tuple[float, float], optional
        Figure size when a new figure is created (default: (10, 6))

    Returns
    -------
    Axes
        Matplotlib axes with the plot
    """
    if ax is None:
        _, ax = plt.subplots(figsize=figsize)

    if not boundary.has_early_exercise:
        ax.text(
            0.5,
            0.5,
            "Early exercise is never optimal",
            transform=ax.transAxes,
            ha="center",
            va="center",
        )
        ax.set_title(f"American {boundary.option_type.value} exercise boundary")
        return ax

    # tiny positive start avoids the tau = 0 endpoint
    tau = np.linspace(boundary.time_to_expiry * 1e-6, boundary.time_to_expiry, num_points)
    upper, lower = boundary.edges(tau)

    double = boundary.regime is BoundaryRegime.DOUBLE
    upper_ok = np.isfinite(upper)
    lower_ok = np.isfinite(lower) & (lower > 0.0)

    if upper_ok.any():
        ax.plot(tau[upper_ok], upper[upper_ok], "b-", linewidth=2, label="Upper boundary" if double else "Boundary")
    if lower_ok.any():
        ax.plot(tau[lower_ok], lower[lower_ok], "r-", linewidth=2, label="Lower boundary" if double else "Boundary")
    if double:
        ax.fill_between(tau, lower, upper, where=upper > lower, color="grey", alpha=0.2, label="Exercise region")
        if boundary.crossing_time is not None:
            ax.axvline(boundary.crossing_time, color="k", linestyle=":", alpha=0.7, label="Crossing time")

    if show_nodes:
        node_upper, node_lower = boundary.edges(boundary.nodes)
        for values, colour in ((node_upper, "b"), (node_lower, "r")):
            mask = np.isfinite(values) & (values > 0.0)
            if mask.any():
                ax.plot(boundary.nodes[mask], values[mask], "o", color=colour, markersize=3, alpha=0.6)

    ax.axhline(boundary.strike, color="k", linestyle="--", alpha=0.5, label="Strike")
    ax.set_xlabel("Time to expiry (years)", fontsize=12)
    ax.set_ylabel("Spot", fontsize=12)
    ax.set_title(
        f"American {boundary.option_type.value} exercise boundary ({boundary.regime.value})",
        fontsize=14,
        fontweight="bold",
    )
    ax.grid(True, alpha=0.3)
    ax.legend()
    return ax
