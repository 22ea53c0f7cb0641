"""Caller-scoped scratch buffers for one boundary solve.

A :class:`SolverWorkspace` is a throughput optimization for high call volume:
the solver writes each sweep into a candidate buffer and swaps it with the
working buffer instead of allocating new arrays. A workspace is borrowed for
exactly one solve at a time and never shared behind the caller's back.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

import numpy as np

from ..exceptions import ConfigurationError, InvalidParametersError

__all__ = ["SolverWorkspace"]


@dataclass(slots=True)
class SolverWorkspace:
    """Double-buffered boundary arrays plus PAV pool storage.

    Parameters
    ----------
    size
        Number of collocation nodes the buffers must hold.
    """

    size: int
    upper: np.ndarray = field(init=False, repr=False)
    upper_candidate: np.ndarray = field(init=False, repr=False)
    lower: np.ndarray = field(init=False, repr=False)
    lower_candidate: np.ndarray = field(init=False, repr=False)
    pool_means: np.ndarray = field(init=False, repr=False)
    pool_sizes: np.ndarray = field(init=False, repr=False)
    swaps: int = field(init=False, default=0)
    _in_use: bool = field(init=False, default=False, repr=False)

    def __post_init__(self) -> None:
        if self.size < 2:
            raise InvalidParametersError(f"workspace size must be >= 2, got {self.size}")
        self.upper = np.empty(self.size)
        self.upper_candidate = np.empty(self.size)
        self.lower = np.empty(self.size)
        self.lower_candidate = np.empty(self.size)
        self.pool_means = np.empty(self.size)
        self.pool_sizes = np.empty(self.size, dtype=np.int64)

    def fits(self, size: int) -> bool:
        return self.size >= size

    def swap(self) -> None:
        """Promote the candidate buffers to working buffers without copying."""
        self.upper, self.upper_candidate = self.upper_candidate, self.upper
        self.lower, self.lower_candidate = self.lower_candidate, self.lower
        self.swaps += 1

    @contextmanager
    def borrow(self) -> Iterator[SolverWorkspace]:
        """Borrow-once, return-once guard around a single solve."""
        if self._in_use:
            raise ConfigurationError("SolverWorkspace is already borrowed by another solve")
        self._in_use = True
        self.swaps = 0
        try:
            yield self
        finally:
            self._in_use = False

    @property
    def in_use(self) -> bool:
        return self._in_use
