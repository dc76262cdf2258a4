"""Pluggable stop-condition and initial-placement strategies.

The placer is configured with one :class:`StopCondition` and one
:class:`InitPlacement` at construction time. Both are small strategy
objects, so a driver or test can swap them without touching the kernel.

Usage::

    placer = NlpFirstOrderPlacer(
        db,
        stop_condition=StopOnObjectivePlateau(window=20),
        init_placement=RandomInitPlacement(seed=1),
    )
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

import numpy as np

from .db import Box
from .vector import VariableVector

if TYPE_CHECKING:
    from .placer import NlpPlacer

DEFAULT_SEED = 6
"""Seed of the default initial placement."""

DEFAULT_MAX_ITERATIONS = 100
"""Iteration budget of the default stop condition."""


# ---------------------------------------------------------------------------
# Stop conditions
# ---------------------------------------------------------------------------


class StopCondition(ABC):
    """Decides when the outer optimization loop should stop."""

    def reset(self) -> None:
        """Forget any state from a previous solve."""

    @property
    def budget(self) -> int | None:
        """Iteration count at which this condition stops for sure, if known."""
        return None

    @abstractmethod
    def should_stop(self, placer: NlpPlacer) -> bool:
        """Inspect the placer's iteration count and objective history.

        Args:
            placer: The kernel being optimized.

        Returns:
            True to stop iterating.
        """


class StopAfterNumIterations(StopCondition):
    """Stops once a fixed number of outer iterations has been recorded."""

    def __init__(self, max_iterations: int = DEFAULT_MAX_ITERATIONS):
        if max_iterations < 0:
            raise ValueError(f"max_iterations must be non-negative, got {max_iterations}")
        self.max_iterations = max_iterations

    @property
    def budget(self) -> int | None:
        return self.max_iterations

    def should_stop(self, placer: NlpPlacer) -> bool:
        return placer.iteration >= self.max_iterations


class StopOnObjectivePlateau(StopCondition):
    """Stops when the objective stops improving, or at an iteration budget.

    The objective has plateaued when the relative improvement over the last
    *window* iterations is below *threshold*. Only objectives recorded since
    the penalty multipliers last changed are compared, since a grown
    multiplier raises the objective without any move of the cells.
    """

    def __init__(
        self,
        window: int = 20,
        threshold: float = 1e-6,
        max_iterations: int = 10 * DEFAULT_MAX_ITERATIONS,
    ):
        if window < 1:
            raise ValueError(f"window must be positive, got {window}")
        self.window = window
        self.threshold = threshold
        self.max_iterations = max_iterations

    @property
    def budget(self) -> int | None:
        return self.max_iterations

    def should_stop(self, placer: NlpPlacer) -> bool:
        if placer.iteration >= self.max_iterations:
            return True
        history = placer.objective_history[placer.multipliers_changed_at :]
        if len(history) <= self.window:
            return False
        old = history[-1 - self.window]
        new = history[-1]
        improvement = (old - new) / max(abs(old), 1e-12)
        return improvement < self.threshold


# ---------------------------------------------------------------------------
# Initial placement
# ---------------------------------------------------------------------------


class InitPlacement(ABC):
    """Produces the starting variable vector."""

    @abstractmethod
    def place(self, variables: VariableVector, boundary: Box, sym_axis: float) -> None:
        """Write initial cell coordinates and symmetry axes into *variables*.

        Args:
            variables: Vector to fill in place.
            boundary: Placement boundary in scaled coordinates.
            sym_axis: Default x position for every symmetry axis.
        """


class RandomInitPlacement(InitPlacement):
    """Uniform random placement on an N x N grid over the boundary.

    Each coordinate is ``lo + k * span / N`` with ``k`` drawn uniformly from
    ``[0, N)``, so the cells start spread over the whole region.
    """

    def __init__(self, seed: int | None = DEFAULT_SEED):
        self.seed = seed

    def place(self, variables: VariableVector, boundary: Box, sym_axis: float) -> None:
        rng = np.random.default_rng(self.seed)
        n = variables.index_map.num_cells
        if n > 0:
            variables.x[:] = boundary.x_lo + rng.integers(0, n, size=n) * (boundary.width / n)
            variables.y[:] = boundary.y_lo + rng.integers(0, n, size=n) * (boundary.height / n)
        variables.sym[:] = sym_axis


class NormalNearCenterInitPlacement(InitPlacement):
    """Normally distributed placement around the boundary centre.

    The standard deviation along each axis is *spread* times the boundary
    span; samples are clipped to the boundary.
    """

    def __init__(self, seed: int | None = DEFAULT_SEED, spread: float = 1.0 / 6.0):
        self.seed = seed
        self.spread = spread

    def place(self, variables: VariableVector, boundary: Box, sym_axis: float) -> None:
        rng = np.random.default_rng(self.seed)
        n = variables.index_map.num_cells
        cx = (boundary.x_lo + boundary.x_hi) / 2.0
        cy = (boundary.y_lo + boundary.y_hi) / 2.0
        xs = rng.normal(cx, boundary.width * self.spread, size=n)
        ys = rng.normal(cy, boundary.height * self.spread, size=n)
        variables.x[:] = np.clip(xs, boundary.x_lo, boundary.x_hi)
        variables.y[:] = np.clip(ys, boundary.y_lo, boundary.y_hi)
        variables.sym[:] = sym_axis


def make_init_placement(name: str, seed: int | None = DEFAULT_SEED) -> InitPlacement:
    """Create an initial-placement strategy by name."""
    if name == "random":
        return RandomInitPlacement(seed=seed)
    elif name == "normal":
        return NormalNearCenterInitPlacement(seed=seed)
    else:
        raise ValueError(f"Unknown init placement: {name!r}. Available: random, normal")
