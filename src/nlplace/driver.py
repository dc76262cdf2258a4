"""Reference iterative driver: steepest descent with backtracking line search.

The driver only talks to the kernel through its driver interface
(``evaluate``, ``evaluate_objective``, ``current_variables``,
``set_variables``, ``record_iteration``, ``stop_condition_satisfied`` and
``update_penalty_multipliers``), so any other solver can replace it.

One outer iteration:
    1. Evaluate objective and gradient, record the iteration.
    2. Stop if the stop policy says so, the caller cancelled, or the
       gradient norm is below ``gradient_tolerance``.
    3. Backtrack along ``-gradient`` from an initial step of length
       ``initial_step`` until the Armijo condition holds; give up when the
       step is shorter than ``min_step``.
    4. Grow the constraint penalty multipliers that are still violated.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from .config import DriverConfig
from .progress import INDETERMINATE, ProgressCallback, report

if TYPE_CHECKING:
    from .placer import NlpFirstOrderPlacer

logger = logging.getLogger(__name__)


class GradientDescentDriver:
    """Runs the outer optimization loop of a first-order placer."""

    def __init__(
        self,
        placer: NlpFirstOrderPlacer,
        config: DriverConfig | None = None,
        progress_callback: ProgressCallback | None = None,
    ):
        self.placer = placer
        self.config = config or DriverConfig()
        self.progress_callback = progress_callback

    def _progress(self) -> float:
        budget = self.placer.stop_condition.budget
        if not budget:
            return INDETERMINATE
        return min(1.0, self.placer.iteration / budget)

    def run(self) -> str:
        """Iterate until a stop criterion fires.

        Returns:
            The stop reason: ``"stop_condition"``, ``"cancelled"``,
            ``"converged"``, ``"iteration_cap"`` or
            ``"line_search_failed"``.
        """
        placer = self.placer
        cfg = self.config

        while True:
            breakdown, grad = placer.evaluate()
            placer.record_iteration(breakdown)
            logger.debug("Iteration %d: %s", placer.iteration, breakdown)

            if not report(
                self.progress_callback,
                self._progress(),
                f"Iteration {placer.iteration}: objective {breakdown.total:.6g}",
            ):
                return "cancelled"
            if placer.stop_condition_satisfied():
                return "stop_condition"
            if placer.iteration >= cfg.max_outer_iterations:
                return "iteration_cap"

            grad_norm = float(np.linalg.norm(grad))
            if grad_norm < cfg.gradient_tolerance:
                return "converged"

            if not self._line_search(breakdown.total, grad, grad_norm):
                logger.debug("Line search failed at iteration %d", placer.iteration)
                placer.evaluate_objective()
                return "line_search_failed"

            placer.update_penalty_multipliers(placer.breakdown)

    def _line_search(self, f0: float, grad: np.ndarray, grad_norm: float) -> bool:
        """Take an Armijo step along ``-grad``; restore the variables on failure."""
        placer = self.placer
        cfg = self.config
        x0 = placer.current_variables()
        t = cfg.initial_step / grad_norm
        decrease = grad_norm * grad_norm

        while t * grad_norm >= cfg.min_step:
            placer.set_variables(x0 - t * grad)
            f = placer.evaluate_objective().total
            if f <= f0 - cfg.armijo * t * decrease:
                return True
            t *= cfg.shrink

        placer.set_variables(x0)
        return False
