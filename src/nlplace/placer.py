"""Non-linear optimization global placer for analog cells.

The kernel owns one placement problem from database to written-back
coordinates. A solve walks a fixed lifecycle::

    UNINITIALIZED
      -> PROBLEM_INITIALIZED   init_problem(): scale, boundary, variables
      -> OPERATORS_BUILT       init_operators(): one operator per constraint
      -> TASKS_CONSTRUCTED     construct_tasks(): objective/gradient graphs
      -> (evaluate / iterate)*
      -> TERMINAL              write_back()

:class:`NlpPlacer` evaluates the objective once. :class:`NlpFirstOrderPlacer`
also builds gradient tasks and hands control to the gradient-descent driver,
which repeatedly calls :meth:`NlpFirstOrderPlacer.evaluate`,
:meth:`NlpPlacer.set_variables` and :meth:`NlpPlacer.stop_condition_satisfied`.

Usage::

    from nlplace import Database, NlpFirstOrderPlacer

    placer = NlpFirstOrderPlacer(db)
    result = placer.solve()
    print(result.breakdown)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum

import numpy as np
from numpy.typing import NDArray

from .builder import OperatorBuilder, OperatorFamilies, compute_boundary, compute_scale
from .config import Config
from .db import Box, Database
from .evaluation import EvaluationTasks, ObjectiveBreakdown
from .exceptions import PlacerStateError
from .operators import Family, OperatorContext
from .policies import InitPlacement, StopAfterNumIterations, StopCondition, make_init_placement
from .progress import ProgressCallback
from .signal_path import SegmentSource, SignalPathManager
from .taskgraph import GraphExecutor, TaskGraph, make_executor
from .vector import Axis, IndexMap, VariableVector

logger = logging.getLogger(__name__)


class PlacerState(Enum):
    """Lifecycle stage of a placer, in order."""

    UNINITIALIZED = 0
    PROBLEM_INITIALIZED = 1
    OPERATORS_BUILT = 2
    TASKS_CONSTRUCTED = 3
    TERMINAL = 4


@dataclass(frozen=True)
class PlacementResult:
    """Outcome of a solve.

    Attributes:
        breakdown: Objective breakdown at the final variables.
        iterations: Number of outer iterations recorded.
        stop_reason: Why the optimization loop ended.
    """

    breakdown: ObjectiveBreakdown
    iterations: int
    stop_reason: str


def auto_round(value: float) -> int:
    """Round half away from zero."""
    if value >= 0:
        return int(math.floor(value + 0.5))
    return -int(math.floor(-value + 0.5))


class NlpPlacer:
    """Zero-order kernel: builds the problem and evaluates the objective.

    Args:
        db: The placement database. Cell locations are overwritten by
            :meth:`write_back`.
        config: Hyperparameters. Built-in defaults when None; no config file
            is read. Pass :meth:`Config.load` to apply the project and user
            files, or use :func:`create_placer`.
        stop_condition: Outer-loop stop policy. Defaults to
            :class:`StopAfterNumIterations` with ``config.placer.max_iterations``.
        init_placement: Starting-point policy. Defaults to the strategy named
            by ``config.placer.init_place``.
        executor: Task graph executor. Defaults to the one named by
            ``config.placer.executor``.
        segment_source: Signal-path segments. Defaults to decomposing the
            database signal paths.
    """

    def __init__(
        self,
        db: Database,
        config: Config | None = None,
        *,
        stop_condition: StopCondition | None = None,
        init_placement: InitPlacement | None = None,
        executor: GraphExecutor | None = None,
        segment_source: SegmentSource | None = None,
    ):
        self._db = db
        self.config = config or Config()
        placer_cfg = self.config.placer

        self.stop_condition = stop_condition or StopAfterNumIterations(placer_cfg.max_iterations)
        self.init_placement = init_placement or make_init_placement(
            placer_cfg.init_place, placer_cfg.seed
        )
        self.executor = executor or make_executor(placer_cfg.executor, placer_cfg.max_workers)
        self._segment_source = segment_source

        self.context = OperatorContext(alpha=placer_cfg.alpha)
        self.state = PlacerState.UNINITIALIZED

        self.scale = 1.0
        self.boundary: Box | None = None
        self.total_cell_area = 0.0
        self.default_sym_axis = 0.0
        self.index_map: IndexMap | None = None
        self.variables: VariableVector | None = None
        self.operators: OperatorFamilies | None = None

        self._tasks: EvaluationTasks | None = None
        self._objective_graph: TaskGraph | None = None

        self.iteration = 0
        self.objective_history: list[float] = []
        self.multipliers_changed_at = 0
        self.breakdown = ObjectiveBreakdown()
        self.stop_reason = ""

    # -- lifecycle -----------------------------------------------------------

    def solve(self) -> PlacementResult:
        """Run a complete solve and write the result back to the database."""
        logger.info(
            "Placing %d cells, %d nets, %d symmetry groups",
            self._db.num_cells,
            self._db.num_nets,
            self._db.num_sym_groups,
        )
        try:
            self.init_problem()
            self.init_place()
            self.init_operators()
            self.construct_tasks()
            self.optimize()
            self.write_back()
        finally:
            self.executor.shutdown()
        logger.info("Placement finished after %d iterations: %s", self.iteration, self.breakdown)
        return PlacementResult(
            breakdown=self.breakdown,
            iterations=self.iteration,
            stop_reason=self.stop_reason,
        )

    def _require(self, state: PlacerState, operation: str) -> None:
        if self.state.value < state.value:
            raise PlacerStateError(
                f"Cannot {operation} yet",
                context={"state": self.state.name, "required": state.name},
            )

    def init_problem(self) -> None:
        """Set hyperparameters, compute scale and boundary, size the variables."""
        self._init_hyper_params()
        self._init_boundary_params()
        self._init_variables()
        self.state = PlacerState.PROBLEM_INITIALIZED

    def _init_hyper_params(self) -> None:
        penalty = self.config.penalty
        self.context.alpha = self.config.placer.alpha
        self.context.set_lambda(Family.HPWL, penalty.hpwl)
        self.context.set_lambda(Family.OVERLAP, penalty.overlap)
        self.context.set_lambda(Family.OOB, penalty.oob)
        self.context.set_lambda(Family.ASYM, penalty.asym)
        self.context.set_lambda(Family.COS, penalty.cos)

    def _init_boundary_params(self) -> None:
        self.scale = compute_scale(self._db)
        self.boundary = compute_boundary(self._db, self.scale)
        self.total_cell_area = sum(
            c.bbox.width * self.scale * c.bbox.height * self.scale for c in self._db.cells
        )
        self.default_sym_axis = (self.boundary.x_lo + self.boundary.x_hi) / 2.0

    def _init_variables(self) -> None:
        self.index_map = IndexMap(
            num_cells=self._db.num_cells,
            num_sym_groups=self._db.num_sym_groups,
            multi_sym_group=self.config.placer.multi_sym_group,
        )
        self.variables = VariableVector.zeros(self.index_map)
        self.variables.sym[:] = self.default_sym_axis

    def init_place(self) -> None:
        """Fill the variable vector with the initial-placement policy."""
        self._require(PlacerState.PROBLEM_INITIALIZED, "generate an initial placement")
        self.init_placement.place(self.variables, self.boundary, self.default_sym_axis)

    def init_operators(self) -> None:
        """Build one operator per net, cell pair, cell, group and segment."""
        self._require(PlacerState.PROBLEM_INITIALIZED, "build operators")
        source = self._segment_source or SignalPathManager(self._db)
        builder = OperatorBuilder(self._db, self.scale, self.boundary, self.context)
        self.operators = builder.build(self.get_variable, source.segments())
        self.state = PlacerState.OPERATORS_BUILT

    def construct_tasks(self) -> None:
        """Compose the evaluation task graph(s)."""
        self._require(PlacerState.OPERATORS_BUILT, "construct tasks")
        self._tasks = EvaluationTasks(
            self.operators,
            self.index_map,
            chunk_size=self.config.placer.chunk_size,
        )
        self._objective_graph = self._tasks.objective_graph()
        logger.debug("Objective graph has %d tasks", len(self._objective_graph))
        self.iteration = 0
        self.objective_history = []
        self.multipliers_changed_at = 0
        self.stop_condition.reset()
        self.state = PlacerState.TASKS_CONSTRUCTED

    def optimize(self) -> None:
        """Evaluate the objective once at the current variables."""
        self.record_iteration(self.evaluate_objective())
        self.stop_reason = "single_evaluation"
        logger.debug("Objective: %s", self.breakdown)

    def write_back(self) -> None:
        """Copy the variables back into the database as integer cell locations.

        Coordinates are shifted so the lowest cell edges land on the layout
        offset, unscaled, rounded half away from zero, and converted from
        low-corner positions to cell origins.
        """
        self._require(PlacerState.PROBLEM_INITIALIZED, "write back")
        if self._db.num_cells > 0:
            xs = self.variables.x
            ys = self.variables.y
            min_x = float(xs.min())
            min_y = float(ys.min())
            offset = self._db.parameters.layout_offset
            for cell_idx, cell in enumerate(self._db.cells):
                x_lo = auto_round((xs[cell_idx] - min_x) / self.scale + offset)
                y_lo = auto_round((ys[cell_idx] - min_y) / self.scale + offset)
                cell.set_loc(x_lo - auto_round(cell.bbox.x_lo), y_lo - auto_round(cell.bbox.y_lo))
        self.state = PlacerState.TERMINAL

    # -- driver interface ----------------------------------------------------

    def get_variable(self, entity_id: int, axis: Axis) -> float:
        """Read accessor bound into every operator."""
        return float(self.variables.data[self.index_map.position_of(entity_id, axis)])

    def evaluate_objective(self) -> ObjectiveBreakdown:
        """Run the objective graph and return the per-family breakdown."""
        self._require(PlacerState.TASKS_CONSTRUCTED, "evaluate the objective")
        self.executor.run(self._objective_graph)
        self.breakdown = self._tasks.breakdown()
        return self.breakdown

    def current_variables(self) -> NDArray[np.float64]:
        self._require(PlacerState.PROBLEM_INITIALIZED, "read variables")
        return self.variables.copy()

    def set_variables(self, values: NDArray[np.float64]) -> None:
        """Overwrite the variables. Never call while an evaluation is running."""
        self._require(PlacerState.PROBLEM_INITIALIZED, "set variables")
        self.variables.assign(values)

    def record_iteration(self, breakdown: ObjectiveBreakdown) -> None:
        """Count one outer iteration and append its objective to the history."""
        self.iteration += 1
        self.objective_history.append(breakdown.total)

    def stop_condition_satisfied(self) -> bool:
        """Consult the stop policy; a failing policy never stops the loop."""
        try:
            return bool(self.stop_condition.should_stop(self))
        except Exception:
            logger.warning(
                "Stop condition %s failed at iteration %d; continuing",
                type(self.stop_condition).__name__,
                self.iteration,
                exc_info=True,
            )
            return False

    def update_penalty_multipliers(self, breakdown: ObjectiveBreakdown) -> None:
        """Grow the constraint multipliers whose family exceeds its threshold.

        Grown multipliers are clamped to ``config.penalty.max_lambda``. When
        any multiplier changes, :attr:`multipliers_changed_at` is set to the
        history index of the first objective taken under the new values.
        """
        penalty = self.config.penalty
        thresholds = {
            Family.OVERLAP: penalty.overlap_threshold,
            Family.OOB: penalty.oob_threshold,
            Family.ASYM: penalty.asym_threshold,
        }
        changed = False
        for family, threshold in thresholds.items():
            if breakdown.family(family) <= threshold:
                continue
            current = self.context.lambda_of(family)
            if current >= penalty.max_lambda:
                continue
            grown = min(current * penalty.growth, penalty.max_lambda)
            if grown != current:
                self.context.set_lambda(family, grown)
                changed = True
        if changed:
            self.multipliers_changed_at = len(self.objective_history)


class NlpFirstOrderPlacer(NlpPlacer):
    """First-order kernel: adds gradient tasks and runs the iterative driver.

    Args:
        progress_callback: Optional progress reporter passed to the driver.
        **kwargs: Forwarded to :class:`NlpPlacer`.
    """

    def __init__(
        self,
        db: Database,
        config: Config | None = None,
        *,
        progress_callback: ProgressCallback | None = None,
        **kwargs,
    ):
        super().__init__(db, config, **kwargs)
        self.progress_callback = progress_callback
        self._gradient_graph: TaskGraph | None = None
        self._full_graph: TaskGraph | None = None

    def construct_tasks(self) -> None:
        super().construct_tasks()
        self._gradient_graph = self._tasks.gradient_graph()
        self._full_graph = self._tasks.full_graph()
        logger.debug(
            "Gradient graph has %d tasks, combined graph %d",
            len(self._gradient_graph),
            len(self._full_graph),
        )

    def optimize(self) -> None:
        from .driver import GradientDescentDriver

        driver = GradientDescentDriver(self, self.config.driver, self.progress_callback)
        self.stop_reason = driver.run()

    def evaluate_gradient(self) -> NDArray[np.float64]:
        """Run the gradient graph and return a copy of the grand gradient."""
        self._require(PlacerState.TASKS_CONSTRUCTED, "evaluate the gradient")
        self.executor.run(self._gradient_graph)
        return self._tasks.gradient.copy()

    def evaluate(self) -> tuple[ObjectiveBreakdown, NDArray[np.float64]]:
        """Objective and gradient from a single graph run."""
        self._require(PlacerState.TASKS_CONSTRUCTED, "evaluate")
        self.executor.run(self._full_graph)
        self.breakdown = self._tasks.breakdown()
        return self.breakdown, self._tasks.gradient.copy()

    def family_gradient(self, family: Family) -> NDArray[np.float64]:
        """Gradient of one family from the most recent gradient run."""
        self._require(PlacerState.TASKS_CONSTRUCTED, "read a family gradient")
        return self._tasks.family_gradient(family).copy()


def check_gradient(placer: NlpFirstOrderPlacer, step: float = 1e-6) -> float:
    """Compare the analytic gradient against one-sided finite differences.

    The variables are restored afterwards.

    Returns:
        Largest absolute difference over all variables.
    """
    x0 = placer.current_variables()
    f0 = placer.evaluate_objective().total
    analytic = placer.evaluate_gradient()
    worst = 0.0
    try:
        for i in range(len(x0)):
            shifted = x0.copy()
            shifted[i] += step
            placer.set_variables(shifted)
            numeric = (placer.evaluate_objective().total - f0) / step
            worst = max(worst, abs(numeric - analytic[i]))
    finally:
        placer.set_variables(x0)
        placer.evaluate_objective()
    return worst


def create_placer(db: Database, config: Config | None = None, **kwargs) -> NlpPlacer:
    """Create a first-order or zero-order placer as ``config.placer.first_order`` says.

    When *config* is None it is read with :meth:`Config.load`, so the
    project and user config files apply. The placer constructors themselves
    fall back to built-in defaults only.
    """
    config = config or Config.load()
    if config.placer.first_order:
        return NlpFirstOrderPlacer(db, config, **kwargs)
    kwargs.pop("progress_callback", None)
    return NlpPlacer(db, config, **kwargs)
