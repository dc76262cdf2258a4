"""
nlplace: non-linear optimization global placement for analog IC cells.

Cells are placed by minimizing a weighted sum of five differentiable
penalties over one flat variable vector (cell coordinates plus symmetry
axes): log-sum-exp wirelength, pairwise overlap, out-of-boundary,
asymmetry, and signal-path bends. Each penalty occurrence is an operator;
operators are evaluated through a dependency-ordered task graph on a
serial or thread-pool executor.

Modules:
    db: In-memory placement database (cells, pins, nets, symmetry groups)
    signal_path: Signal-path decomposition into four-pin segments
    vector: Variable vector and index map
    operators: The five differentiable penalty operators
    builder: Scale, boundary and operator construction
    taskgraph: Task graphs and executors
    evaluation: Objective/gradient task composition
    policies: Stop-condition and initial-placement strategies
    placer: The optimization kernel
    driver: Reference gradient-descent driver
    config: TOML configuration

Quick Start::

    from nlplace import Box, Cell, Database, Net, Pin, XY, create_placer

    db = Database()
    a = db.add_cell(Cell("M1", Box(0, 0, 200, 100)))
    b = db.add_cell(Cell("M2", Box(0, 0, 200, 100)))
    pa = db.add_pin(Pin(a, XY(190, 50)))
    pb = db.add_pin(Pin(b, XY(10, 50)))
    db.add_net(Net("n1", (pa, pb)))

    result = create_placer(db).solve()
    print(result.breakdown)
    print(db.cells[0].x_loc, db.cells[0].y_loc)
"""

__version__ = "0.1.0"

from nlplace.config import Config, ConfigError, DriverConfig, PenaltyConfig, PlacerConfig
from nlplace.db import XY, Box, Cell, Database, Net, Parameters, Pin, SymGroup, SymPair
from nlplace.evaluation import ObjectiveBreakdown
from nlplace.exceptions import (
    DegenerateProblemError,
    NlpPlaceError,
    PlacerStateError,
    PreconditionError,
    TaskGraphError,
)
from nlplace.operators import Family, OperatorContext
from nlplace.placer import (
    NlpFirstOrderPlacer,
    NlpPlacer,
    PlacementResult,
    PlacerState,
    check_gradient,
    create_placer,
)
from nlplace.policies import (
    InitPlacement,
    NormalNearCenterInitPlacement,
    RandomInitPlacement,
    StopAfterNumIterations,
    StopCondition,
    StopOnObjectivePlateau,
)
from nlplace.signal_path import SigPathSeg, SignalPathManager
from nlplace.taskgraph import SerialExecutor, TaskGraph, ThreadPoolGraphExecutor
from nlplace.vector import Axis, IndexMap, VariableVector

__all__ = [
    "__version__",
    # Config
    "Config",
    "ConfigError",
    "DriverConfig",
    "PenaltyConfig",
    "PlacerConfig",
    # Database
    "XY",
    "Box",
    "Cell",
    "Database",
    "Net",
    "Parameters",
    "Pin",
    "SymGroup",
    "SymPair",
    "SigPathSeg",
    "SignalPathManager",
    # Problem
    "Axis",
    "IndexMap",
    "VariableVector",
    "Family",
    "OperatorContext",
    "ObjectiveBreakdown",
    # Execution
    "TaskGraph",
    "SerialExecutor",
    "ThreadPoolGraphExecutor",
    # Kernel
    "NlpPlacer",
    "NlpFirstOrderPlacer",
    "PlacementResult",
    "PlacerState",
    "check_gradient",
    "create_placer",
    # Policies
    "InitPlacement",
    "RandomInitPlacement",
    "NormalNearCenterInitPlacement",
    "StopCondition",
    "StopAfterNumIterations",
    "StopOnObjectivePlateau",
    # Exceptions
    "NlpPlaceError",
    "PreconditionError",
    "DegenerateProblemError",
    "PlacerStateError",
    "TaskGraphError",
]
