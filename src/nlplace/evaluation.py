"""Objective and gradient task composition.

Turns the operator families of a problem into task graphs:

Objective (zero order):
    ``eval.<family>.<chunk>`` -- evaluate a chunk of operators into the
    family's value buffer (disjoint slices, no locking).
    ``sum.<family>`` -- after all of that family's eval chunks.
    ``sum.all`` -- after every family sum.

Gradient (first order):
    ``clear.<family>`` / ``clear.all`` -- zero the accumulation buffers.
    ``partial.<family>.<chunk>`` -- compute and cache operator partials.
    ``accumulate.<family>`` -- after the family's clear and partial tasks,
    scatter every cached partial into the family gradient in operator order.
    ``sum_grad.all`` -- after every accumulate task and ``clear.all``.

Each family owns its own buffers, so families never synchronize with each
other; the accumulate step walks operators in construction order, making
the gradient independent of the order in which partial chunks finished.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np
from numpy.typing import NDArray

from .builder import OperatorFamilies
from .operators import Family, PlacementOperator
from .taskgraph import TaskGraph
from .vector import IndexMap

DEFAULT_CHUNK_SIZE = 64
"""Operators evaluated per task."""


@dataclass(frozen=True)
class ObjectiveBreakdown:
    """Per-family objective values.

    Attributes:
        hpwl: Smoothed wirelength.
        overlap: Pairwise overlap penalty.
        oob: Out-of-boundary penalty.
        asym: Asymmetry penalty.
        cos: Signal-path bend penalty.
        total: Sum of all families.
    """

    hpwl: float = 0.0
    overlap: float = 0.0
    oob: float = 0.0
    asym: float = 0.0
    cos: float = 0.0
    total: float = 0.0

    def family(self, family: Family) -> float:
        return getattr(self, family.value)

    def __str__(self) -> str:
        return (
            f"obj={self.total:.6g} [hpwl={self.hpwl:.6g} ovl={self.overlap:.6g} "
            f"oob={self.oob:.6g} asym={self.asym:.6g} cos={self.cos:.6g}]"
        )


def _chunks(count: int, chunk_size: int) -> list[tuple[int, int]]:
    return [(start, min(start + chunk_size, count)) for start in range(0, count, chunk_size)]


class EvaluationTasks:
    """Buffers and task graphs for evaluating one problem.

    Args:
        families: Operators of the problem, already bound to the variables.
        index_map: Layout of the variable vector.
        chunk_size: Number of operators handled by one eval/partial task.

    Raises:
        PreconditionError: If an operator depends on a variable the index map
            does not know.
    """

    def __init__(
        self,
        families: OperatorFamilies,
        index_map: IndexMap,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._ops: dict[Family, Sequence[PlacementOperator]] = families.by_family()
        self._index_map = index_map
        self._chunk_size = chunk_size
        size = index_map.size

        self._values = {f: np.zeros(len(ops), dtype=np.float64) for f, ops in self._ops.items()}
        self._totals = {f: 0.0 for f in Family}
        self.objective = 0.0

        self._positions = {
            f: [
                np.array(
                    [index_map.position_of(entity, axis) for entity, axis in op.variables()],
                    dtype=np.intp,
                )
                for op in ops
            ]
            for f, ops in self._ops.items()
        }
        self._grads = {f: np.zeros(size, dtype=np.float64) for f in Family}
        self.gradient = np.zeros(size, dtype=np.float64)

    # -- results -------------------------------------------------------------

    def breakdown(self) -> ObjectiveBreakdown:
        return ObjectiveBreakdown(
            hpwl=self._totals[Family.HPWL],
            overlap=self._totals[Family.OVERLAP],
            oob=self._totals[Family.OOB],
            asym=self._totals[Family.ASYM],
            cos=self._totals[Family.COS],
            total=self.objective,
        )

    def family_gradient(self, family: Family) -> NDArray[np.float64]:
        return self._grads[family]

    # -- graph construction --------------------------------------------------

    def objective_graph(self) -> TaskGraph:
        graph = TaskGraph("objective")
        self.add_objective_tasks(graph)
        return graph

    def gradient_graph(self) -> TaskGraph:
        graph = TaskGraph("gradient")
        self.add_gradient_tasks(graph)
        return graph

    def full_graph(self) -> TaskGraph:
        """Objective and gradient tasks in one graph."""
        graph = TaskGraph("objective+gradient")
        self.add_objective_tasks(graph)
        self.add_gradient_tasks(graph)
        return graph

    def add_objective_tasks(self, graph: TaskGraph) -> str:
        """Add evaluation and summation tasks; return the grand-total task name."""
        sum_tasks = []
        for family, ops in self._ops.items():
            eval_tasks = []
            for start, stop in _chunks(len(ops), self._chunk_size):
                name = f"eval.{family.value}.{start}"
                graph.add(name, self._eval_chunk(family, start, stop))
                eval_tasks.append(name)
            sum_tasks.append(
                graph.add(f"sum.{family.value}", self._sum_family(family), depends_on=eval_tasks)
            )
        return graph.add("sum.all", self._sum_all, depends_on=sum_tasks)

    def add_gradient_tasks(self, graph: TaskGraph) -> str:
        """Add clear, partial, accumulate and gradient-sum tasks.

        Returns:
            Name of the grand gradient sum task.
        """
        clear_all = graph.add("clear.all", self._clear_all)
        accumulate_tasks = []
        for family, ops in self._ops.items():
            clear = graph.add(f"clear.{family.value}", self._clear_family(family))
            partial_tasks = []
            for start, stop in _chunks(len(ops), self._chunk_size):
                name = f"partial.{family.value}.{start}"
                graph.add(name, self._partial_chunk(family, start, stop))
                partial_tasks.append(name)
            accumulate_tasks.append(
                graph.add(
                    f"accumulate.{family.value}",
                    self._accumulate_family(family),
                    depends_on=[clear, *partial_tasks],
                )
            )
        return graph.add("sum_grad.all", self._sum_grad, depends_on=[clear_all, *accumulate_tasks])

    # -- task bodies ---------------------------------------------------------

    def _eval_chunk(self, family: Family, start: int, stop: int):
        ops = self._ops[family]
        values = self._values[family]

        def run() -> None:
            for k in range(start, stop):
                values[k] = ops[k].evaluate()

        return run

    def _sum_family(self, family: Family):
        values = self._values[family]

        def run() -> None:
            self._totals[family] = float(values.sum())

        return run

    def _sum_all(self) -> None:
        self.objective = float(sum(self._totals[f] for f in Family))

    def _clear_all(self) -> None:
        self.gradient.fill(0.0)

    def _clear_family(self, family: Family):
        grad = self._grads[family]

        def run() -> None:
            grad.fill(0.0)

        return run

    def _partial_chunk(self, family: Family, start: int, stop: int):
        ops = self._ops[family]

        def run() -> None:
            for k in range(start, stop):
                ops[k].compute_partials()

        return run

    def _accumulate_family(self, family: Family):
        ops = self._ops[family]
        positions = self._positions[family]
        grad = self._grads[family]

        def run() -> None:
            for op, pos in zip(ops, positions):
                np.add.at(grad, pos, op.partials)

        return run

    def _sum_grad(self) -> None:
        for family in Family:
            self.gradient += self._grads[family]
