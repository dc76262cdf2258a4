"""Variable vector and index map for the placement optimization problem.

Encodes a complete placement as one flat numeric array. With N cells and S
symmetry axes the layout is::

    [x0, x1, ..., x(N-1), y0, y1, ..., y(N-1), a0, ..., a(S-1)]

where ``xi``/``yi`` are the scaled low-corner coordinates of cell *i* and
``ak`` is the x position of the vertical axis of symmetry group *k*. When
multi-group axes are disabled all groups share a single axis at ``2N``.

Usage:
    index_map = IndexMap(num_cells=4, num_sym_groups=1)
    variables = VariableVector.zeros(index_map)
    variables.data[index_map.position_of(2, Axis.Y)] = 1.5
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np
from numpy.typing import NDArray

from .exceptions import PreconditionError


class Axis(Enum):
    """Which kind of variable an entity id refers to."""

    X = "x"
    Y = "y"
    SYM = "sym"


# ---------------------------------------------------------------------------
# Index map
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IndexMap:
    """Bijection from (entity id, axis) to a flat vector position.

    For :attr:`Axis.X` and :attr:`Axis.Y` the entity id is a cell id. For
    :attr:`Axis.SYM` it is a symmetry-group id.

    Attributes:
        num_cells: Number of cells in the problem.
        num_sym_groups: Number of symmetry groups in the problem.
        multi_sym_group: One axis per group when True, a single shared axis
            otherwise.
    """

    num_cells: int
    num_sym_groups: int = 0
    multi_sym_group: bool = True

    @property
    def num_axes(self) -> int:
        """Number of symmetry-axis variables."""
        if self.multi_sym_group:
            return self.num_sym_groups
        return 1 if self.num_sym_groups > 0 else 0

    @property
    def size(self) -> int:
        """Total length of the variable vector."""
        return 2 * self.num_cells + self.num_axes

    @property
    def x_slice(self) -> slice:
        return slice(0, self.num_cells)

    @property
    def y_slice(self) -> slice:
        return slice(self.num_cells, 2 * self.num_cells)

    @property
    def sym_slice(self) -> slice:
        return slice(2 * self.num_cells, self.size)

    def position_of(self, entity_id: int, axis: Axis) -> int:
        """Return the flat index of a cell coordinate or a symmetry axis.

        Raises:
            PreconditionError: If *entity_id* is out of range for *axis*.
        """
        if axis is Axis.SYM:
            if not 0 <= entity_id < self.num_sym_groups:
                raise PreconditionError(
                    "Symmetry group id out of range",
                    context={"sym_group": entity_id, "num_sym_groups": self.num_sym_groups},
                )
            if self.multi_sym_group:
                return 2 * self.num_cells + entity_id
            return 2 * self.num_cells

        if not 0 <= entity_id < self.num_cells:
            raise PreconditionError(
                "Cell id out of range",
                context={"cell": entity_id, "axis": axis.value, "num_cells": self.num_cells},
            )
        if axis is Axis.X:
            return entity_id
        return entity_id + self.num_cells


# ---------------------------------------------------------------------------
# Variable vector
# ---------------------------------------------------------------------------


class VariableVector:
    """The optimization unknowns, laid out by an :class:`IndexMap`.

    The length is fixed for the lifetime of the vector; :meth:`assign`
    copies new values in place so that bound accessors stay valid.
    """

    def __init__(self, index_map: IndexMap, data: NDArray[np.float64] | None = None):
        self.index_map = index_map
        if data is None:
            data = np.zeros(index_map.size, dtype=np.float64)
        else:
            data = np.array(data, dtype=np.float64)
            if data.shape != (index_map.size,):
                raise PreconditionError(
                    "Variable data does not match the index map",
                    context={"expected": index_map.size, "got": data.shape},
                )
        self.data = data

    @classmethod
    def zeros(cls, index_map: IndexMap) -> VariableVector:
        return cls(index_map)

    @property
    def x(self) -> NDArray[np.float64]:
        """View of the x coordinates, indexed by cell id."""
        return self.data[self.index_map.x_slice]

    @property
    def y(self) -> NDArray[np.float64]:
        """View of the y coordinates, indexed by cell id."""
        return self.data[self.index_map.y_slice]

    @property
    def sym(self) -> NDArray[np.float64]:
        """View of the symmetry-axis variables."""
        return self.data[self.index_map.sym_slice]

    def get(self, entity_id: int, axis: Axis) -> float:
        return float(self.data[self.index_map.position_of(entity_id, axis)])

    def assign(self, values: NDArray[np.float64]) -> None:
        """Overwrite every variable in place.

        Raises:
            PreconditionError: If *values* has the wrong length.
        """
        values = np.asarray(values, dtype=np.float64)
        if values.shape != self.data.shape:
            raise PreconditionError(
                "Cannot resize the variable vector",
                context={"expected": self.data.shape[0], "got": values.shape},
            )
        self.data[:] = values

    def copy(self) -> NDArray[np.float64]:
        return self.data.copy()

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        m = self.index_map
        return f"VariableVector(num_cells={m.num_cells}, num_axes={m.num_axes}, data={self.data!r})"
