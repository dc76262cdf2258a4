"""Problem construction: scale, boundary and operator instantiation.

Translates a :class:`~nlplace.db.Database` into the operator collections
evaluated by the task graph. Construction happens once per solve, in a
fixed order: nets, unordered cell pairs, cells, symmetry groups, then
signal-path segments.

Usage::

    scale = compute_scale(db)
    boundary = compute_boundary(db, scale)
    families = OperatorBuilder(db, scale, boundary, context).build(get_var, segments)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Sequence

from .db import XY, Box, Database
from .exceptions import DegenerateProblemError
from .operators import (
    AsymmetryOperator,
    CellOutOfBoundaryOperator,
    CellPairOverlapOperator,
    CosineDatapathOperator,
    Family,
    LseHpwlOperator,
    OperatorContext,
    PlacementOperator,
    VariableGetter,
)
from .signal_path import SigPathSeg

logger = logging.getLogger(__name__)

NORMALIZED_CELL_AREA = 100.0
"""Total cell area after scaling."""

DEFAULT_ASPECT_RATIO = 0.85
"""Width/height ratio of an automatically derived boundary."""


# ---------------------------------------------------------------------------
# Scale and boundary
# ---------------------------------------------------------------------------


def compute_scale(db: Database) -> float:
    """Scale factor mapping database units to optimization space.

    Chosen so that the scaled total cell area is :data:`NORMALIZED_CELL_AREA`.

    Raises:
        DegenerateProblemError: If the total cell area is not positive.
    """
    total_area = db.total_cell_area()
    if total_area <= 0.0:
        raise DegenerateProblemError(
            "Total cell area must be positive to compute the placement scale",
            context={"total_cell_area": total_area, "num_cells": db.num_cells},
            suggestions=["Check that every cell has a non-empty bounding box"],
        )
    return math.sqrt(NORMALIZED_CELL_AREA / total_area)


def compute_boundary(db: Database, scale: float) -> Box:
    """Placement boundary in scaled coordinates.

    Uses the database boundary constraint when one is set. Otherwise derives
    a region of :data:`DEFAULT_ASPECT_RATIO` whose area is the normalized cell
    area inflated by the allowed white space.

    Raises:
        DegenerateProblemError: If the resulting boundary has no width or height.
    """
    params = db.parameters
    if params.boundary_constraint is not None:
        boundary = params.boundary_constraint.scaled(scale)
    else:
        tolerant_area = NORMALIZED_CELL_AREA * (1.0 + params.max_white_space)
        if tolerant_area <= 0.0:
            raise DegenerateProblemError(
                "Derived placement boundary has no area",
                context={"max_white_space": params.max_white_space},
                suggestions=["max_white_space must be greater than -1"],
            )
        x_hi = math.sqrt(tolerant_area * DEFAULT_ASPECT_RATIO)
        y_hi = tolerant_area / x_hi
        boundary = Box(0.0, 0.0, x_hi, y_hi)
        logger.info("Automatically set boundary to %s", boundary)

    if boundary.width <= 0.0 or boundary.height <= 0.0:
        raise DegenerateProblemError(
            "Placement boundary has no area",
            context={"boundary": str(boundary), "scale": scale},
            suggestions=["Check the boundary constraint and max_white_space parameters"],
        )
    return boundary


def pin_offset(db: Database, pin_idx: int, scale: float) -> XY:
    """Scaled offset of a pin from its cell's bounding-box low corner."""
    pin = db.pin(pin_idx)
    cell = db.cell(pin.cell_idx)
    return pin.mid_loc * scale - cell.bbox.lo * scale


# ---------------------------------------------------------------------------
# Operator collections
# ---------------------------------------------------------------------------


@dataclass
class OperatorFamilies:
    """All operator instances of one problem, grouped by family."""

    hpwl: list[LseHpwlOperator] = field(default_factory=list)
    overlap: list[CellPairOverlapOperator] = field(default_factory=list)
    oob: list[CellOutOfBoundaryOperator] = field(default_factory=list)
    asym: list[AsymmetryOperator] = field(default_factory=list)
    cos: list[CosineDatapathOperator] = field(default_factory=list)

    def by_family(self) -> dict[Family, Sequence[PlacementOperator]]:
        return {
            Family.HPWL: self.hpwl,
            Family.OVERLAP: self.overlap,
            Family.OOB: self.oob,
            Family.ASYM: self.asym,
            Family.COS: self.cos,
        }

    def counts(self) -> dict[Family, int]:
        return {family: len(ops) for family, ops in self.by_family().items()}

    def __len__(self) -> int:
        return sum(self.counts().values())


class OperatorBuilder:
    """Instantiates one operator per net, cell pair, cell, group and segment."""

    def __init__(
        self,
        db: Database,
        scale: float,
        boundary: Box,
        context: OperatorContext,
    ):
        self._db = db
        self._scale = scale
        self._boundary = boundary
        self._context = context

    def build(
        self,
        get_var: VariableGetter,
        segments: Sequence[SigPathSeg] = (),
    ) -> OperatorFamilies:
        """Build every operator and bind it to *get_var*.

        Raises:
            PreconditionError: If the database references a missing entity.
        """
        self._db.validate()
        families = OperatorFamilies()
        self._build_hpwl(families)
        self._build_overlap(families)
        self._build_oob(families)
        self._build_asym(families)
        self._build_cos(families, segments)

        for ops in families.by_family().values():
            for op in ops:
                op.set_get_var_func(get_var)

        logger.debug(
            "Built operators: %s",
            ", ".join(f"{f.value}={n}" for f, n in families.counts().items()),
        )
        return families

    def _scaled_size(self, cell_idx: int) -> tuple[float, float]:
        bbox = self._db.cell(cell_idx).bbox
        return bbox.width * self._scale, bbox.height * self._scale

    def _build_hpwl(self, families: OperatorFamilies) -> None:
        for net in self._db.nets:
            op = LseHpwlOperator(self._context)
            op.set_weight(net.weight)
            for pin_idx in net.pin_indices:
                offset = pin_offset(self._db, pin_idx, self._scale)
                op.add_var(self._db.pin(pin_idx).cell_idx, offset.x, offset.y)
            families.hpwl.append(op)

    def _build_overlap(self, families: OperatorFamilies) -> None:
        sizes = [self._scaled_size(i) for i in range(self._db.num_cells)]
        for i in range(self._db.num_cells):
            w_i, h_i = sizes[i]
            for j in range(i + 1, self._db.num_cells):
                w_j, h_j = sizes[j]
                families.overlap.append(
                    CellPairOverlapOperator(i, w_i, h_i, j, w_j, h_j, self._context)
                )

    def _build_oob(self, families: OperatorFamilies) -> None:
        for cell_idx in range(self._db.num_cells):
            width, height = self._scaled_size(cell_idx)
            families.oob.append(
                CellOutOfBoundaryOperator(cell_idx, width, height, self._boundary, self._context)
            )

    def _build_asym(self, families: OperatorFamilies) -> None:
        for group_idx, group in enumerate(self._db.sym_groups):
            op = AsymmetryOperator(group_idx, self._context)
            for pair in group.pairs:
                width, _ = self._scaled_size(pair.first_cell)
                op.add_sym_pair(pair.first_cell, pair.second_cell, width)
            for cell_idx in group.self_syms:
                width, _ = self._scaled_size(cell_idx)
                op.add_self_sym(cell_idx, width)
            families.asym.append(op)

    def _build_cos(self, families: OperatorFamilies, segments: Sequence[SigPathSeg]) -> None:
        for seg in segments:
            families.cos.append(
                CosineDatapathOperator(
                    self._db.pin(seg.s_pin).cell_idx,
                    pin_offset(self._db, seg.s_pin, self._scale),
                    self._db.pin(seg.mid_pin_a).cell_idx,
                    pin_offset(self._db, seg.mid_pin_a, self._scale),
                    pin_offset(self._db, seg.mid_pin_b, self._scale),
                    self._db.pin(seg.t_pin).cell_idx,
                    pin_offset(self._db, seg.t_pin, self._scale),
                    self._context,
                )
            )
