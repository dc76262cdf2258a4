"""Differentiable penalty operators for non-linear global placement.

Each operator is one occurrence of a penalty term (one net, one cell pair,
one cell, one symmetry group or one signal-path segment) and evaluates its
scalar value and closed-form partial derivatives against the shared
variable vector.

Operators never hold positions into the vector. They are bound once to a
read accessor ``get_var(entity_id, axis) -> float`` and to an
:class:`OperatorContext` that supplies the smoothing coefficient and the
per-family penalty multipliers, so the driver can change either between
iterations without rebuilding anything.

The partials returned by :meth:`PlacementOperator.compute_partials` are
aligned with :meth:`PlacementOperator.variables`; the task graph maps those
(entity id, axis) pairs to vector positions once and scatters into them on
every gradient pass.

Usage::

    ctx = OperatorContext(alpha=1.0)
    op = CellPairOverlapOperator(0, 2.0, 1.0, 1, 2.0, 1.0, ctx)
    op.set_get_var_func(variables.get)
    value = op.evaluate()
    partials = op.compute_partials()
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, ClassVar

import numpy as np
from numpy.typing import NDArray

from .db import XY, Box
from .exceptions import PreconditionError
from .vector import Axis

VariableGetter = Callable[[int, Axis], float]
"""Read accessor for one variable: ``(entity_id, axis) -> value``."""

_COS_MIN_NORM = 1e-12


class Family(Enum):
    """The five penalty families making up the objective."""

    HPWL = "hpwl"
    OVERLAP = "overlap"
    OOB = "oob"
    ASYM = "asym"
    COS = "cos"


@dataclass
class OperatorContext:
    """Shared, mutable hyperparameters read by every operator.

    Attributes:
        alpha: Smoothing coefficient for the log-sum-exp wirelength and the
            penalty ramps.
        lambdas: Penalty multiplier per family.
    """

    alpha: float = 1.0
    lambdas: dict[Family, float] = field(
        default_factory=lambda: {family: 1.0 for family in Family}
    )

    def lambda_of(self, family: Family) -> float:
        return self.lambdas.get(family, 1.0)

    def set_lambda(self, family: Family, value: float) -> None:
        self.lambdas[family] = value


# ---------------------------------------------------------------------------
# Smooth helpers
# ---------------------------------------------------------------------------


def smooth_ramp(t: float, alpha: float) -> float:
    """C1 ramp: zero for ``t <= 0``, quadratic up to *alpha*, then linear."""
    if t <= 0.0:
        return 0.0
    if t < alpha:
        return t * t / (2.0 * alpha)
    return t - alpha / 2.0


def smooth_ramp_grad(t: float, alpha: float) -> float:
    """Derivative of :func:`smooth_ramp` with respect to *t*."""
    if t <= 0.0:
        return 0.0
    if t < alpha:
        return t / alpha
    return 1.0


def log_sum_exp(values: NDArray[np.float64], alpha: float) -> float:
    """``alpha * log(sum(exp(values / alpha)))``, shifted for stability."""
    peak = float(values.max())
    return peak + alpha * math.log(float(np.exp((values - peak) / alpha).sum()))


def _softmax(values: NDArray[np.float64], alpha: float) -> NDArray[np.float64]:
    weights = np.exp((values - values.max()) / alpha)
    return weights / weights.sum()


# ---------------------------------------------------------------------------
# Operator interface
# ---------------------------------------------------------------------------


class PlacementOperator(ABC):
    """Common interface of all penalty operators.

    Lifecycle:
        1. Construct with geometry and an :class:`OperatorContext`.
        2. ``set_get_var_func(getter)`` -- bind the variable accessor.
        3. ``evaluate()`` / ``compute_partials()`` any number of times.
    """

    family: ClassVar[Family]

    def __init__(self, context: OperatorContext):
        self._context = context
        self._get_var: VariableGetter | None = None
        self._weight = 1.0
        self._partials: NDArray[np.float64] | None = None

    def set_get_var_func(self, getter: VariableGetter) -> None:
        self._get_var = getter

    def set_weight(self, weight: float) -> None:
        self._weight = weight

    @property
    def weight(self) -> float:
        return self._weight

    @property
    def scale(self) -> float:
        """Combined weight and family penalty multiplier."""
        return self._weight * self._context.lambda_of(self.family)

    @property
    def partials(self) -> NDArray[np.float64] | None:
        """Partials from the most recent :meth:`compute_partials` call."""
        return self._partials

    def compute_partials(self) -> NDArray[np.float64]:
        """Compute and cache the partial derivatives.

        Returns:
            One value per entry of :meth:`variables`, in the same order.
        """
        self._partials = self._calc_partials()
        return self._partials

    def _var(self, entity_id: int, axis: Axis) -> float:
        if self._get_var is None:
            raise PreconditionError(
                "Operator evaluated before a variable accessor was bound",
                context={"operator": type(self).__name__},
            )
        return self._get_var(entity_id, axis)

    @abstractmethod
    def variables(self) -> list[tuple[int, Axis]]:
        """The (entity id, axis) pairs this operator depends on."""

    @abstractmethod
    def evaluate(self) -> float:
        """Scalar penalty at the current variable values."""

    @abstractmethod
    def _calc_partials(self) -> NDArray[np.float64]:
        """Partials aligned with :meth:`variables`."""


# ---------------------------------------------------------------------------
# Wirelength
# ---------------------------------------------------------------------------


class LseHpwlOperator(PlacementOperator):
    """Log-sum-exp smoothed half-perimeter wirelength of one net.

    For pin coordinates ``c`` along one axis the smoothed span is
    ``alpha * (log sum exp(c / alpha) + log sum exp(-c / alpha))``, which
    approaches ``max(c) - min(c)`` from above as alpha shrinks.
    """

    family = Family.HPWL

    def __init__(self, context: OperatorContext):
        super().__init__(context)
        self._cells: list[int] = []
        self._offset_x: list[float] = []
        self._offset_y: list[float] = []

    def add_var(self, cell_idx: int, offset_x: float, offset_y: float) -> None:
        """Add a pin at (*offset_x*, *offset_y*) from the low corner of *cell_idx*."""
        self._cells.append(cell_idx)
        self._offset_x.append(offset_x)
        self._offset_y.append(offset_y)

    @property
    def num_pins(self) -> int:
        return len(self._cells)

    def variables(self) -> list[tuple[int, Axis]]:
        return [(c, Axis.X) for c in self._cells] + [(c, Axis.Y) for c in self._cells]

    def _pin_coords(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        xs = np.array([self._var(c, Axis.X) for c in self._cells]) + self._offset_x
        ys = np.array([self._var(c, Axis.Y) for c in self._cells]) + self._offset_y
        return xs, ys

    def evaluate(self) -> float:
        if not self._cells:
            return 0.0
        alpha = self._context.alpha
        xs, ys = self._pin_coords()
        wl = (
            log_sum_exp(xs, alpha)
            + log_sum_exp(-xs, alpha)
            + log_sum_exp(ys, alpha)
            + log_sum_exp(-ys, alpha)
        )
        return self.scale * wl

    def _calc_partials(self) -> NDArray[np.float64]:
        if not self._cells:
            return np.zeros(0, dtype=np.float64)
        alpha = self._context.alpha
        xs, ys = self._pin_coords()
        grad_x = _softmax(xs, alpha) - _softmax(-xs, alpha)
        grad_y = _softmax(ys, alpha) - _softmax(-ys, alpha)
        return self.scale * np.concatenate([grad_x, grad_y])


# ---------------------------------------------------------------------------
# Overlap
# ---------------------------------------------------------------------------


def _span_overlap(lo_i: float, len_i: float, lo_j: float, len_j: float) -> tuple[float, float, float]:
    """Signed 1-D overlap of two intervals and its derivatives.

    Ties on both edges resolve to opposite cells, so coincident intervals
    get ``d_i = +1, d_j = -1`` instead of two cancelling derivatives.

    Returns:
        ``(overlap, d/d lo_i, d/d lo_j)``. Overlap is negative when the
        intervals are apart.
    """
    hi_i = lo_i + len_i
    hi_j = lo_j + len_j
    d_i = 0.0
    d_j = 0.0
    if hi_i <= hi_j:
        upper = hi_i
        d_i += 1.0
    else:
        upper = hi_j
        d_j += 1.0
    if lo_i > lo_j:
        lower = lo_i
        d_i -= 1.0
    else:
        lower = lo_j
        d_j -= 1.0
    return upper - lower, d_i, d_j


class CellPairOverlapOperator(PlacementOperator):
    """Smoothed intersection area of two cell bounding boxes.

    The value is ``ramp(ox) * ramp(oy)`` where ``ox``/``oy`` are the signed
    overlaps along each axis, so it is exactly zero whenever the boxes are
    apart along either axis.
    """

    family = Family.OVERLAP

    def __init__(
        self,
        cell_i: int,
        width_i: float,
        height_i: float,
        cell_j: int,
        width_j: float,
        height_j: float,
        context: OperatorContext,
    ):
        super().__init__(context)
        self.cell_i = cell_i
        self.cell_j = cell_j
        self._width_i = width_i
        self._height_i = height_i
        self._width_j = width_j
        self._height_j = height_j

    def variables(self) -> list[tuple[int, Axis]]:
        return [
            (self.cell_i, Axis.X),
            (self.cell_i, Axis.Y),
            (self.cell_j, Axis.X),
            (self.cell_j, Axis.Y),
        ]

    def _overlaps(self):
        ox = _span_overlap(
            self._var(self.cell_i, Axis.X),
            self._width_i,
            self._var(self.cell_j, Axis.X),
            self._width_j,
        )
        oy = _span_overlap(
            self._var(self.cell_i, Axis.Y),
            self._height_i,
            self._var(self.cell_j, Axis.Y),
            self._height_j,
        )
        return ox, oy

    def evaluate(self) -> float:
        alpha = self._context.alpha
        (ox, _, _), (oy, _, _) = self._overlaps()
        return self.scale * smooth_ramp(ox, alpha) * smooth_ramp(oy, alpha)

    def _calc_partials(self) -> NDArray[np.float64]:
        alpha = self._context.alpha
        (ox, dxi, dxj), (oy, dyi, dyj) = self._overlaps()
        rx = smooth_ramp(ox, alpha)
        ry = smooth_ramp(oy, alpha)
        gx = smooth_ramp_grad(ox, alpha) * ry
        gy = smooth_ramp_grad(oy, alpha) * rx
        return self.scale * np.array([gx * dxi, gy * dyi, gx * dxj, gy * dyj])


# ---------------------------------------------------------------------------
# Out of boundary
# ---------------------------------------------------------------------------


class CellOutOfBoundaryOperator(PlacementOperator):
    """Smoothed protrusion of one cell outside the placement boundary."""

    family = Family.OOB

    def __init__(
        self,
        cell_idx: int,
        width: float,
        height: float,
        boundary: Box,
        context: OperatorContext,
    ):
        super().__init__(context)
        self.cell_idx = cell_idx
        self._width = width
        self._height = height
        self._boundary = boundary

    def variables(self) -> list[tuple[int, Axis]]:
        return [(self.cell_idx, Axis.X), (self.cell_idx, Axis.Y)]

    def _protrusions(self) -> tuple[float, float, float, float]:
        x = self._var(self.cell_idx, Axis.X)
        y = self._var(self.cell_idx, Axis.Y)
        b = self._boundary
        return (
            b.x_lo - x,
            x + self._width - b.x_hi,
            b.y_lo - y,
            y + self._height - b.y_hi,
        )

    def evaluate(self) -> float:
        alpha = self._context.alpha
        return self.scale * sum(smooth_ramp(p, alpha) for p in self._protrusions())

    def _calc_partials(self) -> NDArray[np.float64]:
        alpha = self._context.alpha
        left, right, bottom, top = self._protrusions()
        gx = smooth_ramp_grad(right, alpha) - smooth_ramp_grad(left, alpha)
        gy = smooth_ramp_grad(top, alpha) - smooth_ramp_grad(bottom, alpha)
        return self.scale * np.array([gx, gy])


# ---------------------------------------------------------------------------
# Asymmetry
# ---------------------------------------------------------------------------


class AsymmetryOperator(PlacementOperator):
    """Squared deviation of one symmetry group from its vertical axis.

    For a pair (a, b) of equal width w the axis must sit at
    ``(xa + xb + w) / 2`` and both cells at the same y. A self-symmetric
    cell must have its centre ``x + w / 2`` on the axis.
    """

    family = Family.ASYM

    def __init__(self, sym_group_idx: int, context: OperatorContext):
        super().__init__(context)
        self.sym_group_idx = sym_group_idx
        self._pairs: list[tuple[int, int, float]] = []
        self._self_syms: list[tuple[int, float]] = []

    def add_sym_pair(self, cell_a: int, cell_b: int, width: float) -> None:
        self._pairs.append((cell_a, cell_b, width))

    def add_self_sym(self, cell_idx: int, width: float) -> None:
        self._self_syms.append((cell_idx, width))

    def variables(self) -> list[tuple[int, Axis]]:
        result: list[tuple[int, Axis]] = []
        for a, b, _ in self._pairs:
            result.extend([(a, Axis.X), (b, Axis.X), (a, Axis.Y), (b, Axis.Y)])
        for c, _ in self._self_syms:
            result.append((c, Axis.X))
        result.append((self.sym_group_idx, Axis.SYM))
        return result

    def evaluate(self) -> float:
        axis = self._var(self.sym_group_idx, Axis.SYM)
        total = 0.0
        for a, b, width in self._pairs:
            dx = (self._var(a, Axis.X) + self._var(b, Axis.X) + width) / 2.0 - axis
            dy = self._var(a, Axis.Y) - self._var(b, Axis.Y)
            total += dx * dx + dy * dy
        for c, width in self._self_syms:
            dx = self._var(c, Axis.X) + width / 2.0 - axis
            total += dx * dx
        return self.scale * total

    def _calc_partials(self) -> NDArray[np.float64]:
        axis = self._var(self.sym_group_idx, Axis.SYM)
        grads: list[float] = []
        d_axis = 0.0
        for a, b, width in self._pairs:
            dx = (self._var(a, Axis.X) + self._var(b, Axis.X) + width) / 2.0 - axis
            dy = self._var(a, Axis.Y) - self._var(b, Axis.Y)
            grads.extend([dx, dx, 2.0 * dy, -2.0 * dy])
            d_axis -= 2.0 * dx
        for c, width in self._self_syms:
            dx = self._var(c, Axis.X) + width / 2.0 - axis
            grads.append(2.0 * dx)
            d_axis -= 2.0 * dx
        grads.append(d_axis)
        return self.scale * np.array(grads, dtype=np.float64)


# ---------------------------------------------------------------------------
# Signal path
# ---------------------------------------------------------------------------


class CosineDatapathOperator(PlacementOperator):
    """Penalizes the bend between two wires of a signal path.

    With ``u`` the wire from the source pin to the first middle pin and
    ``v`` the wire from the second middle pin to the target pin, the value
    is ``1 - cos(u, v)``: zero when the wires continue in a straight line.
    """

    family = Family.COS

    def __init__(
        self,
        s_cell: int,
        s_offset: XY,
        m_cell: int,
        m_offset_a: XY,
        m_offset_b: XY,
        t_cell: int,
        t_offset: XY,
        context: OperatorContext,
    ):
        super().__init__(context)
        self.s_cell = s_cell
        self.m_cell = m_cell
        self.t_cell = t_cell
        self._s_offset = s_offset
        self._m_offset_a = m_offset_a
        self._m_offset_b = m_offset_b
        self._t_offset = t_offset

    def variables(self) -> list[tuple[int, Axis]]:
        return [
            (self.s_cell, Axis.X),
            (self.s_cell, Axis.Y),
            (self.m_cell, Axis.X),
            (self.m_cell, Axis.Y),
            (self.t_cell, Axis.X),
            (self.t_cell, Axis.Y),
        ]

    def _wires(self) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
        s = np.array([self._var(self.s_cell, Axis.X), self._var(self.s_cell, Axis.Y)])
        m = np.array([self._var(self.m_cell, Axis.X), self._var(self.m_cell, Axis.Y)])
        t = np.array([self._var(self.t_cell, Axis.X), self._var(self.t_cell, Axis.Y)])
        p_s = s + (self._s_offset.x, self._s_offset.y)
        p_a = m + (self._m_offset_a.x, self._m_offset_a.y)
        p_b = m + (self._m_offset_b.x, self._m_offset_b.y)
        p_t = t + (self._t_offset.x, self._t_offset.y)
        return p_a - p_s, p_t - p_b

    def evaluate(self) -> float:
        u, v = self._wires()
        nu = float(np.linalg.norm(u))
        nv = float(np.linalg.norm(v))
        if nu < _COS_MIN_NORM or nv < _COS_MIN_NORM:
            return 0.0
        cos = float(u @ v) / (nu * nv)
        return self.scale * (1.0 - cos)

    def _calc_partials(self) -> NDArray[np.float64]:
        u, v = self._wires()
        nu = float(np.linalg.norm(u))
        nv = float(np.linalg.norm(v))
        if nu < _COS_MIN_NORM or nv < _COS_MIN_NORM:
            return np.zeros(6, dtype=np.float64)
        cos = float(u @ v) / (nu * nv)
        dcos_du = v / (nu * nv) - cos * u / (nu * nu)
        dcos_dv = u / (nu * nv) - cos * v / (nv * nv)
        # u = m - s, v = t - m (plus constant offsets)
        d_s = dcos_du
        d_m = dcos_dv - dcos_du
        d_t = -dcos_dv
        return self.scale * np.concatenate([d_s, d_m, d_t])
