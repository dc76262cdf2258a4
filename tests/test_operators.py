"""Tests for the differentiable penalty operators.

Every operator kind is checked against forward finite differences at a
generic point, plus the exact-zero and continuity properties the kernel
relies on.
"""

from __future__ import annotations

import math

import numpy as np
import pytest

from nlplace.db import XY, Box
from nlplace.exceptions import PreconditionError
from nlplace.operators import (
    AsymmetryOperator,
    CellOutOfBoundaryOperator,
    CellPairOverlapOperator,
    CosineDatapathOperator,
    Family,
    LseHpwlOperator,
    OperatorContext,
    log_sum_exp,
    smooth_ramp,
    smooth_ramp_grad,
)
from nlplace.vector import Axis, IndexMap, VariableVector

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_vars(num_cells: int, num_sym_groups: int = 0) -> VariableVector:
    return VariableVector.zeros(IndexMap(num_cells=num_cells, num_sym_groups=num_sym_groups))


def _place(variables: VariableVector, cell: int, x: float, y: float) -> None:
    variables.x[cell] = x
    variables.y[cell] = y


def _assert_partials_match(op, variables: VariableVector, step: float = 1e-6, tol: float = 1e-4):
    """Compare analytic partials against forward differences of evaluate()."""
    index_map = variables.index_map
    positions = [index_map.position_of(e, a) for e, a in op.variables()]
    analytic = np.zeros(index_map.size)
    np.add.at(analytic, positions, op.compute_partials())

    f0 = op.evaluate()
    for pos in set(positions):
        saved = variables.data[pos]
        variables.data[pos] = saved + step
        numeric = (op.evaluate() - f0) / step
        variables.data[pos] = saved
        assert numeric == pytest.approx(analytic[pos], abs=tol), f"position {pos}"


# ---------------------------------------------------------------------------
# Smooth helpers
# ---------------------------------------------------------------------------


class TestSmoothRamp:
    def test_zero_below(self):
        assert smooth_ramp(-3.0, 1.0) == 0.0
        assert smooth_ramp(0.0, 1.0) == 0.0
        assert smooth_ramp_grad(-3.0, 1.0) == 0.0

    def test_quadratic_then_linear(self):
        assert smooth_ramp(0.5, 1.0) == pytest.approx(0.125)
        assert smooth_ramp(3.0, 1.0) == pytest.approx(2.5)
        assert smooth_ramp_grad(0.5, 1.0) == pytest.approx(0.5)
        assert smooth_ramp_grad(3.0, 1.0) == 1.0

    def test_continuous_at_alpha(self):
        alpha = 0.7
        below = smooth_ramp(alpha - 1e-9, alpha)
        above = smooth_ramp(alpha, alpha)
        assert below == pytest.approx(above, abs=1e-8)
        assert smooth_ramp_grad(alpha - 1e-9, alpha) == pytest.approx(1.0, abs=1e-8)


class TestLogSumExp:
    def test_matches_naive(self):
        values = np.array([1.0, 2.0, 3.0])
        expected = 0.5 * math.log(sum(math.exp(v / 0.5) for v in values))
        assert log_sum_exp(values, 0.5) == pytest.approx(expected)

    def test_large_values_stay_finite(self):
        values = np.array([1e4, 1e4 + 1.0])
        assert math.isfinite(log_sum_exp(values, 0.01))


# ---------------------------------------------------------------------------
# Wirelength
# ---------------------------------------------------------------------------


class TestLseHpwlOperator:
    def _make_two_pin(self, ctx: OperatorContext):
        variables = _make_vars(2)
        _place(variables, 1, 10.0, 0.0)
        op = LseHpwlOperator(ctx)
        op.add_var(0, 5.0, 5.0)
        op.add_var(1, 0.0, 5.0)
        op.set_get_var_func(variables.get)
        return op, variables

    def test_closed_form(self):
        op, _ = self._make_two_pin(OperatorContext(alpha=1.0))
        expected = (
            math.log(math.exp(5) + math.exp(10))
            + math.log(math.exp(-5) + math.exp(-10))
            + 2.0 * math.log(2.0)
        )
        assert op.evaluate() == pytest.approx(expected)

    def test_approaches_hpwl_for_small_alpha(self):
        op, _ = self._make_two_pin(OperatorContext(alpha=0.01))
        assert op.evaluate() == pytest.approx(5.0, abs=0.02)

    def test_weight_and_lambda_scale_value(self):
        ctx = OperatorContext(alpha=1.0)
        op, _ = self._make_two_pin(ctx)
        base = op.evaluate()
        op.set_weight(2.0)
        ctx.set_lambda(Family.HPWL, 3.0)
        assert op.evaluate() == pytest.approx(6.0 * base)

    def test_partials(self):
        variables = _make_vars(3)
        _place(variables, 0, 0.3, 1.1)
        _place(variables, 1, 2.7, -0.4)
        _place(variables, 2, 1.9, 3.2)
        op = LseHpwlOperator(OperatorContext(alpha=0.8))
        op.add_var(0, 0.5, 0.2)
        op.add_var(1, 0.1, 0.9)
        op.add_var(2, 0.0, 0.0)
        op.add_var(0, 1.0, 0.7)
        op.set_get_var_func(variables.get)
        _assert_partials_match(op, variables)

    def test_variables_x_then_y(self):
        op = LseHpwlOperator(OperatorContext())
        op.add_var(3, 0.0, 0.0)
        op.add_var(1, 0.0, 0.0)
        assert op.variables() == [(3, Axis.X), (1, Axis.X), (3, Axis.Y), (1, Axis.Y)]

    def test_empty_net(self):
        op = LseHpwlOperator(OperatorContext())
        op.set_get_var_func(_make_vars(1).get)
        assert op.evaluate() == 0.0
        assert len(op.compute_partials()) == 0

    def test_unbound_accessor(self):
        op = LseHpwlOperator(OperatorContext())
        op.add_var(0, 0.0, 0.0)
        with pytest.raises(PreconditionError):
            op.evaluate()


# ---------------------------------------------------------------------------
# Overlap
# ---------------------------------------------------------------------------


class TestCellPairOverlapOperator:
    def _make_pair(self):
        variables = _make_vars(2)
        op = CellPairOverlapOperator(0, 2.0, 1.0, 1, 2.0, 1.0, OperatorContext(alpha=1.0))
        op.set_get_var_func(variables.get)
        return op, variables

    def test_disjoint_is_exactly_zero(self):
        op, variables = self._make_pair()
        _place(variables, 1, 3.0, 0.0)
        assert op.evaluate() == 0.0
        assert np.all(op.compute_partials() == 0.0)

    def test_apart_along_one_axis_is_zero(self):
        op, variables = self._make_pair()
        _place(variables, 1, 0.5, 4.0)
        assert op.evaluate() == 0.0

    def test_intersecting_is_positive(self):
        op, variables = self._make_pair()
        _place(variables, 1, 0.5, 0.2)
        # ox = 1.5 (linear), oy = 0.8 (quadratic)
        assert op.evaluate() == pytest.approx((1.5 - 0.5) * (0.8 * 0.8 / 2.0))

    def test_continuous_at_touching(self):
        op, variables = self._make_pair()
        _place(variables, 1, 2.0, 0.0)
        assert op.evaluate() == 0.0
        _place(variables, 1, 2.0 - 1e-9, 0.0)
        value = op.evaluate()
        assert 0.0 < value < 1e-12

    @pytest.mark.parametrize("x, y", [(1.3, 0.4), (0.5, 0.2), (-0.6, 0.35)])
    def test_partials(self, x, y):
        op, variables = self._make_pair()
        _place(variables, 1, x, y)
        _assert_partials_match(op, variables)

    def test_coincident_cells_are_pushed_apart(self):
        op, variables = self._make_pair()
        _place(variables, 0, 1.0, 1.0)
        _place(variables, 1, 1.0, 1.0)
        # ox = 2 (linear), oy = 1 (at alpha)
        f0 = op.evaluate()
        assert f0 == pytest.approx(1.5 * 0.5)
        gxi, gyi, gxj, gyj = op.compute_partials()
        assert gxi == pytest.approx(0.5)
        assert gxj == pytest.approx(-0.5)
        assert gyi == pytest.approx(1.5)
        assert gyj == pytest.approx(-1.5)

        step = 1e-6
        _place(variables, 1, 1.0 + step, 1.0)
        assert (op.evaluate() - f0) / step == pytest.approx(gxj, abs=1e-4)
        _place(variables, 1, 1.0, 1.0 + step)
        assert (op.evaluate() - f0) / step == pytest.approx(gyj, abs=1e-4)
        _place(variables, 1, 1.0, 1.0)
        _place(variables, 0, 1.0 - step, 1.0)
        assert (f0 - op.evaluate()) / step == pytest.approx(gxi, abs=1e-4)

    def test_lambda_scales(self):
        variables = _make_vars(2)
        ctx = OperatorContext(alpha=1.0)
        op = CellPairOverlapOperator(0, 2.0, 1.0, 1, 2.0, 1.0, ctx)
        op.set_get_var_func(variables.get)
        _place(variables, 1, 0.5, 0.2)
        base = op.evaluate()
        ctx.set_lambda(Family.OVERLAP, 4.0)
        assert op.evaluate() == pytest.approx(4.0 * base)


# ---------------------------------------------------------------------------
# Out of boundary
# ---------------------------------------------------------------------------


class TestCellOutOfBoundaryOperator:
    def _make_op(self):
        variables = _make_vars(1)
        op = CellOutOfBoundaryOperator(0, 2.0, 1.0, Box(0, 0, 10, 10), OperatorContext(alpha=1.0))
        op.set_get_var_func(variables.get)
        return op, variables

    def test_inside_is_exactly_zero(self):
        op, variables = self._make_op()
        _place(variables, 0, 3.0, 3.0)
        assert op.evaluate() == 0.0
        assert np.all(op.compute_partials() == 0.0)

    def test_flush_with_edges_is_zero(self):
        op, variables = self._make_op()
        _place(variables, 0, 8.0, 9.0)
        assert op.evaluate() == 0.0

    def test_protrusion_value(self):
        op, variables = self._make_op()
        _place(variables, 0, 11.0, -2.0)
        # right protrudes 3, bottom 2, both in the linear region
        assert op.evaluate() == pytest.approx((3.0 - 0.5) + (2.0 - 0.5))

    @pytest.mark.parametrize("x, y", [(-0.4, 9.5), (11.0, -2.0), (9.3, 4.0)])
    def test_partials(self, x, y):
        op, variables = self._make_op()
        _place(variables, 0, x, y)
        _assert_partials_match(op, variables)


# ---------------------------------------------------------------------------
# Asymmetry
# ---------------------------------------------------------------------------


class TestAsymmetryOperator:
    def _make_op(self):
        variables = _make_vars(3, num_sym_groups=1)
        variables.sym[0] = 5.0
        op = AsymmetryOperator(0, OperatorContext())
        op.add_sym_pair(0, 1, 2.0)
        op.add_self_sym(2, 1.0)
        op.set_get_var_func(variables.get)
        return op, variables

    def test_mirrored_is_exactly_zero(self):
        op, variables = self._make_op()
        _place(variables, 0, 1.0, 3.0)
        _place(variables, 1, 7.0, 3.0)
        _place(variables, 2, 4.5, 8.0)
        assert op.evaluate() == 0.0
        assert np.all(op.compute_partials() == 0.0)

    def test_off_axis_value(self):
        op, variables = self._make_op()
        _place(variables, 0, 1.5, 3.0)
        _place(variables, 1, 7.0, 3.0)
        _place(variables, 2, 4.5, 8.0)
        assert op.evaluate() == pytest.approx(0.25**2)

    def test_vertical_mismatch(self):
        op, variables = self._make_op()
        _place(variables, 0, 1.0, 3.0)
        _place(variables, 1, 7.0, 4.0)
        _place(variables, 2, 4.5, 8.0)
        assert op.evaluate() == pytest.approx(1.0)

    def test_partials(self):
        op, variables = self._make_op()
        _place(variables, 0, 1.3, 2.2)
        _place(variables, 1, 6.1, 3.7)
        _place(variables, 2, 3.9, 0.4)
        variables.sym[0] = 4.6
        _assert_partials_match(op, variables)

    def test_axis_is_last_variable(self):
        op, _ = self._make_op()
        assert op.variables()[-1] == (0, Axis.SYM)
        assert op.variables()[:4] == [(0, Axis.X), (1, Axis.X), (0, Axis.Y), (1, Axis.Y)]


# ---------------------------------------------------------------------------
# Signal path
# ---------------------------------------------------------------------------


class TestCosineDatapathOperator:
    def _make_op(self, offsets: bool = False):
        variables = _make_vars(3)
        zero = XY(0.0, 0.0)
        if offsets:
            op = CosineDatapathOperator(
                0, XY(0.1, 0.2), 1, XY(0.0, 0.5), XY(0.8, 0.3), 2, XY(0.2, 0.0), OperatorContext()
            )
        else:
            op = CosineDatapathOperator(0, zero, 1, zero, zero, 2, zero, OperatorContext())
        op.set_get_var_func(variables.get)
        return op, variables

    def test_collinear_is_zero(self):
        op, variables = self._make_op()
        _place(variables, 0, 0.0, 0.0)
        _place(variables, 1, 1.0, 0.0)
        _place(variables, 2, 2.0, 0.0)
        assert op.evaluate() == pytest.approx(0.0, abs=1e-12)

    def test_right_angle(self):
        op, variables = self._make_op()
        _place(variables, 0, 0.0, 0.0)
        _place(variables, 1, 1.0, 0.0)
        _place(variables, 2, 1.0, 1.0)
        assert op.evaluate() == pytest.approx(1.0)

    def test_reversal(self):
        op, variables = self._make_op()
        _place(variables, 0, 0.0, 0.0)
        _place(variables, 1, 1.0, 0.0)
        _place(variables, 2, 0.0, 0.0)
        assert op.evaluate() == pytest.approx(2.0)

    def test_zero_length_wire(self):
        op, variables = self._make_op()
        _place(variables, 0, 1.0, 1.0)
        _place(variables, 1, 1.0, 1.0)
        _place(variables, 2, 3.0, 2.0)
        assert op.evaluate() == 0.0
        assert np.all(op.compute_partials() == 0.0)

    def test_partials(self):
        op, variables = self._make_op(offsets=True)
        _place(variables, 0, 0.0, 0.2)
        _place(variables, 1, 1.0, 0.1)
        _place(variables, 2, 2.2, 1.3)
        _assert_partials_match(op, variables)
