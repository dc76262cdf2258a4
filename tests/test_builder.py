"""Tests for problem construction: scale, boundary and operators."""

from __future__ import annotations

import logging
import math

import pytest

from nlplace.builder import (
    DEFAULT_ASPECT_RATIO,
    NORMALIZED_CELL_AREA,
    OperatorBuilder,
    compute_boundary,
    compute_scale,
    pin_offset,
)
from nlplace.db import XY, Box, Cell, Database, Net, Parameters, Pin
from nlplace.exceptions import DegenerateProblemError, PreconditionError
from nlplace.operators import Family, OperatorContext
from nlplace.signal_path import SignalPathManager
from nlplace.vector import Axis, IndexMap, VariableVector


def _make_square_db(n: int, size: float = 10.0, **params) -> Database:
    db = Database(parameters=Parameters(**params))
    for i in range(n):
        db.add_cell(Cell(f"M{i}", Box(0, 0, size, size)))
    return db


def _build(db: Database):
    scale = compute_scale(db)
    boundary = compute_boundary(db, scale)
    variables = VariableVector.zeros(IndexMap(db.num_cells, db.num_sym_groups))
    builder = OperatorBuilder(db, scale, boundary, OperatorContext())
    return builder.build(variables.get, SignalPathManager(db).segments()), variables


class TestScale:
    def test_normalizes_total_area(self):
        db = _make_square_db(2)
        scale = compute_scale(db)
        assert scale == pytest.approx(math.sqrt(0.5))
        assert db.total_cell_area() * scale * scale == pytest.approx(NORMALIZED_CELL_AREA)

    def test_unit_scale(self, two_cell_db):
        assert compute_scale(two_cell_db) == 1.0

    def test_no_cells(self):
        with pytest.raises(DegenerateProblemError):
            compute_scale(Database())


class TestBoundary:
    def test_derived_from_area(self):
        db = _make_square_db(2, max_white_space=0.2)
        boundary = compute_boundary(db, compute_scale(db))
        area = NORMALIZED_CELL_AREA * 1.2
        assert boundary.x_lo == 0.0
        assert boundary.y_lo == 0.0
        assert boundary.x_hi == pytest.approx(math.sqrt(area * DEFAULT_ASPECT_RATIO))
        assert boundary.area == pytest.approx(area)

    def test_derived_boundary_logged(self, caplog):
        db = _make_square_db(2)
        with caplog.at_level(logging.INFO, logger="nlplace.builder"):
            compute_boundary(db, compute_scale(db))
        assert "Automatically set boundary" in caplog.text

    def test_constraint_is_scaled(self):
        db = _make_square_db(2, boundary_constraint=Box(0, 0, 100, 50))
        scale = compute_scale(db)
        boundary = compute_boundary(db, scale)
        assert boundary.x_hi == pytest.approx(100 * scale)
        assert boundary.y_hi == pytest.approx(50 * scale)

    def test_degenerate_constraint(self):
        db = _make_square_db(2, boundary_constraint=Box(0, 0, 100, 0))
        with pytest.raises(DegenerateProblemError):
            compute_boundary(db, compute_scale(db))

    def test_negative_white_space_degenerates(self):
        db = _make_square_db(2, max_white_space=-1.0)
        with pytest.raises(DegenerateProblemError):
            compute_boundary(db, compute_scale(db))


class TestPinOffset:
    def test_relative_to_bbox_low_corner(self):
        db = Database()
        db.add_cell(Cell("M", Box(5, 5, 15, 15)))
        db.add_pin(Pin(0, XY(10, 7)))
        assert pin_offset(db, 0, 2.0) == XY(10.0, 4.0)

    def test_missing_pin(self):
        db = _make_square_db(1)
        with pytest.raises(PreconditionError):
            pin_offset(db, 0, 1.0)


class TestOperatorBuilder:
    def test_counts(self, mixed_db):
        families, _ = _build(mixed_db)
        assert families.counts() == {
            Family.HPWL: 3,
            Family.OVERLAP: 6,
            Family.OOB: 4,
            Family.ASYM: 1,
            Family.COS: 1,
        }
        assert len(families) == 15

    def test_pair_order(self, mixed_db):
        families, _ = _build(mixed_db)
        pairs = [(op.cell_i, op.cell_j) for op in families.overlap]
        assert pairs == [(0, 1), (0, 2), (0, 3), (1, 2), (1, 3), (2, 3)]

    def test_cell_order(self, mixed_db):
        families, _ = _build(mixed_db)
        assert [op.cell_idx for op in families.oob] == [0, 1, 2, 3]

    def test_net_weight_applied(self, mixed_db):
        families, _ = _build(mixed_db)
        assert [op.weight for op in families.hpwl] == [1.0, 2.0, 1.0]
        assert [op.num_pins for op in families.hpwl] == [2, 2, 3]

    def test_asym_variables(self, mixed_db):
        families, _ = _build(mixed_db)
        assert families.asym[0].variables() == [
            (0, Axis.X),
            (1, Axis.X),
            (0, Axis.Y),
            (1, Axis.Y),
            (2, Axis.X),
            (0, Axis.SYM),
        ]

    def test_operators_bound(self, mixed_db):
        families, variables = _build(mixed_db)
        variables.x[:] = [0.0, 6.0, 12.0, 18.0]
        for ops in families.by_family().values():
            for op in ops:
                op.evaluate()

    def test_cosine_cells(self, mixed_db):
        families, _ = _build(mixed_db)
        op = families.cos[0]
        assert (op.s_cell, op.m_cell, op.t_cell) == (0, 2, 3)

    def test_invalid_pin_reported(self):
        db = _make_square_db(2)
        db.add_pin(Pin(0, XY(1, 1)))
        db.add_net(Net("bad", (0, 3)))
        with pytest.raises(PreconditionError) as exc_info:
            _build(db)
        assert exc_info.value.context["pin"] == 3
        assert exc_info.value.context["net"] == 0

    def test_no_nets(self):
        families, _ = _build(_make_square_db(3))
        assert families.counts()[Family.HPWL] == 0
        assert families.counts()[Family.OVERLAP] == 3
