"""Shared pytest fixtures for nlplace tests.

Most problems here have a total cell area of exactly 100 database units, so
the placement scale is exactly 1.0 and scaled coordinates equal database
coordinates.
"""

import pytest

from nlplace.config import Config
from nlplace.db import XY, Box, Cell, Database, Net, Parameters, Pin, SymGroup, SymPair


@pytest.fixture
def serial_config() -> Config:
    """Default configuration running every graph on the serial executor."""
    config = Config()
    config.placer.executor = "serial"
    return config


@pytest.fixture
def two_cell_db() -> Database:
    """Two 5x10 cells joined by one net, inside a 40x40 boundary.

    Pin 0 sits at the middle of cell 0's right edge, pin 1 at the middle of
    cell 1's left edge.
    """
    db = Database(parameters=Parameters(boundary_constraint=Box(0, 0, 40, 40)))
    a = db.add_cell(Cell("M1", Box(0, 0, 5, 10)))
    b = db.add_cell(Cell("M2", Box(0, 0, 5, 10)))
    pa = db.add_pin(Pin(a, XY(5, 5), "d"))
    pb = db.add_pin(Pin(b, XY(0, 5), "g"))
    db.add_net(Net("n1", (pa, pb)))
    return db


@pytest.fixture
def sym_pair_db() -> Database:
    """Two 5x10 cells forming one symmetric pair, inside a 40x40 boundary."""
    db = Database(parameters=Parameters(boundary_constraint=Box(0, 0, 40, 40)))
    a = db.add_cell(Cell("M1", Box(0, 0, 5, 10)))
    b = db.add_cell(Cell("M2", Box(0, 0, 5, 10)))
    db.add_sym_group(SymGroup(pairs=(SymPair(a, b),), name="diff"))
    return db


@pytest.fixture
def mixed_db() -> Database:
    """Four 5x5 cells exercising every operator family.

    Cells 0 and 1 are a symmetric pair, cell 2 is self-symmetric, and a
    signal path runs 0 -> 2 -> 3.
    """
    db = Database(parameters=Parameters(boundary_constraint=Box(0, 0, 20, 20)))
    for i in range(4):
        db.add_cell(Cell(f"M{i}", Box(0, 0, 5, 5)))
    p0_out = db.add_pin(Pin(0, XY(5, 2), "out"))
    p1_out = db.add_pin(Pin(1, XY(0, 2), "out"))
    p2_in = db.add_pin(Pin(2, XY(0, 1), "in"))
    p2_out = db.add_pin(Pin(2, XY(5, 4), "out"))
    p3_in = db.add_pin(Pin(3, XY(1, 3), "in"))
    db.add_net(Net("a", (p0_out, p2_in)))
    db.add_net(Net("b", (p2_out, p3_in), weight=2.0))
    db.add_net(Net("c", (p0_out, p1_out, p3_in)))
    db.add_sym_group(SymGroup(pairs=(SymPair(0, 1),), self_syms=(2,)))
    db.add_signal_path((p0_out, p2_in, p2_out, p3_in))
    return db
