"""In-memory placement database.

Holds the cells, pins, nets, symmetry groups and signal paths of an analog
placement problem, plus the global parameters that shape the solve. The
optimization kernel only reads geometry from here and writes final cell
locations back through :meth:`Cell.set_loc`.

All geometry is in integer database units. Cell bounding boxes are local to
the cell origin, so the placed low corner of a cell is
``(x_loc + bbox.x_lo, y_loc + bbox.y_lo)``.

Usage::

    db = Database()
    a = db.add_cell(Cell("M1", Box(0, 0, 200, 100)))
    b = db.add_cell(Cell("M2", Box(0, 0, 200, 100)))
    pa = db.add_pin(Pin(cell_idx=a, mid_loc=XY(100, 50)))
    pb = db.add_pin(Pin(cell_idx=b, mid_loc=XY(100, 50)))
    db.add_net(Net("n1", pin_indices=(pa, pb)))
    db.add_sym_group(SymGroup(pairs=(SymPair(a, b),)))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from .exceptions import PreconditionError

# ---------------------------------------------------------------------------
# Geometry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class XY:
    """A point.

    Attributes:
        x: X coordinate.
        y: Y coordinate.
    """

    x: float
    y: float

    def __add__(self, other: XY) -> XY:
        return XY(self.x + other.x, self.y + other.y)

    def __sub__(self, other: XY) -> XY:
        return XY(self.x - other.x, self.y - other.y)

    def __mul__(self, factor: float) -> XY:
        return XY(self.x * factor, self.y * factor)


@dataclass(frozen=True)
class Box:
    """Axis-aligned rectangle.

    Attributes:
        x_lo: Left edge.
        y_lo: Bottom edge.
        x_hi: Right edge.
        y_hi: Top edge.
    """

    x_lo: float
    y_lo: float
    x_hi: float
    y_hi: float

    @property
    def width(self) -> float:
        return self.x_hi - self.x_lo

    @property
    def height(self) -> float:
        return self.y_hi - self.y_lo

    @property
    def area(self) -> float:
        return self.width * self.height

    @property
    def lo(self) -> XY:
        return XY(self.x_lo, self.y_lo)

    def scaled(self, factor: float) -> Box:
        """Return this box with every coordinate multiplied by *factor*."""
        return Box(
            self.x_lo * factor,
            self.y_lo * factor,
            self.x_hi * factor,
            self.y_hi * factor,
        )

    def contains(self, other: Box) -> bool:
        return (
            self.x_lo <= other.x_lo
            and self.y_lo <= other.y_lo
            and other.x_hi <= self.x_hi
            and other.y_hi <= self.y_hi
        )

    def __str__(self) -> str:
        return f"({self.x_lo:g}, {self.y_lo:g}) - ({self.x_hi:g}, {self.y_hi:g})"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass
class Cell:
    """A placeable cell.

    Attributes:
        name: Instance name (e.g. "M1").
        bbox: Bounding box in the cell's local coordinates.
        x_loc: Placed x origin, written back after a solve.
        y_loc: Placed y origin, written back after a solve.
    """

    name: str
    bbox: Box
    x_loc: int = 0
    y_loc: int = 0

    def set_loc(self, x: int, y: int) -> None:
        self.x_loc = x
        self.y_loc = y

    @property
    def placed_bbox(self) -> Box:
        """Bounding box in absolute coordinates at the current location."""
        return Box(
            self.x_loc + self.bbox.x_lo,
            self.y_loc + self.bbox.y_lo,
            self.x_loc + self.bbox.x_hi,
            self.y_loc + self.bbox.y_hi,
        )


@dataclass(frozen=True)
class Pin:
    """A pin on a cell.

    Attributes:
        cell_idx: Index of the owning cell.
        mid_loc: Pin centre in the owning cell's local coordinates.
        name: Optional pin name for diagnostics.
    """

    cell_idx: int
    mid_loc: XY
    name: str = ""


@dataclass(frozen=True)
class Net:
    """A net connecting pins.

    Attributes:
        name: Net name.
        pin_indices: Indices of the pins on this net. Order is irrelevant.
        weight: Non-negative weight applied to the net's wirelength.
    """

    name: str
    pin_indices: tuple[int, ...]
    weight: float = 1.0


@dataclass(frozen=True)
class SymPair:
    """Two cells mirrored about a vertical symmetry axis."""

    first_cell: int
    second_cell: int


@dataclass(frozen=True)
class SymGroup:
    """A symmetry group sharing one vertical axis.

    Attributes:
        pairs: Mirrored cell pairs.
        self_syms: Cells whose centre lies on the axis.
        name: Optional group name for diagnostics.
    """

    pairs: tuple[SymPair, ...] = ()
    self_syms: tuple[int, ...] = ()
    name: str = ""


@dataclass
class Parameters:
    """Global placement parameters.

    Attributes:
        boundary_constraint: Fixed placement region in database units, or
            None to derive one from the total cell area.
        max_white_space: Allowed white space as a fraction of cell area when
            the boundary is derived.
        layout_offset: Coordinate written back for the lowest cell edge.
    """

    boundary_constraint: Box | None = None
    max_white_space: float = 0.2
    layout_offset: int = 0

    @property
    def is_boundary_constraint_set(self) -> bool:
        return self.boundary_constraint is not None


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass
class Database:
    """Container for a complete placement problem.

    Attributes:
        cells: All cells, indexed by cell id.
        pins: All pins, indexed by pin id.
        nets: All nets, indexed by net id.
        sym_groups: All symmetry groups, indexed by group id.
        signal_paths: Critical signal paths, each an ordered sequence of pin
            ids alternating between the input and output pin of each cell.
        parameters: Global parameters.
    """

    cells: list[Cell] = field(default_factory=list)
    pins: list[Pin] = field(default_factory=list)
    nets: list[Net] = field(default_factory=list)
    sym_groups: list[SymGroup] = field(default_factory=list)
    signal_paths: list[tuple[int, ...]] = field(default_factory=list)
    parameters: Parameters = field(default_factory=Parameters)

    # -- construction --------------------------------------------------------

    def add_cell(self, cell: Cell) -> int:
        self.cells.append(cell)
        return len(self.cells) - 1

    def add_pin(self, pin: Pin) -> int:
        self.pins.append(pin)
        return len(self.pins) - 1

    def add_net(self, net: Net) -> int:
        self.nets.append(net)
        return len(self.nets) - 1

    def add_sym_group(self, group: SymGroup) -> int:
        self.sym_groups.append(group)
        return len(self.sym_groups) - 1

    def add_signal_path(self, pin_indices: Sequence[int]) -> int:
        self.signal_paths.append(tuple(pin_indices))
        return len(self.signal_paths) - 1

    # -- counts --------------------------------------------------------------

    @property
    def num_cells(self) -> int:
        return len(self.cells)

    @property
    def num_pins(self) -> int:
        return len(self.pins)

    @property
    def num_nets(self) -> int:
        return len(self.nets)

    @property
    def num_sym_groups(self) -> int:
        return len(self.sym_groups)

    # -- checked access ------------------------------------------------------

    def cell(self, cell_idx: int) -> Cell:
        _check_index("cell", cell_idx, len(self.cells))
        return self.cells[cell_idx]

    def pin(self, pin_idx: int) -> Pin:
        _check_index("pin", pin_idx, len(self.pins))
        return self.pins[pin_idx]

    def net(self, net_idx: int) -> Net:
        _check_index("net", net_idx, len(self.nets))
        return self.nets[net_idx]

    def sym_group(self, group_idx: int) -> SymGroup:
        _check_index("sym_group", group_idx, len(self.sym_groups))
        return self.sym_groups[group_idx]

    def total_cell_area(self) -> float:
        """Sum of the unscaled bounding-box areas of all cells."""
        return float(sum(c.bbox.area for c in self.cells))

    def validate(self) -> None:
        """Check that every cross-reference in the database resolves.

        Raises:
            PreconditionError: On the first dangling reference or degenerate
                cell found, naming the offending entity.
        """
        for idx, cell in enumerate(self.cells):
            if cell.bbox.width <= 0 or cell.bbox.height <= 0:
                raise PreconditionError(
                    "Cell has a degenerate bounding box",
                    context={"cell": idx, "name": cell.name, "bbox": str(cell.bbox)},
                )
        for idx, pin in enumerate(self.pins):
            if not 0 <= pin.cell_idx < len(self.cells):
                raise PreconditionError(
                    "Pin references a cell that does not exist",
                    context={"pin": idx, "cell": pin.cell_idx, "num_cells": len(self.cells)},
                )
        for idx, net in enumerate(self.nets):
            if net.weight < 0:
                raise PreconditionError(
                    "Net weight must be non-negative",
                    context={"net": idx, "name": net.name, "weight": net.weight},
                )
            for pin_idx in net.pin_indices:
                if not 0 <= pin_idx < len(self.pins):
                    raise PreconditionError(
                        "Net references a pin that does not exist",
                        context={"net": idx, "name": net.name, "pin": pin_idx},
                    )
        for idx, group in enumerate(self.sym_groups):
            cells = [c for pair in group.pairs for c in (pair.first_cell, pair.second_cell)]
            cells.extend(group.self_syms)
            for cell_idx in cells:
                if not 0 <= cell_idx < len(self.cells):
                    raise PreconditionError(
                        "Symmetry group references a cell that does not exist",
                        context={"sym_group": idx, "cell": cell_idx},
                    )
        for idx, path in enumerate(self.signal_paths):
            for pin_idx in path:
                if not 0 <= pin_idx < len(self.pins):
                    raise PreconditionError(
                        "Signal path references a pin that does not exist",
                        context={"signal_path": idx, "pin": pin_idx},
                    )


def _check_index(kind: str, idx: int, count: int) -> None:
    if not 0 <= idx < count:
        raise PreconditionError(
            f"{kind} id out of range",
            context={kind: idx, "count": count},
        )
