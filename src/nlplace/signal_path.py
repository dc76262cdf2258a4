"""Signal-path decomposition into four-pin segments.

A signal path is stored in the database as an ordered pin sequence that
enters and leaves each cell in turn::

    s_out, m_in, m_out, n_in, n_out, ..., t_in

Every window of four consecutive pins starting at an even position covers
two wires joined through one cell (``s_out -> m_in`` then ``m_out -> n_in``).
Those windows are the segments whose straightness the cosine operator
penalizes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

from .db import Database

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SigPathSeg:
    """Two wires meeting at one cell.

    Attributes:
        s_pin: Start pin of the first wire (on the source cell).
        mid_pin_a: End pin of the first wire (on the middle cell).
        mid_pin_b: Start pin of the second wire (on the middle cell).
        t_pin: End pin of the second wire (on the target cell).
    """

    s_pin: int
    mid_pin_a: int
    mid_pin_b: int
    t_pin: int


class SegmentSource(Protocol):
    """Anything that can hand the problem builder a list of segments."""

    def segments(self) -> list[SigPathSeg]: ...


class SignalPathManager:
    """Decomposes the database signal paths into :class:`SigPathSeg` windows."""

    def __init__(self, db: Database):
        self._db = db
        self._segs: list[SigPathSeg] = []
        self._decompose()

    def segments(self) -> list[SigPathSeg]:
        return list(self._segs)

    def _decompose(self) -> None:
        for path_idx, path in enumerate(self._db.signal_paths):
            for start in range(0, len(path) - 3, 2):
                s_pin, mid_a, mid_b, t_pin = path[start : start + 4]
                mid_cell = self._db.pin(mid_a).cell_idx
                if self._db.pin(mid_b).cell_idx != mid_cell:
                    logger.debug(
                        "Skipping window %d of signal path %d: pins %d and %d are on different cells",
                        start // 2,
                        path_idx,
                        mid_a,
                        mid_b,
                    )
                    continue
                self._segs.append(SigPathSeg(s_pin, mid_a, mid_b, t_pin))
