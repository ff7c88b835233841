"""Hexagonal row/column index over the vertices of one z-plane.

Plane vertices lie on a triangular lattice whose rows are parallel to the
x axis. With ``(x0, y0)`` the lattice origin::

    yRow = y - y0
    xCol = x - x0 - yRow * tan(30)
    row  = round(yRow / rowH)
    col  = round(xCol / colW)          colW = rowH / sin(60)

so a step of one column is a move along +x and a step of one row is a move
at +60 degrees.
"""
from __future__ import annotations

import logging
import math
from typing import Iterable, Optional

from delta_calibrator.geometry.xyz import XYZ, Vertex

logger = logging.getLogger(__name__)

SIN60 = math.sin(math.pi / 3)
TAN30 = math.tan(math.pi / 6)

# (d_row, d_col) for directions 0..5, i.e. 0, 60, ... 300 degrees from +x.
HEX_DIRECTIONS = [(0, 1), (1, 0), (1, -1), (0, -1), (-1, 0), (-1, 1)]

RC = tuple[int, int]


def _min_gap(values: Iterable[float]) -> Optional[float]:
    distinct = sorted({round(v, 6) for v in values})
    gaps = [b - a for a, b in zip(distinct, distinct[1:])]
    return min(gaps) if gaps else None


class ZPlane:
    """Row/column lattice of a single plane, built from nominal positions."""

    def __init__(self, index: int, vertices: list[Vertex]):
        self.index = index
        self.row_h: Optional[float] = None
        self.col_w: Optional[float] = None
        self.origin: Optional[Vertex] = None
        self._map: dict[RC, Vertex] = {}
        self._rc: dict[Vertex, RC] = {}
        if vertices:
            self._build(vertices)

    def _build(self, vertices: list[Vertex]) -> None:
        self.origin = min(
            vertices,
            key=lambda v: (v.nominal.x ** 2 + v.nominal.y ** 2, v.nominal.y, v.nominal.x),
        )
        row_h = _min_gap(v.nominal.y for v in vertices)
        if row_h is not None:
            self.row_h = row_h
            self.col_w = row_h / SIN60
        else:
            col_w = _min_gap(v.nominal.x for v in vertices)
            if col_w is not None:
                self.col_w = col_w
                self.row_h = col_w * SIN60
        for v in vertices:
            rc = self.hash(v.nominal)
            if rc in self._map:
                logger.warning("Plane %d: %r and %r share lattice cell %s",
                               self.index, self._map[rc], v, rc)
                continue
            self._map[rc] = v
            self._rc[v] = rc
        logger.debug("Plane %d lattice: %d vertices, rowH=%s colW=%s",
                     self.index, len(self._map), self.row_h, self.col_w)

    def __len__(self) -> int:
        return len(self._map)

    @property
    def has_lattice(self) -> bool:
        return self.row_h is not None

    @property
    def x_offset(self) -> Optional[float]:
        return None if self.origin is None else self.origin.nominal.x

    @property
    def y_offset(self) -> Optional[float]:
        return None if self.origin is None else self.origin.nominal.y

    @property
    def vertices(self) -> list[Vertex]:
        """Plane vertices ordered by row, then column."""
        return [self._map[rc] for rc in sorted(self._map)]

    def hash(self, xy: XYZ) -> RC:
        """Lattice cell nearest to the x/y of *xy*."""
        if self.origin is None or not self.has_lattice:
            return (0, 0)
        y_row = xy.y - self.origin.nominal.y
        x_col = xy.x - self.origin.nominal.x - y_row * TAN30
        return (round(y_row / self.row_h), round(x_col / self.col_w))

    def rc(self, vertex: Vertex) -> Optional[RC]:
        """Cell of a vertex on this plane, or ``None`` if it is not indexed here."""
        return self._rc.get(vertex)

    def vertex_at_rc(self, row: int, col: int) -> Optional[Vertex]:
        return self._map.get((row, col))

    def vertex_at_xy(self, xy: XYZ) -> Optional[Vertex]:
        return self._map.get(self.hash(xy))

    def neighbor_rc(self, vertex: Vertex, direction: int) -> Optional[RC]:
        rc = self.rc(vertex)
        if rc is None:
            return None
        dr, dc = HEX_DIRECTIONS[direction % 6]
        return (rc[0] + dr, rc[1] + dc)
