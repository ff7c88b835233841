"""Tetrahedral cell of the calibration mesh.

Each cell holds four shared :class:`~delta_calibrator.geometry.xyz.Vertex`
references and, once refined, eight partitions addressed by a digit path
(the tetra-coord). Point location and property interpolation both work in
barycentric coordinates:

    p = L0*v0 + L1*v1 + L2*v2 + L3*v3,   L0 + L1 + L2 + L3 = 1

A point is inside (or on the boundary of) the cell when every ``Li >= 0``.
"""
from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np
from numpy.typing import NDArray

from delta_calibrator.geometry.xyz import XYZ, Vertex

# Barycentric weights down to -CONTAINS_EPSILON still count as inside.
CONTAINS_EPSILON = 1e-12

_HEIGHT_PER_IN_RADIUS = 2.0 * math.sqrt(2.0)


def base_in_radius_to_height(r_in: float) -> float:
    """Height of a regular tetrahedron whose base has in-radius *r_in*."""
    return r_in * _HEIGHT_PER_IN_RADIUS


def height_to_base_in_radius(height: float) -> float:
    """Base in-radius of a regular tetrahedron of the given *height*."""
    return height / _HEIGHT_PER_IN_RADIUS


class Tetrahedron:
    """Four-vertex solid with an optional 8-way partition tree."""

    N_PARTITIONS = 8

    def __init__(
        self,
        v0: Vertex,
        v1: Vertex,
        v2: Vertex,
        v3: Vertex,
        parent: Optional["Tetrahedron"] = None,
        coord: Sequence[int] = (0,),
    ):
        self.vertices: tuple[Vertex, Vertex, Vertex, Vertex] = (v0, v1, v2, v3)
        self.parent = parent
        self.coord: tuple[int, ...] = tuple(coord)
        self.partitions: Optional[list[Optional[Tetrahedron]]] = None

    def __repr__(self) -> str:
        return "Tetrahedron(coord=%s)" % self.coord_str

    @property
    def coord_str(self) -> str:
        return "".join(str(d) for d in self.coord)

    @property
    def depth(self) -> int:
        """Number of refinements between the root and this cell."""
        return len(self.coord) - 1

    @property
    def is_leaf(self) -> bool:
        return self.partitions is None

    def children(self) -> list["Tetrahedron"]:
        """Non-pruned partitions, in coord order."""
        if self.partitions is None:
            return []
        return [t for t in self.partitions if t is not None]

    # --- Geometry ---

    def _matrix(self) -> NDArray[np.float64]:
        m = np.ones((4, 4), dtype=np.float64)
        for j, v in enumerate(self.vertices):
            m[0, j] = v.x
            m[1, j] = v.y
            m[2, j] = v.z
        return m

    def barycentric(self, xyz: XYZ) -> Optional[NDArray[np.float64]]:
        """Barycentric weights of *xyz*, or ``None`` for a degenerate cell."""
        rhs = np.array([xyz.x, xyz.y, xyz.z, 1.0], dtype=np.float64)
        try:
            return np.linalg.solve(self._matrix(), rhs)
        except np.linalg.LinAlgError:
            return None

    def contains(self, xyz: XYZ) -> bool:
        """True if *xyz* lies inside or on the boundary of this cell."""
        weights = self.barycentric(xyz)
        if weights is None:
            return False
        return bool(np.all(weights >= -CONTAINS_EPSILON))

    def volume(self) -> float:
        v0 = self.vertices[0]
        edges = np.array(
            [[v.x - v0.x, v.y - v0.y, v.z - v0.z] for v in self.vertices[1:]],
            dtype=np.float64,
        )
        return abs(float(np.linalg.det(edges))) / 6.0

    def z_min(self) -> float:
        return min(v.z for v in self.vertices)

    def z_max(self) -> float:
        return max(v.z for v in self.vertices)

    # --- Properties ---

    def prop_count(self, name: str) -> int:
        """Number of vertices holding property *name*."""
        return sum(1 for v in self.vertices if v.has(name))

    def interpolates(self, name: str) -> bool:
        return self.prop_count(name) == 4

    def interpolate(self, xyz: XYZ, name: str) -> Optional[float]:
        """Barycentric interpolation of *name*; ``None`` if any vertex lacks it."""
        if not self.interpolates(name):
            return None
        weights = self.barycentric(xyz)
        if weights is None:
            return None
        values = np.array([v.props[name] for v in self.vertices], dtype=np.float64)
        return float(weights @ values)
