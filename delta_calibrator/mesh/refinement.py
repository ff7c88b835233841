"""Root construction and red refinement of the tetrahedral mesh."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

from delta_calibrator.geometry.tetrahedron import (
    Tetrahedron,
    base_in_radius_to_height,
    height_to_base_in_radius,
)
from delta_calibrator.geometry.xyz import XYZ, Vertex

logger = logging.getLogger(__name__)

SIN60 = math.sin(math.pi / 3)
COS60 = math.cos(math.pi / 3)

DEFAULT_Z_MIN = -50.0
DEFAULT_R_IN = 195.0
DEFAULT_Z_PLANES = 5

# Vertices further than sqrt(EXTERNAL_RATIO) * r_in from the z axis are external.
EXTERNAL_RATIO = 1.05

# Vertex identity is the nominal position quantized to this many units per mm.
KEY_SCALE = 1e6

VertexKey = tuple[int, int, int]


def vertex_key(xyz: XYZ) -> VertexKey:
    return (round(xyz.x * KEY_SCALE), round(xyz.y * KEY_SCALE), round(xyz.z * KEY_SCALE))


@dataclass
class MeshGeometry:
    """Resolved envelope parameters of a mesh."""

    r_in: float
    z_min: float
    z_max: float
    height: float
    z_planes: int

    @property
    def r_out(self) -> float:
        return 2.0 * self.r_in

    @property
    def max_xy_norm2(self) -> float:
        return self.r_in * self.r_in * EXTERNAL_RATIO

    @property
    def x_base(self) -> float:
        return self.r_out * SIN60

    @property
    def vertex_separation(self) -> float:
        """Edge length of the finest lattice on the lowest plane."""
        return 2.0 * self.x_base / 2 ** (self.z_planes - 2)

    @classmethod
    def resolve(
        cls,
        r_in: Optional[float] = None,
        z_min: Optional[float] = None,
        z_max: Optional[float] = None,
        height: Optional[float] = None,
        z_planes: Optional[int] = None,
    ) -> "MeshGeometry":
        """Fill in whichever of r_in/z_max/height were not given.

        ``height`` takes precedence over ``z_max`` unless both are supplied,
        in which case both are kept as given. Without either, ``r_in``
        (default 195) determines the height.
        """
        z_min = DEFAULT_Z_MIN if z_min is None else float(z_min)
        if height is not None:
            height = float(height)
            z_max = z_min + height if z_max is None else float(z_max)
            r_in = height_to_base_in_radius(height) if r_in is None else float(r_in)
        elif z_max is not None:
            z_max = float(z_max)
            height = z_max - z_min
            r_in = height_to_base_in_radius(height) if r_in is None else float(r_in)
        else:
            r_in = DEFAULT_R_IN if not r_in else float(r_in)
            height = base_in_radius_to_height(r_in)
            z_max = z_min + height
        if z_max <= z_min:
            raise ValueError("z_max (%s) must be above z_min (%s)" % (z_max, z_min))
        if r_in <= 0:
            raise ValueError("r_in must be positive, got %s" % r_in)
        z_planes = max(2, int(z_planes or DEFAULT_Z_PLANES))
        return cls(r_in=r_in, z_min=z_min, z_max=z_max, height=height, z_planes=z_planes)


class Refiner:
    """Builds the partition tree and owns the deduplicating vertex map."""

    def __init__(self, geometry: MeshGeometry):
        self.geometry = geometry
        self.vertex_map: dict[VertexKey, Vertex] = {}
        self.n_refine = 0
        g = geometry
        y_base = -g.r_out * COS60
        self.root = Tetrahedron(
            self.add_vertex(0, XYZ(0.0, g.r_out, g.z_min)),
            self.add_vertex(0, XYZ(g.x_base, y_base, g.z_min)),
            self.add_vertex(0, XYZ(-g.x_base, y_base, g.z_min)),
            self.add_vertex(0, XYZ(0.0, 0.0, g.z_max)),
            coord=(0,),
        )
        self.level_tetras: list[list[Tetrahedron]] = [[self.root]]

    def add_vertex(self, level: int, xyz: XYZ) -> Vertex:
        """Return the vertex at *xyz*, creating it at *level* if new."""
        key = vertex_key(xyz)
        vertex = self.vertex_map.get(key)
        if vertex is None:
            external = xyz.x * xyz.x + xyz.y * xyz.y > self.geometry.max_xy_norm2
            vertex = Vertex(xyz.x, xyz.y, xyz.z, level=level, external=external)
            self.vertex_map[key] = vertex
        return vertex

    def add_sub_tetra(
        self, index: int, parent: Tetrahedron,
        v0: Vertex, v1: Vertex, v2: Vertex, v3: Vertex,
    ) -> Optional[Tetrahedron]:
        """Append partition *index* to *parent*, or ``None`` if it is wholly external."""
        include = parent is self.root or not (
            v0.external and v1.external and v2.external and v3.external
        )
        child = Tetrahedron(v0, v1, v2, v3, parent=parent, coord=parent.coord + (index,)) if include else None
        parent.partitions.append(child)
        return child

    def refine_red(self, tetra: Tetrahedron) -> list[Optional[Tetrahedron]]:
        """Split *tetra* into 8 children at its edge midpoints."""
        if tetra.partitions is not None:
            return tetra.partitions
        self.n_refine += 1
        t0, t1, t2, t3 = tetra.vertices
        level = len(tetra.coord)
        pt03 = self.add_vertex(level, t3.interpolate(t0))
        pt13 = self.add_vertex(level, t3.interpolate(t1))
        pt23 = self.add_vertex(level, t3.interpolate(t2))
        pt01 = self.add_vertex(level, t0.interpolate(t1))
        pt12 = self.add_vertex(level, t1.interpolate(t2))
        pt02 = self.add_vertex(level, t2.interpolate(t0))

        tetra.partitions = []
        add = self.add_sub_tetra
        if t2.z == t3.z:
            # two low, two high
            add(0, tetra, pt03, pt13, pt23, t3)
            add(1, tetra, pt02, pt12, t2, pt23)
            add(2, tetra, pt02, pt03, pt01, t0)
            add(3, tetra, pt12, pt13, t1, pt01)
            add(4, tetra, pt12, pt02, pt13, pt23)
            add(5, tetra, pt13, pt02, pt03, pt01)
            add(6, tetra, pt13, pt02, pt03, pt23)
            add(7, tetra, pt12, pt02, pt13, pt01)
        else:
            # three low, one high
            add(0, tetra, pt03, pt13, pt23, t3)
            add(1, tetra, t0, pt01, pt02, pt03)
            add(2, tetra, t1, pt12, pt01, pt13)
            add(3, tetra, t2, pt02, pt12, pt23)
            add(4, tetra, pt23, pt13, pt03, pt02)
            add(5, tetra, pt12, pt02, pt01, pt13)
            add(6, tetra, pt01, pt02, pt13, pt03)
            add(7, tetra, pt12, pt02, pt13, pt23)
        return tetra.partitions

    def refine_z_planes(self, z_plane_count: int) -> list[Tetrahedron]:
        """Refine breadth first until the mesh has *z_plane_count* planes.

        Only partitions that touch the lowest plane are refined further.
        Returns the tetrahedra of the deepest level.
        """
        z_min = self.geometry.z_min
        levels = z_plane_count - 2
        for lvl in range(levels):
            if len(self.level_tetras) <= lvl + 1:
                self.level_tetras.append([])
            next_level = self.level_tetras[lvl + 1]
            if next_level:
                continue
            for tetra in self.level_tetras[lvl]:
                for child in self.refine_red(tetra):
                    if child is not None and child.z_min() == z_min:
                        next_level.append(child)
            logger.debug("Refined level %d: %d partitions", lvl + 1, len(next_level))
        return self.level_tetras[max(levels, 0)]
