"""DeltaMesh: tetrahedral calibration mesh of a delta robot's build volume.

The mesh is one large regular tetrahedron (triangular base at ``z_min``,
apex at ``z_max``) refined breadth first toward its base. Vertex positions
are shared between all tetrahedra that meet there and carry sparse named
calibration values which the mesh interpolates anywhere inside the volume.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from numbers import Integral
from typing import TYPE_CHECKING, Any, Iterable, Optional, Sequence, Union

import numpy as np

from delta_calibrator.core.models import (
    DigitizeResult,
    ImportResult,
    MendResult,
    MeshSummary,
    RegionOfInterest,
    TetraClassification,
)
from delta_calibrator.geometry.tetrahedron import Tetrahedron
from delta_calibrator.geometry.xyz import XYZ, Vertex
from delta_calibrator.mesh import calibration, serialization
from delta_calibrator.mesh.kinematics import Kinematics, micro_step_z_offset
from delta_calibrator.mesh.refinement import MeshGeometry, Refiner, VertexKey
from delta_calibrator.mesh.zplane import ZPlane

if TYPE_CHECKING:
    from delta_calibrator.core.config import AppConfig
    from delta_calibrator.core.event_bus import EventBus

logger = logging.getLogger(__name__)

# Queries exactly on z_min are lifted by this much (mm) to land in the lowest tier.
# Must stay well above CONTAINS_EPSILON times the smallest cell height.
Z_MIN_EPSILON = 1e-7

Coord = Union[str, Sequence[int]]


class DeltaMesh:
    def __init__(
        self,
        r_in: Optional[float] = None,
        z_min: Optional[float] = None,
        z_max: Optional[float] = None,
        height: Optional[float] = None,
        z_planes: Optional[int] = None,
        kinematics: Optional[Kinematics] = None,
        event_bus: Optional["EventBus"] = None,
    ):
        self.kinematics = kinematics
        self.event_bus = event_bus
        self.rebuild(r_in=r_in, z_min=z_min, z_max=z_max, height=height, z_planes=z_planes)

    @classmethod
    def from_config(cls, config: "AppConfig", **kwargs) -> "DeltaMesh":
        """Build from the ``mesh.*`` keys of an :class:`AppConfig`."""
        return cls(**config.mesh_params(), **kwargs)

    @classmethod
    def from_record(cls, record: Union[str, bytes, dict], strict: bool = False,
                    **kwargs) -> "DeltaMesh":
        record = serialization.parse_record(record)
        mesh = cls(**serialization.geometry_args(record), **kwargs)
        serialization.import_into(mesh, record, strict=strict, rebuild=False)
        return mesh

    def rebuild(self, r_in: Optional[float] = None, z_min: Optional[float] = None,
                z_max: Optional[float] = None, height: Optional[float] = None,
                z_planes: Optional[int] = None) -> None:
        """Discard all vertices and properties and refine a fresh mesh."""
        self.geometry = MeshGeometry.resolve(
            r_in=r_in, z_min=z_min, z_max=z_max, height=height, z_planes=z_planes,
        )
        refiner = Refiner(self.geometry)
        refiner.refine_z_planes(self.geometry.z_planes)
        self.root: Tetrahedron = refiner.root
        self.vertex_map: dict[VertexKey, Vertex] = refiner.vertex_map
        self.level_tetras = refiner.level_tetras
        self.rebuild_caches()
        logger.debug("Built mesh rIn=%.3f z=[%.3f, %.3f] planes=%d: %d vertices, %d refinements",
                     self.r_in, self.z_min, self.z_max, self.z_planes,
                     len(self.vertex_map), refiner.n_refine)
        if self.kinematics is not None:
            z_offset = micro_step_z_offset(self.kinematics)
            self.digitize_z_plane(0, z_offset=z_offset)
            for plane in range(1, self.z_plane_count):
                self.digitize_z_plane(plane)

    def adopt(self, other: "DeltaMesh") -> None:
        """Take over the geometry, cells and vertices of *other*."""
        self.geometry = other.geometry
        self.root = other.root
        self.vertex_map = other.vertex_map
        self.level_tetras = other.level_tetras
        self.rebuild_caches()

    def rebuild_caches(self) -> None:
        """Group vertices into planes and index each plane's lattice.

        Grouping uses nominal coordinates, so it is unaffected by digitize.
        """
        groups: dict[int, list[Vertex]] = defaultdict(list)
        for key, v in self.vertex_map.items():
            groups[key[2]].append(v)
        z_keys = sorted(groups)
        self._plane_vertices: list[list[Vertex]] = [groups[k] for k in z_keys]
        self._plane_z = np.array([g[0].nominal.z for g in self._plane_vertices], dtype=np.float64)
        self._vertex_plane: dict[Vertex, int] = {
            v: i for i, group in enumerate(self._plane_vertices) for v in group
        }
        self._zplanes = [ZPlane(i, group) for i, group in enumerate(self._plane_vertices)]

    # --- Parameters ---

    @property
    def r_in(self) -> float:
        return self.geometry.r_in

    @property
    def r_out(self) -> float:
        return self.geometry.r_out

    @property
    def z_min(self) -> float:
        return self.geometry.z_min

    @property
    def z_max(self) -> float:
        return self.geometry.z_max

    @property
    def height(self) -> float:
        return self.geometry.height

    @property
    def z_planes(self) -> int:
        return self.geometry.z_planes

    @property
    def vertex_separation(self) -> float:
        return self.geometry.vertex_separation

    @property
    def vertices(self) -> list[Vertex]:
        return list(self.vertex_map.values())

    def emit(self, event: str, data: dict) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(event, data)

    # --- Planes ---

    @property
    def z_plane_count(self) -> int:
        return len(self._plane_vertices)

    @property
    def top_plane(self) -> int:
        return self.z_plane_count - 1

    def z_plane_index(self, z: float) -> int:
        """Index of the plane nominally nearest to *z*."""
        return int(np.argmin(np.abs(self._plane_z - float(z))))

    def z_plane_z(self, plane: int) -> Optional[float]:
        if not 0 <= plane < self.z_plane_count:
            return None
        return float(self._plane_z[plane])

    def z_plane_height(self, plane: int) -> float:
        """Nominal distance from *plane* to the plane above, 0 for the top."""
        if not 0 <= plane < self.z_plane_count - 1:
            return 0.0
        return float(self._plane_z[plane + 1] - self._plane_z[plane])

    def z_plane(self, plane: int) -> Optional[ZPlane]:
        if not 0 <= plane < self.z_plane_count:
            return None
        return self._zplanes[plane]

    def z_floor(self, z: float, level: int) -> Optional[float]:
        """Lower bound of *z* after *level* bisections of [z_min, z_max]."""
        if z < self.z_min or self.z_max < z:
            return None
        z_ceil = self.z_max
        z_floor = self.z_min
        for _ in range(level):
            z_avg = (z_ceil + z_floor) / 2
            if z < z_avg:
                z_ceil = z_avg
            else:
                z_floor = z_avg
        return z_floor

    def z_plane_vertices(self, plane: Optional[int] = None, max_level: Optional[int] = None,
                         include_external: bool = False, roi: Any = None,
                         sort: Union[str, Sequence[str], None] = None) -> list[Vertex]:
        """Vertices of a plane (default: the top one), filtered and optionally sorted.

        Args:
            plane: Plane index counted from the bottom.
            max_level: Only vertices created at this refinement level or coarser.
            include_external: Also return vertices outside the usable reach.
            roi: ``RegionOfInterest`` or its dict form.
            sort: Comma separated keys such as ``"x,y"``; ``x``, ``y``, ``z``
                and ``level`` sort by geometry, other keys by property value.
        """
        plane = self.top_plane if plane is None else plane
        if not 0 <= plane < self.z_plane_count:
            return []
        max_level = self.z_planes - 1 if max_level is None else min(self.z_planes - 1, max_level)
        roi = RegionOfInterest.of(roi)
        result = [
            v for v in self._plane_vertices[plane]
            if v.level <= max_level
            and (include_external or not v.external)
            and (roi is None or roi.contains(v))
        ]
        if sort:
            keys = sort.split(",") if isinstance(sort, str) else list(sort)
            result.sort(key=lambda v: tuple(_sort_value(v, k.strip()) for k in keys))
        return result

    def vertex_at_xyz(self, xyz: Any, max_level: Optional[int] = None,
                      include_external: bool = False, roi: Any = None) -> Optional[Vertex]:
        """Vertex nearest in x/y to *xyz* on the plane nearest in z."""
        xyz = XYZ.of(xyz)
        candidates = self.z_plane_vertices(
            self.z_plane_index(xyz.z), max_level=max_level,
            include_external=include_external, roi=roi,
        )
        if not candidates:
            return None
        return min(candidates, key=lambda v: (v.x - xyz.x) ** 2 + (v.y - xyz.y) ** 2)

    def xy_neighbor(self, vertex: Optional[Vertex], direction: int,
                    max_level: Optional[int] = None, include_external: bool = False,
                    roi: Any = None) -> Optional[Vertex]:
        """Vertex one lattice step from *vertex* at ``direction * 60`` degrees.

        ``None`` at the edge of the plane or when the neighbor is filtered out.
        """
        if vertex is None or not isinstance(direction, Integral) or isinstance(direction, bool):
            return None
        plane = self._vertex_plane.get(vertex)
        if plane is None:
            return None
        zplane = self._zplanes[plane]
        rc = zplane.neighbor_rc(vertex, direction)
        neighbor = None if rc is None else zplane.vertex_at_rc(*rc)
        if neighbor is None or neighbor is vertex:
            return None
        if max_level is not None and neighbor.level > min(self.z_planes - 1, max_level):
            return None
        if neighbor.external and not include_external:
            return None
        if not self.is_vertex_roi(neighbor, roi):
            return None
        return neighbor

    def lattice_id(self, vertex: Vertex) -> Optional[str]:
        """Stable ``z<plane>r<row>c<col>`` name of a vertex."""
        plane = self._vertex_plane.get(vertex)
        if plane is None:
            return None
        row, col = self._zplanes[plane].rc(vertex)
        return "z%dr%dc%d" % (plane, row, col)

    # --- Tetrahedra ---

    def tetra_at_xyz(self, xyz: Any, level: Optional[int] = None) -> Tetrahedron:
        """Smallest tetrahedron containing *xyz*, at most *level* refinements deep.

        Returns the root for points outside the mesh.
        """
        level = self.z_planes - 2 if level is None else level
        xyz = XYZ.of(xyz)
        if xyz.z == self.z_min:
            xyz = XYZ(xyz.x, xyz.y, xyz.z + Z_MIN_EPSILON)
        tetra = self.root
        if not tetra.contains(xyz):
            return tetra
        for _ in range(level):
            child = next((t for t in tetra.children() if t.contains(xyz)), None)
            if child is None:
                break
            tetra = child
        return tetra

    def tetra_at_coord(self, coord: Coord, tetra: Optional[Tetrahedron] = None) -> Optional[Tetrahedron]:
        """Tetrahedron addressed by *coord*, relative to *tetra* if given.

        An absolute coord starts with the root digit ``0``. Paths through
        pruned or unrefined cells give ``None``.
        """
        try:
            path = [int(c) for c in coord]
        except (TypeError, ValueError):
            return None
        if not path:
            return tetra
        if tetra is None:
            if path[0] != 0:
                return None
            tetra, path = self.root, path[1:]
        for index in path:
            if tetra.partitions is None or not 0 <= index < len(tetra.partitions):
                return None
            tetra = tetra.partitions[index]
            if tetra is None:
                return None
        return tetra

    def sub_tetras(self, parent: Optional[Tetrahedron] = None) -> list[Tetrahedron]:
        """All descendants of *parent* (default root), depth first."""
        result: list[Tetrahedron] = []
        stack = list(reversed((parent or self.root).children()))
        while stack:
            tetra = stack.pop()
            result.append(tetra)
            stack.extend(reversed(tetra.children()))
        return result

    def leaves(self) -> Iterable[Tetrahedron]:
        if self.root.is_leaf:
            yield self.root
            return
        stack = [self.root]
        while stack:
            tetra = stack.pop()
            for child in tetra.children():
                if child.is_leaf:
                    yield child
                else:
                    stack.append(child)

    def interpolator_at_xyz(self, xyz: Any, name: str) -> Optional[Tetrahedron]:
        """Deepest tetrahedron containing *xyz* whose four vertices all hold *name*."""
        xyz = XYZ.of(xyz)
        if self.root.contains(xyz):
            found = self._interpolator_below(self.root, xyz, name)
            if found is not None:
                return found
        return self.root if self.root.interpolates(name) else None

    def _interpolator_below(self, tetra: Tetrahedron, xyz: XYZ, name: str) -> Optional[Tetrahedron]:
        for child in reversed(tetra.children()):
            if not child.contains(xyz):
                continue
            found = self._interpolator_below(child, xyz, name)
            if found is None and child.interpolates(name):
                found = child
            if found is not None:
                return found
        return None

    def interpolate(self, xyz: Any, name: str) -> Optional[float]:
        xyz = XYZ.of(xyz)
        tetra = self.interpolator_at_xyz(xyz, name)
        if tetra is None:
            logger.debug("No interpolator for %r at %r", name, xyz)
            return None
        return tetra.interpolate(xyz, name)

    def tetras_containing_xyz(self, xyz: Any) -> list[Tetrahedron]:
        """Every tetrahedron containing *xyz*, parents before children."""
        xyz = XYZ.of(xyz)
        result = [self.root] if self.root.contains(xyz) else []

        def traverse(tetra: Tetrahedron) -> None:
            for child in reversed(tetra.children()):
                if child.contains(xyz):
                    result.append(child)
                    traverse(child)

        traverse(self.root)
        return result

    def tetras_at_vertex(self, vertex: Vertex) -> list[Tetrahedron]:
        """Every tetrahedron having *vertex* as a corner, parents before children."""
        result: list[Tetrahedron] = []

        def traverse(tetra: Tetrahedron) -> None:
            if any(v is vertex for v in tetra.vertices):
                result.append(tetra)
            for child in reversed(tetra.children()):
                traverse(child)

        traverse(self.root)
        return result

    def tetras_in_roi(self, roi: Any) -> list[Tetrahedron]:
        """Leaf tetrahedra with a vertex in *roi*, and entirely below its ``zMax``."""
        roi = RegionOfInterest.of(roi)
        if self.root.is_leaf:
            return [self.root] if self.is_tetra_roi(self.root, roi) else []
        result: list[Tetrahedron] = []

        def traverse(tetra: Tetrahedron) -> None:
            for child in reversed(tetra.children()):
                if not child.is_leaf:
                    traverse(child)
                elif self.is_tetra_roi(child, roi):
                    result.append(child)

        traverse(self.root)
        return result

    def classify_tetras(self) -> TetraClassification:
        """Split leaves spanning planes 0 and 1 by how many vertices lie on each."""
        result = TetraClassification()
        if self.z_plane_count < 2:
            return result
        z0 = self.z_plane_z(0)
        z1 = self.z_plane_z(1)
        dz = (z1 - z0) / 3
        z0_max = z0 + dz
        z1_max = z1 + dz
        for tetra in self.leaves():
            n0 = n1 = 0
            for v in tetra.vertices:
                if v.z < z0_max:
                    n0 += 1
                elif v.z < z1_max:
                    n1 += 1
                else:
                    break
            else:
                if (n0, n1) == (3, 1):
                    result.t0001.append(tetra)
                elif (n0, n1) == (1, 3):
                    result.t0111.append(tetra)
                elif (n0, n1) == (2, 2):
                    result.t0011.append(tetra)
        return result

    @staticmethod
    def is_vertex_roi(vertex: Optional[XYZ], roi: Any) -> bool:
        if vertex is None:
            return False
        roi = RegionOfInterest.of(roi)
        return roi is None or roi.contains(vertex)

    @staticmethod
    def is_tetra_roi(tetra: Tetrahedron, roi: Any) -> bool:
        roi = RegionOfInterest.of(roi)
        if not any(DeltaMesh.is_vertex_roi(v, roi) for v in tetra.vertices):
            return False
        if roi is not None and roi.z_max is not None:
            return all(v.z <= roi.z_max for v in tetra.vertices)
        return True

    # --- Calibration ---

    def mend_z_plane(self, plane: int, name: str, scale: Optional[float] = None,
                     **filters) -> MendResult:
        return calibration.mend_z_plane(self, plane, name, scale=scale, **filters)

    def digitize_z_plane(self, plane: Optional[int] = None, z_offset: float = 0.0) -> DigitizeResult:
        return calibration.digitize_z_plane(self, plane, z_offset=z_offset)

    def perspective_ratio(self, vertex: Vertex, name: str) -> Optional[float]:
        return calibration.perspective_ratio(self, vertex, name)

    # --- Serialization ---

    def export(self, tolerance: float = serialization.DEFAULT_TOLERANCE) -> dict:
        return serialization.export_mesh(self, tolerance=tolerance)

    def import_record(self, record: Union[str, bytes, dict], strict: bool = False,
                      snap_distance: Optional[float] = None) -> ImportResult:
        return serialization.import_into(self, record, strict=strict, snap_distance=snap_distance)

    def summary(self) -> MeshSummary:
        return MeshSummary(
            r_in=self.r_in,
            z_min=self.z_min,
            z_max=self.z_max,
            height=self.height,
            z_planes=self.z_planes,
            vertex_separation=self.vertex_separation,
            n_vertices=len(self.vertex_map),
            n_tetras=len(self.sub_tetras()) + 1,
            plane_counts=[len(self.z_plane_vertices(i)) for i in range(self.z_plane_count)],
        )

    def __repr__(self) -> str:
        return "DeltaMesh(r_in=%r, z_min=%r, z_max=%r, z_planes=%r)" % (
            self.r_in, self.z_min, self.z_max, self.z_planes)


def _sort_value(vertex: Vertex, key: str) -> float:
    if key in ("x", "y", "z"):
        return getattr(vertex, key)
    if key in ("l", "level"):
        return vertex.level
    return vertex.props.get(key, float("inf"))
