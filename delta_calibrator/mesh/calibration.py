"""Calibration passes over a z-plane: mend (gap fill) and digitize (snap)."""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from delta_calibrator.core.models import DigitizeResult, MendResult
from delta_calibrator.geometry.xyz import XYZ, Vertex
from delta_calibrator.mesh.serialization import round_to_scale

if TYPE_CHECKING:
    from delta_calibrator.mesh.delta_mesh import DeltaMesh

logger = logging.getLogger(__name__)


def _mend_balanced(mesh: "DeltaMesh", vertices: list[Vertex], name: str,
                   patched: list, scale: Optional[float], filters: dict) -> tuple[int, int]:
    """Fill holes from opposite neighbor pairs that both hold *name*."""
    n_holes = 0
    n_patched = 0
    for v in reversed(vertices):
        if v.has(name):
            continue
        neighbors = [mesh.xy_neighbor(v, d, **filters) for d in range(6)]
        total = 0.0
        count = 0
        for d in range(3):
            a, b = neighbors[d], neighbors[d + 3]
            if a is not None and b is not None and a.has(name) and b.has(name):
                total += a.props[name] + b.props[name]
                count += 2
        if count:
            value = total / count
            v.set(name, value if scale is None else round_to_scale(value, scale))
            patched.append(v)
            n_patched += 1
        else:
            n_holes += 1
    return n_holes, n_patched


def _mend_averaged(mesh: "DeltaMesh", vertices: list[Vertex], name: str,
                   patched: list, filters: dict) -> tuple[int, int]:
    """Fill holes from whichever of the six neighbors hold *name*."""
    n_holes = 0
    n_patched = 0
    for v in reversed(vertices):
        if v.has(name):
            continue
        values = []
        for d in range(6):
            w = mesh.xy_neighbor(v, d, **filters)
            if w is not None and w.has(name):
                values.append(w.props[name])
        if values:
            v.set(name, sum(values) / len(values))
            patched.append(v)
            n_patched += 1
        else:
            n_holes += 1
    return n_holes, n_patched


def mend_z_plane(mesh: "DeltaMesh", plane: int, name: str, scale: Optional[float] = None,
                 max_level: Optional[int] = None, include_external: bool = False,
                 roi=None) -> MendResult:
    """Fill missing values of *name* on a plane by averaging lattice neighbors.

    Balanced opposite pairs are used first, repeatedly, until no further
    vertex can be patched that way. Any remaining holes are then filled
    from any available neighbors, again to a fixpoint. Vertices without a
    single neighbor holding the value stay holes.

    Args:
        mesh: Mesh to mend in place.
        plane: Plane index.
        name: Property name.
        scale: If given, balanced averages are rounded to ``1/scale``.
        max_level, include_external, roi: Vertex filters, applied to the
            plane and to neighbor lookups alike.
    """
    filters = {"max_level": max_level, "include_external": include_external, "roi": roi}
    vertices = mesh.z_plane_vertices(plane, **filters)
    patched: list[Vertex] = []

    n_holes, n_patched = _mend_balanced(mesh, vertices, name, patched, scale, filters)
    while n_holes and n_patched:
        n_holes, n_patched = _mend_balanced(mesh, vertices, name, patched, scale, filters)
    if n_holes:
        n_holes, n_patched = _mend_averaged(mesh, vertices, name, patched, filters)
        while n_holes and n_patched:
            n_holes, n_patched = _mend_averaged(mesh, vertices, name, patched, filters)

    result = MendResult(patched=patched, holes=n_holes)
    logger.info("Mended %r on plane %d: %d patched, %d holes", name, plane, result.n_patched, n_holes)
    mesh.emit("mesh.mended", {"plane": plane, "prop": name, **result.to_dict()})
    return result


def digitize_z_plane(mesh: "DeltaMesh", plane: Optional[int] = None,
                     z_offset: float = 0.0) -> DigitizeResult:
    """Snap non-external vertices of a plane to positions the machine reaches.

    Each vertex is converted to pulses at ``z + z_offset`` and moved to the
    position those pulses actually produce. Unreachable vertices are flagged
    external instead.
    """
    if mesh.kinematics is None:
        raise ValueError("digitize requires a kinematics transform")
    plane = mesh.top_plane if plane is None else plane
    if not 0 <= plane < mesh.z_plane_count:
        raise ValueError("plane %s is outside 0..%d" % (plane, mesh.z_plane_count - 1))

    result = DigitizeResult(plane=plane, z_offset=z_offset)
    for v in mesh.z_plane_vertices(plane):
        pulses = mesh.kinematics.calc_pulses(XYZ(v.x, v.y, v.z + z_offset))
        if pulses is None:
            v.external = True
            result.external += 1
        else:
            v.move_to(mesh.kinematics.calc_xyz(pulses))
            result.digitized += 1
    logger.info("Digitized plane %d: %d snapped, %d unreachable (z offset %.6f)",
                plane, result.digitized, result.external, z_offset)
    mesh.emit("mesh.digitized", result.to_dict())
    return result


def perspective_ratio(mesh: "DeltaMesh", vertex: Vertex, name: str) -> Optional[float]:
    """Change in z per change in *name* between the vertex and the adjacent plane.

    The adjacent plane is the one below, or plane 1 for a vertex on plane 0.
    Returns ``None`` when either value is missing or they are equal.
    """
    value1 = vertex.get(name)
    if value1 is None:
        return None
    z1 = vertex.z
    plane1 = mesh.z_plane_index(z1)
    plane2 = 1 if plane1 == 0 else plane1 - 1
    z2 = mesh.z_plane_z(plane2)
    if z2 is None:
        return None
    value2 = mesh.interpolate(XYZ(vertex.x, vertex.y, z2), name)
    if value2 is None or value1 == value2:
        return None
    return (z1 - z2) / (value1 - value2)
