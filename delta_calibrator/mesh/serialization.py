"""Export and import of the sparse calibration record.

Record layout::

    {"type": "DeltaMesh", "rIn": ..., "height": ..., "zPlanes": ...,
     "zMin": ..., "zMax": ..., "data": [{"x": ..., "y": ..., "z": ..., <props>}, ...]}

``data`` holds one entry per vertex that carries at least one property.
"""
from __future__ import annotations

import json
import logging
import math
from numbers import Real
from typing import TYPE_CHECKING, Any, Optional, Union

from delta_calibrator.core.models import DataMismatchError, ImportResult
from delta_calibrator.geometry.xyz import XYZ, Vertex

if TYPE_CHECKING:
    from delta_calibrator.mesh.delta_mesh import DeltaMesh

logger = logging.getLogger(__name__)

RECORD_TYPE = "DeltaMesh"
DEFAULT_TOLERANCE = 1e-4
COORD_KEYS = ("x", "y", "z")


def round_to_scale(value: float, scale: float) -> float:
    """Round half up to the nearest ``1/scale``."""
    return math.floor(value * scale + 0.5) / scale


def geometry_args(record: dict) -> dict:
    """Mesh constructor arguments stored in a record."""
    return {
        "r_in": record.get("rIn"),
        "z_min": record.get("zMin"),
        "z_max": record.get("zMax"),
        "height": record.get("height"),
        "z_planes": record.get("zPlanes"),
    }


def parse_record(record: Union[str, bytes, dict]) -> dict:
    if isinstance(record, (str, bytes)):
        record = json.loads(record)
    if not isinstance(record, dict):
        raise DataMismatchError("mesh record must be an object, got %s" % type(record).__name__)
    return record


def export_mesh(mesh: "DeltaMesh", tolerance: float = DEFAULT_TOLERANCE) -> dict:
    """Sparse record of every vertex property, coordinates rounded to *tolerance*."""
    scale = 1.0 / (tolerance or DEFAULT_TOLERANCE)
    data = []
    for plane in range(mesh.z_plane_count):
        for v in mesh.z_plane_vertices(plane, include_external=True):
            if not v.props:
                continue
            entry: dict[str, Any] = dict(v.props)
            entry["x"] = round_to_scale(v.x, scale)
            entry["y"] = round_to_scale(v.y, scale)
            entry["z"] = round_to_scale(v.z, scale)
            data.append(entry)
    return {
        "type": RECORD_TYPE,
        "rIn": mesh.r_in,
        "height": mesh.height,
        "zPlanes": mesh.z_planes,
        "zMin": mesh.z_min,
        "zMax": mesh.z_max,
        "data": data,
    }


def _entry_xyz(entry: Any) -> Optional[XYZ]:
    if not isinstance(entry, dict):
        return None
    coords = [entry.get(k) for k in COORD_KEYS]
    if not all(isinstance(c, Real) and not isinstance(c, bool) for c in coords):
        return None
    return XYZ(float(coords[0]), float(coords[1]), float(coords[2]))


def match_vertex(mesh: "DeltaMesh", xyz: XYZ, snap_distance: float) -> Optional[Vertex]:
    """Nearest vertex (external included) on the nearest plane, within *snap_distance*."""
    v = mesh.vertex_at_xyz(xyz, include_external=True)
    if v is None or v.distance_squared(xyz) > snap_distance * snap_distance:
        return None
    return v


def import_into(mesh: "DeltaMesh", record: Union[str, bytes, dict], strict: bool = False,
                snap_distance: Optional[float] = None, rebuild: bool = True) -> ImportResult:
    """Rebuild *mesh* from the record geometry and assign its properties.

    The record is matched against a freshly built mesh which *mesh* adopts
    only once matching succeeds. Properties a vertex already holds are left
    alone. Entries that match no vertex fail the whole import when *strict*,
    leaving *mesh* untouched; otherwise they are logged and skipped.
    """
    record = parse_record(record)
    record_type = record.get("type", RECORD_TYPE)
    if record_type != RECORD_TYPE:
        msg = "record type %r is not %r" % (record_type, RECORD_TYPE)
        if strict:
            raise DataMismatchError(msg)
        logger.warning("Importing anyway: %s", msg)
    target = mesh
    if rebuild:
        target = type(mesh)(**geometry_args(record), kinematics=mesh.kinematics)
    snap = target.vertex_separation / 2 if snap_distance is None else snap_distance

    data = record.get("data") or []
    matches = []
    result = ImportResult()
    for entry in data:
        xyz = _entry_xyz(entry)
        v = None if xyz is None else match_vertex(target, xyz, snap)
        if v is None:
            result.skipped.append(entry)
        else:
            matches.append((v, entry))

    if result.skipped:
        if strict:
            raise DataMismatchError(
                "%d of %d records match no mesh vertex, first: %s"
                % (len(result.skipped), len(data), json.dumps(result.skipped[0], default=str)),
                records=result.skipped,
            )
        for entry in result.skipped:
            logger.warning("Could not import %s", json.dumps(entry, default=str))

    if target is not mesh:
        mesh.adopt(target)

    for v, entry in matches:
        result.matched += 1
        for name, value in entry.items():
            if name in COORD_KEYS or v.has(name):
                continue
            if not isinstance(value, Real) or isinstance(value, bool):
                logger.warning("Skipping non-numeric property %r=%r", name, value)
                continue
            v.set(name, value)
            result.assigned += 1

    logger.info("Imported %d records (%d properties), skipped %d",
                result.matched, result.assigned, len(result.skipped))
    mesh.emit("mesh.imported", result.to_dict())
    return result
