"""Cartesian points and mesh-resident vertices.

``XYZ`` is a plain value type. ``Vertex`` is the shared, mutable point owned
by a :class:`~delta_calibrator.mesh.delta_mesh.DeltaMesh`: every tetrahedron
that touches a location references the same ``Vertex`` object, and
calibration data is attached to it as a sparse mapping of named floats.
"""
from __future__ import annotations

import math
from typing import Any, Iterator, Optional


class XYZ:
    """A 3-D point with value semantics."""

    __slots__ = ("x", "y", "z")

    def __init__(self, x: float = 0.0, y: float = 0.0, z: float = 0.0):
        self.x = x
        self.y = y
        self.z = z

    @classmethod
    def of(cls, obj: Any) -> "XYZ":
        """Coerce an XYZ, a mapping with x/y/z keys or a 3-sequence."""
        if isinstance(obj, XYZ):
            return XYZ(obj.x, obj.y, obj.z)
        if isinstance(obj, dict):
            return XYZ(float(obj.get("x", 0.0)), float(obj.get("y", 0.0)), float(obj.get("z", 0.0)))
        if hasattr(obj, "x") and hasattr(obj, "y") and hasattr(obj, "z"):
            return XYZ(obj.x, obj.y, obj.z)
        x, y, z = obj
        return XYZ(float(x), float(y), float(z))

    def interpolate(self, other: "XYZ", p: float = 0.5) -> "XYZ":
        """Point at parameter *p* on the segment self -> other.

        Written as ``p*other + (1-p)*self`` so that midpoints are bit-identical
        regardless of which endpoint is ``self``.
        """
        p1 = 1.0 - p
        return XYZ(
            p * other.x + p1 * self.x,
            p * other.y + p1 * self.y,
            p * other.z + p1 * self.z,
        )

    def distance_squared(self, other: "XYZ") -> float:
        dx = self.x - other.x
        dy = self.y - other.y
        dz = self.z - other.z
        return dx * dx + dy * dy + dz * dz

    def norm(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def nearest(self, a: "XYZ", b: "XYZ") -> "XYZ":
        """Return whichever of *a* and *b* is closer to this point (a on ties)."""
        return a if self.distance_squared(a) <= self.distance_squared(b) else b

    def as_tuple(self) -> tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, XYZ):
            return NotImplemented
        return self.x == other.x and self.y == other.y and self.z == other.z

    def __hash__(self) -> int:
        return hash((self.x, self.y, self.z))

    def __iter__(self) -> Iterator[float]:
        return iter((self.x, self.y, self.z))

    def __repr__(self) -> str:
        return "%s(%r, %r, %r)" % (self.__class__.__name__, self.x, self.y, self.z)


class Vertex(XYZ):
    """Mesh-resident point carrying sparse named calibration properties.

    Identity is by object: two vertices at the same location are only ever
    the same object, so ``==`` falls back to ``is``.
    """

    __slots__ = ("level", "external", "props", "nominal")

    def __init__(self, x: float, y: float, z: float, level: int = 0, external: bool = False):
        super().__init__(x, y, z)
        self.level = level
        self.external = external
        self.props: dict[str, float] = {}
        # Position at construction time; digitize moves x/y/z but never this.
        self.nominal = XYZ(x, y, z)

    def has(self, name: str) -> bool:
        return name in self.props

    def get(self, name: str, default: Optional[float] = None) -> Optional[float]:
        return self.props.get(name, default)

    def set(self, name: str, value: float) -> None:
        self.props[name] = value

    def discard(self, name: str) -> None:
        self.props.pop(name, None)

    def move_to(self, xyz: XYZ) -> None:
        self.x = xyz.x
        self.y = xyz.y
        self.z = xyz.z

    __eq__ = object.__eq__
    __hash__ = object.__hash__

    def __repr__(self) -> str:
        return "Vertex(%.4f, %.4f, %.4f, l=%d%s%s)" % (
            self.x, self.y, self.z, self.level,
            ", external" if self.external else "",
            ", props=%r" % self.props if self.props else "",
        )
