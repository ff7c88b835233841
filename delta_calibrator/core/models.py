"""Core data models for DeltaMeshCalibrator."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field, asdict
from typing import Any, Optional

logger = logging.getLogger(__name__)


class RoiType(enum.Enum):
    RECT = "rect"


class DataMismatchError(ValueError):
    """Serialized calibration data does not fit the mesh it is imported into."""

    def __init__(self, message: str, records: Optional[list] = None):
        super().__init__(message)
        self.records = records or []


@dataclass(frozen=True)
class RegionOfInterest:
    """Axis-aligned rectangle centred on (cx, cy), edges inclusive.

    ``z_max`` optionally bounds the height as well. A region of any type other
    than ``"rect"`` does not filter; a malformed region matches nothing.
    """

    cx: float = 0.0
    cy: float = 0.0
    width: float = 0.0
    height: float = 0.0
    z_max: Optional[float] = None
    type: str = RoiType.RECT.value
    malformed: bool = False

    @classmethod
    def of(cls, roi: Any) -> Optional["RegionOfInterest"]:
        """Coerce ``{type, cx, cy, width, height, zMax?}`` or pass through."""
        if roi is None or isinstance(roi, RegionOfInterest):
            return roi
        if not isinstance(roi, dict):
            logger.debug("Ignoring malformed ROI %r", roi)
            return cls(malformed=True)
        roi_type = roi.get("type", RoiType.RECT.value)
        if roi_type != RoiType.RECT.value:
            return cls(type=str(roi_type))
        z_max = roi.get("zMax", roi.get("z_max"))
        try:
            return cls(
                cx=float(roi["cx"]),
                cy=float(roi["cy"]),
                width=float(roi["width"]),
                height=float(roi["height"]),
                z_max=None if z_max is None else float(z_max),
            )
        except (KeyError, TypeError, ValueError):
            logger.debug("Ignoring malformed ROI %r", roi)
            return cls(malformed=True)

    @property
    def left(self) -> float:
        return self.cx - self.width / 2

    @property
    def top(self) -> float:
        return self.cy - self.height / 2

    def contains(self, xyz: Any) -> bool:
        if self.malformed:
            return False
        if self.type != RoiType.RECT.value:
            return True
        if xyz.x < self.left or self.left + self.width < xyz.x:
            return False
        if xyz.y < self.top or self.top + self.height < xyz.y:
            return False
        if self.z_max is not None and self.z_max < xyz.z:
            return False
        return True

    def to_dict(self) -> dict:
        d = {"type": self.type, "cx": self.cx, "cy": self.cy,
             "width": self.width, "height": self.height}
        if self.z_max is not None:
            d["zMax"] = self.z_max
        return d


@dataclass
class MendResult:
    patched: list = field(default_factory=list)
    holes: int = 0

    @property
    def n_patched(self) -> int:
        return len(self.patched)

    def to_dict(self) -> dict:
        return {"patched": self.n_patched, "holes": self.holes}


@dataclass
class DigitizeResult:
    plane: int
    digitized: int = 0
    external: int = 0
    z_offset: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ImportResult:
    matched: int = 0
    assigned: int = 0
    skipped: list = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.skipped

    def to_dict(self) -> dict:
        return {"matched": self.matched, "assigned": self.assigned, "skipped": len(self.skipped)}


@dataclass
class TetraClassification:
    """Leaf tetrahedra spanning the two lowest planes, by vertex split.

    ``t0001`` has three vertices on plane 0 and one on plane 1, ``t0111``
    one on plane 0 and three on plane 1, ``t0011`` two on each.
    """

    t0001: list = field(default_factory=list)
    t0111: list = field(default_factory=list)
    t0011: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"t0001": len(self.t0001), "t0111": len(self.t0111), "t0011": len(self.t0011)}


@dataclass
class MeshSummary:
    r_in: float
    z_min: float
    z_max: float
    height: float
    z_planes: int
    vertex_separation: float
    n_vertices: int
    n_tetras: int
    plane_counts: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)
