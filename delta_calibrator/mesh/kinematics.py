"""Kinematics transform consumed by the digitize pass.

The mesh never implements machine kinematics. A controller supplies an
object that converts between Cartesian positions and actuator pulses.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from delta_calibrator.geometry.xyz import XYZ


@dataclass(frozen=True)
class Pulses:
    """Step counts of the three delta towers."""

    p1: int
    p2: int
    p3: int

    def __add__(self, other: "Pulses") -> "Pulses":
        return Pulses(self.p1 + other.p1, self.p2 + other.p2, self.p3 + other.p3)

    def __sub__(self, other: "Pulses") -> "Pulses":
        return Pulses(self.p1 - other.p1, self.p2 - other.p2, self.p3 - other.p3)

    def to_dict(self) -> dict:
        return {"p1": self.p1, "p2": self.p2, "p3": self.p3}


@runtime_checkable
class Kinematics(Protocol):
    def calc_pulses(self, xyz: XYZ) -> Optional[Pulses]:
        """Pulses that reach *xyz*, or ``None`` if it is mechanically unreachable."""
        ...

    def calc_xyz(self, pulses: Pulses) -> XYZ:
        """Position the machine actually reaches at *pulses*."""
        ...


def micro_step_z_offset(kinematics: Kinematics, steps: int = 2) -> float:
    """Z change from moving every tower *steps* pulses downward at the origin.

    Used to digitize the lowest plane a hair below its nominal height so
    that step rounding never lifts it.
    """
    p0 = kinematics.calc_pulses(XYZ(0.0, 0.0, 0.0))
    p1 = kinematics.calc_pulses(XYZ(0.0, 0.0, -1.0))
    if p0 is None or p1 is None:
        raise ValueError("kinematics cannot reach the z axis near the origin")
    dp = p1 - p0
    largest = max(abs(dp.p1), abs(dp.p2), abs(dp.p3))
    if largest == 0:
        return 0.0
    scale = steps / largest
    delta = Pulses(round(dp.p1 * scale), round(dp.p2 * scale), round(dp.p3 * scale))
    return kinematics.calc_xyz(p0 + delta).z - kinematics.calc_xyz(p0).z
