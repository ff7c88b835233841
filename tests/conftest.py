"""Shared fixtures: a stepped linear-delta kinematics model."""
from __future__ import annotations

import math
from typing import Optional

import numpy as np
import pytest

from delta_calibrator.geometry.xyz import XYZ
from delta_calibrator.mesh.kinematics import Pulses


class SteppedDelta:
    """Linear delta with towers at 210/330/90 degrees and integer step counts.

    Carriage height of tower i for an effector at (x, y, z) is
    ``z + sqrt(L^2 - dx^2 - dy^2)``; the forward transform trilaterates the
    three carriage positions.
    """

    def __init__(self, tower_radius: float = 220.0, arm_length: float = 450.0,
                 steps_per_mm: float = 80.0, print_radius: float = 200.0):
        self.arm_length = arm_length
        self.steps_per_mm = steps_per_mm
        self.print_radius = print_radius
        angles = [math.radians(a) for a in (210.0, 330.0, 90.0)]
        self.towers = np.array([[tower_radius * math.cos(a), tower_radius * math.sin(a)]
                                for a in angles])

    def calc_pulses(self, xyz) -> Optional[Pulses]:
        if xyz.x * xyz.x + xyz.y * xyz.y > self.print_radius ** 2:
            return None
        d2 = (self.towers[:, 0] - xyz.x) ** 2 + (self.towers[:, 1] - xyz.y) ** 2
        arm2 = self.arm_length ** 2
        if np.any(d2 >= arm2):
            return None
        heights = xyz.z + np.sqrt(arm2 - d2)
        p1, p2, p3 = (int(round(h * self.steps_per_mm)) for h in heights)
        return Pulses(p1, p2, p3)

    def calc_xyz(self, pulses: Pulses) -> XYZ:
        h = np.array([pulses.p1, pulses.p2, pulses.p3], dtype=float) / self.steps_per_mm
        p = [np.array([self.towers[i, 0], self.towers[i, 1], h[i]]) for i in range(3)]
        s21 = p[1] - p[0]
        s31 = p[2] - p[0]
        d = np.linalg.norm(s21)
        ex = s21 / d
        i = float(np.dot(ex, s31))
        ey = s31 - ex * i
        ey = ey / np.linalg.norm(ey)
        ez = np.cross(ex, ey)
        j = float(np.dot(ey, s31))
        r2 = self.arm_length ** 2
        x = d / 2
        y = (i * i + j * j) / (2 * j) - x * i / j
        z = -math.sqrt(r2 - x * x - y * y)
        pos = p[0] + ex * x + ey * y + ez * z
        return XYZ(float(pos[0]), float(pos[1]), float(pos[2]))


@pytest.fixture
def delta_kinematics():
    return SteppedDelta()


@pytest.fixture
def make_kinematics():
    def factory(**kwargs):
        return SteppedDelta(**kwargs)
    return factory
