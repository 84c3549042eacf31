"""Rigid transform primitives used by the aligners and the map."""

from .pose import SE3
from .so3 import exp_so3, orthonormalize, retract, rotation_angle, skew

__all__ = [
    "SE3",
    "skew",
    "exp_so3",
    "retract",
    "orthonormalize",
    "rotation_angle",
]
