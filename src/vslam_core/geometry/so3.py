"""Small SO(3) / SE(3) helpers shared by the aligners.

The incremental pose update used by the Gauss-Newton solvers is a 6-vector
``[tx, ty, tz, qx, qy, qz]``. The rotational part is the imaginary part of
a unit quaternion, which is why the rotation blocks of the aligner
Jacobians read ``-2 * skew(p)``: for small ``q`` the rotation is
approximately ``I + 2 * skew(q)``.
"""

from __future__ import annotations

import cv2
import numpy as np

from .pose import SE3


def skew(v: np.ndarray) -> np.ndarray:
    """Return the skew-symmetric matrix of a 3-vector.

    ``skew(a) @ b`` equals ``np.cross(a, b)``.
    """
    x, y, z = np.asarray(v, dtype=np.float64).flatten()
    return np.array(
        [[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]],
        dtype=np.float64,
    )


def exp_so3(omega: np.ndarray) -> np.ndarray:
    """Exponential map from a rotation vector to a rotation matrix."""
    R, _ = cv2.Rodrigues(np.asarray(omega, dtype=np.float64).reshape(3, 1))
    return R


def retract(dx: np.ndarray) -> SE3:
    """Map an incremental update ``[t; q]`` onto SE(3).

    The translation is taken as is. ``q`` is the imaginary part of a unit
    quaternion ``(sqrt(1 - |q|^2), q)``, converted through the exponential
    map as the rotation vector ``2 * asin(|q|) * q / |q|``.

    Args:
        dx: 6-vector increment

    Returns:
        Incremental transform, to be applied on the left of an estimate
    """
    dx = np.asarray(dx, dtype=np.float64).flatten()
    if dx.shape != (6,):
        raise ValueError(f"Increment must be (6,), got {dx.shape}")

    q = dx[3:]
    norm = float(np.linalg.norm(q))
    if norm < 1e-12:
        rotation = np.eye(3)
    else:
        angle = 2.0 * np.arcsin(min(norm, 1.0))
        rotation = exp_so3(q / norm * angle)

    return SE3(rotation=rotation, translation=dx[:3])


def orthonormalize(R: np.ndarray) -> np.ndarray:
    """First-order correction pulling a drifted rotation back onto SO(3).

    Computes ``R - 0.5 * R @ (R^T @ R - I)``.
    """
    R = np.asarray(R, dtype=np.float64)
    rotation_squared = R.T @ R
    rotation_squared -= np.eye(3)
    return R - 0.5 * R @ rotation_squared


def rotation_angle(R: np.ndarray) -> float:
    """Extract rotation angle from a 3x3 rotation matrix.

    Uses the trace formula: trace(R) = 1 + 2*cos(theta)

    Args:
        R: 3x3 rotation matrix

    Returns:
        Rotation angle in radians [0, pi]
    """
    trace = np.trace(R)
    # Clamp for numerical stability
    cos_theta = np.clip((trace - 1) / 2, -1.0, 1.0)
    return float(np.arccos(cos_theta))
