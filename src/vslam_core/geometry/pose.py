"""Rigid transforms between the robot, camera, world and local map frames."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


@dataclass
class SE3:
    """Rigid body transformation (rotation + translation) in SE(3).

    An ``SE3`` named ``a_to_b`` maps points expressed in frame ``a`` into
    frame ``b``:

        p_b = R @ p_a + t

    Attributes:
        rotation: 3x3 rotation matrix
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3
    translation: np.ndarray  # (3,)

    def __post_init__(self) -> None:
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> SE3:
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Split a 4x4 homogeneous matrix, e.g. a ``T_BS`` extrinsic.

        Raises:
            ValueError: If T is not 4x4
        """
        T = np.asarray(T)
        if T.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4, got {T.shape}")
        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Build a transform from an axis-angle vector and a translation."""
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).flatten())
        return cls(rotation=R, translation=np.asarray(tvec).flatten())

    def to_matrix(self) -> np.ndarray:
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def inverse(self) -> SE3:
        """``a_to_b.inverse()`` is ``b_to_a``."""
        rotation_inverse = self.rotation.T
        return SE3(
            rotation=rotation_inverse,
            translation=-rotation_inverse @ self.translation,
        )

    def compose(self, other: SE3) -> SE3:
        """Chain two transforms: ``b_to_c.compose(a_to_b)`` is ``a_to_c``."""
        return SE3(
            rotation=self.rotation @ other.rotation,
            translation=self.rotation @ other.translation + self.translation,
        )

    def __matmul__(self, other: SE3) -> SE3:
        return self.compose(other)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Map an (N, 3) array of points from the source into the target frame.

        Raises:
            ValueError: If points are not (N, 3)
        """
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)
        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")

        return points @ self.rotation.T + self.translation

    def transform_point(self, point: np.ndarray) -> np.ndarray:
        point = np.asarray(point, dtype=np.float64).flatten()
        return self.rotation @ point + self.translation

    @property
    def position(self) -> np.ndarray:
        """Origin of the source frame, expressed in the target frame."""
        return self.translation.copy()

    def __repr__(self) -> str:
        x, y, z = self.translation
        return f"SE3(position=[{x:.3f}, {y:.3f}, {z:.3f}])"
