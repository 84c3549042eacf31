"""Pinhole camera model with robot extrinsics."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import yaml

from ..geometry import SE3


@dataclass
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )


class Camera:
    """Rectified pinhole camera mounted on the robot.

    Consumed read-only by the aligners: intrinsic matrix, image bounds
    and the robot/camera extrinsics.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        image_rows: int,
        image_cols: int,
        camera_to_robot: SE3 | None = None,
    ) -> None:
        """Initialize camera.

        Args:
            intrinsics: Pinhole intrinsics
            image_rows: Image height in pixels
            image_cols: Image width in pixels
            camera_to_robot: Camera pose in the robot frame (identity if None)
        """
        self._intrinsics = intrinsics
        self._camera_matrix = intrinsics.to_matrix()
        self._image_rows = int(image_rows)
        self._image_cols = int(image_cols)
        self._camera_to_robot = camera_to_robot or SE3.identity()
        self._robot_to_camera = self._camera_to_robot.inverse()

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> Camera:
        """Load a camera from an EuRoC-format sensor.yaml.

        Args:
            yaml_path: Path to sensor.yaml file

        Returns:
            Camera with intrinsics, resolution and T_BS extrinsics

        Raises:
            FileNotFoundError: If file doesn't exist
            ValueError: If file format is invalid
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f)

        # Parse intrinsics [fu, fv, cu, cv]
        intrinsics_list = data.get("intrinsics")
        if intrinsics_list is None or len(intrinsics_list) != 4:
            raise ValueError(f"Invalid intrinsics in {yaml_path}")

        intrinsics = CameraIntrinsics(
            fx=float(intrinsics_list[0]),
            fy=float(intrinsics_list[1]),
            cx=float(intrinsics_list[2]),
            cy=float(intrinsics_list[3]),
        )

        resolution = data.get("resolution")
        if resolution is None or len(resolution) != 2:
            raise ValueError(f"Invalid resolution in {yaml_path}")
        width, height = resolution

        # T_BS is the camera-to-body (robot) transform; optional
        T_BS_data = (data.get("T_BS") or {}).get("data")
        if T_BS_data is None:
            camera_to_robot = SE3.identity()
        elif len(T_BS_data) != 16:
            raise ValueError(f"Invalid T_BS transform in {yaml_path}")
        else:
            camera_to_robot = SE3.from_matrix(
                np.array(T_BS_data, dtype=np.float64).reshape(4, 4)
            )

        return cls(
            intrinsics=intrinsics,
            image_rows=height,
            image_cols=width,
            camera_to_robot=camera_to_robot,
        )

    def is_in_field_of_view(self, image_coordinates: np.ndarray) -> bool:
        """Check whether pixel coordinates (u, v[, depth]) lie inside the image."""
        u, v = float(image_coordinates[0]), float(image_coordinates[1])
        return 0.0 <= u <= self._image_cols and 0.0 <= v <= self._image_rows

    @property
    def intrinsics(self) -> CameraIntrinsics:
        return self._intrinsics

    @property
    def camera_matrix(self) -> np.ndarray:
        """Return the 3x3 intrinsic matrix."""
        return self._camera_matrix

    @property
    def image_rows(self) -> int:
        return self._image_rows

    @property
    def image_cols(self) -> int:
        return self._image_cols

    @property
    def camera_to_robot(self) -> SE3:
        return self._camera_to_robot

    @property
    def robot_to_camera(self) -> SE3:
        return self._robot_to_camera
