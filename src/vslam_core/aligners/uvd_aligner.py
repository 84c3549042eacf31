"""Frame-to-map pose refinement in image + depth space.

Each active frame point predicts where it should appear in the current
frame, from its landmark (if validated) or else from its previous-frame
position. The residual is taken in (u, v, depth):

    e = [u_pred - u_obs, v_pred - v_obs, d_pred - d_obs]

Only points closer than the near-depth limit constrain translation; all
points constrain rotation. Confidence fades linearly towards the near and
far depth limits.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from ..config import UVDAlignerConfig
from ..geometry import SE3, skew
from .base import BaseAligner

if TYPE_CHECKING:
    from ..map import Frame, FramePoint, Landmark


class UVDAligner(BaseAligner):
    """Refines a frame's robot-to-world pose against the local map.

    Usage:
        >>> aligner = UVDAligner(world_map.landmarks)
        >>> aligner.initialize(frame, frame.robot_to_world)
        >>> if aligner.converge():
        ...     frame.robot_to_world = aligner.robot_to_world
    """

    def __init__(
        self,
        landmarks: dict[int, Landmark],
        config: UVDAlignerConfig | None = None,
        logger=None,
    ) -> None:
        """Initialize aligner.

        Args:
            landmarks: Landmark lookup (usually ``WorldMap.landmarks``), read only
            config: Aligner settings
            logger: Structured logger to use instead of the module logger
        """
        super().__init__(config or UVDAlignerConfig(), logger)
        self._landmarks = landmarks

        self._frame: Frame | None = None
        self._points: list[FramePoint] = []

        self._robot_to_world = SE3.identity()
        self._world_to_robot = SE3.identity()
        self._camera_to_world = SE3.identity()

        self._camera_matrix = np.eye(3)
        self._number_of_rows_image = 0
        self._number_of_cols_image = 0

    def initialize(self, frame: Frame, robot_to_world: SE3) -> None:
        """Bind the aligner to a frame and a starting pose.

        Args:
            frame: Frame whose active points are aligned
            robot_to_world: Initial robot pose guess

        Raises:
            ValueError: If the frame has no active points, or a point has no
                previous point or lies outside the field of view
        """
        if not frame.active_points:
            raise ValueError(f"Frame {frame.identifier} has no active points")

        camera = frame.camera
        for point in frame.active_points:
            if point.previous is None:
                raise ValueError(
                    f"Frame point {point.identifier} has no previous point"
                )
            if not camera.is_in_field_of_view(point.image_coordinates):
                raise ValueError(
                    f"Frame point {point.identifier} is outside the field of view"
                )

        self._frame = frame
        self._points = list(frame.active_points)
        self._errors = np.full(len(self._points), -1.0)
        self._inliers = np.zeros(len(self._points), dtype=bool)
        self._information_matrix = np.zeros((6, 6))
        self._has_system_converged = False

        self._robot_to_world = robot_to_world
        self._world_to_robot = robot_to_world.inverse()

        # The solver works on the world-to-camera transform
        self._camera_to_world = robot_to_world.compose(camera.camera_to_robot)
        self._estimate = self._camera_to_world.inverse()

        self._camera_matrix = camera.camera_matrix
        self._number_of_rows_image = camera.image_rows
        self._number_of_cols_image = camera.image_cols

    def linearize(self, ignore_outliers: bool) -> None:
        """Accumulate H and b over all active points at the current estimate."""
        self._reset_linearization()

        config = self._config
        near = config.maximum_depth_near_meters
        far = config.maximum_depth_far_meters
        K = self._camera_matrix
        R = self._estimate.rotation
        t = self._estimate.translation

        for index, point in enumerate(self._points):
            omega = np.eye(3)
            omega[2, 2] *= config.weight_depth

            # Prefer the landmark estimate if it has been validated
            landmark = (
                self._landmarks.get(point.landmark_id)
                if point.landmark_id is not None
                else None
            )
            if landmark is not None and landmark.are_coordinates_validated:
                predicted_point_in_camera = R @ landmark.coordinates + t
            else:
                predicted_point_in_camera = R @ point.previous.world_coordinates + t
                omega *= config.weight_framepoint

            depth_meters = predicted_point_in_camera[2]
            if depth_meters <= 0 or depth_meters > far:
                continue

            predicted_uvd_in_camera = K @ predicted_point_in_camera
            predicted_point_in_image = predicted_uvd_in_camera / depth_meters
            predicted_point_in_image[2] = depth_meters

            if (
                predicted_point_in_image[0] < 0
                or predicted_point_in_image[0] > self._number_of_cols_image
                or predicted_point_in_image[1] < 0
                or predicted_point_in_image[1] > self._number_of_rows_image
            ):
                continue

            inverse_predicted_d = 1.0 / depth_meters
            inverse_predicted_d_squared = inverse_predicted_d * inverse_predicted_d

            # Visualization only
            point.reprojection_coordinates = predicted_point_in_image.copy()

            error = np.array(
                [
                    predicted_point_in_image[0] - point.image_coordinates[0],
                    predicted_point_in_image[1] - point.image_coordinates[1],
                    predicted_point_in_image[2] - point.camera_coordinates[2],
                ]
            )
            chi = float(error @ error)

            if not self._apply_kernel(index, chi, omega, ignore_outliers):
                continue

            jacobian_transform = np.zeros((3, 6))
            if depth_meters < near:
                jacobian_transform[:, :3] = np.eye(3)
            jacobian_transform[:, 3:] = -2.0 * skew(predicted_point_in_camera)

            # Derivative of the homogeneous division
            jacobian_projection = np.array(
                [
                    [
                        inverse_predicted_d,
                        0.0,
                        -predicted_uvd_in_camera[0] * inverse_predicted_d_squared,
                    ],
                    [
                        0.0,
                        inverse_predicted_d,
                        -predicted_uvd_in_camera[1] * inverse_predicted_d_squared,
                    ],
                    [0.0, 0.0, 1.0],
                ]
            )

            jacobian = jacobian_projection @ K @ jacobian_transform

            if depth_meters < near:
                omega *= (near - depth_meters) / near
            else:
                omega *= (far - depth_meters) / far

            jacobian_transposed = jacobian.T
            self._H += jacobian_transposed @ omega @ jacobian
            self._b += jacobian_transposed @ omega @ error

    def _update_wrapped_transforms(self) -> None:
        """Derive the robot pose from the solved world-to-camera transform."""
        self._camera_to_world = self._estimate.inverse()
        self._robot_to_world = self._camera_to_world.compose(
            self._frame.camera.robot_to_camera
        )
        self._world_to_robot = self._robot_to_world.inverse()

    @property
    def frame(self) -> Frame | None:
        return self._frame

    @property
    def robot_to_world(self) -> SE3:
        return self._robot_to_world

    @property
    def world_to_robot(self) -> SE3:
        return self._world_to_robot

    @property
    def camera_to_world(self) -> SE3:
        return self._camera_to_world

    @property
    def world_to_camera(self) -> SE3:
        """Current solver estimate."""
        return self._estimate
