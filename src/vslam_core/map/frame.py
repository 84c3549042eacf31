"""Frames and their tracked point observations."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from ..geometry import SE3
from .camera import Camera


@dataclass
class FramePoint:
    """A tracked 2D/3D observation within a frame.

    Attributes:
        identifier: Unique frame point ID
        image_coordinates: (u, v, depth) in the left image
        camera_coordinates: 3D position in the camera frame
        world_coordinates: 3D position in the world frame (set from the frame pose)
        previous: The same point in the previous frame, absent for new points
        landmark_id: ID of the associated landmark, if any
        reprojection_coordinates: Last (u, v, depth) predicted by the aligner
    """

    identifier: int
    image_coordinates: np.ndarray  # (3,) u, v, depth
    camera_coordinates: np.ndarray  # (3,)
    world_coordinates: np.ndarray = field(default_factory=lambda: np.zeros(3))
    previous: FramePoint | None = None
    landmark_id: int | None = None
    reprojection_coordinates: np.ndarray | None = None

    def __post_init__(self) -> None:
        """Ensure coordinates are proper arrays."""
        self.image_coordinates = np.asarray(
            self.image_coordinates, dtype=np.float64
        ).flatten()
        self.camera_coordinates = np.asarray(
            self.camera_coordinates, dtype=np.float64
        ).flatten()
        self.world_coordinates = np.asarray(
            self.world_coordinates, dtype=np.float64
        ).flatten()

    @property
    def has_landmark(self) -> bool:
        return self.landmark_id is not None


@dataclass
class Frame:
    """One robot pose sample with its active frame points.

    Attributes:
        identifier: Unique frame ID (pipeline cycle)
        robot_to_world: Robot pose estimate in the world frame
        camera: Left camera model
        active_points: Ordered tracked points
        local_map_id: ID of the local map this frame was folded into
    """

    identifier: int
    robot_to_world: SE3
    camera: Camera
    active_points: list[FramePoint] = field(default_factory=list)
    local_map_id: int | None = None

    @property
    def world_to_robot(self) -> SE3:
        return self.robot_to_world.inverse()

    @property
    def camera_to_world(self) -> SE3:
        return self.robot_to_world.compose(self.camera.camera_to_robot)

    def update_active_points(self) -> None:
        """Recompute world coordinates of all active points from the current pose."""
        camera_to_world = self.camera_to_world
        for point in self.active_points:
            point.world_coordinates = camera_to_world.transform_point(
                point.camera_coordinates
            )

    @property
    def num_active_points(self) -> int:
        return len(self.active_points)
