"""Tests for the world map arena and local map creation."""

from __future__ import annotations

import numpy as np
import pytest

from vslam_core.config import WorldMapConfig
from vslam_core.geometry import SE3, exp_so3
from vslam_core.map import Camera, Frame, WorldMap


def pose_at(x: float, yaw_degrees: float = 0.0) -> SE3:
    return SE3(
        rotation=exp_so3(np.array([0.0, 0.0, np.radians(yaw_degrees)])),
        translation=np.array([x, 0.0, 0.0]),
    )


def observe(world_map: WorldMap, frame: Frame, landmark_ids: list[int]) -> None:
    """Add one frame point per landmark to the frame."""
    for landmark_id in landmark_ids:
        world_map.create_frame_point(
            frame,
            image_coordinates=[320.0, 240.0, 2.0],
            camera_coordinates=[0.0, 0.0, 2.0],
            landmark_id=landmark_id,
        )


@pytest.fixture
def world_map() -> WorldMap:
    return WorldMap(WorldMapConfig())


class TestEntityCreation:
    """Test suite for the creation of map entities."""

    def test_frames_are_chained(self, world_map: WorldMap, camera: Camera):
        """Test root, current and previous frame bookkeeping."""
        first = world_map.create_frame(pose_at(0.0), camera)
        second = world_map.create_frame(pose_at(0.1), camera)

        assert (first.identifier, second.identifier) == (0, 1)
        assert world_map.root_frame is first
        assert world_map.previous_frame is first
        assert world_map.current_frame is second
        assert world_map.get_frame(1) is second
        assert world_map.get_frame(7) is None

    def test_frame_point_world_coordinates(self, world_map: WorldMap, camera: Camera):
        """Test that frame points are placed in the world from the frame pose."""
        frame = world_map.create_frame(pose_at(1.0), camera)

        point = world_map.create_frame_point(
            frame, [320.0, 240.0, 2.0], [0.0, 0.0, 2.0]
        )

        assert frame.active_points == [point]
        assert not point.has_landmark
        np.testing.assert_allclose(point.world_coordinates, [1.0, 0.0, 2.0])

    def test_update_active_points_follows_pose(self, world_map: WorldMap, camera: Camera):
        """Test that world coordinates are refreshed after a pose change."""
        frame = world_map.create_frame(pose_at(0.0), camera)
        point = world_map.create_frame_point(frame, [320.0, 240.0, 2.0], [0.0, 0.0, 2.0])

        frame.robot_to_world = pose_at(0.5)
        frame.update_active_points()

        np.testing.assert_allclose(point.world_coordinates, [0.5, 0.0, 2.0])

    def test_appearance_of_unknown_landmark_raises(self, world_map: WorldMap):
        """Test that descriptors cannot be attached to missing landmarks."""
        with pytest.raises(KeyError):
            world_map.create_appearance(3, np.zeros(32, dtype=np.uint8))

    def test_appearances_are_attached(self, world_map: WorldMap):
        """Test that appearances reference their landmark."""
        landmark = world_map.create_landmark([1.0, 2.0, 3.0])

        appearance = world_map.create_appearance(
            landmark.identifier, np.arange(32, dtype=np.uint8)
        )

        assert landmark.appearances == [appearance]
        assert appearance.landmark_id == landmark.identifier
        assert appearance.descriptor.dtype == np.uint8


class TestLocalMapCreation:
    """Test suite for the local map window."""

    def test_created_after_enough_distance_and_frames(
        self, world_map: WorldMap, camera: Camera
    ):
        """Test the distance trigger with the minimum frame count."""
        validated = world_map.create_landmark([0.0, 0.0, 2.0], validated=True)
        unvalidated = world_map.create_landmark([0.0, 1.0, 2.0])
        world_map.create_appearance(validated.identifier, np.zeros(32, dtype=np.uint8))

        created = []
        for index in range(4):
            frame = world_map.create_frame(pose_at(0.2 * index), camera)
            observe(world_map, frame, [validated.identifier, unvalidated.identifier])
            created.append(world_map.create_local_map())

        assert created[:3] == [None, None, None]
        local_map = created[3]
        assert local_map is not None
        assert local_map.identifier == 0
        assert local_map.frame_ids == [0, 1, 2, 3]
        assert local_map.landmark_ids == [validated.identifier]
        assert [a.identifier for a in local_map.appearances] == [
            a.identifier for a in validated.appearances
        ]
        np.testing.assert_allclose(local_map.local_map_to_world.position, [0.6, 0.0, 0.0])
        assert all(world_map.get_frame(i).local_map_id == 0 for i in range(4))
        assert world_map.local_maps == [local_map]

        # The window starts over
        assert world_map.distance_traveled_window == 0.0
        assert world_map.frame_queue_for_local_map == []

    def test_rotation_triggers_local_map(self, world_map: WorldMap, camera: Camera):
        """Test the rotation trigger without translation."""
        created = []
        for index in range(4):
            world_map.create_frame(pose_at(0.0, yaw_degrees=0.2 * index), camera)
            created.append(world_map.create_local_map())

        assert created[:3] == [None, None, None]
        assert created[3] is not None
        assert world_map.degrees_rotated_window == 0.0

    def test_requires_minimum_number_of_frames(self, world_map: WorldMap, camera: Camera):
        """Test that large motion alone does not cut a local map."""
        created = []
        for index in range(3):
            world_map.create_frame(pose_at(2.0 * index), camera)
            created.append(world_map.create_local_map())

        assert created == [None, None, None]
        assert world_map.distance_traveled_window == pytest.approx(4.0)
        assert len(world_map.frame_queue_for_local_map) == 3

    def test_standing_still_never_creates(self, world_map: WorldMap, camera: Camera):
        """Test that no local map is cut without motion."""
        for _ in range(10):
            world_map.create_frame(pose_at(0.0), camera)
            assert world_map.create_local_map() is None

    def test_consecutive_local_maps(self, world_map: WorldMap, camera: Camera):
        """Test current and previous local map accessors."""
        for index in range(8):
            world_map.create_frame(pose_at(0.2 * index), camera)
            world_map.create_local_map()

        assert len(world_map.local_maps) == 2
        assert world_map.current_local_map.identifier == 1
        assert world_map.previous_local_map.identifier == 0
        assert world_map.current_local_map.frame_ids == [4, 5, 6, 7]


class TestClosures:
    """Test suite for closure bookkeeping and clearing."""

    def test_close_local_maps(self, world_map: WorldMap):
        """Test that a verified closure is stored on the query local map."""
        first = world_map.add_local_map(SE3.identity(), [], [])
        second = world_map.add_local_map(pose_at(1.0), [], [])
        assert not world_map.relocalized

        world_map.close_local_maps(second.identifier, first.identifier, pose_at(1.0))

        assert world_map.relocalized
        assert len(second.closures) == 1
        assert second.closures[0].reference_id == first.identifier
        assert first.closures == []

    def test_clear(self, world_map: WorldMap, camera: Camera):
        """Test that clear releases every entity."""
        world_map.create_frame(pose_at(0.0), camera)
        world_map.create_landmark([0.0, 0.0, 1.0])
        world_map.add_local_map(SE3.identity(), [0], [])
        world_map.robot_to_world_previous = pose_at(2.0)

        world_map.clear()

        assert world_map.frames == {}
        assert world_map.landmarks == {}
        assert world_map.local_maps == []
        assert world_map.current_frame is None
        assert world_map.get_local_map(0) is None
        np.testing.assert_allclose(
            world_map.robot_to_world_previous.to_matrix(), np.eye(4)
        )
