"""Shared fixtures: a pinhole camera, seeded randomness and place builders."""

from __future__ import annotations

from typing import Callable

import numpy as np
import pytest
import structlog

from vslam_core.geometry import SE3
from vslam_core.map import Camera, CameraIntrinsics, LocalMap, WorldMap


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo logging configuration done by a test."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
def camera() -> Camera:
    """VGA camera mounted at the robot origin."""
    intrinsics = CameraIntrinsics(fx=400.0, fy=400.0, cx=320.0, cy=240.0)
    return Camera(intrinsics, image_rows=480, image_cols=640)


@pytest.fixture
def random_descriptors(rng: np.random.Generator) -> Callable[[int], np.ndarray]:
    """Factory of (N, 32) random binary descriptors.

    Two random descriptors are about 128 bits apart, far from any matching
    threshold used in the tests.
    """

    def make(count: int) -> np.ndarray:
        return rng.integers(0, 256, size=(count, 32), dtype=np.uint8)

    return make


@pytest.fixture
def add_place() -> Callable[..., LocalMap]:
    """Factory adding a local map with one validated landmark per descriptor.

    Args (of the returned callable):
        world_map: Map to add the place to
        descriptors: (N, 32) descriptors, one landmark each
        coordinates: (N, 3) world coordinates (zeros if None)
        local_map_to_world: Pose of the local map (identity if None)
    """

    def add(
        world_map: WorldMap,
        descriptors: np.ndarray,
        coordinates: np.ndarray | None = None,
        local_map_to_world: SE3 | None = None,
    ) -> LocalMap:
        if coordinates is None:
            coordinates = np.zeros((len(descriptors), 3))

        landmark_ids = []
        for descriptor, point in zip(descriptors, coordinates):
            landmark = world_map.create_landmark(point, validated=True)
            world_map.create_appearance(landmark.identifier, descriptor)
            landmark_ids.append(landmark.identifier)

        return world_map.add_local_map(
            local_map_to_world=local_map_to_world or SE3.identity(),
            frame_ids=[],
            landmark_ids=landmark_ids,
        )

    return add
