"""SLAM core orchestrating frame alignment, local maps and relocalization.

SLAMSystem combines, once per pipeline cycle:
- Frame alignment: the UVD aligner refines the frame pose against the map
- Local map creation: the world map cuts a new place when the robot moved enough
- Relocalization: each new local map is matched against earlier ones and
  verified closures are recorded on the world map

Frames and their tracked points are produced by the caller (the tracking
front-end) through ``WorldMap.create_frame`` and
``WorldMap.create_frame_point``. Everything runs in the caller's thread.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from .aligners import UVDAligner
from .config import SLAMConfig
from .geometry import SE3
from .log import get_logger
from .map import Camera, Frame, WorldMap
from .relocalization import Relocalizer


@dataclass
class SLAMFrame:
    """Output of the SLAM core for a single frame."""

    frame: Frame
    is_aligned: bool = False
    has_converged: bool = False
    number_of_inliers: int = 0
    number_of_outliers: int = 0
    local_map_id: int | None = None
    num_closure_candidates: int = 0
    # (query local map ID, reference local map ID) of accepted closures
    closures: list[tuple[int, int]] = field(default_factory=list)

    @property
    def is_local_map_created(self) -> bool:
        return self.local_map_id is not None


@dataclass
class SLAMStats:
    """Statistics from the SLAM core."""

    num_frames: int = 0
    num_aligned_frames: int = 0
    num_failed_alignments: int = 0
    num_local_maps: int = 0
    num_closure_candidates: int = 0
    num_closures: int = 0
    total_distance: float = 0.0


class SLAMSystem:
    """Single-threaded estimation core: alignment, local maps and loop closures.

    Usage:
        >>> system = SLAMSystem(camera)
        >>> frame = system.world_map.create_frame(odometry_pose, camera)
        >>> # ... front-end adds frame points ...
        >>> result = system.process_frame(frame)
    """

    def __init__(
        self,
        camera: Camera,
        world_map: WorldMap | None = None,
        config: SLAMConfig | None = None,
        logger=None,
    ) -> None:
        """Initialize SLAM core.

        Args:
            camera: Camera observing all frames
            world_map: Map to operate on (a new one if None)
            config: Settings of all components
            logger: Structured logger passed on to every component
        """
        self._camera = camera
        self._config = config or SLAMConfig()
        self._logger = get_logger(__name__, logger)

        self._world_map = world_map or WorldMap(self._config.world_map, logger)
        self._aligner = UVDAligner(
            self._world_map.landmarks, self._config.uvd_aligner, logger
        )
        self._relocalizer = Relocalizer(
            self._world_map,
            config=self._config.relocalizer,
            aligner_config=self._config.xyz_aligner,
            logger=logger,
        )

        self._stats = SLAMStats()
        self._prev_position: np.ndarray | None = None

    @classmethod
    def from_yaml(
        cls,
        camera_path: str | Path,
        config_path: str | Path | None = None,
        logger=None,
    ) -> SLAMSystem:
        """Create a SLAM core from calibration and configuration files.

        Args:
            camera_path: EuRoC-format sensor.yaml of the left camera
            config_path: YAML configuration (defaults if None)
            logger: Structured logger passed on to every component

        Returns:
            Configured SLAMSystem
        """
        camera = Camera.from_yaml(camera_path)
        config = SLAMConfig.from_yaml(config_path) if config_path else SLAMConfig()
        return cls(camera, config=config, logger=logger)

    def create_frame(self, robot_to_world: SE3) -> Frame:
        """Create the next frame on the world map with the system camera."""
        return self._world_map.create_frame(robot_to_world, self._camera)

    def process_frame(self, frame: Frame) -> SLAMFrame:
        """Run one cycle of the core for the current frame.

        Args:
            frame: The world map's current frame, with its tracked points

        Returns:
            SLAMFrame with the alignment and closure outcome
        """
        result = SLAMFrame(frame=frame)
        self._stats.num_frames += 1

        # Step 1: Refine the frame pose against the map
        if self._is_alignable(frame):
            self._align(frame, result)

        position = frame.robot_to_world.position
        if self._prev_position is not None:
            self._stats.total_distance += float(
                np.linalg.norm(position - self._prev_position)
            )
        self._prev_position = position.copy()

        # Step 2: Local map bookkeeping
        local_map = self._world_map.create_local_map()
        if local_map is None:
            return result

        result.local_map_id = local_map.identifier
        self._stats.num_local_maps += 1

        # Step 3: Relocalization cycle on the new place
        closures = self._relocalizer.detect_closures(local_map)
        result.num_closure_candidates = len(closures)
        self._stats.num_closure_candidates += len(closures)

        verifications = self._relocalizer.register_closures()
        for closure, verification in zip(closures, verifications):
            if not verification.is_valid:
                continue
            self._world_map.close_local_maps(
                closure.query_local_map_id,
                closure.reference_local_map_id,
                verification.query_to_reference,
            )
            result.closures.append(
                (closure.query_local_map_id, closure.reference_local_map_id)
            )
        self._stats.num_closures += len(result.closures)
        self._relocalizer.clear()

        self._logger.debug(
            "local_map_processed",
            local_map=local_map.identifier,
            candidates=result.num_closure_candidates,
            closures=len(result.closures),
        )
        return result

    @staticmethod
    def _is_alignable(frame: Frame) -> bool:
        """Whether every active point carries a previous-frame link."""
        return bool(frame.active_points) and all(
            point.previous is not None for point in frame.active_points
        )

    def _align(self, frame: Frame, result: SLAMFrame) -> None:
        self._aligner.initialize(frame, frame.robot_to_world)
        converged = self._aligner.converge()

        result.is_aligned = True
        result.has_converged = converged
        result.number_of_inliers = self._aligner.number_of_inliers
        result.number_of_outliers = self._aligner.number_of_outliers

        if converged:
            frame.robot_to_world = self._aligner.robot_to_world
            frame.update_active_points()
            self._world_map.robot_to_world_previous = frame.robot_to_world
            self._stats.num_aligned_frames += 1
        else:
            self._stats.num_failed_alignments += 1

    @property
    def camera(self) -> Camera:
        return self._camera

    @property
    def world_map(self) -> WorldMap:
        return self._world_map

    @property
    def aligner(self) -> UVDAligner:
        return self._aligner

    @property
    def relocalizer(self) -> Relocalizer:
        return self._relocalizer

    @property
    def config(self) -> SLAMConfig:
        return self._config

    @property
    def stats(self) -> SLAMStats:
        """Get SLAM statistics."""
        return self._stats
