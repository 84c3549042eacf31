"""World map: the owning store of frames, landmarks and local maps.

Everything else in the package refers to map entities by identifier and
resolves them here. Frames and local maps are appended monotonically and
only released by ``clear``.
"""

from __future__ import annotations

import numpy as np

from ..config import WorldMapConfig
from ..geometry import SE3, rotation_angle
from ..log import get_logger
from .camera import Camera
from .frame import Frame, FramePoint
from .landmark import Appearance, Landmark
from .local_map import LocalMap


class WorldMap:
    """Arena of all map entities plus the local map window bookkeeping.

    A new local map is cut from the queued frames once the robot has
    travelled or rotated enough since the last one and the queue holds
    enough frames.
    """

    def __init__(self, config: WorldMapConfig | None = None, logger=None) -> None:
        """Initialize an empty world map.

        Args:
            config: Local map creation thresholds
            logger: Structured logger to use instead of the module logger
        """
        self._config = config or WorldMapConfig()
        self._logger = get_logger(__name__, logger)

        self._frames: dict[int, Frame] = {}
        self._landmarks: dict[int, Landmark] = {}
        self._local_maps: list[LocalMap] = []

        self._next_frame_id = 0
        self._next_frame_point_id = 0
        self._next_landmark_id = 0
        self._next_appearance_id = 0

        self._root_frame: Frame | None = None
        self._current_frame: Frame | None = None
        self._previous_frame: Frame | None = None
        self._relocalized = False
        self._robot_to_world_previous = SE3.identity()

        # Window since the last local map
        self._frame_queue_for_local_map: list[Frame] = []
        self._distance_traveled_window = 0.0
        self._degrees_rotated_window = 0.0

    def create_frame(self, robot_to_world: SE3, camera: Camera) -> Frame:
        """Create the frame of a new pipeline cycle and make it current.

        Args:
            robot_to_world: Initial robot pose estimate
            camera: Camera that observed the frame

        Returns:
            The new Frame
        """
        frame = Frame(
            identifier=self._next_frame_id,
            robot_to_world=robot_to_world,
            camera=camera,
        )
        self._next_frame_id += 1
        self._frames[frame.identifier] = frame

        if self._root_frame is None:
            self._root_frame = frame
        self._previous_frame = self._current_frame
        self._current_frame = frame
        return frame

    def create_frame_point(
        self,
        frame: Frame,
        image_coordinates: np.ndarray,
        camera_coordinates: np.ndarray,
        previous: FramePoint | None = None,
        landmark_id: int | None = None,
    ) -> FramePoint:
        """Create a frame point and append it to the frame's active points."""
        point = FramePoint(
            identifier=self._next_frame_point_id,
            image_coordinates=image_coordinates,
            camera_coordinates=camera_coordinates,
            world_coordinates=frame.camera_to_world.transform_point(camera_coordinates),
            previous=previous,
            landmark_id=landmark_id,
        )
        self._next_frame_point_id += 1
        frame.active_points.append(point)
        return point

    def create_landmark(
        self,
        coordinates: np.ndarray,
        validated: bool = False,
    ) -> Landmark:
        """Create a landmark at world coordinates."""
        landmark = Landmark(
            identifier=self._next_landmark_id,
            coordinates=coordinates,
            are_coordinates_validated=validated,
        )
        self._next_landmark_id += 1
        self._landmarks[landmark.identifier] = landmark
        return landmark

    def create_appearance(self, landmark_id: int, descriptor: np.ndarray) -> Appearance:
        """Attach a new descriptor to a landmark.

        Raises:
            KeyError: If the landmark doesn't exist
        """
        landmark = self._landmarks[landmark_id]
        appearance = Appearance(
            identifier=self._next_appearance_id,
            descriptor=descriptor,
            landmark_id=landmark_id,
        )
        self._next_appearance_id += 1
        landmark.add_appearance(appearance)
        return appearance

    def create_local_map(self) -> LocalMap | None:
        """Fold the current frame into the window and cut a local map if due.

        Call once per cycle, after the current frame's pose was refined.

        Returns:
            The new LocalMap, or None if the thresholds are not reached yet
        """
        if self._current_frame is None:
            return None

        if self._previous_frame is not None:
            previous_to_current = self._previous_frame.world_to_robot.compose(
                self._current_frame.robot_to_world
            )
            self._distance_traveled_window += float(
                np.linalg.norm(previous_to_current.translation)
            )
            self._degrees_rotated_window += float(
                np.degrees(rotation_angle(previous_to_current.rotation))
            )
        self._frame_queue_for_local_map.append(self._current_frame)

        moved_enough = (
            self._distance_traveled_window
            > self._config.minimum_distance_traveled_for_local_map
            or self._degrees_rotated_window
            > self._config.minimum_degrees_rotated_for_local_map
        )
        if not moved_enough or (
            len(self._frame_queue_for_local_map)
            < self._config.minimum_number_of_frames_for_local_map
        ):
            return None

        local_map = self._build_local_map(self._frame_queue_for_local_map)
        self._logger.debug(
            "local_map_created",
            local_map=local_map.identifier,
            frames=len(local_map.frame_ids),
            landmarks=len(local_map.landmark_ids),
            appearances=local_map.num_appearances,
        )
        self.reset_window()
        return local_map

    def _build_local_map(self, frames: list[Frame]) -> LocalMap:
        """Collect the validated landmarks seen by a window of frames."""
        landmark_ids: list[int] = []
        seen: set[int] = set()
        for frame in frames:
            for point in frame.active_points:
                if point.landmark_id is None or point.landmark_id in seen:
                    continue
                landmark = self._landmarks.get(point.landmark_id)
                if landmark is None or not landmark.are_coordinates_validated:
                    continue
                seen.add(point.landmark_id)
                landmark_ids.append(point.landmark_id)

        return self.add_local_map(
            local_map_to_world=frames[-1].robot_to_world,
            frame_ids=[frame.identifier for frame in frames],
            landmark_ids=landmark_ids,
        )

    def add_local_map(
        self,
        local_map_to_world: SE3,
        frame_ids: list[int],
        landmark_ids: list[int],
    ) -> LocalMap:
        """Register a local map built from explicit frame and landmark IDs.

        The local map's appearances are the current appearances of its
        landmarks. ``create_local_map`` calls this; it is also the entry point
        for callers that cut places themselves.

        Raises:
            KeyError: If a landmark ID is unknown
        """
        local_map = LocalMap(
            identifier=len(self._local_maps),
            local_map_to_world=local_map_to_world,
            frame_ids=list(frame_ids),
            landmark_ids=list(landmark_ids),
        )
        for landmark_id in landmark_ids:
            appearances = self._landmarks[landmark_id].appearances
            local_map.appearances.extend(appearances)
            local_map.appearance_landmark_ids.extend([landmark_id] * len(appearances))
        for frame_id in frame_ids:
            frame = self._frames.get(frame_id)
            if frame is not None:
                frame.local_map_id = local_map.identifier

        self._local_maps.append(local_map)
        return local_map

    def close_local_maps(
        self,
        query_id: int,
        reference_id: int,
        query_to_reference: SE3,
    ) -> None:
        """Record a verified closure between two local maps.

        Args:
            query_id: ID of the query (newer) local map
            reference_id: ID of the reference (older) local map
            query_to_reference: Relative transform from the closure verification
        """
        self._local_maps[query_id].add_closure(reference_id, query_to_reference)
        self._relocalized = True
        self._logger.info(
            "local_maps_closed", query=query_id, reference=reference_id
        )

    def reset_window(self) -> None:
        """Start a new local map window."""
        self._frame_queue_for_local_map = []
        self._distance_traveled_window = 0.0
        self._degrees_rotated_window = 0.0

    def clear(self) -> None:
        """Release all map entities."""
        self._frames.clear()
        self._landmarks.clear()
        self._local_maps.clear()
        self._root_frame = None
        self._current_frame = None
        self._previous_frame = None
        self._relocalized = False
        self._robot_to_world_previous = SE3.identity()
        self.reset_window()

    def get_frame(self, frame_id: int) -> Frame | None:
        return self._frames.get(frame_id)

    def get_landmark(self, landmark_id: int) -> Landmark | None:
        return self._landmarks.get(landmark_id)

    def get_local_map(self, local_map_id: int) -> LocalMap | None:
        if 0 <= local_map_id < len(self._local_maps):
            return self._local_maps[local_map_id]
        return None

    @property
    def frames(self) -> dict[int, Frame]:
        return self._frames

    @property
    def landmarks(self) -> dict[int, Landmark]:
        return self._landmarks

    @property
    def local_maps(self) -> list[LocalMap]:
        return self._local_maps

    @property
    def root_frame(self) -> Frame | None:
        return self._root_frame

    @property
    def current_frame(self) -> Frame | None:
        return self._current_frame

    @property
    def previous_frame(self) -> Frame | None:
        return self._previous_frame

    @property
    def current_local_map(self) -> LocalMap | None:
        return self._local_maps[-1] if self._local_maps else None

    @property
    def previous_local_map(self) -> LocalMap | None:
        return self._local_maps[-2] if len(self._local_maps) > 1 else None

    @property
    def relocalized(self) -> bool:
        """Whether at least one closure has been accepted."""
        return self._relocalized

    @property
    def distance_traveled_window(self) -> float:
        return self._distance_traveled_window

    @property
    def degrees_rotated_window(self) -> float:
        return self._degrees_rotated_window

    @property
    def frame_queue_for_local_map(self) -> list[Frame]:
        return list(self._frame_queue_for_local_map)

    @property
    def robot_to_world_previous(self) -> SE3:
        """Last robot pose confirmed by a converged frame alignment."""
        return self._robot_to_world_previous

    @robot_to_world_previous.setter
    def robot_to_world_previous(self, robot_to_world: SE3) -> None:
        self._robot_to_world_previous = robot_to_world
