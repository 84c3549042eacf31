"""Local maps: clusters of consecutive frames treated as one place."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..geometry import SE3
from .landmark import Appearance


@dataclass
class LocalMapClosure:
    """A verified loop closure stored on the query local map."""

    reference_id: int
    query_to_reference: SE3


@dataclass
class LocalMap:
    """A place for loop-closure purposes.

    Attributes:
        identifier: Unique local map ID (creation order)
        local_map_to_world: Pose of the local map (its last frame's robot pose)
        frame_ids: IDs of the constituent frames
        landmark_ids: IDs of the landmarks visible from this local map
        appearances: Descriptors of those landmarks, handed to the place database
        appearance_landmark_ids: Landmark owning each entry of ``appearances``
            in this local map (a merged descriptor is shared by several)
        closures: Verified closures towards earlier local maps
    """

    identifier: int
    local_map_to_world: SE3
    frame_ids: list[int] = field(default_factory=list)
    landmark_ids: list[int] = field(default_factory=list)
    appearances: list[Appearance] = field(default_factory=list)
    appearance_landmark_ids: list[int] = field(default_factory=list)
    closures: list[LocalMapClosure] = field(default_factory=list)

    @property
    def world_to_local_map(self) -> SE3:
        return self.local_map_to_world.inverse()

    def replace_appearances(self, replacements: dict[int, Appearance]) -> int:
        """Point merged descriptors at their surviving counterpart.

        Args:
            replacements: Absorbed appearance ID -> surviving appearance

        Returns:
            Number of replaced entries
        """
        replaced = 0
        for index, appearance in enumerate(self.appearances):
            surviving = replacements.get(appearance.identifier)
            if surviving is not None:
                self.appearances[index] = surviving
                replaced += 1
        return replaced

    def add_closure(self, reference_id: int, query_to_reference: SE3) -> None:
        self.closures.append(
            LocalMapClosure(reference_id=reference_id, query_to_reference=query_to_reference)
        )

    @property
    def num_appearances(self) -> int:
        return len(self.appearances)
