"""Landmarks and their appearance descriptors."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np


@dataclass
class Appearance:
    """One binary descriptor of a landmark, as indexed by the place database.

    Attributes:
        identifier: Unique appearance ID
        descriptor: Binary descriptor (32 bytes)
        landmark_id: ID of the landmark this descriptor was extracted for
    """

    identifier: int
    descriptor: np.ndarray  # (32,) uint8
    landmark_id: int

    def __post_init__(self) -> None:
        """Ensure descriptor is a flat uint8 array."""
        self.descriptor = np.asarray(self.descriptor, dtype=np.uint8).flatten()


@dataclass
class Landmark:
    """A persistent 3D map point.

    Attributes:
        identifier: Unique landmark ID
        coordinates: 3D position in the world frame
        are_coordinates_validated: Set once enough observations confirm the position
        appearances: Descriptors used for place recognition
    """

    identifier: int
    coordinates: np.ndarray  # (3,) float64
    are_coordinates_validated: bool = False
    appearances: list[Appearance] = field(default_factory=list)

    def __post_init__(self) -> None:
        """Ensure coordinates are a flat float array."""
        self.coordinates = np.asarray(self.coordinates, dtype=np.float64).flatten()

    def add_appearance(self, appearance: Appearance) -> None:
        self.appearances.append(appearance)

    def replace_appearance(self, absorbed_id: int, surviving: Appearance) -> bool:
        """Swap an absorbed descriptor for the one that survived a merge.

        Args:
            absorbed_id: ID of the appearance merged away by the place database
            surviving: Appearance that absorbed it

        Returns:
            True if the absorbed appearance was found
        """
        for index, appearance in enumerate(self.appearances):
            if appearance.identifier == absorbed_id:
                self.appearances[index] = surviving
                return True
        return False

    def update_coordinates(self, coordinates: np.ndarray, validated: bool = True) -> None:
        """Set a new position estimate and its validation state."""
        self.coordinates = np.asarray(coordinates, dtype=np.float64).flatten()
        self.are_coordinates_validated = validated
