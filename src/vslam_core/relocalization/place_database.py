"""Place recognition database over binary landmark descriptors.

Each added local map becomes one "image" of the database. Querying
matches every descriptor of the query image against all earlier images
(Hamming distance) and reports the matches per reference image. The
database can optionally merge near-duplicate descriptors on insertion;
those merges are reported so the caller can keep its own descriptor
references consistent.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from ..map import Appearance

# Number of set bits for every byte value
_POPCOUNT = np.array([bin(value).count("1") for value in range(256)], dtype=np.uint8)


def hamming_distances(query: np.ndarray, reference: np.ndarray) -> np.ndarray:
    """Pairwise Hamming distances between two sets of binary descriptors.

    Args:
        query: (N, B) uint8 descriptors
        reference: (M, B) uint8 descriptors

    Returns:
        (N, M) int32 distance matrix
    """
    if len(query) == 0 or len(reference) == 0:
        return np.zeros((len(query), len(reference)), dtype=np.int32)

    xor = np.bitwise_xor(query[:, np.newaxis, :], reference[np.newaxis, :, :])
    return _POPCOUNT[xor].sum(axis=2, dtype=np.int32)


@dataclass
class Matchable:
    """A descriptor as indexed for one image, with the landmark it stands for there.

    A merged descriptor is shared by several images; each keeps its own
    entry pointing at its own landmark.

    Attributes:
        appearance: Indexed appearance
        landmark_id: Landmark of this image the descriptor belongs to
    """

    appearance: Appearance
    landmark_id: int

    @property
    def identifier(self) -> int:
        return self.appearance.identifier


@dataclass
class Match:
    """A query descriptor matched to a descriptor of a reference image.

    Attributes:
        query: Query entry
        reference: Matched entry of the reference image
        distance: Hamming distance between the two descriptors
    """

    query: Matchable
    reference: Matchable
    distance: int

    @property
    def query_landmark_id(self) -> int:
        return self.query.landmark_id

    @property
    def reference_landmark_id(self) -> int:
        return self.reference.landmark_id


@dataclass
class Merge:
    """A descriptor absorbed into an already indexed one.

    Attributes:
        absorbed: The incoming appearance that was not indexed
        surviving: The indexed appearance that replaced it
        query_landmark_id: Landmark that owned the absorbed appearance
    """

    absorbed: Appearance
    surviving: Appearance
    query_landmark_id: int


def _stack(entries: Sequence[Matchable]) -> np.ndarray:
    if not entries:
        return np.zeros((0, 32), dtype=np.uint8)
    return np.stack([entry.appearance.descriptor for entry in entries])


def _entries(
    appearances: Sequence[Appearance], landmark_ids: Sequence[int] | None
) -> list[Matchable]:
    if landmark_ids is None:
        landmark_ids = [appearance.landmark_id for appearance in appearances]
    elif len(landmark_ids) != len(appearances):
        raise ValueError(
            f"Got {len(landmark_ids)} landmark IDs for {len(appearances)} appearances"
        )
    return [
        Matchable(appearance, landmark_id)
        for appearance, landmark_id in zip(appearances, landmark_ids)
    ]


class PlaceDatabase:
    """Incremental descriptor index, one image per local map."""

    def __init__(self, merge_distance: int | None = None) -> None:
        """Initialize an empty database.

        Args:
            merge_distance: Incoming descriptors within this Hamming distance
                of an indexed one are merged into it. Disabled when None.
        """
        self._merge_distance = merge_distance
        self._images: list[list[Matchable]] = []
        self._descriptors: list[np.ndarray] = []
        self._merges: list[Merge] = []

    def add(
        self,
        appearances: Sequence[Appearance],
        landmark_ids: Sequence[int] | None = None,
    ) -> None:
        """Index the appearances of a new image without matching.

        Args:
            appearances: Descriptors of the new local map
            landmark_ids: Owning landmark per appearance in this image
                (each appearance's own landmark if None)

        Raises:
            ValueError: If the two sequences differ in length
        """
        self._add(_entries(appearances, landmark_ids))

    def match_and_add(
        self,
        appearances: Sequence[Appearance],
        maximum_distance: int,
        landmark_ids: Sequence[int] | None = None,
    ) -> dict[int, list[Match]]:
        """Match a new image against all indexed images, then index it.

        Args:
            appearances: Descriptors of the query local map
            maximum_distance: Matches need a distance strictly below this
            landmark_ids: Owning landmark per appearance in the query image
                (each appearance's own landmark if None)

        Returns:
            Image index -> matches (ordered by query, then reference
            descriptor), with an entry for every previously added image

        Raises:
            ValueError: If ``appearances`` and ``landmark_ids`` differ in length
        """
        entries = _entries(appearances, landmark_ids)
        query_descriptors = _stack(entries)

        matches_per_image: dict[int, list[Match]] = {}
        for index_image, (image, descriptors) in enumerate(
            zip(self._images, self._descriptors)
        ):
            distances = hamming_distances(query_descriptors, descriptors)
            rows, cols = np.nonzero(distances < maximum_distance)
            matches_per_image[index_image] = [
                Match(
                    query=entries[row],
                    reference=image[col],
                    distance=int(distances[row, col]),
                )
                for row, col in zip(rows, cols)
            ]

        self._add(entries)
        return matches_per_image

    def drain_merges(self) -> list[Merge]:
        """Return and forget the merges performed since the last call."""
        merges = self._merges
        self._merges = []
        return merges

    def _add(self, entries: list[Matchable]) -> None:
        if self._merge_distance is not None:
            entries = self._merge(entries)
        self._images.append(entries)
        self._descriptors.append(_stack(entries))

    def _merge(self, entries: list[Matchable]) -> list[Matchable]:
        """Replace incoming descriptors that duplicate indexed ones."""
        if not self._images or not entries:
            return entries

        indexed = [entry.appearance for image in self._images for entry in image]
        distances = hamming_distances(
            _stack(entries), np.stack([a.descriptor for a in indexed])
        )
        nearest = np.argmin(distances, axis=1)

        image: list[Matchable] = []
        merged: set[tuple[int, int]] = set()
        for row, entry in enumerate(entries):
            surviving = indexed[nearest[row]]
            if (
                distances[row, nearest[row]] <= self._merge_distance
                and surviving.identifier != entry.identifier
            ):
                self._merges.append(
                    Merge(
                        absorbed=entry.appearance,
                        surviving=surviving,
                        query_landmark_id=entry.landmark_id,
                    )
                )
                # The surviving descriptor now also stands for this image's landmark
                key = (surviving.identifier, entry.landmark_id)
                if key not in merged:
                    merged.add(key)
                    image.append(Matchable(surviving, entry.landmark_id))
            else:
                image.append(entry)
        return image

    @property
    def size(self) -> int:
        """Return number of indexed images."""
        return len(self._images)

    def __len__(self) -> int:
        return len(self._images)
