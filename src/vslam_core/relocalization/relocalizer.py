"""Loop closure detection and verification over local maps.

Detection cycle for each finalized local map:

1. Warm-up: until ``minimum_interspace_queries`` local maps are indexed,
   local maps are only added to the place database
2. Query: the local map is matched against and added to the database;
   every reference local map outside the most recent interspace is
   scored by its match ratio
3. Matches are grouped per query landmark and resolved into at most one
   correspondence each by majority vote
4. Surviving references become ``Closure`` candidates

``register_closures`` then aligns each candidate point-to-point, and
``clear`` ends the cycle. The closure list is owned by the relocalizer
between ``detect_closures`` and ``clear``.
"""

from __future__ import annotations

from collections import Counter, defaultdict

import numpy as np

from ..aligners import XYZAligner
from ..config import RelocalizerConfig, XYZAlignerConfig
from ..log import get_logger
from ..map import LocalMap, WorldMap
from .closure import Candidate, Closure, Correspondence, VerificationResult
from .place_database import PlaceDatabase


class Relocalizer:
    """Detects loop closure candidates and verifies them geometrically."""

    def __init__(
        self,
        world_map: WorldMap,
        config: RelocalizerConfig | None = None,
        aligner_config: XYZAlignerConfig | None = None,
        place_database: PlaceDatabase | None = None,
        logger=None,
    ) -> None:
        """Initialize relocalizer.

        Args:
            world_map: Owner of the landmarks and local maps being matched
            config: Detection thresholds
            aligner_config: Settings of the closure aligner
            place_database: Descriptor index (a new one if None)
            logger: Structured logger to use instead of the module logger
        """
        self._world_map = world_map
        self._config = config or RelocalizerConfig()
        self._logger = get_logger(__name__, logger)
        self._place_database = place_database or PlaceDatabase(
            merge_distance=self._config.merge_distance
        )
        self._aligner = XYZAligner(aligner_config, logger)

        # Local map IDs in database image order
        self._added_local_map_ids: list[int] = []

        self._closures: list[Closure] = []
        self._mask_id_references_for_correspondences: set[int] = set()

    def detect_closures(self, local_map_query: LocalMap) -> list[Closure]:
        """Index a local map and collect closure candidates against earlier ones.

        Args:
            local_map_query: The newly finalized local map

        Returns:
            All pending closures (including those of earlier calls not yet cleared)
        """
        config = self._config

        # The local map is always indexed, matching is optional
        self._added_local_map_ids.append(local_map_query.identifier)

        if self._place_database.size < config.minimum_interspace_queries:
            self._place_database.add(
                local_map_query.appearances, local_map_query.appearance_landmark_ids
            )
        else:
            matches_per_reference = self._place_database.match_and_add(
                local_map_query.appearances,
                config.maximum_descriptor_distance,
                landmark_ids=local_map_query.appearance_landmark_ids,
            )

            number_of_query_appearances = len(local_map_query.appearances)
            maximum_index_reference = (
                self._place_database.size - config.minimum_interspace_queries
            )
            for index_reference in range(maximum_index_reference):
                closure = self._evaluate_reference(
                    local_map_query,
                    index_reference,
                    matches_per_reference.get(index_reference, []),
                    number_of_query_appearances,
                )
                if closure is not None:
                    self._closures.append(closure)

        self._update_merged_appearances(local_map_query)
        return self._closures

    def _evaluate_reference(
        self,
        local_map_query: LocalMap,
        index_reference: int,
        matches: list,
        number_of_query_appearances: int,
    ) -> Closure | None:
        """Turn the matches against one reference local map into a closure."""
        config = self._config
        reference_id = self._added_local_map_ids[index_reference]

        if number_of_query_appearances == 0:
            return None
        relative_number_of_matches = len(matches) / number_of_query_appearances
        if relative_number_of_matches < config.minimum_matching_ratio:
            return None

        candidates_per_landmark: dict[int, list[Candidate]] = defaultdict(list)
        for match in matches:
            candidates_per_landmark[match.query_landmark_id].append(
                Candidate(
                    query_landmark_id=match.query_landmark_id,
                    reference_landmark_id=match.reference_landmark_id,
                    distance=match.distance,
                )
            )

        if len(candidates_per_landmark) < config.minimum_number_of_matched_landmarks:
            self._logger.debug(
                "reference_rejected",
                query=local_map_query.identifier,
                reference=reference_id,
                matched_landmarks=len(candidates_per_landmark),
            )
            return None

        # Each reference landmark can be claimed once per reference local map
        self._mask_id_references_for_correspondences.clear()
        correspondences: list[Correspondence] = []
        for query_landmark_id in sorted(candidates_per_landmark):
            correspondence = self._get_correspondence_nn(
                candidates_per_landmark[query_landmark_id]
            )
            if correspondence is not None:
                correspondences.append(correspondence)

        self._logger.info(
            "closure_candidate",
            query=local_map_query.identifier,
            reference=reference_id,
            ratio=round(relative_number_of_matches, 3),
            matched_landmarks=len(candidates_per_landmark),
            correspondences=len(correspondences),
        )
        return Closure(
            query_local_map_id=local_map_query.identifier,
            reference_local_map_id=reference_id,
            # Query landmarks with candidates; can exceed the correspondences when
            # claimed reference landmarks block a vote
            number_of_matched_landmarks=len(candidates_per_landmark),
            relative_number_of_matches=relative_number_of_matches,
            correspondences=correspondences,
        )

    def _get_correspondence_nn(
        self, candidates: list[Candidate]
    ) -> Correspondence | None:
        """Resolve the candidates of one query landmark by majority vote.

        The reference landmark reaching the highest count first wins, unless
        it was already claimed in this cycle. The winner needs more than
        ``minimum_matches_per_correspondence`` votes.

        Args:
            candidates: Candidates sharing the same query landmark

        Returns:
            The correspondence, or None if no reference landmark qualifies
        """
        counts: Counter[int] = Counter()
        candidate_best: Candidate | None = None
        count_best = 0

        for candidate in candidates:
            reference_id = candidate.reference_landmark_id
            if reference_id in self._mask_id_references_for_correspondences:
                continue

            counts[reference_id] += 1
            if count_best < counts[reference_id]:
                count_best = counts[reference_id]
                candidate_best = candidate

        if (
            candidate_best is None
            or count_best <= self._config.minimum_matches_per_correspondence
        ):
            return None

        self._mask_id_references_for_correspondences.add(
            candidate_best.reference_landmark_id
        )
        return Correspondence(
            query_landmark_id=candidate_best.query_landmark_id,
            reference_landmark_id=candidate_best.reference_landmark_id,
            matching_count=count_best,
            matching_ratio=count_best / len(candidates),
        )

    def _update_merged_appearances(self, local_map_query: LocalMap) -> None:
        """Point local map and landmark descriptors at merge survivors."""
        merges = self._place_database.drain_merges()
        if not merges:
            return

        local_map_query.replace_appearances(
            {merge.absorbed.identifier: merge.surviving for merge in merges}
        )
        for merge in merges:
            landmark = self._world_map.get_landmark(merge.query_landmark_id)
            if landmark is not None:
                landmark.replace_appearance(merge.absorbed.identifier, merge.surviving)

        self._logger.debug(
            "merged_appearances",
            local_map=local_map_query.identifier,
            merges=len(merges),
        )

    def register_closures(self) -> list[VerificationResult]:
        """Geometrically verify every pending closure.

        Each closure's landmarks are expressed in their local map frames and
        aligned point-to-point, starting from the odometry estimate of the
        relative transform. The result is stored on ``closure.verification``.

        Returns:
            One VerificationResult per pending closure, in order
        """
        results = []
        for closure in self._closures:
            closure.verification = self._verify(closure)
            results.append(closure.verification)
        return results

    def _verify(self, closure: Closure) -> VerificationResult:
        if not closure.correspondences:
            return VerificationResult(is_valid=False)

        local_map_query = self._world_map.local_maps[closure.query_local_map_id]
        local_map_reference = self._world_map.local_maps[
            closure.reference_local_map_id
        ]
        landmarks = self._world_map.landmarks

        points_query = local_map_query.world_to_local_map.transform_points(
            np.array(
                [
                    landmarks[c.query_landmark_id].coordinates
                    for c in closure.correspondences
                ]
            )
        )
        points_reference = local_map_reference.world_to_local_map.transform_points(
            np.array(
                [
                    landmarks[c.reference_landmark_id].coordinates
                    for c in closure.correspondences
                ]
            )
        )
        weights = np.array([c.matching_ratio for c in closure.correspondences])

        self._aligner.initialize(
            points_query,
            points_reference,
            weights=weights,
            query_to_reference=local_map_reference.world_to_local_map.compose(
                local_map_query.local_map_to_world
            ),
        )
        self._aligner.converge()

        result = VerificationResult(
            is_valid=self._aligner.is_valid,
            query_to_reference=self._aligner.query_to_reference,
            information_matrix=self._aligner.information_matrix.copy(),
            num_inliers=self._aligner.number_of_inliers,
            num_correspondences=len(closure.correspondences),
            inlier_ratio=self._aligner.inlier_ratio,
            has_converged=self._aligner.has_system_converged,
            total_error=self._aligner.total_error,
        )
        self._logger.info(
            "closure_registered",
            query=closure.query_local_map_id,
            reference=closure.reference_local_map_id,
            valid=result.is_valid,
            inliers=result.num_inliers,
            correspondences=result.num_correspondences,
        )
        return result

    def clear(self) -> None:
        """Release pending closures and reset the correspondence mask."""
        self._closures = []
        self._mask_id_references_for_correspondences.clear()

    @property
    def closures(self) -> list[Closure]:
        return self._closures

    @property
    def place_database(self) -> PlaceDatabase:
        return self._place_database

    @property
    def aligner(self) -> XYZAligner:
        return self._aligner

    @property
    def added_local_map_ids(self) -> list[int]:
        return list(self._added_local_map_ids)

    @property
    def used_reference_ids(self) -> frozenset[int]:
        """Reference landmarks claimed since the mask was last reset."""
        return frozenset(self._mask_id_references_for_correspondences)
