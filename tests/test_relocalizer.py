"""Tests for closure detection, correspondence voting and verification."""

from __future__ import annotations

import numpy as np
import pytest
from structlog.testing import capture_logs

from vslam_core.config import RelocalizerConfig
from vslam_core.geometry import SE3
from vslam_core.map import WorldMap
from vslam_core.relocalization import Candidate, Relocalizer


def flip_bits(descriptors: np.ndarray, count: int) -> np.ndarray:
    """Copy of descriptors with their first ``count`` bits inverted."""
    flipped = descriptors.copy()
    for bit in range(count):
        flipped[..., bit // 8] ^= np.uint8(1 << (bit % 8))
    return flipped


@pytest.fixture
def world_map() -> WorldMap:
    return WorldMap()


class TestWarmUp:
    """Test suite for the initial indexing phase."""

    def test_no_closures_before_interspace_is_filled(
        self, world_map, random_descriptors, add_place
    ):
        """Test that identical places produce no closure during warm-up."""
        relocalizer = Relocalizer(world_map, RelocalizerConfig(minimum_interspace_queries=5))
        descriptors = random_descriptors(10)

        for _ in range(5):
            closures = relocalizer.detect_closures(add_place(world_map, descriptors))
            assert closures == []

        assert relocalizer.place_database.size == 5
        assert relocalizer.added_local_map_ids == [0, 1, 2, 3, 4]

    def test_recent_places_are_not_references(
        self, world_map, random_descriptors, add_place
    ):
        """Test that only places outside the interspace are matched."""
        relocalizer = Relocalizer(world_map, RelocalizerConfig(minimum_interspace_queries=5))
        descriptors = random_descriptors(10)

        for _ in range(5):
            relocalizer.detect_closures(add_place(world_map, descriptors))
        closures = relocalizer.detect_closures(add_place(world_map, descriptors))

        assert [c.reference_local_map_id for c in closures] == [0]
        assert closures[0].query_local_map_id == 5


class TestCorrespondenceVoting:
    """Test suite for the vote-based correspondence resolution."""

    @pytest.fixture
    def relocalizer(self, world_map) -> Relocalizer:
        return Relocalizer(
            world_map, RelocalizerConfig(minimum_matches_per_correspondence=1)
        )

    def test_majority_vote(self, relocalizer):
        """Test that the most voted reference landmark wins."""
        candidates = [Candidate(1, 101, 3), Candidate(1, 101, 5), Candidate(1, 102, 2)]

        correspondence = relocalizer._get_correspondence_nn(candidates)

        assert correspondence.query_landmark_id == 1
        assert correspondence.reference_landmark_id == 101
        assert correspondence.matching_count == 2
        assert correspondence.matching_ratio == pytest.approx(2 / 3)

    def test_vote_threshold_is_exclusive(self, relocalizer):
        """Test that a single vote does not clear a threshold of one."""
        candidates = [Candidate(1, 101, 3), Candidate(1, 102, 2)]

        assert relocalizer._get_correspondence_nn(candidates) is None

    def test_tie_goes_to_first_reaching_maximum(self, relocalizer):
        """Test that ties resolve to the reference landmark counted first."""
        candidates = [
            Candidate(1, 102, 3),
            Candidate(1, 101, 5),
            Candidate(1, 101, 2),
            Candidate(1, 102, 1),
        ]

        correspondence = relocalizer._get_correspondence_nn(candidates)

        assert correspondence.reference_landmark_id == 101

    def test_claimed_reference_is_masked(self, relocalizer):
        """Test that a reference landmark is claimed at most once per cycle."""
        relocalizer._get_correspondence_nn([Candidate(1, 101, 3), Candidate(1, 101, 4)])

        assert relocalizer.used_reference_ids == frozenset({101})
        assert (
            relocalizer._get_correspondence_nn(
                [Candidate(2, 101, 3), Candidate(2, 101, 4)]
            )
            is None
        )

        fallback = relocalizer._get_correspondence_nn(
            [Candidate(2, 101, 3), Candidate(2, 103, 4), Candidate(2, 103, 6)]
        )
        assert fallback.reference_landmark_id == 103
        assert fallback.matching_ratio == pytest.approx(2 / 3)

    def test_clear_resets_mask(self, relocalizer):
        """Test that clear releases claimed reference landmarks."""
        candidates = [Candidate(1, 101, 3), Candidate(1, 101, 4)]
        relocalizer._get_correspondence_nn(candidates)

        relocalizer.clear()

        assert relocalizer.used_reference_ids == frozenset()
        assert relocalizer._get_correspondence_nn(candidates) is not None


class TestClosureDetection:
    """Test suite for closure candidate generation."""

    @pytest.fixture
    def config(self) -> RelocalizerConfig:
        return RelocalizerConfig(
            minimum_interspace_queries=1,
            minimum_matching_ratio=0.5,
            minimum_number_of_matched_landmarks=5,
        )

    def test_overlapping_places_give_one_closure(
        self, world_map, config, random_descriptors, add_place
    ):
        """Test two places sharing 8 of 10 landmarks."""
        relocalizer = Relocalizer(world_map, config)
        reference_descriptors = random_descriptors(10)
        query_descriptors = np.vstack(
            [flip_bits(reference_descriptors[:8], 4), random_descriptors(2)]
        )
        reference = add_place(world_map, reference_descriptors)
        query = add_place(world_map, query_descriptors)

        assert relocalizer.detect_closures(reference) == []
        with capture_logs() as logs:
            closures = relocalizer.detect_closures(query)

        assert len(closures) == 1
        closure = closures[0]
        assert closure.query_local_map_id == query.identifier
        assert closure.reference_local_map_id == reference.identifier
        assert closure.relative_number_of_matches == pytest.approx(0.8)
        assert closure.number_of_matched_landmarks == 8
        assert closure.num_correspondences == 8
        assert [
            (c.query_landmark_id, c.reference_landmark_id) for c in closure.correspondences
        ] == list(zip(query.landmark_ids[:8], reference.landmark_ids[:8]))
        assert all(c.matching_ratio == 1.0 for c in closure.correspondences)
        assert [entry["event"] for entry in logs] == ["closure_candidate"]

    def test_matched_landmarks_count_blocked_claims(
        self, world_map, config, random_descriptors, add_place
    ):
        """Test that a landmark losing its only reference still counts as matched."""
        relocalizer = Relocalizer(world_map, config)
        reference_descriptors = random_descriptors(6)
        query_descriptors = np.vstack(
            [reference_descriptors, flip_bits(reference_descriptors[:1], 2)]
        )
        reference = add_place(world_map, reference_descriptors)
        query = add_place(world_map, query_descriptors)

        relocalizer.detect_closures(reference)
        closures = relocalizer.detect_closures(query)

        assert len(closures) == 1
        assert closures[0].number_of_matched_landmarks == 7
        assert closures[0].num_correspondences == 6
        assert query.landmark_ids[6] not in [
            c.query_landmark_id for c in closures[0].correspondences
        ]

    def test_low_match_ratio_is_skipped(
        self, world_map, config, random_descriptors, add_place
    ):
        """Test that a place sharing too few descriptors yields no closure."""
        relocalizer = Relocalizer(world_map, config)
        reference_descriptors = random_descriptors(10)
        query_descriptors = np.vstack([reference_descriptors[:4], random_descriptors(6)])

        relocalizer.detect_closures(add_place(world_map, reference_descriptors))

        assert relocalizer.detect_closures(add_place(world_map, query_descriptors)) == []

    def test_too_few_matched_landmarks_is_skipped(
        self, world_map, random_descriptors, add_place
    ):
        """Test that a high ratio on a tiny place is not enough."""
        relocalizer = Relocalizer(
            world_map,
            RelocalizerConfig(
                minimum_interspace_queries=1, minimum_number_of_matched_landmarks=5
            ),
        )
        descriptors = random_descriptors(4)

        relocalizer.detect_closures(add_place(world_map, descriptors))

        assert relocalizer.detect_closures(add_place(world_map, descriptors)) == []

    def test_empty_query_is_indexed(self, world_map, config, random_descriptors, add_place):
        """Test that a place without descriptors is added but never matches."""
        relocalizer = Relocalizer(world_map, config)
        relocalizer.detect_closures(add_place(world_map, random_descriptors(10)))

        closures = relocalizer.detect_closures(
            add_place(world_map, np.zeros((0, 32), dtype=np.uint8))
        )

        assert closures == []
        assert relocalizer.place_database.size == 2

    def test_closures_accumulate_until_clear(
        self, world_map, config, random_descriptors, add_place
    ):
        """Test that pending closures are kept across calls until clear."""
        relocalizer = Relocalizer(world_map, config)
        descriptors = random_descriptors(10)

        for _ in range(3):
            relocalizer.detect_closures(add_place(world_map, descriptors))

        pairs = [
            (c.query_local_map_id, c.reference_local_map_id) for c in relocalizer.closures
        ]
        assert pairs == [(1, 0), (2, 0), (2, 1)]

        relocalizer.clear()
        assert relocalizer.closures == []

    def test_merged_appearances_are_propagated(
        self, world_map, random_descriptors, add_place
    ):
        """Test that merges rewrite the query place and landmark descriptors."""
        relocalizer = Relocalizer(
            world_map,
            RelocalizerConfig(minimum_interspace_queries=1, merge_distance=0),
        )
        descriptors = random_descriptors(6)
        reference = add_place(world_map, descriptors)
        query = add_place(world_map, descriptors)
        query_landmark = world_map.get_landmark(query.landmark_ids[0])

        relocalizer.detect_closures(reference)
        closures = relocalizer.detect_closures(query)

        assert len(closures) == 1
        assert [a.identifier for a in query.appearances] == [
            a.identifier for a in reference.appearances
        ]
        assert query_landmark.appearances[0].identifier == reference.appearances[0].identifier
        assert relocalizer.place_database.drain_merges() == []

    def test_merged_landmarks_keep_their_correspondences(
        self, world_map, random_descriptors, add_place
    ):
        """Test that shared descriptors resolve to each place's own landmarks."""
        relocalizer = Relocalizer(
            world_map,
            RelocalizerConfig(minimum_interspace_queries=1, merge_distance=0),
        )
        descriptors = random_descriptors(6)
        first = add_place(world_map, descriptors)
        second = add_place(world_map, descriptors)
        relocalizer.detect_closures(first)
        relocalizer.detect_closures(second)
        relocalizer.clear()

        # A revisit of the second place carries the merged descriptors
        revisit = world_map.add_local_map(SE3.identity(), [], second.landmark_ids)
        assert revisit.appearance_landmark_ids == second.landmark_ids
        closures = relocalizer.detect_closures(revisit)

        assert [c.reference_local_map_id for c in closures] == [first.identifier]
        assert [
            (c.query_landmark_id, c.reference_landmark_id)
            for c in closures[0].correspondences
        ] == list(zip(second.landmark_ids, first.landmark_ids))
        relocalizer.clear()

        # A new place matched against the second place as reference
        third = add_place(world_map, descriptors)
        closures = relocalizer.detect_closures(third)

        pairs = {
            c.reference_local_map_id: [
                (r.query_landmark_id, r.reference_landmark_id) for r in c.correspondences
            ]
            for c in closures
        }
        assert sorted(pairs) == [first.identifier, second.identifier]
        assert pairs[first.identifier] == list(
            zip(third.landmark_ids, first.landmark_ids)
        )
        assert pairs[second.identifier] == list(
            zip(third.landmark_ids, second.landmark_ids)
        )


class TestClosureRegistration:
    """Test suite for geometric closure verification."""

    @pytest.fixture
    def config(self) -> RelocalizerConfig:
        return RelocalizerConfig(minimum_interspace_queries=1)

    def test_registers_drifted_closure(
        self, world_map, config, rng, random_descriptors, add_place
    ):
        """Test that the drift between two revisits of a place is recovered."""
        points = rng.uniform(-1.5, 1.5, size=(12, 3))
        descriptors = random_descriptors(12)
        reference_to_world = SE3.identity()
        query_to_world = SE3.from_rvec_tvec(
            np.array([0.0, 0.0, 0.3]), np.array([0.4, 0.1, 0.0])
        )
        # The revisit sees the same points through accumulated odometry drift
        drift = SE3.from_rvec_tvec(np.radians([0.5, -1.0, 2.0]), np.array([0.1, -0.05, 0.02]))

        reference = add_place(world_map, descriptors, points, reference_to_world)
        query = add_place(
            world_map, descriptors, drift.transform_points(points), query_to_world
        )
        relocalizer = Relocalizer(world_map, config)
        relocalizer.detect_closures(reference)
        relocalizer.detect_closures(query)

        results = relocalizer.register_closures()

        assert len(results) == 1
        result = results[0]
        assert result.is_valid
        assert result.has_converged
        assert result.num_correspondences == 12
        assert result.num_inliers == 12
        assert result.inlier_ratio == pytest.approx(1.0)
        expected = drift.inverse().compose(query_to_world)
        np.testing.assert_allclose(
            result.query_to_reference.to_matrix(), expected.to_matrix(), atol=1e-4
        )
        assert relocalizer.closures[0].verification is result

    def test_closure_without_correspondences_is_invalid(
        self, world_map, random_descriptors, add_place
    ):
        """Test that a closure whose votes all failed is rejected."""
        relocalizer = Relocalizer(
            world_map,
            RelocalizerConfig(
                minimum_interspace_queries=1, minimum_matches_per_correspondence=1
            ),
        )
        descriptors = random_descriptors(10)
        relocalizer.detect_closures(add_place(world_map, descriptors))
        closures = relocalizer.detect_closures(add_place(world_map, descriptors))
        assert closures[0].correspondences == []

        results = relocalizer.register_closures()

        assert len(results) == 1
        assert not results[0].is_valid
        assert results[0].query_to_reference is None
