"""Loop closure hypotheses and their geometric verification results."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from ..geometry import SE3


@dataclass
class Candidate:
    """One raw descriptor match, grouped by query landmark.

    Attributes:
        query_landmark_id: Landmark of the query local map
        reference_landmark_id: Landmark of the reference local map
        distance: Descriptor distance of the match
    """

    query_landmark_id: int
    reference_landmark_id: int
    distance: int


@dataclass
class Correspondence:
    """A disambiguated landmark-to-landmark match.

    Attributes:
        query_landmark_id: Landmark of the query local map
        reference_landmark_id: Winning landmark of the reference local map
        matching_count: Votes of the winning reference landmark
        matching_ratio: Votes over the number of candidates of the query landmark
    """

    query_landmark_id: int
    reference_landmark_id: int
    matching_count: int
    matching_ratio: float


@dataclass
class VerificationResult:
    """Result of geometric closure verification.

    Attributes:
        is_valid: Whether the alignment converged with enough inliers
        query_to_reference: Relative transform between the local map frames
        information_matrix: 6x6 information of the transform estimate
        num_inliers: Correspondences within the error kernel
        num_correspondences: Correspondences used for the alignment
        inlier_ratio: Fraction of correspondences that are inliers
        has_converged: Whether the solver converged
        total_error: Total squared error of the last round
    """

    is_valid: bool
    query_to_reference: SE3 | None = None
    information_matrix: np.ndarray = field(default_factory=lambda: np.zeros((6, 6)))
    num_inliers: int = 0
    num_correspondences: int = 0
    inlier_ratio: float = 0.0
    has_converged: bool = False
    total_error: float = 0.0


@dataclass
class Closure:
    """Loop closure hypothesis between a query and a reference local map.

    Attributes:
        query_local_map_id: The newly added local map
        reference_local_map_id: The earlier local map it was matched against
        number_of_matched_landmarks: Distinct query landmarks with candidates
        relative_number_of_matches: Matches over query descriptors
        correspondences: Resolved landmark correspondences
        verification: Set by ``Relocalizer.register_closures``
    """

    query_local_map_id: int
    reference_local_map_id: int
    number_of_matched_landmarks: int
    relative_number_of_matches: float
    correspondences: list[Correspondence] = field(default_factory=list)
    verification: VerificationResult | None = None

    @property
    def num_correspondences(self) -> int:
        return len(self.correspondences)
