"""Point-to-point alignment used to verify loop closures.

Given landmark positions of the same physical points expressed in the
query and the reference local map, solves for the transform that maps
query coordinates onto reference coordinates:

    e_i = query_to_reference * p_query_i - p_reference_i
"""

from __future__ import annotations

import numpy as np

from ..config import XYZAlignerConfig
from ..geometry import SE3, skew
from .base import BaseAligner


class XYZAligner(BaseAligner):
    """Estimates a relative transform from 3D-3D correspondences."""

    def __init__(self, config: XYZAlignerConfig | None = None, logger=None) -> None:
        super().__init__(config or XYZAlignerConfig(), logger)
        self._points_query = np.zeros((0, 3))
        self._points_reference = np.zeros((0, 3))
        self._weights = np.zeros(0)

    def initialize(
        self,
        points_query: np.ndarray,
        points_reference: np.ndarray,
        weights: np.ndarray | None = None,
        query_to_reference: SE3 | None = None,
    ) -> None:
        """Bind the aligner to a set of correspondences.

        Args:
            points_query: Nx3 points in the query frame
            points_reference: Nx3 matching points in the reference frame
            weights: Per correspondence information weight (ones if None)
            query_to_reference: Initial guess (identity if None)

        Raises:
            ValueError: If the inputs are empty or their shapes don't match
        """
        points_query = np.asarray(points_query, dtype=np.float64).reshape(-1, 3)
        points_reference = np.asarray(points_reference, dtype=np.float64).reshape(-1, 3)

        if len(points_query) == 0:
            raise ValueError("No correspondences to align")
        if points_query.shape != points_reference.shape:
            raise ValueError(
                f"Point sets differ in shape: {points_query.shape} vs {points_reference.shape}"
            )

        if weights is None:
            weights = np.ones(len(points_query))
        weights = np.asarray(weights, dtype=np.float64).flatten()
        if weights.shape != (len(points_query),):
            raise ValueError(
                f"Expected {len(points_query)} weights, got {weights.shape[0]}"
            )

        self._points_query = points_query
        self._points_reference = points_reference
        self._weights = weights
        self._errors = np.full(len(points_query), -1.0)
        self._inliers = np.zeros(len(points_query), dtype=bool)
        self._estimate = query_to_reference or SE3.identity()
        self._information_matrix = np.zeros((6, 6))
        self._has_system_converged = False

    def linearize(self, ignore_outliers: bool) -> None:
        """Accumulate H and b over all correspondences at the current estimate."""
        self._reset_linearization()

        R = self._estimate.rotation
        t = self._estimate.translation

        for index in range(len(self._points_query)):
            sampled_point_in_reference = R @ self._points_query[index] + t
            error = sampled_point_in_reference - self._points_reference[index]
            chi = float(error @ error)

            omega = np.eye(3) * self._weights[index]
            if not self._apply_kernel(index, chi, omega, ignore_outliers):
                continue

            jacobian = np.zeros((3, 6))
            jacobian[:, :3] = np.eye(3)
            jacobian[:, 3:] = -2.0 * skew(sampled_point_in_reference)

            jacobian_transposed = jacobian.T
            self._H += jacobian_transposed @ omega @ jacobian
            self._b += jacobian_transposed @ omega @ error

    @property
    def is_valid(self) -> bool:
        """Whether the converged solution is supported by enough inliers."""
        return (
            self._has_system_converged
            and self._number_of_inliers >= self._config.minimum_number_of_inliers
            and self.inlier_ratio >= self._config.minimum_inlier_ratio
        )

    @property
    def query_to_reference(self) -> SE3:
        return self._estimate

    @property
    def reference_to_query(self) -> SE3:
        return self._estimate.inverse()
