"""Gauss-Newton skeleton shared by the aligners.

An aligner refines one rigid transform (its *estimate*) by iterating:

1. ``linearize``: accumulate ``H = sum J^T Omega J`` and ``b = sum J^T Omega e``
   over all measurements, with a robust kernel that down-weights outliers
2. damp ``H`` and solve ``H dx = -b`` (symmetric-indefinite LDL^T solve)
3. apply ``dx`` on the left of the estimate and re-orthonormalize its rotation

Concrete aligners provide the measurement model through ``linearize`` and
keep their derived transforms in sync in ``_update_wrapped_transforms``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import numpy as np
import scipy.linalg

from ..config import AlignerConfig
from ..geometry import SE3, orthonormalize, retract
from ..log import get_logger


class BaseAligner(ABC):
    """Damped Gauss-Newton solver over a 6-DOF rigid transform.

    One instance serves one alignment at a time: ``H``, ``b`` and the
    per-measurement buffers are scratch state rebuilt by every
    ``linearize`` call.
    """

    def __init__(self, config: AlignerConfig, logger=None) -> None:
        """Initialize solver state.

        Args:
            config: Iteration, kernel and damping settings
            logger: Structured logger to use instead of the module logger
        """
        self._config = config
        self._logger = get_logger(type(self).__module__, logger)

        self._estimate = SE3.identity()

        self._H = np.zeros((6, 6), dtype=np.float64)
        self._b = np.zeros(6, dtype=np.float64)
        self._information_matrix = np.zeros((6, 6), dtype=np.float64)

        # Per measurement: squared error (-1 if not evaluated) and inlier flag
        self._errors = np.zeros(0, dtype=np.float64)
        self._inliers = np.zeros(0, dtype=bool)

        self._number_of_inliers = 0
        self._number_of_outliers = 0
        self._total_error = 0.0
        self._number_of_iterations = 0
        self._has_system_converged = False

    @abstractmethod
    def linearize(self, ignore_outliers: bool) -> None:
        """Build H and b at the current estimate.

        Args:
            ignore_outliers: Skip outliers instead of down-weighting them
        """

    def _update_wrapped_transforms(self) -> None:
        """Propagate the estimate to derived transforms after convergence."""

    def _reset_linearization(self) -> None:
        """Clear the accumulators at the start of a linearize pass."""
        self._H.fill(0.0)
        self._b.fill(0.0)
        self._errors.fill(-1.0)
        self._inliers.fill(False)
        self._number_of_inliers = 0
        self._number_of_outliers = 0
        self._total_error = 0.0

    def _apply_kernel(
        self, index: int, chi: float, omega: np.ndarray, ignore_outliers: bool
    ) -> bool:
        """Classify a measurement and scale its information matrix in place.

        Args:
            index: Measurement index
            chi: Squared error of the measurement
            omega: Information matrix of the measurement (modified in place)
            ignore_outliers: Drop outliers instead of down-weighting them

        Returns:
            False if the measurement must be skipped
        """
        self._errors[index] = chi
        kernel = self._config.maximum_error_kernel

        if chi > kernel:
            self._number_of_outliers += 1
            if ignore_outliers:
                return False
            omega *= kernel / chi
        else:
            self._inliers[index] = True
            self._number_of_inliers += 1

        self._total_error += chi
        return True

    def one_round(self, ignore_outliers: bool) -> None:
        """Run one damped Gauss-Newton step.

        Args:
            ignore_outliers: Skip outliers instead of down-weighting them
        """
        self.linearize(ignore_outliers)

        self._H += self._config.damping * np.eye(6)

        try:
            dx = scipy.linalg.solve(self._H, -self._b, assume_a="sym")
        except np.linalg.LinAlgError:
            self._logger.warning(
                "singular_system",
                inliers=self._number_of_inliers,
                outliers=self._number_of_outliers,
            )
            return

        estimate = retract(dx).compose(self._estimate)
        self._estimate = SE3(
            rotation=orthonormalize(estimate.rotation),
            translation=estimate.translation,
        )

    def converge(self) -> bool:
        """Iterate until the total error settles or the iteration cap is hit.

        Once the change in total error drops below the threshold, three more
        rounds are run on inliers only and the final H is kept as the
        information matrix of the solution.

        Returns:
            True if the system converged
        """
        total_error_previous = 0.0
        self._has_system_converged = False
        self._number_of_iterations = 0

        for iteration in range(self._config.maximum_number_of_iterations):
            self.one_round(ignore_outliers=False)
            self._number_of_iterations = iteration + 1

            if (
                abs(total_error_previous - self._total_error)
                < self._config.error_delta_for_convergence
            ):
                for _ in range(3):
                    self.one_round(ignore_outliers=True)

                self._information_matrix = self._H.copy()
                self._has_system_converged = True
                break

            total_error_previous = self._total_error

        if not self._has_system_converged:
            processed = self._number_of_inliers + self._number_of_outliers
            self._logger.warning(
                "system_did_not_converge",
                total_error=self._total_error,
                average_error=self._total_error / processed if processed else None,
                inliers=self._number_of_inliers,
                outliers=self._number_of_outliers,
                iterations=self._number_of_iterations,
            )

        self._update_wrapped_transforms()
        return self._has_system_converged

    @property
    def H(self) -> np.ndarray:
        """Normal-equations matrix of the last round (damped)."""
        return self._H

    @property
    def b(self) -> np.ndarray:
        return self._b

    @property
    def information_matrix(self) -> np.ndarray:
        """H of the final inlier-only round, zero until convergence."""
        return self._information_matrix

    @property
    def errors(self) -> np.ndarray:
        return self._errors

    @property
    def inliers(self) -> np.ndarray:
        return self._inliers

    @property
    def number_of_inliers(self) -> int:
        return self._number_of_inliers

    @property
    def number_of_outliers(self) -> int:
        return self._number_of_outliers

    @property
    def inlier_ratio(self) -> float:
        """Inliers over all measurements of the last linearize."""
        if len(self._errors) == 0:
            return 0.0
        return self._number_of_inliers / len(self._errors)

    @property
    def total_error(self) -> float:
        return self._total_error

    @property
    def number_of_iterations(self) -> int:
        return self._number_of_iterations

    @property
    def has_system_converged(self) -> bool:
        return self._has_system_converged
