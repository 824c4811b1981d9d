"""
Automatic gating distance estimation.

Implements the radius search of:

    Kan, A., Chakravorty, R., Bailey, J., Leckie, C., Markham, J. and
    Dowling, M.R. "Automated and semi-automated cell tracking: addressing
    portability challenges". Journal of Microscopy 244(2), 2011.

Cross-frame centroid distances of consecutive frames count all candidate
links within a radius; distances among regions of the same (later) frame
stand in for the links that are coincidences. The true-link probability is
estimated with the simplified form

    P_t(r) = (n_all(r) - n_f(r)) / N_t

where N_t is the number of objects in frames 1..T-1.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np

from config import (
    CALIBRATION_MAX_ITERATIONS,
    CALIBRATION_R_MAX_DIVISOR,
    CALIBRATION_R_MIN,
    CALIBRATION_R_STEP,
    REGION_CONNECTIVITY,
    TRACKING_MAX_DIST,
    TRACKING_MAX_WORKERS,
)
from core.dto import CalibrationParameters, GatingParameters
from core.regions import FrameStack, Region, label_regions, regions_from_labels, validate_frames
from core.time_series import CalibrationResult
from processors.tracking_utils import distance_matrix

logger = logging.getLogger(__name__)


def pair_distance_matrices(current: Sequence[Region], nxt: Sequence[Region]) -> Tuple[np.ndarray, np.ndarray]:
    """
    Cross-frame distances (current x next) and self distances of ``nxt``.
    """
    return distance_matrix(current, nxt), distance_matrix(nxt, nxt)


def count_below(sorted_values: np.ndarray, radius: float) -> int:
    """Number of entries strictly below ``radius`` in a sorted array."""
    return int(np.searchsorted(sorted_values, radius, side="left"))


class GatingCalibrator:
    """
    Estimates the gating distance maximising the true-link probability.

    Radii are tested from ``r_min`` up to, but excluding, ``r_max`` in steps
    of ``r_step``. The sweep stops early once P_t reaches 1; otherwise the
    radius with the highest P_t is returned and the result is marked as not
    converged.
    """

    def __init__(
        self,
        r_min: int = CALIBRATION_R_MIN,
        r_max: Optional[int] = None,
        r_step: int = CALIBRATION_R_STEP,
        max_iterations: Optional[int] = CALIBRATION_MAX_ITERATIONS,
        connectivity: int = REGION_CONNECTIVITY,
        pre_labeled: bool = False,
        fallback_radius: float = TRACKING_MAX_DIST,
        max_workers: int = TRACKING_MAX_WORKERS,
    ):
        if r_step <= 0:
            raise ValueError(f"r_step must be positive, got {r_step}")
        self.r_min = int(r_min)
        self.r_max = int(r_max) if r_max is not None else None
        self.r_step = int(r_step)
        self.max_iterations = int(max_iterations) if max_iterations is not None else None
        self.connectivity = int(connectivity)
        self.pre_labeled = bool(pre_labeled)
        self.fallback_radius = float(fallback_radius)
        self.max_workers = max(1, int(max_workers))

    @classmethod
    def from_params(
        cls,
        params: CalibrationParameters,
        gating: GatingParameters,
        pre_labeled: bool = False,
        max_workers: int = TRACKING_MAX_WORKERS,
    ) -> "GatingCalibrator":
        return cls(
            r_min=params.r_min,
            r_max=params.r_max,
            r_step=params.r_step,
            max_iterations=params.max_iterations,
            connectivity=gating.connectivity,
            pre_labeled=pre_labeled,
            fallback_radius=gating.max_dist,
            max_workers=max_workers,
        )

    def radii(self, frame_width: int) -> List[int]:
        """Candidate radii for a frame of the given width."""
        r_max = self.r_max if self.r_max is not None else int(frame_width) // CALIBRATION_R_MAX_DIVISOR
        radii = list(range(self.r_min, r_max, self.r_step))
        if self.max_iterations is not None:
            radii = radii[: self.max_iterations]
        return radii

    def _extract(self, frame: np.ndarray) -> List[Region]:
        if self.pre_labeled:
            return regions_from_labels(frame)
        return label_regions(frame, connectivity=self.connectivity)

    def calibrate(
        self,
        frames: FrameStack,
        regions: Optional[Sequence[Sequence[Region]]] = None,
        callback: Optional[Callable[[int, str], None]] = None,
    ) -> CalibrationResult:
        """
        Estimate the gating distance for a whole frame sequence.

        Args:
            frames: (T, H, W) mask stack
            regions: Optional per-frame regions already extracted from ``frames``
            callback: Optional progress callback (percent, message)
        """
        stack = validate_frames(frames)
        num_frames = stack.shape[0]
        radii = self.radii(stack.shape[2])

        if regions is None:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                regions = list(executor.map(self._extract, stack))
        elif len(regions) != num_frames:
            raise ValueError(f"Got regions for {len(regions)} frames, expected {num_frames}")

        if num_frames < 2 or not radii:
            logger.warning(
                "[Calibrator] Nothing to calibrate (%d frames, %d radii); using %.1f",
                num_frames, len(radii), self.fallback_radius,
            )
            return CalibrationResult(
                radius=self.fallback_radius, probability=0.0, converged=False, n_true_links=0.0,
            )

        if callback:
            callback(5, "Computing distance matrices...")

        # One independent task per consecutive frame pair, stored by index.
        pairs: List[Optional[Tuple[np.ndarray, np.ndarray]]] = [None] * (num_frames - 1)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(pair_distance_matrices, regions[t], regions[t + 1]): t
                for t in range(num_frames - 1)
            }
            for future, t in futures.items():
                pairs[t] = future.result()

        n_true = float(sum(len(regions[t]) for t in range(1, num_frames)))
        logger.info("[Calibrator] N_t: %.0f", n_true)
        if n_true == 0:
            logger.warning("[Calibrator] No objects after the first frame; using %.1f", self.fallback_radius)
            return CalibrationResult(
                radius=self.fallback_radius, probability=0.0, converged=False, n_true_links=0.0,
            )

        cross = np.sort(np.concatenate([d.ravel() for d, _ in pairs]))
        same = []
        for _, auto in pairs:
            if auto.size:
                same.append(auto[~np.eye(auto.shape[0], dtype=bool)])
        same_frame = np.sort(np.concatenate(same)) if same else np.zeros((0,), dtype=np.float64)

        if callback:
            callback(30, f"Testing {len(radii)} radii...")

        best_p = 0.0
        best_r: Optional[int] = None
        curve: List[Tuple[int, float]] = []
        for k, r in enumerate(radii):
            n_all = count_below(cross, r)
            n_f = count_below(same_frame, r)
            p_t = (n_all - n_f) / n_true
            curve.append((r, float(p_t)))
            logger.debug("[Calibrator] r=%d\tP_t=%.4f", r, p_t)

            if p_t > best_p:
                best_p = float(p_t)
                best_r = r

            if p_t >= 1:
                logger.info("[Calibrator] Chosen gating distance: %d (P_t=%.3f)", r, p_t)
                if callback:
                    callback(100, f"Gating distance {r}")
                return CalibrationResult(
                    radius=float(r), probability=float(p_t), converged=True, n_true_links=n_true, curve=curve,
                )

            if callback and k % 10 == 0:
                callback(30 + int(70 * (k + 1) / len(radii)), f"Tested r={r}")

        if best_r is None:
            logger.warning(
                "[Calibrator] P_t never positive in [%d, %d); using %.1f",
                radii[0], radii[-1] + self.r_step, self.fallback_radius,
            )
            return CalibrationResult(
                radius=self.fallback_radius, probability=0.0, converged=False, n_true_links=n_true, curve=curve,
            )

        logger.info(
            "[Calibrator] P_t did not reach 1; chosen gating distance: %d (P_t=%.3f)", best_r, best_p,
        )
        if callback:
            callback(100, f"Gating distance {best_r}")
        return CalibrationResult(
            radius=float(best_r), probability=best_p, converged=False, n_true_links=n_true, curve=curve,
        )


def determine_gating_distance(
    frames: FrameStack,
    connectivity: int = REGION_CONNECTIVITY,
    **kwargs,
) -> float:
    """Convenience wrapper returning only the chosen radius."""
    return GatingCalibrator(connectivity=connectivity, **kwargs).calibrate(frames).radius
