"""
Per-track centroid trajectories from a relabelled frame sequence.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

import numpy as np

from config import (
    TRAJECTORY_MASK_FACTOR,
    TRAJECTORY_MASK_INCLUDE,
    TRAJECTORY_MIN_TRACK_LENGTH,
)
from core.dto import TrajectoryParameters
from core.regions import FrameStack, regions_from_labels, validate_frames
from core.time_series import ExclusionReason, Trajectory, TrajectoryResult

logger = logging.getLogger(__name__)


class TrajectoryBuilder:
    """
    Collects the centroid of every labelled region, frame by frame, into one
    trajectory per track id (pixel value - 1).

    With an auxiliary mask channel, a newly discovered track is kept only if
    its mean mask intensity is at least ``mask_factor`` times the frame mean
    (``mask_include=True``) or below it (``mask_include=False``). A rejected
    id is never instantiated later. Trajectories shorter than
    ``min_track_length`` are discarded at the end.
    """

    def __init__(
        self,
        min_track_length: int = TRAJECTORY_MIN_TRACK_LENGTH,
        mask_include: bool = TRAJECTORY_MASK_INCLUDE,
        mask_factor: float = TRAJECTORY_MASK_FACTOR,
    ):
        self.min_track_length = int(min_track_length)
        self.mask_include = bool(mask_include)
        self.mask_factor = float(mask_factor)

    @classmethod
    def from_params(cls, params: TrajectoryParameters) -> "TrajectoryBuilder":
        return cls(
            min_track_length=params.min_track_length,
            mask_include=params.mask_include,
            mask_factor=params.mask_factor,
        )

    def _resolve_mask(self, mask_frames: Optional[FrameStack], shape) -> Optional[np.ndarray]:
        if mask_frames is None:
            return None
        try:
            mask = validate_frames(mask_frames)
        except ValueError as exc:
            logger.warning("[Trajectory] Invalid mask channel (%s); mask filtering skipped", exc)
            return None
        if mask.shape != shape:
            logger.warning(
                "[Trajectory] Mask shape %s does not match label stack %s; mask filtering skipped",
                mask.shape, shape,
            )
            return None
        return mask.astype(np.float64, copy=False)

    def _passes_mask(self, region_avg: float, frame_avg: float) -> bool:
        threshold = self.mask_factor * frame_avg
        if self.mask_include:
            return region_avg >= threshold
        return region_avg < threshold

    def build(self, label_frames: FrameStack, mask_frames: Optional[FrameStack] = None) -> TrajectoryResult:
        stack = validate_frames(label_frames)
        mask = self._resolve_mask(mask_frames, stack.shape)

        trajectories: Dict[int, Trajectory] = {}
        excluded: Dict[int, ExclusionReason] = {}

        for t in range(stack.shape[0]):
            regions = regions_from_labels(stack[t])
            frame_avg = float(mask[t].mean()) if mask is not None else 0.0

            for region in regions:
                track_id = region.label - 1
                trajectory = trajectories.get(track_id)
                if trajectory is not None:
                    trajectory.add_point(region.centroid)
                    continue
                if track_id in excluded:
                    continue

                if mask is not None:
                    region_avg = region.mean_intensity(mask[t])
                    logger.debug("[Trajectory] region %d: avg intensity: %.3f", track_id, region_avg)
                    if not self._passes_mask(region_avg, frame_avg):
                        excluded[track_id] = ExclusionReason.MASK_CRITERION
                        continue

                trajectories[track_id] = Trajectory(id=track_id, start_frame=t, points=[region.centroid])

        kept: Dict[int, Trajectory] = {}
        for track_id, trajectory in trajectories.items():
            if trajectory.length >= self.min_track_length:
                kept[track_id] = trajectory.freeze()
            else:
                excluded[track_id] = ExclusionReason.TOO_SHORT

        logger.info(
            "[Trajectory] %d trajectories kept, %d excluded (min length %d)",
            len(kept), len(excluded), self.min_track_length,
        )
        return TrajectoryResult(trajectories=kept, excluded=excluded, mask_filter_applied=mask is not None)


def remove_excluded_objects(label_frames: np.ndarray, excluded_ids: Iterable[int]) -> np.ndarray:
    """
    Copy of a label stack with the pixels of excluded tracks set to background.
    """
    stack = np.array(label_frames, copy=True)
    pixel_values = [int(track_id) + 1 for track_id in excluded_ids]
    if pixel_values:
        stack[np.isin(stack, pixel_values)] = 0
    return stack
