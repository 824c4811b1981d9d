"""
Frame-to-frame cell tracker based on bipartite matching with dummy nodes.

Every region of the first frame seeds a track. For each following frame the
regions of two consecutive frames are matched by a min-cost assignment on a
dummy-padded cost matrix; unmatched next regions become new tracks, unmatched
current regions end their tracks. Ids grow monotonically and are never
reused.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from config import TRACKING_MAX_WORKERS
from core.dto import CalibrationParameters, GatingParameters
from core.regions import FrameStack, Region, label_regions, regions_from_labels, validate_frames
from core.time_series import (
    CalibrationResult,
    EventKind,
    Track,
    TrackingEvent,
    TrackingResult,
    TrackStatus,
)
from processors.assignment import resolve_solver, solve_assignment
from processors.calibration import GatingCalibrator
from processors.cost_model import CandidateFlag, CostMatrix, build_cost_matrix, identity_assignment
from processors.tracking_utils import is_near_border

logger = logging.getLogger(__name__)

DISAPPEARED = -1   # slot value of a track without a region in the latest frame


class TrackLabelPropagator:
    """
    Persistent identity bookkeeping across frame transitions.

    ``object_labels[track_id]`` holds the index of that track's region in the
    most recently processed frame, or ``DISAPPEARED``. The list only grows;
    a disappeared entry is never reassigned.
    """

    def __init__(self, max_dist: float, frame_shape: Tuple[int, int]):
        self.max_dist = float(max_dist)
        self.frame_shape = (int(frame_shape[0]), int(frame_shape[1]))
        self.object_labels: List[int] = []
        self.total_object_count = 0
        self.tracks: Dict[int, Track] = {}
        self.events: List[TrackingEvent] = []

    @property
    def num_active(self) -> int:
        return sum(1 for slot in self.object_labels if slot != DISAPPEARED)

    def initialize(self, regions: Sequence[Region], frame_index: int = 0) -> List[int]:
        """Seed one track per region of the first frame; returns their ids."""
        self.object_labels = list(range(len(regions)))
        self.total_object_count = len(regions)
        self.tracks = {i: Track(id=i, birth_frame=frame_index) for i in range(len(regions))}
        self.events = []
        return list(range(len(regions)))

    def slot_to_track(self) -> Dict[int, int]:
        """Map region index in the latest frame -> track id."""
        return {slot: tid for tid, slot in enumerate(self.object_labels) if slot != DISAPPEARED}

    def _emit(self, event: TrackingEvent) -> TrackingEvent:
        self.events.append(event)
        return event

    def flag_events(self, flags: Iterable[CandidateFlag], frame_index: int) -> List[TrackingEvent]:
        """Turn advisory cost-model flags into events keyed by current track ids."""
        slots = self.slot_to_track()
        emitted = []
        for flag in flags:
            track_id = slots.get(flag.current_index)
            if track_id is None:
                continue
            if flag.kind == EventKind.MERGE:
                logger.debug("possible merging of %d", track_id + 1)
            elif flag.kind == EventKind.DIVISION:
                logger.debug("possible division of %d", track_id + 1)
            else:
                logger.debug("possible splitting of %d", track_id + 1)
            emitted.append(self._emit(TrackingEvent(flag.kind, frame_index, (track_id,))))
        return emitted

    def propagate(
        self,
        assignment: np.ndarray,
        n: int,
        m: int,
        next_regions: Sequence[Region],
        frame_index: int,
    ) -> List[int]:
        """
        Apply one frame transition.

        Args:
            assignment: Permutation over (n+m) x (n+m), or max(n, m) square
                when one side is empty
            n: Number of regions in the current frame
            m: Number of regions in the next frame
            next_regions: The m regions of the next frame
            frame_index: Index of the next frame

        Returns:
            Track id for every region of ``next_regions``.

        Raises:
            ValueError: region counts disagree with the assignment or with the
                propagator state.
        """
        a = np.asarray(assignment)
        expected = n + m if (n and m) else max(n, m)
        if a.shape != (expected, expected):
            raise ValueError(f"Assignment shape {a.shape} does not match n={n}, m={m}")
        if len(next_regions) != m:
            raise ValueError(f"Got {len(next_regions)} next regions, assignment expects {m}")

        slots = self.slot_to_track()
        if sorted(slots) != list(range(n)):
            raise ValueError(f"Tracker holds {len(slots)} active tracks, assignment expects {n}")

        new_labels = list(self.object_labels)
        next_ids: List[Optional[int]] = [None] * m
        births: List[int] = []

        rows, cols = np.nonzero(a == 1)
        for i, j in zip(rows.tolist(), cols.tolist()):
            if i >= n and j >= m:
                continue
            if i >= n:
                births.append(j)
            elif j >= m:
                track_id = slots[i]
                new_labels[track_id] = DISAPPEARED
                track = self.tracks[track_id]
                track.status = TrackStatus.DISAPPEARED
                track.death_frame = frame_index
                logger.debug("object %d disappeared", track_id + 1)
                self._emit(TrackingEvent(EventKind.DEATH, frame_index, (track_id,)))
            else:
                track_id = slots[i]
                new_labels[track_id] = j
                next_ids[j] = track_id

        # New ids follow the order of the regions in the next frame.
        for j in sorted(births):
            track_id = self.total_object_count
            self.total_object_count += 1
            new_labels.append(j)
            next_ids[j] = track_id

            region = next_regions[j]
            x, y = region.centroid
            at_border = is_near_border(region.centroid, self.frame_shape, self.max_dist)
            self.tracks[track_id] = Track(id=track_id, birth_frame=frame_index, entered_from_border=at_border)
            if at_border:
                logger.debug("new object possibly entered the field of view at (%d,%d)", int(x), int(y))
                kind = EventKind.BORDER_ENTRY
            else:
                logger.debug("new object at (%d,%d) appeared", int(x), int(y))
                kind = EventKind.BIRTH
            self._emit(TrackingEvent(kind, frame_index, (track_id,), (float(x), float(y))))

        if any(tid is None for tid in next_ids):
            raise RuntimeError("Assignment left next-frame regions without a track")

        self.object_labels = new_labels
        return [int(tid) for tid in next_ids]

    def draw(self, regions: Sequence[Region], track_ids: Sequence[int]) -> np.ndarray:
        """Render a label frame with pixel value = track id + 1."""
        frame = np.zeros(self.frame_shape, dtype=np.int32)
        for region, track_id in zip(regions, track_ids):
            frame[region.coords[:, 0], region.coords[:, 1]] = int(track_id) + 1
        return frame


class CellTrackerBipartite:
    """
    Assigns persistent ids to the regions of a 2D mask sequence.

    Region extraction and the per-pair cost matrices and assignments are
    independent and computed ahead in a bounded worker pool; the identity
    propagation is a single sequential pass over the indexed results.
    """

    def __init__(
        self,
        params: Optional[GatingParameters] = None,
        calibration: Optional[CalibrationParameters] = None,
        pre_labeled: bool = False,
        max_workers: int = TRACKING_MAX_WORKERS,
    ):
        self.params = params or GatingParameters()
        self.calibration_params = calibration or CalibrationParameters()
        self.pre_labeled = bool(pre_labeled)
        self.max_workers = max(1, int(max_workers))
        self.assign_solver = resolve_solver(self.params.assign_solver)

        distance_desc = "auto" if self.params.auto_distance else f"{self.params.max_dist:g}px"
        logger.info(
            "[Tracker] Algorithm: bipartite+%s, gating=%s, area change=%g, %d-connected",
            self.assign_solver, distance_desc, self.params.max_area_change, self.params.connectivity,
        )

    def extract_regions(self, frame: np.ndarray) -> List[Region]:
        if self.pre_labeled:
            return regions_from_labels(frame)
        return label_regions(frame, connectivity=self.params.connectivity)

    def solve_transition(
        self,
        current: Sequence[Region],
        nxt: Sequence[Region],
        params: GatingParameters,
    ) -> Tuple[CostMatrix, np.ndarray]:
        """Cost matrix and assignment for one frame pair."""
        cost_matrix = build_cost_matrix(current, nxt, params)
        if cost_matrix.is_degenerate:
            return cost_matrix, identity_assignment(cost_matrix.size)

        assignment = solve_assignment(cost_matrix.costs, assign_solver=self.assign_solver)
        matched = assignment[: cost_matrix.n, : cost_matrix.m].astype(bool)
        if np.any(matched & ~cost_matrix.feasible):
            raise RuntimeError("Solver matched a pair that violates the gating constraints")
        return cost_matrix, assignment

    def calibrate(
        self,
        stack: np.ndarray,
        regions: Sequence[Sequence[Region]],
        callback: Optional[Callable[[int, str], None]] = None,
    ) -> CalibrationResult:
        calibrator = GatingCalibrator.from_params(
            self.calibration_params,
            self.params,
            pre_labeled=self.pre_labeled,
            max_workers=self.max_workers,
        )
        return calibrator.calibrate(stack, regions=regions, callback=callback)

    def track(
        self,
        frames: FrameStack,
        callback: Optional[Callable[[int, str], None]] = None,
    ) -> TrackingResult:
        """
        Track all objects of a (T, H, W) mask stack.

        Raises:
            ValueError: empty sequence, mismatched frame sizes, or non-binary
                masks when not in pre-labelled mode.
        """
        stack = validate_frames(frames, require_binary=not self.pre_labeled)
        num_frames, height, width = stack.shape
        start_time = time.time()
        logger.info("[Tracker] Start tracking, number of frames: %d", num_frames)

        if callback:
            callback(0, "Extracting regions...")
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            regions: List[List[Region]] = list(executor.map(self.extract_regions, stack))

        params = self.params
        calibration: Optional[CalibrationResult] = None
        if params.auto_distance:
            if callback:
                callback(10, "Estimating gating distance...")
            calibration = self.calibrate(stack, regions)
            params = params.with_max_dist(calibration.radius)
            logger.info("[Tracker] Chosen gating distance: %g", params.max_dist)

        if callback:
            callback(30, "Solving frame-pair assignments...")
        transitions: List[Optional[Tuple[CostMatrix, np.ndarray]]] = [None] * (num_frames - 1)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self.solve_transition, regions[t], regions[t + 1], params): t
                for t in range(num_frames - 1)
            }
            for future, t in futures.items():
                transitions[t] = future.result()

        propagator = TrackLabelPropagator(max_dist=params.max_dist, frame_shape=(height, width))
        label_frames = np.zeros((num_frames, height, width), dtype=np.int32)

        track_ids = propagator.initialize(regions[0], frame_index=0)
        label_frames[0] = propagator.draw(regions[0], track_ids)

        for t in range(1, num_frames):
            cost_matrix, assignment = transitions[t - 1]
            propagator.flag_events(cost_matrix.flags, frame_index=t)
            track_ids = propagator.propagate(
                assignment, cost_matrix.n, cost_matrix.m, regions[t], frame_index=t,
            )
            label_frames[t] = propagator.draw(regions[t], track_ids)
            logger.debug("[Tracker] t=%d: %d regions, %d active tracks", t, len(regions[t]), propagator.num_active)
            if callback:
                callback(40 + int(60 * t / max(num_frames - 1, 1)), f"Tracked frame {t}/{num_frames - 1}")

        elapsed = time.time() - start_time
        logger.info(
            "[Tracker] Finished: %d tracks, %d active, %d events (%.2fs)",
            propagator.total_object_count, propagator.num_active, len(propagator.events), elapsed,
        )
        if callback:
            callback(100, f"Tracked {propagator.total_object_count} objects")

        return TrackingResult(
            label_frames=label_frames,
            tracks=propagator.tracks,
            events=propagator.events,
            max_dist=float(params.max_dist),
            calibration=calibration,
        )
