"""
Time series data structures for frame-to-frame cell tracking.

Provides data classes for persistent track identities, advisory tracking
events, and the per-identity centroid trajectories extracted from a
relabelled frame sequence.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Sequence, Tuple, Optional, Any
import numpy as np


class TrackStatus(Enum):
    """Status of a persistent track identity."""
    ACTIVE = "active"              # Has a region in the most recent frame
    DISAPPEARED = "disappeared"    # Terminal; the id is never revived


class EventKind(Enum):
    """Advisory notifications raised while tracking."""
    BIRTH = "birth"
    BORDER_ENTRY = "border_entry"  # Birth close to the image border
    DEATH = "death"
    MERGE = "merge"
    SPLIT = "split"
    DIVISION = "division"


class ExclusionReason(Enum):
    """Why a track id has no retained trajectory."""
    TOO_SHORT = "too_short"
    MASK_CRITERION = "mask_criterion"


@dataclass
class Track:
    """
    A persistent object identity.

    Attributes:
        id: Monotonically increasing integer id, never reused
        birth_frame: Frame index in which the id was created
        status: ACTIVE or DISAPPEARED
        death_frame: First frame in which the track was missing
        entered_from_border: Birth happened within the gating distance of a border
    """
    id: int
    birth_frame: int
    status: TrackStatus = TrackStatus.ACTIVE
    death_frame: Optional[int] = None
    entered_from_border: bool = False

    @property
    def is_active(self) -> bool:
        return self.status == TrackStatus.ACTIVE


@dataclass(frozen=True)
class TrackingEvent:
    """One advisory log entry (birth, death, border entry, merge/split/division)."""
    kind: EventKind
    frame: int
    track_ids: Tuple[int, ...]
    position: Optional[Tuple[float, float]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "frame": self.frame,
            "track_ids": list(self.track_ids),
            "position": list(self.position) if self.position is not None else None,
        }


@dataclass
class Trajectory:
    """
    Ordered centroids of one track id.

    Points are appended only while the trajectory is being built; the
    builder hands out frozen copies (``points`` as a tuple).
    """
    id: int
    start_frame: int
    points: Sequence[Tuple[float, float]] = field(default_factory=list)
    parent_id: Optional[int] = None

    @property
    def length(self) -> int:
        return len(self.points)

    @property
    def end_frame(self) -> int:
        return self.start_frame + len(self.points) - 1

    @property
    def is_frozen(self) -> bool:
        return isinstance(self.points, tuple)

    def add_point(self, point: Tuple[float, float]) -> None:
        if self.is_frozen:
            raise RuntimeError(f"Trajectory {self.id} is frozen.")
        self.points.append((float(point[0]), float(point[1])))

    def freeze(self) -> "Trajectory":
        """Copy with an immutable point tuple."""
        return Trajectory(
            id=self.id,
            start_frame=self.start_frame,
            points=tuple(self.points),
            parent_id=self.parent_id,
        )

    def as_array(self) -> np.ndarray:
        """Points as an (N, 2) float array of (x, y)."""
        if not self.points:
            return np.zeros((0, 2), dtype=np.float64)
        return np.asarray(self.points, dtype=np.float64)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "start_frame": self.start_frame,
            "parent_id": self.parent_id,
            "points": [list(p) for p in self.points],
        }


@dataclass
class CalibrationResult:
    """
    Outcome of the automatic gating distance estimation.

    Attributes:
        radius: Chosen gating distance
        probability: Estimated true-link probability P_t at ``radius``
        converged: True if P_t reached 1 (early stop)
        n_true_links: Estimated number of true links N_t
        curve: (r, P_t(r)) for every tested radius
    """
    radius: float
    probability: float
    converged: bool
    n_true_links: float
    curve: List[Tuple[int, float]] = field(default_factory=list)


@dataclass
class TrackingResult:
    """
    Results of tracking objects across all frames.

    Attributes:
        label_frames: (T, H, W) int32 stack, pixel value = track id + 1, 0 = background
        tracks: {track_id: Track} in creation order
        events: Advisory events in the order they were raised
        max_dist: Gating distance actually used
        calibration: Calibration outcome when auto distance was requested
    """
    label_frames: np.ndarray
    tracks: Dict[int, Track] = field(default_factory=dict)
    events: List[TrackingEvent] = field(default_factory=list)
    max_dist: float = 0.0
    calibration: Optional[CalibrationResult] = None

    @property
    def num_frames(self) -> int:
        return int(self.label_frames.shape[0])

    @property
    def num_tracks(self) -> int:
        return len(self.tracks)

    def get_active_track_ids(self) -> List[int]:
        return [tid for tid, track in self.tracks.items() if track.status == TrackStatus.ACTIVE]

    def get_disappeared_track_ids(self) -> List[int]:
        return [tid for tid, track in self.tracks.items() if track.status == TrackStatus.DISAPPEARED]

    def get_events(self, kind: Optional[EventKind] = None, frame: Optional[int] = None) -> List[TrackingEvent]:
        """Filter events by kind and/or frame."""
        selected = []
        for event in self.events:
            if kind is not None and event.kind != kind:
                continue
            if frame is not None and event.frame != frame:
                continue
            selected.append(event)
        return selected

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the tracking run."""
        counts = {kind.value: 0 for kind in EventKind}
        for event in self.events:
            counts[event.kind.value] += 1
        return {
            "num_frames": self.num_frames,
            "num_tracks": self.num_tracks,
            "active_tracks": len(self.get_active_track_ids()),
            "disappeared_tracks": len(self.get_disappeared_track_ids()),
            "max_dist": self.max_dist,
            "auto_distance": self.calibration is not None,
            "events": counts,
        }


@dataclass
class TrajectoryResult:
    """
    Retained trajectories plus the track ids that were excluded.

    Attributes:
        trajectories: {track_id: Trajectory} in discovery order
        excluded: {track_id: ExclusionReason}
        mask_filter_applied: False if no mask was given or it was skipped
    """
    trajectories: Dict[int, Trajectory] = field(default_factory=dict)
    excluded: Dict[int, ExclusionReason] = field(default_factory=dict)
    mask_filter_applied: bool = False

    @property
    def excluded_ids(self) -> List[int]:
        return sorted(self.excluded)

    def get_trajectory(self, track_id: int) -> Optional[Trajectory]:
        return self.trajectories.get(track_id)
