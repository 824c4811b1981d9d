"""
Tests for identity propagation and the bipartite tracker.
"""

import numpy as np
import pytest

from core.dto import GatingParameters
from core.regions import Region
from core.time_series import EventKind, TrackStatus
from processors.cell_tracker import DISAPPEARED, CellTrackerBipartite, TrackLabelPropagator


FIXED = GatingParameters(max_dist=30.0, max_area_change=0.5, auto_distance=False)


def _region(x, y, area=100, label=1):
    return Region(
        label=label,
        area=area,
        centroid=(float(x), float(y)),
        coords=np.zeros((0, 2), dtype=np.int64),
        perimeter=40.0,
    )


def _square_frame(shape, squares, size=6):
    """Binary frame with ``size`` x ``size`` squares at top-left (row, col)."""
    frame = np.zeros(shape, dtype=np.uint8)
    for row, col in squares:
        frame[row:row + size, col:col + size] = 1
    return frame


def _step(tracker, propagator, current, nxt, frame_index):
    cost_matrix, assignment = tracker.solve_transition(current, nxt, tracker.params)
    propagator.flag_events(cost_matrix.flags, frame_index)
    return propagator.propagate(assignment, cost_matrix.n, cost_matrix.m, nxt, frame_index)


@pytest.fixture
def tracker():
    return CellTrackerBipartite(params=FIXED)


# ---------------------------------------------------------------------------
# Single transitions
# ---------------------------------------------------------------------------

def test_single_object_keeps_identity(tracker):
    propagator = TrackLabelPropagator(max_dist=30.0, frame_shape=(100, 100))
    current = [_region(10, 10, 100)]
    assert propagator.initialize(current) == [0]

    ids = _step(tracker, propagator, current, [_region(12, 11, 102)], 1)

    assert ids == [0]
    assert propagator.total_object_count == 1
    assert propagator.events == []


def test_disappearance(tracker):
    propagator = TrackLabelPropagator(max_dist=30.0, frame_shape=(100, 100))
    current = [_region(10, 10), _region(50, 50)]
    propagator.initialize(current)

    ids = _step(tracker, propagator, current, [_region(10, 10)], 1)

    assert ids == [0]
    assert propagator.object_labels == [0, DISAPPEARED]
    assert propagator.tracks[1].status == TrackStatus.DISAPPEARED
    assert propagator.tracks[1].death_frame == 1
    assert [(e.kind, e.track_ids) for e in propagator.events] == [(EventKind.DEATH, (1,))]


def test_appearance(tracker):
    propagator = TrackLabelPropagator(max_dist=30.0, frame_shape=(300, 300))
    current = [_region(100, 100)]
    propagator.initialize(current)

    ids = _step(tracker, propagator, current, [_region(100, 100), _region(200, 200)], 1)

    assert ids == [0, 1]
    assert propagator.object_labels == [0, 1]
    births = [e for e in propagator.events if e.kind == EventKind.BIRTH]
    assert [(e.track_ids, e.position) for e in births] == [((1,), (200.0, 200.0))]


def test_gating_violation_becomes_death_and_birth(tracker):
    propagator = TrackLabelPropagator(max_dist=30.0, frame_shape=(300, 300))
    current = [_region(100, 100)]
    propagator.initialize(current)

    ids = _step(tracker, propagator, current, [_region(150, 100)], 1)

    assert ids == [1]
    assert propagator.object_labels == [DISAPPEARED, 0]
    kinds = sorted(e.kind.value for e in propagator.events)
    assert kinds == ["birth", "death"]


def test_birth_near_border_is_reported(tracker):
    propagator = TrackLabelPropagator(max_dist=30.0, frame_shape=(300, 300))
    current = [_region(150, 150)]
    propagator.initialize(current)

    _step(tracker, propagator, current, [_region(150, 150), _region(290, 150)], 1)

    entry = [e for e in propagator.events if e.kind == EventKind.BORDER_ENTRY]
    assert len(entry) == 1
    assert propagator.tracks[1].entered_from_border


def test_births_numbered_in_region_order(tracker):
    propagator = TrackLabelPropagator(max_dist=30.0, frame_shape=(400, 400))
    propagator.initialize([])

    ids = _step(tracker, propagator, [], [_region(100, 100), _region(200, 200), _region(300, 100)], 1)

    assert ids == [0, 1, 2]


def test_merge_candidate_is_flagged(tracker):
    propagator = TrackLabelPropagator(max_dist=30.0, frame_shape=(300, 300))
    current = [_region(100, 100, 100), _region(110, 100, 100)]
    propagator.initialize(current)

    _step(tracker, propagator, current, [_region(105, 100, 210)], 1)

    merges = [e for e in propagator.events if e.kind == EventKind.MERGE]
    assert sorted(e.track_ids[0] for e in merges) == [0, 1]


def test_propagate_rejects_mismatched_assignment():
    propagator = TrackLabelPropagator(max_dist=30.0, frame_shape=(100, 100))
    propagator.initialize([_region(10, 10)])

    with pytest.raises(ValueError):
        propagator.propagate(np.eye(3, dtype=np.uint8), 1, 1, [_region(10, 10)], 1)
    with pytest.raises(ValueError):
        propagator.propagate(np.eye(2, dtype=np.uint8), 1, 1, [], 1)
    with pytest.raises(ValueError):
        propagator.propagate(np.eye(3, dtype=np.uint8), 2, 1, [_region(10, 10)], 1)


def test_matched_pairs_are_always_feasible():
    rng = np.random.default_rng(3)
    current = [_region(x, y, a) for x, y, a in zip(rng.uniform(0, 200, 12), rng.uniform(0, 200, 12), rng.integers(50, 150, 12))]
    nxt = [_region(x, y, a) for x, y, a in zip(rng.uniform(0, 200, 9), rng.uniform(0, 200, 9), rng.integers(50, 150, 9))]

    tracker = CellTrackerBipartite(params=FIXED)
    cost_matrix, assignment = tracker.solve_transition(current, nxt, FIXED)

    matched = assignment[: cost_matrix.n, : cost_matrix.m].astype(bool)
    assert np.all(cost_matrix.feasible[matched])
    assert np.all(cost_matrix.distances[matched] <= FIXED.max_dist)


# ---------------------------------------------------------------------------
# Whole sequences
# ---------------------------------------------------------------------------

def test_track_two_moving_squares():
    frames = [
        _square_frame((120, 120), [(20, 20), (70, 70)]),
        _square_frame((120, 120), [(22, 23), (72, 68)]),
        _square_frame((120, 120), [(24, 26), (74, 66)]),
    ]

    result = CellTrackerBipartite(params=GatingParameters(max_dist=15.0, auto_distance=False)).track(frames)

    labels = result.label_frames
    assert labels.shape == (3, 120, 120)
    assert labels.dtype == np.int32
    assert labels[0, 21, 21] == labels[1, 23, 24] == labels[2, 25, 27] == 1
    assert labels[0, 71, 71] == labels[1, 73, 69] == labels[2, 75, 67] == 2
    assert result.num_tracks == 2
    assert result.events == []
    assert result.max_dist == 15.0
    assert result.calibration is None


def test_empty_frame_in_the_middle():
    frames = [
        _square_frame((100, 100), [(40, 40)]),
        np.zeros((100, 100), dtype=np.uint8),
        _square_frame((100, 100), [(40, 40)]),
    ]

    result = CellTrackerBipartite(params=GatingParameters(max_dist=10.0, auto_distance=False)).track(frames)

    assert result.tracks[0].death_frame == 1
    assert result.tracks[1].birth_frame == 2
    assert result.label_frames[2, 42, 42] == 2
    assert not np.any(result.label_frames[1])


def test_identity_and_count_invariants_on_random_sequence():
    rng = np.random.default_rng(11)
    cells = [(r, c) for r in range(8) for c in range(8)]
    frames = []
    for _ in range(8):
        chosen = rng.choice(len(cells), size=rng.integers(5, 20), replace=False)
        squares = [(cells[k][0] * 20 + rng.integers(0, 4), cells[k][1] * 20 + rng.integers(0, 4)) for k in chosen]
        frames.append(_square_frame((160, 160), squares))

    result = CellTrackerBipartite(params=GatingParameters(max_dist=8.0, auto_distance=False)).track(frames)
    labels = result.label_frames

    seen = set()
    for t in range(labels.shape[0]):
        ids = set(np.unique(labels[t]).tolist()) - {0}
        new_ids = ids - seen
        if seen and new_ids:
            # new ids are strictly larger than every id handed out before
            assert min(new_ids) > max(seen)
        births = [e for e in result.get_events(frame=t) if e.kind in (EventKind.BIRTH, EventKind.BORDER_ENTRY)]
        if t > 0:
            assert len(births) == len(new_ids)
            prev = set(np.unique(labels[t - 1]).tolist()) - {0}
            deaths = result.get_events(kind=EventKind.DEATH, frame=t)
            assert len(ids) == len(prev) - len(deaths) + len(births)
            # label pixels carry track id + 1
            assert {e.track_ids[0] + 1 for e in deaths} == prev - ids
        seen |= ids

    assert result.num_tracks == len(seen)
    assert sorted(seen) == list(range(1, len(seen) + 1))


def test_pre_labeled_input():
    frames = np.zeros((2, 50, 50), dtype=np.int32)
    frames[0, 10:16, 10:16] = 5
    frames[0, 10:16, 16:22] = 9
    frames[1, 11:17, 10:16] = 4
    frames[1, 11:17, 16:22] = 8

    with pytest.raises(ValueError):
        CellTrackerBipartite(params=FIXED).track(frames)

    result = CellTrackerBipartite(params=FIXED, pre_labeled=True).track(frames)

    assert result.num_tracks == 2
    assert result.label_frames[0, 12, 12] == result.label_frames[1, 13, 12]
    assert result.label_frames[0, 12, 18] == result.label_frames[1, 13, 18]
    assert result.label_frames[0, 12, 12] != result.label_frames[0, 12, 18]


def test_track_rejects_invalid_sequences():
    tracker = CellTrackerBipartite(params=FIXED)
    with pytest.raises(ValueError):
        tracker.track([])
    with pytest.raises(ValueError):
        tracker.track([np.zeros((10, 10)), np.zeros((12, 10))])


def test_auto_distance_uses_calibration():
    frames = []
    for t in range(5):
        squares = [(20 + 4 * t, 20 + 3 * t), (20 + 4 * t, 100 + 3 * t), (100 + 4 * t, 20 + 3 * t)]
        frames.append(_square_frame((200, 200), squares, size=5))

    progress = []
    result = CellTrackerBipartite(params=GatingParameters(auto_distance=True)).track(
        frames, callback=lambda p, m: progress.append(p)
    )

    assert result.calibration is not None
    assert result.calibration.converged
    assert result.max_dist == pytest.approx(6.0)
    assert result.num_tracks == 3
    assert progress[-1] == 100
