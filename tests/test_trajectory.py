import numpy as np
import pytest

from core.dto import TrajectoryParameters
from core.time_series import ExclusionReason
from processors.trajectory import TrajectoryBuilder, remove_excluded_objects


def _label_stack():
    """
    Track 0 in frames 0-4 moving right, track 1 in frames 0-1,
    track 2 born in frame 2.
    """
    stack = np.zeros((5, 40, 40), dtype=np.int32)
    for t in range(5):
        stack[t, 4:8, 4 + t:8 + t] = 1
    stack[0:2, 30:34, 30:34] = 2
    stack[2:5, 20:24, 4:8] = 3
    return stack


def test_length_filter():
    result = TrajectoryBuilder(min_track_length=3).build(_label_stack())

    assert list(result.trajectories) == [0, 2]
    assert result.excluded == {1: ExclusionReason.TOO_SHORT}
    assert not result.mask_filter_applied
    assert all(t.length >= 3 for t in result.trajectories.values())


def test_trajectory_points_and_start_frame():
    result = TrajectoryBuilder(min_track_length=1).build(_label_stack())

    first = result.get_trajectory(0)
    assert first.start_frame == 0
    assert first.end_frame == 4
    assert first.points[0] == pytest.approx((5.5, 5.5))
    assert first.points[4] == pytest.approx((9.5, 5.5))
    assert first.is_frozen
    with pytest.raises(RuntimeError):
        first.add_point((0.0, 0.0))

    late = result.get_trajectory(2)
    assert late.start_frame == 2
    assert late.length == 3
    assert late.as_array().shape == (3, 2)


def _bright_mask(stack, track_id, value=100.0):
    mask = np.zeros(stack.shape, dtype=np.float64)
    mask[stack == track_id + 1] = value
    return mask


def test_mask_keeps_bright_tracks():
    stack = _label_stack()
    result = TrajectoryBuilder(min_track_length=1, mask_include=True, mask_factor=3.0).build(
        stack, _bright_mask(stack, 0)
    )

    assert result.mask_filter_applied
    assert list(result.trajectories) == [0]
    assert result.excluded == {
        1: ExclusionReason.MASK_CRITERION,
        2: ExclusionReason.MASK_CRITERION,
    }


def test_mask_excludes_bright_tracks():
    stack = _label_stack()
    result = TrajectoryBuilder(min_track_length=1, mask_include=False, mask_factor=3.0).build(
        stack, _bright_mask(stack, 0)
    )

    assert list(result.trajectories) == [1, 2]
    assert result.excluded == {0: ExclusionReason.MASK_CRITERION}


def test_mask_rejected_id_is_never_instantiated_later():
    stack = _label_stack()
    mask = np.zeros(stack.shape)
    # dim at discovery, bright afterwards
    mask[0, 35:40, 0:5] = 100.0
    mask[1:][stack[1:] == 1] = 100.0

    result = TrajectoryBuilder(min_track_length=1).build(stack, mask)

    assert 0 not in result.trajectories
    assert result.excluded[0] == ExclusionReason.MASK_CRITERION


def test_excluded_ids_are_unique():
    stack = _label_stack()
    result = TrajectoryBuilder(min_track_length=10).build(stack, _bright_mask(stack, 0))

    assert result.trajectories == {}
    assert result.excluded_ids == [0, 1, 2]
    assert result.excluded[0] == ExclusionReason.TOO_SHORT
    assert result.excluded[1] == ExclusionReason.MASK_CRITERION


def test_mask_shape_mismatch_skips_filtering(caplog):
    stack = _label_stack()
    mask = np.zeros((5, 41, 40))

    with caplog.at_level("WARNING"):
        result = TrajectoryBuilder(min_track_length=1).build(stack, mask)

    assert not result.mask_filter_applied
    assert list(result.trajectories) == [0, 1, 2]
    assert "mask filtering skipped" in caplog.text


def test_from_params():
    builder = TrajectoryBuilder.from_params(TrajectoryParameters(min_track_length=7, mask_include=False, mask_factor=2.0))
    assert (builder.min_track_length, builder.mask_include, builder.mask_factor) == (7, False, 2.0)


def test_remove_excluded_objects():
    stack = _label_stack()
    cleaned = remove_excluded_objects(stack, [1])

    assert not np.any(cleaned == 2)
    assert np.array_equal(cleaned == 1, stack == 1)
    assert np.any(stack == 2)
    assert np.array_equal(remove_excluded_objects(stack, []), stack)
